"""Pluggable key/value storage backings for the session store.

Provides the StorageBackend ABC and concrete implementations that differ
only in how long a record survives:

* ``FileStorage`` (``local``): survives process restarts.
* ``SessionScopedStorage`` (``session``): removed when the interpreter exits.
* ``MemoryStorage`` (``memory``): lives as long as the backend object.
* ``KeyringStorage`` (``keyring``): OS credential store.
* ``RedisStorage`` (``redis``): shared between processes, last writer wins.
"""

from __future__ import annotations

import asyncio
import atexit
import contextlib
import logging
import os
import re
import shutil
import tempfile

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

from .exceptions import StorageError


logger = logging.getLogger("easyauth.storage")

_KEY_RE = re.compile(r"^[A-Za-z0-9_.-]+$")


class StorageBackend(ABC):
    """Abstract string key/value store.

    All methods are async to support both local and network-backed stores.
    ``set_item`` must replace the previous value atomically: a concurrent
    reader sees either the old or the new value in full.
    """

    name: str = "abstract"

    @abstractmethod
    async def get_item(self, key: str) -> str | None:
        """Return the value stored under ``key``, or None."""

    @abstractmethod
    async def set_item(self, key: str, value: str) -> None:
        """Store ``value`` under ``key``, replacing any previous value."""

    @abstractmethod
    async def remove_item(self, key: str) -> None:
        """Remove ``key``. Removing a missing key is not an error."""

    async def close(self) -> None:  # noqa: B027
        """Release backend resources."""


class MemoryStorage(StorageBackend):
    """In-memory storage for tests and single-process use."""

    name = "memory"

    def __init__(self) -> None:
        self._items: dict[str, str] = {}
        self._lock = asyncio.Lock()

    async def get_item(self, key: str) -> str | None:
        async with self._lock:
            return self._items.get(key)

    async def set_item(self, key: str, value: str) -> None:
        async with self._lock:
            self._items[key] = value

    async def remove_item(self, key: str) -> None:
        async with self._lock:
            self._items.pop(key, None)

    def __contains__(self, key: str) -> bool:
        return key in self._items


class FileStorage(StorageBackend):
    """One file per key under ``directory``.

    Writes go to a temporary file in the same directory followed by
    ``os.replace``, which is atomic on POSIX and Windows. Files are
    created with mode 0600.

    Parameters
    ----------
    directory : str or Path
        Storage directory; created on first write. ``~`` is expanded.
    """

    name = "local"

    def __init__(self, directory: str | Path) -> None:
        self.directory = Path(directory).expanduser()

    def _path(self, key: str) -> Path:
        if not _KEY_RE.match(key):
            msg = f"Invalid storage key: {key!r}"
            raise StorageError(msg, backend=self.name)
        return self.directory / f"{key}.json"

    async def get_item(self, key: str) -> str | None:
        path = self._path(key)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            msg = f"Failed to read {path}: {exc}"
            raise StorageError(msg, backend=self.name) from exc

    async def set_item(self, key: str, value: str) -> None:
        path = self._path(key)
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(dir=self.directory, prefix=f".{key}.", suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as fh:
                    fh.write(value)
                    fh.flush()
                    os.fsync(fh.fileno())
                os.replace(tmp, path)
            except BaseException:
                with contextlib.suppress(OSError):
                    os.unlink(tmp)
                raise
        except OSError as exc:
            msg = f"Failed to write {path}: {exc}"
            raise StorageError(msg, backend=self.name) from exc

    async def remove_item(self, key: str) -> None:
        path = self._path(key)
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            msg = f"Failed to remove {path}: {exc}"
            raise StorageError(msg, backend=self.name) from exc


class SessionScopedStorage(FileStorage):
    """File storage in a private temporary directory.

    Records survive re-creating clients within the same interpreter but
    are deleted at interpreter exit (or on ``close()``).
    """

    name = "session"

    def __init__(self) -> None:
        super().__init__(tempfile.mkdtemp(prefix="easyauth-"))
        atexit.register(self._cleanup)

    def _cleanup(self) -> None:
        shutil.rmtree(self.directory, ignore_errors=True)

    async def close(self) -> None:
        self._cleanup()
        atexit.unregister(self._cleanup)


class KeyringStorage(StorageBackend):
    """OS keyring-backed storage for persistent native credentials.

    Requires the ``keyring`` package: ``pip install easyauth-client[keyring]``

    Parameters
    ----------
    service_name : str
        Service name for keyring entries (default "easyauth").
    """

    name = "keyring"

    def __init__(self, service_name: str = "easyauth") -> None:
        try:
            import keyring as _keyring

            from keyring.errors import KeyringError, PasswordDeleteError
        except ImportError:
            msg = "Install keyring for OS credential storage: pip install easyauth-client[keyring]"
            raise ImportError(msg) from None
        self._service_name = service_name
        self._keyring = _keyring
        self._keyring_error = KeyringError
        self._delete_error = PasswordDeleteError

    async def _call(self, action: str, key: str, func: Any, *args: Any) -> Any:
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, func, self._service_name, key, *args)
        except self._delete_error:
            raise
        except self._keyring_error as exc:
            msg = f"Failed to {action} keyring entry {key}: {exc}"
            raise StorageError(msg, backend=self.name) from exc

    async def get_item(self, key: str) -> str | None:
        return await self._call("read", key, self._keyring.get_password)

    async def set_item(self, key: str, value: str) -> None:
        await self._call("write", key, self._keyring.set_password, value)

    async def remove_item(self, key: str) -> None:
        try:
            await self._call("remove", key, self._keyring.delete_password)
        except self._delete_error:
            logger.debug("Keyring entry %s already absent", key)


class RedisStorage(StorageBackend):
    """Redis-backed storage shared across processes.

    Concurrent writers race; the last ``set_item`` wins.

    Parameters
    ----------
    redis_url : str
        Redis connection URL.
    prefix : str
        Key prefix for namespacing (default "easyauth").
    pool_size : int
        Connection pool size (default 10).
    """

    name = "redis"

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379/0",
        prefix: str = "easyauth",
        pool_size: int = 10,
    ) -> None:
        try:
            from redis.asyncio import Redis as RedisClient
            from redis.exceptions import RedisError
        except ImportError:
            msg = (
                "Redis storage requires the 'redis' package. "
                "Install with: pip install easyauth-client[redis]"
            )
            raise ImportError(msg) from None

        self._prefix = prefix
        self._redis_error = RedisError
        self._redis: Any = RedisClient.from_url(
            redis_url,
            max_connections=pool_size,
            decode_responses=True,
        )

    def _key(self, key: str) -> str:
        return f"{self._prefix}:{key}"

    async def _call(self, action: str, key: str, func: Any, *args: Any) -> Any:
        try:
            return await func(self._key(key), *args)
        except self._redis_error as exc:
            msg = f"Failed to {action} {self._key(key)} in Redis: {exc}"
            raise StorageError(msg, backend=self.name) from exc

    async def get_item(self, key: str) -> str | None:
        return await self._call("read", key, self._redis.get)

    async def set_item(self, key: str, value: str) -> None:
        await self._call("write", key, self._redis.set, value)

    async def remove_item(self, key: str) -> None:
        await self._call("remove", key, self._redis.delete)

    async def close(self) -> None:
        await self._redis.aclose()


def create_storage(mode: str = "memory", **kwargs: Any) -> StorageBackend:
    """Factory function for storage backings.

    Parameters
    ----------
    mode : str
        One of "local", "session", "memory", "keyring", "redis".
    **kwargs : Any
        ``directory`` for local; ``service_name`` for keyring;
        ``redis_url``, ``prefix``, ``pool_size`` for redis.

    Returns
    -------
    StorageBackend
        A configured backing.
    """
    if mode == "memory":
        return MemoryStorage()
    if mode == "local":
        return FileStorage(kwargs.get("directory", "~/.easyauth"))
    if mode == "session":
        return SessionScopedStorage()
    if mode == "keyring":
        return KeyringStorage(service_name=kwargs.get("service_name", "easyauth"))
    if mode == "redis":
        return RedisStorage(
            redis_url=kwargs.get("redis_url", "redis://localhost:6379/0"),
            prefix=kwargs.get("prefix", "easyauth"),
            pool_size=kwargs.get("pool_size", 10),
        )
    msg = f"Unknown storage mode: {mode}"
    raise ValueError(msg)
