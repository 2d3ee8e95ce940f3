"""Tests for the expiry-aware session store."""

# pylint: disable=redefined-outer-name

from __future__ import annotations

import asyncio
import json

import pytest

from easyauth.exceptions import SessionError
from easyauth.scheduler import VirtualClock
from easyauth.session import SESSION_KEY, SessionStore
from easyauth.storage import MemoryStorage
from easyauth.types import Session, UserProfile


def _session(clock: VirtualClock, **overrides) -> Session:
    values = {
        "session_id": "sess-1",
        "user": UserProfile(id="user-1", provider="google", email="ada@example.com", roles=("admin",)),
        "access_token": "access-1",
        "refresh_token": "refresh-1",
        "expires_at": clock() + 3600,
        "provider": "google",
        "created_at": clock(),
    }
    values.update(overrides)
    return Session(**values)


@pytest.fixture
def backend() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture
def store(backend, clock) -> SessionStore:
    return SessionStore(backend, clock)


# ── Reads and writes ────────────────────────────────────────────────


class TestSessionStore:
    """get/set/clear semantics."""

    def test_empty(self, store) -> None:
        """Nothing stored reads as None."""
        assert asyncio.run(store.get()) is None

    def test_round_trip(self, store, clock) -> None:
        """A stored session comes back equal, including the profile."""
        session = _session(clock)

        async def _test():
            await store.set(session)
            return await store.get()

        loaded = asyncio.run(_test())
        assert loaded == session
        assert loaded.user.roles == ("admin",)

    def test_fixed_key(self, store, backend, clock) -> None:
        """The record lives under the well-known key."""
        asyncio.run(store.set(_session(clock)))
        assert SESSION_KEY in backend

    def test_set_replaces(self, store, clock) -> None:
        """At most one session is held."""

        async def _test():
            await store.set(_session(clock))
            await store.set(_session(clock, session_id="sess-2", access_token="access-2"))
            return await store.get()

        assert asyncio.run(_test()).session_id == "sess-2"

    def test_clear(self, store, clock) -> None:
        """clear() removes the session and is safe to repeat."""

        async def _test():
            await store.set(_session(clock))
            await store.clear()
            await store.clear()
            return await store.get()

        assert asyncio.run(_test()) is None


# ── Expiry ──────────────────────────────────────────────────────────


class TestExpiry:
    """Expired sessions are never returned."""

    def test_expired_read_as_none_and_purged(self, store, backend, clock) -> None:
        """Once expires_at passes, get() returns None and removes the record."""
        asyncio.run(store.set(_session(clock, expires_at=clock() + 10)))
        clock.advance(9)
        assert asyncio.run(store.get()) is not None
        clock.advance(1)
        assert asyncio.run(store.get()) is None
        assert SESSION_KEY not in backend

    def test_refuses_expired(self, store, clock) -> None:
        """Storing an already-expired session fails."""
        with pytest.raises(SessionError, match="expired"):
            asyncio.run(store.set(_session(clock, expires_at=clock() - 1)))


# ── Integrity ───────────────────────────────────────────────────────


class TestIntegrity:
    """Partial and corrupt records are never handed out."""

    @pytest.mark.parametrize(
        "overrides",
        [{"access_token": ""}, {"session_id": ""}, {"provider": ""}, {"expires_at": 0.0}],
    )
    def test_refuses_incomplete(self, store, clock, overrides) -> None:
        """Sessions missing a required field are rejected."""
        with pytest.raises(SessionError, match="incomplete"):
            asyncio.run(store.set(_session(clock, **overrides)))

    def test_refuses_missing_user_id(self, store, clock) -> None:
        """A profile without an id makes the session incomplete."""
        with pytest.raises(SessionError):
            asyncio.run(store.set(_session(clock, user=UserProfile(id="", provider="google"))))

    @pytest.mark.parametrize("raw", ["not json", "[]", '{"session_id": "x"}'])
    def test_corrupt_record_purged(self, store, backend, raw, caplog) -> None:
        """Unreadable records read as None and are removed."""
        asyncio.run(backend.set_item(SESSION_KEY, raw))
        assert asyncio.run(store.get()) is None
        assert SESSION_KEY not in backend
        assert "Discarding unreadable session record" in caplog.text

    def test_tokens_not_logged(self, store, clock, caplog) -> None:
        """Storing a session never logs token values."""
        caplog.set_level("DEBUG", logger="easyauth")
        asyncio.run(store.set(_session(clock)))
        assert "access-1" not in caplog.text
        assert "refresh-1" not in caplog.text

    def test_serialized_format(self, store, backend, clock) -> None:
        """The stored record is plain JSON with the user nested."""
        asyncio.run(store.set(_session(clock)))
        record = json.loads(asyncio.run(backend.get_item(SESSION_KEY)))
        assert record["access_token"] == "access-1"
        assert record["user"]["id"] == "user-1"
        assert record["user"]["roles"] == ["admin"]
