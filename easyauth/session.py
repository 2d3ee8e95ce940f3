"""Session store: the single source of truth for "am I authenticated".

Holds at most one session in a StorageBackend under a fixed key. Reads
are expiry-aware and never hand out an expired or partial session.
"""

from __future__ import annotations

import json
import logging

from typing import TYPE_CHECKING

from .exceptions import SessionError
from .scheduler import system_clock
from .types import Session


if TYPE_CHECKING:
    from .scheduler import Clock
    from .storage import StorageBackend


logger = logging.getLogger("easyauth.session")

SESSION_KEY = "easyauth_session"


class SessionStore:
    """Expiry-aware holder of the current session.

    Parameters
    ----------
    backend : StorageBackend
        Where the serialized session record lives.
    clock : Clock, optional
        Time source used for expiry checks (default: wall clock).
    key : str
        Storage key for the session record.
    """

    def __init__(
        self,
        backend: StorageBackend,
        clock: Clock | None = None,
        key: str = SESSION_KEY,
    ) -> None:
        self.backend = backend
        self.clock = clock or system_clock
        self.key = key

    async def get(self) -> Session | None:
        """Return the current session, or None if absent or expired.

        An expired or unreadable record is removed from the backing
        storage as a side effect.
        """
        raw = await self.backend.get_item(self.key)
        if raw is None:
            return None

        try:
            session = Session.from_dict(json.loads(raw))
        except (ValueError, TypeError, SessionError) as exc:
            logger.warning("Discarding unreadable session record: %s", exc)
            await self.backend.remove_item(self.key)
            return None

        if session.is_expired(self.clock()):
            logger.debug("Session %s expired; purging", session.session_id)
            await self.backend.remove_item(self.key)
            return None
        return session

    async def set(self, session: Session) -> None:
        """Replace the current session.

        The record is fully serialized before a single backend write, so
        readers observe either the previous session or this one.

        Raises
        ------
        SessionError
            If the session is incomplete or already expired.
        """
        if not session.is_complete:
            msg = "Refusing to store an incomplete session"
            raise SessionError(msg, session_id=session.session_id)
        if session.is_expired(self.clock()):
            msg = "Refusing to store an expired session"
            raise SessionError(msg, session_id=session.session_id)
        payload = json.dumps(session.to_dict(), separators=(",", ":"))
        await self.backend.set_item(self.key, payload)
        logger.debug("Stored session %s for provider %s", session.session_id, session.provider)

    async def clear(self) -> None:
        """Remove the session. Safe to call when nothing is stored."""
        await self.backend.remove_item(self.key)
