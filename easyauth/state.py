"""Pending authorization requests keyed by their ``state`` value.

Each request is redeemable exactly once. ``consume`` removes the entry
in the same synchronous step that reads it, so a second callback with
the same state observes it as gone even while the first is still
awaiting the token exchange.
"""

from __future__ import annotations

import logging

from typing import TYPE_CHECKING

from .scheduler import system_clock


if TYPE_CHECKING:
    from .scheduler import Clock
    from .types import AuthorizationRequest


logger = logging.getLogger("easyauth.state")

DEFAULT_STATE_TTL = 600.0


class PendingRequests:
    """Single-use store of in-flight login attempts.

    Parameters
    ----------
    ttl : float
        Seconds a request stays redeemable (default 10 minutes).
    clock : Clock, optional
        Time source (default: wall clock).
    """

    def __init__(self, ttl: float = DEFAULT_STATE_TTL, clock: Clock | None = None) -> None:
        self.ttl = ttl
        self.clock = clock or system_clock
        self._requests: dict[str, AuthorizationRequest] = {}

    def __len__(self) -> int:
        return len(self._requests)

    def __contains__(self, state: str) -> bool:
        return state in self._requests

    def add(self, request: AuthorizationRequest) -> None:
        """Record a pending request, dropping any that have expired."""
        self.purge_expired()
        self._requests[request.state] = request

    def consume(self, state: str | None) -> AuthorizationRequest | None:
        """Remove and return the request for ``state``.

        Returns None for unknown, already consumed, or expired states.
        """
        if not state:
            return None
        request = self._requests.pop(state, None)
        if request is None:
            return None
        if request.is_expired(self.clock(), self.ttl):
            logger.info("Pending login for provider %s expired", request.provider)
            return None
        return request

    def purge_expired(self) -> int:
        """Drop expired requests and return how many were removed."""
        now = self.clock()
        expired = [s for s, r in self._requests.items() if r.is_expired(now, self.ttl)]
        for state in expired:
            del self._requests[state]
        return len(expired)

    def clear(self) -> None:
        """Forget every pending request."""
        self._requests.clear()
