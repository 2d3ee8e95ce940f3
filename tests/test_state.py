"""Tests for single-use pending authorization requests."""

from __future__ import annotations

from easyauth.pkce import PKCEChallenge, generate_state
from easyauth.scheduler import VirtualClock
from easyauth.state import DEFAULT_STATE_TTL, PendingRequests
from easyauth.types import AuthorizationRequest


def _request(clock: VirtualClock, state: str | None = None) -> AuthorizationRequest:
    return AuthorizationRequest(
        provider="google",
        return_url="https://app.example/callback",
        redirect_uri="https://app.example/callback",
        state=state or generate_state(),
        pkce=PKCEChallenge.generate(),
        nonce="nonce-1",
        created_at=clock(),
    )


class TestPendingRequests:
    """A state is redeemable exactly once within its TTL."""

    def test_consume_once(self, clock) -> None:
        """The first consume returns the request, the second None."""
        pending = PendingRequests(clock=clock)
        request = _request(clock)
        pending.add(request)
        assert request.state in pending
        assert pending.consume(request.state) is request
        assert request.state not in pending
        assert pending.consume(request.state) is None

    def test_unknown_and_empty_states(self, clock) -> None:
        """Unknown, empty and missing states resolve to None."""
        pending = PendingRequests(clock=clock)
        pending.add(_request(clock, state="known"))
        assert pending.consume("forged") is None
        assert pending.consume("") is None
        assert pending.consume(None) is None
        assert len(pending) == 1

    def test_expired_state(self, clock) -> None:
        """After the TTL the state is gone, even if never used."""
        pending = PendingRequests(ttl=60, clock=clock)
        request = _request(clock)
        pending.add(request)
        clock.advance(61)
        assert pending.consume(request.state) is None
        assert len(pending) == 0

    def test_within_ttl(self, clock) -> None:
        """A state exactly at the TTL boundary is still valid."""
        pending = PendingRequests(ttl=60, clock=clock)
        request = _request(clock)
        pending.add(request)
        clock.advance(60)
        assert pending.consume(request.state) is request

    def test_default_ttl(self) -> None:
        """Requests live ten minutes by default."""
        assert PendingRequests().ttl == DEFAULT_STATE_TTL == 600.0

    def test_independent_states(self, clock) -> None:
        """Concurrent logins do not interfere."""
        pending = PendingRequests(clock=clock)
        first, second = _request(clock), _request(clock)
        pending.add(first)
        pending.add(second)
        assert pending.consume(second.state) is second
        assert pending.consume(first.state) is first

    def test_add_purges_expired(self, clock) -> None:
        """Adding a request drops stale ones."""
        pending = PendingRequests(ttl=10, clock=clock)
        pending.add(_request(clock))
        clock.advance(11)
        pending.add(_request(clock))
        assert len(pending) == 1

    def test_purge_and_clear(self, clock) -> None:
        """purge_expired reports removals; clear drops everything."""
        pending = PendingRequests(ttl=10, clock=clock)
        pending.add(_request(clock))
        clock.advance(5)
        pending.add(_request(clock))
        clock.advance(6)
        assert pending.purge_expired() == 1
        pending.clear()
        assert len(pending) == 0
