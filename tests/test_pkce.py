"""Unit tests for PKCE, state, nonce and JWT helpers."""

from __future__ import annotations

import hashlib
import re

from base64 import urlsafe_b64encode

import pytest

from easyauth.exceptions import TokenDecodeError
from easyauth.pkce import (
    PKCEChallenge,
    decode_jwt_claims,
    generate_nonce,
    generate_session_id,
    generate_state,
)
from tests.constants import RFC7636_CHALLENGE, RFC7636_VERIFIER
from tests.fakes import make_jwt


# ── PKCE Tests ──────────────────────────────────────────────────────


class TestPKCEChallenge:
    """Tests for PKCEChallenge generation."""

    def test_generate_returns_challenge(self) -> None:
        """PKCEChallenge.generate() returns a valid challenge pair."""
        pkce = PKCEChallenge.generate()
        assert pkce.verifier
        assert pkce.challenge
        assert pkce.method == "S256"

    def test_verifier_is_url_safe_and_in_range(self) -> None:
        """Verifier is 43-128 URL-safe characters."""
        for length in (32, 64, 96):
            pkce = PKCEChallenge.generate(length=length)
            assert re.match(r"^[A-Za-z0-9_-]{43,128}$", pkce.verifier)

    def test_challenge_matches_verifier_sha256(self) -> None:
        """Challenge is the base64url SHA-256 of the verifier."""
        pkce = PKCEChallenge.generate()
        expected_digest = hashlib.sha256(pkce.verifier.encode("ascii")).digest()
        expected_challenge = urlsafe_b64encode(expected_digest).rstrip(b"=").decode("ascii")
        assert pkce.challenge == expected_challenge
        assert "=" not in pkce.challenge

    def test_rfc7636_test_vector(self) -> None:
        """The Appendix B verifier yields the published challenge."""
        pkce = PKCEChallenge.from_verifier(RFC7636_VERIFIER)
        assert pkce.challenge == RFC7636_CHALLENGE

    def test_from_verifier_is_stable(self) -> None:
        """Deriving twice from the same verifier gives the same challenge."""
        a = PKCEChallenge.from_verifier(RFC7636_VERIFIER)
        b = PKCEChallenge.from_verifier(RFC7636_VERIFIER)
        assert a == b

    def test_from_verifier_rejects_short_verifier(self) -> None:
        """Verifiers under 43 characters are rejected."""
        with pytest.raises(ValueError, match="43-128"):
            PKCEChallenge.from_verifier("too-short")

    def test_from_verifier_rejects_bad_characters(self) -> None:
        """Characters outside the unreserved set are rejected."""
        with pytest.raises(ValueError):
            PKCEChallenge.from_verifier("a" * 42 + "!")

    @pytest.mark.parametrize("length", [8, 31, 97])
    def test_generate_rejects_out_of_range_length(self, length: int) -> None:
        """Byte lengths outside 32-96 are refused."""
        with pytest.raises(ValueError):
            PKCEChallenge.generate(length=length)

    def test_generate_uniqueness(self) -> None:
        """Each generation produces unique values."""
        a = PKCEChallenge.generate()
        b = PKCEChallenge.generate()
        assert a.verifier != b.verifier
        assert a.challenge != b.challenge

    def test_frozen_dataclass(self) -> None:
        """PKCEChallenge is immutable."""
        pkce = PKCEChallenge.generate()
        with pytest.raises(AttributeError):
            pkce.verifier = "new"  # type: ignore[misc]


# ── State, nonce and session ids ────────────────────────────────────


class TestRandomValues:
    """Tests for state/nonce/session id generation."""

    def test_state_is_url_safe(self) -> None:
        """State contains only base64url characters and no padding."""
        state = generate_state()
        assert re.match(r"^[A-Za-z0-9_-]+$", state)
        # 32 bytes -> 43 characters
        assert len(state) == 43

    def test_state_entropy_floor(self) -> None:
        """Fewer than 16 bytes of entropy is refused."""
        with pytest.raises(ValueError, match="16"):
            generate_state(15)
        assert len(generate_state(16)) >= 22

    def test_states_are_unique(self) -> None:
        """No collisions across many draws."""
        states = {generate_state() for _ in range(500)}
        assert len(states) == 500

    def test_nonce_and_session_id(self) -> None:
        """Nonces are URL-safe and session ids are hex."""
        assert re.match(r"^[A-Za-z0-9_-]+$", generate_nonce())
        assert re.match(r"^[0-9a-f]{32}$", generate_session_id())


# ── JWT decoding ────────────────────────────────────────────────────


class TestDecodeJwtClaims:
    """Tests for structural JWT payload decoding."""

    def test_decodes_payload(self) -> None:
        """Claims come back as a dict."""
        token = make_jwt({"sub": "abc", "nonce": "n-1", "email": "a@example.com"})
        claims = decode_jwt_claims(token)
        assert claims["sub"] == "abc"
        assert claims["nonce"] == "n-1"

    @pytest.mark.parametrize(
        "token",
        ["", "not-a-jwt", "a.b", "a.!!!.c", "eyJhbGciOiJub25lIn0.WzEsMl0.sig"],
    )
    def test_malformed_tokens_raise(self, token: str) -> None:
        """Wrong segment counts, bad base64 and non-object payloads raise."""
        with pytest.raises(TokenDecodeError):
            decode_jwt_claims(token)
