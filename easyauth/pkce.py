"""PKCE (Proof Key for Code Exchange) and CSRF state generation.

RFC 7636 - Proof Key for Code Exchange for OAuth 2.0 public clients.
Uses S256 challenge method (SHA-256 hash of the code verifier). Every
random value comes from the ``secrets`` module.
"""

from __future__ import annotations

import base64
import hashlib
import json
import re
import secrets

from base64 import urlsafe_b64encode
from dataclasses import dataclass
from typing import Any

from .exceptions import TokenDecodeError


MIN_STATE_ENTROPY_BYTES = 16

# RFC 7636 section 4.1: 43-128 characters from the unreserved set
_VERIFIER_RE = re.compile(r"^[A-Za-z0-9._~-]{43,128}$")


def _s256(verifier: str) -> str:
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


@dataclass(frozen=True)
class PKCEChallenge:
    """PKCE code verifier and challenge pair.

    Attributes
    ----------
    verifier : str
        The code verifier (high-entropy random string).
    challenge : str
        The code challenge (base64url-encoded SHA-256 hash of verifier).
    method : str
        The challenge method, always "S256".
    """

    verifier: str
    challenge: str
    method: str = "S256"

    @classmethod
    def generate(cls, length: int = 64) -> PKCEChallenge:
        """Generate a new PKCE code verifier and challenge.

        Parameters
        ----------
        length : int
            Number of random bytes behind the verifier (default 64).
            Must be between 32 and 96 so the encoded verifier lands in
            the 43-128 character range RFC 7636 allows.

        Returns
        -------
        PKCEChallenge
            A new PKCE challenge pair.
        """
        if not 32 <= length <= 96:
            msg = f"PKCE verifier length must be between 32 and 96 bytes, got {length}"
            raise ValueError(msg)
        verifier = secrets.token_urlsafe(length)
        return cls(verifier=verifier, challenge=_s256(verifier))

    @classmethod
    def from_verifier(cls, verifier: str) -> PKCEChallenge:
        """Derive the challenge for an existing verifier.

        Raises
        ------
        ValueError
            If the verifier is not 43-128 unreserved characters.
        """
        if not _VERIFIER_RE.match(verifier):
            msg = "PKCE verifier must be 43-128 unreserved characters"
            raise ValueError(msg)
        return cls(verifier=verifier, challenge=_s256(verifier))


def generate_state(entropy_bytes: int = 32) -> str:
    """Generate an unguessable, URL-safe ``state`` value.

    Parameters
    ----------
    entropy_bytes : int
        Random bytes behind the value; at least 16.

    Returns
    -------
    str
        Base64url text without padding.
    """
    if entropy_bytes < MIN_STATE_ENTROPY_BYTES:
        msg = f"State needs at least {MIN_STATE_ENTROPY_BYTES} bytes of entropy, got {entropy_bytes}"
        raise ValueError(msg)
    return secrets.token_urlsafe(entropy_bytes)


def generate_nonce(entropy_bytes: int = 32) -> str:
    """Generate an OIDC ``nonce``."""
    return secrets.token_urlsafe(entropy_bytes)


def generate_session_id() -> str:
    """Generate an opaque local session identifier."""
    return secrets.token_hex(16)


def decode_jwt_claims(token: str) -> dict[str, Any]:
    """Decode the payload of a JWT without verifying its signature.

    Parameters
    ----------
    token : str
        Compact-serialized JWT.

    Returns
    -------
    dict[str, Any]
        The payload claims.

    Raises
    ------
    TokenDecodeError
        If the token is not three dot-separated segments carrying a
        base64url JSON object payload.
    """
    parts = token.split(".") if token else []
    if len(parts) != 3:
        msg = "JWT must have three segments"
        raise TokenDecodeError(msg, segments=len(parts))
    payload = parts[1] + "=" * (-len(parts[1]) % 4)
    try:
        claims = json.loads(base64.urlsafe_b64decode(payload.encode("ascii")))
    except (ValueError, UnicodeError) as exc:
        msg = f"JWT payload is not valid base64url JSON: {exc}"
        raise TokenDecodeError(msg) from exc
    if not isinstance(claims, dict):
        msg = "JWT payload is not a JSON object"
        raise TokenDecodeError(msg)
    return claims
