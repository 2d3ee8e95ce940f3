"""Data model shared by the engine, adapters and stores."""

from __future__ import annotations

import time

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any
from urllib.parse import parse_qs, urlparse

from .exceptions import ErrorCode, SessionError


if TYPE_CHECKING:
    from collections.abc import Mapping

    from .pkce import PKCEChallenge


class Capability(str, Enum):
    """Features an identity provider adapter supports."""

    OAUTH2 = "oauth2"
    PKCE = "pkce"
    REFRESH = "refresh"
    REVOKE = "revoke"
    OPENID_CONNECT = "openid_connect"
    USER_INFO = "user_info"


class AuthState(str, Enum):
    """Lifecycle state of an AuthClient."""

    ANONYMOUS = "anonymous"
    LOGIN_PENDING = "login_pending"
    AUTHENTICATED = "authenticated"
    REFRESH_PENDING = "refresh_pending"


class AuthEventType(str, Enum):
    """Lifecycle events emitted by an AuthClient."""

    LOGIN_START = "login-start"
    LOGIN_SUCCESS = "login-success"
    LOGIN_ERROR = "login-error"
    LOGOUT_START = "logout-start"
    LOGOUT_SUCCESS = "logout-success"
    STATE_CHANGED = "state-changed"
    SESSION_REFRESHED = "session-refreshed"
    TOKEN_EXPIRED = "token-expired"


def _as_tuple(value: Any) -> tuple[str, ...]:
    """Normalize a claim that may be a list or a delimited string."""
    if not value:
        return ()
    if isinstance(value, str):
        return tuple(v for v in value.replace(",", " ").split() if v)
    return tuple(str(v) for v in value)


@dataclass(frozen=True)
class UserProfile:
    """Normalized identity mapped from provider-specific claims.

    Attributes
    ----------
    id : str
        Stable provider-side subject identifier.
    provider : str
        Name of the provider that issued the identity.
    email : str or None
        Primary email address.
    email_verified : bool
        Whether the provider vouches for the email address.
    name, given_name, family_name : str or None
        Display and structured names.
    picture : str or None
        Avatar URL.
    locale : str or None
        Preferred locale.
    roles, permissions : tuple[str, ...]
        Authorization attributes used by role/permission checks.
    claims : dict[str, Any]
        The raw claims the profile was mapped from.
    """

    id: str
    provider: str
    email: str | None = None
    email_verified: bool = False
    name: str | None = None
    given_name: str | None = None
    family_name: str | None = None
    picture: str | None = None
    locale: str | None = None
    roles: tuple[str, ...] = ()
    permissions: tuple[str, ...] = ()
    claims: dict[str, Any] = field(default_factory=dict, compare=False)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-compatible dict."""
        data = asdict(self)
        data["roles"] = list(self.roles)
        data["permissions"] = list(self.permissions)
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> UserProfile:
        """Rebuild a profile from ``to_dict`` output."""
        return cls(
            id=str(data["id"]),
            provider=str(data["provider"]),
            email=data.get("email"),
            email_verified=bool(data.get("email_verified", False)),
            name=data.get("name"),
            given_name=data.get("given_name"),
            family_name=data.get("family_name"),
            picture=data.get("picture"),
            locale=data.get("locale"),
            roles=_as_tuple(data.get("roles")),
            permissions=_as_tuple(data.get("permissions")),
            claims=dict(data.get("claims") or {}),
        )


@dataclass(frozen=True)
class Session:
    """The authenticated unit of truth.

    A session is only ever stored and handed out complete; see
    ``SessionStore.set``.
    """

    session_id: str
    user: UserProfile
    access_token: str
    expires_at: float
    provider: str
    refresh_token: str | None = None
    id_token: str | None = None
    token_type: str = "Bearer"  # noqa: S105
    created_at: float = field(default_factory=time.time)

    @property
    def is_complete(self) -> bool:
        """Check that every required field is populated."""
        return bool(
            self.session_id
            and self.access_token
            and self.provider
            and self.user.id
            and self.expires_at > 0
        )

    def is_expired(self, now: float) -> bool:
        """Check whether ``expires_at`` has passed at ``now``."""
        return self.expires_at <= now

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-compatible dict."""
        return {
            "session_id": self.session_id,
            "user": self.user.to_dict(),
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "id_token": self.id_token,
            "token_type": self.token_type,
            "expires_at": self.expires_at,
            "provider": self.provider,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Session:
        """Rebuild a session from ``to_dict`` output.

        Raises
        ------
        SessionError
            If a required field is missing or malformed.
        """
        try:
            return cls(
                session_id=str(data["session_id"]),
                user=UserProfile.from_dict(data["user"]),
                access_token=str(data["access_token"]),
                refresh_token=data.get("refresh_token"),
                id_token=data.get("id_token"),
                token_type=data.get("token_type") or "Bearer",
                expires_at=float(data["expires_at"]),
                provider=str(data["provider"]),
                created_at=float(data.get("created_at") or 0.0),
            )
        except (KeyError, TypeError, ValueError) as exc:
            msg = f"Malformed session record: {exc}"
            raise SessionError(msg) from exc


@dataclass(frozen=True)
class ProviderInfo:
    """Static descriptor of a configured provider."""

    name: str
    display_name: str
    capabilities: frozenset[Capability]
    enabled: bool = True

    def supports(self, capability: Capability) -> bool:
        """Check whether the provider advertises ``capability``."""
        return capability in self.capabilities


@dataclass(frozen=True)
class AuthorizationRequest:
    """A pending login attempt, redeemable once by its ``state``."""

    provider: str
    return_url: str
    redirect_uri: str
    state: str
    scopes: tuple[str, ...] = ()
    pkce: PKCEChallenge | None = None
    nonce: str | None = None
    custom_params: dict[str, str] = field(default_factory=dict)
    created_at: float = field(default_factory=time.time)

    def is_expired(self, now: float, ttl: float) -> bool:
        """Check whether the request is older than ``ttl`` seconds."""
        return now - self.created_at > ttl


@dataclass
class LoginRequest:
    """Caller input to ``AuthClient.initiate_login``.

    Attributes
    ----------
    return_url : str
        Absolute URL the provider redirects back to.
    provider : str or None
        Provider name; the configured default is used when omitted.
    scopes : list[str] or None
        Scopes to request instead of the provider defaults.
    custom_params : dict[str, str]
        Extra authorize-URL parameters (``login_hint``, ``prompt``...).
    """

    return_url: str
    provider: str | None = None
    scopes: list[str] | None = None
    custom_params: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> LoginRequest:
        """Build from a dict, accepting camelCase keys as well."""
        return cls(
            return_url=data.get("return_url") or data.get("returnUrl") or "",
            provider=data.get("provider"),
            scopes=data.get("scopes"),
            custom_params=dict(data.get("custom_params") or data.get("customParams") or {}),
        )


@dataclass
class CallbackData:
    """Parameters delivered by the provider redirect."""

    state: str | None = None
    code: str | None = None
    provider: str | None = None
    error: str | None = None
    error_description: str | None = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> CallbackData:
        """Build from a dict of callback parameters."""
        return cls(
            state=data.get("state"),
            code=data.get("code"),
            provider=data.get("provider"),
            error=data.get("error"),
            error_description=data.get("error_description") or data.get("errorDescription"),
        )

    @classmethod
    def from_url(cls, url: str, provider: str | None = None) -> CallbackData:
        """Parse callback parameters from a redirect URL.

        Query parameters take precedence over fragment parameters.
        """
        parsed = urlparse(url)
        params: dict[str, str] = {}
        for source in (parsed.fragment, parsed.query):
            for key, values in parse_qs(source).items():
                params[key] = values[0]
        if provider is not None:
            params["provider"] = provider
        return cls.from_mapping(params)


@dataclass
class TokenResult:
    """Outcome of a token endpoint call.

    On success the token fields are populated; on failure ``error``
    carries the provider's error code verbatim (or a transport message
    when ``is_transport_error`` is set).
    """

    success: bool
    access_token: str | None = None
    token_type: str = "Bearer"  # noqa: S105
    refresh_token: str | None = None
    id_token: str | None = None
    expires_in: int | None = None
    scope: str = ""
    raw: dict[str, Any] = field(default_factory=dict)
    error: str | None = None
    error_description: str | None = None
    error_code: ErrorCode | None = None
    status_code: int | None = None
    is_transport_error: bool = False

    @classmethod
    def from_response(cls, raw: Mapping[str, Any]) -> TokenResult:
        """Build a successful result from a token endpoint JSON body.

        Raises
        ------
        ValueError
            If ``expires_in`` is present but not a positive integer.
        """
        expires_in = raw.get("expires_in")
        if expires_in is not None:
            expires_in = int(expires_in)
            if expires_in <= 0:
                msg = f"expires_in must be positive, got {expires_in}"
                raise ValueError(msg)
        return cls(
            success=True,
            access_token=raw["access_token"],
            token_type=raw.get("token_type") or "Bearer",
            refresh_token=raw.get("refresh_token"),
            id_token=raw.get("id_token"),
            expires_in=expires_in,
            scope=raw.get("scope", ""),
            raw=dict(raw),
        )

    @classmethod
    def failure(
        cls,
        error: str,
        error_description: str | None = None,
        error_code: ErrorCode = ErrorCode.PROVIDER_ERROR,
        status_code: int | None = None,
        raw: Mapping[str, Any] | None = None,
    ) -> TokenResult:
        """Build a provider-rejection result."""
        return cls(
            success=False,
            error=error,
            error_description=error_description,
            error_code=error_code,
            status_code=status_code,
            raw=dict(raw or {}),
        )

    @classmethod
    def transport_failure(cls, message: str) -> TokenResult:
        """Build a result for a request that never got a response."""
        return cls(
            success=False,
            error=message,
            error_code=ErrorCode.TRANSPORT_ERROR,
            is_transport_error=True,
        )


@dataclass
class AuthResult:
    """Outcome of ``initiate_login`` and ``handle_callback``."""

    success: bool
    auth_url: str | None = None
    state: str | None = None
    session: Session | None = None
    user: UserProfile | None = None
    tokens: TokenResult | None = None
    error: str | None = None
    error_description: str | None = None
    error_code: ErrorCode | None = None

    @classmethod
    def failure(
        cls,
        error_code: ErrorCode,
        error: str,
        error_description: str | None = None,
        tokens: TokenResult | None = None,
    ) -> AuthResult:
        """Build a failed result."""
        return cls(
            success=False,
            error=error,
            error_description=error_description,
            error_code=error_code,
            tokens=tokens,
        )


@dataclass
class RefreshResult:
    """Outcome of ``refresh_session``."""

    success: bool
    session: Session | None = None
    tokens: TokenResult | None = None
    error: str | None = None
    error_description: str | None = None
    error_code: ErrorCode | None = None

    @classmethod
    def failure(
        cls,
        error_code: ErrorCode,
        error: str,
        error_description: str | None = None,
        tokens: TokenResult | None = None,
    ) -> RefreshResult:
        """Build a failed result."""
        return cls(
            success=False,
            error=error,
            error_description=error_description,
            error_code=error_code,
            tokens=tokens,
        )


@dataclass
class HealthStatus:
    """Result of probing a provider or the backend API."""

    name: str
    is_healthy: bool
    response_time: float
    error: str | None = None
    checked_at: float = field(default_factory=time.time)


@dataclass
class AuthEvent:
    """A lifecycle notification delivered to subscribers."""

    type: AuthEventType
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)
