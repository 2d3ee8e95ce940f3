"""OAuth2 provider adapters.

Defines the OAuthProvider ABC and concrete implementations for Google,
Apple, Facebook, Azure AD B2C and custom OAuth2/OIDC providers.

Token endpoint calls never raise for expected failures: a provider
rejection or a transport error comes back as a failed ``TokenResult``.
Profile fetches are the exception and raise ``ProviderUserInfoError``.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import asyncio
import logging
import re
import time

from abc import ABC
from typing import TYPE_CHECKING, Any, ClassVar
from urllib.parse import quote, urlencode, urlparse

import httpx

from .exceptions import ConfigurationError, ProviderUserInfoError, TokenDecodeError
from .log import mask_token, redact_sensitive_data
from .pkce import decode_jwt_claims
from .types import Capability, HealthStatus, ProviderInfo, TokenResult, UserProfile, _as_tuple


if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from .config import ProviderSettings
    from .types import AuthorizationRequest


logger = logging.getLogger("easyauth.providers")

DEFAULT_TIMEOUT = 30.0
DEFAULT_HEALTH_TIMEOUT = 5.0

# Authorize parameters that callers may not override through custom params
_RESERVED_PARAMS = frozenset(
    {
        "response_type",
        "client_id",
        "redirect_uri",
        "state",
        "code_challenge",
        "code_challenge_method",
        "nonce",
    }
)


def _is_http_url(url: str) -> bool:
    parsed = urlparse(url)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.lower() == "true"
    return bool(value)


class OAuthProvider(ABC):
    """Abstract base class for identity provider adapters.

    Parameters
    ----------
    client_id : str
        The OAuth2 client ID.
    client_secret : str
        The OAuth2 client secret (empty string for public clients).
    scopes : list[str], optional
        Requested scopes; ``default_scopes`` when empty.
    name : str, optional
        Configured provider name (defaults to ``provider_type``).
    display_name : str, optional
        Human-readable name.
    redirect_uri : str, optional
        Registered redirect URI; the login return URL is used when empty.
    extra_params : dict, optional
        Extra authorize-URL parameters sent on every login.
    authorize_url, token_url, userinfo_url, revocation_url : str
        Provider endpoints.
    health_url : str
        Endpoint probed by ``get_health_status``.
    http_client : httpx.AsyncClient, optional
        Shared client. One is created lazily (and owned) when omitted.
    timeout : float
        Timeout for token, userinfo and revocation calls.
    health_timeout : float
        Timeout for the health probe.
    """

    provider_type: ClassVar[str] = "oauth2"
    default_display_name: ClassVar[str] = "OAuth2"
    default_scopes: ClassVar[tuple[str, ...]] = ("openid", "profile", "email")

    def __init__(
        self,
        client_id: str,
        client_secret: str = "",
        scopes: Sequence[str] | None = None,
        *,
        name: str | None = None,
        display_name: str = "",
        redirect_uri: str = "",
        extra_params: Mapping[str, str] | None = None,
        authorize_url: str = "",
        token_url: str = "",
        userinfo_url: str = "",
        revocation_url: str = "",
        health_url: str = "",
        http_client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        health_timeout: float = DEFAULT_HEALTH_TIMEOUT,
    ) -> None:
        self.name = name or self.provider_type
        self.client_id = client_id.strip()
        self.client_secret = client_secret
        self.scopes: tuple[str, ...] = tuple(scopes) if scopes else self.default_scopes
        self.display_name = display_name or self.default_display_name
        self.redirect_uri = redirect_uri
        self.extra_params = dict(extra_params or {})
        self.authorize_url = authorize_url
        self.token_url = token_url
        self.userinfo_url = userinfo_url
        self.revocation_url = revocation_url
        self.health_url = health_url
        self.timeout = timeout
        self.health_timeout = health_timeout
        self._http_client = http_client
        self._owns_client = http_client is None
        self.validate()

    # ── Configuration ───────────────────────────────────────────────

    def validate(self) -> None:
        """Check the configuration; raise ConfigurationError if invalid."""
        if not self.client_id:
            self._config_error("client_id is required", "client_id")
        for field_name in ("authorize_url", "token_url"):
            if not _is_http_url(getattr(self, field_name)):
                self._config_error(f"{field_name} must be an absolute http(s) URL", field_name)

    def _config_error(self, message: str, field: str) -> None:
        raise ConfigurationError(
            f"{self.display_name} provider '{self.name}': {message}",
            provider=self.name,
            field=field,
        )

    @property
    def capabilities(self) -> frozenset[Capability]:
        """Features this adapter supports."""
        caps = {Capability.OAUTH2, Capability.REFRESH, Capability.USER_INFO}
        if self.revocation_url:
            caps.add(Capability.REVOKE)
        return frozenset(caps)

    def supports(self, capability: Capability) -> bool:
        """Check whether the adapter advertises ``capability``."""
        return capability in self.capabilities

    def info(self, enabled: bool = True) -> ProviderInfo:
        """Describe this adapter."""
        return ProviderInfo(
            name=self.name,
            display_name=self.display_name,
            capabilities=self.capabilities,
            enabled=enabled,
        )

    # ── HTTP client ─────────────────────────────────────────────────

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the shared HTTP client."""
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(timeout=self.timeout)
            self._owns_client = True
        return self._http_client

    async def close(self) -> None:
        """Close the HTTP client if this adapter created it."""
        if self._owns_client and self._http_client is not None and not self._http_client.is_closed:
            await self._http_client.aclose()
            self._http_client = None

    # ── Authorize ───────────────────────────────────────────────────

    def authorize_extras(self) -> dict[str, str]:
        """Provider-specific authorize parameters (``hd``, ``prompt``...)."""
        return {}

    def _build_url(
        self,
        endpoint: str,
        request: AuthorizationRequest,
        overrides: Mapping[str, str] | None = None,
    ) -> str:
        params: dict[str, str] = {
            "response_type": "code",
            "client_id": self.client_id,
            "redirect_uri": request.redirect_uri,
            "scope": " ".join(request.scopes or self.scopes),
            "state": request.state,
        }
        if request.pkce is not None:
            params["code_challenge"] = request.pkce.challenge
            params["code_challenge_method"] = request.pkce.method
        if request.nonce:
            params["nonce"] = request.nonce
        params.update(self.authorize_extras())
        params.update(self.extra_params)
        for key, value in request.custom_params.items():
            if key in _RESERVED_PARAMS:
                logger.warning("Ignoring reserved authorize parameter '%s'", key)
                continue
            params[key] = value
        if overrides:
            params.update(overrides)
        separator = "&" if "?" in endpoint else "?"
        # quote_via=quote encodes spaces as %20 rather than +
        return f"{endpoint}{separator}{urlencode(params, quote_via=quote)}"

    def get_authorization_url(self, request: AuthorizationRequest) -> str:
        """Build the full authorization URL for a pending request.

        Parameters
        ----------
        request : AuthorizationRequest
            The pending login attempt (state, PKCE, nonce, scopes).

        Returns
        -------
        str
            The authorize endpoint with every query parameter applied.
        """
        return self._build_url(self.authorize_url, request)

    # ── Token endpoint ──────────────────────────────────────────────

    def _client_credentials(self) -> dict[str, str]:
        data = {"client_id": self.client_id}
        if self.client_secret:
            data["client_secret"] = self.client_secret
        return data

    async def _token_request(self, data: dict[str, str]) -> TokenResult:
        try:
            client = await self._get_client()
            resp = await client.post(
                self.token_url,
                data=data,
                headers={"Accept": "application/json"},
                timeout=self.timeout,
            )
        except httpx.HTTPError as exc:
            logger.warning("Token request to %s failed: %r", self.name, exc)
            return TokenResult.transport_failure(f"Token request to {self.name} failed: {exc!r}")
        return self._parse_token_response(resp)

    def _parse_token_response(self, resp: httpx.Response) -> TokenResult:
        try:
            body = resp.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}

        if not resp.is_success or "error" in body:
            error, description = self._extract_error(body, resp.status_code)
            logger.info(
                "Token endpoint of %s rejected the request: %s %s",
                self.name,
                resp.status_code,
                redact_sensitive_data(body),
            )
            return TokenResult.failure(
                error=error,
                error_description=description,
                status_code=resp.status_code,
                raw=body,
            )

        if not body.get("access_token"):
            return TokenResult.failure(
                error="invalid_token_response",
                error_description="Token response did not include an access_token",
                status_code=resp.status_code,
                raw=redact_sensitive_data(body),  # type: ignore[arg-type]
            )
        try:
            return TokenResult.from_response(body)
        except (TypeError, ValueError):
            logger.info("Token endpoint of %s sent expires_in=%r", self.name, body.get("expires_in"))
            return TokenResult.failure(
                error="invalid_token_response",
                error_description="Token response has an invalid expires_in",
                status_code=resp.status_code,
                raw=redact_sensitive_data(body),  # type: ignore[arg-type]
            )

    @staticmethod
    def _extract_error(body: Mapping[str, Any], status_code: int) -> tuple[str, str | None]:
        """Pull ``(error, error_description)`` out of an error body."""
        error = body.get("error")
        if isinstance(error, dict):
            # Graph-style {"error": {"type": ..., "message": ...}}
            return str(error.get("type") or error.get("code") or f"http_{status_code}"), error.get(
                "message"
            )
        return str(error or f"http_{status_code}"), body.get("error_description")

    async def exchange_code_for_tokens(
        self,
        code: str,
        state: str,
        *,
        redirect_uri: str,
        code_verifier: str | None = None,
    ) -> TokenResult:
        """Exchange an authorization code for tokens.

        Parameters
        ----------
        code : str
            The authorization code from the callback.
        state : str
            The state the code was issued for (used for tracing only).
        redirect_uri : str
            The redirect URI used in the authorization request.
        code_verifier : str, optional
            The PKCE verifier if PKCE was used.

        Returns
        -------
        TokenResult
            Tokens on success; otherwise the provider's error verbatim or
            a transport failure.
        """
        data = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": redirect_uri,
            **self._client_credentials(),
        }
        if code_verifier:
            data["code_verifier"] = code_verifier
        logger.debug("Exchanging authorization code with %s (state %s)", self.name, mask_token(state))
        return await self._token_request(data)

    async def refresh_tokens(self, refresh_token: str) -> TokenResult:
        """Obtain a fresh access token with a refresh token.

        Parameters
        ----------
        refresh_token : str
            The refresh token.

        Returns
        -------
        TokenResult
            Same shape as ``exchange_code_for_tokens``.
        """
        if not self.supports(Capability.REFRESH):
            return TokenResult.failure(
                error="unsupported_grant_type",
                error_description=f"{self.display_name} does not issue refresh tokens",
            )
        data = {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
            **self._client_credentials(),
        }
        return await self._token_request(data)

    # ── User info ───────────────────────────────────────────────────

    def userinfo_params(self) -> dict[str, str]:
        """Query parameters for the userinfo request."""
        return {}

    def _id_token_claims(self, id_token: str | None) -> dict[str, Any]:
        if not id_token:
            msg = f"{self.display_name} returned no ID token to read the profile from"
            raise ProviderUserInfoError(msg, provider=self.name)
        try:
            return decode_jwt_claims(id_token)
        except TokenDecodeError as exc:
            msg = f"Could not decode {self.display_name} ID token: {exc.message}"
            raise ProviderUserInfoError(msg, provider=self.name) from exc

    async def _fetch_userinfo(self, access_token: str) -> dict[str, Any]:
        try:
            client = await self._get_client()
            resp = await client.get(
                self.userinfo_url,
                params=self.userinfo_params() or None,
                headers={"Authorization": f"Bearer {access_token}"},
                timeout=self.timeout,
            )
        except httpx.HTTPError as exc:
            msg = f"Userinfo request to {self.name} failed: {exc!r}"
            raise ProviderUserInfoError(msg, provider=self.name) from exc

        if not resp.is_success:
            msg = f"Userinfo request failed: {resp.status_code}"
            raise ProviderUserInfoError(msg, provider=self.name, status_code=resp.status_code)
        try:
            claims = resp.json()
        except ValueError as exc:
            msg = "Userinfo response is not JSON"
            raise ProviderUserInfoError(msg, provider=self.name) from exc
        if not isinstance(claims, dict):
            msg = "Userinfo response is not a JSON object"
            raise ProviderUserInfoError(msg, provider=self.name)
        return claims

    async def get_user_info(self, access_token: str, *, id_token: str | None = None) -> UserProfile:
        """Fetch and normalize the user's profile.

        Parameters
        ----------
        access_token : str
            A valid access token, sent as a bearer header.
        id_token : str, optional
            Used instead of the userinfo endpoint by providers without one.

        Returns
        -------
        UserProfile
            The normalized profile.

        Raises
        ------
        ProviderUserInfoError
            On any transport failure, non-2xx response or unusable body.
        """
        if self.userinfo_url:
            claims = await self._fetch_userinfo(access_token)
        else:
            claims = self._id_token_claims(id_token)
        profile = self.map_claims(claims)
        if not profile.id:
            msg = f"{self.display_name} profile has no subject identifier"
            raise ProviderUserInfoError(msg, provider=self.name)
        return profile

    def map_claims(self, claims: Mapping[str, Any]) -> UserProfile:
        """Map standard OIDC claims onto a UserProfile."""
        return UserProfile(
            id=str(claims.get("sub") or claims.get("id") or ""),
            provider=self.name,
            email=claims.get("email"),
            email_verified=_as_bool(claims.get("email_verified", False)),
            name=claims.get("name"),
            given_name=claims.get("given_name"),
            family_name=claims.get("family_name"),
            picture=claims.get("picture"),
            locale=claims.get("locale"),
            roles=_as_tuple(claims.get("roles")),
            permissions=_as_tuple(claims.get("permissions")),
            claims=dict(claims),
        )

    # ── Revocation ──────────────────────────────────────────────────

    async def _revoke_one(self, token: str) -> bool:
        """Revoke one token (RFC 7009). Subclasses override for other APIs."""
        try:
            client = await self._get_client()
            resp = await client.post(
                self.revocation_url,
                data={"token": token, **self._client_credentials()},
                timeout=self.timeout,
            )
        except httpx.HTTPError as exc:
            logger.warning("Revocation request to %s failed: %r", self.name, exc)
            return False
        return resp.is_success

    async def revoke_tokens(self, tokens: Sequence[str | None]) -> bool:
        """Revoke every supplied token, best-effort.

        Parameters
        ----------
        tokens : sequence of str
            Access and/or refresh tokens. Empty entries are skipped.

        Returns
        -------
        bool
            True only if every revocation succeeded. Tokens already
            revoked stay revoked when another one fails.
        """
        to_revoke = [t for t in tokens if t]
        if not to_revoke:
            return True
        if not self.supports(Capability.REVOKE):
            logger.debug("%s has no revocation endpoint", self.name)
            return False
        results = await asyncio.gather(*(self._revoke_one(t) for t in to_revoke))
        return all(results)

    # ── Health ──────────────────────────────────────────────────────

    async def get_health_status(self) -> HealthStatus:
        """Probe the provider's discovery (or health) endpoint.

        Returns
        -------
        HealthStatus
            Healthy iff the probe answered 2xx within ``health_timeout``.
            ``response_time`` is in milliseconds.
        """
        if not self.health_url:
            return HealthStatus(
                name=self.name,
                is_healthy=False,
                response_time=0.0,
                error="No health endpoint configured",
            )
        start = time.perf_counter()
        try:
            client = await self._get_client()
            resp = await client.get(
                self.health_url,
                timeout=self.health_timeout,
                follow_redirects=True,
            )
        except httpx.HTTPError as exc:
            elapsed = (time.perf_counter() - start) * 1000
            return HealthStatus(
                name=self.name,
                is_healthy=False,
                response_time=elapsed,
                error=str(exc) or exc.__class__.__name__,
            )
        elapsed = (time.perf_counter() - start) * 1000
        return HealthStatus(
            name=self.name,
            is_healthy=resp.is_success,
            response_time=elapsed,
            error=None if resp.is_success else f"HTTP {resp.status_code}",
        )


class GoogleProvider(OAuthProvider):
    """Google OAuth2 / OpenID Connect with preset endpoints.

    Parameters
    ----------
    client_id : str
        Google OAuth2 client ID (``*.apps.googleusercontent.com``).
    client_secret : str
        Google OAuth2 client secret.
    scopes : list[str], optional
        Requested scopes (defaults to openid, profile, email).
    hosted_domain : str, optional
        Google Workspace domain hint (``hd``).
    prompt : str, optional
        Authorize prompt; ``consent`` when offline access is requested.
    access_type : str
        ``offline`` (default) asks for a refresh token.
    """

    provider_type = "google"
    default_display_name = "Google"
    default_scopes = ("openid", "profile", "email")

    _CLIENT_ID_RE = re.compile(r"^[a-zA-Z0-9]+([._-][a-zA-Z0-9]+)*\.googleusercontent\.com$")

    def __init__(
        self,
        client_id: str,
        client_secret: str = "",
        scopes: Sequence[str] | None = None,
        *,
        hosted_domain: str = "",
        prompt: str = "",
        access_type: str = "offline",
        **kwargs: Any,
    ) -> None:
        self.hosted_domain = hosted_domain
        self.prompt = prompt
        self.access_type = access_type
        super().__init__(
            client_id,
            client_secret,
            scopes,
            authorize_url="https://accounts.google.com/o/oauth2/v2/auth",
            token_url="https://oauth2.googleapis.com/token",  # noqa: S106
            userinfo_url="https://openidconnect.googleapis.com/v1/userinfo",
            revocation_url="https://oauth2.googleapis.com/revoke",
            health_url="https://accounts.google.com/.well-known/openid-configuration",
            **kwargs,
        )

    def validate(self) -> None:
        super().validate()
        if not self._CLIENT_ID_RE.match(self.client_id):
            self._config_error(
                "client_id must be a Google OAuth client ID ending in .googleusercontent.com",
                "client_id",
            )

    @property
    def capabilities(self) -> frozenset[Capability]:
        return frozenset(
            {
                Capability.OAUTH2,
                Capability.PKCE,
                Capability.REFRESH,
                Capability.REVOKE,
                Capability.OPENID_CONNECT,
                Capability.USER_INFO,
            }
        )

    def authorize_extras(self) -> dict[str, str]:
        params = {"access_type": self.access_type}
        prompt = self.prompt or ("consent" if self.access_type == "offline" else "")
        if prompt:
            params["prompt"] = prompt
        if self.hosted_domain:
            params["hd"] = self.hosted_domain
        return params

    async def _revoke_one(self, token: str) -> bool:
        try:
            client = await self._get_client()
            resp = await client.post(
                self.revocation_url,
                params={"token": token},
                headers={"Content-Type": "application/x-www-form-urlencoded"},
                timeout=self.timeout,
            )
        except httpx.HTTPError as exc:
            logger.warning("Google revocation request failed: %r", exc)
            return False
        return resp.is_success


class AppleProvider(OAuthProvider):
    """Sign in with Apple.

    Apple has no userinfo endpoint; the profile is read from the ID
    token returned by the token endpoint. ``client_secret`` is the
    ES256-signed client secret JWT generated for the services ID.
    """

    provider_type = "apple"
    default_display_name = "Apple"
    default_scopes = ("name", "email")

    _CLIENT_ID_RE = re.compile(r"^[A-Za-z0-9-]+(\.[A-Za-z0-9-]+)+$")
    _TEAM_ID_RE = re.compile(r"^[A-Z0-9]{10}$")

    def __init__(
        self,
        client_id: str,
        client_secret: str = "",
        scopes: Sequence[str] | None = None,
        *,
        team_id: str,
        key_id: str = "",
        response_mode: str = "form_post",
        **kwargs: Any,
    ) -> None:
        self.team_id = team_id
        self.key_id = key_id
        self.response_mode = response_mode
        super().__init__(
            client_id,
            client_secret,
            scopes,
            authorize_url="https://appleid.apple.com/auth/authorize",
            token_url="https://appleid.apple.com/auth/token",  # noqa: S106
            revocation_url="https://appleid.apple.com/auth/revoke",
            health_url="https://appleid.apple.com/.well-known/openid-configuration",
            **kwargs,
        )

    def validate(self) -> None:
        super().validate()
        if not self._CLIENT_ID_RE.match(self.client_id):
            self._config_error("client_id must be a reverse-DNS services ID", "client_id")
        if not self._TEAM_ID_RE.match(self.team_id or ""):
            self._config_error("team_id must be 10 uppercase letters or digits", "team_id")

    @property
    def capabilities(self) -> frozenset[Capability]:
        return frozenset(
            {
                Capability.OAUTH2,
                Capability.REFRESH,
                Capability.REVOKE,
                Capability.OPENID_CONNECT,
                Capability.USER_INFO,
            }
        )

    def authorize_extras(self) -> dict[str, str]:
        return {"response_mode": self.response_mode}

    def map_claims(self, claims: Mapping[str, Any]) -> UserProfile:
        profile = super().map_claims(claims)
        return UserProfile(
            id=profile.id,
            provider=self.name,
            email=profile.email,
            email_verified=profile.email_verified,
            roles=profile.roles,
            permissions=profile.permissions,
            claims=profile.claims,
        )


class FacebookProvider(OAuthProvider):
    """Facebook Login via the Graph API.

    Facebook issues long-lived access tokens instead of refresh tokens,
    so ``refresh_tokens`` always reports ``unsupported_grant_type``.
    """

    provider_type = "facebook"
    default_display_name = "Facebook"
    default_scopes = ("email", "public_profile")

    _APP_ID_RE = re.compile(r"^\d{5,20}$")
    _PROFILE_FIELDS = "id,email,first_name,last_name,name,picture.type(large)"

    def __init__(
        self,
        client_id: str,
        client_secret: str = "",
        scopes: Sequence[str] | None = None,
        *,
        graph_version: str = "v18.0",
        **kwargs: Any,
    ) -> None:
        self.graph_version = graph_version
        graph = f"https://graph.facebook.com/{graph_version}"
        super().__init__(
            client_id,
            client_secret,
            scopes,
            authorize_url=f"https://www.facebook.com/{graph_version}/dialog/oauth",
            token_url=f"{graph}/oauth/access_token",
            userinfo_url=f"{graph}/me",
            revocation_url=f"{graph}/me/permissions",
            health_url="https://www.facebook.com/.well-known/openid-configuration",
            **kwargs,
        )

    def validate(self) -> None:
        super().validate()
        if not self._APP_ID_RE.match(self.client_id):
            self._config_error("client_id must be a numeric Facebook app ID", "client_id")

    @property
    def capabilities(self) -> frozenset[Capability]:
        return frozenset({Capability.OAUTH2, Capability.REVOKE, Capability.USER_INFO})

    def userinfo_params(self) -> dict[str, str]:
        return {"fields": self._PROFILE_FIELDS}

    def map_claims(self, claims: Mapping[str, Any]) -> UserProfile:
        picture = claims.get("picture")
        if isinstance(picture, dict):
            picture = (picture.get("data") or {}).get("url")
        email = claims.get("email")
        return UserProfile(
            id=str(claims.get("id") or ""),
            provider=self.name,
            email=email,
            # Graph only returns confirmed addresses
            email_verified=bool(email),
            name=claims.get("name"),
            given_name=claims.get("first_name"),
            family_name=claims.get("last_name"),
            picture=picture,
            locale=claims.get("locale"),
            claims=dict(claims),
        )

    async def _revoke_one(self, token: str) -> bool:
        try:
            client = await self._get_client()
            resp = await client.delete(
                self.revocation_url,
                params={"access_token": token},
                timeout=self.timeout,
            )
        except httpx.HTTPError as exc:
            logger.warning("Facebook permission revocation failed: %r", exc)
            return False
        return resp.is_success


class AzureB2CProvider(OAuthProvider):
    """Azure AD B2C user flows.

    The authority is ``https://{tenant}.b2clogin.com/{tenant}.onmicrosoft.com``
    (or the configured custom domain) and every endpoint carries the
    user flow as ``?p={policy}``. B2C has no userinfo endpoint for user
    flows; the profile comes from the ID token. It does not support
    token revocation.
    """

    provider_type = "azure_b2c"
    default_display_name = "Azure AD B2C"
    default_scopes = ("openid", "profile", "offline_access")

    _GUID_RE = re.compile(
        r"^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}$"
    )

    def __init__(
        self,
        client_id: str,
        client_secret: str = "",
        scopes: Sequence[str] | None = None,
        *,
        tenant_id: str,
        policy: str,
        password_reset_policy: str = "",
        custom_domain: str = "",
        **kwargs: Any,
    ) -> None:
        self.tenant_id = tenant_id.strip()
        self.policy = policy.strip()
        self.password_reset_policy = password_reset_policy.strip()
        self.custom_domain = custom_domain.strip().rstrip("/")

        tenant_name = self.tenant_id.removesuffix(".onmicrosoft.com")
        tenant_domain = self.tenant_id if "." in self.tenant_id else f"{self.tenant_id}.onmicrosoft.com"
        host = self.custom_domain or f"{tenant_name}.b2clogin.com"
        if "://" not in host:
            host = f"https://{host}"
        self.authority = f"{host}/{tenant_domain}"

        super().__init__(
            client_id,
            client_secret,
            scopes,
            authorize_url=self._policy_url("oauth2/v2.0/authorize", self.policy),
            token_url=self._policy_url("oauth2/v2.0/token", self.policy),
            health_url=self._policy_url("v2.0/.well-known/openid-configuration", self.policy),
            **kwargs,
        )

    def _policy_url(self, path: str, policy: str) -> str:
        return f"{self.authority}/{path}?p={quote(policy)}"

    def validate(self) -> None:
        if not self.tenant_id:
            self._config_error("tenant_id is required", "tenant_id")
        if not self.policy:
            self._config_error("policy is required", "policy")
        super().validate()
        if not self._GUID_RE.match(self.client_id):
            self._config_error("client_id must be an application (client) ID GUID", "client_id")

    @property
    def capabilities(self) -> frozenset[Capability]:
        return frozenset(
            {
                Capability.OAUTH2,
                Capability.PKCE,
                Capability.REFRESH,
                Capability.OPENID_CONNECT,
                Capability.USER_INFO,
            }
        )

    def map_claims(self, claims: Mapping[str, Any]) -> UserProfile:
        email = claims.get("email")
        if not email:
            emails = claims.get("emails") or []
            email = emails[0] if emails else None
        return UserProfile(
            id=str(claims.get("oid") or claims.get("sub") or ""),
            provider=self.name,
            email=email,
            email_verified=_as_bool(claims.get("email_verified", False)),
            name=claims.get("name"),
            given_name=claims.get("given_name"),
            family_name=claims.get("family_name"),
            locale=claims.get("locale"),
            roles=_as_tuple(claims.get("roles") or claims.get("extension_Roles")),
            permissions=_as_tuple(claims.get("permissions")),
            claims=dict(claims),
        )

    def get_password_reset_url(
        self,
        request: AuthorizationRequest,
        login_hint: str | None = None,
    ) -> str:
        """Build an authorize URL that starts the password reset user flow.

        Raises
        ------
        ConfigurationError
            If no ``password_reset_policy`` is configured.
        """
        if not self.password_reset_policy:
            self._config_error("password_reset_policy is not configured", "password_reset_policy")
        endpoint = self._policy_url("oauth2/v2.0/authorize", self.password_reset_policy)
        overrides = {"login_hint": login_hint} if login_hint else None
        return self._build_url(endpoint, request, overrides)


class CustomProvider(OAuthProvider):
    """Any OAuth2 / OIDC provider described by explicit endpoints.

    Parameters
    ----------
    issuer_url : str, optional
        OIDC issuer; its discovery document is the health probe.
    use_pkce : bool
        Advertise (and therefore use) PKCE.
    supports_refresh : bool
        Whether the provider issues refresh tokens.
    """

    provider_type = "custom"
    default_display_name = "Custom"

    def __init__(
        self,
        client_id: str,
        client_secret: str = "",
        scopes: Sequence[str] | None = None,
        *,
        authorize_url: str,
        token_url: str,
        userinfo_url: str = "",
        revocation_url: str = "",
        issuer_url: str = "",
        health_url: str = "",
        use_pkce: bool = True,
        supports_refresh: bool = True,
        **kwargs: Any,
    ) -> None:
        self.issuer_url = issuer_url.rstrip("/")
        self.use_pkce = use_pkce
        self.supports_refresh = supports_refresh
        if not health_url and self.issuer_url:
            health_url = f"{self.issuer_url}/.well-known/openid-configuration"
        super().__init__(
            client_id,
            client_secret,
            scopes,
            authorize_url=authorize_url,
            token_url=token_url,
            userinfo_url=userinfo_url,
            revocation_url=revocation_url,
            health_url=health_url,
            **kwargs,
        )

    @property
    def capabilities(self) -> frozenset[Capability]:
        caps = {Capability.OAUTH2}
        if self.use_pkce:
            caps.add(Capability.PKCE)
        if self.supports_refresh:
            caps.add(Capability.REFRESH)
        if self.revocation_url:
            caps.add(Capability.REVOKE)
        if "openid" in self.scopes:
            caps.add(Capability.OPENID_CONNECT)
        if self.userinfo_url or "openid" in self.scopes:
            caps.add(Capability.USER_INFO)
        return frozenset(caps)


_PROVIDER_CLASSES: dict[str, type[OAuthProvider]] = {
    "google": GoogleProvider,
    "apple": AppleProvider,
    "facebook": FacebookProvider,
    "azure_b2c": AzureB2CProvider,
    "custom": CustomProvider,
}

# Settings fields that are not adapter constructor arguments
_NON_ADAPTER_FIELDS = {"type", "enabled"}


def create_provider(
    name: str,
    settings: ProviderSettings,
    *,
    http_client: httpx.AsyncClient | None = None,
    timeout: float = DEFAULT_TIMEOUT,
    health_timeout: float = DEFAULT_HEALTH_TIMEOUT,
) -> OAuthProvider:
    """Create an adapter from provider settings.

    Parameters
    ----------
    name : str
        The configured provider name.
    settings : ProviderSettings
        One member of the provider settings union.
    http_client : httpx.AsyncClient, optional
        Client shared with the rest of the engine.
    timeout, health_timeout : float
        Request timeouts in seconds.

    Returns
    -------
    OAuthProvider
        A validated adapter.

    Raises
    ------
    ConfigurationError
        If the provider type is unknown or the settings are invalid.
    """
    provider_type = getattr(settings, "type", "custom")
    cls = _PROVIDER_CLASSES.get(provider_type)
    if cls is None:
        msg = f"Unknown provider type: {provider_type}"
        raise ConfigurationError(msg, provider=name, field="type")

    kwargs = settings.model_dump(exclude=_NON_ADAPTER_FIELDS)
    return cls(
        name=name,
        http_client=http_client,
        timeout=timeout,
        health_timeout=health_timeout,
        **kwargs,
    )
