"""The auth engine: login/callback state machine with auto-refresh.

``AuthClient`` is an explicitly constructed instance with injected
configuration, storage, HTTP client, clock and scheduler. UI layers hold
a reference and ``subscribe`` to its lifecycle events.

Expected failures (bad return URL, unknown provider, invalid state,
provider rejections, transport errors) come back as result objects with
``success=False``. Only configuration errors and profile fetch failures
are raised.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import asyncio
import dataclasses
import inspect
import logging

from collections.abc import Mapping
from typing import TYPE_CHECKING, Any
from urllib.parse import urlparse

import httpx

from .backend import BackendClient
from .config import load_settings
from .events import EventEmitter
from .exceptions import (
    BackendError,
    ErrorCode,
    ProviderUserInfoError,
    TokenDecodeError,
)
from .pkce import PKCEChallenge, decode_jwt_claims, generate_nonce, generate_session_id, generate_state
from .registry import ProviderRegistry
from .scheduler import AsyncioScheduler, ManualScheduler, system_clock
from .session import SessionStore
from .state import PendingRequests
from .storage import create_storage
from .types import (
    AuthEventType,
    AuthorizationRequest,
    AuthResult,
    AuthState,
    CallbackData,
    Capability,
    LoginRequest,
    RefreshResult,
    Session,
)


if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from .config import AuthSettings
    from .providers import OAuthProvider
    from .scheduler import Clock, ScheduledTask, Scheduler
    from .storage import StorageBackend
    from .types import AuthEvent, HealthStatus, ProviderInfo, TokenResult, UserProfile


logger = logging.getLogger("easyauth.client")

_LOCAL_HOSTS = frozenset({"localhost", "127.0.0.1", "::1"})


class AuthClient:
    """Client-side OAuth2 / OIDC authentication engine.

    Parameters
    ----------
    settings : AuthSettings or dict, optional
        Configuration. ``None`` loads TOML files and the environment.
    storage : StorageBackend, optional
        Session backing; built from ``settings.storage`` when omitted.
    registry : ProviderRegistry, optional
        Provider adapters; built from ``settings.providers`` when omitted.
    http_client : httpx.AsyncClient, optional
        Client shared by adapters and the backend client.
    scheduler : Scheduler, optional
        Timer source for auto-refresh (default: the running event loop).
    clock : Clock, optional
        Time source. Defaults to the scheduler's clock for a
        ``ManualScheduler``, else wall-clock time.
    on_token_expired : callable, optional
        Called with the failed ``RefreshResult`` when auto-refresh fails.
    backend : BackendClient, optional
        Backend API collaborator used at sign-out and for health checks.

    Raises
    ------
    ConfigurationError
        If the settings are invalid.

    Examples
    --------
    >>> client = AuthClient({"api_base_url": "https://app.example", "providers": {...}})
    >>> result = await client.initiate_login({"provider": "google", "return_url": url})
    >>> result = await client.handle_callback(redirected_url)
    """

    def __init__(
        self,
        settings: AuthSettings | dict[str, Any] | None = None,
        *,
        storage: StorageBackend | None = None,
        registry: ProviderRegistry | None = None,
        http_client: httpx.AsyncClient | None = None,
        scheduler: Scheduler | None = None,
        clock: Clock | None = None,
        on_token_expired: Callable[[RefreshResult], Any] | None = None,
        backend: BackendClient | None = None,
    ) -> None:
        self._settings = load_settings(settings)

        if clock is None and isinstance(scheduler, ManualScheduler):
            clock = scheduler.clock
        self._clock = clock or system_clock
        self._owns_scheduler = scheduler is None
        self._scheduler = scheduler or AsyncioScheduler()

        self._owns_http_client = http_client is None
        self._http_client = http_client or httpx.AsyncClient(timeout=self._settings.http_timeout)

        self._owns_storage = storage is None
        if storage is None:
            storage = create_storage(
                self._settings.storage,
                directory=self._settings.storage_dir,
                service_name=self._settings.keyring_service,
                redis_url=self._settings.redis_url,
                prefix=self._settings.redis_prefix,
            )
        self._store = SessionStore(storage, clock=self._clock)
        self._pending = PendingRequests(ttl=self._settings.state_ttl_seconds, clock=self._clock)

        self._owns_registry = registry is None
        self._registry = registry or ProviderRegistry(self._settings, self._http_client)

        self._owns_backend = backend is None
        self._backend = backend or self._build_backend(self._settings)

        self._events = EventEmitter()
        self._on_token_expired = on_token_expired
        self._state = AuthState.ANONYMOUS
        self._timer: ScheduledTask | None = None
        self._refresh_task: asyncio.Task[RefreshResult] | None = None
        # Bumped whenever the stored session is replaced or removed so
        # that a refresh completing afterwards is discarded.
        self._generation = 0

    def _build_backend(self, settings: AuthSettings) -> BackendClient:
        return BackendClient(
            settings.api_url,
            self._http_client,
            timeout=settings.http_timeout,
            health_timeout=settings.health_timeout,
        )

    # ── Properties ──────────────────────────────────────────────────

    @property
    def settings(self) -> AuthSettings:
        """The active (frozen) settings."""
        return self._settings

    @property
    def registry(self) -> ProviderRegistry:
        """The provider registry."""
        return self._registry

    @property
    def state(self) -> AuthState:
        """Current lifecycle state."""
        return self._state

    def _set_state(self, new_state: AuthState) -> None:
        previous = self._state
        if previous is new_state:
            return
        self._state = new_state
        logger.debug("Auth state %s -> %s", previous.value, new_state.value)
        self._events.emit(AuthEventType.STATE_CHANGED, previous=previous, current=new_state)

    async def _settle_state(self) -> None:
        """Derive the state from whatever session is stored."""
        session = await self._store.get()
        self._set_state(AuthState.AUTHENTICATED if session else AuthState.ANONYMOUS)

    # ── Events ──────────────────────────────────────────────────────

    def subscribe(
        self,
        handler: Callable[[AuthEvent], Any],
        event_type: AuthEventType | str | None = None,
    ) -> Callable[[], None]:
        """Receive lifecycle events; returns a disposer that unsubscribes."""
        return self._events.subscribe(handler, event_type)

    def _login_error(self, result: AuthResult, provider: str | None) -> AuthResult:
        self._events.emit(
            AuthEventType.LOGIN_ERROR,
            provider=provider,
            error_code=result.error_code,
            error=result.error,
        )
        return result

    # ── Login ───────────────────────────────────────────────────────

    def _is_valid_return_url(self, url: Any) -> bool:
        if not url or not isinstance(url, str):
            return False
        try:
            parsed = urlparse(url)
            host = parsed.hostname
        except ValueError:
            return False
        if parsed.scheme not in ("http", "https") or not host:
            return False
        return not (
            self._settings.require_https and parsed.scheme == "http" and host not in _LOCAL_HOSTS
        )

    def _resolve_provider_name(self, requested: str | None) -> str | None:
        if requested:
            return requested
        if self._settings.default_provider:
            return self._settings.default_provider
        available = self._registry.get_available_providers()
        return available[0].name if len(available) == 1 else None

    async def initiate_login(self, request: LoginRequest | Mapping[str, Any]) -> AuthResult:
        """Start a login and return the provider authorization URL.

        Records a single-use pending request keyed by a fresh ``state``.
        Does not change the auth state; that happens when the callback
        arrives.

        Parameters
        ----------
        request : LoginRequest or dict
            ``return_url`` (required), ``provider``, ``scopes``,
            ``custom_params``.

        Returns
        -------
        AuthResult
            ``auth_url`` and ``state`` on success; ``INVALID_RETURN_URL``
            or ``PROVIDER_UNAVAILABLE`` otherwise.
        """
        if isinstance(request, Mapping):
            request = LoginRequest.from_mapping(request)

        if not self._is_valid_return_url(request.return_url):
            return self._login_error(
                AuthResult.failure(
                    ErrorCode.INVALID_RETURN_URL,
                    f"Invalid return URL: {request.return_url!r}",
                ),
                request.provider,
            )

        name = self._resolve_provider_name(request.provider)
        adapter = self._registry.resolve(name)
        if adapter is None:
            reason = "is disabled" if name and self._registry.is_disabled(name) else "is not available"
            message = f"Provider '{name}' {reason}" if name else "No provider specified"
            return self._login_error(
                AuthResult.failure(ErrorCode.PROVIDER_UNAVAILABLE, message), name
            )

        use_pkce = self._settings.use_pkce and adapter.supports(Capability.PKCE)
        auth_request = AuthorizationRequest(
            provider=adapter.name,
            return_url=request.return_url,
            redirect_uri=adapter.redirect_uri or request.return_url,
            state=generate_state(self._settings.state_entropy_bytes),
            scopes=tuple(request.scopes or adapter.scopes),
            pkce=PKCEChallenge.generate() if use_pkce else None,
            nonce=generate_nonce() if adapter.supports(Capability.OPENID_CONNECT) else None,
            custom_params=dict(request.custom_params),
            created_at=self._clock(),
        )
        auth_url = adapter.get_authorization_url(auth_request)
        self._pending.add(auth_request)

        logger.info("Starting %s login (pkce=%s)", adapter.name, use_pkce)
        self._events.emit(
            AuthEventType.LOGIN_START,
            provider=adapter.name,
            return_url=request.return_url,
        )
        return AuthResult(success=True, auth_url=auth_url, state=auth_request.state)

    # ── Callback ────────────────────────────────────────────────────

    async def handle_callback(self, data: CallbackData | Mapping[str, Any] | str) -> AuthResult:
        """Complete a login from the provider redirect.

        Parameters
        ----------
        data : CallbackData, dict or str
            Callback parameters, or the full redirect URL.

        Returns
        -------
        AuthResult
            ``session``, ``user`` and ``tokens`` on success. A provider
            ``error`` parameter, an unknown or replayed ``state``, a
            missing code, a nonce mismatch or a token exchange failure
            produce a failed result; no session is written.

        Raises
        ------
        ProviderUserInfoError
            If the profile cannot be fetched after a successful exchange.
        """
        if isinstance(data, str):
            data = CallbackData.from_url(data)
        elif isinstance(data, Mapping):
            data = CallbackData.from_mapping(data)

        if data.error:
            request = self._pending.consume(data.state)
            provider = request.provider if request else data.provider
            code = ErrorCode.ACCESS_DENIED if data.error == "access_denied" else ErrorCode.PROVIDER_ERROR
            logger.info("Provider %s returned error %s", provider, data.error)
            return self._login_error(
                AuthResult.failure(code, data.error_description or data.error, data.error_description),
                provider,
            )

        # Consumed before any network call: a replayed state fails here
        # even while the first callback is still exchanging.
        request = self._pending.consume(data.state)
        if request is None or (data.provider and data.provider != request.provider):
            logger.warning("Rejected callback with unknown or reused state")
            return self._login_error(
                AuthResult.failure(
                    ErrorCode.INVALID_STATE,
                    "Invalid state parameter (possible CSRF attack)",
                ),
                data.provider,
            )

        if not data.code:
            return self._login_error(
                AuthResult.failure(ErrorCode.INVALID_CALLBACK, "Callback is missing the authorization code"),
                request.provider,
            )

        adapter = self._registry.resolve(request.provider)
        if adapter is None:
            return self._login_error(
                AuthResult.failure(
                    ErrorCode.PROVIDER_UNAVAILABLE,
                    f"Provider '{request.provider}' is not available",
                ),
                request.provider,
            )

        self._set_state(AuthState.LOGIN_PENDING)
        tokens = await adapter.exchange_code_for_tokens(
            data.code,
            request.state,
            redirect_uri=request.redirect_uri,
            code_verifier=request.pkce.verifier if request.pkce else None,
        )
        if not tokens.success:
            await self._settle_state()
            return self._login_error(
                AuthResult(
                    success=False,
                    tokens=tokens,
                    error=tokens.error,
                    error_description=tokens.error_description,
                    error_code=tokens.error_code,
                ),
                request.provider,
            )

        if not self._nonce_matches(request, tokens):
            await self._settle_state()
            return self._login_error(
                AuthResult.failure(
                    ErrorCode.INVALID_NONCE,
                    "ID token nonce does not match the login request",
                    tokens=tokens,
                ),
                request.provider,
            )

        try:
            user = await adapter.get_user_info(tokens.access_token or "", id_token=tokens.id_token)
        except ProviderUserInfoError as exc:
            await self._settle_state()
            self._login_error(
                AuthResult.failure(ErrorCode.USERINFO_ERROR, exc.message),
                request.provider,
            )
            raise

        session = self._new_session(request.provider, user, tokens)
        self._generation += 1
        await self._store.set(session)
        self._schedule_refresh(session)
        self._set_state(AuthState.AUTHENTICATED)

        logger.info("Signed in with %s", request.provider)
        self._events.emit(
            AuthEventType.LOGIN_SUCCESS,
            provider=request.provider,
            user=user,
            session_id=session.session_id,
        )
        return AuthResult(success=True, session=session, user=user, tokens=tokens)

    @staticmethod
    def _nonce_matches(request: AuthorizationRequest, tokens: TokenResult) -> bool:
        """Compare the ID token nonce when both sides have one to compare."""
        if not request.nonce or not tokens.id_token:
            return True
        try:
            claims = decode_jwt_claims(tokens.id_token)
        except TokenDecodeError:
            logger.debug("ID token is not a decodable JWT; skipping nonce check")
            return True
        return claims.get("nonce") == request.nonce

    def _lifetime(self, tokens: TokenResult) -> int:
        if tokens.expires_in is None:
            return self._settings.default_token_lifetime
        return tokens.expires_in

    def _new_session(self, provider: str, user: UserProfile, tokens: TokenResult) -> Session:
        now = self._clock()
        return Session(
            session_id=generate_session_id(),
            user=user,
            access_token=tokens.access_token or "",
            refresh_token=tokens.refresh_token,
            id_token=tokens.id_token,
            token_type=tokens.token_type,
            expires_at=now + self._lifetime(tokens),
            provider=provider,
            created_at=now,
        )

    # ── Session ─────────────────────────────────────────────────────

    async def initialize(self) -> Session | None:
        """Restore a persisted session and arm auto-refresh for it."""
        session = await self._store.get()
        if session is not None:
            self._schedule_refresh(session)
            self._set_state(AuthState.AUTHENTICATED)
            logger.debug("Restored session %s", session.session_id)
        return session

    async def get_current_session(self) -> Session | None:
        """Return the stored session, or None if absent or expired."""
        session = await self._store.get()
        if session is None and self._state is AuthState.AUTHENTICATED:
            self._cancel_timer()
            self._set_state(AuthState.ANONYMOUS)
        return session

    async def is_authenticated(self) -> bool:
        """Check for a live session."""
        return await self.get_current_session() is not None

    async def get_user(self) -> UserProfile | None:
        """Profile of the signed-in user, if any."""
        session = await self.get_current_session()
        return session.user if session else None

    async def get_access_token(self) -> str | None:
        """Access token of the live session, if any."""
        session = await self.get_current_session()
        return session.access_token if session else None

    # ── Refresh ─────────────────────────────────────────────────────

    async def refresh_session(self) -> RefreshResult:
        """Refresh the current session's tokens.

        Concurrent callers share one in-flight refresh. A failed refresh
        leaves the stored session untouched.

        Returns
        -------
        RefreshResult
            The updated session on success; ``SESSION_NOT_FOUND``,
            ``NO_REFRESH_TOKEN`` or the provider failure otherwise.
        """
        if self._refresh_task is None or self._refresh_task.done():
            self._refresh_task = asyncio.ensure_future(self._do_refresh())
        return await asyncio.shield(self._refresh_task)

    async def _do_refresh(self) -> RefreshResult:
        session = await self._store.get()
        if session is None:
            return RefreshResult.failure(ErrorCode.SESSION_NOT_FOUND, "No active session")
        if not session.refresh_token:
            return RefreshResult.failure(
                ErrorCode.NO_REFRESH_TOKEN,
                "The current session has no refresh token",
            )
        adapter = self._registry.resolve(session.provider)
        if adapter is None:
            return RefreshResult.failure(
                ErrorCode.PROVIDER_UNAVAILABLE,
                f"Provider '{session.provider}' is not available",
            )

        generation = self._generation
        self._set_state(AuthState.REFRESH_PENDING)
        tokens = await adapter.refresh_tokens(session.refresh_token)

        if generation != self._generation:
            logger.info("Discarding refresh result; the session changed while refreshing")
            return RefreshResult.failure(
                ErrorCode.SESSION_NOT_FOUND,
                "Session ended while the refresh was in flight",
                tokens=tokens,
            )

        if not tokens.success:
            logger.info("Refresh with %s failed: %s", session.provider, tokens.error)
            await self._settle_state()
            return RefreshResult.failure(
                tokens.error_code or ErrorCode.PROVIDER_ERROR,
                tokens.error or "Refresh failed",
                tokens.error_description,
                tokens=tokens,
            )

        refreshed = dataclasses.replace(
            session,
            user=self._refreshed_user(adapter, session, tokens),
            access_token=tokens.access_token or session.access_token,
            refresh_token=tokens.refresh_token or session.refresh_token,
            id_token=tokens.id_token or session.id_token,
            token_type=tokens.token_type,
            expires_at=self._clock() + self._lifetime(tokens),
        )
        await self._store.set(refreshed)
        self._schedule_refresh(refreshed)
        self._set_state(AuthState.AUTHENTICATED)
        logger.debug("Refreshed session %s", refreshed.session_id)
        self._events.emit(
            AuthEventType.SESSION_REFRESHED,
            session_id=refreshed.session_id,
            expires_at=refreshed.expires_at,
        )
        return RefreshResult(success=True, session=refreshed, tokens=tokens)

    @staticmethod
    def _refreshed_user(adapter: OAuthProvider, session: Session, tokens: TokenResult) -> UserProfile:
        """Profile from a new ID token, when it describes the same user."""
        if not tokens.id_token:
            return session.user
        try:
            profile = adapter.map_claims(decode_jwt_claims(tokens.id_token))
        except TokenDecodeError:
            return session.user
        return profile if profile.id == session.user.id else session.user

    # ── Auto-refresh ────────────────────────────────────────────────

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _schedule_refresh(self, session: Session) -> None:
        """Arm the single refresh timer at ``expires_at - skew``.

        Tokens living no longer than twice the skew are refreshed halfway
        through their remaining lifetime instead.
        """
        self._cancel_timer()
        if not self._settings.auto_refresh:
            return
        remaining = session.expires_at - self._clock()
        lead = min(self._settings.refresh_skew_seconds, remaining / 2)
        delay = max(0.0, remaining - lead)
        self._timer = self._scheduler.call_later(delay, self._on_refresh_timer)
        logger.debug("Auto-refresh armed in %.0fs", delay)

    async def _on_refresh_timer(self) -> None:
        self._timer = None
        if self._refresh_task is not None and not self._refresh_task.done():
            logger.debug("Refresh already in flight; skipping timer")
            return
        generation = self._generation
        result = await self.refresh_session()
        if result.success or generation != self._generation:
            return

        logger.warning("Auto-refresh failed: %s", result.error)
        self._events.emit(AuthEventType.TOKEN_EXPIRED, error_code=result.error_code, error=result.error)
        if self._on_token_expired is not None:
            try:
                outcome = self._on_token_expired(result)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception:
                logger.exception("on_token_expired callback failed")

    # ── Sign-out ────────────────────────────────────────────────────

    async def sign_out(self) -> bool:
        """Clear local state, then attempt remote logout and revocation.

        Returns
        -------
        bool
            Always True. Whether the backend logout and token revocation
            also succeeded is reported as ``remote_synced`` on the
            ``logout-success`` event.
        """
        self._events.emit(AuthEventType.LOGOUT_START)
        self._generation += 1
        self._cancel_timer()

        session: Session | None = None
        try:
            session = await self._store.get()
        except Exception:
            logger.warning("Could not read the session being signed out", exc_info=True)
        try:
            await self._store.clear()
        except Exception:
            logger.exception("Failed to clear the stored session")
        self._pending.clear()
        self._set_state(AuthState.ANONYMOUS)

        remote_synced = await self._sign_out_remote(session)
        logger.info("Signed out (remote_synced=%s)", remote_synced)
        self._events.emit(AuthEventType.LOGOUT_SUCCESS, remote_synced=remote_synced)
        return True

    async def _sign_out_remote(self, session: Session | None) -> bool:
        synced = True
        try:
            await self._backend.logout(session.access_token if session else None)
        except BackendError as exc:
            logger.info("Backend logout failed: %s", exc)
            synced = False
        except Exception:
            logger.warning("Backend logout raised unexpectedly", exc_info=True)
            synced = False

        if session is None or not self._settings.revoke_on_sign_out:
            return synced
        adapter = self._registry.resolve(session.provider)
        if adapter is None or not adapter.supports(Capability.REVOKE):
            return synced
        try:
            revoked = await adapter.revoke_tokens([session.access_token, session.refresh_token])
        except Exception:
            logger.warning("Token revocation raised unexpectedly", exc_info=True)
            revoked = False
        return synced and revoked

    # ── Authorization queries ───────────────────────────────────────

    async def _safe_user(self) -> UserProfile | None:
        try:
            return await self.get_user()
        except Exception:
            logger.warning("Could not read the session for an authorization check", exc_info=True)
            return None

    async def has_role(self, role: str) -> bool:
        """Check whether the signed-in user has ``role``."""
        user = await self._safe_user()
        return user is not None and role in user.roles

    async def has_permission(self, permission: str) -> bool:
        """Check whether the signed-in user has ``permission``."""
        user = await self._safe_user()
        return user is not None and permission in user.permissions

    async def has_any_role(self, roles: Iterable[str]) -> bool:
        """Check whether the signed-in user has at least one of ``roles``."""
        user = await self._safe_user()
        return user is not None and not set(user.roles).isdisjoint(roles)

    async def has_any_permission(self, permissions: Iterable[str]) -> bool:
        """Check whether the signed-in user has at least one of ``permissions``."""
        user = await self._safe_user()
        return user is not None and not set(user.permissions).isdisjoint(permissions)

    # ── Providers & health ──────────────────────────────────────────

    def get_available_providers(self) -> list[ProviderInfo]:
        """Enabled providers, in declared order."""
        return self._registry.get_available_providers()

    async def get_health_status(self) -> dict[str, HealthStatus]:
        """Probe every enabled provider and the backend concurrently.

        Returns
        -------
        dict[str, HealthStatus]
            Keyed by provider name, plus ``"backend"``.
        """
        adapters = list(self._registry)
        statuses = await asyncio.gather(
            *(adapter.get_health_status() for adapter in adapters),
            self._backend.health(),
        )
        result = {adapter.name: status for adapter, status in zip(adapters, statuses)}
        result["backend"] = statuses[-1]
        return result

    # ── Reconfiguration & lifecycle ─────────────────────────────────

    async def configure(self, **overrides: Any) -> AuthSettings:
        """Apply setting overrides to this client.

        Providers and the backend client are rebuilt unless they were
        injected. The storage backing is kept; a storage change applies
        to clients created afterwards.

        Raises
        ------
        ConfigurationError
            If the merged settings are invalid. The client keeps its
            previous settings.
        """
        new_settings = self._settings.configure(**overrides)
        if self._owns_registry:
            registry = ProviderRegistry(new_settings, self._http_client)
            await self._registry.close()
            self._registry = registry
        if self._owns_backend:
            self._backend = self._build_backend(new_settings)
        self._pending.ttl = new_settings.state_ttl_seconds
        self._settings = new_settings

        session = await self._store.get()
        if session is not None:
            self._schedule_refresh(session)
        return new_settings

    async def close(self) -> None:
        """Cancel timers and release owned resources."""
        self._cancel_timer()
        if self._refresh_task is not None and not self._refresh_task.done():
            self._refresh_task.cancel()
        if self._owns_scheduler:
            self._scheduler.close()
        if self._owns_registry:
            await self._registry.close()
        if self._owns_backend:
            await self._backend.close()
        if self._owns_storage:
            await self._store.backend.close()
        if self._owns_http_client and not self._http_client.is_closed:
            await self._http_client.aclose()
        self._events.clear()

    async def __aenter__(self) -> AuthClient:
        await self.initialize()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()
