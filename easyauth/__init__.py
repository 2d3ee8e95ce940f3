"""Client-side OAuth2 / OpenID Connect authentication engine.

Provides provider adapters (Google, Apple, Facebook, Azure AD B2C and
custom OAuth2/OIDC), PKCE and state generation, an expiry-aware session
store over pluggable storage, and ``AuthClient``, the login/callback
state machine with auto-refresh.
"""

from __future__ import annotations

from .backend import ApiResponse, BackendClient
from .client import AuthClient
from .config import AuthSettings, clear_settings, get_settings, load_settings, reload_settings
from .exceptions import (
    BackendError,
    ConfigurationError,
    EasyAuthError,
    ErrorCode,
    ProviderError,
    ProviderUserInfoError,
    SessionError,
    StorageError,
    TokenDecodeError,
)
from .pkce import PKCEChallenge, generate_nonce, generate_state
from .providers import (
    AppleProvider,
    AzureB2CProvider,
    CustomProvider,
    FacebookProvider,
    GoogleProvider,
    OAuthProvider,
    create_provider,
)
from .registry import ProviderRegistry
from .scheduler import AsyncioScheduler, ManualScheduler, Scheduler, VirtualClock
from .session import SessionStore
from .storage import (
    FileStorage,
    KeyringStorage,
    MemoryStorage,
    RedisStorage,
    SessionScopedStorage,
    StorageBackend,
    create_storage,
)
from .types import (
    AuthEvent,
    AuthEventType,
    AuthResult,
    AuthState,
    CallbackData,
    Capability,
    HealthStatus,
    LoginRequest,
    ProviderInfo,
    RefreshResult,
    Session,
    TokenResult,
    UserProfile,
)


__version__ = "0.1.0"

__all__ = [
    "ApiResponse",
    "AppleProvider",
    "AsyncioScheduler",
    "AuthClient",
    "AuthEvent",
    "AuthEventType",
    "AuthResult",
    "AuthSettings",
    "AuthState",
    "AzureB2CProvider",
    "BackendClient",
    "BackendError",
    "CallbackData",
    "Capability",
    "ConfigurationError",
    "CustomProvider",
    "EasyAuthError",
    "ErrorCode",
    "FacebookProvider",
    "FileStorage",
    "GoogleProvider",
    "HealthStatus",
    "KeyringStorage",
    "LoginRequest",
    "ManualScheduler",
    "MemoryStorage",
    "OAuthProvider",
    "PKCEChallenge",
    "ProviderError",
    "ProviderInfo",
    "ProviderRegistry",
    "ProviderUserInfoError",
    "RedisStorage",
    "RefreshResult",
    "Scheduler",
    "Session",
    "SessionError",
    "SessionScopedStorage",
    "SessionStore",
    "StorageBackend",
    "StorageError",
    "TokenDecodeError",
    "TokenResult",
    "UserProfile",
    "VirtualClock",
    "clear_settings",
    "create_provider",
    "create_storage",
    "generate_nonce",
    "generate_state",
    "get_settings",
    "load_settings",
    "reload_settings",
]
