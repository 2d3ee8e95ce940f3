"""easyauth exception hierarchy and error codes.

All easyauth-specific exceptions inherit from EasyAuthError, enabling
catch-all handling while supporting specific error types. Expected
protocol failures are not raised; they are reported through result
objects carrying an ``ErrorCode``.
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Machine-readable failure codes carried by result objects."""

    INVALID_CONFIG = "invalid_config"
    INVALID_STATE = "invalid_state"
    INVALID_RETURN_URL = "invalid_return_url"
    INVALID_CALLBACK = "invalid_callback"
    INVALID_NONCE = "invalid_nonce"
    PROVIDER_UNAVAILABLE = "provider_unavailable"
    ACCESS_DENIED = "access_denied"
    PROVIDER_ERROR = "provider_error"
    TRANSPORT_ERROR = "transport_error"
    NO_REFRESH_TOKEN = "no_refresh_token"
    SESSION_NOT_FOUND = "session_not_found"
    USERINFO_ERROR = "userinfo_error"
    BACKEND_ERROR = "backend_error"
    UNKNOWN_ERROR = "unknown_error"


class EasyAuthError(Exception):
    """Base exception for all easyauth errors."""

    code: ErrorCode = ErrorCode.UNKNOWN_ERROR

    def __init__(self, message: str, **context: Any) -> None:
        """Initialize easyauth exception.

        Parameters
        ----------
        message : str
            Human-readable error message.
        **context : Any
            Additional context (provider, field, status_code, etc.).
        """
        super().__init__(message)
        self.message = message
        self.context = {k: v for k, v in context.items() if v is not None}

    def __str__(self) -> str:
        """Format exception with context."""
        if self.context:
            ctx = ", ".join(f"{k}={v!r}" for k, v in self.context.items())
            return f"{self.message} ({ctx})"
        return self.message


class ConfigurationError(EasyAuthError):
    """Invalid client or provider configuration.

    Raised at construction time. Never recoverable at runtime; the
    configuration has to be fixed.
    """

    code = ErrorCode.INVALID_CONFIG

    def __init__(
        self,
        message: str,
        provider: str | None = None,
        field: str | None = None,
        **context: Any,
    ) -> None:
        """Initialize configuration error.

        Parameters
        ----------
        message : str
            Human-readable error message.
        provider : str, optional
            The provider whose configuration is invalid.
        field : str, optional
            The offending configuration field.
        **context : Any
            Additional context.
        """
        if provider is not None:
            context["provider"] = provider
        if field is not None:
            context["field"] = field
        super().__init__(message, **context)
        self.provider = provider
        self.field = field


class ProviderError(EasyAuthError):
    """An identity provider call failed."""

    code = ErrorCode.PROVIDER_ERROR

    def __init__(
        self,
        message: str,
        provider: str | None = None,
        status_code: int | None = None,
        **context: Any,
    ) -> None:
        """Initialize provider error.

        Parameters
        ----------
        message : str
            Human-readable error message.
        provider : str, optional
            The provider name.
        status_code : int, optional
            HTTP status returned by the provider, if any.
        **context : Any
            Additional context.
        """
        super().__init__(message, provider=provider, status_code=status_code, **context)
        self.provider = provider
        self.status_code = status_code


class ProviderUserInfoError(ProviderError):
    """Fetching or mapping the user profile failed.

    A session cannot exist without a profile, so this is raised rather
    than returned.
    """

    code = ErrorCode.USERINFO_ERROR


class TokenDecodeError(EasyAuthError):
    """A JWT could not be structurally decoded."""


class SessionError(EasyAuthError):
    """A session record is incomplete or otherwise unusable."""

    code = ErrorCode.SESSION_NOT_FOUND


class StorageError(EasyAuthError):
    """A storage backend operation failed."""

    def __init__(self, message: str, backend: str | None = None, **context: Any) -> None:
        """Initialize storage error.

        Parameters
        ----------
        message : str
            Human-readable error message.
        backend : str, optional
            The storage backend name.
        **context : Any
            Additional context.
        """
        super().__init__(message, backend=backend, **context)
        self.backend = backend


class BackendError(EasyAuthError):
    """The backend API collaborator returned an error."""

    code = ErrorCode.BACKEND_ERROR

    def __init__(
        self,
        message: str,
        endpoint: str | None = None,
        status_code: int | None = None,
        correlation_id: str | None = None,
        **context: Any,
    ) -> None:
        """Initialize backend error.

        Parameters
        ----------
        message : str
            Human-readable error message.
        endpoint : str, optional
            The backend endpoint path.
        status_code : int, optional
            HTTP status code.
        correlation_id : str, optional
            Correlation id from the response envelope.
        **context : Any
            Additional context.
        """
        super().__init__(
            message,
            endpoint=endpoint,
            status_code=status_code,
            correlation_id=correlation_id,
            **context,
        )
        self.endpoint = endpoint
        self.status_code = status_code
        self.correlation_id = correlation_id
