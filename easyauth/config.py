"""Configuration system for easyauth using pydantic-settings.

Supports layered configuration:
1. Built-in defaults (lowest priority)
2. Environment variables
3. pyproject.toml [tool.easyauth] section (project-level)
4. ./easyauth.toml (project-level, explicit)
5. ~/.config/easyauth/config.toml (user-level, overrides project)
6. Explicit keyword arguments (highest priority)

Environment variables use the EASYAUTH__ prefix with nested delimiter __.
Example: EASYAUTH__API_BASE_URL, EASYAUTH__STORAGE, EASYAUTH_LOG__LEVEL

Providers are a tagged union keyed by ``type``. When ``type`` is omitted
it is inferred from the provider name (``google``, ``apple``,
``facebook``, ``azure_b2c``), falling back to ``custom``.
"""

from __future__ import annotations

import logging
import os
import sys

from functools import lru_cache
from pathlib import Path
from typing import Annotated, Any, Literal, Union
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .exceptions import ConfigurationError


if sys.version_info >= (3, 11):
    import tomllib
else:
    try:
        import tomli as tomllib  # type: ignore[import-not-found]
    except ImportError:
        tomllib = None


logger = logging.getLogger("easyauth.config")


def _find_config_files() -> list[Path]:
    """Find all configuration files in order of precedence (lowest first)."""
    files = []

    pyproject = Path("pyproject.toml")
    if pyproject.exists():
        files.append(pyproject)

    easyauth_toml = Path("easyauth.toml")
    if easyauth_toml.exists():
        files.append(easyauth_toml)

    if sys.platform == "win32":
        user_config = Path(os.environ.get("APPDATA", "~")) / "easyauth" / "config.toml"
    else:
        user_config = Path("~/.config/easyauth/config.toml")
    user_config = user_config.expanduser()
    if user_config.exists():
        files.append(user_config)

    env_config = os.environ.get("EASYAUTH_CONFIG_FILE")
    if env_config:
        env_path = Path(env_config)
        if env_path.exists():
            files.append(env_path)

    return files


def _load_toml_config() -> dict[str, Any]:
    """Load and merge all TOML configuration files."""
    if tomllib is None:
        return {}

    merged: dict[str, Any] = {}

    for config_file in _find_config_files():
        try:
            data = tomllib.loads(config_file.read_text(encoding="utf-8"))
        except (OSError, tomllib.TOMLDecodeError) as exc:
            logger.warning("Ignoring unreadable config file %s: %s", config_file, exc)
            continue

        if config_file.name == "pyproject.toml":
            data = data.get("tool", {}).get("easyauth", {})

        merged = _deep_merge(merged, data)

    return merged


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Deep merge two dictionaries."""
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _split_scopes(value: Any) -> Any:
    """Accept a space or comma separated string as well as a list."""
    if isinstance(value, str):
        return [s for s in value.replace(",", " ").split() if s]
    return value


# Field names that contain sensitive data and must be redacted in output.
_SENSITIVE_FIELDS: set[str] = {
    "client_secret",
    "redis_url",
}

_REDACTED = "********"


# ── Provider settings (tagged union) ────────────────────────────────


class ProviderSettings(BaseModel):
    """Fields shared by every provider configuration."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    client_id: str = Field(default="", description="OAuth2 client ID issued by the provider")
    client_secret: str = Field(
        default="",
        description="OAuth2 client secret (empty for public clients using PKCE)",
    )
    scopes: list[str] = Field(
        default_factory=list,
        description="Scopes to request; provider defaults apply when empty",
    )
    enabled: bool = Field(default=True, description="Offer this provider for login")
    display_name: str = Field(default="", description="Human-readable provider name")
    redirect_uri: str = Field(
        default="",
        description="Registered redirect URI; the login return URL is used when empty",
    )
    extra_params: dict[str, str] = Field(
        default_factory=dict,
        description="Additional authorize-URL parameters sent on every login",
    )

    @field_validator("scopes", mode="before")
    @classmethod
    def _parse_scopes(cls, v: Any) -> Any:
        return _split_scopes(v)


class GoogleProviderSettings(ProviderSettings):
    """Google OAuth2 / OpenID Connect."""

    type: Literal["google"] = "google"
    hosted_domain: str = Field(default="", description="Restrict login to a Workspace domain (hd)")
    prompt: str = Field(default="", description="Authorize prompt, e.g. 'consent'")
    access_type: Literal["online", "offline"] = Field(
        default="offline",
        description="'offline' requests a refresh token",
    )


class AppleProviderSettings(ProviderSettings):
    """Sign in with Apple."""

    type: Literal["apple"] = "apple"
    team_id: str = Field(description="Apple Developer team ID (10 characters)")
    key_id: str = Field(default="", description="Key ID of the Sign in with Apple private key")
    response_mode: Literal["form_post", "query", "fragment"] = "form_post"


class FacebookProviderSettings(ProviderSettings):
    """Facebook Login."""

    type: Literal["facebook"] = "facebook"
    graph_version: str = Field(default="v18.0", description="Graph API version")


class AzureB2CProviderSettings(ProviderSettings):
    """Azure AD B2C user flows."""

    type: Literal["azure_b2c"] = "azure_b2c"
    tenant_id: str = Field(description="B2C tenant, e.g. 'contoso.onmicrosoft.com'")
    policy: str = Field(description="Sign-up/sign-in user flow, e.g. 'B2C_1_susi'")
    password_reset_policy: str = Field(default="", description="Password reset user flow")
    custom_domain: str = Field(default="", description="Custom authority domain, if configured")


class CustomProviderSettings(ProviderSettings):
    """Any OAuth2 / OIDC provider with explicit endpoints."""

    type: Literal["custom"] = "custom"
    authorize_url: str = Field(description="Authorization endpoint URL")
    token_url: str = Field(description="Token endpoint URL")
    userinfo_url: str = Field(default="", description="User info endpoint URL")
    revocation_url: str = Field(default="", description="RFC 7009 revocation endpoint URL")
    issuer_url: str = Field(default="", description="OIDC issuer (health probe uses discovery)")
    health_url: str = Field(default="", description="Explicit health probe URL")
    use_pkce: bool = Field(default=True, description="Send PKCE challenges")
    supports_refresh: bool = Field(default=True, description="Provider issues refresh tokens")


ProviderConfig = Annotated[
    Union[
        GoogleProviderSettings,
        AppleProviderSettings,
        FacebookProviderSettings,
        AzureB2CProviderSettings,
        CustomProviderSettings,
    ],
    Field(discriminator="type"),
]

_KNOWN_TYPES = {
    "google": "google",
    "apple": "apple",
    "facebook": "facebook",
    "azure_b2c": "azure_b2c",
    "azureb2c": "azure_b2c",
}


def _infer_provider_type(name: str) -> str:
    return _KNOWN_TYPES.get(name.lower().replace("-", "_"), "custom")


# ── Top-level settings ──────────────────────────────────────────────


class LogSettings(BaseSettings):
    """Logging settings.

    Environment prefix: EASYAUTH_LOG__
    Example: EASYAUTH_LOG__LEVEL=DEBUG
    """

    model_config = SettingsConfigDict(
        env_prefix="EASYAUTH_LOG__",
        extra="ignore",
        frozen=True,
    )

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "WARNING"
    format: str = "%(name)s - %(levelname)s - %(message)s"


StorageMode = Literal["local", "session", "memory", "keyring", "redis"]


class AuthSettings(BaseSettings):
    """Client configuration.

    Environment prefix: EASYAUTH__

    Instances are frozen; use ``configure()`` to derive a modified copy.
    Invalid combinations (missing base URL, an enabled provider without
    a client id, an unknown default provider) fail validation.
    """

    model_config = SettingsConfigDict(
        env_prefix="EASYAUTH__",
        env_nested_delimiter="__",
        extra="ignore",
        frozen=True,
    )

    api_base_url: str = Field(default="", description="Base URL of the backend API")
    api_prefix: str = Field(default="/api", description="Path prefix of the backend auth routes")
    providers: dict[str, ProviderConfig] = Field(
        default_factory=dict,
        description="Provider name -> provider settings, in display order",
    )
    default_provider: str = Field(default="", description="Provider used when a login names none")

    storage: StorageMode = Field(
        default="local",
        description="Session storage: local, session, memory, keyring, or redis",
    )
    storage_dir: str = Field(
        default="~/.easyauth",
        description="Directory for the 'local' file storage",
    )
    redis_url: str = Field(default="redis://localhost:6379/0", description="Redis connection URL")
    redis_prefix: str = Field(default="easyauth", description="Redis key prefix")
    keyring_service: str = Field(default="easyauth", description="Keyring service name")

    auto_refresh: bool = Field(default=True, description="Refresh tokens before they expire")
    refresh_skew_seconds: float = Field(
        default=60.0,
        ge=0,
        description="Seconds before expiry at which auto-refresh fires",
    )
    default_token_lifetime: int = Field(
        default=3600,
        gt=0,
        description="Lifetime assumed when the provider omits expires_in",
    )
    state_ttl_seconds: float = Field(
        default=600.0,
        gt=0,
        description="Seconds a pending login may wait for its callback",
    )
    state_entropy_bytes: int = Field(default=32, ge=16, description="Random bytes per state value")
    use_pkce: bool = Field(default=True, description="Use PKCE where the provider supports it")
    require_https: bool = Field(
        default=False,
        description="Reject http return URLs other than localhost",
    )
    revoke_on_sign_out: bool = Field(default=True, description="Revoke tokens at sign-out")

    http_timeout: float = Field(default=30.0, gt=0, description="HTTP timeout in seconds")
    health_timeout: float = Field(default=5.0, gt=0, description="Health probe timeout in seconds")

    log: LogSettings = Field(default_factory=LogSettings)

    def __init__(self, **data: Any) -> None:
        toml_config = _load_toml_config()
        merged = _deep_merge(toml_config, data)
        super().__init__(**merged)

    @field_validator("providers", mode="before")
    @classmethod
    def _tag_providers(cls, v: Any) -> Any:
        """Infer each provider's ``type`` from its name when missing."""
        if not isinstance(v, dict):
            return v
        tagged: dict[str, Any] = {}
        for name, conf in v.items():
            if isinstance(conf, dict) and "type" not in conf:
                conf = {**conf, "type": _infer_provider_type(name)}
            tagged[name] = conf
        return tagged

    @model_validator(mode="after")
    def _validate(self) -> AuthSettings:
        parsed = urlparse(self.api_base_url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            msg = f"api_base_url must be an absolute http(s) URL, got {self.api_base_url!r}"
            raise ValueError(msg)
        for name, provider in self.providers.items():
            if provider.enabled and not provider.client_id.strip():
                msg = f"Provider '{name}' is enabled but has no client_id"
                raise ValueError(msg)
        if self.default_provider:
            default = self.providers.get(self.default_provider)
            if default is None:
                msg = f"default_provider '{self.default_provider}' is not configured"
                raise ValueError(msg)
            if not default.enabled:
                msg = f"default_provider '{self.default_provider}' is disabled"
                raise ValueError(msg)
        return self

    @property
    def api_url(self) -> str:
        """Base URL joined with the API prefix."""
        prefix = self.api_prefix.strip("/")
        base = self.api_base_url.rstrip("/")
        return f"{base}/{prefix}" if prefix else base

    def configure(self, **overrides: Any) -> AuthSettings:
        """Return a validated copy with ``overrides`` deep-merged in.

        Raises
        ------
        ConfigurationError
            If the merged configuration is invalid.
        """
        merged = _deep_merge(self.model_dump(), overrides)
        try:
            return type(self).model_validate(merged)
        except ValidationError as exc:
            raise _config_error(exc) from exc

    def to_toml(self) -> str:
        """Export settings as TOML string."""
        lines = ["# easyauth configuration", "# Generated by: easyauth config --toml", ""]
        data = self.model_dump(exclude={"providers", "log"} | _SENSITIVE_FIELDS)
        for field_name, field_value in data.items():
            lines.append(f"{field_name} = {_toml_value(field_value)}")
        lines.extend(
            f'{rn} = "{_REDACTED}"'
            for rn in sorted(_SENSITIVE_FIELDS & type(self).model_fields.keys())
        )
        lines.append("")

        lines.append("[log]")
        for field_name, field_value in self.log.model_dump().items():
            lines.append(f"{field_name} = {_toml_value(field_value)}")
        lines.append("")

        for name, provider in self.providers.items():
            lines.append(f"[providers.{name}]")
            for field_name, field_value in provider.model_dump(exclude=_SENSITIVE_FIELDS).items():
                if isinstance(field_value, dict):
                    continue
                lines.append(f"{field_name} = {_toml_value(field_value)}")
            if provider.client_secret:
                lines.append(f'client_secret = "{_REDACTED}"')
            if provider.extra_params:
                lines.append("")
                lines.append(f"[providers.{name}.extra_params]")
                lines.extend(f"{k} = {_toml_value(v)}" for k, v in provider.extra_params.items())
            lines.append("")

        return "\n".join(lines)

    def show(self) -> str:
        """Format settings as a readable table."""
        lines = ["easyauth Configuration", "=" * 60, ""]

        lines.append("General")
        lines.append("-" * 40)
        data = self.model_dump(exclude={"providers", "log"} | _SENSITIVE_FIELDS)
        for field_name, field_value in data.items():
            value_str = str(field_value)
            if len(value_str) > 50:
                value_str = value_str[:47] + "..."
            lines.append(f"  {field_name:24} = {value_str}")
        lines.extend(
            f"  {rn:24} = {_REDACTED}"
            for rn in sorted(_SENSITIVE_FIELDS & type(self).model_fields.keys())
        )

        lines.append("\nLogging")
        lines.append("-" * 40)
        lines.extend(f"  {k:24} = {v}" for k, v in self.log.model_dump().items())

        lines.append("\nProviders")
        lines.append("-" * 40)
        if not self.providers:
            lines.append("  (none configured)")
        for name, provider in self.providers.items():
            status = "enabled" if provider.enabled else "disabled"
            default = " (default)" if name == self.default_provider else ""
            lines.append(f"  {name} [{provider.type}, {status}]{default}")
            lines.append(f"    {'client_id':22} = {provider.client_id}")
            if provider.client_secret:
                lines.append(f"    {'client_secret':22} = {_REDACTED}")
            if provider.scopes:
                lines.append(f"    {'scopes':22} = {' '.join(provider.scopes)}")

        return "\n".join(lines)


def _toml_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, list):
        return "[" + ", ".join(f'"{v}"' for v in value) + "]"
    if isinstance(value, str):
        escaped = value.replace("\\", "\\\\").replace('"', '\\"')
        return f'"{escaped}"'
    return str(value)


def _config_error(exc: ValidationError) -> ConfigurationError:
    """Convert a pydantic validation failure into a ConfigurationError."""
    problems = []
    for err in exc.errors():
        loc = ".".join(str(part) for part in err.get("loc", ()))
        problems.append(f"{loc}: {err.get('msg')}" if loc else str(err.get("msg")))
    msg = "Invalid easyauth configuration: " + "; ".join(problems)
    return ConfigurationError(msg, errors=len(problems))


def load_settings(data: AuthSettings | dict[str, Any] | None = None, **overrides: Any) -> AuthSettings:
    """Build validated settings from a mapping, an instance, or the environment.

    Parameters
    ----------
    data : AuthSettings or dict, optional
        Base configuration. ``None`` reads TOML files and the environment.
    **overrides : Any
        Values deep-merged on top of ``data``.

    Returns
    -------
    AuthSettings
        The validated settings.

    Raises
    ------
    ConfigurationError
        If the configuration is invalid.
    """
    if isinstance(data, AuthSettings):
        return data.configure(**overrides) if overrides else data
    try:
        return AuthSettings(**_deep_merge(dict(data or {}), overrides))
    except ValidationError as exc:
        raise _config_error(exc) from exc


@lru_cache(maxsize=1)
def get_settings() -> AuthSettings:
    """Get the global settings instance (cached).

    Call clear_settings() to reload configuration.
    """
    return load_settings()


def clear_settings() -> None:
    """Clear the cached settings to force reload."""
    get_settings.cache_clear()


def reload_settings() -> AuthSettings:
    """Reload settings from all sources."""
    clear_settings()
    return get_settings()
