"""Name-to-adapter lookup for configured identity providers."""

from __future__ import annotations

import logging

from typing import TYPE_CHECKING

from .providers import create_provider


if TYPE_CHECKING:
    from collections.abc import Iterator

    import httpx

    from .config import AuthSettings
    from .providers import OAuthProvider
    from .types import ProviderInfo


logger = logging.getLogger("easyauth.registry")


class ProviderRegistry:
    """Holds one adapter per enabled provider, in declared order.

    Disabled providers are remembered by name only; no adapter is built
    for them, so their configuration is never validated or used.

    Parameters
    ----------
    settings : AuthSettings, optional
        Settings to build adapters from. An empty registry when omitted.
    http_client : httpx.AsyncClient, optional
        Client shared by every adapter.
    """

    def __init__(
        self,
        settings: AuthSettings | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._adapters: dict[str, OAuthProvider] = {}
        self._disabled: set[str] = set()
        self._http_client = http_client
        if settings is None:
            return
        for name, provider_settings in settings.providers.items():
            if not provider_settings.enabled:
                self._disabled.add(name)
                logger.debug("Provider %s is disabled", name)
                continue
            adapter = create_provider(
                name,
                provider_settings,
                http_client=http_client,
                timeout=settings.http_timeout,
                health_timeout=settings.health_timeout,
            )
            self.register(name, adapter)

    def register(self, name: str, adapter: OAuthProvider, enabled: bool = True) -> None:
        """Add or replace the adapter for ``name``.

        Parameters
        ----------
        name : str
            Provider name used by ``resolve``.
        adapter : OAuthProvider
            A constructed adapter.
        enabled : bool
            Register the name as disabled instead.
        """
        if not enabled:
            self._adapters.pop(name, None)
            self._disabled.add(name)
            return
        self._disabled.discard(name)
        self._adapters[name] = adapter
        logger.debug("Registered provider %s (%s)", name, adapter.provider_type)

    def resolve(self, name: str | None) -> OAuthProvider | None:
        """Return the adapter for an enabled provider, else None.

        Lookup is case-sensitive.
        """
        if not name:
            return None
        return self._adapters.get(name)

    def is_disabled(self, name: str) -> bool:
        """Check whether ``name`` is configured but disabled."""
        return name in self._disabled

    def get_available_providers(self) -> list[ProviderInfo]:
        """Describe every enabled provider, in declared order."""
        return [adapter.info() for adapter in self._adapters.values()]

    def get_provider_info(self, name: str) -> ProviderInfo | None:
        """Describe one enabled provider."""
        adapter = self.resolve(name)
        return adapter.info() if adapter is not None else None

    def __contains__(self, name: object) -> bool:
        return name in self._adapters

    def __len__(self) -> int:
        return len(self._adapters)

    def __iter__(self) -> Iterator[OAuthProvider]:
        return iter(self._adapters.values())

    async def close(self) -> None:
        """Close adapters that own their HTTP client."""
        for adapter in self._adapters.values():
            await adapter.close()
