"""Tests for the provider registry."""

from __future__ import annotations

import asyncio

import pytest

from easyauth.config import load_settings
from easyauth.exceptions import ConfigurationError
from easyauth.providers import FacebookProvider, GoogleProvider
from easyauth.registry import ProviderRegistry

from tests.constants import FACEBOOK_APP_ID, GOOGLE_CLIENT_ID


class TestProviderRegistry:
    """Building and querying the registry."""

    def test_builds_enabled_providers(self, settings) -> None:
        """Enabled providers get adapters in declared order."""
        registry = ProviderRegistry(settings)
        assert [a.name for a in registry] == ["google", "facebook"]
        assert len(registry) == 2
        assert isinstance(registry.resolve("google"), GoogleProvider)

    def test_disabled_provider(self, settings) -> None:
        """Disabled providers resolve to None but are remembered."""
        registry = ProviderRegistry(settings)
        assert registry.resolve("apple") is None
        assert registry.is_disabled("apple")
        assert "apple" not in registry
        assert not registry.is_disabled("azure")

    def test_disabled_provider_not_validated(self, settings_data) -> None:
        """A disabled provider with a bad client ID does not break startup."""
        settings_data["providers"]["apple"]["client_id"] = "not reverse dns"
        registry = ProviderRegistry(load_settings(settings_data))
        assert registry.is_disabled("apple")

    def test_invalid_enabled_provider(self, settings_data) -> None:
        """An enabled provider with bad configuration fails loudly."""
        settings_data["providers"]["google"]["client_id"] = "bogus"
        with pytest.raises(ConfigurationError, match="googleusercontent"):
            ProviderRegistry(load_settings(settings_data))

    def test_resolve_is_case_sensitive(self, settings) -> None:
        """Names must match exactly."""
        registry = ProviderRegistry(settings)
        assert registry.resolve("Google") is None
        assert registry.resolve("") is None
        assert registry.resolve(None) is None

    def test_available_providers(self, settings) -> None:
        """Only enabled providers are listed."""
        infos = ProviderRegistry(settings).get_available_providers()
        assert [i.name for i in infos] == ["google", "facebook"]
        assert all(i.enabled for i in infos)

    def test_provider_info(self, settings) -> None:
        """Single-provider descriptors."""
        registry = ProviderRegistry(settings)
        assert registry.get_provider_info("facebook").display_name == "Facebook"
        assert registry.get_provider_info("apple") is None

    def test_shared_http_client(self, settings, server) -> None:
        """Every adapter uses the injected client."""
        client = server.client()
        registry = ProviderRegistry(settings, http_client=client)
        assert all(adapter._http_client is client for adapter in registry)  # pylint: disable=protected-access

    def test_register_and_disable(self) -> None:
        """Manual registration, replacement and disabling."""
        registry = ProviderRegistry()
        assert len(registry) == 0
        registry.register("google", GoogleProvider(GOOGLE_CLIENT_ID))
        registry.register("fb", FacebookProvider(FACEBOOK_APP_ID, name="fb"))
        assert "fb" in registry
        registry.register("fb", FacebookProvider(FACEBOOK_APP_ID, name="fb"), enabled=False)
        assert registry.resolve("fb") is None
        assert registry.is_disabled("fb")
        registry.register("fb", FacebookProvider(FACEBOOK_APP_ID, name="fb"))
        assert not registry.is_disabled("fb")

    def test_close(self) -> None:
        """close() closes adapters that created their own clients."""
        registry = ProviderRegistry()
        provider = GoogleProvider(GOOGLE_CLIENT_ID)
        registry.register("google", provider)

        async def _test():
            client = await provider._get_client()  # pylint: disable=protected-access
            await registry.close()
            return client

        assert asyncio.run(_test()).is_closed
