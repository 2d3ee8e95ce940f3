"""Pytest configuration and fixtures."""

from __future__ import annotations

import logging
import os
import sys

from pathlib import Path
from typing import TYPE_CHECKING, Any

import pytest

from tests.constants import (
    API_BASE_URL,
    APPLE_SERVICES_ID,
    APPLE_TEAM_ID,
    FACEBOOK_APP_ID,
    GOOGLE_CLIENT_ID,
    GOOGLE_CLIENT_SECRET,
    GOOGLE_DISCOVERY_URL,
    GOOGLE_PROFILE,
    GOOGLE_TOKEN_URL,
    GOOGLE_USERINFO_URL,
    TOKEN_RESPONSE,
)
from tests.fakes import FakeServer


if TYPE_CHECKING:
    from collections.abc import Generator


# Add easyauth to path for imports
easyauth_path = Path(__file__).parent.parent / "easyauth"
if str(easyauth_path.parent) not in sys.path:
    sys.path.insert(0, str(easyauth_path.parent))


# =============================================================================
# Configuration isolation
# =============================================================================


@pytest.fixture(autouse=True)
def isolated_config(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Generator[None, None, None]:
    """Keep config files and EASYAUTH_* variables of the host out of tests."""
    from easyauth.config import clear_settings

    for name in list(os.environ):
        if name.startswith("EASYAUTH"):
            monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("HOME", str(tmp_path))
    monkeypatch.setenv("APPDATA", str(tmp_path))
    monkeypatch.chdir(tmp_path)
    clear_settings()
    package_logger = logging.getLogger("easyauth")
    level = package_logger.level
    yield
    package_logger.setLevel(level)
    clear_settings()


# =============================================================================
# Settings
# =============================================================================


@pytest.fixture
def settings_data() -> dict[str, Any]:
    """Google (default) and Facebook enabled, Apple configured but disabled."""
    return {
        "api_base_url": API_BASE_URL,
        "storage": "memory",
        "default_provider": "google",
        "providers": {
            "google": {
                "client_id": GOOGLE_CLIENT_ID,
                "client_secret": GOOGLE_CLIENT_SECRET,
            },
            "facebook": {
                "client_id": FACEBOOK_APP_ID,
                "client_secret": "fb-secret",
            },
            "apple": {
                "client_id": APPLE_SERVICES_ID,
                "team_id": APPLE_TEAM_ID,
                "enabled": False,
            },
        },
    }


@pytest.fixture
def settings(settings_data: dict[str, Any]):
    """Validated AuthSettings built from ``settings_data``."""
    from easyauth.config import load_settings

    return load_settings(settings_data)


# =============================================================================
# Fake network
# =============================================================================


@pytest.fixture
def server() -> FakeServer:
    """A fake Google + backend server with happy-path routes."""
    fake = FakeServer()
    fake.add("POST", GOOGLE_TOKEN_URL, json=TOKEN_RESPONSE)
    fake.add("GET", GOOGLE_USERINFO_URL, json=GOOGLE_PROFILE)
    fake.add("GET", GOOGLE_DISCOVERY_URL, json={"issuer": "https://accounts.google.com"})
    fake.add("POST", f"{API_BASE_URL}/api/logout", json={"success": True})
    fake.add("GET", f"{API_BASE_URL}/api/health", json={"success": True})
    return fake


@pytest.fixture
def clock():
    """A virtual clock shared with the manual scheduler."""
    from easyauth.scheduler import VirtualClock

    return VirtualClock()


@pytest.fixture
def scheduler(clock):
    """Deterministic scheduler driven by ``clock``."""
    from easyauth.scheduler import ManualScheduler

    return ManualScheduler(clock)


@pytest.fixture
def make_client(settings, server: FakeServer, scheduler):
    """Factory for AuthClient instances wired to the fakes."""
    from easyauth.client import AuthClient
    from easyauth.storage import MemoryStorage

    def _make(**kwargs: Any) -> AuthClient:
        kwargs.setdefault("storage", MemoryStorage())
        kwargs.setdefault("http_client", server.client())
        kwargs.setdefault("scheduler", scheduler)
        return AuthClient(kwargs.pop("settings", settings), **kwargs)

    return _make
