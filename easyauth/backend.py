"""Client for the application's backend auth API.

The backend exposes ``/auth-check``, ``/refresh``, ``/logout``, ``/user``
and ``/health`` under ``{api_base_url}{api_prefix}``. Every response is
wrapped in the ``ApiResponse`` envelope.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import logging
import time

from typing import Any

import httpx

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .exceptions import BackendError
from .types import HealthStatus


logger = logging.getLogger("easyauth.backend")


class ApiResponse(BaseModel):
    """Response envelope returned by every backend endpoint."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    success: bool = False
    data: Any = None
    error: str | None = None
    message: str | None = None
    timestamp: str | None = None
    correlation_id: str | None = Field(default=None, alias="correlationId")


class BackendClient:
    """Thin async wrapper around the backend auth routes.

    Parameters
    ----------
    api_url : str
        Base URL including the API prefix, e.g. ``https://app.example.com/api``.
    http_client : httpx.AsyncClient, optional
        Shared client. One is created lazily (and owned) when omitted.
    timeout : float
        Request timeout in seconds.
    health_timeout : float
        Timeout for ``health``.
    """

    def __init__(
        self,
        api_url: str,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
        health_timeout: float = 5.0,
    ) -> None:
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self.health_timeout = health_timeout
        self._http_client = http_client
        self._owns_client = http_client is None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(timeout=self.timeout)
            self._owns_client = True
        return self._http_client

    async def close(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._owns_client and self._http_client is not None and not self._http_client.is_closed:
            await self._http_client.aclose()
            self._http_client = None

    async def _request(
        self,
        method: str,
        path: str,
        *,
        access_token: str | None = None,
        json: dict[str, Any] | None = None,
    ) -> ApiResponse:
        url = f"{self.api_url}{path}"
        headers = {"Accept": "application/json"}
        if access_token:
            headers["Authorization"] = f"Bearer {access_token}"
        try:
            client = await self._get_client()
            resp = await client.request(method, url, headers=headers, json=json, timeout=self.timeout)
        except httpx.HTTPError as exc:
            msg = f"Backend request {method} {path} failed: {exc!r}"
            raise BackendError(msg, endpoint=path) from exc

        try:
            envelope = ApiResponse.model_validate(resp.json())
        except (ValueError, ValidationError) as exc:
            msg = f"Backend returned an unreadable response ({resp.status_code})"
            raise BackendError(msg, endpoint=path, status_code=resp.status_code) from exc

        if not resp.is_success or not envelope.success:
            msg = envelope.message or envelope.error or f"Backend request failed: {resp.status_code}"
            raise BackendError(
                msg,
                endpoint=path,
                status_code=resp.status_code,
                correlation_id=envelope.correlation_id,
            )
        return envelope

    async def check_session(self, access_token: str) -> Any:
        """Ask the backend whether ``access_token`` is still accepted."""
        return (await self._request("GET", "/auth-check", access_token=access_token)).data

    async def refresh(self, refresh_token: str) -> Any:
        """Ask the backend to refresh a session server-side."""
        envelope = await self._request("POST", "/refresh", json={"refreshToken": refresh_token})
        return envelope.data

    async def logout(self, access_token: str | None = None) -> None:
        """Tell the backend the session ended."""
        await self._request("POST", "/logout", access_token=access_token)

    async def get_user(self, access_token: str) -> Any:
        """Fetch the backend's view of the current user."""
        return (await self._request("GET", "/user", access_token=access_token)).data

    async def health(self) -> HealthStatus:
        """Probe ``/health``. Never raises."""
        start = time.perf_counter()
        try:
            client = await self._get_client()
            resp = await client.get(f"{self.api_url}/health", timeout=self.health_timeout)
        except httpx.HTTPError as exc:
            logger.debug("Backend health probe failed: %r", exc)
            return HealthStatus(
                name="backend",
                is_healthy=False,
                response_time=(time.perf_counter() - start) * 1000,
                error=str(exc) or exc.__class__.__name__,
            )
        return HealthStatus(
            name="backend",
            is_healthy=resp.is_success,
            response_time=(time.perf_counter() - start) * 1000,
            error=None if resp.is_success else f"HTTP {resp.status_code}",
        )
