"""In-process fakes for identity providers and the backend API."""

from __future__ import annotations

import base64
import json

from typing import TYPE_CHECKING, Any
from urllib.parse import parse_qs

import httpx


if TYPE_CHECKING:
    from collections.abc import Callable


def make_jwt(claims: dict[str, Any]) -> str:
    """Build an unsigned JWT carrying ``claims``."""

    def _segment(data: dict[str, Any]) -> str:
        raw = json.dumps(data, separators=(",", ":")).encode("utf-8")
        return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")

    return f"{_segment({'alg': 'none', 'typ': 'JWT'})}.{_segment(claims)}.signature"


def form_data(request: httpx.Request) -> dict[str, str]:
    """Decode a form-encoded request body."""
    return {k: v[0] for k, v in parse_qs(request.content.decode("utf-8")).items()}


class FakeServer:
    """Routes requests by method, host and path to canned responses.

    Unrouted requests get a 404. Every request is recorded in order.
    """

    def __init__(self) -> None:
        self.routes: dict[tuple[str, str], Callable[[httpx.Request], Any]] = {}
        self.requests: list[httpx.Request] = []

    @staticmethod
    def _key(method: str, url: str | httpx.URL) -> tuple[str, str]:
        parsed = httpx.URL(url)
        return method.upper(), f"{parsed.host}{parsed.path}"

    def add(
        self,
        method: str,
        url: str,
        status: int = 200,
        json: Any = None,
        *,
        error: type[httpx.HTTPError] | None = None,
        handler: Callable[[httpx.Request], Any] | None = None,
    ) -> None:
        """Route ``method url`` to a JSON response, an error, or a handler."""
        if handler is None:
            if error is not None:

                def handler(request: httpx.Request) -> httpx.Response:
                    raise error("simulated network failure", request=request)

            else:

                def handler(request: httpx.Request) -> httpx.Response:  # noqa: ARG001
                    return httpx.Response(status, json=json)

        self.routes[self._key(method, url)] = handler

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        handler = self.routes.get(self._key(request.method, request.url))
        if handler is None:
            return httpx.Response(404, json={"error": "not_found"})
        result = handler(request)
        if hasattr(result, "__await__"):
            result = await result
        return result

    def calls(self, method: str, url: str) -> list[httpx.Request]:
        """Recorded requests for one route."""
        key = self._key(method, url)
        return [r for r in self.requests if self._key(r.method, r.url) == key]

    def client(self) -> httpx.AsyncClient:
        """An AsyncClient whose transport is this server."""
        return httpx.AsyncClient(transport=httpx.MockTransport(self))
