"""Pytest configuration for proxy-fetch-server tests."""

import sys
from pathlib import Path

import httpx
import pytest

# Ensure src/proxy_fetch is importable
src_path = str(Path(__file__).parent.parent / "src")
if src_path not in sys.path:
    sys.path.insert(0, src_path)

from proxy_fetch.forwarder import Forwarder  # noqa: E402


class FakeUpstream:
    """Stand-in for the network: canned responses keyed by (host, path).

    Records every outbound request and every routing decision the
    forwarder asked a transport for, so tests can assert on both.
    """

    def __init__(self) -> None:
        self._routes: dict[tuple[str, str], object] = {}
        self.requests: list[httpx.Request] = []
        self.decisions: list = []

    def get(self, url: str, status: int = 200, content: bytes | str = b"", headers: dict | None = None):
        target = httpx.URL(url)
        if isinstance(content, str):
            content = content.encode("utf-8")
        self._routes[(target.host, target.path)] = (status, content, headers or {})

    def fail(self, url: str, exc: Exception):
        target = httpx.URL(url)
        self._routes[(target.host, target.path)] = exc

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self._routes.get((request.url.host, request.url.path))
        if route is None:
            return httpx.Response(404, content=b"no route", headers={"Content-Type": "text/plain"})
        if isinstance(route, Exception):
            raise route
        status, content, headers = route
        return httpx.Response(status, content=content, headers=headers)

    def transport_factory(self, decision) -> httpx.AsyncBaseTransport:
        self.decisions.append(decision)
        return httpx.MockTransport(self.handler)

    @property
    def call_count(self) -> int:
        return len(self.requests)


@pytest.fixture()
def upstream() -> FakeUpstream:
    return FakeUpstream()


@pytest.fixture()
def forwarder(upstream) -> Forwarder:
    return Forwarder(timeout=5.0, transport_factory=upstream.transport_factory)
