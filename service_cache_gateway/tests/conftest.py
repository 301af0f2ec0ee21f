"""
Shared fixtures for cache gateway tests.
"""

import pytest
from typing import Dict, List, Set

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from service_cache_gateway.app.caching.models import CacheNames, CacheRequest, CachedResponse
from service_cache_gateway.app.caching.router import CacheStrategyRouter
from service_cache_gateway.app.caching.storage import InMemoryCacheStorage
from shared.errors import NetworkError


ORIGIN = "http://upstream.test"


class FakeUpstream:
    """Scriptable upstream that counts fetches and can go offline."""

    def __init__(self):
        self.responses: Dict[str, CachedResponse] = {}
        self.unreachable: Set[str] = set()
        self.offline = False
        self.calls: List[CacheRequest] = []

    def add(self, path: str, body: bytes = b"ok", status: int = 200, content_type: str = "text/html") -> str:
        url = f"{ORIGIN}{path}"
        self.responses[url] = CachedResponse(status=status, headers={"content-type": content_type}, body=body)
        return url

    def calls_to(self, url: str) -> int:
        return sum(1 for request in self.calls if request.url == url)

    async def fetch(self, request: CacheRequest) -> CachedResponse:
        self.calls.append(request)
        if self.offline or request.url in self.unreachable:
            raise NetworkError(request.url, message="offline")
        response = self.responses.get(request.url)
        if response is None:
            return CachedResponse(status=404, headers={"content-type": "text/plain"}, body=b"not found")
        return response.clone()


@pytest.fixture
def upstream():
    """Create FakeUpstream with the install-time assets available."""
    fake = FakeUpstream()
    fake.add("/", b"<html>root</html>")
    fake.add("/index.html", b"<html>index</html>")
    fake.add("/offline.html", b"<html>You are offline</html>")
    fake.add("/icons/icon-192x192.png", b"png-192", content_type="image/png")
    fake.add("/icons/icon-512x512.png", b"png-512", content_type="image/png")
    fake.add("/manifest.json", b'{"name": "Morouna Loans"}', content_type="application/manifest+json")
    return fake


@pytest.fixture
def storage():
    """Create in-memory cache storage."""
    return InMemoryCacheStorage()


@pytest.fixture
def names():
    """Cache names for version v1."""
    return CacheNames("v1")


@pytest.fixture
def router(storage, upstream, names):
    """Create CacheStrategyRouter over the fake upstream."""
    return CacheStrategyRouter(storage, upstream.fetch, names, f"{ORIGIN}/offline.html")


@pytest.fixture
def static_assets():
    """Install-time asset URLs."""
    return [
        f"{ORIGIN}/",
        f"{ORIGIN}/index.html",
        f"{ORIGIN}/offline.html",
        f"{ORIGIN}/icons/icon-192x192.png",
        f"{ORIGIN}/icons/icon-512x512.png",
        f"{ORIGIN}/manifest.json",
    ]
