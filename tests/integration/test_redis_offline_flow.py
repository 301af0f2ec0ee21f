"""
Integration tests for the offline flow against a live Redis.

Set CACHE_GW_REDIS_URL to point at a disposable database; the tests are
skipped when it cannot be reached.
"""

import os
import uuid

import httpx
import pytest
import pytest_asyncio

import sys
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from service_cache_gateway.app.adapters.upstream_client import UpstreamClient
from service_cache_gateway.app.caching.models import CacheNames, CacheRequest, CachedResponse
from service_cache_gateway.app.caching.redis_storage import RedisCacheStorage
from service_cache_gateway.app.caching.router import CacheStrategyRouter
from service_cache_gateway.app.caching.storage import limit_cache_size
from service_cache_gateway.app.clients.registry import ClientSessionRegistry
from service_cache_gateway.app.lifecycle.worker import CacheLifecycle
from shared.errors import StorageError


REDIS_URL = os.getenv("CACHE_GW_REDIS_URL", "redis://localhost:6379/15")
ORIGIN = "http://upstream.test"


class TestRedisOfflineFlow:
    """Integration tests for install, caching and eviction on Redis."""

    @pytest_asyncio.fixture
    async def storage(self):
        """RedisCacheStorage under a unique prefix, removed afterwards."""
        storage = RedisCacheStorage(REDIS_URL, prefix=f"cache_gw_test_{uuid.uuid4().hex[:8]}")
        try:
            await storage.ping()
        except StorageError:
            await storage.close()
            pytest.skip(f"Redis not available at {REDIS_URL}")

        yield storage

        for name in await storage.names():
            await storage.delete(name)
        client = await storage._get_redis()
        await client.delete(storage._seq_key)
        await storage.close()

    @pytest.fixture
    def network(self):
        """Mutable upstream state shared with the transport handler."""
        return {"offline": False}

    @pytest.fixture
    def upstream(self, network):
        """UpstreamClient over a mocked transport."""
        def handler(request: httpx.Request) -> httpx.Response:
            if network["offline"]:
                raise httpx.ConnectError("connection refused", request=request)
            if request.url.path.startswith("/api/"):
                return httpx.Response(200, json={"path": request.url.path})
            return httpx.Response(200, headers={"Content-Type": "text/html"}, content=b"<html>page</html>")

        return UpstreamClient(ORIGIN, client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))

    @pytest.mark.asyncio
    async def test_install_then_serve_offline(self, storage, upstream, network):
        """Precached pages and cached API calls are served once the upstream goes away."""
        names = CacheNames("v-it")
        lifecycle = CacheLifecycle(
            storage,
            upstream.fetch,
            names,
            [upstream.resolve("/"), upstream.resolve("/offline.html")],
            ClientSessionRegistry(),
        )
        router = CacheStrategyRouter(storage, upstream.fetch, names, upstream.resolve("/offline.html"))

        assert await lifecycle.ensure_installed() is True
        await router.handle(CacheRequest(url=upstream.resolve("/api/loans")))

        network["offline"] = True
        api = await router.handle(CacheRequest(url=upstream.resolve("/api/loans")))
        page = await router.handle(CacheRequest(url=upstream.resolve("/reports"), mode="navigate"))

        assert api.response.json() == {"path": "/api/loans"}
        assert api.source.value == "cache"
        assert page.response.status == 200
        assert page.source.value == "offline"
        await upstream.close()

    @pytest.mark.asyncio
    async def test_eviction_order_survives_reopen(self, storage):
        """A second handle on the same store sees the same insertion order."""
        store = storage.open("v-it-api")
        for index in range(4):
            await store.put(f"GET {ORIGIN}/api/{index}", _snapshot(index))

        evicted = await limit_cache_size(storage.open("v-it-api"), 2)

        assert evicted == 2
        assert await storage.open("v-it-api").keys() == [f"GET {ORIGIN}/api/2", f"GET {ORIGIN}/api/3"]


def _snapshot(index: int) -> CachedResponse:
    return CachedResponse(status=200, headers={"content-type": "application/json"}, body=f'{{"n": {index}}}'.encode())
