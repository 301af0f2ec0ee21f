"""
Tests for the cache gateway HTTP and WebSocket routes.
"""

import httpx
import pytest
from fastapi.testclient import TestClient

from service_cache_gateway.app.adapters.upstream_client import UpstreamClient
from service_cache_gateway.app.caching.storage import InMemoryCacheStorage
from service_cache_gateway.app.main import create_app
from shared.config import get_config
from shared.errors import StorageError

from conftest import ORIGIN


class ScriptedUpstream:
    """MockTransport handler serving fixed pages; can be switched offline."""

    def __init__(self):
        self.offline = False
        self.requests = []
        self.pages = {
            "/": (200, "text/html", b"<html>root</html>"),
            "/index.html": (200, "text/html", b"<html>index</html>"),
            "/offline.html": (200, "text/html", b"<html>You are offline</html>"),
            "/icons/icon-192x192.png": (200, "image/png", b"png-192"),
            "/icons/icon-512x512.png": (200, "image/png", b"png-512"),
            "/manifest.json": (200, "application/manifest+json", b'{"name": "Morouna Loans"}'),
            "/api/loans": (200, "application/json", b'{"loans": [1, 2]}'),
            "/dashboard": (200, "text/html", b"<html>dashboard</html>"),
        }

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.offline:
            raise httpx.ConnectError("connection refused", request=request)
        if request.method == "POST":
            return httpx.Response(201, json={"received": request.content.decode()})
        if request.url.path == "/login":
            return httpx.Response(
                200,
                headers=[("Content-Type", "text/html"), ("Set-Cookie", "session=abc; Path=/"), ("Set-Cookie", "theme=dark; Path=/")],
                content=b"<html>login</html>",
            )
        status, content_type, body = self.pages.get(request.url.path, (404, "text/plain", b"not found"))
        return httpx.Response(status, headers={"Content-Type": content_type}, content=body)


class FlakyNamesStorage(InMemoryCacheStorage):
    """In-memory storage whose names() fails a set number of times."""

    def __init__(self, failures: int):
        super().__init__()
        self.failures = failures

    async def names(self):
        if self.failures:
            self.failures -= 1
            raise StorageError("redis down")
        return await super().names()


@pytest.fixture
def scripted_upstream():
    """Create ScriptedUpstream handler."""
    return ScriptedUpstream()


@pytest.fixture
def app(scripted_upstream):
    """Create the gateway app over in-memory storage and a mocked upstream."""
    config = get_config(
        "cache_gateway",
        8000,
        cache_backend="memory",
        upstream_url=ORIGIN,
        cache_version="v1",
    )
    upstream = UpstreamClient(
        ORIGIN,
        client=httpx.AsyncClient(transport=httpx.MockTransport(scripted_upstream)),
    )
    return create_app(config, storage=InMemoryCacheStorage(), upstream=upstream)


@pytest.fixture
def client(app):
    """Test client with the lifespan (install/activate) applied."""
    with TestClient(app) as test_client:
        yield test_client


class TestControlRoutes:
    """Test cases for health, status and control messages."""

    def test_health_check(self, client):
        """Test health check endpoint."""
        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["service"] == "cache_gateway"
        assert data["status"] == "ok"
        assert data["dependencies"] == {"cache_storage": "ok", "cache_lifecycle": "activated"}

    def test_status_after_startup(self, client):
        """Startup installs and activates the current version."""
        response = client.get("/sw/status")

        assert response.status_code == 200
        data = response.json()
        assert data["version"] == "v1"
        assert data["state"] == "activated"
        assert data["store_sizes"] == {"v1-static": 6}
        assert data["clients"] == {"total_clients": 0, "controlled_clients": 0}

    def test_unsupported_message_rejected(self, client):
        """Test that unknown control messages return 400."""
        response = client.post("/sw/messages", json={"type": "RELOAD"})

        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"

    def test_skip_waiting_message(self, client):
        """SKIP_WAITING on an already active version is a no-op."""
        response = client.post("/sw/messages", json={"type": "SKIP_WAITING"})

        assert response.status_code == 200
        assert response.json() == {"type": "SKIP_WAITING", "activated": False, "state": "activated"}

    def test_background_sync(self, client, scripted_upstream):
        """The sync-data tag is handled without upstream traffic."""
        before = len(scripted_upstream.requests)

        response = client.post("/sw/sync/sync-data")

        assert response.status_code == 200
        assert response.json() == {"tag": "sync-data", "handled": True}
        assert len(scripted_upstream.requests) == before

    def test_metrics_endpoint(self, client):
        """Test that strategy outcomes appear in the metrics output."""
        client.get("/api/loans")

        response = client.get("/metrics")

        assert response.status_code == 200
        assert "cache_responses_total" in response.text


class TestClientSessions:
    """Test cases for the client session WebSocket."""

    def test_registration_is_claimed(self, client):
        """A client connecting to an active version is controlled immediately."""
        with client.websocket_connect("/sw/clients") as websocket:
            registered = websocket.receive_json()

            assert registered["type"] == "CLIENT_REGISTERED"
            assert registered["controller"] == "v1"
            assert client.get("/sw/status").json()["clients"]["controlled_clients"] == 1

    def test_clear_cache_notifies_connected_client(self, client):
        """CLEAR_CACHE empties every store and notifies open clients."""
        with client.websocket_connect("/sw/clients") as websocket:
            websocket.receive_json()

            response = client.post("/sw/messages", json={"type": "CLEAR_CACHE"})

            assert response.status_code == 200
            assert response.json()["notified"] == 1
            assert websocket.receive_json() == {"type": "CACHE_CLEARED"}

        assert client.get("/sw/status").json()["store_sizes"] == {}

    def test_clear_cache_from_client(self, client):
        """Test CLEAR_CACHE sent over the client channel."""
        with client.websocket_connect("/sw/clients") as websocket:
            websocket.receive_json()

            websocket.send_json({"type": "CLEAR_CACHE"})

            assert websocket.receive_json() == {"type": "CACHE_CLEARED"}


class TestProxy:
    """Test cases for requests routed through the cache."""

    def test_api_cached_then_served_offline(self, client, scripted_upstream):
        """Network-first API responses are replayed when the upstream is down."""
        online = client.get("/api/loans")
        assert online.status_code == 200
        assert online.headers["x-cache-source"] == "network"
        assert online.headers["x-cache-strategy"] == "network_first"

        scripted_upstream.offline = True
        offline = client.get("/api/loans")

        assert offline.status_code == 200
        assert offline.headers["x-cache-source"] == "cache"
        assert offline.json() == {"loans": [1, 2]}

    def test_uncached_api_offline_returns_placeholder(self, client, scripted_upstream):
        """Test the offline JSON placeholder for uncached API calls."""
        scripted_upstream.offline = True

        response = client.get("/api/payments")

        assert response.status_code == 503
        assert response.headers["content-type"] == "application/json"
        assert response.content == b'{"error":"You are currently offline. Some features may be unavailable."}'
        assert response.headers["x-cache-source"] == "offline"

    def test_static_asset_served_from_cache(self, client, scripted_upstream):
        """Precached assets are served without contacting the upstream."""
        before = len(scripted_upstream.requests)

        response = client.get("/manifest.json")

        assert response.status_code == 200
        assert response.headers["x-cache-source"] == "cache"
        assert response.headers["x-cache-strategy"] == "cache_first"
        assert len(scripted_upstream.requests) == before

    def test_navigation_offline_gets_offline_page(self, client, scripted_upstream):
        """An uncached page falls back to the precached offline page."""
        scripted_upstream.offline = True

        response = client.get("/reports", headers={"Accept": "text/html"})

        assert response.status_code == 200
        assert response.text == "<html>You are offline</html>"
        assert response.headers["x-cache-source"] == "offline"

    def test_post_is_passed_through(self, client, scripted_upstream):
        """Non-GET requests bypass the cache."""
        response = client.post("/api/loans", content=b'{"amount": 10}')

        assert response.status_code == 201
        assert response.headers["x-cache-source"] == "passthrough"
        assert response.headers["x-cache-strategy"] == "bypass"
        assert scripted_upstream.requests[-1].content == b'{"amount": 10}'

    def test_passthrough_network_failure(self, client, scripted_upstream):
        """Test that a bypassed request reports an unreachable upstream as 502."""
        scripted_upstream.offline = True

        response = client.post("/api/loans", content=b"{}")

        assert response.status_code == 502
        assert response.json()["code"] == "NETWORK_ERROR"


class TestDeferredInstall:
    """Test cases for an install that fails at startup."""

    def test_install_retried_on_navigation(self, app, scripted_upstream):
        """Test that the next page load retries a failed install."""
        scripted_upstream.offline = True

        with TestClient(app) as client:
            assert client.get("/sw/status").json()["state"] == "redundant"

            scripted_upstream.offline = False
            response = client.get("/dashboard", headers={"Accept": "text/html"})

            assert response.status_code == 200
            assert response.headers["x-cache-source"] == "network"
            assert client.get("/sw/status").json()["state"] == "activated"

    def test_activation_storage_failure_does_not_block_startup(self, scripted_upstream):
        """A storage error while activating leaves the version installed; a page load activates it."""
        storage = FlakyNamesStorage(failures=1)
        upstream = UpstreamClient(
            ORIGIN,
            client=httpx.AsyncClient(transport=httpx.MockTransport(scripted_upstream)),
        )
        app = create_app(
            get_config("cache_gateway", 8000, cache_backend="memory", upstream_url=ORIGIN, cache_version="v1"),
            storage=storage,
            upstream=upstream,
        )

        with TestClient(app) as client:
            assert client.get("/sw/status").json()["state"] == "installed"

            response = client.get("/dashboard", headers={"Accept": "text/html"})

            assert response.status_code == 200
            assert response.headers["x-cache-source"] == "network"
            assert client.get("/sw/status").json()["state"] == "activated"


class TestRepeatedHeaders:
    """Test cases for responses carrying repeated header fields."""

    def test_set_cookie_fields_forwarded_separately(self, client, scripted_upstream):
        """Both cookies reach the browser, live and when replayed offline."""
        online = client.get("/login", headers={"Accept": "text/html"})

        assert online.headers.get_list("set-cookie") == ["session=abc; Path=/", "theme=dark; Path=/"]

        scripted_upstream.offline = True
        offline = client.get("/login", headers={"Accept": "text/html"})

        assert offline.headers["x-cache-source"] == "cache"
        assert offline.headers.get_list("set-cookie") == ["session=abc; Path=/", "theme=dark; Path=/"]
