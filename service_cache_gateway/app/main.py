"""
Offline Cache Gateway service.

Every browser request passes through the catch-all proxy route, which hands
it to the cache strategy router once the current cache version is active.
Control routes expose the lifecycle (status, control messages, background
sync) and a WebSocket channel for connected client sessions.
"""

import json
from typing import Dict, Optional

from fastapi import Request, Response, WebSocket, WebSocketDisconnect
from pydantic import BaseModel

from shared.base_service import BaseService
from shared.config import ServiceConfig, get_config
from shared.errors import CacheGatewayException, InstallError, StorageError
from shared.logging import set_client_context
from .adapters.upstream_client import UpstreamClient
from .caching.classifier import RequestClassifier
from .caching.factory import create_cache_storage
from .caching.models import CacheNames, CacheRequest, CachedResponse, ResponseSource, StrategyKind, StrategyResult
from .caching.router import CacheStrategyRouter
from .caching.storage import CacheStorage
from .clients.registry import ClientSessionRegistry
from .lifecycle.worker import CacheLifecycle


PROXY_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]

CLIENT_REGISTERED = "CLIENT_REGISTERED"


class ControlMessage(BaseModel):
    """Control message posted to the gateway."""
    type: str


class CacheGatewayService(BaseService):
    """Caching gateway in front of the upstream web app."""

    def __init__(
        self,
        config: Optional[ServiceConfig] = None,
        *,
        storage: Optional[CacheStorage] = None,
        upstream: Optional[UpstreamClient] = None,
    ):
        super().__init__("cache_gateway", 8000, config=config)
        cfg = self.config

        self.names = CacheNames(cfg.cache_version)
        self.storage = storage or create_cache_storage(cfg)
        self.upstream = upstream or UpstreamClient(cfg.upstream_url, timeout=cfg.upstream_timeout)
        self.clients = ClientSessionRegistry()

        self.classifier = RequestClassifier(
            api_prefix=cfg.api_path_prefix,
            icons_prefix=cfg.icons_path_prefix,
            manifest_path=cfg.manifest_path,
        )
        self.router = CacheStrategyRouter(
            self.storage,
            self.upstream.fetch,
            self.names,
            self.upstream.resolve(cfg.offline_page),
            classifier=self.classifier,
            api_max_entries=cfg.api_cache_max_entries,
            dynamic_max_entries=cfg.dynamic_cache_max_entries,
            metrics=self.metrics,
        )
        self.lifecycle = CacheLifecycle(
            self.storage,
            self.upstream.fetch,
            self.names,
            [self.upstream.resolve(path) for path in cfg.static_assets],
            self.clients,
            skip_waiting_on_install=cfg.skip_waiting_on_install,
            background_sync_enabled=cfg.background_sync_enabled,
            metrics=self.metrics,
        )

        self._setup_control_routes()
        self._setup_proxy_routes()

        self.app.state.cache_gateway_service = self

    async def on_startup(self):
        await self._install_quietly()

    async def on_shutdown(self):
        await self.upstream.close()
        await self.storage.close()

    async def _install_quietly(self) -> bool:
        """Run install/activate; a failed attempt is retried on the next page load."""
        try:
            return await self.lifecycle.ensure_installed()
        except (InstallError, StorageError) as exc:
            self.logger.warning("Cache install deferred", code=exc.code, error=exc.message, details=exc.details)
            return False

    async def _check_dependencies(self) -> Dict[str, str]:
        try:
            await self.storage.names()
            storage_status = "ok"
        except StorageError:
            storage_status = "error"
        return {
            "cache_storage": storage_status,
            "cache_lifecycle": self.lifecycle.state.value,
        }

    def _setup_control_routes(self):
        """Set up lifecycle and client session routes."""

        @self.app.get("/sw/status")
        async def cache_status():
            """Lifecycle state, store sizes and connected clients."""
            stores = {}
            for name in await self.storage.names():
                stores[name] = await self.storage.open(name).size()
            return {
                **self.lifecycle.status(),
                "store_sizes": stores,
                "clients": self.clients.get_stats(),
            }

        @self.app.post("/sw/messages")
        async def post_control_message(message: ControlMessage):
            """Handle SKIP_WAITING / CLEAR_CACHE."""
            return await self.lifecycle.handle_message(message.model_dump())

        @self.app.post("/sw/sync/{tag}")
        async def trigger_sync(tag: str):
            """Fire a background sync tag."""
            handled = await self.lifecycle.sync(tag)
            return {"tag": tag, "handled": handled}

        @self.app.websocket("/sw/clients")
        async def client_session(websocket: WebSocket):
            """Client session channel; receives CACHE_CLEARED notices."""
            await websocket.accept()
            client_id = self.clients.add_client(websocket, metadata={"user_agent": websocket.headers.get("user-agent")})
            set_client_context(client_id)
            if self.lifecycle.is_active:
                await self.clients.claim(self.names.version)
            await self.clients.post_message(client_id, {
                "type": CLIENT_REGISTERED,
                "client_id": client_id,
                "controller": self.clients.get_client(client_id).controller_version,
            })

            try:
                while True:
                    raw = await websocket.receive_text()
                    await self._handle_client_message(client_id, raw)
            except WebSocketDisconnect:
                self.logger.info("Client disconnected", client_id=client_id)
            finally:
                self.clients.remove_client(client_id)
                if not self.clients.has_clients():
                    try:
                        await self.lifecycle.activate_if_ready()
                    except StorageError as exc:
                        self.logger.warning("Deferred activation failed", error=exc.message)

    async def _handle_client_message(self, client_id: str, raw: str) -> None:
        """Client-originated control messages; unsupported ones are ignored."""
        try:
            message = json.loads(raw)
        except json.JSONDecodeError:
            self.logger.warning("Ignoring malformed client message", client_id=client_id)
            return

        try:
            await self.lifecycle.handle_message(message)
        except CacheGatewayException as exc:
            self.logger.warning("Ignoring client message", client_id=client_id, code=exc.code, error=exc.message)

    def _setup_proxy_routes(self):
        """Catch-all route that sends every other request through the cache."""

        @self.app.api_route("/{path:path}", methods=PROXY_METHODS)
        async def proxy(request: Request, path: str):
            cache_request = await self._to_cache_request(request)

            if not self.lifecycle.is_active and cache_request.is_navigation:
                await self._install_quietly()

            result = None
            if self.lifecycle.is_active:
                result = await self.router.handle(cache_request)
            if result is None:
                response = await self.upstream.fetch(cache_request)
                result = StrategyResult(response, StrategyKind.BYPASS, ResponseSource.PASSTHROUGH)

            return self._to_http_response(result)

    async def _to_cache_request(self, request: Request) -> CacheRequest:
        path = request.url.path
        if request.url.query:
            path = f"{path}?{request.url.query}"

        body = b""
        if request.method not in ("GET", "HEAD"):
            body = await request.body()

        return CacheRequest(
            url=self.upstream.resolve(path),
            method=request.method,
            mode=self._request_mode(request),
            headers=dict(request.headers),
            body=body,
        )

    @staticmethod
    def _request_mode(request: Request) -> str:
        """Fetch mode from Sec-Fetch-Mode, guessing navigation from Accept."""
        mode = request.headers.get("sec-fetch-mode")
        if mode:
            return mode
        if request.method == "GET" and "text/html" in request.headers.get("accept", ""):
            return "navigate"
        return "cors"

    @staticmethod
    def _to_http_response(result: StrategyResult) -> Response:
        cached: CachedResponse = result.response
        response = Response(content=cached.body, status_code=cached.status)
        for name, value in cached.headers:
            # Content-Length comes from the body Starlette sends
            if name.lower() != "content-length":
                response.headers.append(name, value)
        response.headers["X-Cache-Source"] = result.source.value
        response.headers["X-Cache-Strategy"] = result.strategy.value
        return response


def create_app(config: Optional[ServiceConfig] = None, **kwargs):
    """Create FastAPI application."""
    service = CacheGatewayService(config or get_config("cache_gateway", 8000), **kwargs)
    return service.app


if __name__ == "__main__":
    service = CacheGatewayService()
    service.run()
