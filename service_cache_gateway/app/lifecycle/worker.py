"""
Cache lifecycle: install-time precaching, activation sweep, control
messages and background sync hooks.
"""

import asyncio
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, TYPE_CHECKING

from shared.errors import InstallError, NetworkError, StorageError, ValidationError
from shared.logging import get_logger
from ..caching.models import CacheNames, CacheRequest
from ..caching.router import Fetcher
from ..caching.storage import CacheStorage
from ..clients.registry import ClientSessionRegistry

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


SKIP_WAITING = "SKIP_WAITING"
CLEAR_CACHE = "CLEAR_CACHE"
CACHE_CLEARED = "CACHE_CLEARED"

DEFAULT_SYNC_TAG = "sync-data"

SyncHandler = Callable[[], Awaitable[None]]


class LifecycleState(str, Enum):
    """Lifecycle states of a cache version."""
    PARSED = "parsed"
    INSTALLING = "installing"
    INSTALLED = "installed"
    ACTIVATING = "activating"
    ACTIVATED = "activated"
    REDUNDANT = "redundant"


async def _replay_offline_actions() -> None:
    """Extension point for replaying queued offline actions; currently a no-op."""
    return None


class CacheLifecycle:
    """Drives one cache version from install through activation."""

    def __init__(
        self,
        storage: CacheStorage,
        fetch: Fetcher,
        names: CacheNames,
        static_assets: List[str],
        clients: ClientSessionRegistry,
        *,
        skip_waiting_on_install: bool = True,
        background_sync_enabled: bool = True,
        metrics: Optional["MetricsCollector"] = None,
    ):
        self.storage = storage
        self.fetch = fetch
        self.names = names
        self.static_assets = list(static_assets)
        self.clients = clients
        self.skip_waiting_on_install = skip_waiting_on_install
        self.background_sync_enabled = background_sync_enabled
        self.metrics = metrics
        self.logger = get_logger("cache_gateway.lifecycle")

        self.state = LifecycleState.PARSED
        self._skip_waiting = False
        self._lock = asyncio.Lock()
        self._sync_handlers: Dict[str, SyncHandler] = {}
        if background_sync_enabled:
            self.register_sync_handler(DEFAULT_SYNC_TAG, _replay_offline_actions)

    @property
    def is_active(self) -> bool:
        return self.state is LifecycleState.ACTIVATED

    def _record(self, event: str) -> None:
        if self.metrics:
            self.metrics.increment_counter("lifecycle_events_total", event=event)

    async def install(self) -> None:
        """Precache the static assets; all-or-nothing."""
        async with self._lock:
            await self._install()

    async def _install(self) -> None:
        self.state = LifecycleState.INSTALLING
        self.logger.info("Installing cache version", version=self.names.version, assets=len(self.static_assets))

        requests = [CacheRequest(url=url) for url in self.static_assets]
        tasks = [asyncio.ensure_future(self.fetch(request)) for request in requests]
        try:
            responses = await asyncio.gather(*tasks)
        except NetworkError as exc:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            self._fail_install("Static asset fetch failed", {"url": exc.url, "error": exc.message})

        failed = [
            {"url": request.url, "status": response.status}
            for request, response in zip(requests, responses)
            if not response.ok
        ]
        if failed:
            self._fail_install("Static asset returned an error status", {"failed": failed})

        store = self.storage.open(self.names.static)
        try:
            for request, response in zip(requests, responses):
                await store.put(request.cache_key, response.clone())
        except StorageError as exc:
            self._fail_install("Static asset could not be stored", {"error": exc.message})

        self.state = LifecycleState.INSTALLED
        self._record("installed")
        self.logger.info("Static assets cached", version=self.names.version, store=self.names.static)

        if self.skip_waiting_on_install:
            self._skip_waiting = True

    def _fail_install(self, message: str, details: Dict[str, Any]) -> None:
        self.state = LifecycleState.REDUNDANT
        self._record("install_failed")
        self.logger.error("Install failed", version=self.names.version, reason=message, **details)
        raise InstallError(message, details={"version": self.names.version, **details})

    async def ensure_installed(self) -> bool:
        """Install if not yet installed (or after a failed attempt), then
        activate if ready. Returns True once the version is active."""
        async with self._lock:
            if self.state in (LifecycleState.PARSED, LifecycleState.REDUNDANT):
                await self._install()
            await self._activate_if_ready()
        return self.is_active

    async def activate_if_ready(self) -> bool:
        """Activate an installed version once waiting is skipped or no
        client sessions remain."""
        async with self._lock:
            return await self._activate_if_ready()

    async def _activate_if_ready(self) -> bool:
        if self.state is not LifecycleState.INSTALLED:
            return False
        if self._skip_waiting or not self.clients.has_clients():
            await self._activate()
            return True
        self.logger.info("Installed version waiting for clients to close", version=self.names.version, clients=len(self.clients))
        return False

    async def activate(self) -> List[str]:
        """Sweep stale stores and claim all client sessions."""
        async with self._lock:
            return await self._activate()

    async def _activate(self) -> List[str]:
        self.state = LifecycleState.ACTIVATING
        self.logger.info("Activating cache version", version=self.names.version)

        try:
            deleted = await self.cleanup_caches()
            await self.clients.claim(self.names.version)
        except StorageError as exc:
            # Back to INSTALLED so the next navigation or disconnect retries
            self.state = LifecycleState.INSTALLED
            self._record("activate_failed")
            self.logger.error("Activation failed", version=self.names.version, error=exc.message)
            raise

        self.state = LifecycleState.ACTIVATED
        self._record("activated")
        self.logger.info("Cache version activated", version=self.names.version, deleted_stores=deleted)
        return deleted

    async def cleanup_caches(self) -> List[str]:
        """Delete every store that does not belong to the current version."""
        expected = set(self.names.all())
        stale = [name for name in await self.storage.names() if name not in expected]
        for name in stale:
            await self.storage.delete(name)
        return stale

    async def skip_waiting(self) -> bool:
        """Stop deferring activation; activates now if already installed."""
        async with self._lock:
            self._skip_waiting = True
            return await self._activate_if_ready()

    async def clear_caches(self) -> Dict[str, Any]:
        """Delete every store, then notify each connected client once."""
        deleted = list(await self.storage.names())
        for name in deleted:
            await self.storage.delete(name)

        notified = await self.clients.broadcast({"type": CACHE_CLEARED})
        self._record("caches_cleared")
        self.logger.info("All caches cleared", deleted_stores=deleted, notified_clients=notified)
        return {"deleted": deleted, "notified": notified}

    async def handle_message(self, message: Any) -> Dict[str, Any]:
        """Dispatch a control message ({"type": ...})."""
        message_type = message.get("type") if isinstance(message, dict) else None
        self.logger.info("Control message received", message_type=message_type)

        if message_type == SKIP_WAITING:
            activated = await self.skip_waiting()
            return {"type": SKIP_WAITING, "activated": activated, "state": self.state.value}

        if message_type == CLEAR_CACHE:
            result = await self.clear_caches()
            return {"type": CLEAR_CACHE, **result}

        raise ValidationError(
            "Unsupported control message",
            details={"type": message_type, "supported": [SKIP_WAITING, CLEAR_CACHE]}
        )

    def register_sync_handler(self, tag: str, handler: SyncHandler) -> None:
        self._sync_handlers[tag] = handler

    async def sync(self, tag: str) -> bool:
        """Run the background sync handler for a tag, if sync is enabled."""
        if not self.background_sync_enabled:
            self.logger.debug("Background sync not supported", tag=tag)
            return False

        handler = self._sync_handlers.get(tag)
        if handler is None:
            self.logger.debug("No background sync handler for tag", tag=tag)
            return False

        self.logger.info("Background sync", tag=tag)
        await handler()
        self._record("sync")
        return True

    def status(self) -> Dict[str, Any]:
        return {
            "version": self.names.version,
            "state": self.state.value,
            "skip_waiting": self._skip_waiting,
            "stores": list(self.names.all()),
            "background_sync": self.background_sync_enabled,
            "sync_tags": sorted(self._sync_handlers),
        }
