"""
Cache strategy router: classifies intercepted requests and serves them with
network-first, cache-first or network-first-with-offline-fallback.
"""

from typing import Awaitable, Callable, Optional, TYPE_CHECKING

from shared.errors import NetworkError, StorageError
from shared.logging import get_logger
from .classifier import RequestClassifier
from .models import (
    CacheNames,
    CacheRequest,
    CachedResponse,
    ResponseSource,
    StrategyKind,
    StrategyResult,
    offline_api_response,
    offline_content_response,
)
from .storage import CacheStorage, CacheStore, limit_cache_size

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


Fetcher = Callable[[CacheRequest], Awaitable[CachedResponse]]

DEFAULT_API_MAX_ENTRIES = 50
DEFAULT_DYNAMIC_MAX_ENTRIES = 100


class CacheStrategyRouter:
    """Applies the caching strategy matching each intercepted request."""

    def __init__(
        self,
        storage: CacheStorage,
        fetch: Fetcher,
        names: CacheNames,
        offline_page_url: str,
        *,
        classifier: Optional[RequestClassifier] = None,
        api_max_entries: int = DEFAULT_API_MAX_ENTRIES,
        dynamic_max_entries: int = DEFAULT_DYNAMIC_MAX_ENTRIES,
        metrics: Optional["MetricsCollector"] = None,
    ):
        self.storage = storage
        self.fetch = fetch
        self.names = names
        self.offline_page_url = offline_page_url
        self.classifier = classifier or RequestClassifier()
        self.api_max_entries = api_max_entries
        self.dynamic_max_entries = dynamic_max_entries
        self.metrics = metrics
        self.logger = get_logger("cache_gateway.router")

    async def handle(self, request: CacheRequest) -> Optional[StrategyResult]:
        """Serve a request through its strategy.

        Returns None when the request is not intercepted; the caller then
        forwards it to the network untouched.
        """
        rule, strategy = self.classifier.match(request)
        self.logger.debug("Request classified", url=request.url, method=request.method, rule=rule, strategy=strategy.value)

        if strategy is StrategyKind.BYPASS:
            return None
        if strategy is StrategyKind.NETWORK_FIRST:
            result = await self._network_first(request)
        elif strategy is StrategyKind.CACHE_FIRST:
            result = await self._cache_first(request)
        else:
            result = await self._network_first_with_fallback(request)

        if self.metrics:
            self.metrics.increment_counter(
                "cache_responses_total",
                strategy=result.strategy.value,
                source=result.source.value,
            )
        return result

    async def _fetch(self, request: CacheRequest, strategy: StrategyKind) -> CachedResponse:
        if self.metrics:
            with self.metrics.time_operation("upstream_fetch_duration_seconds", strategy=strategy.value):
                return await self.fetch(request)
        return await self.fetch(request)

    async def _network_first(self, request: CacheRequest) -> StrategyResult:
        strategy = StrategyKind.NETWORK_FIRST
        store = self.storage.open(self.names.api)
        try:
            response = await self._fetch(request, strategy)
        except NetworkError:
            cached = await self._safe_match(store, request.cache_key)
            if cached is not None:
                self.logger.info("Serving cached API response while offline", url=request.url)
                return StrategyResult(cached, strategy, ResponseSource.CACHE)
            self.logger.info("API unavailable offline and not cached", url=request.url)
            return StrategyResult(offline_api_response(), strategy, ResponseSource.OFFLINE)

        if response.ok:
            await self._store(store, request, response, self.api_max_entries)
        return StrategyResult(response, strategy, ResponseSource.NETWORK)

    async def _cache_first(self, request: CacheRequest) -> StrategyResult:
        strategy = StrategyKind.CACHE_FIRST
        store = self.storage.open(self.names.static)
        cached = await self._safe_match(store, request.cache_key)
        if cached is not None:
            return StrategyResult(cached, strategy, ResponseSource.CACHE)

        # No offline fallback for static assets: NetworkError propagates
        response = await self._fetch(request, strategy)
        if response.ok:
            await self._store(store, request, response, None)
        return StrategyResult(response, strategy, ResponseSource.NETWORK)

    async def _network_first_with_fallback(self, request: CacheRequest) -> StrategyResult:
        strategy = StrategyKind.NETWORK_FIRST_OFFLINE
        store = self.storage.open(self.names.dynamic)
        try:
            response = await self._fetch(request, strategy)
        except NetworkError:
            cached = await self._safe_match(store, request.cache_key)
            if cached is None:
                # precached documents such as the root page live in static
                cached = await self._safe_match(self.storage.open(self.names.static), request.cache_key)
            if cached is not None:
                self.logger.info("Serving cached page while offline", url=request.url)
                return StrategyResult(cached, strategy, ResponseSource.CACHE)

            if request.is_navigation:
                offline_page = await self._safe_match(
                    self.storage.open(self.names.static),
                    CacheRequest(url=self.offline_page_url).cache_key,
                )
                if offline_page is not None:
                    self.logger.info("Serving offline page", url=request.url)
                    return StrategyResult(offline_page, strategy, ResponseSource.OFFLINE)

            self.logger.info("Content unavailable offline", url=request.url, navigation=request.is_navigation)
            return StrategyResult(offline_content_response(), strategy, ResponseSource.OFFLINE)

        if response.ok:
            await self._store(store, request, response, self.dynamic_max_entries)
        return StrategyResult(response, strategy, ResponseSource.NETWORK)

    async def _safe_match(self, store: CacheStore, key: str) -> Optional[CachedResponse]:
        """Look up a store, treating storage failures as a miss."""
        try:
            return await store.match(key)
        except StorageError as exc:
            self.logger.warning("Cache lookup failed; treating as miss", store=store.name, key=key, error=exc.message)
            return None

    async def _store(
        self,
        store: CacheStore,
        request: CacheRequest,
        response: CachedResponse,
        max_entries: Optional[int],
    ) -> None:
        """Write a clone of the response and drain the store to its bound."""
        try:
            await store.put(request.cache_key, response.clone())
            if max_entries is None:
                return
            evicted = await limit_cache_size(store, max_entries)
        except StorageError as exc:
            self.logger.warning("Cache write failed", store=store.name, key=request.cache_key, error=exc.message)
            return

        if evicted and self.metrics:
            self.metrics.increment_counter("cache_evictions_total", amount=evicted, store=store.name)
