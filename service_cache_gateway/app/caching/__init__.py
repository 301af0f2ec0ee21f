"""
Caching package for the cache gateway.

- classifier: ordered request classification rules
- router: the three caching strategies
- storage / redis_storage: named, versioned, insertion-ordered stores
"""

from .classifier import RequestClassifier
from .factory import create_cache_storage
from .models import CacheNames, CacheRequest, CachedResponse, ResponseSource, StrategyKind, StrategyResult
from .router import CacheStrategyRouter
from .storage import CacheStorage, CacheStore, InMemoryCacheStorage, limit_cache_size

__all__ = [
    "CacheNames",
    "CacheRequest",
    "CachedResponse",
    "CacheStorage",
    "CacheStore",
    "CacheStrategyRouter",
    "InMemoryCacheStorage",
    "RequestClassifier",
    "ResponseSource",
    "StrategyKind",
    "StrategyResult",
    "create_cache_storage",
    "limit_cache_size",
]
