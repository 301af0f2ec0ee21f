"""
Factory for cache storage instantiation.
"""

from shared.config import BaseConfig
from shared.errors import ValidationError
from .storage import CacheStorage, InMemoryCacheStorage


def create_cache_storage(config: BaseConfig) -> CacheStorage:
    """Instantiate the configured cache backend ("redis" or "memory")."""
    backend = config.cache_backend.lower()

    if backend == "memory":
        return InMemoryCacheStorage()

    if backend == "redis":
        from .redis_storage import RedisCacheStorage
        return RedisCacheStorage(config.redis_url, prefix=config.cache_key_prefix)

    raise ValidationError(
        f"Unsupported cache backend: {config.cache_backend!r}",
        details={"cache_backend": config.cache_backend}
    )
