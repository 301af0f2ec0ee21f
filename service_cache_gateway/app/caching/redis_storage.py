"""
Redis-backed cache storage that survives gateway restarts.

Layout per store ``<name>`` under the configured prefix:
- ``<prefix>:stores``: set of existing store names
- ``<prefix>:store:<name>:entries``: hash of key -> serialized snapshot
- ``<prefix>:store:<name>:order``: sorted set of key -> insertion sequence
- ``<prefix>:seq``: global insertion counter
"""

from contextlib import asynccontextmanager
from typing import List, Optional

import redis.asyncio as redis

from shared.errors import StorageError
from shared.logging import get_logger
from .models import CachedResponse
from .storage import CacheStorage, CacheStore


def _decode(value) -> str:
    return value.decode("utf-8") if isinstance(value, bytes) else value


class RedisCacheStore(CacheStore):
    """Store handle for one Redis-backed store."""

    def __init__(self, storage: "RedisCacheStorage", name: str):
        super().__init__(name)
        self._storage = storage
        self._entries_key = storage._store_key(name, "entries")
        self._order_key = storage._store_key(name, "order")

    async def match(self, key: str) -> Optional[CachedResponse]:
        async with self._storage._errors("match", store=self.name):
            client = await self._storage._get_redis()
            payload = await client.hget(self._entries_key, key)
        if payload is None:
            return None
        return CachedResponse.from_json(payload)

    async def put(self, key: str, response: CachedResponse) -> None:
        async with self._storage._errors("put", store=self.name):
            client = await self._storage._get_redis()
            sequence = await client.incr(self._storage._seq_key)
            async with client.pipeline(transaction=True) as pipe:
                pipe.hset(self._entries_key, key, response.to_json())
                pipe.zadd(self._order_key, {key: sequence})
                pipe.sadd(self._storage._stores_key, self.name)
                await pipe.execute()

    async def delete(self, key: str) -> bool:
        async with self._storage._errors("delete", store=self.name):
            client = await self._storage._get_redis()
            async with client.pipeline(transaction=True) as pipe:
                pipe.hdel(self._entries_key, key)
                pipe.zrem(self._order_key, key)
                removed, _ = await pipe.execute()
        return bool(removed)

    async def keys(self) -> List[str]:
        async with self._storage._errors("keys", store=self.name):
            client = await self._storage._get_redis()
            members = await client.zrange(self._order_key, 0, -1)
        return [_decode(member) for member in members]

    async def size(self) -> int:
        async with self._storage._errors("size", store=self.name):
            client = await self._storage._get_redis()
            return int(await client.zcard(self._order_key))


class RedisCacheStorage(CacheStorage):
    """Durable cache storage on Redis."""

    def __init__(self, redis_url: str, prefix: str = "cache_gw", client: Optional[redis.Redis] = None):
        self.redis_url = redis_url
        self.prefix = prefix
        self.logger = get_logger("cache_gateway.redis_storage")
        self._redis: Optional[redis.Redis] = client
        self._stores_key = f"{prefix}:stores"
        self._seq_key = f"{prefix}:seq"

    async def _get_redis(self) -> redis.Redis:
        """Get Redis connection."""
        if self._redis is None:
            self._redis = redis.from_url(self.redis_url)
        return self._redis

    def _store_key(self, name: str, suffix: str) -> str:
        return f"{self.prefix}:store:{name}:{suffix}"

    @asynccontextmanager
    async def _errors(self, operation: str, **context):
        try:
            yield
        except redis.RedisError as exc:
            self.logger.error("Cache storage error", operation=operation, error=str(exc), **context)
            raise StorageError(
                f"Redis {operation} failed",
                details={"operation": operation, "error": str(exc), **context}
            ) from exc

    def open(self, name: str) -> CacheStore:
        return RedisCacheStore(self, name)

    async def names(self) -> List[str]:
        async with self._errors("names"):
            client = await self._get_redis()
            members = await client.smembers(self._stores_key)
        return sorted(_decode(member) for member in members)

    async def delete(self, name: str) -> bool:
        async with self._errors("delete_store", store=name):
            client = await self._get_redis()
            async with client.pipeline(transaction=True) as pipe:
                pipe.delete(self._store_key(name, "entries"), self._store_key(name, "order"))
                pipe.srem(self._stores_key, name)
                _, removed = await pipe.execute()
        return bool(removed)

    async def ping(self) -> bool:
        async with self._errors("ping"):
            client = await self._get_redis()
            return bool(await client.ping())

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None
