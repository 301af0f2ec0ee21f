"""
Named, versioned cache stores.

A ``CacheStorage`` is the process-wide collection of stores; ``open`` hands
out a ``CacheStore`` handle for one store name. Stores come into existence on
their first write and keep their keys in insertion order, which is the
eviction order used by ``limit_cache_size``.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from shared.logging import get_logger
from .models import CachedResponse


logger = get_logger("cache_gateway.storage")


class CacheStore(ABC):
    """Handle for a single named store."""

    def __init__(self, name: str):
        self.name = name

    @abstractmethod
    async def match(self, key: str) -> Optional[CachedResponse]:
        """Return the snapshot stored under key, if any."""

    @abstractmethod
    async def put(self, key: str, response: CachedResponse) -> None:
        """Store a snapshot; an existing key moves to the newest position."""

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Remove one entry. Returns False if it was not present."""

    @abstractmethod
    async def keys(self) -> List[str]:
        """Keys in insertion order, oldest first."""

    async def size(self) -> int:
        return len(await self.keys())


class CacheStorage(ABC):
    """Process-wide collection of named stores."""

    @abstractmethod
    def open(self, name: str) -> CacheStore:
        """Get a handle for a store. Does not create the store."""

    @abstractmethod
    async def names(self) -> List[str]:
        """Names of the stores that currently exist."""

    @abstractmethod
    async def delete(self, name: str) -> bool:
        """Delete a whole store. Returns False if it did not exist."""

    async def has(self, name: str) -> bool:
        return name in await self.names()

    async def close(self) -> None:
        return None


class InMemoryCacheStore(CacheStore):
    """Store handle backed by the owning storage's dict of dicts."""

    def __init__(self, storage: "InMemoryCacheStorage", name: str):
        super().__init__(name)
        self._storage = storage

    def _entries(self) -> Optional[Dict[str, CachedResponse]]:
        return self._storage._stores.get(self.name)

    async def match(self, key: str) -> Optional[CachedResponse]:
        entries = self._entries()
        if entries is None:
            return None
        cached = entries.get(key)
        return cached.clone() if cached is not None else None

    async def put(self, key: str, response: CachedResponse) -> None:
        entries = self._storage._stores.setdefault(self.name, {})
        entries.pop(key, None)
        entries[key] = response.clone()

    async def delete(self, key: str) -> bool:
        entries = self._entries()
        if entries is None or key not in entries:
            return False
        del entries[key]
        return True

    async def keys(self) -> List[str]:
        entries = self._entries()
        return list(entries) if entries else []


class InMemoryCacheStorage(CacheStorage):
    """Process-local storage suitable for development and tests."""

    def __init__(self):
        self._stores: Dict[str, Dict[str, CachedResponse]] = {}

    def open(self, name: str) -> CacheStore:
        return InMemoryCacheStore(self, name)

    async def names(self) -> List[str]:
        return list(self._stores)

    async def delete(self, name: str) -> bool:
        return self._stores.pop(name, None) is not None


async def limit_cache_size(store: CacheStore, max_entries: int) -> int:
    """Evict oldest-inserted entries until the store is within max_entries.

    Entries are removed one at a time. Returns the number evicted.
    """
    keys = await store.keys()
    overflow = len(keys) - max_entries
    evicted = 0
    for key in keys[:max(overflow, 0)]:
        if await store.delete(key):
            evicted += 1
            logger.debug("Evicted cache entry", store=store.name, key=key)
    return evicted
