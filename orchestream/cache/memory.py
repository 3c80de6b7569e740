"""
In-memory FIFO cache with per-entry TTL.
"""

import time
from collections import OrderedDict
from dataclasses import dataclass
from threading import Lock
from typing import Any, Callable, Dict, List, Optional

from orchestream.cache.base import CacheBackend, CacheConfig


@dataclass
class CacheEntry:
    """A single cache entry."""
    key: str
    value: Any
    created_at: float
    ttl: float

    def is_expired(self, now: float) -> bool:
        """Check if entry is older than its TTL."""
        return now - self.created_at > self.ttl

    def ttl_remaining(self, now: float) -> float:
        """Get remaining TTL in seconds."""
        return max(0.0, self.ttl - (now - self.created_at))


class MemoryCache(CacheBackend):
    """
    Thread-safe in-memory cache with TTL support.

    Features:
    - FIFO eviction (oldest insert first) when max entries reached
    - Lazy expiration: an expired entry is deleted when read
    - Injectable clock for deterministic expiry

    Reads never reorder entries; this is not an LRU.
    """

    def __init__(
        self,
        config: Optional[CacheConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        super().__init__(config)
        self._cache: OrderedDict[str, CacheEntry] = OrderedDict()
        self._lock = Lock()
        self._clock = clock

    def __len__(self) -> int:
        return len(self._cache)

    def _evict_oldest(self) -> None:
        """Evict the oldest-inserted entries until there is room for one more."""
        while len(self._cache) >= self.config.max_entries:
            self._cache.popitem(last=False)
            if self.config.enable_stats:
                self.stats.evictions += 1

    async def get(self, key: str) -> Optional[Any]:
        """Get a value from cache."""
        with self._lock:
            entry = self._cache.get(key)

            if entry is None:
                if self.config.enable_stats:
                    self.stats.misses += 1
                return None

            if entry.is_expired(self._clock()):
                del self._cache[key]
                if self.config.enable_stats:
                    self.stats.misses += 1
                    self.stats.expirations += 1
                    self.stats.entry_count = len(self._cache)
                return None

            if self.config.enable_stats:
                self.stats.hits += 1
            return entry.value

    async def set(self, key: str, value: Any, ttl: Optional[float] = None) -> bool:
        """Set a value in cache."""
        if ttl is None:
            ttl = self.config.default_ttl

        with self._lock:
            # Re-inserting a key counts as a fresh insert
            self._cache.pop(key, None)
            self._evict_oldest()

            self._cache[key] = CacheEntry(
                key=key,
                value=value,
                created_at=self._clock(),
                ttl=ttl,
            )

            if self.config.enable_stats:
                self.stats.sets += 1
                self.stats.entry_count = len(self._cache)

        return True

    async def delete(self, key: str) -> bool:
        """Delete a value from cache."""
        with self._lock:
            if key in self._cache:
                del self._cache[key]
                if self.config.enable_stats:
                    self.stats.deletes += 1
                    self.stats.entry_count = len(self._cache)
                return True
            return False

    async def exists(self, key: str) -> bool:
        """Check if a live entry exists for key."""
        with self._lock:
            entry = self._cache.get(key)
            if entry is None:
                return False
            if entry.is_expired(self._clock()):
                del self._cache[key]
                return False
            return True

    async def clear(self) -> int:
        """Clear all cache entries."""
        with self._lock:
            count = len(self._cache)
            self._cache.clear()
            if self.config.enable_stats:
                self.stats.entry_count = 0
            return count

    async def get_keys(self) -> List[str]:
        """Get all keys in insertion order."""
        with self._lock:
            return list(self._cache.keys())

    async def get_entry_info(self, key: str) -> Optional[Dict[str, Any]]:
        """Get metadata about a live cache entry."""
        with self._lock:
            entry = self._cache.get(key)
            now = self._clock()
            if entry is None or entry.is_expired(now):
                return None

            return {
                "key": key,
                "created_at": entry.created_at,
                "ttl": entry.ttl,
                "ttl_remaining": round(entry.ttl_remaining(now), 3),
            }
