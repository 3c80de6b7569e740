"""
Orchestream Caching Layer

Short-TTL memoization of resolved tracks and search results, keyed by a
normalized request signature.
"""

from orchestream.cache.base import (
    CacheBackend,
    CacheConfig,
    CacheStats,
    make_cache_key,
    normalize_query,
    normalize_url,
)
from orchestream.cache.memory import CacheEntry, MemoryCache

__all__ = [
    "CacheBackend",
    "CacheConfig",
    "CacheEntry",
    "CacheStats",
    "MemoryCache",
    "make_cache_key",
    "normalize_query",
    "normalize_url",
]
