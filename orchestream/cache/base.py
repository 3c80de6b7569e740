"""
Cache backend interface, configuration, and key normalization.
"""

import hashlib
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional


@dataclass
class CacheConfig:
    """Cache configuration settings."""

    # Default TTL in seconds
    default_ttl: float = 300.0

    # Maximum number of entries before FIFO eviction
    max_entries: int = 500

    # Whether to collect hit/miss statistics
    enable_stats: bool = True


@dataclass
class CacheStats:
    """Cache statistics."""
    hits: int = 0
    misses: int = 0
    sets: int = 0
    deletes: int = 0
    evictions: int = 0
    expirations: int = 0
    entry_count: int = 0

    @property
    def hit_rate(self) -> float:
        """Calculate cache hit rate."""
        total = self.hits + self.misses
        return (self.hits / total * 100) if total > 0 else 0.0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "hits": self.hits,
            "misses": self.misses,
            "sets": self.sets,
            "deletes": self.deletes,
            "evictions": self.evictions,
            "expirations": self.expirations,
            "hit_rate": round(self.hit_rate, 2),
            "entry_count": self.entry_count,
        }


class CacheBackend(ABC):
    """Abstract cache backend interface."""

    def __init__(self, config: Optional[CacheConfig] = None):
        self.config = config or CacheConfig()
        self.stats = CacheStats()

    @abstractmethod
    async def get(self, key: str) -> Optional[Any]:
        """Get a value from cache."""
        pass

    @abstractmethod
    async def set(self, key: str, value: Any, ttl: Optional[float] = None) -> bool:
        """Set a value in cache."""
        pass

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Delete a value from cache."""
        pass

    @abstractmethod
    async def exists(self, key: str) -> bool:
        """Check if key exists in cache."""
        pass

    @abstractmethod
    async def clear(self) -> int:
        """Clear all entries. Returns count of cleared entries."""
        pass

    def get_stats(self) -> CacheStats:
        """Get cache statistics."""
        return self.stats


_WHITESPACE = re.compile(r"\s+")


def normalize_url(url: str) -> str:
    """Normalize a URL for use in a cache key (trimmed, lowercased, no fragment)."""
    return url.strip().split("#", 1)[0].lower()


def normalize_query(query: str) -> str:
    """Normalize a free-text query (lowercased, collapsed whitespace)."""
    return _WHITESPACE.sub(" ", query.strip().lower())


def make_cache_key(operation: str, *args: Any) -> str:
    """
    Build the normalized request signature for an operation.

    Examples:
        make_cache_key("resolve", "https://Example.com/a.mp3") -> "resolve:https://example.com/a.mp3"
        make_cache_key("search", "Test  Song", 5) -> "search:test song:5"
    """
    key_parts = [operation]

    for arg in args:
        if arg is None:
            continue
        if isinstance(arg, str):
            if operation == "resolve":
                key_parts.append(normalize_url(arg))
            else:
                key_parts.append(normalize_query(arg))
        else:
            key_parts.append(str(arg))

    key_string = ":".join(key_parts)

    # Hash long keys
    if len(key_string) > 200:
        return f"{operation}:{hashlib.sha256(key_string.encode()).hexdigest()[:32]}"

    return key_string
