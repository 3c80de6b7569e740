"""
Base engine adapter and common types.

Provides the abstract base class for all engine adapters and the data
models passed between engines, the dispatcher, and callers.
"""

import logging
from abc import ABC
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Optional, Union

from orchestream.errors import NotSupportedError

if TYPE_CHECKING:
    from orchestream.engines.stream import StreamHandle

logger = logging.getLogger(__name__)


class EngineCapability(str, Enum):
    """Operations an engine may implement."""

    RESOLVE_URL = "resolve_url"
    SEARCH = "search"
    OPEN_STREAM = "open_stream"


@dataclass(frozen=True)
class TrackDescriptor:
    """
    Track metadata produced by an engine's resolve or search capability.

    Attributes:
        title: Track title
        author: Artist, uploader or creator
        duration_seconds: Duration (None when unknown)
        source_tag: Name of the engine/source that produced it
        canonical_url: Stable URL identifying the track
        thumbnail_url: Optional artwork URL
        stream_url: Direct media URL when the engine already knows it
        extra: Additional source-specific metadata
    """

    title: str
    author: str
    duration_seconds: Optional[float]
    source_tag: str
    canonical_url: str
    thumbnail_url: Optional[str] = None
    stream_url: Optional[str] = None
    extra: dict[str, Any] = field(default_factory=dict, compare=False, hash=False)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class StreamOptions:
    """Caller options for opening a stream."""

    preferred_quality: str = "bestaudio"
    retry_on_error: bool = True
    chunk_size: int = 65536
    first_byte_timeout: Optional[float] = None


@dataclass(frozen=True)
class EngineDescriptor:
    """
    Explicit priority and capability data for a registered engine.

    Lower priority is tried first; ties are broken by registration order.
    """

    name: str
    priority: int
    capabilities: frozenset[EngineCapability]
    initialized: bool = False
    registration_index: int = 0
    requires_auth: bool = False

    @property
    def sort_key(self) -> tuple[int, int]:
        return (self.priority, self.registration_index)

    def supports(self, capability: EngineCapability) -> bool:
        return capability in self.capabilities

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "priority": self.priority,
            "capabilities": sorted(c.value for c in self.capabilities),
            "initialized": self.initialized,
            "requires_auth": self.requires_auth,
        }


StreamTarget = Union[TrackDescriptor, str]


def target_url(target: StreamTarget) -> str:
    """Get the URL to stream for a track or raw URL."""
    if isinstance(target, TrackDescriptor):
        return target.stream_url or target.canonical_url
    return target


def target_urls(target: StreamTarget) -> tuple[str, ...]:
    """Every URL an engine may recognize a target by, canonical first."""
    if isinstance(target, TrackDescriptor):
        urls = [target.canonical_url]
        if target.stream_url and target.stream_url != target.canonical_url:
            urls.append(target.stream_url)
        return tuple(urls)
    return (target,)


class BaseEngine(ABC):
    """
    Abstract base class for engine adapters.

    Each adapter implements a subset of the capability set. Unimplemented
    capabilities raise NotSupportedError. Every network-facing method
    receives a deadline (seconds) and must not outlive it; the caller
    cancels the coroutine when the deadline passes.
    """

    name: str = "base"
    default_priority: int = 100
    capabilities: frozenset[EngineCapability] = frozenset()
    requires_auth: bool = False

    def __init__(self):
        self.initialized = False

    async def initialize(self) -> bool:
        """
        Prepare the engine for use.

        Returns:
            True if the engine is ready
        """
        self.initialized = True
        return True

    async def close(self) -> None:
        """Release engine resources (HTTP clients, etc)."""
        pass

    def can_handle(self, url: str) -> bool:
        """
        Check if this engine recognizes the given URL.

        Override for source-specific URL matching.
        """
        return True

    async def resolve_url(self, url: str, timeout: float) -> TrackDescriptor:
        """
        Resolve a URL to track metadata without opening a stream.

        Raises:
            NotSupportedError: Engine does not resolve URLs
            ResolutionFailedError: Resolution failed
        """
        raise NotSupportedError(f"{self.name} does not resolve URLs", engine=self.name)

    async def search(self, query: str, limit: int, timeout: float) -> list[TrackDescriptor]:
        """
        Search for up to `limit` tracks.

        An empty list means "no matches" and is not an error.
        """
        raise NotSupportedError(f"{self.name} does not support search", engine=self.name)

    async def open_stream(
        self,
        target: StreamTarget,
        options: StreamOptions,
        timeout: float,
    ) -> "StreamHandle":
        """
        Open a readable byte-stream.

        Must return only once at least one byte is guaranteed forthcoming.

        Raises:
            StreamUnavailableError: No stream could be opened
        """
        raise NotSupportedError(f"{self.name} does not open streams", engine=self.name)

    def describe_status(self) -> dict[str, Any]:
        """Side-effect-free introspection."""
        return {
            "name": self.name,
            "priority": self.default_priority,
            "capabilities": sorted(c.value for c in self.capabilities),
            "requires_auth": self.requires_auth,
            "initialized": self.initialized,
        }
