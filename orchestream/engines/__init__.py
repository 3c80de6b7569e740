"""
Orchestream engine adapters.

Each adapter implements a subset of resolve/search/open-stream against one
backend source.
"""

from orchestream.engines.archive_org import ArchiveOrgEngine
from orchestream.engines.base import (
    BaseEngine,
    EngineCapability,
    EngineDescriptor,
    StreamOptions,
    StreamTarget,
    TrackDescriptor,
    target_url,
    target_urls,
)
from orchestream.engines.direct_http import DirectHTTPEngine
from orchestream.engines.registry import EngineRegistry, RegisteredEngine, build_default_engines
from orchestream.engines.stream import ByteStream, StreamHandle, StreamState, TerminalReason
from orchestream.engines.youtube import YouTubeEngine

__all__ = [
    "ArchiveOrgEngine",
    "BaseEngine",
    "ByteStream",
    "DirectHTTPEngine",
    "EngineCapability",
    "EngineDescriptor",
    "EngineRegistry",
    "RegisteredEngine",
    "StreamHandle",
    "StreamOptions",
    "StreamState",
    "StreamTarget",
    "TerminalReason",
    "TrackDescriptor",
    "YouTubeEngine",
    "build_default_engines",
    "target_url",
    "target_urls",
]
