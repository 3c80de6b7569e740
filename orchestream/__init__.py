"""
Orchestream - Multi-Source Audio Streaming Orchestrator

Turns a playback request (URL or free-text query) into a live audio
byte-stream:
- Multiple backend engines tried in priority order (YouTube, Archive.org, direct HTTP)
- Bounded number of concurrently open streams
- Per-engine retries with deadlines
- Short-TTL caching of resolved tracks and search results
- Per-engine statistics and health monitoring
"""

__version__ = "1.0.0"
__author__ = "Orchestream Contributors"
__license__ = "MIT"

from orchestream.config import get_config, load_config

__all__ = [
    "__version__",
    "get_config",
    "load_config",
]
