"""
Direct HTTP/CDN engine.

Streams direct audio file URLs and CDN-hosted media. Has no search
capability.
"""

import logging
from typing import Optional, Sequence
from urllib.parse import unquote, urlparse

import httpx

from orchestream.engines.base import (
    BaseEngine,
    EngineCapability,
    StreamOptions,
    StreamTarget,
    TrackDescriptor,
    target_url,
)
from orchestream.engines.http import DEFAULT_USER_AGENTS, default_headers, open_http_stream
from orchestream.engines.stream import StreamHandle
from orchestream.errors import NotSupportedError, ResolutionFailedError

logger = logging.getLogger(__name__)


class DirectHTTPEngine(BaseEngine):
    """
    Generic HTTP fetcher for direct audio URLs.

    Features:
    - Recognizes audio file extensions and common CDN host patterns
    - HEAD-based metadata (title from filename, duration estimate)
    - Ranged GET streaming with rotating User-Agent
    """

    name = "direct_http"
    default_priority = 3
    capabilities = frozenset({EngineCapability.RESOLVE_URL, EngineCapability.OPEN_STREAM})

    AUDIO_EXTENSIONS = (".mp3", ".m4a", ".wav", ".ogg", ".oga", ".opus", ".aac", ".flac", ".webm")
    STREAMING_HOST_PREFIXES = ("cdn.", "stream.", "audio.", "media.")
    STREAMING_HOST_SUFFIXES = ("googlevideo.com", "cloudfront.net", "sndcdn.com")

    # Rough bitrate used to estimate duration: 128kbps = 16KB/s
    ESTIMATE_BYTES_PER_SECOND = 16000

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        user_agents: Sequence[str] = DEFAULT_USER_AGENTS,
    ):
        super().__init__()
        self._client = client
        self._owns_client = client is None
        self.user_agents = list(user_agents)

    async def initialize(self) -> bool:
        if self._client is None:
            self._client = httpx.AsyncClient(follow_redirects=True, max_redirects=5)
        self.initialized = True
        return True

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
        self.initialized = False

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(follow_redirects=True, max_redirects=5)
        return self._client

    def can_handle(self, url: str) -> bool:
        """Check for a direct audio file or a known streaming host."""
        if not isinstance(url, str):
            return False

        parsed = urlparse(url.strip())
        if parsed.scheme not in ("http", "https"):
            return False

        path = parsed.path.lower()
        host = (parsed.hostname or "").lower()

        if path.endswith(self.AUDIO_EXTENSIONS):
            return True
        if host.startswith(self.STREAMING_HOST_PREFIXES):
            return True
        return host.endswith(self.STREAMING_HOST_SUFFIXES)

    def _title_from_url(self, url: str) -> str:
        filename = unquote(urlparse(url).path.rstrip("/").rsplit("/", 1)[-1])
        if not filename:
            return "Unknown Track"
        stem, dot, _ = filename.rpartition(".")
        return stem if dot and stem else filename

    def _estimate_duration(self, content_length: Optional[str]) -> Optional[float]:
        if not content_length:
            return None
        try:
            return float(int(content_length) // self.ESTIMATE_BYTES_PER_SECOND)
        except ValueError:
            return None

    async def resolve_url(self, url: str, timeout: float) -> TrackDescriptor:
        """Resolve basic metadata with a HEAD request."""
        if not self.can_handle(url):
            raise NotSupportedError(f"Not a direct media URL: {url}", engine=self.name)

        try:
            response = await self.client.head(
                url,
                headers={"User-Agent": default_headers(self.user_agents)["User-Agent"]},
                timeout=timeout,
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            raise ResolutionFailedError(
                f"HEAD {url} returned HTTP {status}",
                engine=self.name,
                is_retryable=status in (408, 429) or status >= 500,
                original_error=e,
            ) from e
        except httpx.HTTPError as e:
            raise ResolutionFailedError(
                f"HEAD {url} failed: {e}",
                engine=self.name,
                original_error=e,
            ) from e

        final_url = str(response.url)
        return TrackDescriptor(
            title=self._title_from_url(final_url),
            author="Unknown Artist",
            duration_seconds=self._estimate_duration(response.headers.get("content-length")),
            source_tag=self.name,
            canonical_url=url,
            stream_url=final_url,
            extra={
                "content_type": response.headers.get("content-type"),
                "size": response.headers.get("content-length"),
            },
        )

    async def open_stream(
        self,
        target: StreamTarget,
        options: StreamOptions,
        timeout: float,
    ) -> StreamHandle:
        """Open a ranged GET stream of the media URL."""
        url = target_url(target)
        if not self.can_handle(url):
            raise NotSupportedError(f"Not a direct media URL: {url}", engine=self.name)

        logger.debug(f"[{self.name}] Fetching direct stream: {url}")
        byte_stream = await open_http_stream(
            self.client,
            url,
            timeout=timeout,
            engine=self.name,
            headers=default_headers(self.user_agents),
            chunk_size=options.chunk_size,
            first_byte_timeout=options.first_byte_timeout,
        )

        if isinstance(target, TrackDescriptor):
            track = target
        else:
            track = TrackDescriptor(
                title=self._title_from_url(url),
                author="Unknown Artist",
                duration_seconds=None,
                source_tag=self.name,
                canonical_url=url,
                stream_url=url,
            )

        return StreamHandle(byte_stream, track, source_tag=self.name)
