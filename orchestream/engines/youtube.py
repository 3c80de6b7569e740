"""
YouTube engine using yt-dlp.

Resolves YouTube URLs to track metadata, searches YouTube, and streams the
best audio format from the CDN.
"""

import asyncio
import functools
import logging
import re
from pathlib import Path
from typing import Any, Optional

import httpx
import yt_dlp

from orchestream.engines.base import (
    BaseEngine,
    EngineCapability,
    StreamOptions,
    StreamTarget,
    TrackDescriptor,
    target_url,
)
from orchestream.engines.http import open_http_stream
from orchestream.engines.stream import StreamHandle
from orchestream.errors import (
    EmptyResultError,
    EngineError,
    NotSupportedError,
    ResolutionFailedError,
    StreamUnavailableError,
)

logger = logging.getLogger(__name__)


class YouTubeEngine(BaseEngine):
    """
    YouTube engine using yt-dlp.

    Features:
    - Video ID extraction from various URL formats
    - ytsearch-based free-text search (flat extraction, no format lookup)
    - Audio-only format selection for streaming
    - Cookie support for authenticated content
    - Error classification for private/unavailable videos and rate limits

    yt-dlp is blocking and runs in the default executor. Executor threads
    cannot be interrupted, so each call also passes the deadline to yt-dlp
    as its socket timeout.
    """

    name = "youtube"
    default_priority = 0
    capabilities = frozenset({
        EngineCapability.RESOLVE_URL,
        EngineCapability.SEARCH,
        EngineCapability.OPEN_STREAM,
    })

    # Regex patterns for YouTube video IDs
    VIDEO_ID_PATTERNS = [
        r"(?:youtube\.com/watch\?(?:.*&)?v=|youtu\.be/|youtube\.com/embed/)([a-zA-Z0-9_-]{11})",
        r"youtube\.com/v/([a-zA-Z0-9_-]{11})",
        r"youtube\.com/shorts/([a-zA-Z0-9_-]{11})",
    ]

    # Headers for CDN requests
    CDN_HEADERS = {
        "User-Agent": (
            "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
            "AppleWebKit/537.36 (KHTML, like Gecko) "
            "Chrome/120.0.0.0 Safari/537.36"
        ),
        "Referer": "https://www.youtube.com/",
        "Origin": "https://www.youtube.com",
    }

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        cookies_file: Optional[str] = None,
        preferred_quality: str = "bestaudio",
    ):
        """
        Initialize YouTube engine.

        Args:
            client: Shared HTTP client for CDN streaming
            cookies_file: Path to YouTube cookies file (Netscape format)
            preferred_quality: yt-dlp format selector for audio
        """
        super().__init__()
        self._client = client
        self._owns_client = client is None
        self.cookies_file = cookies_file
        self.preferred_quality = preferred_quality

    async def initialize(self) -> bool:
        if self._client is None:
            self._client = httpx.AsyncClient(follow_redirects=True)
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
            self._client = httpx.AsyncClient(follow_redirects=True)
        return self._client

    def can_handle(self, url: str) -> bool:
        if not isinstance(url, str):
            return False
        url_lower = url.lower()
        return "youtube.com" in url_lower or "youtu.be" in url_lower

    def _extract_video_id(self, url: str) -> Optional[str]:
        """
        Extract video ID from a YouTube URL.

        Supports:
        - youtube.com/watch?v=VIDEO_ID
        - youtu.be/VIDEO_ID
        - youtube.com/embed/VIDEO_ID
        - youtube.com/v/VIDEO_ID
        - youtube.com/shorts/VIDEO_ID
        """
        for pattern in self.VIDEO_ID_PATTERNS:
            match = re.search(pattern, url)
            if match:
                return match.group(1)

        # Check if it's already a video ID
        if re.match(r"^[a-zA-Z0-9_-]{11}$", url):
            return url

        return None

    def _format_selector(self, preferred_quality: Optional[str] = None) -> str:
        quality = preferred_quality or self.preferred_quality
        return f"{quality}[ext=m4a]/{quality}/best"

    def _ydl_options(self, timeout: float, **extra: Any) -> dict[str, Any]:
        ydl_opts = {
            "quiet": True,
            "no_warnings": True,
            "skip_download": True,
            "noplaylist": True,
            "socket_timeout": max(1, int(timeout)),
        }

        # Add cookies if available
        if self.cookies_file and Path(self.cookies_file).exists():
            ydl_opts["cookiefile"] = self.cookies_file

        ydl_opts.update(extra)
        return ydl_opts

    def _extract(self, url: str, ydl_opts: dict[str, Any]) -> Optional[dict[str, Any]]:
        """Run yt-dlp extraction (blocking, run in executor)."""
        with yt_dlp.YoutubeDL(ydl_opts) as ydl:
            return ydl.extract_info(url, download=False)

    async def _run_extract(self, url: str, ydl_opts: dict[str, Any]) -> Optional[dict[str, Any]]:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(self._extract, url, ydl_opts))

    def _classify_error(
        self,
        error: Exception,
        subject: str,
        error_class: type[EngineError] = ResolutionFailedError,
    ) -> EngineError:
        """Map yt-dlp failures to engine errors with retryability."""
        error_msg = str(error).lower()

        if "private video" in error_msg or "video is private" in error_msg:
            return error_class(
                f"Video is private: {subject}",
                engine=self.name,
                is_retryable=False,
                original_error=error,
            )
        if "video unavailable" in error_msg or "has been removed" in error_msg:
            return error_class(
                f"Video unavailable: {subject}",
                engine=self.name,
                is_retryable=False,
                original_error=error,
            )
        if "sign in" in error_msg or "confirm your age" in error_msg:
            return error_class(
                f"Authentication required for video: {subject}",
                engine=self.name,
                is_retryable=False,
                original_error=error,
            )
        if "too many requests" in error_msg or "rate limit" in error_msg or "429" in error_msg:
            return error_class(
                f"Rate limited by YouTube: {subject}",
                engine=self.name,
                is_retryable=True,
                original_error=error,
            )
        return error_class(
            f"Failed to extract YouTube info for {subject}: {error}",
            engine=self.name,
            is_retryable=True,
            original_error=error,
        )

    def _watch_url(self, video_id: str) -> str:
        return f"https://www.youtube.com/watch?v={video_id}"

    def _track_from_info(self, info: dict[str, Any], stream_url: Optional[str] = None) -> TrackDescriptor:
        video_id = info.get("id") or ""
        duration = info.get("duration")
        thumbnail = info.get("thumbnail")
        if not thumbnail and info.get("thumbnails"):
            thumbnail = info["thumbnails"][-1].get("url")

        return TrackDescriptor(
            title=info.get("title") or "Unknown Title",
            author=info.get("uploader") or info.get("channel") or "Unknown Artist",
            duration_seconds=float(duration) if duration is not None else None,
            source_tag=self.name,
            canonical_url=info.get("webpage_url") or self._watch_url(video_id),
            thumbnail_url=thumbnail,
            stream_url=stream_url,
            extra={
                "video_id": video_id,
                "view_count": info.get("view_count"),
                "acodec": info.get("acodec"),
            },
        )

    async def _extract_audio(
        self,
        url: str,
        timeout: float,
        preferred_quality: Optional[str] = None,
        error_class: type[EngineError] = ResolutionFailedError,
    ) -> tuple[dict[str, Any], Optional[str]]:
        video_id = self._extract_video_id(url)
        if not video_id:
            raise NotSupportedError(f"Could not extract video ID from URL: {url}", engine=self.name)

        ydl_opts = self._ydl_options(timeout, format=self._format_selector(preferred_quality))
        try:
            info = await self._run_extract(self._watch_url(video_id), ydl_opts)
        except yt_dlp.utils.DownloadError as e:
            raise self._classify_error(e, video_id, error_class) from e

        if not info:
            raise EmptyResultError(f"No info extracted for video: {video_id}", engine=self.name)

        # Get stream URL
        stream_url = info.get("url")
        if not stream_url:
            requested = info.get("requested_formats") or []
            audio = [f for f in requested if f.get("acodec") not in (None, "none")]
            if audio:
                stream_url = audio[0].get("url")
        if not stream_url:
            formats = [
                f for f in info.get("formats") or []
                if f.get("acodec") not in (None, "none") and f.get("url")
            ]
            if formats:
                stream_url = formats[-1]["url"]

        return info, stream_url

    async def resolve_url(self, url: str, timeout: float) -> TrackDescriptor:
        """Resolve a YouTube URL to track metadata and an audio CDN URL."""
        info, stream_url = await self._extract_audio(url, timeout)
        track = self._track_from_info(info, stream_url)
        logger.info(f"Resolved YouTube video {track.extra.get('video_id')}: {track.title!r}")
        return track

    async def search(self, query: str, limit: int, timeout: float) -> list[TrackDescriptor]:
        """Search YouTube with a flat ytsearch extraction."""
        ydl_opts = self._ydl_options(timeout, extract_flat="in_playlist")
        try:
            info = await self._run_extract(f"ytsearch{max(1, limit)}:{query}", ydl_opts)
        except yt_dlp.utils.DownloadError as e:
            raise self._classify_error(e, repr(query)) from e

        entries = (info or {}).get("entries") or []
        results = []
        for entry in entries:
            if not entry or not entry.get("id"):
                continue
            results.append(self._track_from_info(entry))
            if len(results) >= limit:
                break

        logger.debug(f"[{self.name}] Search {query!r} returned {len(results)} results")
        return results

    async def open_stream(
        self,
        target: StreamTarget,
        options: StreamOptions,
        timeout: float,
    ) -> StreamHandle:
        """
        Stream the audio track of a YouTube video.

        CDN URLs expire, so the target is always re-resolved rather than
        trusting a cached stream_url.
        """
        url = target.canonical_url if isinstance(target, TrackDescriptor) else target_url(target)
        if not self.can_handle(url):
            raise NotSupportedError(f"Not a YouTube URL: {url}", engine=self.name)

        info, stream_url = await self._extract_audio(
            url,
            timeout,
            preferred_quality=options.preferred_quality,
            error_class=StreamUnavailableError,
        )
        if not stream_url:
            raise StreamUnavailableError(
                f"No audio format found for {url}",
                engine=self.name,
            )

        headers = dict(self.CDN_HEADERS)
        headers.update(info.get("http_headers") or {})

        byte_stream = await open_http_stream(
            self.client,
            stream_url,
            timeout=timeout,
            engine=self.name,
            headers=headers,
            chunk_size=options.chunk_size,
            first_byte_timeout=options.first_byte_timeout,
        )
        return StreamHandle(byte_stream, self._track_from_info(info, stream_url), source_tag=self.name)
