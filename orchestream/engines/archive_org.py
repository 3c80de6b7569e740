"""
Archive.org engine.

Searches Archive.org audio items, resolves item URLs to their first
playable audio file, and streams download URLs directly.
"""

import logging
import re
from typing import Any, Optional
from urllib.parse import quote, unquote

import httpx

from orchestream.engines.base import (
    BaseEngine,
    EngineCapability,
    StreamOptions,
    StreamTarget,
    TrackDescriptor,
    target_url,
)
from orchestream.engines.http import default_headers, open_http_stream
from orchestream.engines.stream import StreamHandle
from orchestream.errors import (
    EmptyResultError,
    NotSupportedError,
    ResolutionFailedError,
)

logger = logging.getLogger(__name__)


class ArchiveOrgEngine(BaseEngine):
    """
    Archive.org search and streaming engine.

    Archive.org URLs are permanent and don't expire, so resolved download
    URLs are safe to cache.

    Features:
    - Identifier extraction from details/download/embed URLs
    - Advanced search API restricted to audio items
    - Metadata API lookup of the preferred audio file
    - Properly encoded download URLs for filenames with spaces
    """

    name = "archive_org"
    default_priority = 1
    capabilities = frozenset({
        EngineCapability.RESOLVE_URL,
        EngineCapability.SEARCH,
        EngineCapability.OPEN_STREAM,
    })

    # Patterns for extracting Archive.org identifiers
    IDENTIFIER_PATTERNS = [
        r"archive\.org/details/([^/?#\s]+)",
        r"archive\.org/download/([^/?#\s]+)",
        r"archive\.org/embed/([^/?#\s]+)",
    ]

    # Audio formats in order of preference
    AUDIO_EXTENSIONS = (".mp3", ".ogg", ".flac", ".m4a", ".wav")

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        base_url: str = "https://archive.org",
    ):
        super().__init__()
        self._client = client
        self._owns_client = client is None
        self.base_url = base_url.rstrip("/")

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
        return isinstance(url, str) and "archive.org" in url.lower()

    def _extract_identifier(self, url: str) -> Optional[str]:
        """
        Extract Archive.org identifier from URL.

        Examples:
        - https://archive.org/details/identifier -> identifier
        - https://archive.org/download/identifier/file.mp3 -> identifier
        """
        for pattern in self.IDENTIFIER_PATTERNS:
            match = re.search(pattern, url)
            if match:
                return match.group(1)
        return None

    def _extract_filename(self, url: str) -> Optional[str]:
        """
        Extract filename from an Archive.org download URL.

        Example:
        - https://archive.org/download/identifier/file.mp3 -> file.mp3
        """
        match = re.search(r"archive\.org/download/[^/]+/(.+?)(?:\?|#|$)", url)
        if match:
            return unquote(match.group(1))
        return None

    def _download_url(self, identifier: str, filename: str) -> str:
        """Build a percent-encoded download URL (filenames often contain spaces)."""
        return f"{self.base_url}/download/{identifier}/{quote(filename, safe='/')}"

    def _details_url(self, identifier: str) -> str:
        return f"{self.base_url}/details/{identifier}"

    def _pick_audio_file(
        self,
        files: list[dict[str, Any]],
        wanted: Optional[str] = None,
    ) -> Optional[dict[str, Any]]:
        """Pick the requested file, else the first file of the most preferred format."""
        if wanted:
            for file_info in files:
                if file_info.get("name") == wanted:
                    return file_info

        for extension in self.AUDIO_EXTENSIONS:
            for file_info in files:
                name = str(file_info.get("name", "")).lower()
                if name.endswith(extension):
                    return file_info
        return None

    @staticmethod
    def _as_text(value: Any) -> Optional[str]:
        """Archive.org returns either a string or a list of strings."""
        if isinstance(value, list):
            return ", ".join(str(v) for v in value) if value else None
        return str(value) if value is not None else None

    @staticmethod
    def _parse_length(value: Any) -> Optional[float]:
        """Parse "123.45" or "MM:SS" / "HH:MM:SS" lengths."""
        if value is None:
            return None
        text = str(value)
        try:
            if ":" in text:
                seconds = 0.0
                for part in text.split(":"):
                    seconds = seconds * 60 + float(part)
                return seconds
            return float(text)
        except ValueError:
            return None

    async def _get_json(self, url: str, timeout: float, params: Optional[dict] = None) -> dict:
        response = await self.client.get(
            url,
            params=params,
            headers={"User-Agent": default_headers()["User-Agent"]},
            timeout=timeout,
        )
        response.raise_for_status()
        return response.json()

    async def resolve_url(self, url: str, timeout: float) -> TrackDescriptor:
        """Resolve an item or file URL via the metadata API."""
        identifier = self._extract_identifier(url)
        if not identifier:
            raise NotSupportedError(f"Not an Archive.org item URL: {url}", engine=self.name)

        try:
            metadata = await self._get_json(f"{self.base_url}/metadata/{identifier}", timeout)
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            # 464 is Archive.org's rate limit status
            raise ResolutionFailedError(
                f"Archive.org metadata returned HTTP {status} for {identifier}",
                engine=self.name,
                is_retryable=status in (429, 464) or status >= 500,
                original_error=e,
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            raise ResolutionFailedError(
                f"Archive.org metadata lookup failed for {identifier}: {e}",
                engine=self.name,
                original_error=e,
            ) from e

        files = metadata.get("files") or []
        if not files:
            raise EmptyResultError(
                f"Archive.org item {identifier} has no files",
                engine=self.name,
                is_retryable=False,
            )

        file_info = self._pick_audio_file(files, wanted=self._extract_filename(url))
        if file_info is None:
            raise EmptyResultError(
                f"Archive.org item {identifier} has no audio files",
                engine=self.name,
                is_retryable=False,
            )

        item = metadata.get("metadata") or {}
        filename = file_info["name"]
        return TrackDescriptor(
            title=self._as_text(file_info.get("title")) or self._as_text(item.get("title")) or filename,
            author=self._as_text(file_info.get("creator")) or self._as_text(item.get("creator")) or "Unknown",
            duration_seconds=self._parse_length(file_info.get("length")),
            source_tag=self.name,
            canonical_url=self._details_url(identifier),
            thumbnail_url=f"{self.base_url}/services/img/{identifier}",
            stream_url=self._download_url(identifier, filename),
            extra={"identifier": identifier, "filename": filename, "format": file_info.get("format")},
        )

    async def search(self, query: str, limit: int, timeout: float) -> list[TrackDescriptor]:
        """Search audio items with the advanced search API."""
        params = {
            "q": f"({query}) AND mediatype:(audio)",
            "fl[]": ["identifier", "title", "creator"],
            "rows": str(max(1, limit)),
            "page": "1",
            "output": "json",
        }

        try:
            payload = await self._get_json(f"{self.base_url}/advancedsearch.php", timeout, params=params)
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            raise ResolutionFailedError(
                f"Archive.org search returned HTTP {status}",
                engine=self.name,
                is_retryable=status in (429, 464) or status >= 500,
                original_error=e,
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            raise ResolutionFailedError(
                f"Archive.org search failed: {e}",
                engine=self.name,
                original_error=e,
            ) from e

        docs = (payload.get("response") or {}).get("docs") or []
        results = []
        for doc in docs[:limit]:
            identifier = doc.get("identifier")
            if not identifier:
                continue
            results.append(TrackDescriptor(
                title=self._as_text(doc.get("title")) or identifier,
                author=self._as_text(doc.get("creator")) or "Unknown",
                duration_seconds=None,
                source_tag=self.name,
                canonical_url=self._details_url(identifier),
                thumbnail_url=f"{self.base_url}/services/img/{identifier}",
                extra={"identifier": identifier},
            ))

        logger.debug(f"[{self.name}] Search {query!r} returned {len(results)} results")
        return results

    async def open_stream(
        self,
        target: StreamTarget,
        options: StreamOptions,
        timeout: float,
    ) -> StreamHandle:
        """Stream the item's audio file, resolving the item first if needed."""
        track = target if isinstance(target, TrackDescriptor) else None
        url = target_url(target)

        if not self.can_handle(url):
            raise NotSupportedError(f"Not an Archive.org URL: {url}", engine=self.name)

        if track is None or not track.stream_url:
            track = await self.resolve_url(url, timeout)

        byte_stream = await open_http_stream(
            self.client,
            track.stream_url,
            timeout=timeout,
            engine=self.name,
            headers=default_headers(),
            chunk_size=options.chunk_size,
            first_byte_timeout=options.first_byte_timeout,
        )
        return StreamHandle(byte_stream, track, source_tag=self.name)
