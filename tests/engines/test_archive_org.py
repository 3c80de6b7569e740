"""
Archive.org Engine Tests

Metadata and search API responses are served by httpx.MockTransport.
"""

import httpx
import pytest

from orchestream.engines.archive_org import ArchiveOrgEngine
from orchestream.engines.base import StreamOptions
from orchestream.errors import EmptyResultError, NotSupportedError, ResolutionFailedError


METADATA = {
    "metadata": {"identifier": "gd1977-05-08", "title": "Live at Barton Hall", "creator": "Grateful Dead"},
    "files": [
        {"name": "gd77-05-08.txt", "format": "Text"},
        {"name": "d1t01.flac", "format": "Flac", "length": "5:02"},
        {"name": "d1t01 Minglewood.mp3", "format": "VBR MP3", "title": "New Minglewood Blues", "length": "302.5"},
        {"name": "d1t02.mp3", "format": "VBR MP3", "length": "01:02:03"},
    ],
}

SEARCH_RESPONSE = {
    "response": {
        "numFound": 3,
        "docs": [
            {"identifier": "gd1977-05-08", "title": "Live at Barton Hall", "creator": ["Grateful Dead"]},
            {"title": "missing identifier"},
            {"identifier": "jazz-1959", "title": "Kind of Blue"},
        ],
    },
}


def mock_engine(handler) -> ArchiveOrgEngine:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return ArchiveOrgEngine(client=client)


@pytest.mark.unit
class TestUrlParsing:
    """Identifier and filename extraction."""

    def test_extract_identifier(self):
        engine = ArchiveOrgEngine()

        assert engine._extract_identifier("https://archive.org/details/gd1977-05-08") == "gd1977-05-08"
        assert engine._extract_identifier("https://archive.org/download/item/file.mp3") == "item"
        assert engine._extract_identifier("https://archive.org/embed/item?autoplay=1") == "item"
        assert engine._extract_identifier("https://example.com/details/item") is None

    def test_extract_filename(self):
        engine = ArchiveOrgEngine()

        assert engine._extract_filename("https://archive.org/download/item/My%20Song.mp3") == "My Song.mp3"
        assert engine._extract_filename("https://archive.org/details/item") is None

    def test_download_url_is_encoded(self):
        engine = ArchiveOrgEngine()

        assert engine._download_url("item", "d1t01 Minglewood.mp3") == (
            "https://archive.org/download/item/d1t01%20Minglewood.mp3"
        )

    def test_parse_length(self):
        assert ArchiveOrgEngine._parse_length("302.5") == 302.5
        assert ArchiveOrgEngine._parse_length("5:02") == 302.0
        assert ArchiveOrgEngine._parse_length("01:02:03") == 3723.0
        assert ArchiveOrgEngine._parse_length("n/a") is None
        assert ArchiveOrgEngine._parse_length(None) is None

    def test_can_handle(self):
        engine = ArchiveOrgEngine()

        assert engine.can_handle("https://archive.org/details/item") is True
        assert engine.can_handle("https://www.youtube.com/watch?v=abc") is False


class TestResolve:
    """Metadata API lookups."""

    @pytest.mark.asyncio
    async def test_resolve_prefers_mp3(self):
        def handler(request):
            assert request.url.path == "/metadata/gd1977-05-08"
            return httpx.Response(200, json=METADATA)

        engine = mock_engine(handler)

        track = await engine.resolve_url("https://archive.org/details/gd1977-05-08", timeout=5)

        assert track.title == "New Minglewood Blues"
        assert track.author == "Grateful Dead"
        assert track.duration_seconds == 302.5
        assert track.source_tag == "archive_org"
        assert track.canonical_url == "https://archive.org/details/gd1977-05-08"
        assert track.stream_url == "https://archive.org/download/gd1977-05-08/d1t01%20Minglewood.mp3"

    @pytest.mark.asyncio
    async def test_resolve_requested_file(self):
        engine = mock_engine(lambda request: httpx.Response(200, json=METADATA))

        track = await engine.resolve_url("https://archive.org/download/gd1977-05-08/d1t02.mp3", timeout=5)

        assert track.extra["filename"] == "d1t02.mp3"
        assert track.title == "Live at Barton Hall"
        assert track.duration_seconds == 3723.0

    @pytest.mark.asyncio
    async def test_item_without_audio(self):
        metadata = {"metadata": {}, "files": [{"name": "readme.txt"}]}
        engine = mock_engine(lambda request: httpx.Response(200, json=metadata))

        with pytest.raises(EmptyResultError) as exc_info:
            await engine.resolve_url("https://archive.org/details/docs", timeout=5)

        assert exc_info.value.is_retryable is False

    @pytest.mark.asyncio
    async def test_item_without_files(self):
        engine = mock_engine(lambda request: httpx.Response(200, json={}))

        with pytest.raises(EmptyResultError):
            await engine.resolve_url("https://archive.org/details/dark", timeout=5)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status,retryable", [(404, False), (429, True), (464, True), (502, True)])
    async def test_http_errors(self, status, retryable):
        engine = mock_engine(lambda request: httpx.Response(status))

        with pytest.raises(ResolutionFailedError) as exc_info:
            await engine.resolve_url("https://archive.org/details/item", timeout=5)

        assert exc_info.value.is_retryable is retryable

    @pytest.mark.asyncio
    async def test_invalid_json(self):
        engine = mock_engine(lambda request: httpx.Response(200, content=b"<html>"))

        with pytest.raises(ResolutionFailedError):
            await engine.resolve_url("https://archive.org/details/item", timeout=5)

    @pytest.mark.asyncio
    async def test_non_item_url(self):
        engine = mock_engine(lambda request: httpx.Response(200, json=METADATA))

        with pytest.raises(NotSupportedError):
            await engine.resolve_url("https://archive.org/search?query=dead", timeout=5)


class TestSearch:
    """Advanced search API."""

    @pytest.mark.asyncio
    async def test_search(self):
        seen = {}

        def handler(request):
            seen["params"] = request.url.params
            return httpx.Response(200, json=SEARCH_RESPONSE)

        engine = mock_engine(handler)

        tracks = await engine.search("grateful dead", limit=5, timeout=5)

        assert [track.title for track in tracks] == ["Live at Barton Hall", "Kind of Blue"]
        assert tracks[0].author == "Grateful Dead"
        assert tracks[0].stream_url is None
        assert seen["params"]["q"] == "(grateful dead) AND mediatype:(audio)"
        assert seen["params"]["rows"] == "5"
        assert seen["params"].get_list("fl[]") == ["identifier", "title", "creator"]

    @pytest.mark.asyncio
    async def test_search_respects_limit(self):
        engine = mock_engine(lambda request: httpx.Response(200, json=SEARCH_RESPONSE))

        tracks = await engine.search("grateful dead", limit=1, timeout=5)

        assert len(tracks) == 1

    @pytest.mark.asyncio
    async def test_search_no_results(self):
        engine = mock_engine(lambda request: httpx.Response(200, json={"response": {"docs": []}}))

        assert await engine.search("nothing", limit=5, timeout=5) == []


class TestOpenStream:
    """Streaming resolved download URLs."""

    @pytest.mark.asyncio
    async def test_open_stream_resolves_item_first(self):
        requested = []

        def handler(request):
            requested.append(request.url.path)
            if request.url.path.startswith("/metadata/"):
                return httpx.Response(200, json=METADATA)
            return httpx.Response(200, headers={"content-type": "audio/mpeg"}, content=b"mp3-bytes")

        engine = mock_engine(handler)

        handle = await engine.open_stream(
            "https://archive.org/details/gd1977-05-08", StreamOptions(), timeout=5,
        )
        data = b"".join([chunk async for chunk in handle])

        assert data == b"mp3-bytes"
        assert requested == [
            "/metadata/gd1977-05-08",
            "/download/gd1977-05-08/d1t01 Minglewood.mp3",
        ]
        assert handle.track.title == "New Minglewood Blues"
        assert handle.source_tag == "archive_org"

    @pytest.mark.asyncio
    async def test_open_stream_uses_known_stream_url(self):
        requested = []

        def handler(request):
            requested.append(request.url.path)
            if request.url.path.startswith("/metadata/"):
                return httpx.Response(200, json=METADATA)
            return httpx.Response(200, content=b"mp3-bytes")

        engine = mock_engine(handler)
        track = await engine.resolve_url("https://archive.org/details/gd1977-05-08", timeout=5)
        requested.clear()

        handle = await engine.open_stream(track, StreamOptions(), timeout=5)
        await handle.aclose()

        assert requested == ["/download/gd1977-05-08/d1t01 Minglewood.mp3"]
