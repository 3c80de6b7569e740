"""
YouTube Engine Tests

yt-dlp extraction is replaced with canned info dicts; CDN requests go
through httpx.MockTransport.
"""

from dataclasses import replace

import httpx
import pytest
import yt_dlp

from orchestream.engines.base import StreamOptions
from orchestream.engines.youtube import YouTubeEngine
from orchestream.errors import (
    EmptyResultError,
    NotSupportedError,
    ResolutionFailedError,
    StreamUnavailableError,
)

from tests.conftest import make_track


VIDEO_INFO = {
    "id": "dQw4w9WgXcQ",
    "title": "Never Gonna Give You Up",
    "uploader": "Rick Astley",
    "duration": 212,
    "webpage_url": "https://www.youtube.com/watch?v=dQw4w9WgXcQ",
    "thumbnails": [{"url": "https://i.ytimg.com/small.jpg"}, {"url": "https://i.ytimg.com/large.jpg"}],
    "url": "https://rr1---sn-abc.googlevideo.com/videoplayback?itag=140",
    "acodec": "mp4a.40.2",
    "http_headers": {"User-Agent": "yt-dlp-agent"},
}


class FakeExtractor:
    """Stands in for YouTubeEngine._extract."""

    def __init__(self, result=None, error=None):
        self.result = result
        self.error = error
        self.calls = []

    def __call__(self, url, ydl_opts):
        self.calls.append((url, ydl_opts))
        if self.error is not None:
            raise self.error
        return self.result


def engine_with(extractor, handler=None) -> YouTubeEngine:
    handler = handler or (lambda request: httpx.Response(200, content=b"m4a-audio"))
    engine = YouTubeEngine(client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))
    engine._extract = extractor
    return engine


@pytest.mark.unit
class TestVideoIds:
    """URL recognition and video ID extraction."""

    @pytest.mark.parametrize("url", [
        "https://www.youtube.com/watch?v=dQw4w9WgXcQ",
        "https://www.youtube.com/watch?feature=share&v=dQw4w9WgXcQ",
        "https://youtu.be/dQw4w9WgXcQ",
        "https://www.youtube.com/embed/dQw4w9WgXcQ",
        "https://www.youtube.com/shorts/dQw4w9WgXcQ",
        "dQw4w9WgXcQ",
    ])
    def test_extract_video_id(self, url):
        assert YouTubeEngine()._extract_video_id(url) == "dQw4w9WgXcQ"

    def test_invalid_url(self):
        assert YouTubeEngine()._extract_video_id("https://www.youtube.com/channel/abc") is None

    def test_can_handle(self):
        engine = YouTubeEngine()

        assert engine.can_handle("https://YOUTU.BE/dQw4w9WgXcQ") is True
        assert engine.can_handle("https://archive.org/details/item") is False

    def test_ydl_options_use_deadline(self, temp_dir):
        cookies = temp_dir / "cookies.txt"
        cookies.write_text("# Netscape HTTP Cookie File\n")
        engine = YouTubeEngine(cookies_file=str(cookies))

        opts = engine._ydl_options(7.5, extract_flat="in_playlist")

        assert opts["socket_timeout"] == 7
        assert opts["cookiefile"] == str(cookies)
        assert opts["extract_flat"] == "in_playlist"
        assert opts["skip_download"] is True

    def test_missing_cookie_file_ignored(self):
        opts = YouTubeEngine(cookies_file="/nonexistent/cookies.txt")._ydl_options(0.2)

        assert "cookiefile" not in opts
        assert opts["socket_timeout"] == 1


class TestErrorClassification:
    """Mapping yt-dlp messages to retryability."""

    @pytest.mark.parametrize("message,retryable", [
        ("ERROR: Private video. Sign in if you've been granted access", False),
        ("ERROR: Video unavailable", False),
        ("ERROR: Sign in to confirm your age", False),
        ("ERROR: HTTP Error 429: Too Many Requests", True),
        ("ERROR: Unable to download webpage: timed out", True),
    ])
    def test_classify(self, message, retryable):
        error = YouTubeEngine()._classify_error(Exception(message), "dQw4w9WgXcQ")

        assert isinstance(error, ResolutionFailedError)
        assert error.is_retryable is retryable
        assert error.engine == "youtube"

    def test_classify_with_error_class(self):
        error = YouTubeEngine()._classify_error(
            Exception("Video unavailable"), "x", StreamUnavailableError,
        )

        assert isinstance(error, StreamUnavailableError)


class TestResolve:
    """Metadata extraction."""

    @pytest.mark.asyncio
    async def test_resolve(self):
        extractor = FakeExtractor(result=VIDEO_INFO)
        engine = engine_with(extractor)

        track = await engine.resolve_url("https://youtu.be/dQw4w9WgXcQ", timeout=10)

        assert track.title == "Never Gonna Give You Up"
        assert track.author == "Rick Astley"
        assert track.duration_seconds == 212.0
        assert track.source_tag == "youtube"
        assert track.thumbnail_url == "https://i.ytimg.com/large.jpg"
        assert track.stream_url == VIDEO_INFO["url"]
        url, opts = extractor.calls[0]
        assert url == "https://www.youtube.com/watch?v=dQw4w9WgXcQ"
        assert opts["format"] == "bestaudio[ext=m4a]/bestaudio/best"
        assert opts["socket_timeout"] == 10

    @pytest.mark.asyncio
    async def test_stream_url_from_formats(self):
        info = {
            "id": "dQw4w9WgXcQ",
            "title": "Video",
            "formats": [
                {"url": "https://cdn/video-only", "acodec": "none"},
                {"url": "https://cdn/audio-low", "acodec": "opus"},
                {"url": "https://cdn/audio-high", "acodec": "opus"},
            ],
        }
        engine = engine_with(FakeExtractor(result=info))

        track = await engine.resolve_url("https://youtu.be/dQw4w9WgXcQ", timeout=10)

        assert track.stream_url == "https://cdn/audio-high"
        assert track.author == "Unknown Artist"

    @pytest.mark.asyncio
    async def test_private_video(self):
        error = yt_dlp.utils.DownloadError("ERROR: [youtube] dQw4w9WgXcQ: Private video")
        engine = engine_with(FakeExtractor(error=error))

        with pytest.raises(ResolutionFailedError) as exc_info:
            await engine.resolve_url("https://youtu.be/dQw4w9WgXcQ", timeout=10)

        assert exc_info.value.is_retryable is False
        assert exc_info.value.original_error is error

    @pytest.mark.asyncio
    async def test_no_info(self):
        engine = engine_with(FakeExtractor(result=None))

        with pytest.raises(EmptyResultError):
            await engine.resolve_url("https://youtu.be/dQw4w9WgXcQ", timeout=10)

    @pytest.mark.asyncio
    async def test_unrecognized_url(self):
        extractor = FakeExtractor(result=VIDEO_INFO)
        engine = engine_with(extractor)

        with pytest.raises(NotSupportedError):
            await engine.resolve_url("https://www.youtube.com/channel/abc", timeout=10)

        assert extractor.calls == []


class TestSearch:
    """ytsearch extraction."""

    @pytest.mark.asyncio
    async def test_search(self):
        info = {
            "entries": [
                {"id": "aaaaaaaaaaa", "title": "First", "channel": "Artist", "duration": 100},
                None,
                {"title": "no id"},
                {"id": "bbbbbbbbbbb", "title": "Second", "uploader": "Artist"},
                {"id": "ccccccccccc", "title": "Third"},
            ],
        }
        extractor = FakeExtractor(result=info)
        engine = engine_with(extractor)

        tracks = await engine.search("artist song", limit=2, timeout=10)

        assert [track.title for track in tracks] == ["First", "Second"]
        assert tracks[0].author == "Artist"
        assert tracks[0].canonical_url == "https://www.youtube.com/watch?v=aaaaaaaaaaa"
        url, opts = extractor.calls[0]
        assert url == "ytsearch2:artist song"
        assert opts["extract_flat"] == "in_playlist"

    @pytest.mark.asyncio
    async def test_search_no_entries(self):
        engine = engine_with(FakeExtractor(result={"entries": []}))

        assert await engine.search("nothing", limit=5, timeout=10) == []

    @pytest.mark.asyncio
    async def test_search_rate_limited(self):
        error = yt_dlp.utils.DownloadError("HTTP Error 429: Too Many Requests")
        engine = engine_with(FakeExtractor(error=error))

        with pytest.raises(ResolutionFailedError) as exc_info:
            await engine.search("artist song", limit=5, timeout=10)

        assert exc_info.value.is_retryable is True


class TestOpenStream:
    """CDN streaming."""

    @pytest.mark.asyncio
    async def test_open_stream_re_resolves(self):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["headers"] = request.headers
            return httpx.Response(200, headers={"content-type": "audio/mp4"}, content=b"m4a-audio")

        extractor = FakeExtractor(result=VIDEO_INFO)
        engine = engine_with(extractor, handler)
        stale = replace(
            make_track(source_tag="youtube"),
            canonical_url="https://www.youtube.com/watch?v=dQw4w9WgXcQ",
            stream_url="https://expired.googlevideo.com/videoplayback",
        )

        handle = await engine.open_stream(stale, StreamOptions(preferred_quality="worstaudio"), timeout=10)
        data = b"".join([chunk async for chunk in handle])

        assert data == b"m4a-audio"
        assert seen["url"] == VIDEO_INFO["url"]
        assert seen["headers"]["user-agent"] == "yt-dlp-agent"
        assert seen["headers"]["referer"] == "https://www.youtube.com/"
        assert extractor.calls[0][1]["format"] == "worstaudio[ext=m4a]/worstaudio/best"
        assert handle.track.title == "Never Gonna Give You Up"
        assert handle.source_tag == "youtube"

    @pytest.mark.asyncio
    async def test_open_stream_failure_is_stream_unavailable(self):
        error = yt_dlp.utils.DownloadError("Video unavailable")
        engine = engine_with(FakeExtractor(error=error))

        with pytest.raises(StreamUnavailableError) as exc_info:
            await engine.open_stream("https://youtu.be/dQw4w9WgXcQ", StreamOptions(), timeout=10)

        assert exc_info.value.is_retryable is False

    @pytest.mark.asyncio
    async def test_open_stream_without_audio_format(self):
        info = {"id": "dQw4w9WgXcQ", "title": "Video", "formats": [{"url": "https://cdn/v", "acodec": "none"}]}
        engine = engine_with(FakeExtractor(result=info))

        with pytest.raises(StreamUnavailableError):
            await engine.open_stream("https://youtu.be/dQw4w9WgXcQ", StreamOptions(), timeout=10)

    @pytest.mark.asyncio
    async def test_open_stream_cdn_error(self):
        engine = engine_with(FakeExtractor(result=VIDEO_INFO), lambda request: httpx.Response(403))

        with pytest.raises(StreamUnavailableError) as exc_info:
            await engine.open_stream("https://youtu.be/dQw4w9WgXcQ", StreamOptions(), timeout=10)

        assert exc_info.value.engine == "youtube"

    @pytest.mark.asyncio
    async def test_non_youtube_target(self):
        engine = engine_with(FakeExtractor(result=VIDEO_INFO))

        with pytest.raises(NotSupportedError):
            await engine.open_stream("https://archive.org/details/item", StreamOptions(), timeout=10)
