"""
Orchestream Test Configuration

Shared fixtures and configuration for all tests.
"""

import asyncio
import os
import tempfile
from pathlib import Path
from typing import Any, Callable, Generator, Optional

import pytest

from orchestream.config import OrchestreamConfig
from orchestream.engines.base import (
    BaseEngine,
    EngineCapability,
    StreamOptions,
    StreamTarget,
    TrackDescriptor,
    target_url,
)
from orchestream.engines.stream import ByteStream, StreamHandle
from orchestream.errors import EmptyResultError
from orchestream.streaming.retry_manager import RetryConfig


# ============ Fake Engines ============


def make_track(title: str = "Test Song", source_tag: str = "fake", index: int = 0) -> TrackDescriptor:
    """Build a track descriptor for tests."""
    return TrackDescriptor(
        title=title,
        author="Test Artist",
        duration_seconds=180.0,
        source_tag=source_tag,
        canonical_url=f"https://{source_tag}.example.com/track/{index}",
        stream_url=f"https://{source_tag}.example.com/audio/{index}.mp3",
    )


class Calls(list):
    """Per-call behaviors for a FakeEngine."""


class FakeEngine(BaseEngine):
    """
    Scriptable engine.

    Each behavior is either a value to return, an exception to raise, or a
    callable taking the call arguments. A Calls sequence is consumed one
    entry per call (the last entry repeats).
    """

    def __init__(
        self,
        name: str,
        priority: int = 0,
        capabilities: Optional[set[EngineCapability]] = None,
        search_result: Any = None,
        resolve_result: Any = None,
        stream_result: Any = None,
        handles: Optional[Callable[[str], bool]] = None,
        delay: float = 0.0,
        initialize_ok: bool = True,
    ):
        super().__init__()
        self.name = name
        self.default_priority = priority
        self.capabilities = frozenset(capabilities or {
            EngineCapability.RESOLVE_URL,
            EngineCapability.SEARCH,
            EngineCapability.OPEN_STREAM,
        })
        self.search_result = search_result
        self.resolve_result = resolve_result
        self.stream_result = stream_result
        self.handles = handles
        self.delay = delay
        self.initialize_ok = initialize_ok

        self.calls: list[tuple[str, Any]] = []
        self.last_options: Optional[StreamOptions] = None
        self.cancelled = 0
        self.closed = False

    async def initialize(self) -> bool:
        self.initialized = self.initialize_ok
        return self.initialize_ok

    async def close(self) -> None:
        self.closed = True

    def can_handle(self, url: str) -> bool:
        return self.handles(url) if self.handles else True

    @property
    def call_count(self) -> int:
        return len(self.calls)

    async def _behave(self, behavior: Any, *args: Any) -> Any:
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
        except asyncio.CancelledError:
            self.cancelled += 1
            raise

        if isinstance(behavior, Calls):
            index = min(len(self.calls) - 1, len(behavior) - 1)
            behavior = behavior[index]
        if isinstance(behavior, BaseException):
            raise behavior
        if isinstance(behavior, type) and issubclass(behavior, BaseException):
            raise behavior(f"{self.name} failed")
        if callable(behavior):
            return behavior(*args)
        return behavior

    async def search(self, query: str, limit: int, timeout: float) -> list[TrackDescriptor]:
        self.calls.append(("search", query))
        return await self._behave(self.search_result, query, limit)

    async def resolve_url(self, url: str, timeout: float) -> TrackDescriptor:
        self.calls.append(("resolve", url))
        return await self._behave(self.resolve_result, url)

    async def open_stream(
        self,
        target: StreamTarget,
        options: StreamOptions,
        timeout: float,
    ) -> StreamHandle:
        self.calls.append(("open_stream", target_url(target)))
        self.last_options = options
        result = await self._behave(self.stream_result, target)
        if isinstance(result, bytes):
            track = target if isinstance(target, TrackDescriptor) else make_track(source_tag=self.name)
            return StreamHandle(ByteStream.from_bytes(result, chunk_size=4), track, source_tag=self.name)
        return result


@pytest.fixture
def fake_engine_factory() -> Callable[..., FakeEngine]:
    """Factory for scriptable fake engines."""
    return FakeEngine


@pytest.fixture
def three_tracks() -> list[TrackDescriptor]:
    return [make_track(f"Track {i}", source_tag="generic", index=i) for i in range(3)]


@pytest.fixture
def empty_result_error() -> EmptyResultError:
    return EmptyResultError("nothing usable", engine="fast")


# ============ Config Fixtures ============


@pytest.fixture
def test_config() -> OrchestreamConfig:
    """Configuration tuned for fast tests (no health task, no jitter)."""
    config = OrchestreamConfig()
    config.health.enabled = False
    config.streaming.admission_timeout = 1.0
    config.streaming.shutdown_grace_period = 0.5
    return config


@pytest.fixture
def fast_retry() -> Callable[..., RetryConfig]:
    """Retry configs without backoff delays."""

    def factory(max_attempts: int = 1, per_attempt_timeout: float = 1.0) -> RetryConfig:
        return RetryConfig(
            max_attempts=max_attempts,
            per_attempt_timeout=per_attempt_timeout,
            backoff_base=0.0,
            backoff_max=0.0,
            jitter_ratio=0.0,
        )

    return factory


# ============ Clock Fixtures ============


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


# ============ Temporary File Fixtures ============


@pytest.fixture(scope="function")
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture(scope="function")
def temp_config_file(temp_dir: Path) -> Path:
    """Create a temporary config file."""
    config_file = temp_dir / "config.yaml"
    config_content = """
profile: constrained

streaming:
  max_concurrent_streams: 8
  admission_timeout: 5

cache:
  ttl_seconds: 900

engines:
  youtube:
    priority: 2
    max_attempts: 3
    per_attempt_timeout: 30

logging:
  level: "DEBUG"
  format: "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
"""
    config_file.write_text(config_content)
    return config_file


# ============ Environment Fixtures ============


@pytest.fixture(autouse=True)
def clean_environment():
    """Clean environment variables for each test."""
    # Save current environment
    original_env = os.environ.copy()

    # Remove Orchestream-specific vars
    for key in list(os.environ.keys()):
        if key.startswith("ORCHESTREAM_"):
            del os.environ[key]

    yield

    # Restore original environment
    os.environ.clear()
    os.environ.update(original_env)


# ============ Markers ============


def pytest_configure(config):
    """Configure custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests")
