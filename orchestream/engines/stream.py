"""
Byte-stream and stream handle with an explicit lifecycle.

A StreamHandle moves OPEN -> CLOSING -> CLOSED exactly once, driven by the
first terminal signal (end of data, read error, or explicit close). Terminal
callbacks (such as releasing an admission slot) run exactly once.
"""

import asyncio
import logging
from datetime import datetime
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable, Optional

from orchestream.engines.base import TrackDescriptor
from orchestream.errors import StreamUnavailableError

logger = logging.getLogger(__name__)


class StreamState(str, Enum):
    """Stream handle lifecycle states."""

    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"


class TerminalReason(str, Enum):
    """What ended a stream."""

    END = "end"
    ERROR = "error"
    CLOSED = "closed"


async def _next_nonempty(iterator: AsyncIterator[bytes]) -> Optional[bytes]:
    """Return the next non-empty chunk, or None at end of data."""
    while True:
        try:
            chunk = await iterator.__anext__()
        except StopAsyncIteration:
            return None
        if chunk:
            return chunk


class ByteStream:
    """
    Single-consumer async byte iterator.

    Built with `ByteStream.open()`, which waits for the first chunk so
    that a returned stream always has at least one byte forthcoming.
    """

    def __init__(
        self,
        chunks: AsyncIterator[bytes],
        close: Optional[Callable[[], Awaitable[None]]] = None,
        first_chunk: bytes = b"",
        content_type: Optional[str] = None,
    ):
        self._iterator = chunks.__aiter__()
        self._close = close
        self._pending = first_chunk
        self._closed = False
        self.content_type = content_type

    @classmethod
    async def open(
        cls,
        chunks: AsyncIterator[bytes],
        close: Optional[Callable[[], Awaitable[None]]] = None,
        first_byte_timeout: Optional[float] = None,
        content_type: Optional[str] = None,
    ) -> "ByteStream":
        """
        Prime a chunk source and wrap it.

        Raises:
            StreamUnavailableError: Source ended or failed before the first byte
        """
        iterator = chunks.__aiter__()
        try:
            first = await asyncio.wait_for(_next_nonempty(iterator), first_byte_timeout)
        except BaseException:
            if close is not None:
                await close()
            raise

        if first is None:
            if close is not None:
                await close()
            raise StreamUnavailableError("Stream ended before the first byte")

        return cls(iterator, close=close, first_chunk=first, content_type=content_type)

    @classmethod
    def from_bytes(cls, data: bytes, chunk_size: int = 65536) -> "ByteStream":
        """Wrap an in-memory payload (used for tests and local sources)."""

        async def chunks() -> AsyncIterator[bytes]:
            for offset in range(0, len(data), chunk_size):
                yield data[offset:offset + chunk_size]

        return cls(chunks())

    @property
    def closed(self) -> bool:
        return self._closed

    async def read_chunk(self) -> bytes:
        """Read the next chunk; b"" at end of data."""
        if self._closed:
            return b""
        if self._pending:
            chunk, self._pending = self._pending, b""
            return chunk
        chunk = await _next_nonempty(self._iterator)
        return chunk or b""

    async def aclose(self) -> None:
        """Close the underlying source."""
        if self._closed:
            return
        self._closed = True
        self._pending = b""
        if self._close is not None:
            await self._close()
        elif hasattr(self._iterator, "aclose"):
            await self._iterator.aclose()


class StreamHandle:
    """
    A live, single-consumer byte-stream plus its metadata.

    Usage:
        async with handle:
            async for chunk in handle:
                sink.write(chunk)
    """

    def __init__(
        self,
        byte_stream: ByteStream,
        track: TrackDescriptor,
        source_tag: Optional[str] = None,
        opened_at: Optional[datetime] = None,
    ):
        self.byte_stream = byte_stream
        self.track = track
        self.source_tag = source_tag or track.source_tag
        self.opened_at = opened_at or datetime.utcnow()
        self.state = StreamState.OPEN
        self.terminal_reason: Optional[TerminalReason] = None
        self.error: Optional[BaseException] = None
        self.bytes_read = 0
        self._callbacks: list[Callable[["StreamHandle"], None]] = []

    @property
    def is_open(self) -> bool:
        return self.state == StreamState.OPEN

    def add_terminal_callback(self, callback: Callable[["StreamHandle"], None]) -> None:
        """
        Register a callback for the terminal event.

        Runs immediately if the stream has already terminated.
        """
        if self.state == StreamState.CLOSED:
            self._run_callback(callback)
        else:
            self._callbacks.append(callback)

    def _run_callback(self, callback: Callable[["StreamHandle"], None]) -> None:
        try:
            callback(self)
        except Exception as e:
            logger.error(f"Stream terminal callback failed: {e}")

    async def _finish(self, reason: TerminalReason, error: Optional[BaseException] = None) -> None:
        """Single terminal transition; later signals are no-ops."""
        if self.state != StreamState.OPEN:
            return

        self.state = StreamState.CLOSING
        self.terminal_reason = reason
        self.error = error

        try:
            await self.byte_stream.aclose()
        except Exception as e:
            logger.debug(f"Error closing byte stream for {self.track.title!r}: {e}")
        finally:
            self.state = StreamState.CLOSED
            callbacks, self._callbacks = self._callbacks, []
            for callback in callbacks:
                self._run_callback(callback)

            logger.debug(
                f"Stream {self.track.title!r} from {self.source_tag} {reason.value} "
                f"after {self.bytes_read} bytes"
            )

    async def read(self) -> bytes:
        """Read the next chunk; b"" once the stream has terminated."""
        if self.state != StreamState.OPEN:
            return b""

        try:
            chunk = await self.byte_stream.read_chunk()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            await self._finish(TerminalReason.ERROR, e)
            raise

        if not chunk:
            await self._finish(TerminalReason.END)
            return b""

        self.bytes_read += len(chunk)
        return chunk

    async def aclose(self) -> None:
        """Explicitly close the stream."""
        await self._finish(TerminalReason.CLOSED)

    def __aiter__(self) -> "StreamHandle":
        return self

    async def __anext__(self) -> bytes:
        chunk = await self.read()
        if not chunk:
            raise StopAsyncIteration
        return chunk

    async def __aenter__(self) -> "StreamHandle":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    def to_dict(self) -> dict[str, Any]:
        return {
            "track": self.track.to_dict(),
            "source_tag": self.source_tag,
            "opened_at": self.opened_at.isoformat(),
            "state": self.state.value,
            "terminal_reason": self.terminal_reason.value if self.terminal_reason else None,
            "bytes_read": self.bytes_read,
        }
