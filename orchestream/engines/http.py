"""
HTTP byte source shared by engine adapters.

Opens a streaming GET with httpx and wraps the body as a primed ByteStream.
The response is always closed, including when the awaiting task is
cancelled mid-request.
"""

import logging
import random
from typing import Optional, Sequence

import httpx

from orchestream.engines.stream import ByteStream
from orchestream.errors import StreamUnavailableError

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENTS = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36",
)


def default_headers(user_agents: Sequence[str] = DEFAULT_USER_AGENTS) -> dict[str, str]:
    """Headers for audio requests with a rotating User-Agent."""
    return {
        "User-Agent": random.choice(list(user_agents) or DEFAULT_USER_AGENTS),
        "Accept": "audio/*,*/*",
        "Accept-Encoding": "identity",
    }


async def open_http_stream(
    client: httpx.AsyncClient,
    url: str,
    timeout: float,
    engine: str,
    headers: Optional[dict[str, str]] = None,
    chunk_size: int = 65536,
    first_byte_timeout: Optional[float] = None,
) -> ByteStream:
    """
    Open a streaming GET request and wait for the first chunk.

    Args:
        client: Shared async HTTP client
        url: Media URL
        timeout: Deadline for connecting and receiving the first byte
        engine: Engine name for error attribution
        headers: Extra request headers
        chunk_size: Read size for the body iterator
        first_byte_timeout: Tighter bound on waiting for the first chunk

    Returns:
        Primed ByteStream

    Raises:
        StreamUnavailableError: HTTP error status, transport failure, or empty body
    """
    request_headers = {"Range": "bytes=0-"}
    request_headers.update(headers or {})

    request = client.build_request(
        "GET",
        url,
        headers=request_headers,
        timeout=httpx.Timeout(timeout),
    )

    try:
        response = await client.send(request, stream=True)
    except httpx.HTTPError as e:
        raise StreamUnavailableError(
            f"Request to {url} failed: {e}",
            engine=engine,
            original_error=e,
        ) from e

    try:
        if response.status_code >= 400:
            error = httpx.HTTPStatusError(
                f"HTTP {response.status_code}",
                request=request,
                response=response,
            )
            raise StreamUnavailableError(
                f"HTTP {response.status_code} from {url}",
                engine=engine,
                is_retryable=response.status_code in (408, 429) or response.status_code >= 500,
                original_error=error,
            )

        content_type = response.headers.get("content-type", "")
        if content_type and not (
            content_type.startswith("audio/")
            or "octet-stream" in content_type
            or content_type.startswith("video/")
        ):
            logger.warning(f"[{engine}] Unexpected content type: {content_type}")

        return await ByteStream.open(
            response.aiter_bytes(chunk_size),
            close=response.aclose,
            first_byte_timeout=min(timeout, first_byte_timeout or timeout),
            content_type=content_type or None,
        )
    except StreamUnavailableError as e:
        await response.aclose()
        if e.engine == "unknown":
            e.engine = engine
        raise
    except httpx.HTTPError as e:
        await response.aclose()
        raise StreamUnavailableError(
            f"Reading {url} failed: {e}",
            engine=engine,
            original_error=e,
        ) from e
    except BaseException:
        await response.aclose()
        raise
