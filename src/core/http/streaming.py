"""
Streaming GET support with memory bounds.

The body is exposed as an async generator of chunks read with
``iter_chunked``; aiohttp stops reading from the socket while its buffer is
full, so a slow consumer applies backpressure to the server.
"""

from collections.abc import AsyncGenerator, Awaitable, Callable
from dataclasses import dataclass

import aiohttp

from core.errors.exceptions import classify_http_status
from core.http.client import HttpError, _transport_error

CHUNK_SIZE = 64 * 1024


@dataclass
class StreamResponse:
    """
    Response from a streaming GET.

    Attributes:
        status_code: HTTP status code
        content_length: Size in bytes (from Content-Length header)
        chunk_iterator: Async generator yielding byte chunks. Mid-stream
            transport errors surface as ``aiohttp.ClientError`` or
            ``TimeoutError`` from iteration.
        release: Releases the underlying connection; safe to call twice.
    """

    status_code: int
    content_length: int | None
    chunk_iterator: AsyncGenerator[bytes, None]
    release: Callable[[], Awaitable[None]]

    async def close(self) -> None:
        """Stop iteration early and release the connection."""
        await self.chunk_iterator.aclose()
        await self.release()


async def open_stream(
    url: str,
    session: aiohttp.ClientSession,
    chunk_size: int = CHUNK_SIZE,
    sock_read_timeout: float | None = 60,
) -> tuple[StreamResponse | None, HttpError | None]:
    """
    Open a long-lived streaming GET.

    No total timeout is applied; only ``sock_read_timeout`` bounds a stalled
    connection.

    Example:
        response, error = await open_stream(url, session)
        if error:
            raise StreamError(error.error_message)
        try:
            async for chunk in response.chunk_iterator:
                ...
        finally:
            await response.close()
    """
    try:
        response_ctx = session.get(
            url,
            timeout=aiohttp.ClientTimeout(total=None, sock_read=sock_read_timeout),
        )
        response = await response_ctx.__aenter__()
    except (TimeoutError, aiohttp.ClientError) as e:
        return None, _transport_error(e, sock_read_timeout)

    if response.status != 200:
        await response_ctx.__aexit__(None, None, None)
        return None, HttpError(
            status_code=response.status,
            error_message=f"HTTP {response.status}",
            error_category=classify_http_status(response.status),
        )

    released = False

    async def release() -> None:
        nonlocal released
        if not released:
            released = True
            await response_ctx.__aexit__(None, None, None)

    async def chunk_iterator() -> AsyncGenerator[bytes, None]:
        try:
            async for chunk in response.content.iter_chunked(chunk_size):
                yield chunk
        finally:
            await release()

    return (
        StreamResponse(
            status_code=response.status,
            content_length=response.content_length,
            chunk_iterator=chunk_iterator(),
            release=release,
        ),
        None,
    )


__all__ = ["CHUNK_SIZE", "StreamResponse", "open_stream"]
