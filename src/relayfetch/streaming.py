"""Upload and download progress events.

``to_streamable`` re-wraps the body of a request or response so a callback
observes every chunk as it flows, without changing the bytes.
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import AsyncIterable, AsyncIterator
from dataclasses import replace

from aiohttp import hdrs

from .messages import Request, Response
from .types import OnStream, StreamingEvent

_logger = logging.getLogger("relayfetch")


def _content_length(message: Request | Response) -> int:
    value = message.headers.get(hdrs.CONTENT_LENGTH)
    try:
        return max(int(value), 0) if value else 0
    except ValueError:
        return 0


async def _measure(request: Request) -> int:
    """Pre-read a request body to find its size.

    Only used for requests: responses may be arbitrarily large downloads.
    """
    size = 0
    async for chunk in request.iter_chunks():
        size += len(chunk)
    return size


async def _emit[M: (Request, Response)](on_stream: OnStream, event: StreamingEvent, message: M) -> None:
    try:
        result = on_stream(event, message)
        if inspect.isawaitable(result):
            await result
    except Exception:
        _logger.warning("Progress callback error", exc_info=True)


async def _monitor[M: (Request, Response)](
    source: AsyncIterable[bytes],
    total_bytes: int,
    on_stream: OnStream,
    message: M,
) -> AsyncIterator[bytes]:
    transferred_bytes = 0
    async for chunk in source:
        if not chunk:
            continue
        transferred_bytes += len(chunk)
        total_bytes = max(total_bytes, transferred_bytes)
        await _emit(
            on_stream,
            StreamingEvent(chunk=chunk, total_bytes=total_bytes, transferred_bytes=transferred_bytes),
            message,
        )
        yield chunk


async def to_streamable[M: (Request, Response)](message: M, on_stream: OnStream | None = None) -> M:
    """Wrap the body of ``message`` to report transfer progress.

    Args:
        message: The request or response to instrument.
        on_stream: Called as ``on_stream(event, message)``, sync or async,
            once with zero progress, then once per chunk. Exceptions it
            raises are logged and otherwise ignored.

    Returns:
        ``message`` itself when there is no body or no callback, otherwise a
        new request/response with the same metadata and a monitored body.

    """
    if not message.has_body or on_stream is None:
        return message

    total_bytes = _content_length(message)
    if isinstance(message, Request):
        size_clone = message.clone()
        stream_clone = message.clone()
        if not total_bytes:
            total_bytes = await _measure(size_clone)
        source = stream_clone.iter_chunks()
    else:
        source = message.iter_chunks()

    await _emit(on_stream, StreamingEvent(chunk=b"", total_bytes=total_bytes, transferred_bytes=0), message)
    monitored = _monitor(source, total_bytes, on_stream, message)

    if isinstance(message, Response):
        return replace(message, content=monitored)
    return replace(message, content=monitored, duplex="half")
