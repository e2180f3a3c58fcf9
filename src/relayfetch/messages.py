"""Request and response objects exchanged with the transport.

Bodies are either ``bytes`` (re-readable) or an async iterable of ``bytes``
(single consumer). ``clone()`` tees a streamed body so both copies can be
read independently.
"""

from __future__ import annotations

import asyncio
import collections
import json
import typing as t
from collections.abc import AsyncIterable, AsyncIterator
from dataclasses import dataclass, field, replace

from aiohttp import hdrs
from multidict import CIMultiDict
from yarl import URL

from .types import HttpMethod

type BodyContent = bytes | AsyncIterable[bytes] | None


def _tee(source: AsyncIterable[bytes]) -> tuple[AsyncIterator[bytes], AsyncIterator[bytes]]:
    """Split one byte stream into two independently consumable streams.

    Chunks pulled by one branch are buffered for the other until it reads
    them.
    """
    iterator = aiter(source)
    buffers: tuple[collections.deque[bytes], collections.deque[bytes]] = (
        collections.deque(),
        collections.deque(),
    )
    lock = asyncio.Lock()
    exhausted = False

    async def branch(index: int) -> AsyncIterator[bytes]:
        nonlocal exhausted
        own, other = buffers[index], buffers[1 - index]
        while True:
            if own:
                yield own.popleft()
                continue
            if exhausted:
                return
            async with lock:
                # the other branch may have pulled while we waited
                if own or exhausted:
                    continue
                try:
                    chunk = await anext(iterator)
                except StopAsyncIteration:
                    exhausted = True
                    continue
                other.append(chunk)
            yield chunk

    return branch(0), branch(1)


class _BodyMixin:
    content: BodyContent
    body_used: bool

    @property
    def has_body(self) -> bool:
        return self.content is not None

    async def iter_chunks(self) -> AsyncIterator[bytes]:
        """Iterate over the body chunks.

        Raises:
            RuntimeError: If a streamed body has already been consumed.

        """
        content = self.content
        if content is None:
            return
        if isinstance(content, bytes):
            if content:
                yield content
            return
        if self.body_used:
            msg = "Body has already been consumed"
            raise RuntimeError(msg)
        self.body_used = True
        async for chunk in content:
            yield bytes(chunk)

    async def read(self) -> bytes:
        """Read the whole body into memory."""
        return b"".join([chunk async for chunk in self.iter_chunks()])

    def _clone_content(self) -> BodyContent:
        content = self.content
        if content is None or isinstance(content, bytes):
            return content
        if self.body_used:
            msg = "Cannot clone a consumed body"
            raise RuntimeError(msg)
        self.content, other = _tee(content)
        return other


def _charset(headers: CIMultiDict[str]) -> str:
    content_type = headers.get(hdrs.CONTENT_TYPE, "")
    for param in content_type.split(";")[1:]:
        key, _, value = param.strip().partition("=")
        if key.lower() == "charset" and value:
            return value.strip('"')
    return "utf-8"


@dataclass
class Request(_BodyMixin):
    """An outgoing HTTP request.

    Attributes:
        url: Target URL.
        method: HTTP method.
        headers: Request headers.
        content: Body, raw bytes or an async byte stream.
        duplex: ``"half"`` once the body has been wrapped into a stream that
            cannot be replayed.

    """

    url: URL
    method: HttpMethod = hdrs.METH_GET
    headers: CIMultiDict[str] = field(default_factory=CIMultiDict)
    content: BodyContent = None
    duplex: str | None = None
    body_used: bool = field(default=False, init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        if not isinstance(self.url, URL):
            self.url = URL(self.url)
        if not isinstance(self.headers, CIMultiDict):
            self.headers = CIMultiDict(self.headers)
        if isinstance(self.content, str):
            self.content = self.content.encode()

    def clone(self) -> Request:
        """Return a copy whose body can be read independently."""
        return replace(self, headers=CIMultiDict(self.headers), content=self._clone_content())


@dataclass
class Response(_BodyMixin):
    """An HTTP response returned by a transport.

    Attributes:
        status: HTTP status code.
        reason: Status text.
        headers: Response headers.
        content: Body, raw bytes or an async byte stream.
        url: Final URL of the response, if known.

    """

    status: int = 200
    reason: str = ""
    headers: CIMultiDict[str] = field(default_factory=CIMultiDict)
    content: BodyContent = None
    url: URL | None = None
    body_used: bool = field(default=False, init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        if not isinstance(self.headers, CIMultiDict):
            self.headers = CIMultiDict(self.headers)
        if isinstance(self.content, str):
            self.content = self.content.encode()

    @property
    def ok(self) -> bool:
        """Whether the status is in the 2xx range."""
        return 200 <= self.status < 300  # noqa: PLR2004

    def clone(self) -> Response:
        """Return a copy whose body can be read independently."""
        return replace(self, headers=CIMultiDict(self.headers), content=self._clone_content())

    async def text(self, encoding: str | None = None) -> str:
        """Read the body and decode it using the declared charset."""
        data = await self.read()
        return data.decode(encoding or _charset(self.headers), errors="replace")

    async def json(self) -> t.Any:
        """Read the body and decode it as JSON."""
        return json.loads(await self.text())
