"""Shared types for relayfetch.

This module provides the small value types and callable protocols that the
pipeline stages exchange.
"""

from __future__ import annotations

import enum
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Final, Protocol

if TYPE_CHECKING:
    from .messages import Request, Response
    from .options import MergedOptions

# HTTP method type - reuses aiohttp's method string constants
# Users can use aiohttp.hdrs.METH_GET, aiohttp.hdrs.METH_POST, etc. or plain strings
HttpMethod = str

type MaybeAwaitable[T] = T | Awaitable[T]


class Unset(enum.Enum):
    """Marker type for option fields that were not provided."""

    UNSET = enum.auto()

    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False


UNSET: Final = Unset.UNSET


@dataclass(frozen=True)
class StreamingEvent:
    """Progress of a request upload or response download.

    Attributes:
        chunk: The bytes delivered by this step, empty for the initial event.
        total_bytes: Expected size of the body. Revised upward when more
            bytes than announced have been transferred.
        transferred_bytes: Bytes transferred so far.

    """

    chunk: bytes
    total_bytes: int
    transferred_bytes: int


@dataclass(frozen=True)
class RetryContext:
    """Outcome of an attempt as seen by the retry policy.

    Exactly one of ``response`` and ``error`` is usually set: a response
    when the server answered, an error when the transport raised.
    """

    request: Request | None
    attempt: int
    response: Response | None = None
    error: BaseException | None = None


class Transport(Protocol):
    """The injected callable that performs the actual HTTP exchange."""

    def __call__(
        self,
        request: Request,
        options: MergedOptions,
        ctx: Any = None,
        /,
    ) -> Awaitable[Response]: ...


class Schema(Protocol):
    """Anything exposing ``validate(data) -> {value} | {issues}``."""

    def validate(self, data: Any, /) -> Any: ...


OnStream = Callable[[StreamingEvent, Any], Any]
