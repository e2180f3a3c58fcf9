"""An asynchronous request pipeline with retries, timeouts and progress events."""

from .config import FetcherConfig
from .errors import (
    AbortError,
    FetcherError,
    FetcherTimeoutError,
    NetworkError,
    ParseError,
    ResponseError,
    ValidationError,
)
from .fetcher import Fetcher
from .machine import RequestState
from .messages import Request, Response
from .options import FetchOptions, MergedOptions, RetryOptions, parse_text
from .signals import AbortController, AbortSignal
from .transport import AiohttpTransport
from .types import UNSET, HttpMethod, RetryContext, StreamingEvent

__all__ = [
    "UNSET",
    "AbortController",
    "AbortError",
    "AbortSignal",
    "AiohttpTransport",
    "FetchOptions",
    "Fetcher",
    "FetcherConfig",
    "FetcherError",
    "FetcherTimeoutError",
    "HttpMethod",
    "MergedOptions",
    "NetworkError",
    "ParseError",
    "Request",
    "RequestState",
    "Response",
    "ResponseError",
    "RetryContext",
    "RetryOptions",
    "StreamingEvent",
    "ValidationError",
    "parse_text",
]
__version__ = "0.1.0"
