"""Configuration settings for relayfetch."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from .options import FetchOptions

if TYPE_CHECKING:
    import logging

    from aiohttp_client_cache.backends.base import CacheBackend

type DefaultOptionsFactory = Callable[[Any, FetchOptions, Any], FetchOptions | Awaitable[FetchOptions]]


@dataclass
class FetcherConfig:
    """Configuration for relayfetch.

    Attributes:
        default_options: Caller-level options applied to every request, or a
            callable ``(input, options, ctx)`` returning them, optionally
            awaitable.
        logger: Logger instance for structured logging. If None, uses module logger.
        return_exceptions: If True, fetch_all returns exceptions instead of raising.
        max_rate_per_domain: Maximum requests per domain per time period for
            the built-in transport. None disables rate limiting.
        time_period_per_domain: Time period in seconds for rate limiting.
        cache_backend: Cache backend for the built-in transport.
        cache_enabled: Whether the built-in transport caches responses,
            default is False.

    """

    default_options: FetchOptions | DefaultOptionsFactory = field(default_factory=FetchOptions)
    logger: logging.Logger | None = None
    return_exceptions: bool = False
    max_rate_per_domain: int | None = None
    time_period_per_domain: float = 1
    cache_backend: CacheBackend | None = None
    cache_enabled: bool = False
