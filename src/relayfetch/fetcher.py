"""Core relayfetch entry point."""

from __future__ import annotations

import asyncio
import inspect
import logging
import typing as t

from .config import FetcherConfig
from .machine import RequestContext, RequestStateMachine
from .options import FALLBACK_OPTIONS, FetchOptions, merge_options
from .transport import AiohttpTransport

if t.TYPE_CHECKING:
    from collections.abc import Iterable
    from types import TracebackType

    from yarl import URL

    from .messages import Request
    from .types import Transport

# Module-level logger for structured logging
_logger = logging.getLogger("relayfetch")


class Fetcher:
    """Asynchronous request pipeline with retries, timeouts and progress events.

    Every call merges the built-in fallbacks, the configured default options
    and the per-call options, then runs the request state machine over the
    transport.

    Without an injected transport the fetcher creates an ``AiohttpTransport``
    and must be used as an async context manager.

    Attributes:
        config: Configuration object containing default options, logging and
            built-in transport settings.

    """

    def __init__(
        self,
        transport: Transport | None = None,
        config: FetcherConfig | None = None,
    ) -> None:
        """Initialize the Fetcher.

        Args:
            transport: Callable performing the HTTP exchange. If None, an
                ``AiohttpTransport`` is created on entering the context.
            config: Configuration object for the fetcher. If None, uses
                default configuration.

        """
        self.config = config or FetcherConfig()
        self._transport = transport
        self._owned_transport: AiohttpTransport | None = None
        self._logger = self.config.logger or _logger

    async def _resolve_default_options(
        self,
        url: str | URL | Request,
        options: FetchOptions,
        ctx: t.Any,
    ) -> FetchOptions:
        default_options = self.config.default_options
        if isinstance(default_options, FetchOptions):
            return default_options
        resolved = default_options(url, options, ctx)
        if inspect.isawaitable(resolved):
            resolved = await resolved
        return resolved

    async def request(
        self,
        url: str | URL | Request,
        options: FetchOptions | None = None,
        ctx: t.Any = None,
    ) -> t.Any:
        """Perform one logical call, retrying as configured.

        Args:
            url: Absolute URL, path relative to ``base_url``, or a prepared
                ``Request``.
            options: Per-call options overriding the default options.
            ctx: Opaque value forwarded to the transport.

        Returns:
            The parsed response, validated by the schema when configured.

        Raises:
            RuntimeError: If no transport is available.
            NetworkError: If the transport failed and no retry was left.
            ResponseError: If the response was rejected and no retry was left.
            ParseError: If the response could not be decoded.
            ValidationError: If the schema rejected the decoded response.

        """
        if self._transport is None:
            msg = "Fetcher must be used as async context manager"
            raise RuntimeError(msg)

        options = options or FetchOptions()
        default_options = await self._resolve_default_options(url, options, ctx)
        context = RequestContext(
            input=url,
            options=merge_options(FALLBACK_OPTIONS, default_options, options),
            default_options=default_options,
            call_options=options,
            transport=self._transport,
            ctx=ctx,
            logger=self._logger,
        )
        return await RequestStateMachine(context).execute()

    async def fetch_all(
        self,
        urls: Iterable[str | URL | Request],
        options: FetchOptions | None = None,
    ) -> list[t.Any]:
        """Perform several calls concurrently.

        Args:
            urls: The inputs to fetch.
            options: Per-call options applied to every call.

        Returns:
            list: Results in the same order as ``urls``. If
                ``return_exceptions`` is set, exceptions are included in the
                list instead of being raised.

        """
        tasks = [self.request(url, options) for url in urls]
        return await asyncio.gather(*tasks, return_exceptions=self.config.return_exceptions)

    async def __aenter__(self) -> t.Self:
        """Enter the async context manager.

        Creates the built-in transport when none was injected.

        Returns:
            Fetcher: The fetcher instance for use in async with statement.

        """
        if self._transport is None:
            self._owned_transport = AiohttpTransport(
                max_rate_per_domain=self.config.max_rate_per_domain,
                time_period_per_domain=self.config.time_period_per_domain,
                cache_backend=self.config.cache_backend,
                cache_enabled=self.config.cache_enabled,
                logger=self._logger,
            )
            await self._owned_transport.__aenter__()
            self._transport = self._owned_transport
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        """Exit the async context manager, closing the built-in transport."""
        if self._owned_transport is not None:
            await self._owned_transport.__aexit__(exc_type, exc_val, exc_tb)
            self._owned_transport = None
            self._transport = None
