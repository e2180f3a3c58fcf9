"""aiohttp-based transport for relayfetch."""

from __future__ import annotations

import collections
import logging
import typing as t
import urllib.parse as parser

import aiohttp
import aiolimiter
from aiohttp_client_cache import FileBackend
from aiohttp_client_cache.session import CachedSession
from multidict import CIMultiDict
from yarl import URL

from .messages import Response

if t.TYPE_CHECKING:
    from collections.abc import AsyncIterator
    from types import TracebackType

    from aiohttp_client_cache.backends.base import CacheBackend

    from .messages import Request
    from .options import MergedOptions

_logger = logging.getLogger("relayfetch")

DEFAULT_CHUNK_SIZE: t.Final = 64 * 1024


class AiohttpTransport:
    """Transport performing requests with an aiohttp session.

    Supports optional response caching and per-domain rate limiting. It must
    be used as an async context manager unless a session is injected.

    Attributes:
        max_rate_per_domain: Maximum requests per domain per time period,
            or None to disable rate limiting.
        time_period_per_domain: Time period in seconds for rate limiting.
        chunk_size: Size of the chunks the response body is streamed in.

    """

    def __init__(
        self,
        session: aiohttp.ClientSession | None = None,
        *,
        max_rate_per_domain: int | None = None,
        time_period_per_domain: float = 1,
        cache_backend: CacheBackend | None = None,
        cache_enabled: bool = False,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        logger: logging.Logger | None = None,
    ) -> None:
        """Initialize the transport.

        Args:
            session: Session to use. The transport does not close an
                injected session.
            max_rate_per_domain: Maximum requests per domain per time period.
            time_period_per_domain: Time period in seconds for rate limiting.
            cache_backend: Cache backend for storing responses. Implies
                ``cache_enabled``.
            cache_enabled: Whether to cache responses. Without a backend a
                file backend in ``.relayfetch_cache`` is used.
            chunk_size: Size of the chunks the response body is streamed in.
            logger: Logger instance. If None, uses the module logger.

        """
        self.max_rate_per_domain = max_rate_per_domain
        self.time_period_per_domain = time_period_per_domain
        self.chunk_size = chunk_size
        self._cache_backend = cache_backend
        if cache_enabled and cache_backend is None:
            self._cache_backend = FileBackend(cache_name=".relayfetch_cache")
        self._limiters: dict[str, aiolimiter.AsyncLimiter] = collections.defaultdict(
            lambda: aiolimiter.AsyncLimiter(
                max_rate=self.max_rate_per_domain or 1,
                time_period=self.time_period_per_domain,
            ),
        )
        self._session = session
        self._owns_session = session is None
        self._logger = logger or _logger

    def _get_domain(self, url: str | URL) -> str:
        """Extract domain from URL for rate limiting.

        Args:
            url: The URL to extract domain from.

        Returns:
            str: The domain (host:port) of the URL. May be empty for invalid URLs.

        Raises:
            ValueError: If the URL object has no domain (None).

        """
        domain = (
            url.host_port_subcomponent
            if isinstance(url, URL)
            else parser.urlparse(url).netloc
        )
        if domain is None:
            msg = f"Invalid URL: {url}"
            raise ValueError(msg)
        return domain

    async def _apply_rate_limit(self, url: URL) -> None:
        """Wait for the rate limiter of the URL's domain.

        Cached responses are served without consuming the rate limit.

        Args:
            url: The URL being requested.

        """
        if self.max_rate_per_domain is None:
            return
        if isinstance(self._session, CachedSession):
            cache_hit = await self._session.cache.has_url(url)  # pyright: ignore[reportUnknownMemberType]
            if cache_hit:
                self._logger.debug("Cache hit for URL: %s", url)
                return
        domain = self._get_domain(url)
        self._logger.debug("Applying rate limit for domain: %s", domain)
        async with self._limiters[domain]:
            self._logger.debug("Rate limit acquired for domain: %s", domain)

    async def _iter_body(self, response: aiohttp.ClientResponse) -> AsyncIterator[bytes]:
        try:
            if isinstance(self._session, CachedSession):
                # the cache has already buffered the body it stores
                yield await response.read()
                return
            async for chunk in response.content.iter_chunked(self.chunk_size):
                yield chunk
        finally:
            response.release()

    async def __call__(
        self,
        request: Request,
        options: MergedOptions,
        ctx: t.Any = None,  # noqa: ARG002
    ) -> Response:
        """Send ``request`` and return the response with a streamed body.

        Args:
            request: The request to send.
            options: Merged options of the call. ``extra`` is passed to
                ``aiohttp.ClientSession.request`` as keyword arguments.
            ctx: Unused call context.

        Returns:
            Response: The response. The connection is released once the
                body has been read.

        Raises:
            RuntimeError: If called outside of an async context manager.
            aiohttp.ClientError: If the request fails.

        """
        if self._session is None:
            msg = "AiohttpTransport must be used as async context manager"
            raise RuntimeError(msg)

        await self._apply_rate_limit(request.url)
        response = await self._session.request(
            request.method,
            request.url,
            headers=request.headers,
            data=request.content,
            **dict(options.extra),
        )
        return Response(
            status=response.status,
            reason=response.reason or "",
            headers=CIMultiDict(response.headers),
            content=self._iter_body(response),
            url=response.url,
        )

    async def __aenter__(self) -> t.Self:
        """Open the session, with caching when a cache backend is configured."""
        if self._session is None:
            if self._cache_backend is not None:
                self._session = CachedSession(cache=self._cache_backend)
            else:
                self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        """Close the session if the transport created it."""
        await self.close()

    async def close(self) -> None:
        if self._session is not None and self._owns_session:
            await self._session.close()
            self._session = None
