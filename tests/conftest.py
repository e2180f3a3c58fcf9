"""Common test fixtures for the relayfetch project."""

from __future__ import annotations

import typing as t

import pytest
from aiohttp_client_cache.backends.base import CacheBackend
from pytest_httpserver import HTTPServer
from yarl import URL

from relayfetch import Fetcher, FetcherConfig, FetchOptions, parse_text


@pytest.fixture
def httpserver2() -> t.Generator[HTTPServer]:
    """Test fixture providing a second local HTTP server for parallel testing."""
    server = HTTPServer(host="127.0.0.1", port=0)
    server.start()
    yield server
    server.stop()


@pytest.fixture
async def fetcher() -> t.AsyncGenerator[Fetcher]:
    """Test fixture providing a Fetcher over the built-in aiohttp transport."""
    async with Fetcher() as fetcher:
        yield fetcher


@pytest.fixture
async def cached_fetcher() -> t.AsyncGenerator[Fetcher]:
    """Test fixture providing a Fetcher caching responses in memory."""
    config = FetcherConfig(cache_backend=CacheBackend())
    async with Fetcher(config=config) as fetcher:
        yield fetcher


@pytest.fixture
async def rate_limited_fetcher() -> t.AsyncGenerator[Fetcher]:
    """Test fixture providing a Fetcher allowing one request per domain per second."""
    config = FetcherConfig(
        max_rate_per_domain=1,
        time_period_per_domain=1,
        default_options=FetchOptions(parse_response=parse_text),
    )
    async with Fetcher(config=config) as fetcher:
        yield fetcher


@pytest.fixture
def url(httpserver: HTTPServer) -> URL:
    """Test fixture providing a single URL answering with JSON."""
    url = URL(f"http://localhost:{httpserver.port}/page")
    httpserver.expect_request(url.path).respond_with_json({"message": "test response"})
    return url


@pytest.fixture
def urls_same_domain(httpserver: HTTPServer) -> list[URL]:
    """Test fixture providing multiple URLs on the same domain."""
    urls = [
        URL(f"http://localhost:{httpserver.port}/page1"),
        URL(f"http://localhost:{httpserver.port}/page2"),
        URL(f"http://localhost:{httpserver.port}/page3"),
    ]

    for i, url in enumerate(urls, 1):
        httpserver.expect_request(url.path).respond_with_data(f"content{i}")

    return urls


@pytest.fixture
def urls_different_domains(httpserver: HTTPServer, httpserver2: HTTPServer) -> list[URL]:
    """Test fixture providing URLs on two different domains."""
    urls = [
        URL(f"http://localhost:{httpserver.port}/page1"),
        URL(f"http://127.0.0.1:{httpserver2.port}/page2"),
    ]

    httpserver.expect_request(urls[0].path).respond_with_data("content1")
    httpserver2.expect_request(urls[1].path).respond_with_data("content2")

    return urls


@pytest.fixture
def url_always_fail(httpserver: HTTPServer) -> URL:
    """Test fixture providing a URL that always answers with a server error."""
    url = URL(f"http://localhost:{httpserver.port}/always-fail")
    httpserver.expect_request(url.path).respond_with_json({"error": "unavailable"}, status=503)
    return url


@pytest.fixture
def url_with_spy(httpserver: HTTPServer) -> tuple[URL, HTTPServer]:
    """Test fixture providing a single URL along with its HTTP server for spying."""
    url = URL(f"http://localhost:{httpserver.port}/cached")
    for _ in range(3):
        httpserver.expect_request(url.path).respond_with_json({"cached": True})
    return url, httpserver


@pytest.fixture
def url_error_after_success(httpserver: HTTPServer) -> URL:
    """Test fixture providing a URL that fails twice before succeeding."""
    url = URL(f"http://localhost:{httpserver.port}/error")
    httpserver.expect_ordered_request(url.path).respond_with_data("error response", status=500)
    httpserver.expect_ordered_request(url.path).respond_with_data("error response", status=500)
    httpserver.expect_ordered_request(url.path).respond_with_json({"status": "ok"})
    return url
