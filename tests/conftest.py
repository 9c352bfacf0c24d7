"""Pytest configuration and fixtures."""

from collections.abc import Callable

import httpx
import pytest

from docs_scraper_mcp.cache import DocsCache


@pytest.fixture
def cache(tmp_path):
    """Fresh DocsCache backed by a temporary database."""
    cache = DocsCache(tmp_path / "docs.db")
    yield cache
    cache.close()


@pytest.fixture
def make_client():
    """Build an ``httpx.AsyncClient`` served by a request handler.

    The handler receives each ``httpx.Request`` and returns an
    ``httpx.Response``.  Every request is recorded on ``client.requests``.

    Example usage::

        async def test_something(make_client):
            client = make_client(lambda req: httpx.Response(200, html="<p>hi</p>"))
            crawler = WebCrawler(client=client)
    """

    def _make(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.AsyncClient:
        requests: list[httpx.Request] = []

        def _record(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return handler(request)

        client = httpx.AsyncClient(transport=httpx.MockTransport(_record))
        client.requests = requests
        return client

    return _make


@pytest.fixture(autouse=True)
def _reset_server_state():
    """Reset the server's lazily created cache and indexer around each test."""
    import docs_scraper_mcp.server as server_mod

    server_mod._cache = None
    server_mod._indexer = None

    yield

    if server_mod._cache is not None:
        server_mod._cache.close()
    server_mod._cache = None
    server_mod._indexer = None


async def _no_sleep(_seconds: float) -> None:
    return None


@pytest.fixture
def no_sleep():
    """Sleep replacement so crawler pacing never slows tests down."""
    return _no_sleep
