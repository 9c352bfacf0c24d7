"""Docs Scraper MCP Server - Main server definition."""

import asyncio
import functools
import inspect
import json
import sys
from contextlib import asynccontextmanager
from typing import Any

from loguru import logger
from mcp.server.fastmcp import FastMCP
from mcp.types import ToolAnnotations

from docs_scraper_mcp import navigation
from docs_scraper_mcp.cache import DocsCache
from docs_scraper_mcp.config import settings
from docs_scraper_mcp.errors import (
    DocsError,
    InvalidUrlError,
    ToolTimeoutError,
    ValidationError,
    wrap_error,
)
from docs_scraper_mcp.indexer import DocsIndexer
from docs_scraper_mcp.rate_limit import RateLimitTracker
from docs_scraper_mcp.security import is_safe_url, wrap_external_content
from docs_scraper_mcp.sources.github import GitHubFetcher

# Configure logging
logger.remove()
logger.add(sys.stderr, level=settings.log_level)

# Module-level state (set during lifespan, created lazily otherwise)
_cache: DocsCache | None = None
_indexer: DocsIndexer | None = None


def _get_cache() -> DocsCache:
    global _cache
    if _cache is None:
        _cache = DocsCache(settings.get_db_path())
    return _cache


def _get_indexer() -> DocsIndexer:
    global _indexer
    if _indexer is None:
        # One tracker per credential, shared by every fetch this server makes
        fetcher = GitHubFetcher(rate_limit=RateLimitTracker())
        _indexer = DocsIndexer(_get_cache(), fetcher=fetcher)
    return _indexer


@asynccontextmanager
async def _lifespan(_server: FastMCP):
    """Server lifespan: open the docs cache, close it on shutdown."""
    global _cache, _indexer

    logger.info("Starting Docs Scraper MCP Server...")

    if not settings.resolve_github_token():
        logger.warning(
            "No GITHUB_TOKEN set. Repository indexing will use the unauthenticated "
            "GitHub API (60 req/hr limit). Set GITHUB_TOKEN for 5000 req/hr."
        )

    cache = _get_cache()
    _get_indexer()
    stats = cache.stats()
    logger.info(
        f"Docs cache at {settings.get_db_path()} "
        f"({sum(s['total'] for s in stats['sources'].values())} entries)"
    )

    yield

    logger.info("Shutting down Docs Scraper MCP Server...")
    if _cache:
        _cache.close()
        _cache = None
    _indexer = None


# Initialize MCP server
mcp = FastMCP(
    name="docs-scraper",
    instructions=(
        "Documentation indexing MCP Server. "
        "Use `index_docs` to fetch a GitHub repository or documentation site. "
        "Then browse with `get_docs_tree`, read pages with `get_docs_content` "
        "and find pages with `search_docs`. "
        "Indexed docs are cached (7 days for GitHub, 24 hours for websites)."
    ),
    lifespan=_lifespan,
)

# Grace period (seconds) given to a cancelled task to clean up resources
# before we abandon it entirely.
_CANCEL_GRACE_PERIOD = 5.0


def _dump(payload: Any) -> str:
    return json.dumps(payload, indent=2, ensure_ascii=False, default=str)


def _json_tool(tool_name: str, untrusted: bool = False):
    """Decorator turning a tool's dict result or DocsError into JSON text.

    With *untrusted*, successful results are wrapped with safety markers
    since they carry third-party documentation text.  Error payloads are
    passed through unwrapped.
    """

    def decorator(func):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            try:
                result = await func(*args, **kwargs)
            except DocsError as e:
                logger.info(f"Tool '{tool_name}' failed: {e.code} - {e.message}")
                return _dump(e.to_dict())
            except Exception as e:
                logger.error(f"Tool '{tool_name}' failed unexpectedly: {e}")
                return _dump(wrap_error(e, tool_name).to_dict())

            text = _dump(result)
            return wrap_external_content(tool_name, text) if untrusted else text

        # Tools reply with JSON text, not the dict the body builds
        wrapper.__signature__ = inspect.signature(func).replace(return_annotation=str)
        wrapper.__annotations__ = {**func.__annotations__, "return": str}
        return wrapper

    return decorator


async def _with_timeout(coro, action: str):
    """Wrap coroutine with hard timeout.

    Uses ``asyncio.wait`` instead of ``asyncio.wait_for`` so the deadline is
    honoured even if the inner task is slow to react to cancellation.
    After cancellation the task is given a brief grace period to close its
    connections before being abandoned.
    """
    timeout = settings.tool_timeout
    if timeout <= 0:
        return await coro

    task = asyncio.create_task(coro)
    done, _pending = await asyncio.wait({task}, timeout=timeout)

    if done:
        # Propagate any exception raised by the task
        return task.result()

    task.cancel()
    logger.warning(f"Tool '{action}' timed out after {timeout}s, cancelling...")

    try:
        await asyncio.wait_for(asyncio.shield(task), timeout=_CANCEL_GRACE_PERIOD)
    except (asyncio.CancelledError, Exception) as e:
        logger.debug(f"Task '{action}' ended after cancel: {type(e).__name__}")

    logger.error(f"Tool '{action}' timed out after {timeout}s")
    raise ToolTimeoutError(action, timeout)


def _check_fetchable(url: str) -> None:
    """Reject URLs that point at local or private addresses (SSRF)."""
    candidate = (url or "").strip()
    if not candidate:
        raise ValidationError("Missing required parameter: url", "url")
    if "://" not in candidate:
        candidate = f"https://{candidate}"
    if not is_safe_url(candidate):
        raise InvalidUrlError(url, "URL is not a public http(s) address")


# ---------------------------------------------------------------------------
# Indexing
# ---------------------------------------------------------------------------


@mcp.tool(
    annotations=ToolAnnotations(
        readOnlyHint=False,
        openWorldHint=True,
        idempotentHint=True,
    ),
)
@_json_tool("index_docs")
async def index_docs(
    url: str,
    type: str = "auto",
    depth: int = 2,
    max_pages: int = 100,
    force_refresh: bool = False,
) -> dict:
    """Fetch and cache documentation from a GitHub repository or website.
    - type: "github" (repository URL), "scrape" (crawl the site) or "auto" (default: detect the GitHub repo behind a docs site, else crawl)
    - depth: crawl depth for websites (1-5, default 2)
    - max_pages: crawl page budget for websites (default 100)
    - force_refresh: re-index even if a fresh cached copy exists
    Returns the docs id, file tree and stats. Use the id with the other tools.
    """
    _check_fetchable(url)
    return await _with_timeout(
        _get_indexer().index(
            url,
            mode=type,
            depth=depth,
            max_pages=max_pages,
            force_refresh=force_refresh,
        ),
        "index_docs",
    )


@mcp.tool(
    annotations=ToolAnnotations(
        readOnlyHint=True,
        openWorldHint=True,
        idempotentHint=True,
    ),
)
@_json_tool("detect_github_repo")
async def detect_github_repo(url: str) -> dict:
    """Find the GitHub repository behind a documentation website.
    Returns found, repo (owner/name), docs_path, confidence (high/medium/low)
    and detection_method.
    """
    _check_fetchable(url)
    result = await _with_timeout(
        _get_indexer().detector.detect(url.strip()), "detect_github_repo"
    )
    return result.model_dump(exclude_none=True)


# ---------------------------------------------------------------------------
# Reading indexed docs
# ---------------------------------------------------------------------------


@mcp.tool(
    annotations=ToolAnnotations(
        readOnlyHint=True,
        openWorldHint=False,
        idempotentHint=True,
    ),
)
@_json_tool("get_docs_tree")
async def get_docs_tree(
    docs_id: str,
    path: str | None = None,
    max_depth: int | None = None,
) -> dict:
    """Get the file tree of indexed documentation.
    - path: only return the subtree under this folder
    - max_depth: limit tree depth (folders at the limit are returned without children)
    """
    return navigation.get_docs_tree(_get_cache(), docs_id, path, max_depth)


@mcp.tool(
    annotations=ToolAnnotations(
        readOnlyHint=True,
        openWorldHint=False,
        idempotentHint=True,
    ),
)
@_json_tool("get_docs_content", untrusted=True)
async def get_docs_content(
    docs_id: str,
    paths: list[str],
    format: str = "markdown",
) -> dict:
    """Get the content of one or more files from indexed documentation.
    - paths: file paths as shown by get_docs_tree
    - format: "markdown" (content plus title and headings) or "raw"
    Missing paths are listed in not_found.
    """
    return navigation.get_docs_content(_get_cache(), docs_id, paths, format)


@mcp.tool(
    annotations=ToolAnnotations(
        readOnlyHint=True,
        openWorldHint=False,
        idempotentHint=True,
    ),
)
@_json_tool("search_docs", untrusted=True)
async def search_docs(docs_id: str, query: str, limit: int = 10) -> dict:
    """Full-text search within indexed documentation.
    Matches titles, headings and body text (typo tolerant, prefix matching).
    Returns ranked paths with titles and snippets. limit: 1-50 (default 10).
    """
    return navigation.search_docs(_get_cache(), docs_id, query, limit)


# ---------------------------------------------------------------------------
# Cache management
# ---------------------------------------------------------------------------


@mcp.tool(
    annotations=ToolAnnotations(
        readOnlyHint=True,
        openWorldHint=False,
        idempotentHint=True,
    ),
)
@_json_tool("list_cached_docs")
async def list_cached_docs() -> dict:
    """List all cached documentation with id, source, page count and expiry."""
    return navigation.list_cached_docs(_get_cache())


@mcp.tool(
    annotations=ToolAnnotations(
        readOnlyHint=False,
        destructiveHint=True,
        openWorldHint=False,
        idempotentHint=True,
    ),
)
@_json_tool("clear_cache")
async def clear_cache(docs_id: str | None = None, all: bool = False) -> dict:
    """Remove cached documentation: one entry by docs_id, or everything with all=true."""
    return navigation.clear_cache(_get_cache(), docs_id, all)


@mcp.tool(
    annotations=ToolAnnotations(
        readOnlyHint=True,
        openWorldHint=False,
        idempotentHint=True,
    ),
)
@_json_tool("ping")
async def ping() -> dict:
    """Health check - returns pong and the GitHub rate limit status."""
    return {
        "message": "pong",
        "github_rate_limit": _get_indexer().fetcher.rate_limit_status(),
    }


def main() -> None:
    """Entry point for the MCP server."""
    mcp.run()


if __name__ == "__main__":
    main()
