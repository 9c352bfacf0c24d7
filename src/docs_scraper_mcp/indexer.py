"""Index orchestration: pick a source, fetch, build the search index, persist.

One ``DocsIndexer.index`` call runs a single indexing request:

    cache check -> (cached result | GitHub fetch | crawl) -> search index -> store

In auto mode a GitHub URL is indexed directly, other URLs go through
repository detection first and fall back to crawling the site itself when
detection is inconclusive or the GitHub attempt fails.
"""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager, closing
from datetime import UTC, datetime
from typing import Any, Literal
from urllib.parse import urlparse

from loguru import logger

from docs_scraper_mcp.cache import DocsCache
from docs_scraper_mcp.config import Settings
from docs_scraper_mcp.config import settings as default_settings
from docs_scraper_mcp.errors import (
    InvalidUrlError,
    NoContentError,
    ScrapingBlockedError,
    ValidationError,
)
from docs_scraper_mcp.models import (
    CacheEntryMeta,
    CrawlResult,
    DocTreeNode,
    FileContent,
    SourceKind,
    iter_file_paths,
    sort_nodes,
)
from docs_scraper_mcp.search_index import SearchIndex, create_indexable_document
from docs_scraper_mcp.sources.cleaner import clean_html
from docs_scraper_mcp.sources.crawler import WebCrawler
from docs_scraper_mcp.sources.detector import GitHubDetector
from docs_scraper_mcp.sources.github import (
    GitHubFetcher,
    parse_github_url,
    parse_repo_string,
)
from docs_scraper_mcp.urls import scraped_docs_id

IndexMode = Literal["auto", "github", "scrape"]
MODES = ("auto", "github", "scrape")

# Cleaned pages shorter than this are navigation stubs, not docs
MIN_PAGE_CHARS = 100

_BLOCKED_STATUSES = ("HTTP 401", "HTTP 403", "HTTP 429")


def github_docs_id(owner: str, repo: str) -> str:
    return f"{owner}_{repo}"


def _require_http_url(url: str) -> None:
    try:
        parsed = urlparse(url)
    except ValueError as e:
        raise InvalidUrlError(url, str(e)) from e
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise InvalidUrlError(url, "expected an http(s) URL")


def build_result(
    meta: CacheEntryMeta,
    strategy: str,
    cached: bool,
    warnings: list[str] | None = None,
) -> dict[str, Any]:
    """JSON-ready result of an indexing request."""
    result: dict[str, Any] = {"id": meta.id, "source": meta.source}
    if meta.source == "github":
        result["repo"] = meta.repo
        result["branch"] = meta.branch
    else:
        result["base_url"] = meta.base_url
    result["tree"] = [node.to_dict() for node in meta.tree]
    result["stats"] = {
        "pages": meta.page_count,
        "total_size_bytes": meta.total_size_bytes,
        "indexed_at": meta.indexed_at.isoformat(),
        "expires_at": meta.expires_at.isoformat(),
    }
    result["strategy"] = strategy
    result["cached"] = cached
    result["warnings"] = list(warnings or [])
    return result


def crawl_failure(url: str, crawl: CrawlResult) -> Exception:
    """Blocked (robots or 401/403/429) versus plain no-content for an empty crawl."""
    for issue in crawl.skipped:
        if "robots" in issue.reason.lower():
            return ScrapingBlockedError(url, issue.reason)
    for issue in crawl.failed:
        if issue.reason in _BLOCKED_STATUSES:
            return ScrapingBlockedError(url, issue.reason)
    return NoContentError(url, "no pages could be crawled")


def pages_to_files(crawl: CrawlResult) -> list[FileContent]:
    """Clean crawled pages into Markdown files, dropping near-empty pages.

    The first page mapped to a filename wins.  A page title is prepended as
    an H1 unless the body already opens with one.
    """
    files: list[FileContent] = []
    seen: set[str] = set()
    for page in crawl.pages:
        if page.filename in seen:
            continue
        cleaned = clean_html(page.html, base_url=page.url)
        body = cleaned.markdown
        if len(body.strip()) < MIN_PAGE_CHARS:
            logger.debug(f"Dropping {page.url}: only {len(body.strip())} chars of content")
            continue
        if cleaned.title and not body.lstrip().startswith("# "):
            body = f"# {cleaned.title}\n\n{body}"
        seen.add(page.filename)
        files.append(
            FileContent(
                path=page.filename,
                content=body,
                size_bytes=len(body.encode("utf-8")),
            )
        )
    return files


def build_search_index(files: list[FileContent]) -> bytes:
    """Serialized search index over *files*."""
    with closing(SearchIndex()) as index:
        for f in files:
            index.add(create_indexable_document(f.path, f.content))
        return index.to_bytes()


class DocsIndexer:
    """Runs indexing requests against a ``DocsCache``.

    Refreshes of the same ``(source, id)`` are serialized by a per-key lock;
    a caller that waited re-checks the cache and reuses the fresh entry.
    """

    def __init__(
        self,
        cache: DocsCache,
        fetcher: GitHubFetcher | None = None,
        crawler: WebCrawler | None = None,
        detector: GitHubDetector | None = None,
        settings: Settings | None = None,
    ):
        self.cache = cache
        self.fetcher = fetcher or GitHubFetcher()
        self.crawler = crawler or WebCrawler()
        self.detector = detector or GitHubDetector()
        self.settings = settings or default_settings
        # (source, id) -> (lock, callers holding or waiting on it)
        self._locks: dict[tuple[str, str], tuple[asyncio.Lock, int]] = {}

    @asynccontextmanager
    async def _lock(self, source: SourceKind, docs_id: str) -> AsyncIterator[None]:
        """Hold the refresh lock of one entry; the lock is dropped once idle."""
        key = (source, docs_id)
        lock, users = self._locks.get(key) or (asyncio.Lock(), 0)
        self._locks[key] = (lock, users + 1)
        try:
            async with lock:
                yield
        finally:
            _, users = self._locks[key]
            if users == 1:
                del self._locks[key]
            else:
                self._locks[key] = (lock, users - 1)

    def _fresh_entry(self, source: SourceKind, docs_id: str) -> CacheEntryMeta | None:
        meta = self.cache.get_meta(source, docs_id)
        if meta is not None and not meta.is_expired():
            return meta
        return None

    async def index(
        self,
        url: str,
        mode: IndexMode = "auto",
        depth: int | None = None,
        max_pages: int | None = None,
        force_refresh: bool = False,
    ) -> dict[str, Any]:
        """Index the documentation at *url*.

        Args:
            url: GitHub repository URL or documentation site URL
            mode: ``github``, ``scrape`` or ``auto`` (detect the best source)
            depth: Crawl depth for websites (1-5)
            max_pages: Crawl page budget for websites
            force_refresh: Ignore a fresh cached entry and re-index

        Returns:
            Result dict with id, source, tree, stats, strategy, cached, warnings
        """
        url = (url or "").strip()
        if not url:
            raise ValidationError("Missing required parameter: url", "url")
        if mode not in MODES:
            raise ValidationError(
                f"Invalid type '{mode}'. Expected one of: {', '.join(MODES)}", "type"
            )
        if depth is not None and not 1 <= depth <= 5:
            raise ValidationError("depth must be between 1 and 5", "depth")
        if max_pages is not None and max_pages < 1:
            raise ValidationError("max_pages must be at least 1", "max_pages")

        github = parse_github_url(url)

        if mode == "github":
            if github is None:
                raise InvalidUrlError(
                    url, "not a GitHub repository URL (https://github.com/owner/repo)"
                )
            return await self._index_github(
                github.owner,
                github.repo,
                branch=github.branch,
                path=github.path,
                force_refresh=force_refresh,
                strategy="explicit_github",
            )

        if mode == "scrape":
            _require_http_url(url)
            return await self._index_site(
                url, depth, max_pages, force_refresh, strategy="explicit_scrape"
            )

        if github is not None:
            return await self._index_github(
                github.owner,
                github.repo,
                branch=github.branch,
                path=github.path,
                force_refresh=force_refresh,
                strategy="direct_github_url",
            )

        _require_http_url(url)
        if not force_refresh:
            cached = self._fresh_entry("scraped", scraped_docs_id(url))
            if cached is not None:
                logger.info(f"Using cached crawl of {url} ({cached.id})")
                return build_result(cached, "scraping_fallback", cached=True)

        detection = await self.detector.detect(url)
        if detection.found and detection.confidence != "low" and detection.repo:
            strategy = f"auto_github_{detection.detection_method}"
            try:
                owner, repo = parse_repo_string(detection.repo)
                return await self._index_github(
                    owner, repo, force_refresh=force_refresh, strategy=strategy
                )
            except Exception as e:
                logger.warning(
                    f"GitHub indexing of {detection.repo} failed ({e}); crawling {url}"
                )
                return await self._index_site(
                    url,
                    depth,
                    max_pages,
                    force_refresh,
                    strategy="github_failed_scraping_fallback",
                    warnings=[
                        f"GitHub repository {detection.repo} could not be indexed: {e}"
                    ],
                )

        logger.info(
            f"No confident GitHub match for {url} "
            f"({detection.detection_method}, {detection.confidence}); crawling"
        )
        return await self._index_site(
            url, depth, max_pages, force_refresh, strategy="scraping_fallback"
        )

    async def _index_github(
        self,
        owner: str,
        repo: str,
        branch: str | None = None,
        path: str | None = None,
        force_refresh: bool = False,
        strategy: str = "explicit_github",
    ) -> dict[str, Any]:
        docs_id = github_docs_id(owner, repo)
        repo_id = f"{owner}/{repo}"

        async with self._lock("github", docs_id):
            if not force_refresh:
                cached = self._fresh_entry("github", docs_id)
                if cached is not None:
                    logger.info(f"Using cached docs for {repo_id}")
                    return build_result(cached, strategy, cached=True)

            warnings: list[str] = []
            tree_result = await self.fetcher.resolve_tree(
                repo_id, path=path, branch=branch
            )
            if tree_result.truncated:
                warnings.append(
                    "Repository tree was truncated by GitHub; some files may be missing"
                )

            paths = iter_file_paths(tree_result.tree)
            files, not_found = await self.fetcher.fetch_many_files(
                repo_id, tree_result.branch, paths
            )
            if not_found:
                warnings.append(f"{len(not_found)} files could not be downloaded")
            if self.fetcher.rate_limit.is_low():
                warnings.append(self.fetcher.rate_limit_status())

            if not files:
                raise NoContentError(
                    f"https://github.com/{repo_id}", "no Markdown files found"
                )

            search_index = build_search_index(files)
            now = datetime.now(UTC)
            meta = CacheEntryMeta(
                id=docs_id,
                source="github",
                repo=repo_id,
                branch=tree_result.branch,
                indexed_at=now,
                expires_at=self.cache.expires_at_for("github", now),
                page_count=len(files),
                total_size_bytes=sum(f.size_bytes for f in files),
                tree=tree_result.tree,
            )
            self.cache.store_entry(meta, files, search_index)
            logger.info(
                f"Indexed {repo_id}@{tree_result.branch}: {meta.page_count} pages, "
                f"{meta.total_size_bytes} bytes"
            )
            return build_result(meta, strategy, cached=False, warnings=warnings)

    async def _index_site(
        self,
        url: str,
        depth: int | None,
        max_pages: int | None,
        force_refresh: bool,
        strategy: str,
        warnings: list[str] | None = None,
    ) -> dict[str, Any]:
        docs_id = scraped_docs_id(url)
        if not docs_id:
            raise InvalidUrlError(url, "URL has no hostname")
        warnings = list(warnings or [])

        async with self._lock("scraped", docs_id):
            if not force_refresh:
                cached = self._fresh_entry("scraped", docs_id)
                if cached is not None:
                    logger.info(f"Using cached crawl of {url} ({docs_id})")
                    return build_result(cached, strategy, cached=True, warnings=warnings)

            crawl = await self.crawler.crawl(
                url,
                max_depth=depth or self.settings.crawl_max_depth,
                max_pages=max_pages or self.settings.crawl_max_pages,
                request_delay=self.settings.crawl_request_delay,
                respect_robots=self.settings.crawl_respect_robots,
            )
            if not crawl.pages:
                raise crawl_failure(url, crawl)

            files = pages_to_files(crawl)
            if not files:
                raise NoContentError(
                    url, "every crawled page was too short to be documentation"
                )
            if crawl.failed:
                warnings.append(f"{len(crawl.failed)} pages failed to load")

            tree = sort_nodes(
                [
                    DocTreeNode(
                        name=f.path, path=f.path, type="file", size_bytes=f.size_bytes
                    )
                    for f in files
                ]
            )
            search_index = build_search_index(files)
            now = datetime.now(UTC)
            meta = CacheEntryMeta(
                id=docs_id,
                source="scraped",
                base_url=crawl.base_url,
                indexed_at=now,
                expires_at=self.cache.expires_at_for("scraped", now),
                page_count=len(files),
                total_size_bytes=sum(f.size_bytes for f in files),
                tree=tree,
            )
            self.cache.store_entry(meta, files, search_index)
            logger.info(
                f"Indexed {crawl.base_url}: {meta.page_count} pages "
                f"({crawl.stats.crawled} crawled), {meta.total_size_bytes} bytes"
            )
            return build_result(meta, strategy, cached=False, warnings=warnings)
