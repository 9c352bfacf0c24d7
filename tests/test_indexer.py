"""Tests for index orchestration (src/docs_scraper_mcp/indexer.py)."""

import asyncio
import time

import httpx
import pytest

from docs_scraper_mcp.config import Settings
from docs_scraper_mcp.errors import (
    GitHubNotFoundError,
    InvalidUrlError,
    NoContentError,
    ScrapingBlockedError,
    ValidationError,
)
from docs_scraper_mcp.indexer import DocsIndexer, build_result, crawl_failure
from docs_scraper_mcp.models import CrawlIssue, CrawlResult
from docs_scraper_mcp.navigation import get_docs_tree
from docs_scraper_mcp.sources.crawler import WebCrawler
from docs_scraper_mcp.sources.detector import GitHubDetector
from docs_scraper_mcp.sources.github import GitHubFetcher

BODY = (
    "This page walks through installing the library, configuring it for your "
    "project and running the first pipeline end to end."
)

REPO_FILES = {
    "README.md": "# Widgets\n\nWidgets builds schemas.\n",
    "docs/guide.md": "# Guide\n\n## Install\n\nRun the installer.\n",
}


def _rate_headers(remaining=50):
    return {
        "x-ratelimit-limit": "60",
        "x-ratelimit-remaining": str(remaining),
        "x-ratelimit-reset": str(int(time.time()) + 600),
    }


def _page(title: str, body: str = BODY, extra: str = "") -> str:
    return (
        f"<html><head><title>{title} | Example Docs</title></head><body>"
        f"<nav>Menu</nav><main><h1>{title}</h1><p>{body}</p>{extra}</main></body></html>"
    )


class FakeWeb:
    """Routes GitHub API, raw content and one docs site through one transport."""

    def __init__(self, repo_files=None, branches=("main",), site=None, truncated=False):
        self.repo_files = REPO_FILES if repo_files is None else repo_files
        self.branches = branches
        self.site = site or {}
        self.truncated = truncated
        self.broken_files: set[str] = set()

    def __call__(self, request: httpx.Request) -> httpx.Response:
        host = request.url.host
        path = request.url.path
        if host == "api.github.com":
            branch = path.rsplit("/", 1)[-1]
            if branch not in self.branches:
                return httpx.Response(404, json={}, headers=_rate_headers())
            if "/branches/" in path:
                return httpx.Response(200, json={}, headers=_rate_headers())
            tree = [
                {"path": p, "type": "blob", "size": len(c)}
                for p, c in self.repo_files.items()
            ]
            return httpx.Response(
                200,
                json={"tree": tree, "truncated": self.truncated},
                headers=_rate_headers(),
            )
        if host == "raw.githubusercontent.com":
            file_path = path.split("/", 4)[4]
            if file_path in self.broken_files or file_path not in self.repo_files:
                return httpx.Response(404)
            return httpx.Response(200, text=self.repo_files[file_path])
        if host == "docs.example.com":
            if path in self.site:
                response = self.site[path]
                if isinstance(response, httpx.Response):
                    return response
                return httpx.Response(200, html=response)
            return httpx.Response(404)
        return httpx.Response(404)


@pytest.fixture
def make_indexer(cache, make_client, no_sleep):
    def _make(web: FakeWeb, respect_robots: bool = False) -> DocsIndexer:
        client = make_client(web)
        indexer = DocsIndexer(
            cache,
            fetcher=GitHubFetcher(client=client, token=""),
            crawler=WebCrawler(client=client, sleep=no_sleep),
            detector=GitHubDetector(client=client),
            settings=Settings(crawl_request_delay=0, crawl_respect_robots=respect_robots),
        )
        indexer.client = client
        return indexer

    return _make


# -----------------------------------------------------------------------
# GitHub sources
# -----------------------------------------------------------------------


class TestGitHubIndexing:
    async def test_small_repo(self, make_indexer, cache):
        indexer = make_indexer(FakeWeb())

        result = await indexer.index("https://github.com/acme/widgets", mode="github")

        assert result["id"] == "acme_widgets"
        assert result["source"] == "github"
        assert result["repo"] == "acme/widgets"
        assert result["branch"] == "main"
        assert result["strategy"] == "explicit_github"
        assert result["cached"] is False
        assert result["stats"]["pages"] == 2
        folder, readme = result["tree"]
        assert folder["type"] == "folder"
        assert [c["path"] for c in folder["children"]] == ["docs/guide.md"]
        assert readme == {
            "name": "README.md",
            "path": "README.md",
            "type": "file",
            "size_bytes": len(REPO_FILES["README.md"]),
        }

        shallow = get_docs_tree(cache, "acme_widgets", max_depth=1)
        assert shallow["tree"][0]["type"] == "folder"
        assert "children" not in shallow["tree"][0]

        assert cache.get_content("github", "acme_widgets", "docs/guide.md") == (
            REPO_FILES["docs/guide.md"]
        )

    async def test_cached_second_call_makes_no_requests(self, make_indexer):
        indexer = make_indexer(FakeWeb())
        await indexer.index("https://github.com/acme/widgets")
        requests_before = len(indexer.client.requests)

        result = await indexer.index("https://github.com/acme/widgets")

        assert result["cached"] is True
        assert result["strategy"] == "direct_github_url"
        assert len(indexer.client.requests) == requests_before

    async def test_force_refresh(self, make_indexer):
        indexer = make_indexer(FakeWeb())
        await indexer.index("https://github.com/acme/widgets")
        result = await indexer.index("https://github.com/acme/widgets", force_refresh=True)
        assert result["cached"] is False

    async def test_concurrent_refreshes_fetch_once(self, make_indexer):
        indexer = make_indexer(FakeWeb())

        first, second = await asyncio.gather(
            indexer.index("https://github.com/acme/widgets"),
            indexer.index("https://github.com/acme/widgets"),
        )

        tree_calls = [r for r in indexer.client.requests if "/git/trees/" in r.url.path]
        assert len(tree_calls) == 1
        assert sorted([first["cached"], second["cached"]]) == [False, True]
        assert indexer._locks == {}

    async def test_partial_downloads_and_truncation_warned(self, make_indexer):
        web = FakeWeb(truncated=True)
        web.broken_files.add("docs/guide.md")
        indexer = make_indexer(web)

        result = await indexer.index("https://github.com/acme/widgets")

        assert result["stats"]["pages"] == 1
        assert any("truncated" in w for w in result["warnings"])
        assert "1 files could not be downloaded" in result["warnings"]

    async def test_repo_without_markdown(self, make_indexer, cache):
        indexer = make_indexer(FakeWeb(repo_files={"setup.py": "print()"}))
        with pytest.raises(NoContentError):
            await indexer.index("https://github.com/acme/widgets")
        assert cache.list_entries() == []

    async def test_branch_and_path_from_url(self, make_indexer):
        web = FakeWeb(
            branches=("v2",),
            repo_files={"docs/a.md": "# A\n", "other/b.md": "# B\n"},
        )
        indexer = make_indexer(web)

        result = await indexer.index("https://github.com/acme/widgets/tree/v2/docs")

        assert result["branch"] == "v2"
        assert result["stats"]["pages"] == 1
        assert result["tree"][0]["path"] == "docs/a.md"

    async def test_missing_repo(self, make_indexer):
        indexer = make_indexer(FakeWeb(branches=()))
        with pytest.raises(GitHubNotFoundError):
            await indexer.index("https://github.com/acme/missing", mode="github")
        assert indexer._locks == {}


# -----------------------------------------------------------------------
# Crawled sources
# -----------------------------------------------------------------------


class TestSiteIndexing:
    async def test_scrape_site(self, make_indexer, cache):
        site = {
            "/": _page("Home", extra='<a href="/guide">Guide</a><a href="/broken">x</a>'),
            "/guide": _page("Guide"),
            "/broken": httpx.Response(500),
        }
        indexer = make_indexer(FakeWeb(site=site))

        result = await indexer.index("https://docs.example.com/", mode="scrape")

        assert result["id"] == "docs_example_com"
        assert result["source"] == "scraped"
        assert result["base_url"] == "https://docs.example.com/"
        assert result["strategy"] == "explicit_scrape"
        assert [n["path"] for n in result["tree"]] == ["guide.md", "index.md"]
        assert all(n["type"] == "file" for n in result["tree"])
        assert "1 pages failed to load" in result["warnings"]

        content = cache.get_content("scraped", "docs_example_com", "guide.md")
        assert content.startswith("# Guide\n")
        assert "Menu" not in content

    async def test_offsite_links_only_is_no_content(self, make_indexer, cache):
        site = {"/": '<main><p>See <a href="https://other.com/docs">our docs</a></p></main>'}
        indexer = make_indexer(FakeWeb(site=site))

        with pytest.raises(NoContentError):
            await indexer.index("https://docs.example.com/")
        assert cache.list_entries() == []

    async def test_forbidden_site_is_blocked(self, make_indexer):
        indexer = make_indexer(FakeWeb(site={"/": httpx.Response(403)}))
        with pytest.raises(ScrapingBlockedError):
            await indexer.index("https://docs.example.com/", mode="scrape")

    async def test_robots_disallow_is_blocked(self, make_indexer):
        site = {
            "/robots.txt": httpx.Response(200, text="User-agent: *\nDisallow: /\n"),
            "/": _page("Home"),
        }
        indexer = make_indexer(FakeWeb(site=site), respect_robots=True)
        with pytest.raises(ScrapingBlockedError):
            await indexer.index("https://docs.example.com/", mode="scrape")

    async def test_missing_site_is_no_content(self, make_indexer):
        indexer = make_indexer(FakeWeb(site={}))
        with pytest.raises(NoContentError):
            await indexer.index("https://docs.example.com/", mode="scrape")


# -----------------------------------------------------------------------
# Auto mode
# -----------------------------------------------------------------------


class TestAutoMode:
    EDIT_LINK = (
        '<a href="https://github.com/acme/widgets/edit/main/docs/index.md">'
        "Edit this page on GitHub</a>"
    )

    async def test_detected_repo_indexed_from_github(self, make_indexer):
        indexer = make_indexer(FakeWeb(site={"/": _page("Home", extra=self.EDIT_LINK)}))

        result = await indexer.index("https://docs.example.com/")

        assert result["source"] == "github"
        assert result["repo"] == "acme/widgets"
        assert result["strategy"] == "auto_github_edit_on_github_link"

    async def test_github_failure_falls_back_to_crawling_site(self, make_indexer):
        web = FakeWeb(branches=(), site={"/": _page("Home", extra=self.EDIT_LINK)})
        indexer = make_indexer(web)

        result = await indexer.index("https://docs.example.com/")

        assert result["source"] == "scraped"
        assert result["base_url"] == "https://docs.example.com/"
        assert result["strategy"] == "github_failed_scraping_fallback"
        assert any("acme/widgets" in w for w in result["warnings"])

    async def test_low_confidence_crawls(self, make_indexer):
        link = '<a href="https://github.com/acme/widgets">GitHub</a>'
        indexer = make_indexer(FakeWeb(site={"/": _page("Home", extra=link)}))

        result = await indexer.index("https://docs.example.com/")

        assert result["source"] == "scraped"
        assert result["strategy"] == "scraping_fallback"

    async def test_cached_site_skips_detection(self, make_indexer):
        indexer = make_indexer(FakeWeb(site={"/": _page("Home")}))
        await indexer.index("https://docs.example.com/")
        requests_before = len(indexer.client.requests)

        result = await indexer.index("https://docs.example.com/")

        assert result["cached"] is True
        assert len(indexer.client.requests) == requests_before


# -----------------------------------------------------------------------
# Validation and helpers
# -----------------------------------------------------------------------


class TestValidation:
    @pytest.mark.parametrize(
        "kwargs",
        [
            {"url": ""},
            {"url": "https://docs.example.com", "mode": "bogus"},
            {"url": "https://docs.example.com", "depth": 0},
            {"url": "https://docs.example.com", "depth": 6},
            {"url": "https://docs.example.com", "max_pages": 0},
        ],
    )
    async def test_invalid_arguments(self, make_indexer, kwargs):
        indexer = make_indexer(FakeWeb())
        with pytest.raises(ValidationError):
            await indexer.index(**kwargs)
        assert indexer.client.requests == []

    async def test_github_mode_needs_github_url(self, make_indexer):
        indexer = make_indexer(FakeWeb())
        with pytest.raises(InvalidUrlError):
            await indexer.index("https://docs.example.com", mode="github")

    async def test_scrape_mode_needs_http_url(self, make_indexer):
        indexer = make_indexer(FakeWeb())
        with pytest.raises(InvalidUrlError):
            await indexer.index("ftp://docs.example.com", mode="scrape")


class TestHelpers:
    def test_crawl_failure_classification(self):
        url = "https://docs.example.com/"
        robots = CrawlResult(base_url=url, skipped=[CrawlIssue(url, "disallowed by robots.txt")])
        throttled = CrawlResult(base_url=url, failed=[CrawlIssue(url, "HTTP 429")])
        missing = CrawlResult(base_url=url, failed=[CrawlIssue(url, "HTTP 404")])

        assert isinstance(crawl_failure(url, robots), ScrapingBlockedError)
        assert isinstance(crawl_failure(url, throttled), ScrapingBlockedError)
        assert isinstance(crawl_failure(url, missing), NoContentError)

    async def test_build_result_shape(self, make_indexer, cache):
        indexer = make_indexer(FakeWeb())
        await indexer.index("https://github.com/acme/widgets")
        meta = cache.get_meta("github", "acme_widgets")

        result = build_result(meta, "explicit_github", cached=True)

        assert set(result) == {
            "id",
            "source",
            "repo",
            "branch",
            "tree",
            "stats",
            "strategy",
            "cached",
            "warnings",
        }
        assert result["stats"]["expires_at"] == meta.expires_at.isoformat()
