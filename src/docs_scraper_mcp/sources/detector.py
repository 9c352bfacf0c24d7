"""Find the GitHub repository behind a documentation site.

Each heuristic is a pure function returning a ``GitHubDetectionResult`` or
``None``; ``GitHubDetector.detect`` runs them in priority order and the
first match wins.
"""

import json
import re
from collections import Counter
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from urllib.parse import urlparse

import httpx
from bs4 import BeautifulSoup
from loguru import logger

from docs_scraper_mcp.config import settings
from docs_scraper_mcp.models import GitHubDetectionResult
from docs_scraper_mcp.security import is_safe_url
from docs_scraper_mcp.sources.crawler import MAX_REDIRECTS
from docs_scraper_mcp.sources.github import parse_github_url
from docs_scraper_mcp.urls import resolve_url

_REPO_LINK_RE = re.compile(
    r"^https?://(?:www\.)?github\.com/([A-Za-z0-9_-]+)/([A-Za-z0-9_.-]+)(?:[/?#].*)?$"
)
_EDIT_TEXT_RE = re.compile(
    r"(?:edit|view|source).*github|github.*(?:edit|view|source)", re.IGNORECASE
)
_EDIT_JSON_RE = re.compile(r'"(?:editUrl|edit_uri)"\s*:\s*("[^"]*github\.com/[^"]+")')

# Second path segments that are site pages, not repositories
_NON_REPO_NAMES = frozenset({"issues", "pulls", "discussions", "sponsors", "marketplace"})
# First path segments that are not owners
_NON_REPO_OWNERS = frozenset(
    {"sponsors", "marketplace", "orgs", "topics", "features", "settings", "login"}
)

_CENSUS_MEDIUM = 3


def _split_repo_url(url: str) -> tuple[str, str, str | None] | None:
    """``(owner, repo, docs_path)`` for a github.com URL, else ``None``.

    ``docs_path`` is the directory inside the repository for
    ``tree``/``blob``/``edit`` links.
    """
    try:
        parsed = urlparse(url)
    except ValueError:
        return None
    if (parsed.hostname or "").lower() not in ("github.com", "www.github.com"):
        return None

    parts = [p for p in parsed.path.split("/") if p]
    if len(parts) < 2:
        return None
    owner, repo = parts[0], parts[1].removesuffix(".git")
    if owner.lower() in _NON_REPO_OWNERS or repo.lower() in _NON_REPO_NAMES:
        return None

    docs_path = None
    if len(parts) > 4 and parts[2] in ("tree", "blob", "edit"):
        inner = parts[4:]
        # Edit links point at a file; keep its directory
        if parts[2] != "tree" and "." in inner[-1]:
            inner = inner[:-1]
        docs_path = "/".join(inner) or None
    return owner, repo, docs_path


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------


def detect_from_url(url: str) -> GitHubDetectionResult | None:
    """The URL itself is a repository or a ``*.github.io`` page."""
    info = parse_github_url(url)
    if info is not None:
        return GitHubDetectionResult(
            found=True,
            repo=info.repo_id,
            docs_path=info.path,
            confidence="high",
            detection_method="direct_github_url",
        )

    try:
        parsed = urlparse(url)
    except ValueError:
        return None
    host = (parsed.hostname or "").lower()
    if not host.endswith(".github.io"):
        return None

    owner = host.removesuffix(".github.io")
    segments = [p for p in parsed.path.split("/") if p]
    if segments:
        return GitHubDetectionResult(
            found=True,
            repo=f"{owner}/{segments[0]}",
            confidence="high",
            detection_method="github_io_project",
        )
    return GitHubDetectionResult(
        found=True,
        repo=f"{owner}/{owner}.github.io",
        confidence="high",
        detection_method="github_io_user",
    )


def detect_from_edit_links(soup: BeautifulSoup, html: str) -> GitHubDetectionResult | None:
    """Edit-on-GitHub style anchors, or editUrl/edit_uri config fields."""
    candidates: list[str] = []
    for anchor in soup.find_all("a", href=True):
        text = " ".join(anchor.get_text(" ").split())
        if "github.com/" in anchor["href"] and _EDIT_TEXT_RE.search(text):
            candidates.append(anchor["href"])

    for match in _EDIT_JSON_RE.finditer(html):
        try:
            candidates.append(json.loads(match.group(1)))
        except ValueError:
            continue

    for href in candidates:
        split = _split_repo_url(href)
        if split is not None:
            owner, repo, docs_path = split
            return GitHubDetectionResult(
                found=True,
                repo=f"{owner}/{repo}",
                docs_path=docs_path,
                confidence="high",
                detection_method="edit_on_github_link",
            )
    return None


def detect_from_meta_tags(soup: BeautifulSoup, html: str) -> GitHubDetectionResult | None:
    """``og:url`` pointing at github.com, or a ``github:repo`` meta tag."""
    values: list[str] = []
    og = soup.find("meta", attrs={"property": "og:url"})
    if og is not None and "github.com" in (og.get("content") or ""):
        values.append(og["content"])
    repo_meta = soup.find("meta", attrs={"name": "github:repo"})
    if repo_meta is not None and repo_meta.get("content"):
        content = repo_meta["content"].strip()
        if "github.com" not in content:
            content = f"https://github.com/{content}"
        values.append(content)

    for value in values:
        split = _split_repo_url(value.strip())
        if split is not None:
            owner, repo, _ = split
            return GitHubDetectionResult(
                found=True,
                repo=f"{owner}/{repo}",
                confidence="medium",
                detection_method="meta_tag",
            )
    return None


def detect_from_links(soup: BeautifulSoup, html: str) -> GitHubDetectionResult | None:
    """Most frequently linked repository on the page."""
    counts: Counter[str] = Counter()
    for anchor in soup.find_all("a", href=True):
        match = _REPO_LINK_RE.match(anchor["href"].strip())
        if not match:
            continue
        owner, repo = match.group(1), match.group(2).removesuffix(".git")
        if owner.lower() in _NON_REPO_OWNERS or repo.lower() in _NON_REPO_NAMES:
            continue
        counts[f"{owner}/{repo}"] += 1

    if not counts:
        return None
    repo, count = counts.most_common(1)[0]
    return GitHubDetectionResult(
        found=True,
        repo=repo,
        confidence="medium" if count >= _CENSUS_MEDIUM else "low",
        detection_method=f"github_links_found_{count}",
    )


PAGE_STRATEGIES: tuple[
    Callable[[BeautifulSoup, str], GitHubDetectionResult | None], ...
] = (
    detect_from_edit_links,
    detect_from_meta_tags,
    detect_from_links,
)


class GitHubDetector:
    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        timeout: float | None = None,
        user_agent: str | None = None,
    ):
        self._client = client
        self.timeout = timeout or settings.detect_timeout
        self.user_agent = user_agent or settings.user_agent

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._client is not None:
            yield self._client
            return
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            yield client

    async def _fetch(self, url: str) -> str | None:
        """Page HTML, following redirects only to safe addresses."""
        headers = {
            "User-Agent": self.user_agent,
            "Accept": "text/html,application/xhtml+xml",
        }
        target = url
        try:
            async with self._session() as client:
                for _hop in range(MAX_REDIRECTS + 1):
                    resp = await client.get(
                        target,
                        headers=headers,
                        timeout=self.timeout,
                        follow_redirects=False,
                    )
                    if not resp.is_redirect:
                        break
                    location = resolve_url(resp.headers["location"], target)
                    if location is None or not is_safe_url(location):
                        logger.warning(
                            f"Not following redirect from {target} to {location}"
                        )
                        return None
                    target = location
                else:
                    logger.debug(f"Too many redirects fetching {url}")
                    return None
        except httpx.HTTPError as e:
            logger.debug(f"Detection fetch failed for {url}: {e}")
            return None
        if not resp.is_success:
            logger.debug(f"Detection fetch for {target} returned {resp.status_code}")
            return None
        return resp.text

    async def detect(self, url: str) -> GitHubDetectionResult:
        """Detect the GitHub repository for *url*.

        Direct GitHub and ``github.io`` URLs resolve without any request.
        Otherwise the page is fetched once and the page strategies run in
        order.  ``detection_method`` is ``fetch_failed`` when the page could
        not be loaded and ``no_github_found`` when nothing matched.
        """
        direct = detect_from_url(url)
        if direct is not None:
            return direct

        html = await self._fetch(url)
        if html is None:
            return GitHubDetectionResult(
                found=False, confidence="low", detection_method="fetch_failed"
            )

        soup = BeautifulSoup(html, "html.parser")
        for strategy in PAGE_STRATEGIES:
            result = strategy(soup, html)
            if result is not None:
                logger.info(
                    f"Detected {result.repo} for {url} via {result.detection_method} "
                    f"({result.confidence})"
                )
                return result

        return GitHubDetectionResult(
            found=False, confidence="low", detection_method="no_github_found"
        )
