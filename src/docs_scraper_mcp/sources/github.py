"""GitHub repository tree and content fetching.

The whole repository tree is listed with a single recursive
``git/trees`` call instead of one Contents API call per directory, which
keeps large repositories within the unauthenticated 60 req/hr quota.
File bodies come from ``raw.githubusercontent.com``, which does not count
against the API quota.
"""

import asyncio
import posixpath
from dataclasses import dataclass
from urllib.parse import quote, urlparse

import httpx
from loguru import logger

from docs_scraper_mcp.config import settings
from docs_scraper_mcp.errors import (
    GitHubAccessDeniedError,
    GitHubNotFoundError,
    GitHubRateLimitError,
    NetworkError,
    ValidationError,
)
from docs_scraper_mcp.models import DocTreeNode, FetchTreeResult, FileContent, sort_nodes
from docs_scraper_mcp.rate_limit import RateLimitTracker

GITHUB_API_BASE = "https://api.github.com"
GITHUB_RAW_BASE = "https://raw.githubusercontent.com"

DEFAULT_EXTENSIONS = (".md", ".mdx", ".markdown")
DEFAULT_MAX_DEPTH = 10

_BRANCH_CANDIDATES = ("main", "master")

# First path segments on github.com that are not owners
_RESERVED_OWNERS = frozenset(
    {
        "about",
        "collections",
        "enterprise",
        "explore",
        "features",
        "login",
        "marketplace",
        "notifications",
        "orgs",
        "pricing",
        "settings",
        "sponsors",
        "topics",
        "trending",
    }
)


@dataclass
class GitHubUrl:
    owner: str
    repo: str
    branch: str | None = None
    path: str | None = None

    @property
    def repo_id(self) -> str:
        return f"{self.owner}/{self.repo}"


def parse_repo_string(repo_id: str) -> tuple[str, str]:
    """Split ``owner/name`` into its parts."""
    parts = repo_id.strip().split("/")
    if len(parts) != 2 or not all(parts):
        raise ValidationError(
            f"Invalid repo format: '{repo_id}'. Expected 'owner/repo'.", "repo"
        )
    return parts[0], parts[1]


def parse_github_url(url: str) -> GitHubUrl | None:
    """Parse a github.com repository URL.

    Supports ``https://github.com/owner/repo``, ``.../tree/<branch>/<path>``,
    ``.../blob/<branch>/<path>`` and scheme-less ``github.com/owner/repo``.
    Returns ``None`` for anything that is not a repository URL.
    """
    candidate = url.strip()
    if not candidate:
        return None
    if "://" not in candidate:
        candidate = f"https://{candidate}"
    try:
        parsed = urlparse(candidate)
    except ValueError:
        return None

    if parsed.scheme not in ("http", "https"):
        return None
    if (parsed.hostname or "").lower() not in ("github.com", "www.github.com"):
        return None

    parts = [p for p in parsed.path.split("/") if p]
    if len(parts) < 2 or parts[0].lower() in _RESERVED_OWNERS:
        return None

    owner = parts[0]
    repo = parts[1].removesuffix(".git")
    if not repo:
        return None

    branch = None
    path = None
    if len(parts) > 3 and parts[2] in ("tree", "blob"):
        branch = parts[3]
        if len(parts) > 4:
            path = "/".join(parts[4:])

    return GitHubUrl(owner=owner, repo=repo, branch=branch, path=path)


def _matches_extension(name: str, extensions: tuple[str, ...]) -> bool:
    if not extensions:
        return True
    lower = name.lower()
    return any(lower.endswith(ext.lower()) for ext in extensions)


def build_tree(
    entries: list[dict],
    prefix: str = "",
    extensions: tuple[str, ...] = DEFAULT_EXTENSIONS,
    max_depth: int = DEFAULT_MAX_DEPTH,
) -> tuple[list[DocTreeNode], int, int]:
    """Build a sorted hierarchy from a flat ``git/trees`` listing.

    Two passes over an arena keyed by path: first every surviving file plus
    each of its ancestor folders (up to *prefix*), then every node is linked
    to its parent by path lookup.  Folders only exist when at least one file
    below them survived the extension and depth filters.

    Returns ``(roots, file_count, total_size_bytes)``.
    """
    prefix = prefix.strip("/")
    arena: dict[str, DocTreeNode] = {}
    file_count = 0
    total_size = 0

    # Pass 1: leaves and their ancestors
    for entry in entries:
        if entry.get("type") != "blob":
            continue
        path = entry.get("path", "")
        if prefix:
            if not path.startswith(prefix + "/"):
                continue
            relative = path[len(prefix) + 1 :]
        else:
            relative = path

        name = posixpath.basename(path)
        if not _matches_extension(name, extensions):
            continue
        if relative.count("/") > max_depth:
            continue

        size = int(entry.get("size") or 0)
        arena[path] = DocTreeNode(name=name, path=path, type="file", size_bytes=size)
        file_count += 1
        total_size += size

        parent = posixpath.dirname(path)
        while parent and parent != prefix and parent not in arena:
            arena[parent] = DocTreeNode(
                name=posixpath.basename(parent), path=parent, type="folder", children=[]
            )
            parent = posixpath.dirname(parent)

    # Pass 2: link by parent path
    roots: list[DocTreeNode] = []
    for path, node in arena.items():
        parent = arena.get(posixpath.dirname(path))
        if parent is not None:
            parent.children.append(node)
        else:
            roots.append(node)

    return sort_nodes(roots), file_count, total_size


class GitHubFetcher:
    """Fetches repository trees and raw files from GitHub.

    The rate-limit tracker is injected so that different credentials (or
    tests) never share quota state.
    """

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        rate_limit: RateLimitTracker | None = None,
        token: str | None = None,
        timeout: float | None = None,
        max_concurrency: int | None = None,
    ):
        self._client = client
        self.rate_limit = rate_limit or RateLimitTracker()
        self._token = token if token is not None else settings.resolve_github_token()
        self._timeout = timeout or settings.github_timeout
        self._max_concurrency = max_concurrency or settings.github_max_concurrency

    def _api_headers(self) -> dict[str, str]:
        headers = {
            "Accept": "application/vnd.github+json",
            "User-Agent": settings.user_agent,
        }
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return headers

    async def _get(self, url: str, headers: dict[str, str]) -> httpx.Response:
        try:
            if self._client is not None:
                return await self._client.get(url, headers=headers, timeout=self._timeout)
            async with httpx.AsyncClient(
                timeout=self._timeout, follow_redirects=True
            ) as client:
                return await client.get(url, headers=headers)
        except httpx.HTTPError as e:
            raise NetworkError(url, e) from e

    async def _api_get(self, repo_id: str, url: str) -> httpx.Response:
        """GET against the REST API, updating the tracker and mapping auth errors."""
        resp = await self._get(url, self._api_headers())
        self.rate_limit.update_from_headers(resp.headers)

        if resp.status_code in (401, 403, 429):
            if self.rate_limit.is_exhausted() or resp.status_code == 429:
                raise GitHubRateLimitError(self.rate_limit.reset_at)
            raise GitHubAccessDeniedError(repo_id)
        return resp

    def _check_quota(self) -> None:
        if self.rate_limit.is_exhausted():
            raise GitHubRateLimitError(self.rate_limit.reset_at)
        if self.rate_limit.is_low():
            logger.warning(f"GitHub {self.rate_limit.status_message()}")

    async def detect_default_branch(self, owner: str, repo: str) -> str:
        """Return ``main`` or ``master``, whichever exists first."""
        repo_id = f"{owner}/{repo}"
        for branch in _BRANCH_CANDIDATES:
            self._check_quota()
            resp = await self._api_get(
                repo_id,
                f"{GITHUB_API_BASE}/repos/{owner}/{repo}/branches/{branch}",
            )
            if resp.status_code == 200:
                logger.debug(f"Detected branch '{branch}' for {repo_id}")
                return branch
        raise GitHubNotFoundError(repo_id, "neither 'main' nor 'master' branch exists")

    async def resolve_tree(
        self,
        repo_id: str,
        path: str | None = None,
        branch: str | None = None,
        extensions: tuple[str, ...] | list[str] = DEFAULT_EXTENSIONS,
        max_depth: int = DEFAULT_MAX_DEPTH,
    ) -> FetchTreeResult:
        """Fetch the filtered documentation tree of a repository.

        Args:
            repo_id: Repository as ``owner/name``
            path: Optional sub-directory to restrict the tree to
            branch: Explicit branch (skips main/master detection)
            extensions: File extensions to keep (case-insensitive)
            max_depth: Maximum directory depth below *path*

        Returns:
            FetchTreeResult; ``truncated`` is set when GitHub cut the listing
        """
        owner, repo = parse_repo_string(repo_id)
        repo_id = f"{owner}/{repo}"
        branch = branch or await self.detect_default_branch(owner, repo)

        self._check_quota()
        url = (
            f"{GITHUB_API_BASE}/repos/{owner}/{repo}/git/trees/"
            f"{quote(branch, safe='')}?recursive=1"
        )
        resp = await self._api_get(repo_id, url)
        if resp.status_code in (404, 409, 422):
            raise GitHubNotFoundError(repo_id, f"branch '{branch}' not found")
        if resp.status_code != 200:
            raise NetworkError(url, f"GitHub API returned {resp.status_code}")

        data = resp.json()
        truncated = bool(data.get("truncated"))
        if truncated:
            logger.warning(
                f"Tree for {repo_id}@{branch} was truncated by GitHub; "
                "some files may be missing"
            )

        tree, file_count, total_size = build_tree(
            data.get("tree", []),
            prefix=path or "",
            extensions=tuple(extensions),
            max_depth=max_depth,
        )
        logger.info(
            f"Resolved tree for {repo_id}@{branch}: {file_count} files, {total_size} bytes"
        )
        return FetchTreeResult(
            repo=repo_id,
            branch=branch,
            tree=tree,
            file_count=file_count,
            total_size_bytes=total_size,
            truncated=truncated,
        )

    async def fetch_file_content(
        self, repo_id: str, branch: str, path: str
    ) -> FileContent | None:
        """Fetch one file from the raw-content host; ``None`` if it is missing."""
        owner, repo = parse_repo_string(repo_id)
        url = f"{GITHUB_RAW_BASE}/{owner}/{repo}/{quote(branch, safe='')}/{quote(path)}"
        resp = await self._get(url, {"User-Agent": settings.user_agent})
        if resp.status_code == 404:
            return None
        if resp.status_code != 200:
            raise NetworkError(url, f"HTTP {resp.status_code}")
        content = resp.text
        return FileContent(
            path=path, content=content, size_bytes=len(content.encode("utf-8"))
        )

    async def fetch_many_files(
        self, repo_id: str, branch: str, paths: list[str]
    ) -> tuple[list[FileContent], list[str]]:
        """Fetch files concurrently; failures land in ``not_found``.

        Returns ``(files, not_found)`` with files in the order of *paths*.
        """
        semaphore = asyncio.Semaphore(self._max_concurrency)

        async def _fetch_one(path: str) -> FileContent | None:
            async with semaphore:
                try:
                    return await self.fetch_file_content(repo_id, branch, path)
                except Exception as e:
                    logger.warning(f"Failed to download {repo_id}/{path}: {e}")
                    return None

        results = await asyncio.gather(*(_fetch_one(p) for p in paths))

        files: list[FileContent] = []
        not_found: list[str] = []
        for path, result in zip(paths, results):
            if result is None:
                not_found.append(path)
            else:
                files.append(result)
        logger.info(
            f"Downloaded {len(files)}/{len(paths)} files from {repo_id}@{branch}"
        )
        return files, not_found

    def rate_limit_status(self) -> str:
        return self.rate_limit.status_message()
