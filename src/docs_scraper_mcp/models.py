"""Data model shared by the fetchers, the indexer and the cache.

Persisted types (``DocTreeNode``, ``CacheEntryMeta``) are pydantic models so
they round-trip through the cache as JSON.  Transient results produced and
consumed within one indexing run are plain dataclasses.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Literal

from pydantic import BaseModel, model_validator

SourceKind = Literal["github", "scraped"]
Confidence = Literal["high", "medium", "low"]


class DocTreeNode(BaseModel):
    """A file or folder in a documentation tree."""

    name: str
    path: str
    type: Literal["file", "folder"]
    size_bytes: int | None = None
    children: list[DocTreeNode] | None = None

    def to_dict(self) -> dict:
        return self.model_dump(mode="json", exclude_none=True)


def sort_nodes(nodes: list[DocTreeNode]) -> list[DocTreeNode]:
    """Sort folders before files, each group alphabetically, recursively."""
    nodes.sort(key=lambda n: (n.type != "folder", n.name.casefold(), n.name))
    for node in nodes:
        if node.children:
            sort_nodes(node.children)
    return nodes


def iter_file_paths(nodes: list[DocTreeNode]) -> list[str]:
    """Collect the paths of every file node, depth first."""
    paths: list[str] = []
    for node in nodes:
        if node.type == "file":
            paths.append(node.path)
        elif node.children:
            paths.extend(iter_file_paths(node.children))
    return paths


class CacheEntryMeta(BaseModel):
    """One indexed documentation set."""

    id: str
    source: SourceKind
    repo: str | None = None
    branch: str | None = None
    base_url: str | None = None
    indexed_at: datetime
    expires_at: datetime
    page_count: int
    total_size_bytes: int
    tree: list[DocTreeNode] = []

    @model_validator(mode="after")
    def _check_origin(self) -> CacheEntryMeta:
        if self.source == "github" and (not self.repo or self.base_url):
            raise ValueError("github entries need repo and no base_url")
        if self.source == "scraped" and (not self.base_url or self.repo):
            raise ValueError("scraped entries need base_url and no repo")
        return self

    def is_expired(self, now: datetime | None = None) -> bool:
        return self.expires_at <= (now or datetime.now(UTC))

    def summary(self) -> CacheEntrySummary:
        return CacheEntrySummary(
            id=self.id,
            source=self.source,
            repo=self.repo,
            base_url=self.base_url,
            indexed_at=self.indexed_at,
            expires_at=self.expires_at,
            page_count=self.page_count,
            total_size_bytes=self.total_size_bytes,
        )


class CacheEntrySummary(BaseModel):
    """Listing view of a cache entry (no tree)."""

    id: str
    source: SourceKind
    repo: str | None = None
    base_url: str | None = None
    indexed_at: datetime
    expires_at: datetime
    page_count: int
    total_size_bytes: int


class GitHubDetectionResult(BaseModel):
    """Outcome of looking for the GitHub repository behind a docs site."""

    found: bool
    repo: str | None = None
    docs_path: str | None = None
    confidence: Confidence = "low"
    detection_method: str | None = None


@dataclass
class IndexableDocument:
    """One file's contribution to the search index."""

    id: str
    title: str
    headings: str
    content: str


@dataclass
class FileContent:
    path: str
    content: str
    size_bytes: int


@dataclass
class FetchTreeResult:
    repo: str
    branch: str
    tree: list[DocTreeNode]
    file_count: int
    total_size_bytes: int
    truncated: bool = False


@dataclass
class ScrapedPage:
    url: str
    normalized_url: str
    filename: str
    html: str
    status: int
    content_type: str
    depth: int
    links: list[str] = field(default_factory=list)


@dataclass
class CrawlIssue:
    url: str
    reason: str


@dataclass
class CrawlStats:
    discovered: int = 0
    crawled: int = 0
    failed: int = 0
    skipped: int = 0
    max_depth_reached: int = 0
    duration_seconds: float = 0.0


@dataclass
class CrawlResult:
    base_url: str
    pages: list[ScrapedPage] = field(default_factory=list)
    failed: list[CrawlIssue] = field(default_factory=list)
    skipped: list[CrawlIssue] = field(default_factory=list)
    stats: CrawlStats = field(default_factory=CrawlStats)


@dataclass
class Heading:
    level: int
    text: str


@dataclass
class CleanedContent:
    markdown: str
    title: str | None = None
    headings: list[Heading] = field(default_factory=list)


@dataclass
class SearchResult:
    path: str
    title: str
    snippet: str
    score: float
