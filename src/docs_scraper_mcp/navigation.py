"""Read-side operations on indexed documentation: tree, content, search, cache."""

from contextlib import closing
from datetime import UTC, datetime
from typing import Any

from docs_scraper_mcp.cache import DocsCache
from docs_scraper_mcp.errors import (
    CacheNotFoundError,
    PathNotFoundError,
    ValidationError,
)
from docs_scraper_mcp.models import CacheEntryMeta, DocTreeNode
from docs_scraper_mcp.search_index import SearchIndex, extract_title
from docs_scraper_mcp.sources.cleaner import extract_headings

DEFAULT_SEARCH_LIMIT = 10
MAX_SEARCH_LIMIT = 50

CONTENT_FORMATS = ("markdown", "raw")


def _require_docs_id(docs_id: str) -> str:
    docs_id = (docs_id or "").strip()
    if not docs_id:
        raise ValidationError("Missing required parameter: docs_id", "docs_id")
    return docs_id


def require_entry(cache: DocsCache, docs_id: str) -> CacheEntryMeta:
    meta = cache.find_by_id(_require_docs_id(docs_id))
    if meta is None:
        raise CacheNotFoundError(docs_id)
    return meta


def find_subtree(tree: list[DocTreeNode], path: str) -> list[DocTreeNode] | None:
    """Children of the folder at *path*, ``[node]`` for a file, ``None`` if absent."""
    target = path.strip("/")
    if not target:
        return tree
    nodes = tree
    while nodes:
        for node in nodes:
            node_path = node.path.strip("/")
            if node_path == target:
                if node.type == "folder":
                    return node.children or []
                return [node]
            if target.startswith(node_path + "/") and node.children:
                nodes = node.children
                break
        else:
            return None
    return None


def limit_depth(nodes: list[DocTreeNode], max_depth: int) -> list[DocTreeNode]:
    """Copy of *nodes* cut off after *max_depth* levels.

    Folders on the last level keep their entry but lose ``children``.
    """
    limited = []
    for node in nodes:
        if node.type == "folder":
            children = None
            if max_depth > 1 and node.children is not None:
                children = limit_depth(node.children, max_depth - 1)
            node = node.model_copy(update={"children": children})
        limited.append(node)
    return limited


def get_docs_tree(
    cache: DocsCache,
    docs_id: str,
    path: str | None = None,
    max_depth: int | None = None,
) -> dict[str, Any]:
    meta = require_entry(cache, docs_id)

    tree = meta.tree
    if path and path.strip("/"):
        subtree = find_subtree(meta.tree, path)
        if subtree is None:
            raise PathNotFoundError(docs_id, path)
        tree = subtree

    if max_depth is not None:
        if max_depth < 1:
            raise ValidationError("max_depth must be at least 1", "max_depth")
        tree = limit_depth(tree, max_depth)

    return {
        "docs_id": meta.id,
        "source": meta.source,
        "path": path or "/",
        "tree": [node.to_dict() for node in tree],
    }


def get_docs_content(
    cache: DocsCache,
    docs_id: str,
    paths: list[str],
    format: str = "markdown",
) -> dict[str, Any]:
    """Cached content for each path; unknown paths are listed in ``not_found``.

    ``markdown`` adds the title and heading outline of each file, ``raw``
    returns the content alone.
    """
    if not paths:
        raise ValidationError(
            "Missing required parameter: paths (a non-empty list of file paths)",
            "paths",
        )
    if format not in CONTENT_FORMATS:
        raise ValidationError(
            f"Invalid format '{format}'. Expected one of: {', '.join(CONTENT_FORMATS)}",
            "format",
        )
    meta = require_entry(cache, docs_id)

    contents: dict[str, dict[str, Any]] = {}
    not_found: list[str] = []
    for path in paths:
        content = cache.get_content(meta.source, meta.id, path.lstrip("/"))
        if content is None:
            not_found.append(path)
            continue
        item: dict[str, Any] = {
            "content": content,
            "size_bytes": len(content.encode("utf-8")),
        }
        if format == "markdown":
            item["title"] = extract_title(content)
            item["headings"] = [
                f"{'#' * h.level} {h.text}" for h in extract_headings(content)
            ]
        contents[path] = item

    return {"docs_id": meta.id, "contents": contents, "not_found": not_found}


def search_docs(
    cache: DocsCache,
    docs_id: str,
    query: str,
    limit: int = DEFAULT_SEARCH_LIMIT,
) -> dict[str, Any]:
    """Search one indexed documentation set; *limit* is clamped to 1..50."""
    if not query or not query.strip():
        raise ValidationError("Missing required parameter: query", "query")
    meta = require_entry(cache, docs_id)
    effective_limit = min(max(1, limit), MAX_SEARCH_LIMIT)

    raw_index = cache.get_search_index(meta.source, meta.id)
    with closing(SearchIndex.from_bytes(raw_index)) as index:
        results = index.search(query, effective_limit)
    return {
        "docs_id": meta.id,
        "query": query,
        "results": [
            {"path": r.path, "title": r.title, "snippet": r.snippet, "score": r.score}
            for r in results
        ],
    }


def list_cached_docs(cache: DocsCache) -> dict[str, Any]:
    now = datetime.now(UTC)
    docs = []
    for meta in cache.list_entries():
        item = meta.summary().model_dump(mode="json", exclude_none=True)
        item["expired"] = meta.is_expired(now)
        docs.append(item)
    return {"docs": docs}


def clear_cache(
    cache: DocsCache, docs_id: str | None = None, all: bool = False
) -> dict[str, Any]:
    """Remove one entry (by id) or every entry."""
    if all:
        cleared = cache.clear_all()
    elif docs_id:
        cleared = []
        meta = cache.find_by_id(docs_id)
        if meta is not None and cache.clear_entry(meta.source, meta.id):
            cleared.append(meta.id)
    else:
        raise ValidationError("Provide docs_id or set all=true", "docs_id")

    return {"cleared": cleared, "remaining": len(cache.list_entries())}
