"""Structured errors for docs indexing and retrieval.

Every failure surfaced to a client is a ``DocsError`` carrying a stable
``code``, a human-readable message and, where useful, concrete next steps.
The server serializes them with ``to_dict()`` instead of letting exceptions
escape a tool call.
"""

import math
from datetime import UTC, datetime
from typing import Any


class DocsError(Exception):
    """Base error for all documentation-related failures."""

    def __init__(
        self,
        code: str,
        message: str,
        *,
        user_message: str | None = None,
        suggestions: list[str] | None = None,
        context: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.code = code
        self.message = message
        self.user_message = user_message or message
        self.suggestions = suggestions or []
        self.context = context or {}

    def to_dict(self) -> dict[str, Any]:
        """Structured payload for tool responses."""
        payload: dict[str, Any] = {
            "error": True,
            "code": self.code,
            "message": self.user_message,
        }
        if self.suggestions:
            payload["suggestions"] = self.suggestions
        context = {k: v for k, v in self.context.items() if v is not None}
        if context:
            payload["context"] = context
        return payload


class InvalidUrlError(DocsError):
    def __init__(self, url: str, reason: str | None = None):
        super().__init__(
            "INVALID_URL",
            f"Invalid URL: {url}" + (f" - {reason}" if reason else ""),
            user_message=(
                f"Invalid URL '{url}'"
                + (f": {reason}." if reason else ".")
                + " Expected a full URL such as https://github.com/owner/repo"
                " or https://docs.example.com"
            ),
            suggestions=[
                "Verify the URL is spelled correctly",
                "Ensure the URL includes the protocol (https://)",
                "Check if the website is accessible in a browser",
            ],
            context={"url": url, "reason": reason},
        )


class GitHubRateLimitError(DocsError):
    def __init__(self, reset_at: datetime | None = None):
        reset_in = None
        if reset_at is not None:
            seconds = (reset_at - datetime.now(UTC)).total_seconds()
            reset_in = max(0, math.ceil(seconds / 60))
        if reset_in is not None:
            user_message = (
                f"GitHub API rate limit reached. Try again in {reset_in} minutes "
                "or use scraping instead."
            )
        else:
            user_message = (
                "GitHub API rate limit reached. Try again later or use scraping instead."
            )
        super().__init__(
            "GITHUB_RATE_LIMIT",
            "GitHub API rate limit exceeded",
            user_message=user_message,
            suggestions=[
                "Use type='scrape' to fetch via web crawling instead",
                "Set GITHUB_TOKEN for higher rate limits (5000/hour)",
                "Wait for the rate limit to reset",
            ],
            context={
                "reset_at": reset_at.isoformat() if reset_at else None,
                "reset_in_minutes": reset_in,
            },
        )
        self.reset_at = reset_at


class GitHubNotFoundError(DocsError):
    def __init__(self, repo: str, detail: str | None = None):
        super().__init__(
            "GITHUB_NOT_FOUND",
            f"GitHub repository not found: {repo}" + (f" ({detail})" if detail else ""),
            user_message=f"Repository '{repo}' (or its branch) was not found on GitHub.",
            suggestions=[
                "Check if the repository name is spelled correctly",
                "Verify the repository exists and is public",
                "Pass an explicit branch: https://github.com/owner/repo/tree/<branch>",
            ],
            context={"repo": repo, "detail": detail},
        )


class GitHubAccessDeniedError(DocsError):
    def __init__(self, repo: str):
        super().__init__(
            "GITHUB_ACCESS_DENIED",
            f"Access denied to repository: {repo}",
            user_message=(
                f"Cannot access repository '{repo}'. It may be private or restricted."
            ),
            suggestions=[
                "Ensure the repository is public",
                "Set GITHUB_TOKEN with appropriate permissions",
                "Use type='scrape' if the documentation is published on a website",
            ],
            context={"repo": repo},
        )


class CacheNotFoundError(DocsError):
    def __init__(self, docs_id: str):
        super().__init__(
            "CACHE_NOT_FOUND",
            f"Documentation not found in cache: {docs_id}",
            user_message=f"Documentation '{docs_id}' is not indexed.",
            suggestions=[
                "Run index_docs first to fetch and cache the documentation",
                "Use list_cached_docs to see available documentation",
                "Check if the docs_id is spelled correctly",
            ],
            context={"docs_id": docs_id},
        )


class ScrapingBlockedError(DocsError):
    def __init__(self, url: str, reason: str | None = None):
        super().__init__(
            "SCRAPING_BLOCKED",
            f"Scraping blocked for {url}" + (f": {reason}" if reason else ""),
            user_message="The website blocked automated access.",
            suggestions=[
                "Try the GitHub repository URL if the docs live in one",
                "Use detect_github_repo to find the source repository",
                "The website may require authentication or block bots",
            ],
            context={"url": url, "reason": reason},
        )


class NoContentError(DocsError):
    def __init__(self, url: str, reason: str | None = None):
        super().__init__(
            "NO_CONTENT",
            f"No documentation content found at {url}" + (f": {reason}" if reason else ""),
            user_message="No documentation content found at this URL.",
            suggestions=[
                "Try a different starting URL (e.g. /docs or /documentation)",
                "Increase the crawl depth if content is nested",
                "Check that the URL serves documentation as static HTML",
            ],
            context={"url": url, "reason": reason},
        )


class NetworkError(DocsError):
    def __init__(self, url: str, cause: Exception | str | None = None):
        super().__init__(
            "NETWORK_ERROR",
            f"Network error accessing {url}" + (f": {cause}" if cause else ""),
            user_message="Could not reach the server. Check your network connection.",
            suggestions=[
                "Verify your internet connection",
                "Check if the website is online",
                "Try again in a few moments",
            ],
            context={"url": url},
        )


class ValidationError(DocsError):
    def __init__(self, message: str, field: str | None = None):
        super().__init__(
            "VALIDATION_ERROR",
            message,
            suggestions=[
                "Check the input parameters",
                "Refer to the tool description for required fields",
            ],
            context={"field": field},
        )


class PathNotFoundError(DocsError):
    def __init__(self, docs_id: str, path: str):
        super().__init__(
            "PATH_NOT_FOUND",
            f"Path not found in documentation tree: {path}",
            user_message=f"Path '{path}' does not exist in '{docs_id}'.",
            suggestions=["Call get_docs_tree without a path to see the full tree"],
            context={"docs_id": docs_id, "path": path},
        )


class SearchIndexVersionError(DocsError):
    def __init__(self, expected: int, found: Any):
        super().__init__(
            "INDEX_VERSION_MISMATCH",
            f"Search index version mismatch: expected {expected}, got {found}",
            user_message="The cached search index uses an outdated format.",
            suggestions=["Re-run index_docs with force_refresh=true"],
            context={"expected": expected, "found": found},
        )


class ToolTimeoutError(DocsError):
    def __init__(self, action: str, timeout: float):
        super().__init__(
            "TOOL_TIMEOUT",
            f"'{action}' timed out after {timeout}s",
            suggestions=[
                "Increase TOOL_TIMEOUT",
                "Reduce depth or max_pages for large sites",
            ],
            context={"action": action, "timeout_seconds": timeout},
        )


def wrap_error(error: BaseException, context: str | None = None) -> DocsError:
    """Wrap an unexpected exception into a ``DocsError``."""
    if isinstance(error, DocsError):
        return error
    message = str(error) or type(error).__name__
    return DocsError(
        "UNKNOWN_ERROR",
        f"{context}: {message}" if context else message,
        user_message=f"An unexpected error occurred: {message}",
        suggestions=["Try the operation again", "Check the input parameters"],
    )
