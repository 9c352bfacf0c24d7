"""Configuration settings for the docs scraper MCP server."""

import os
from pathlib import Path

from pydantic_settings import BaseSettings

_DEFAULT_USER_AGENT = "docs-scraper-mcp/0.1 (documentation indexer)"


def _default_data_dir() -> Path:
    """Get default data directory (~/.docs-scraper-mcp/)."""
    return Path.home() / ".docs-scraper-mcp"


class Settings(BaseSettings):
    """Docs scraper configuration.

    Environment variables:
    - CACHE_DIR: Data directory (default: ~/.docs-scraper-mcp)
    - DOCS_DB_PATH: Cache database path (default: CACHE_DIR/docs.db)
    - GITHUB_TOKEN / GH_TOKEN: Bearer token, raises the API quota to 5000/hr
    - GITHUB_TTL_HOURS: Lifetime of GitHub entries (default: 168 = 7 days)
    - SCRAPED_TTL_HOURS: Lifetime of crawled entries (default: 24)
    - CRAWL_MAX_DEPTH / CRAWL_MAX_PAGES / CRAWL_REQUEST_DELAY: Crawl budget
    - CRAWL_RESPECT_ROBOTS: Honor robots.txt (default: true)
    - TOOL_TIMEOUT: Hard timeout per tool call in seconds (0 = no timeout)
    - LOG_LEVEL: Log level (default: INFO)
    """

    # Storage
    cache_dir: str = ""  # default: ~/.docs-scraper-mcp
    docs_db_path: str = ""  # default: <cache_dir>/docs.db

    # Cache lifetimes
    github_ttl_hours: float = 7 * 24
    scraped_ttl_hours: float = 24

    # GitHub
    github_token: str | None = None
    github_timeout: float = 10.0
    github_max_concurrency: int = 10

    # Crawler
    crawl_timeout: float = 10.0
    crawl_max_depth: int = 2
    crawl_max_pages: int = 100
    crawl_request_delay: float = 0.5  # seconds
    crawl_respect_robots: bool = True

    # Repository detection
    detect_timeout: float = 10.0

    user_agent: str = _DEFAULT_USER_AGENT

    # Tool execution timeout (seconds, 0 = no timeout)
    tool_timeout: int = 300

    # Logging
    log_level: str = "INFO"

    model_config = {"env_prefix": "", "case_sensitive": False}

    def get_data_dir(self) -> Path:
        """Get data directory.

        Uses CACHE_DIR if set, otherwise ~/.docs-scraper-mcp/.
        """
        if self.cache_dir:
            return Path(self.cache_dir).expanduser()
        return _default_data_dir()

    def get_db_path(self) -> Path:
        """Get resolved cache database path."""
        if self.docs_db_path:
            return Path(self.docs_db_path).expanduser()
        return self.get_data_dir() / "docs.db"

    def resolve_github_token(self) -> str | None:
        """Return GITHUB_TOKEN, falling back to GH_TOKEN (gh CLI convention)."""
        if self.github_token:
            return self.github_token
        return os.environ.get("GH_TOKEN") or None


settings = Settings()
