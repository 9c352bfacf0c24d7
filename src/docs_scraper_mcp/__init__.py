"""Docs Scraper MCP Server - index GitHub and website documentation for AI agents."""

from importlib.metadata import version

from docs_scraper_mcp.__main__ import _cli as main
from docs_scraper_mcp.server import mcp

__version__ = version("docs-scraper-mcp")
__all__ = ["mcp", "main", "__version__"]
