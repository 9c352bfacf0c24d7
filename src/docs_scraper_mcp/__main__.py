"""Docs Scraper MCP Server entry point."""

import argparse
import asyncio
import json
import sys


def _index(argv: list[str]) -> int:
    """Index one URL and print the result.

    Usage:
        docs-scraper-mcp index https://github.com/owner/repo
        docs-scraper-mcp index https://docs.example.com --type scrape --depth 3
    """
    parser = argparse.ArgumentParser(prog="docs-scraper-mcp index")
    parser.add_argument("url")
    parser.add_argument("--type", default="auto", choices=["auto", "github", "scrape"])
    parser.add_argument("--depth", type=int, default=None)
    parser.add_argument("--max-pages", type=int, default=None)
    parser.add_argument("--force", action="store_true", help="ignore cached copy")
    args = parser.parse_args(argv)

    from docs_scraper_mcp.cache import DocsCache
    from docs_scraper_mcp.config import settings
    from docs_scraper_mcp.errors import wrap_error
    from docs_scraper_mcp.indexer import DocsIndexer

    cache = DocsCache(settings.get_db_path())
    try:
        result = asyncio.run(
            DocsIndexer(cache).index(
                args.url,
                mode=args.type,
                depth=args.depth,
                max_pages=args.max_pages,
                force_refresh=args.force,
            )
        )
    except Exception as e:
        print(json.dumps(wrap_error(e, "index").to_dict(), indent=2), file=sys.stderr)
        return 1
    finally:
        cache.close()

    summary = {k: v for k, v in result.items() if k != "tree"}
    print(json.dumps(summary, indent=2))
    return 0


def _list() -> int:
    from docs_scraper_mcp.cache import DocsCache
    from docs_scraper_mcp.config import settings
    from docs_scraper_mcp.navigation import list_cached_docs

    cache = DocsCache(settings.get_db_path())
    try:
        docs = list_cached_docs(cache)["docs"]
    finally:
        cache.close()

    if not docs:
        print("No cached documentation.")
        return 0
    for doc in docs:
        origin = doc.get("repo") or doc.get("base_url")
        state = "expired" if doc["expired"] else "fresh"
        print(f"{doc['id']:<40} {doc['source']:<8} {doc['page_count']:>5} pages  {state:<7} {origin}")
    return 0


def _clear(argv: list[str]) -> int:
    from docs_scraper_mcp.cache import DocsCache
    from docs_scraper_mcp.config import settings
    from docs_scraper_mcp.errors import DocsError
    from docs_scraper_mcp.navigation import clear_cache

    clear_all = "--all" in argv
    ids = [a for a in argv if not a.startswith("--")]
    if not clear_all and not ids:
        print("Usage: docs-scraper-mcp clear <docs_id> | --all", file=sys.stderr)
        return 2

    cache = DocsCache(settings.get_db_path())
    try:
        if clear_all:
            result = clear_cache(cache, all=True)
        else:
            cleared = []
            for docs_id in ids:
                cleared.extend(clear_cache(cache, docs_id)["cleared"])
            result = {"cleared": cleared, "remaining": len(cache.list_entries())}
    except DocsError as e:
        print(json.dumps(e.to_dict(), indent=2), file=sys.stderr)
        return 1
    finally:
        cache.close()

    print(f"Cleared {len(result['cleared'])} entries, {result['remaining']} remaining.")
    return 0


def _cli() -> None:
    """CLI dispatcher: server (default), index, list or clear subcommand."""
    if len(sys.argv) >= 2 and sys.argv[1] == "index":
        sys.exit(_index(sys.argv[2:]))
    elif len(sys.argv) >= 2 and sys.argv[1] == "list":
        sys.exit(_list())
    elif len(sys.argv) >= 2 and sys.argv[1] == "clear":
        sys.exit(_clear(sys.argv[2:]))
    else:
        from docs_scraper_mcp.server import main

        main()


if __name__ == "__main__":
    _cli()
