"""Breadth-first documentation site crawler.

Plain ``httpx`` requests, no browser: documentation sites that serve static
HTML are the target.  The crawler honours ``robots.txt`` (disallow rules
and crawl-delay), stays on the seed's domain and paces requests through an
explicit ``RequestPacer`` so consecutive fetches are spaced by a fixed delay.
"""

import asyncio
import re
import time
from collections import deque
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from urllib.parse import urlparse

import httpx
from loguru import logger

from docs_scraper_mcp.config import settings
from docs_scraper_mcp.models import CrawlIssue, CrawlResult, ScrapedPage
from docs_scraper_mcp.security import is_safe_url
from docs_scraper_mcp.urls import (
    extract_links,
    is_same_domain,
    normalize_url,
    resolve_url,
    url_to_filename,
)

MAX_DEPTH = 5
MAX_REDIRECTS = 5
ROBOTS_TIMEOUT = 5.0

_HTML_TYPES = ("text/html", "application/xhtml")

Sleep = Callable[[float], Awaitable[None]]


# ---------------------------------------------------------------------------
# robots.txt
# ---------------------------------------------------------------------------


@dataclass
class RobotsRules:
    disallowed: list[str] = field(default_factory=list)
    crawl_delay: float | None = None


def parse_robots(text: str, user_agent: str) -> RobotsRules:
    """Collect Disallow and Crawl-delay lines for ``*`` or our agent.

    Consecutive ``User-agent`` lines form one group; a group applies when
    any of its agents is ``*`` or a substring of *user_agent*.
    """
    rules = RobotsRules()
    ua = user_agent.lower()
    group_agents: list[str] = []
    in_agent_block = False

    for raw in text.splitlines():
        line = raw.split("#", 1)[0].strip()
        if ":" not in line:
            continue
        key, _, value = line.partition(":")
        key = key.strip().lower()
        value = value.strip()

        if key == "user-agent":
            if not in_agent_block:
                group_agents = []
            group_agents.append(value.lower())
            in_agent_block = True
            continue

        in_agent_block = False
        applies = any(a == "*" or (a and a in ua) for a in group_agents)
        if not applies:
            continue

        if key == "disallow" and value:
            rules.disallowed.append(value)
        elif key == "crawl-delay":
            try:
                rules.crawl_delay = float(value)
            except ValueError:
                logger.debug(f"Ignoring malformed crawl-delay: {value!r}")

    return rules


def _robots_pattern(rule: str) -> re.Pattern[str]:
    anchored = rule.endswith("$")
    body = rule[:-1] if anchored else rule
    regex = ".*".join(re.escape(part) for part in body.split("*"))
    return re.compile(regex + ("$" if anchored else ""))


def is_disallowed(url: str, rules: RobotsRules) -> bool:
    """Check *url* against the disallow rules (prefix, ``*`` and ``$``)."""
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    target = parsed.path or "/"
    if parsed.query:
        target = f"{target}?{parsed.query}"

    for rule in rules.disallowed:
        if "*" in rule or rule.endswith("$"):
            if _robots_pattern(rule).match(target):
                return True
        elif target.startswith(rule):
            return True
    return False


# ---------------------------------------------------------------------------
# Pacing
# ---------------------------------------------------------------------------


class RequestPacer:
    """Spaces successful fetches by at least ``delay`` seconds.

    ``wait()`` is called before each fetch and ``mark()`` after each
    successful one.  Nothing is awaited until the first mark, so the first
    page is fetched immediately, and failed or skipped URLs never consume a
    delay slot.
    """

    def __init__(
        self,
        delay: float,
        sleep: Sleep = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.delay = max(0.0, delay)
        self._sleep = sleep
        self._clock = clock
        self._last: float | None = None

    async def wait(self) -> None:
        if self._last is None or self.delay <= 0:
            return
        remaining = self.delay - (self._clock() - self._last)
        if remaining > 0:
            await self._sleep(remaining)

    def mark(self) -> None:
        self._last = self._clock()


# ---------------------------------------------------------------------------
# Crawler
# ---------------------------------------------------------------------------


class RedirectRejected(Exception):
    """A redirect hop pointed somewhere the crawl may not go."""

    def __init__(self, target: str, reason: str):
        super().__init__(f"{reason}: {target}")
        self.target = target
        self.reason = reason


class WebCrawler:
    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        user_agent: str | None = None,
        timeout: float | None = None,
        sleep: Sleep = asyncio.sleep,
    ):
        self._client = client
        self.user_agent = user_agent or settings.user_agent
        self.timeout = timeout or settings.crawl_timeout
        self._sleep = sleep

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._client is not None:
            yield self._client
            return
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            yield client

    async def fetch_robots(self, client: httpx.AsyncClient, seed_url: str) -> RobotsRules:
        """Fetch robots.txt from the seed's origin; any failure allows everything."""
        parsed = urlparse(seed_url)
        robots_url = f"{parsed.scheme}://{parsed.netloc}/robots.txt"
        try:
            resp = await client.get(
                robots_url,
                headers={"User-Agent": self.user_agent},
                timeout=ROBOTS_TIMEOUT,
            )
        except httpx.HTTPError as e:
            logger.debug(f"robots.txt unavailable at {robots_url}: {e}")
            return RobotsRules()
        if resp.status_code != 200:
            return RobotsRules()
        rules = parse_robots(resp.text, self.user_agent)
        logger.debug(
            f"robots.txt for {parsed.netloc}: {len(rules.disallowed)} disallow rules, "
            f"crawl-delay={rules.crawl_delay}"
        )
        return rules

    async def _fetch_page(
        self,
        client: httpx.AsyncClient,
        url: str,
        base_url: str,
        rules: RobotsRules | None = None,
    ) -> tuple[httpx.Response | None, str, str | None]:
        """Fetch *url*, following redirects one hop at a time.

        Every ``Location`` must stay on *base_url*'s domain, pass
        ``is_safe_url`` and, with *rules*, robots.txt; otherwise
        ``RedirectRejected`` is raised.

        Returns ``(response, final_url, None)`` for HTML and
        ``(None, final_url, reason)`` on failure.  ``(None, final_url, None)``
        means the response was not HTML and is dropped.
        """
        target = url
        for _hop in range(MAX_REDIRECTS + 1):
            try:
                resp = await client.get(
                    target,
                    headers={
                        "User-Agent": self.user_agent,
                        "Accept": "text/html,application/xhtml+xml",
                    },
                    timeout=self.timeout,
                    follow_redirects=False,
                )
            except httpx.HTTPError as e:
                return None, target, str(e) or type(e).__name__

            if not resp.is_redirect:
                break

            location = resolve_url(resp.headers["location"], target)
            if location is None:
                return None, target, f"HTTP {resp.status_code} with invalid Location"
            location = normalize_url(location)
            if not is_same_domain(location, base_url):
                raise RedirectRejected(location, "redirect to external domain")
            if not is_safe_url(location):
                raise RedirectRejected(location, "redirect to unsafe address")
            if rules is not None and is_disallowed(location, rules):
                raise RedirectRejected(location, "redirect disallowed by robots.txt")
            logger.debug(f"Following redirect {target} -> {location}")
            target = location
        else:
            return None, target, f"too many redirects (>{MAX_REDIRECTS})"

        if not 200 <= resp.status_code < 300:
            return None, target, f"HTTP {resp.status_code}"

        content_type = resp.headers.get("content-type", "")
        if not any(t in content_type.lower() for t in _HTML_TYPES):
            logger.debug(f"Dropping non-HTML page {target} ({content_type or 'no type'})")
            return None, target, None
        return resp, target, None

    async def crawl(
        self,
        seed_url: str,
        max_depth: int = 2,
        max_pages: int = 100,
        request_delay: float = 0.5,
        respect_robots: bool = True,
    ) -> CrawlResult:
        """Crawl a documentation site breadth-first from *seed_url*.

        Args:
            seed_url: Starting URL; only pages on its domain are visited
            max_depth: Link depth limit, clamped to 1..5
            max_pages: Stop after this many successfully crawled pages
            request_delay: Seconds between successful fetches
            respect_robots: Honour robots.txt disallow rules and crawl-delay

        Returns:
            CrawlResult with pages, failures, skips and statistics
        """
        started = time.monotonic()
        max_depth = max(1, min(max_depth, MAX_DEPTH))
        base_url = normalize_url(seed_url)
        result = CrawlResult(base_url=base_url)
        stats = result.stats
        stats.discovered = 1

        async with self._session() as client:
            rules = RobotsRules()
            if respect_robots:
                rules = await self.fetch_robots(client, base_url)
                if rules.crawl_delay and rules.crawl_delay > request_delay:
                    logger.info(
                        f"Using robots.txt crawl-delay of {rules.crawl_delay}s "
                        f"for {base_url}"
                    )
                    request_delay = rules.crawl_delay

            pacer = RequestPacer(request_delay, sleep=self._sleep)
            frontier: deque[tuple[str, int]] = deque([(base_url, 0)])
            visited: set[str] = set()

            while frontier and len(result.pages) < max_pages:
                url, depth = frontier.popleft()
                if url in visited:
                    continue
                visited.add(url)

                if respect_robots and is_disallowed(url, rules):
                    result.skipped.append(CrawlIssue(url, "disallowed by robots.txt"))
                    stats.skipped += 1
                    continue
                if not is_same_domain(url, base_url):
                    result.skipped.append(CrawlIssue(url, "external domain"))
                    stats.skipped += 1
                    continue

                await pacer.wait()
                try:
                    resp, final_url, reason = await self._fetch_page(
                        client, url, base_url, rules if respect_robots else None
                    )
                except RedirectRejected as e:
                    logger.info(f"Not following redirect from {url} to {e.target}: {e.reason}")
                    result.skipped.append(CrawlIssue(e.target, e.reason))
                    stats.skipped += 1
                    continue
                if resp is None:
                    if reason is not None:
                        logger.debug(f"Failed to crawl {url}: {reason}")
                        result.failed.append(CrawlIssue(url, reason))
                        stats.failed += 1
                    continue
                pacer.mark()

                if final_url != url:
                    if final_url in visited:
                        continue
                    visited.add(final_url)
                    url = final_url

                html = resp.text
                links = extract_links(html, url) if depth < max_depth else []
                result.pages.append(
                    ScrapedPage(
                        url=url,
                        normalized_url=normalize_url(url),
                        filename=url_to_filename(url),
                        html=html,
                        status=resp.status_code,
                        content_type=resp.headers.get("content-type", ""),
                        depth=depth,
                        links=links,
                    )
                )
                stats.crawled += 1
                stats.max_depth_reached = max(stats.max_depth_reached, depth)
                logger.debug(
                    f"Crawled {stats.crawled}/{max_pages}: {url} (depth {depth})"
                )

                for link in links:
                    if link not in visited:
                        frontier.append((link, depth + 1))
                        stats.discovered += 1

        stats.duration_seconds = time.monotonic() - started
        logger.info(
            f"Crawl of {base_url} finished: {stats.crawled} pages, "
            f"{stats.failed} failed, {stats.skipped} skipped "
            f"in {stats.duration_seconds:.1f}s"
        )
        return result
