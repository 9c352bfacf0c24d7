"""URL helpers for crawling: normalization, domain checks, link extraction."""

import hashlib
import re
from urllib.parse import (
    parse_qsl,
    quote,
    unquote,
    urlencode,
    urljoin,
    urlparse,
    urlunparse,
)

from bs4 import BeautifulSoup

_TRACKING_PARAMS = frozenset(
    {
        "utm_source",
        "utm_medium",
        "utm_campaign",
        "utm_term",
        "utm_content",
        "ref",
        "source",
        "fbclid",
        "gclid",
        "msclkid",
        "_ga",
    }
)

_SKIP_SCHEMES = ("#", "javascript:", "mailto:", "tel:", "data:")

_NON_CONTENT_RE = [
    re.compile(r"/api/", re.IGNORECASE),
    re.compile(r"/auth/", re.IGNORECASE),
    re.compile(r"/(?:login|logout|signup|register|admin)", re.IGNORECASE),
    re.compile(r"/cdn-cgi/", re.IGNORECASE),
    re.compile(r"\.(?:pdf|zip|tar|gz|exe|dmg|pkg|deb|rpm)$", re.IGNORECASE),
    re.compile(r"\.(?:png|jpe?g|gif|svg|ico|webp)$", re.IGNORECASE),
    re.compile(r"\.(?:css|js|json|xml|rss|atom)$", re.IGNORECASE),
    re.compile(r"\.(?:mp3|mp4|avi|mov|wmv|flv|webm)$", re.IGNORECASE),
]

_MAX_FILENAME = 200

# Characters left unescaped when re-encoding a path
_PATH_SAFE = "/:@!$&'()*+,;=~"


def normalize_url(url: str) -> str:
    """Normalize a URL for deduplication.

    Drops the fragment and tracking parameters, sorts the remaining query
    parameters, strips trailing slashes from non-root paths and re-encodes
    the path canonically, so ``normalize_url`` is idempotent.  Invalid
    input is returned unchanged.
    """
    try:
        parsed = urlparse(url)
    except ValueError:
        return url
    if not parsed.scheme or not parsed.netloc:
        return url

    query = sorted(
        (k, v)
        for k, v in parse_qsl(parsed.query, keep_blank_values=True)
        if k not in _TRACKING_PARAMS
    )

    path = quote(unquote(parsed.path), safe=_PATH_SAFE) or "/"
    # Collapse every trailing slash so a second pass has nothing left to strip
    while len(path) > 1 and path.endswith("/"):
        path = path[:-1]

    return urlunparse(
        (
            parsed.scheme.lower(),
            parsed.netloc.lower(),
            path,
            "",
            urlencode(query),
            "",
        )
    )


def extract_domain(url: str) -> str | None:
    try:
        return urlparse(url).hostname
    except ValueError:
        return None


def _bare_domain(domain: str) -> str:
    return domain[4:] if domain.startswith("www.") else domain


def is_same_domain(url1: str, url2: str) -> bool:
    """True when both URLs share a host, ignoring a ``www.`` prefix."""
    d1 = extract_domain(url1)
    d2 = extract_domain(url2)
    if not d1 or not d2:
        return False
    return _bare_domain(d1) == _bare_domain(d2)


def resolve_url(href: str, base_url: str) -> str | None:
    """Resolve *href* against *base_url*; ``None`` if the result is unusable."""
    try:
        if href.startswith("//"):
            scheme = urlparse(base_url).scheme or "https"
            resolved = f"{scheme}:{href}"
        else:
            resolved = urljoin(base_url, href)
        parsed = urlparse(resolved)
    except ValueError:
        return None
    if not parsed.scheme or not parsed.netloc:
        return None
    return resolved


def should_crawl(url: str, base_url: str) -> tuple[bool, str | None]:
    """Admission policy for discovered links.

    Returns ``(True, None)`` when the URL may be crawled, otherwise
    ``(False, reason)``.
    """
    try:
        parsed = urlparse(url)
    except ValueError:
        return False, "invalid URL"

    if parsed.scheme not in ("http", "https"):
        return False, "non-http protocol"
    if not is_same_domain(url, base_url):
        return False, "external domain"
    for pattern in _NON_CONTENT_RE:
        if pattern.search(parsed.path):
            return False, "non-content path"
    return True, None


def extract_links(html: str, base_url: str) -> list[str]:
    """Extract crawlable links from *html*, resolved against *base_url*.

    Links are normalized, filtered through ``should_crawl`` and deduplicated
    in document order.
    """
    soup = BeautifulSoup(html, "html.parser")
    links: list[str] = []
    seen: set[str] = set()

    for anchor in soup.find_all("a", href=True):
        href = anchor["href"].strip()
        if not href or href.lower().startswith(_SKIP_SCHEMES):
            continue
        resolved = resolve_url(href, base_url)
        if not resolved:
            continue
        normalized = normalize_url(resolved)
        ok, _reason = should_crawl(normalized, base_url)
        if ok and normalized not in seen:
            seen.add(normalized)
            links.append(normalized)

    return links


def url_to_filename(url: str) -> str:
    """Convert a URL into a flat, filesystem-safe ``.md`` filename.

    A short hash of the query string is appended when present so pages that
    differ only by query do not collide.
    """
    try:
        parsed = urlparse(url)
    except ValueError:
        return "page.md"

    name = parsed.path
    if parsed.query:
        digest = hashlib.sha1(parsed.query.encode()).hexdigest()[:8]
        name = f"{name}_{digest}"

    name = name.lstrip("/").replace("/", "_")
    name = re.sub(r"[^a-zA-Z0-9_.-]", "_", name)
    name = re.sub(r"_+", "_", name)[:_MAX_FILENAME]

    if not name.endswith(".md"):
        name = (name.strip("_") or "index") + ".md"
    return name


def scraped_docs_id(url: str) -> str:
    """Cache id for a crawled site: hostname without ``www.``, ``.`` -> ``_``."""
    host = extract_domain(url) or ""
    host = _bare_domain(host).replace(".", "_")
    return re.sub(r"[^A-Za-z0-9_-]", "_", host)
