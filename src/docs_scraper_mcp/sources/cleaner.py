"""HTML to Markdown conversion for crawled documentation pages.

BeautifulSoup does the DOM work (title, chrome removal, main-content
selection) and markdownify renders what is left as Markdown.
"""

import re
from collections.abc import Callable
from urllib.parse import urljoin

from bs4 import BeautifulSoup, Tag
from markdownify import ATX, MarkdownConverter

from docs_scraper_mcp.models import CleanedContent, Heading

# Removed before main-content selection so they never win the
# largest-block fallback
ELEMENTS_TO_REMOVE = (
    "script",
    "style",
    "noscript",
    "iframe",
    "nav",
    "header",
    "footer",
    "aside",
    "form",
    "button",
    "input",
    "select",
    "textarea",
    ".nav",
    ".navbar",
    ".navigation",
    ".sidebar",
    ".menu",
    ".footer",
    ".header",
    ".ads",
    ".advertisement",
    ".social-share",
    ".comments",
    ".comment",
    ".breadcrumb",
    ".breadcrumbs",
    ".pagination",
    "[role='navigation']",
    "[role='banner']",
    "[role='complementary']",
    "[role='contentinfo']",
)

MAIN_CONTENT_SELECTORS = (
    "main",
    "article",
    "[role='main']",
    ".content",
    ".documentation",
    ".docs",
    ".doc-content",
    ".markdown-body",
    ".post-content",
    ".article-content",
    "#content",
    "#main",
    "#main-content",
    ".main-content",
)

_LANG_RE = re.compile(r"(?:language-|lang-)(\w+)")
# " | Site" or a spaced dash (hyphen, en or em); a bare hyphen inside a word is kept
_TITLE_SUFFIX_RE = re.compile(r"(?:\s*\|\s*|\s+[-–—]\s+).*$")
_HEADING_RE = re.compile(r"^(#{1,6})\s+(.+)$")
_FENCE_RE = re.compile(r"^\s*(```|~~~)")


class DocsMarkdownConverter(MarkdownConverter):
    """markdownify converter tuned for documentation pages.

    Code blocks keep their language hint, inline code escapes backticks and
    relative link/image targets are made absolute against ``base_url``.
    """

    def __init__(self, base_url: str | None = None, **options):
        self.base_url = base_url
        options.setdefault("heading_style", ATX)
        options.setdefault("bullets", "-")
        options.setdefault("escape_underscores", False)
        super().__init__(**options)

    def _absolute(self, target: str) -> str:
        if not self.base_url or target.startswith("#"):
            return target
        try:
            return urljoin(self.base_url, target)
        except ValueError:
            return target

    def convert_pre(self, el, text, *args, **kwargs):
        code = el.find("code")
        source = code if code is not None else el
        match = _LANG_RE.search(" ".join(source.get("class") or []))
        lang = match.group(1) if match else ""
        body = source.get_text().strip("\n")
        return f"\n\n```{lang}\n{body}\n```\n\n"

    def convert_code(self, el, text, *args, **kwargs):
        if el.parent is not None and el.parent.name == "pre":
            return text
        content = el.get_text()
        if not content:
            return ""
        return "`" + content.replace("`", "\\`") + "`"

    def convert_a(self, el, text, *args, **kwargs):
        href = el.get("href")
        if href:
            el["href"] = self._absolute(href.strip())
        return super().convert_a(el, text, *args, **kwargs)

    def convert_img(self, el, text, *args, **kwargs):
        src = el.get("src")
        if not src:
            return ""
        el["src"] = self._absolute(src.strip())
        return super().convert_img(el, text, *args, **kwargs)


def extract_title(soup: BeautifulSoup) -> str | None:
    """``<title>`` minus its site suffix, else the first ``<h1>``, else og:title."""
    title_tag = soup.find("title")
    if title_tag is not None:
        raw = title_tag.get_text().strip()
        cleaned = _TITLE_SUFFIX_RE.sub("", raw).strip()
        if cleaned:
            return cleaned

    h1 = soup.find("h1")
    if h1 is not None:
        text = h1.get_text().strip()
        if text:
            return text

    og = soup.find("meta", attrs={"property": "og:title"})
    if og is not None and og.get("content"):
        return og["content"].strip()
    return None


def remove_chrome(soup: BeautifulSoup) -> None:
    for selector in ELEMENTS_TO_REMOVE:
        for el in soup.select(selector):
            el.extract()


def _by_selectors(soup: BeautifulSoup) -> Tag | None:
    for selector in MAIN_CONTENT_SELECTORS:
        found = soup.select_one(selector)
        if found is not None:
            return found
    return None


def _largest_block(soup: BeautifulSoup) -> Tag | None:
    best = None
    best_len = 0
    for el in soup.find_all(["div", "section"]):
        length = len(el.get_text().strip())
        if length > best_len:
            best, best_len = el, length
    return best


# Tried in order; first non-None wins
_MAIN_CONTENT_STRATEGIES: tuple[Callable[[BeautifulSoup], Tag | None], ...] = (
    _by_selectors,
    _largest_block,
)


def select_main_content(soup: BeautifulSoup) -> Tag | None:
    for strategy in _MAIN_CONTENT_STRATEGIES:
        found = strategy(soup)
        if found is not None:
            return found
    return None


def normalize_markdown(markdown: str) -> str:
    """Collapse blank-line runs, strip trailing spaces, end with one newline."""
    text = re.sub(r"[ \t]+$", "", markdown, flags=re.MULTILINE)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip() + "\n"


def extract_headings(markdown: str) -> list[Heading]:
    """ATX headings of *markdown* in document order, skipping fenced code."""
    headings: list[Heading] = []
    in_fence = False
    for line in markdown.split("\n"):
        if _FENCE_RE.match(line):
            in_fence = not in_fence
            continue
        if in_fence:
            continue
        match = _HEADING_RE.match(line)
        if match:
            headings.append(Heading(level=len(match.group(1)), text=match.group(2).strip()))
    return headings


def clean_html(
    html: str, base_url: str | None = None, extract_main: bool = True
) -> CleanedContent:
    """Convert a documentation page to clean Markdown.

    Args:
        html: Raw page HTML
        base_url: URL the page was served from; relative links resolve against it
        extract_main: Convert only the main content area instead of the whole body

    Returns:
        CleanedContent with Markdown, title and the headings of that Markdown
    """
    soup = BeautifulSoup(html, "html.parser")
    title = extract_title(soup)
    remove_chrome(soup)

    node: Tag | None = select_main_content(soup) if extract_main else None
    if node is None:
        node = soup.body or soup

    converter = DocsMarkdownConverter(base_url=base_url)
    markdown = normalize_markdown(converter.convert(str(node)))

    return CleanedContent(
        markdown=markdown,
        title=title,
        headings=extract_headings(markdown),
    )
