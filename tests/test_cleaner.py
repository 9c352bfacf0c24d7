"""Tests for HTML to Markdown cleaning (src/docs_scraper_mcp/sources/cleaner.py)."""

from bs4 import BeautifulSoup

from docs_scraper_mcp.models import Heading
from docs_scraper_mcp.sources.cleaner import (
    clean_html,
    extract_headings,
    extract_title,
    normalize_markdown,
    select_main_content,
)

BASE = "https://docs.example.com/guide/intro"


def _soup(html: str) -> BeautifulSoup:
    return BeautifulSoup(html, "html.parser")


# -----------------------------------------------------------------------
# Title
# -----------------------------------------------------------------------


class TestExtractTitle:
    def test_pipe_suffix_removed(self):
        soup = _soup("<title>Getting Started | Acme Docs</title>")
        assert extract_title(soup) == "Getting Started"

    def test_dash_suffix_removed_but_hyphenated_words_kept(self):
        soup = _soup("<title>Built-in Types - Python 3 docs</title>")
        assert extract_title(soup) == "Built-in Types"

    def test_falls_back_to_h1(self):
        soup = _soup("<title> | Acme</title><h1> Introduction </h1>")
        assert extract_title(soup) == "Introduction"

    def test_falls_back_to_og_title(self):
        soup = _soup('<meta property="og:title" content="Reference">')
        assert extract_title(soup) == "Reference"

    def test_none(self):
        assert extract_title(_soup("<p>no title</p>")) is None


# -----------------------------------------------------------------------
# Content selection
# -----------------------------------------------------------------------


class TestMainContent:
    def test_chrome_removed(self):
        html = """
        <html><head><title>Page</title><style>.x{}</style></head><body>
          <header>SITE HEADER</header>
          <nav>NAV LINKS</nav>
          <div class="sidebar">SIDEBAR</div>
          <main>
            <h1>Guide</h1>
            <p>Real documentation text.</p>
            <script>var tracking = 1;</script>
            <div class="breadcrumb">Home / Guide</div>
          </main>
          <footer>FOOTER TEXT</footer>
        </body></html>
        """
        result = clean_html(html, BASE)

        assert "Real documentation text." in result.markdown
        for noise in ("SITE HEADER", "NAV LINKS", "SIDEBAR", "tracking", "Home / Guide", "FOOTER"):
            assert noise not in result.markdown

    def test_selector_priority(self):
        soup = _soup("<article>article text</article><main>main text</main>")
        assert select_main_content(soup).name == "main"

    def test_largest_block_fallback(self):
        soup = _soup(
            "<div id='a'>short</div>"
            "<section id='b'>a much longer block of documentation text</section>"
        )
        assert select_main_content(soup)["id"] == "b"

    def test_whole_body_when_extract_main_disabled(self):
        html = "<body><p>outside</p><main><p>inside</p></main></body>"
        markdown = clean_html(html, extract_main=False).markdown
        assert "outside" in markdown
        assert "inside" in markdown

        markdown = clean_html(html).markdown
        assert "outside" not in markdown


# -----------------------------------------------------------------------
# Markdown rendering
# -----------------------------------------------------------------------


class TestConversion:
    def test_code_block_keeps_language(self):
        html = (
            '<main><pre><code class="language-python">'
            'def hello():\n    return "hi"\n'
            "</code></pre></main>"
        )
        markdown = clean_html(html).markdown
        assert '```python\ndef hello():\n    return "hi"\n```' in markdown

    def test_code_block_without_language(self):
        markdown = clean_html("<main><pre>plain text block</pre></main>").markdown
        assert "```\nplain text block\n```" in markdown

    def test_inline_code_escapes_backticks(self):
        markdown = clean_html("<main><p>Use <code>a`b</code> here</p></main>").markdown
        assert "`a\\`b`" in markdown

    def test_atx_headings_and_dash_bullets(self):
        html = "<main><h2>Install</h2><ul><li>First</li><li>Second</li></ul></main>"
        markdown = clean_html(html).markdown
        assert "## Install" in markdown
        assert "- First" in markdown

    def test_links_made_absolute(self):
        html = (
            "<main><p>"
            '<a href="../api/">API reference</a> '
            '<a href="#usage">jump to usage</a> '
            '<a href="https://other.org/x">external site</a>'
            "</p></main>"
        )
        markdown = clean_html(html, BASE).markdown
        assert "[API reference](https://docs.example.com/api/)" in markdown
        assert "[jump to usage](#usage)" in markdown
        assert "[external site](https://other.org/x)" in markdown

    def test_images_made_absolute(self):
        html = '<main><p><img src="/img/logo.png" alt="Logo"><img alt="no source"></p></main>'
        markdown = clean_html(html, BASE).markdown
        assert "![Logo](https://docs.example.com/img/logo.png" in markdown
        assert "no source" not in markdown

    def test_markdown_normalized(self):
        markdown = clean_html("<main><p>one</p><p></p><p></p><p>two</p></main>").markdown
        assert "\n\n\n" not in markdown
        assert markdown.endswith("two\n")


class TestHeadings:
    def test_headings_match_markdown(self):
        html = """
        <title>Guide | Acme</title>
        <main>
          <h1>Guide</h1>
          <p>Intro text.</p>
          <h2>Install</h2>
          <pre><code class="language-bash"># not a heading
pip install acme</code></pre>
          <h3>From source</h3>
        </main>
        """
        result = clean_html(html, BASE)

        assert result.title == "Guide"
        assert result.headings == [
            Heading(level=1, text="Guide"),
            Heading(level=2, text="Install"),
            Heading(level=3, text="From source"),
        ]
        assert result.headings == extract_headings(result.markdown)

    def test_extract_headings_skips_fences(self):
        markdown = "# Top\n```\n## inside code\n```\n~~~\n# also code\n~~~\n### After\n"
        assert extract_headings(markdown) == [
            Heading(level=1, text="Top"),
            Heading(level=3, text="After"),
        ]

    def test_normalize_markdown(self):
        assert normalize_markdown("a  \n\n\n\nb\t\n\n") == "a\n\nb\n"
