"""Full-text search over one documentation set, backed by SQLite FTS5.

Each documentation set gets its own in-memory database holding one FTS5
table of (path, title, headings, content).  Ranking is FTS5's ``bm25()``
with title and heading matches weighted above body matches.  Queries run in
tiers: exact terms first, then prefixes, then close misspellings taken from
the index vocabulary.  Documents found by an earlier tier rank ahead of the
later ones.

The database is serialized whole into the cache row, so searches and
snippets never touch the cached files.  ``PRAGMA user_version`` carries the
format version.
"""

import re
import sqlite3

from loguru import logger

from docs_scraper_mcp.errors import SearchIndexVersionError
from docs_scraper_mcp.models import IndexableDocument, SearchResult
from docs_scraper_mcp.sources.cleaner import extract_headings

INDEX_VERSION = 2

# bm25() weights per column: path (unindexed), title, headings, content
_BM25_WEIGHTS = "0.0, 3.0, 2.0, 1.0"

# Allowed edits for a misspelled term, relative to its length
_FUZZY_RATIO = 0.2

SNIPPET_LENGTH = 150
SNIPPET_CONTEXT = 50

# Word characters as the unicode61 tokenizer sees them (no underscore)
_TOKEN_RE = re.compile(r"[^\W_]+")


def tokenize(text: str) -> list[str]:
    return _TOKEN_RE.findall(text.lower())


def levenshtein(a: str, b: str, max_distance: int | None = None) -> int:
    """Edit distance between *a* and *b*.

    With *max_distance*, stops early and returns ``max_distance + 1`` once
    the distance is known to exceed it.
    """
    if a == b:
        return 0
    if len(a) < len(b):
        a, b = b, a
    if max_distance is not None and len(a) - len(b) > max_distance:
        return max_distance + 1

    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, 1):
        current = [i]
        for j, cb in enumerate(b, 1):
            current.append(
                min(
                    previous[j] + 1,
                    current[j - 1] + 1,
                    previous[j - 1] + (ca != cb),
                )
            )
        if max_distance is not None and min(current) > max_distance:
            return max_distance + 1
        previous = current
    return previous[-1]


def make_snippet(content: str, query: str) -> str:
    """Excerpt of *content* around the earliest query term.

    The window is ``SNIPPET_LENGTH`` characters starting ``SNIPPET_CONTEXT``
    characters before the match, with whitespace collapsed and ``...`` on
    each side that was cut.
    """
    if not content:
        return ""

    lowered = content.lower()
    best_pos = 0
    best_score = 0.0
    for term in query.lower().split():
        if len(term) < 2:
            continue
        pos = lowered.find(term)
        if pos != -1:
            score = 1 / (pos + 1)
            if score > best_score:
                best_score, best_pos = score, pos

    start = max(0, best_pos - SNIPPET_CONTEXT)
    end = min(len(content), start + SNIPPET_LENGTH)
    snippet = " ".join(content[start:end].split())

    if start > 0:
        snippet = "..." + snippet
    if end < len(content):
        snippet = snippet + "..."
    return snippet


class SearchIndex:
    def __init__(self, conn: sqlite3.Connection | None = None) -> None:
        if conn is None:
            conn = sqlite3.connect(":memory:")
            self._create_tables(conn)
        self._conn = conn

    @staticmethod
    def _create_tables(conn: sqlite3.Connection) -> None:
        conn.execute("""
            CREATE VIRTUAL TABLE docs_fts
            USING fts5(
                path UNINDEXED,
                title,
                headings,
                content,
                tokenize='unicode61'
            )
        """)
        # One row per distinct term, for fuzzy candidates
        conn.execute("""
            CREATE VIRTUAL TABLE docs_vocab
            USING fts5vocab(docs_fts, 'row')
        """)
        conn.execute(f"PRAGMA user_version = {INDEX_VERSION}")
        conn.commit()

    def close(self) -> None:
        self._conn.close()

    def add(self, doc: IndexableDocument) -> None:
        """Index *doc*; a document with the same id is replaced."""
        self.remove(doc.id)
        with self._conn:
            self._conn.execute(
                "INSERT INTO docs_fts(path, title, headings, content) VALUES (?, ?, ?, ?)",
                (doc.id, doc.title, doc.headings, doc.content),
            )

    def remove(self, doc_id: str) -> None:
        with self._conn:
            self._conn.execute("DELETE FROM docs_fts WHERE path = ?", (doc_id,))

    def _fuzzy_terms(self, term: str) -> list[str]:
        """Vocabulary terms within ``round(0.2 * len)`` edits of *term*.

        Terms that *term* is a prefix of are left to the prefix tier.
        """
        max_edits = round(_FUZZY_RATIO * len(term))
        if max_edits == 0:
            return []
        rows = self._conn.execute(
            "SELECT term FROM docs_vocab WHERE length(term) BETWEEN ? AND ?",
            (len(term) - max_edits, len(term) + max_edits),
        )
        return [
            candidate
            for (candidate,) in rows
            if not candidate.startswith(term)
            and levenshtein(term, candidate, max_edits) <= max_edits
        ]

    def _match_tiers(self, terms: list[str]) -> list[str]:
        """FTS5 MATCH expressions: EXACT -> PREFIX -> FUZZY, each an OR of terms."""
        tiers = [
            " OR ".join(f'"{t}"' for t in terms),
            " OR ".join(f'"{t}"*' for t in terms),
        ]
        fuzzy = list(dict.fromkeys(c for t in terms for c in self._fuzzy_terms(t)))
        if fuzzy:
            tiers.append(" OR ".join(f'"{t}"' for t in fuzzy))
        return tiers

    def search(self, query: str, limit: int = 10) -> list[SearchResult]:
        """Ranked results for *query*; any matching term contributes (OR)."""
        terms = list(dict.fromkeys(tokenize(query)))
        if not terms or limit < 1:
            return []

        results: list[SearchResult] = []
        seen: set[str] = set()
        for match in self._match_tiers(terms):
            rows = self._conn.execute(
                f"""
                SELECT path, title, content,
                       bm25(docs_fts, {_BM25_WEIGHTS}) AS bm25_score
                FROM docs_fts
                WHERE docs_fts MATCH ?
                ORDER BY bm25_score, path
                LIMIT ?
                """,
                (match, limit + len(seen)),
            ).fetchall()
            for path, title, content, bm25_score in rows:
                if path in seen:
                    continue
                seen.add(path)
                results.append(
                    SearchResult(
                        path=path,
                        title=title or path,
                        snippet=make_snippet(content, query),
                        score=-bm25_score,
                    )
                )
                if len(results) >= limit:
                    return results
        return results

    def to_bytes(self) -> bytes:
        return self._conn.serialize()

    @classmethod
    def from_bytes(cls, data: bytes | str | None) -> "SearchIndex":
        """Load a serialized index; anything but the current format is rejected."""
        if not isinstance(data, bytes) or not data:
            raise SearchIndexVersionError(INDEX_VERSION, None)

        conn = sqlite3.connect(":memory:")
        try:
            conn.deserialize(data)
            version = conn.execute("PRAGMA user_version").fetchone()[0]
        except sqlite3.DatabaseError as e:
            conn.close()
            logger.debug(f"Unreadable search index: {e}")
            raise SearchIndexVersionError(INDEX_VERSION, None) from e

        if version != INDEX_VERSION:
            conn.close()
            raise SearchIndexVersionError(INDEX_VERSION, version)
        return cls(conn)


def extract_title(content: str) -> str | None:
    """Text of the first level-1 heading outside fenced code."""
    for heading in extract_headings(content):
        if heading.level == 1:
            return heading.text
    return None


def create_indexable_document(path: str, content: str) -> IndexableDocument:
    headings = extract_headings(content)
    title = next((h.text for h in headings if h.level == 1), None)
    return IndexableDocument(
        id=path,
        title=title or path.rsplit("/", 1)[-1] or path,
        headings=" ".join(h.text for h in headings),
        content=content,
    )
