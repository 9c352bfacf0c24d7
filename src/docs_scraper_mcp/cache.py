"""SQLite store for indexed documentation sets.

Each entry is keyed by ``(source, id)`` and holds its metadata (tree and
stats), the serialized search index and the Markdown of every page.  An
indexing run replaces an entry in a single transaction, so a reader never
sees new metadata next to old or missing content.  WAL mode keeps readers
unblocked while a refresh is written.
"""

import sqlite3
from datetime import UTC, datetime, timedelta
from pathlib import Path

from loguru import logger

from docs_scraper_mcp.config import settings
from docs_scraper_mcp.models import CacheEntryMeta, FileContent, SourceKind

SOURCES: tuple[SourceKind, ...] = ("github", "scraped")


class DocsCache:
    """SQLite-backed documentation cache with per-source TTLs."""

    def __init__(
        self,
        db_path: Path,
        github_ttl_hours: float | None = None,
        scraped_ttl_hours: float | None = None,
    ):
        self._db_path = db_path
        self._ttls = {
            "github": timedelta(
                hours=github_ttl_hours
                if github_ttl_hours is not None
                else settings.github_ttl_hours
            ),
            "scraped": timedelta(
                hours=scraped_ttl_hours
                if scraped_ttl_hours is not None
                else settings.scraped_ttl_hours
            ),
        }

        db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(db_path))
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode = WAL")
        self._conn.execute("PRAGMA synchronous = NORMAL")
        self._conn.execute("PRAGMA busy_timeout = 5000")
        self._conn.execute("PRAGMA foreign_keys = ON")

        self._create_tables()
        logger.debug(f"DocsCache initialized at {db_path}")

    def _create_tables(self) -> None:
        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS entries (
                source TEXT NOT NULL,
                id TEXT NOT NULL,
                meta TEXT NOT NULL,
                search_index BLOB NOT NULL,
                indexed_at REAL NOT NULL,
                expires_at REAL NOT NULL,
                PRIMARY KEY (source, id)
            )
        """)
        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS files (
                source TEXT NOT NULL,
                id TEXT NOT NULL,
                path TEXT NOT NULL,
                content TEXT NOT NULL,
                size_bytes INTEGER NOT NULL,
                PRIMARY KEY (source, id, path),
                FOREIGN KEY (source, id) REFERENCES entries(source, id)
                    ON DELETE CASCADE
            )
        """)
        self._conn.commit()

    def expires_at_for(self, source: SourceKind, now: datetime | None = None) -> datetime:
        """Expiry time for an entry of *source* indexed at *now*."""
        return (now or datetime.now(UTC)) + self._ttls[source]

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def store_entry(
        self,
        meta: CacheEntryMeta,
        files: list[FileContent],
        search_index: bytes,
    ) -> None:
        """Replace the entry for ``(meta.source, meta.id)`` atomically."""
        key = (meta.source, meta.id)
        with self._conn:
            self._conn.execute("DELETE FROM files WHERE source = ? AND id = ?", key)
            self._conn.execute(
                """INSERT OR REPLACE INTO entries
                   (source, id, meta, search_index, indexed_at, expires_at)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                (
                    *key,
                    meta.model_dump_json(),
                    search_index,
                    meta.indexed_at.timestamp(),
                    meta.expires_at.timestamp(),
                ),
            )
            self._conn.executemany(
                """INSERT OR REPLACE INTO files (source, id, path, content, size_bytes)
                   VALUES (?, ?, ?, ?, ?)""",
                [(*key, f.path, f.content, f.size_bytes) for f in files],
            )
        logger.debug(f"Stored {meta.source}/{meta.id} with {len(files)} files")

    def clear_entry(self, source: SourceKind, docs_id: str) -> bool:
        with self._conn:
            self._conn.execute(
                "DELETE FROM files WHERE source = ? AND id = ?", (source, docs_id)
            )
            cursor = self._conn.execute(
                "DELETE FROM entries WHERE source = ? AND id = ?", (source, docs_id)
            )
        return cursor.rowcount > 0

    def clear_all(self) -> list[str]:
        """Delete every entry; returns the removed ids."""
        with self._conn:
            ids = [
                row["id"]
                for row in self._conn.execute("SELECT id FROM entries ORDER BY id")
            ]
            self._conn.execute("DELETE FROM files")
            self._conn.execute("DELETE FROM entries")
        return ids

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_meta(self, source: SourceKind, docs_id: str) -> CacheEntryMeta | None:
        row = self._conn.execute(
            "SELECT meta FROM entries WHERE source = ? AND id = ?", (source, docs_id)
        ).fetchone()
        if row is None:
            return None
        return CacheEntryMeta.model_validate_json(row["meta"])

    def has_entry(self, source: SourceKind, docs_id: str) -> bool:
        row = self._conn.execute(
            "SELECT 1 FROM entries WHERE source = ? AND id = ?", (source, docs_id)
        ).fetchone()
        return row is not None

    def find_by_id(self, docs_id: str) -> CacheEntryMeta | None:
        """Look up *docs_id* without knowing its source (GitHub first)."""
        for source in SOURCES:
            meta = self.get_meta(source, docs_id)
            if meta is not None:
                return meta
        return None

    def get_content(self, source: SourceKind, docs_id: str, path: str) -> str | None:
        row = self._conn.execute(
            "SELECT content FROM files WHERE source = ? AND id = ? AND path = ?",
            (source, docs_id, path),
        ).fetchone()
        return row["content"] if row else None

    def get_search_index(self, source: SourceKind, docs_id: str) -> bytes | None:
        row = self._conn.execute(
            "SELECT search_index FROM entries WHERE source = ? AND id = ?",
            (source, docs_id),
        ).fetchone()
        return row["search_index"] if row else None

    def list_entries(self) -> list[CacheEntryMeta]:
        """All entries, most recently indexed first."""
        rows = self._conn.execute(
            "SELECT meta FROM entries ORDER BY indexed_at DESC, id"
        ).fetchall()
        return [CacheEntryMeta.model_validate_json(row["meta"]) for row in rows]

    def stats(self) -> dict:
        """Entry counts per source plus file totals."""
        now = datetime.now(UTC).timestamp()
        rows = self._conn.execute(
            """
            SELECT source,
                   COUNT(*) AS total,
                   SUM(CASE WHEN expires_at > ? THEN 1 ELSE 0 END) AS active
            FROM entries
            GROUP BY source
        """,
            (now,),
        ).fetchall()
        files = self._conn.execute(
            "SELECT COUNT(*) AS n, COALESCE(SUM(size_bytes), 0) AS size FROM files"
        ).fetchone()

        return {
            "sources": {
                row["source"]: {"total": row["total"], "active": row["active"]}
                for row in rows
            },
            "files": files["n"],
            "total_size_bytes": files["size"],
        }

    def close(self) -> None:
        """Close database connection."""
        try:
            self._conn.close()
        except sqlite3.Error as e:
            logger.debug(f"Error closing docs cache: {e}")
