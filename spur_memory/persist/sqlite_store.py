"""
SQLite-backed document store for the memory graph.

Single table `docs` (key TEXT PRIMARY KEY, value TEXT, ts INTEGER), WAL mode.
Keys follow the prefixes documented in base.py so prefix scans hit the
primary-key index.
"""

import sqlite3
import threading
import time
from pathlib import Path
from typing import Iterator, List, Optional, Tuple

from .base import DocumentStore


def _prefix_upper_bound(prefix: str) -> Optional[str]:
    """Smallest string greater than every string starting with prefix."""
    if not prefix:
        return None
    return prefix[:-1] + chr(ord(prefix[-1]) + 1)


class SQLiteDocumentStore(DocumentStore):
    """
    File-backed SQLite document store.

    Thread-safe with WAL mode; a process-local lock serialises access to the
    shared connection.
    """

    def __init__(self, db_path: Path | str):
        """
        Initialize store at given path.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._lock = threading.Lock()
        self._conn = sqlite3.connect(
            str(self.db_path),
            check_same_thread=False,  # Allow multi-threaded access
            timeout=10.0,
        )

        # Enable WAL mode for better concurrency
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA synchronous=NORMAL")

        self._init_tables()

    def _init_tables(self) -> None:
        """Create the document table if it doesn't exist."""
        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS docs (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                ts INTEGER NOT NULL
            )
        """)
        self._conn.execute("CREATE INDEX IF NOT EXISTS idx_docs_ts ON docs(ts)")
        self._conn.commit()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            row = self._conn.execute("SELECT value FROM docs WHERE key = ?", (key,)).fetchone()
        return row[0] if row else None

    def put(self, key: str, value: str) -> None:
        with self._lock:
            self._conn.execute(
                "INSERT OR REPLACE INTO docs (key, value, ts) VALUES (?, ?, ?)",
                (key, value, int(time.time())),
            )
            self._conn.commit()

    def put_many(self, items: List[Tuple[str, str]]) -> None:
        """Write several documents in one transaction."""
        if not items:
            return
        ts = int(time.time())
        with self._lock:
            self._conn.executemany(
                "INSERT OR REPLACE INTO docs (key, value, ts) VALUES (?, ?, ?)",
                [(k, v, ts) for k, v in items],
            )
            self._conn.commit()

    def delete(self, key: str) -> bool:
        with self._lock:
            cursor = self._conn.execute("DELETE FROM docs WHERE key = ?", (key,))
            self._conn.commit()
        return cursor.rowcount > 0

    def scan_prefix(self, prefix: str) -> Iterator[Tuple[str, str]]:
        upper = _prefix_upper_bound(prefix)
        with self._lock:
            if upper is None:
                rows = self._conn.execute("SELECT key, value FROM docs ORDER BY key").fetchall()
            else:
                rows = self._conn.execute(
                    "SELECT key, value FROM docs WHERE key >= ? AND key < ? ORDER BY key",
                    (prefix, upper),
                ).fetchall()
        for key, value in rows:
            yield key, value

    def stats(self) -> dict:
        """
        Get statistics for the document table.

        Returns:
            Dict with count, total_bytes, oldest_ts, newest_ts
        """
        with self._lock:
            row = self._conn.execute("""
                SELECT
                    COUNT(*) as count,
                    SUM(LENGTH(value)) as total_bytes,
                    MIN(ts) as oldest_ts,
                    MAX(ts) as newest_ts
                FROM docs
            """).fetchone()

        return {
            "count": row[0] or 0,
            "total_bytes": row[1] or 0,
            "oldest_ts": row[2] or 0,
            "newest_ts": row[3] or 0,
        }

    def vacuum(self) -> None:
        """
        Reclaim space and optimize database.

        Should be called periodically after large deletions.
        """
        with self._lock:
            self._conn.execute("VACUUM")
            self._conn.commit()

    def close(self) -> None:
        """Close database connection."""
        with self._lock:
            self._conn.close()
