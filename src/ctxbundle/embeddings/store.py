"""Persistent embedding cache tier backed by SQLite.

Rows are keyed by (project_id, file_path, content_hash); lookups go by
content hash alone, so identical content is embedded once no matter
where it lives. Vectors are stored as float32 blobs.
"""

from __future__ import annotations

import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path

import numpy as np

from ctxbundle.exceptions import StoreError


class SQLiteEmbeddingStore:
    """Persistent tier for ``EmbeddingCache``."""

    def __init__(self, db_path: str | Path) -> None:
        self.db_path = db_path if db_path == ":memory:" else Path(db_path)
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.Lock()

    def _get_conn(self) -> sqlite3.Connection:
        if self._conn is None:
            if isinstance(self.db_path, Path):
                self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._create_tables(self._conn)
        return self._conn

    @staticmethod
    def _create_tables(conn: sqlite3.Connection) -> None:
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS embedding_cache (
                project_id TEXT NOT NULL,
                file_path TEXT NOT NULL,
                content_hash TEXT NOT NULL,
                vector BLOB NOT NULL,
                token_count INTEGER NOT NULL DEFAULT 0,
                updated_at TEXT NOT NULL,
                PRIMARY KEY (project_id, file_path, content_hash)
            );

            CREATE INDEX IF NOT EXISTS idx_cache_hash ON embedding_cache(content_hash);
        """)
        conn.commit()

    def load(self, content_hash: str) -> tuple[list[float], int, str] | None:
        try:
            with self._lock:
                row = self._get_conn().execute(
                    """SELECT vector, token_count, project_id FROM embedding_cache
                       WHERE content_hash = ?
                       ORDER BY updated_at DESC LIMIT 1""",
                    (content_hash,),
                ).fetchone()
        except sqlite3.Error as e:
            raise StoreError(f"Embedding cache read failed: {e}") from e
        if row is None:
            return None
        vector = np.frombuffer(row["vector"], dtype=np.float32)
        return vector.tolist(), row["token_count"], row["project_id"]

    def store(
        self,
        content_hash: str,
        embedding: list[float],
        token_count: int,
        project_id: str = "",
        file_path: str = "",
    ) -> None:
        blob = np.asarray(embedding, dtype=np.float32).tobytes()
        now = datetime.now(timezone.utc).isoformat()
        try:
            with self._lock:
                conn = self._get_conn()
                with conn:
                    conn.execute(
                        """INSERT OR REPLACE INTO embedding_cache
                           (project_id, file_path, content_hash, vector, token_count, updated_at)
                           VALUES (?, ?, ?, ?, ?, ?)""",
                        (project_id, file_path, content_hash, blob, token_count, now),
                    )
        except sqlite3.Error as e:
            raise StoreError(f"Embedding cache write failed: {e}") from e

    def delete_project(self, project_id: str) -> int:
        try:
            with self._lock:
                conn = self._get_conn()
                with conn:
                    cur = conn.execute(
                        "DELETE FROM embedding_cache WHERE project_id = ?", (project_id,)
                    )
                return cur.rowcount
        except sqlite3.Error as e:
            raise StoreError(f"Embedding cache delete failed: {e}") from e

    def count(self) -> int:
        try:
            with self._lock:
                row = self._get_conn().execute("SELECT COUNT(*) AS n FROM embedding_cache").fetchone()
        except sqlite3.Error as e:
            raise StoreError(f"Embedding cache read failed: {e}") from e
        return int(row["n"])

    def clear(self) -> int:
        try:
            with self._lock:
                conn = self._get_conn()
                with conn:
                    cur = conn.execute("DELETE FROM embedding_cache")
                return cur.rowcount
        except sqlite3.Error as e:
            raise StoreError(f"Embedding cache clear failed: {e}") from e

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None
