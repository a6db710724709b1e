"""Persistent vector index using SQLite.

Embeddings are stored as float32 blobs; similarity is computed in numpy
over the rows of one project, which keeps queries well under the
semantic-search deadline for projects of a few thousand files.
"""

from __future__ import annotations

import json
import sqlite3
import threading
from collections.abc import Iterable, Sequence
from datetime import datetime
from pathlib import Path

import numpy as np

from ctxbundle.exceptions import IndexUnavailableError
from ctxbundle.index.models import FileEmbeddingRecord, SearchCandidate
from ctxbundle.index.vector import VectorIndex, rank_records
from ctxbundle.parser.models import FileCategory


class SQLiteVectorIndex(VectorIndex):
    """Vector index persisted to a SQLite database file."""

    def __init__(self, db_path: str | Path) -> None:
        self.db_path = db_path if db_path == ":memory:" else Path(db_path)
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.RLock()

    def _get_conn(self) -> sqlite3.Connection:
        if self._conn is None:
            try:
                if isinstance(self.db_path, Path):
                    self.db_path.parent.mkdir(parents=True, exist_ok=True)
                self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
                self._conn.row_factory = sqlite3.Row
                self._conn.execute("PRAGMA journal_mode=WAL")
                self._create_tables(self._conn)
            except (sqlite3.Error, OSError) as e:
                self._conn = None
                raise IndexUnavailableError(f"Cannot open vector index at {self.db_path}: {e}") from e
        return self._conn

    @staticmethod
    def _create_tables(conn: sqlite3.Connection) -> None:
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS file_embeddings (
                project_id TEXT NOT NULL,
                version_id TEXT NOT NULL DEFAULT '',
                file_path TEXT NOT NULL,
                content_hash TEXT NOT NULL,
                embedding BLOB,                  -- NULL for binary/asset files
                token_count INTEGER NOT NULL DEFAULT 0,
                language TEXT,
                category TEXT NOT NULL,
                imports TEXT NOT NULL DEFAULT '[]',
                exports TEXT NOT NULL DEFAULT '[]',
                size_bytes INTEGER NOT NULL DEFAULT 0,
                updated_at TEXT NOT NULL,
                PRIMARY KEY (project_id, version_id, file_path)
            );

            CREATE INDEX IF NOT EXISTS idx_fe_project ON file_embeddings(project_id, version_id);
            CREATE INDEX IF NOT EXISTS idx_fe_hash ON file_embeddings(content_hash);
        """)
        conn.commit()

    def upsert(self, record: FileEmbeddingRecord) -> None:
        self.upsert_many([record])

    def upsert_many(self, records: Iterable[FileEmbeddingRecord]) -> int:
        rows = [self._to_row(r) for r in records]
        if not rows:
            return 0
        try:
            with self._lock:
                conn = self._get_conn()
                with conn:
                    conn.executemany(
                        """INSERT OR REPLACE INTO file_embeddings
                           (project_id, version_id, file_path, content_hash, embedding,
                            token_count, language, category, imports, exports,
                            size_bytes, updated_at)
                           VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                        rows,
                    )
        except sqlite3.Error as e:
            raise IndexUnavailableError(f"Vector index write failed: {e}") from e
        return len(rows)

    def get_records(self, project_id: str, version_id: str | None = None) -> dict[str, FileEmbeddingRecord]:
        sql = "SELECT * FROM file_embeddings WHERE project_id = ?"
        params: list = [project_id]
        if version_id is not None:
            sql += " AND version_id = ?"
            params.append(version_id)
        sql += " ORDER BY file_path, version_id"
        try:
            with self._lock:
                rows = self._get_conn().execute(sql, params).fetchall()
        except sqlite3.Error as e:
            raise IndexUnavailableError(f"Vector index read failed: {e}") from e
        return {row["file_path"]: self._from_row(row) for row in rows}

    def search(
        self,
        query_embedding: Sequence[float],
        project_id: str,
        version_id: str | None = None,
        category_filter: Iterable[FileCategory | str] | None = None,
        threshold: float = 0.3,
        limit: int = 10,
    ) -> list[SearchCandidate]:
        sql = "SELECT * FROM file_embeddings WHERE project_id = ? AND embedding IS NOT NULL"
        params: list = [project_id]
        if version_id is not None:
            sql += " AND version_id = ?"
            params.append(version_id)
        if category_filter is not None:
            categories = sorted({FileCategory(c).value for c in category_filter})
            if not categories:
                return []
            sql += f" AND category IN ({', '.join('?' for _ in categories)})"
            params.extend(categories)
        try:
            with self._lock:
                rows = self._get_conn().execute(sql, params).fetchall()
        except sqlite3.Error as e:
            raise IndexUnavailableError(f"Vector index search failed: {e}") from e

        records = [self._from_row(row) for row in rows]
        return rank_records(query_embedding, records, None, threshold, limit)

    def delete(self, project_id: str, version_id: str | None = None) -> int:
        sql = "DELETE FROM file_embeddings WHERE project_id = ?"
        params: list = [project_id]
        if version_id is not None:
            sql += " AND version_id = ?"
            params.append(version_id)
        try:
            with self._lock:
                conn = self._get_conn()
                with conn:
                    cur = conn.execute(sql, params)
                return cur.rowcount
        except sqlite3.Error as e:
            raise IndexUnavailableError(f"Vector index delete failed: {e}") from e

    def stats(self) -> dict[str, int]:
        """Row counts for status output."""
        try:
            with self._lock:
                row = self._get_conn().execute(
                    """SELECT COUNT(*) AS files,
                              COUNT(embedding) AS embedded,
                              COUNT(DISTINCT project_id) AS projects
                       FROM file_embeddings"""
                ).fetchone()
        except sqlite3.Error as e:
            raise IndexUnavailableError(f"Vector index read failed: {e}") from e
        return {"files": row["files"], "embedded": row["embedded"], "projects": row["projects"]}

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    @staticmethod
    def _to_row(r: FileEmbeddingRecord) -> tuple:
        blob = None
        if r.embedding is not None:
            blob = np.asarray(r.embedding, dtype=np.float32).tobytes()
        return (
            r.project_id,
            r.version_id,
            r.file_path,
            r.content_hash,
            blob,
            r.token_count,
            r.language,
            r.category.value,
            json.dumps(r.imports),
            json.dumps(r.exports),
            r.size_bytes,
            r.updated_at.isoformat(),
        )

    @staticmethod
    def _from_row(row: sqlite3.Row) -> FileEmbeddingRecord:
        embedding = None
        if row["embedding"] is not None:
            embedding = np.frombuffer(row["embedding"], dtype=np.float32).tolist()
        return FileEmbeddingRecord(
            project_id=row["project_id"],
            version_id=row["version_id"],
            file_path=row["file_path"],
            content_hash=row["content_hash"],
            embedding=embedding,
            token_count=row["token_count"],
            language=row["language"] or "",
            category=FileCategory(row["category"]),
            imports=json.loads(row["imports"]),
            exports=json.loads(row["exports"]),
            size_bytes=row["size_bytes"],
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )
