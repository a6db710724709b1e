"""Vector index: one embedding + metadata per (project, version, file).

Similarity is cosine similarity (``1 - cosine_distance``). A record is
returned only if its similarity is strictly above the threshold. Results
are ordered by descending similarity, ties broken by shorter path and then
by path, so identical inputs always rank identically.
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from collections.abc import Iterable, Sequence

import numpy as np

from ctxbundle.index.models import (
    CandidateSource,
    FileEmbeddingRecord,
    SearchCandidate,
    candidate_sort_key,
)
from ctxbundle.parser.models import FileCategory

logger = logging.getLogger("ctxbundle.index")


class VectorIndex(ABC):
    """Storage and similarity search for file embedding records.

    Implementations must allow concurrent readers; writers use last write
    wins per (project_id, version_id, file_path).
    """

    @abstractmethod
    def upsert(self, record: FileEmbeddingRecord) -> None:
        """Insert or replace a record."""
        ...

    def upsert_many(self, records: Iterable[FileEmbeddingRecord]) -> int:
        count = 0
        for record in records:
            self.upsert(record)
            count += 1
        return count

    @abstractmethod
    def get_records(self, project_id: str, version_id: str | None = None) -> dict[str, FileEmbeddingRecord]:
        """All records of a project (optionally one version), keyed by path."""
        ...

    @abstractmethod
    def delete(self, project_id: str, version_id: str | None = None) -> int:
        """Delete a project's (or one version's) records. Returns rows removed."""
        ...

    def search(
        self,
        query_embedding: Sequence[float],
        project_id: str,
        version_id: str | None = None,
        category_filter: Iterable[FileCategory | str] | None = None,
        threshold: float = 0.3,
        limit: int = 10,
    ) -> list[SearchCandidate]:
        """Top-``limit`` records by cosine similarity to the query.

        Raises:
            IndexUnavailableError: The backend could not be read.
        """
        records = self.get_records(project_id, version_id).values()
        return rank_records(query_embedding, records, category_filter, threshold, limit)


def rank_records(
    query_embedding: Sequence[float],
    records: Iterable[FileEmbeddingRecord],
    category_filter: Iterable[FileCategory | str] | None = None,
    threshold: float = 0.3,
    limit: int = 10,
) -> list[SearchCandidate]:
    """Score records against a query vector and return ranked candidates."""
    query = np.asarray(query_embedding, dtype=np.float64)
    query_norm = np.linalg.norm(query)
    if query.size == 0 or query_norm == 0 or limit <= 0:
        return []

    allowed: set[str] | None = None
    if category_filter is not None:
        allowed = {FileCategory(c).value for c in category_filter}

    usable: list[FileEmbeddingRecord] = []
    for record in records:
        if record.embedding is None or record.category == FileCategory.BINARY:
            continue
        if allowed is not None and record.category.value not in allowed:
            continue
        if len(record.embedding) != query.size:
            logger.debug(f"Skipping {record.file_path}: dimension {len(record.embedding)} != {query.size}")
            continue
        usable.append(record)

    if not usable:
        return []

    matrix = np.asarray([r.embedding for r in usable], dtype=np.float64)
    norms = np.linalg.norm(matrix, axis=1)
    norms[norms == 0] = np.inf
    similarities = (matrix @ query) / (norms * query_norm)

    best: dict[str, SearchCandidate] = {}
    for record, sim in zip(usable, similarities):
        sim = float(min(1.0, sim))
        if sim <= threshold:
            continue
        existing = best.get(record.file_path)
        if existing is None or sim > existing.similarity:
            best[record.file_path] = SearchCandidate(
                file_path=record.file_path,
                similarity=sim,
                sources=[CandidateSource.SEMANTIC],
                category=record.category,
            )

    return sorted(best.values(), key=candidate_sort_key)[:limit]


class InMemoryVectorIndex(VectorIndex):
    """Process-local index, shared across requests."""

    def __init__(self) -> None:
        self._records: dict[tuple[str, str, str], FileEmbeddingRecord] = {}
        self._lock = threading.RLock()

    def upsert(self, record: FileEmbeddingRecord) -> None:
        with self._lock:
            self._records[record.key] = record

    def get_records(self, project_id: str, version_id: str | None = None) -> dict[str, FileEmbeddingRecord]:
        with self._lock:
            rows = [
                r
                for (pid, vid, _), r in self._records.items()
                if pid == project_id and (version_id is None or vid == version_id)
            ]
        rows.sort(key=lambda r: (r.file_path, r.version_id))
        return {r.file_path: r for r in rows}

    def delete(self, project_id: str, version_id: str | None = None) -> int:
        with self._lock:
            doomed = [
                k
                for k in self._records
                if k[0] == project_id and (version_id is None or k[1] == version_id)
            ]
            for k in doomed:
                del self._records[k]
        return len(doomed)

    def __len__(self) -> int:
        return len(self._records)
