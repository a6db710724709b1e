"""Vector index over embedded project files."""

from ctxbundle.index.models import CandidateSource, FileEmbeddingRecord, SearchCandidate
from ctxbundle.index.store import SQLiteVectorIndex
from ctxbundle.index.vector import InMemoryVectorIndex, VectorIndex, rank_records

__all__ = [
    "CandidateSource",
    "FileEmbeddingRecord",
    "InMemoryVectorIndex",
    "SQLiteVectorIndex",
    "SearchCandidate",
    "VectorIndex",
    "rank_records",
]
