"""Data models for embedded file records and search candidates."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field

from ctxbundle.parser.models import FileCategory


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class FileEmbeddingRecord(BaseModel):
    """One indexed file of one project version.

    Unique on (project_id, version_id, file_path). ``content_hash`` is the
    cache-coherence key: a file is only re-embedded when it changes.
    ``embedding`` is None for binary/asset files and for records built
    without an embedding pass.
    """

    project_id: str
    version_id: str = ""
    file_path: str
    content_hash: str
    embedding: list[float] | None = None
    token_count: int = 0
    language: str = ""
    category: FileCategory = FileCategory.OTHER
    imports: list[str] = Field(default_factory=list)
    exports: list[str] = Field(default_factory=list)
    size_bytes: int = 0
    updated_at: datetime = Field(default_factory=_utcnow)

    @property
    def key(self) -> tuple[str, str, str]:
        return (self.project_id, self.version_id, self.file_path)


class CandidateSource(str, Enum):
    """Which search path produced a candidate."""

    LEXICAL = "lexical"
    SEMANTIC = "semantic"
    CONTENT = "content"


class SearchCandidate(BaseModel):
    """A file proposed as relevant to the prompt."""

    file_path: str
    similarity: float
    sources: list[CandidateSource] = Field(default_factory=list)
    category: FileCategory = FileCategory.OTHER
    reason: str = ""

    @property
    def source_names(self) -> list[str]:
        return [s.value for s in self.sources]


def candidate_sort_key(candidate: SearchCandidate) -> tuple[float, int, str]:
    """Descending similarity, then shorter path, then path."""
    return (-candidate.similarity, len(candidate.file_path), candidate.file_path)
