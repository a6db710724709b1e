"""Base embedding provider interface."""

from __future__ import annotations

from abc import ABC, abstractmethod

from pydantic import BaseModel, Field


class EmbeddingResponse(BaseModel):
    """Vectors for a batch of texts, in input order."""

    vectors: list[list[float]] = Field(default_factory=list)
    token_counts: list[int] = Field(default_factory=list)
    model: str = ""


class EmbeddingProvider(ABC):
    """Abstract base for embedding providers.

    Implementations translate their SDK's failures into
    ``ProviderUnavailableError``, ``RateLimitedError`` or
    ``InvalidInputError``.
    """

    name = "base"

    def __init__(
        self,
        model: str,
        api_key: str | None = None,
        base_url: str | None = None,
        dimensions: int | None = None,
    ) -> None:
        self.model = model
        self.api_key = api_key
        self.base_url = base_url
        self.dimensions = dimensions

    @abstractmethod
    async def embed_texts(self, texts: list[str]) -> EmbeddingResponse:
        """Embed a batch of texts with a single provider call."""
        ...


def apportion_tokens(total: int, texts: list[str]) -> list[int]:
    """Split a batch-level token total across texts by length."""
    lengths = [len(t) for t in texts]
    total_len = sum(lengths)
    if not texts:
        return []
    if total_len == 0:
        return [0 for _ in texts]
    return [max(1, round(total * n / total_len)) if n else 0 for n in lengths]
