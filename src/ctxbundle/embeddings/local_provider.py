"""Local hashing embedder.

Feature-hashed bag-of-words vectors (camelCase/snake_case aware),
L2-normalized. No network, fully deterministic: used for offline indexing
and in tests. Quality is far below a real embedding model.
"""

from __future__ import annotations

import hashlib
import re

import numpy as np

from ctxbundle.embeddings.base import EmbeddingProvider, EmbeddingResponse


class HashingEmbeddingProvider(EmbeddingProvider):
    """Deterministic bag-of-words embeddings via the hashing trick."""

    name = "local"

    def __init__(
        self,
        model: str = "hashing",
        api_key: str | None = None,
        base_url: str | None = None,
        dimensions: int | None = 256,
    ) -> None:
        super().__init__(model, api_key, base_url, dimensions or 256)

    async def embed_texts(self, texts: list[str]) -> EmbeddingResponse:
        vectors = []
        counts = []
        for text in texts:
            tokens = _tokenize(text)
            vectors.append(self._vectorize(tokens).tolist())
            counts.append(len(tokens))
        return EmbeddingResponse(vectors=vectors, token_counts=counts, model=self.model)

    def _vectorize(self, tokens: list[str]) -> np.ndarray:
        vec = np.zeros(self.dimensions, dtype=np.float64)
        for token in tokens:
            digest = hashlib.blake2b(token.encode("utf-8"), digest_size=8).digest()
            value = int.from_bytes(digest, "little")
            idx = value % self.dimensions
            sign = 1.0 if (value >> 63) & 1 else -1.0
            vec[idx] += sign
        norm = np.linalg.norm(vec)
        if norm > 0:
            vec /= norm
        return vec


def _tokenize(text: str) -> list[str]:
    """Split on non-alphanumerics and camelCase boundaries."""
    text = re.sub(r"([a-z])([A-Z])", r"\1 \2", text)
    text = text.replace("_", " ").replace(".", " ")
    return re.findall(r"[a-zA-Z]{2,}", text.lower())
