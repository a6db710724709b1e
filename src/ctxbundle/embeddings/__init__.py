"""Embedding providers, the two-tier embedding cache and the batching adapter."""

from ctxbundle.embeddings.adapter import EmbeddedFile, EmbeddingAdapter, FileToEmbed, prepare_text
from ctxbundle.embeddings.base import EmbeddingProvider, EmbeddingResponse
from ctxbundle.embeddings.cache import EmbeddingCache, InMemoryEmbeddingStore, MemoryTier
from ctxbundle.embeddings.factory import create_embedding_provider
from ctxbundle.embeddings.store import SQLiteEmbeddingStore

__all__ = [
    "EmbeddedFile",
    "EmbeddingAdapter",
    "EmbeddingCache",
    "EmbeddingProvider",
    "EmbeddingResponse",
    "FileToEmbed",
    "InMemoryEmbeddingStore",
    "MemoryTier",
    "SQLiteEmbeddingStore",
    "create_embedding_provider",
    "prepare_text",
]
