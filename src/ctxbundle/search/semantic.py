"""Semantic search: embed the prompt, query the vector index."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable

from ctxbundle.embeddings.adapter import EmbeddingAdapter
from ctxbundle.index.indexer import ProjectIndexer
from ctxbundle.index.models import SearchCandidate
from ctxbundle.index.vector import VectorIndex
from ctxbundle.parser.models import FileCategory

logger = logging.getLogger("ctxbundle.search")


class SemanticSearch:
    """Embedding-backed candidate search over one ``VectorIndex``.

    When ``files`` are passed to ``search``, the project is (re)indexed
    first; unchanged files cost nothing and previously seen content is
    answered from the embedding cache.
    """

    def __init__(self, adapter: EmbeddingAdapter, index: VectorIndex) -> None:
        self.adapter = adapter
        self.index = index
        self.indexer = ProjectIndexer(index, adapter)

    async def search(
        self,
        project_id: str,
        prompt: str,
        version_id: str | None = None,
        category_filter: Iterable[FileCategory | str] | None = None,
        threshold: float = 0.3,
        limit: int = 10,
        files: dict[str, str] | None = None,
    ) -> list[SearchCandidate]:
        """Return semantic candidates for the prompt.

        Raises:
            ProviderError: The embedding provider failed.
            IndexUnavailableError: The index could not be read or written.
        """
        if files is not None:
            await self.indexer.index_project(project_id, files, version_id or "")

        query_embedding = await self.adapter.embed_query(prompt)
        categories = list(category_filter) if category_filter is not None else None
        results = await asyncio.to_thread(
            self.index.search,
            query_embedding,
            project_id,
            version_id,
            categories,
            threshold,
            limit,
        )
        logger.debug(f"Semantic search found {len(results)} candidates for {project_id}")
        return results
