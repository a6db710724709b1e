"""Project indexing: classify, parse, embed and upsert every file."""

from __future__ import annotations

import asyncio
import logging
import time

from pydantic import BaseModel

from ctxbundle.embeddings.adapter import EmbeddingAdapter, FileToEmbed, ProgressCallback
from ctxbundle.index.models import FileEmbeddingRecord
from ctxbundle.index.vector import VectorIndex
from ctxbundle.parser.classifier import is_secret_file, is_valid_path
from ctxbundle.parser.core import describe_files
from ctxbundle.parser.models import FileCategory

logger = logging.getLogger("ctxbundle.index")


class IndexResult(BaseModel):
    """Outcome of one indexing pass."""

    project_id: str
    version_id: str = ""
    files: int = 0
    embedded: int = 0
    cached: int = 0
    unchanged: int = 0
    binary: int = 0
    secret: int = 0
    skipped: int = 0
    elapsed_ms: float = 0.0


class ProjectIndexer:
    """Keeps a project's records in a ``VectorIndex`` in sync with its files.

    Files whose content hash matches the stored record are left alone;
    changed files go through the adapter, which answers from the embedding
    cache when the same content was embedded before. Environment secrets
    are recorded by path only and never reach the provider. Index reads,
    parsing and writes run in a worker thread.
    """

    def __init__(self, index: VectorIndex, adapter: EmbeddingAdapter) -> None:
        self.index = index
        self.adapter = adapter

    async def index_project(
        self,
        project_id: str,
        files: dict[str, str],
        version_id: str = "",
        on_progress: ProgressCallback | None = None,
    ) -> IndexResult:
        start_time = time.time()
        valid = {p: c for p, c in files.items() if is_valid_path(p)}
        existing = await asyncio.to_thread(self.index.get_records, project_id, version_id)
        records = await asyncio.to_thread(describe_files, project_id, valid, version_id)
        result = IndexResult(
            project_id=project_id,
            version_id=version_id,
            files=len(records),
            skipped=len(files) - len(valid),
        )
        if result.skipped:
            logger.warning(f"Skipped {result.skipped} malformed paths in {project_id}")

        to_embed: list[FileToEmbed] = []
        for path, record in records.items():
            if record.category == FileCategory.BINARY:
                result.binary += 1
                continue
            if is_secret_file(path):
                result.secret += 1
                continue
            old = existing.get(path)
            if old is not None and old.content_hash == record.content_hash and old.embedding is not None:
                record.embedding = old.embedding
                record.token_count = old.token_count
                result.unchanged += 1
                continue
            to_embed.append(FileToEmbed(path=path, content=files[path], language=record.language))

        embedded = await self.adapter.embed_batch(to_embed, project_id=project_id, on_progress=on_progress)
        for item in embedded:
            record = records[item.path]
            record.embedding = item.embedding
            record.token_count = item.token_count
            if item.cached:
                result.cached += 1
            else:
                result.embedded += 1

        changed: list[FileEmbeddingRecord] = [
            r for path, r in records.items()
            if path not in existing
            or existing[path].content_hash != r.content_hash
            or (existing[path].embedding is None and r.embedding is not None)
        ]
        await asyncio.to_thread(self.index.upsert_many, changed)

        result.elapsed_ms = round((time.time() - start_time) * 1000, 1)
        logger.info(
            f"Indexed {project_id}: {result.files} files, {result.embedded} embedded, "
            f"{result.cached} cached, {result.unchanged} unchanged, {result.binary} binary, {result.secret} secret"
        )
        return result
