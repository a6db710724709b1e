"""Embedding provider adapter: batching, rate limiting and caching.

Batches are issued sequentially with a fixed delay between them to bound
the outbound request rate. A rate-limited batch is retried once after a
backoff; a second failure propagates. Each batch call has its own timeout,
nested inside whatever deadline the caller applies.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence

from pydantic import BaseModel

from ctxbundle.config import EmbeddingConfig
from ctxbundle.embeddings.base import EmbeddingProvider, EmbeddingResponse
from ctxbundle.embeddings.cache import EmbeddingCache
from ctxbundle.exceptions import ProviderUnavailableError, RateLimitedError
from ctxbundle.parser.classifier import classify_file, content_hash, is_secret_file

logger = logging.getLogger("ctxbundle.embeddings")

TRUNCATION_MARKER = "\n\n[... truncated ...]"


class FileToEmbed(BaseModel):
    """Input to ``EmbeddingAdapter.embed_batch``."""

    path: str
    content: str
    language: str = ""


class EmbeddedFile(BaseModel):
    """Output of ``EmbeddingAdapter.embed_batch``."""

    path: str
    embedding: list[float]
    token_count: int
    content_hash: str
    cached: bool = False


ProgressCallback = Callable[[int, int, str], None]


def prepare_text(path: str, content: str, language: str = "", max_chars: int = 8000) -> str:
    """One-line path/language header plus content cut to the provider's input limit."""
    header = f"File: {path}{f' ({language})' if language else ''}\n\n"
    if len(content) > max_chars:
        content = content[:max_chars] + TRUNCATION_MARKER
    return header + content


class EmbeddingAdapter:
    """Wraps an ``EmbeddingProvider`` with batching, retries and a cache."""

    def __init__(
        self,
        provider: EmbeddingProvider,
        cache: EmbeddingCache,
        config: EmbeddingConfig | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.provider = provider
        self.cache = cache
        self.config = config or EmbeddingConfig()
        self._sleep = sleep
        self.provider_calls = 0

    async def embed_batch(
        self,
        files: Sequence[FileToEmbed | dict],
        project_id: str = "",
        on_progress: ProgressCallback | None = None,
    ) -> list[EmbeddedFile]:
        """Embed files, skipping binaries and anything already cached.

        Returns one result per embeddable input, in input order.

        Raises:
            ProviderUnavailableError: Provider unreachable or batch timed out.
            RateLimitedError: Still rate limited after one retry.
            InvalidInputError: Provider rejected the input.
        """
        items = [f if isinstance(f, FileToEmbed) else FileToEmbed(**f) for f in files]

        embeddable: list[tuple[FileToEmbed, str, str]] = []
        skipped = 0
        for item in items:
            classification = classify_file(item.path, item.content)
            if classification.is_binary or is_secret_file(item.path):
                skipped += 1
                continue
            language = item.language or classification.language
            embeddable.append((item, content_hash(item.content), language))
        if skipped:
            logger.info(f"Skipped {skipped} binary, asset or secret files")

        results: dict[str, EmbeddedFile] = {}
        pending: dict[str, tuple[FileToEmbed, str]] = {}
        for item, digest, language in embeddable:
            if digest in pending:
                continue
            hit = self.cache.get(digest)
            if hit is not None:
                results[digest] = EmbeddedFile(
                    path=item.path,
                    embedding=hit.embedding,
                    token_count=hit.token_count,
                    content_hash=digest,
                    cached=True,
                )
            else:
                pending[digest] = (item, language)

        total = len(embeddable)
        done = len(results)
        pending_items = list(pending.items())
        batch_size = max(1, self.config.batch_size)
        batch_count = (len(pending_items) + batch_size - 1) // batch_size
        if pending_items:
            logger.info(f"Embedding {len(pending_items)} files in {batch_count} batches")

        for b, start in enumerate(range(0, len(pending_items), batch_size)):
            if b > 0 and self.config.batch_delay_s > 0:
                await self._sleep(self.config.batch_delay_s)

            batch = pending_items[start:start + batch_size]
            texts = [
                prepare_text(item.path, item.content, language, self.config.max_chars)
                for _, (item, language) in batch
            ]
            response = await self._embed_with_retry(texts)

            for (digest, (item, _)), vector, tokens in zip(
                batch, response.vectors, response.token_counts
            ):
                self.cache.put(digest, vector, tokens, project_id=project_id, file_path=item.path)
                results[digest] = EmbeddedFile(
                    path=item.path,
                    embedding=vector,
                    token_count=tokens,
                    content_hash=digest,
                )
                done += 1
                if on_progress:
                    on_progress(done, total, item.path)

        out = []
        for item, digest, _ in embeddable:
            hit = results[digest]
            out.append(hit if hit.path == item.path else hit.model_copy(update={"path": item.path}))
        return out

    async def embed_query(self, text: str) -> list[float]:
        """Embed a free-text query. Queries are not cached."""
        response = await self._embed_with_retry([text])
        return response.vectors[0]

    async def _embed_with_retry(self, texts: list[str]) -> EmbeddingResponse:
        try:
            return await self._call(texts)
        except RateLimitedError:
            logger.warning(
                f"Rate limited, retrying batch of {len(texts)} in {self.config.retry_backoff_s}s"
            )
            await self._sleep(self.config.retry_backoff_s)
            return await self._call(texts)

    async def _call(self, texts: list[str]) -> EmbeddingResponse:
        self.provider_calls += 1
        try:
            response = await asyncio.wait_for(
                self.provider.embed_texts(texts),
                timeout=self.config.batch_timeout_s,
            )
        except asyncio.TimeoutError as e:
            raise ProviderUnavailableError(
                f"Embedding batch timed out after {self.config.batch_timeout_s}s"
            ) from e

        if len(response.vectors) != len(texts):
            raise ProviderUnavailableError(
                f"Provider returned {len(response.vectors)} vectors for {len(texts)} inputs"
            )
        if len(response.token_counts) != len(texts):
            response.token_counts = [0] * len(texts)
        return response
