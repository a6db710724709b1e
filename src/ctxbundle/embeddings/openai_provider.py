"""OpenAI embedding provider."""

from __future__ import annotations

import logging
from typing import Any

from ctxbundle.embeddings.base import EmbeddingProvider, EmbeddingResponse, apportion_tokens
from ctxbundle.exceptions import (
    InvalidInputError,
    ProviderNotAvailableError,
    ProviderUnavailableError,
    RateLimitedError,
)

logger = logging.getLogger("ctxbundle.embeddings")


class OpenAIEmbeddingProvider(EmbeddingProvider):
    """Provider for OpenAI and OpenAI-compatible embedding APIs."""

    name = "openai"

    def __init__(
        self,
        model: str = "text-embedding-3-small",
        api_key: str | None = None,
        base_url: str | None = None,
        dimensions: int | None = None,
    ) -> None:
        super().__init__(model, api_key, base_url, dimensions)
        self._async_client = None

    def _get_client(self):
        if self._async_client is None:
            try:
                from openai import AsyncOpenAI
            except ImportError:
                raise ProviderNotAvailableError("openai", "openai")

            kwargs: dict[str, Any] = {}
            if self.api_key:
                kwargs["api_key"] = self.api_key
            if self.base_url:
                kwargs["base_url"] = self.base_url
            self._async_client = AsyncOpenAI(**kwargs)
        return self._async_client

    async def embed_texts(self, texts: list[str]) -> EmbeddingResponse:
        if not texts:
            return EmbeddingResponse(model=self.model)

        client = self._get_client()
        import openai

        kwargs: dict[str, Any] = {
            "model": self.model,
            "input": texts,
            "encoding_format": "float",
        }
        if self.dimensions and self.model.startswith("text-embedding-3"):
            kwargs["dimensions"] = self.dimensions

        try:
            response = await client.embeddings.create(**kwargs)
        except openai.RateLimitError as e:
            raise RateLimitedError(str(e)) from e
        except openai.BadRequestError as e:
            raise InvalidInputError(str(e)) from e
        except (openai.APIConnectionError, openai.APIStatusError) as e:
            raise ProviderUnavailableError(str(e)) from e

        data = sorted(response.data, key=lambda d: d.index)
        total = response.usage.total_tokens if response.usage else 0
        logger.debug(f"Embedded {len(texts)} texts ({total} tokens) with {self.model}")
        return EmbeddingResponse(
            vectors=[list(d.embedding) for d in data],
            token_counts=apportion_tokens(total, texts),
            model=response.model or self.model,
        )
