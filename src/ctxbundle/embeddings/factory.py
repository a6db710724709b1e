"""Factory for creating embedding providers from configuration."""

from __future__ import annotations

from ctxbundle.config import EmbeddingConfig
from ctxbundle.embeddings.base import EmbeddingProvider


def create_embedding_provider(config: EmbeddingConfig) -> EmbeddingProvider:
    """Create an embedding provider from configuration.

    Raises:
        ValueError: If the provider is unknown.
    """
    provider = config.provider.lower()

    if provider == "openai":
        from ctxbundle.embeddings.openai_provider import OpenAIEmbeddingProvider

        return OpenAIEmbeddingProvider(
            model=config.model,
            api_key=config.api_key,
            base_url=config.base_url,
            dimensions=config.dimensions,
        )
    elif provider == "local":
        from ctxbundle.embeddings.local_provider import HashingEmbeddingProvider

        return HashingEmbeddingProvider(dimensions=config.dimensions)
    else:
        raise ValueError(
            f"Unknown embedding provider: '{provider}'. "
            f"Supported providers: openai, local"
        )
