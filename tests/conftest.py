"""Shared test fixtures for ctxbundle."""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from ctxbundle.config import EmbeddingConfig, ProjectConfig
from ctxbundle.context.engine import ContextAssembler
from ctxbundle.embeddings.adapter import EmbeddingAdapter
from ctxbundle.embeddings.base import EmbeddingProvider, EmbeddingResponse
from ctxbundle.embeddings.cache import EmbeddingCache
from ctxbundle.embeddings.local_provider import HashingEmbeddingProvider
from ctxbundle.index.vector import InMemoryVectorIndex
from ctxbundle.search.semantic import SemanticSearch
from ctxbundle.stores import InMemoryConversationStore, InMemoryFileStore

PNG_BYTES = "\x89PNG\r\n\x1a\n\x00\x00\x00\rIHDR" + "\x00" * 64


SAMPLE_FILES: dict[str, str] = {
    "package.json": '{\n  "name": "shop",\n  "dependencies": {"react": "^18.2.0"}\n}\n',
    "tsconfig.json": '{\n  "compilerOptions": {"strict": true, "paths": {"@/*": ["src/*"]}}\n}\n',
    "README.md": "# Shop\n\nA small storefront.\n",
    "src/auth/login.ts": (
        "import { createSession } from './session';\n"
        "import { db } from '@/lib/db';\n"
        "import React from 'react';\n"
        "\n"
        "export async function loginHandler(email: string, password: string) {\n"
        "  const user = await db.users.findByEmail(email);\n"
        "  if (!user || !user.checkPassword(password)) {\n"
        "    throw new Error('Invalid credentials');\n"
        "  }\n"
        "  return createSession(user.id);\n"
        "}\n"
    ),
    "src/auth/session.ts": (
        "export function createSession(userId: string) {\n"
        "  return { userId, token: Math.random().toString(36) };\n"
        "}\n"
    ),
    "src/lib/db.ts": (
        "export const db = {\n"
        "  users: { findByEmail: async (email: string) => null as any },\n"
        "};\n"
    ),
    "src/lib/format.ts": "export const formatPrice = (cents: number) => `$${(cents / 100).toFixed(2)}`;\n",
    "src/components/Cart.tsx": (
        "import { formatPrice } from '../lib/format';\n"
        "import logo from '../../public/logo.png';\n"
        "\n"
        "export default function Cart({ items }) {\n"
        "  const total = items.reduce((sum, i) => sum + i.price, 0);\n"
        "  return <div><img src={logo} />Shopping cart total: {formatPrice(total)}</div>;\n"
        "}\n"
    ),
    "src/api/orders.ts": (
        "import { db } from '@/lib/db';\n"
        "\n"
        "export async function listOrders(userId: string) {\n"
        "  return db.orders.forUser(userId);\n"
        "}\n"
    ),
    "src/types/order.ts": "export interface Order { id: string; total: number }\n",
    "tests/login.test.ts": (
        "import { loginHandler } from '../src/auth/login';\n"
        "test('rejects bad password', async () => {\n"
        "  await expect(loginHandler('a@b.c', 'x')).rejects.toThrow();\n"
        "});\n"
    ),
    "public/logo.png": PNG_BYTES,
}


class CountingProvider(EmbeddingProvider):
    """Deterministic local embeddings that record every provider call."""

    name = "counting"

    def __init__(self, dimensions: int = 64) -> None:
        super().__init__("counting", dimensions=dimensions)
        self._inner = HashingEmbeddingProvider(dimensions=dimensions)
        self.calls: list[list[str]] = []

    @property
    def texts(self) -> list[str]:
        return [t for batch in self.calls for t in batch]

    async def embed_texts(self, texts: list[str]) -> EmbeddingResponse:
        self.calls.append(list(texts))
        return await self._inner.embed_texts(texts)


class FailingProvider(EmbeddingProvider):
    """Raises the given exception on every call."""

    name = "failing"

    def __init__(self, exc: Exception) -> None:
        super().__init__("failing", dimensions=64)
        self.exc = exc
        self.calls = 0

    async def embed_texts(self, texts: list[str]) -> EmbeddingResponse:
        self.calls += 1
        raise self.exc


class SlowProvider(CountingProvider):
    """Sleeps before answering."""

    def __init__(self, delay: float, dimensions: int = 64) -> None:
        super().__init__(dimensions)
        self.delay = delay

    async def embed_texts(self, texts: list[str]) -> EmbeddingResponse:
        await asyncio.sleep(self.delay)
        return await super().embed_texts(texts)


async def no_sleep(_: float) -> None:
    return None


def fast_embedding_config(**overrides) -> EmbeddingConfig:
    values = {"batch_delay_s": 0.0, "retry_backoff_s": 0.0, "batch_timeout_s": 5.0}
    values.update(overrides)
    return EmbeddingConfig(**values)


@pytest.fixture
def sample_files() -> dict[str, str]:
    return dict(SAMPLE_FILES)


@pytest.fixture
def counting_provider() -> CountingProvider:
    return CountingProvider()


@pytest.fixture
def cache() -> EmbeddingCache:
    return EmbeddingCache()


@pytest.fixture
def adapter(counting_provider: CountingProvider, cache: EmbeddingCache) -> EmbeddingAdapter:
    return EmbeddingAdapter(counting_provider, cache, fast_embedding_config(), sleep=no_sleep)


@pytest.fixture
def file_store(sample_files: dict[str, str]) -> InMemoryFileStore:
    store = InMemoryFileStore()
    store.add_version("shop", sample_files)
    return store


@pytest.fixture
def conversation_store() -> InMemoryConversationStore:
    store = InMemoryConversationStore()
    store.add_message("shop", "user", "Build a login page")
    store.add_message("shop", "assistant", "Added src/auth/login.ts with a loginHandler.")
    store.add_message("shop", "user", "Now add sessions")
    return store


@pytest.fixture
def make_assembler(file_store, conversation_store):
    """Factory for assemblers over the sample project with a chosen provider."""

    def _make(
        provider: EmbeddingProvider | None = None,
        config: ProjectConfig | None = None,
        semantic: bool = True,
        progress=None,
        index=None,
    ) -> ContextAssembler:
        config = config or ProjectConfig()
        search = None
        if semantic:
            adapter = EmbeddingAdapter(
                provider or CountingProvider(dimensions=256),
                EmbeddingCache(),
                fast_embedding_config(),
                sleep=no_sleep,
            )
            search = SemanticSearch(adapter, index if index is not None else InMemoryVectorIndex())
        return ContextAssembler(
            file_store,
            conversation_store,
            search,
            config=config,
            progress=progress,
        )

    return _make


@pytest.fixture
def tmp_project(tmp_path: Path) -> Path:
    """Write the sample project to disk."""
    for rel, content in SAMPLE_FILES.items():
        path = tmp_path / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        if rel.endswith(".png"):
            path.write_bytes(content.encode("latin-1"))
        else:
            path.write_text(content)
    return tmp_path
