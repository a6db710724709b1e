"""Tests for the embedding cache, the provider adapter and the local provider."""

from __future__ import annotations

from pathlib import Path

import numpy as np
import pytest

from ctxbundle.embeddings.adapter import TRUNCATION_MARKER, EmbeddingAdapter, FileToEmbed, prepare_text
from ctxbundle.embeddings.base import EmbeddingProvider, EmbeddingResponse
from ctxbundle.embeddings.cache import EmbeddingCache, InMemoryEmbeddingStore, MemoryTier
from ctxbundle.embeddings.factory import create_embedding_provider
from ctxbundle.embeddings.local_provider import HashingEmbeddingProvider
from ctxbundle.embeddings.store import SQLiteEmbeddingStore
from ctxbundle.config import EmbeddingConfig
from ctxbundle.exceptions import ProviderUnavailableError, RateLimitedError, StoreError
from ctxbundle.parser.classifier import content_hash

from conftest import CountingProvider, FailingProvider, SlowProvider, fast_embedding_config, no_sleep


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


class BrokenTier:
    def load(self, content_hash):
        raise StoreError("disk gone")

    def store(self, content_hash, embedding, token_count, project_id="", file_path=""):
        raise StoreError("disk gone")

    def delete_project(self, project_id):
        return 0


class FlakyProvider(CountingProvider):
    """Rate limited for the first `failures` calls."""

    def __init__(self, failures: int) -> None:
        super().__init__()
        self.failures = failures
        self.attempts = 0

    async def embed_texts(self, texts: list[str]) -> EmbeddingResponse:
        self.attempts += 1
        if self.attempts <= self.failures:
            raise RateLimitedError("slow down")
        return await super().embed_texts(texts)


class ShortProvider(EmbeddingProvider):
    """Returns one vector too few."""

    async def embed_texts(self, texts: list[str]) -> EmbeddingResponse:
        return EmbeddingResponse(vectors=[[1.0, 0.0]] * (len(texts) - 1), token_counts=[1] * (len(texts) - 1))


def _files(n: int) -> list[FileToEmbed]:
    return [FileToEmbed(path=f"src/mod_{i}.ts", content=f"export const value{i} = {i};") for i in range(n)]


class TestMemoryTier:
    def test_ttl_expiry(self):
        clock = FakeClock()
        tier = MemoryTier(ttl_seconds=300, clock=clock)
        tier.put("h1", [1.0, 0.0], 3)
        clock.now += 299
        assert tier.get("h1") is not None
        clock.now += 300
        assert tier.get("h1") is None
        assert len(tier) == 0

    def test_get_refreshes_last_used(self):
        clock = FakeClock()
        tier = MemoryTier(ttl_seconds=10, clock=clock)
        tier.put("h1", [1.0], 1)
        clock.now += 8
        assert tier.get("h1") is not None
        clock.now += 8
        assert tier.get("h1") is not None

    def test_clear_expired(self):
        clock = FakeClock()
        tier = MemoryTier(ttl_seconds=10, clock=clock)
        tier.put("old", [1.0], 1)
        clock.now += 20
        tier.put("new", [1.0], 1)
        assert tier.clear_expired() == 1
        assert "new" in tier
        assert "old" not in tier


class TestEmbeddingCache:
    def test_miss_then_hit(self):
        cache = EmbeddingCache()
        assert cache.get("h") is None
        cache.put("h", [0.5, 0.5], 7)
        hit = cache.get("h")
        assert hit.embedding == [0.5, 0.5]
        assert hit.token_count == 7
        assert hit.tier == "memory"
        assert cache.stats() == {"entries": 1, "hits": 1, "misses": 1}

    def test_persistent_hit_repopulates_memory(self):
        clock = FakeClock()
        persistent = InMemoryEmbeddingStore()
        cache = EmbeddingCache(persistent, ttl_seconds=10, clock=clock)
        cache.put("h", [1.0, 2.0], 4, project_id="p", file_path="a.ts")
        clock.now += 60
        assert cache.clear_expired() == 1

        hit = cache.get("h")
        assert hit.tier == "persistent"
        assert cache.get("h").tier == "memory"

    def test_evict_project(self):
        persistent = InMemoryEmbeddingStore()
        cache = EmbeddingCache(persistent)
        cache.put("h1", [1.0], 1, project_id="p1", file_path="a.ts")
        cache.put("h2", [1.0], 1, project_id="p2", file_path="b.ts")
        assert cache.evict_project("p1") == 1
        assert cache.get("h1") is None
        assert cache.get("h2") is not None

    def test_evict_project_drops_promoted_entries(self):
        clock = FakeClock()
        persistent = InMemoryEmbeddingStore()
        cache = EmbeddingCache(persistent, ttl_seconds=10, clock=clock)
        cache.put("h1", [1.0], 1, project_id="p", file_path="a.ts")
        clock.now += 60
        cache.clear_expired()
        assert cache.get("h1").tier == "persistent"

        assert cache.evict_project("p") == 1
        assert cache.get("h1") is None

    def test_broken_persistent_tier_degrades_to_miss(self):
        cache = EmbeddingCache(BrokenTier())
        assert cache.get("h") is None
        cache.put("h", [1.0], 1)
        assert cache.get("h").tier == "memory"


class TestSQLiteEmbeddingStore:
    def test_roundtrip(self, tmp_path: Path):
        store = SQLiteEmbeddingStore(tmp_path / "cache" / "embeddings.db")
        store.store("h1", [0.25, -0.5, 1.0], 12, project_id="p", file_path="a.ts")
        vector, tokens, project_id = store.load("h1")
        assert np.allclose(vector, [0.25, -0.5, 1.0])
        assert tokens == 12
        assert project_id == "p"
        assert store.load("missing") is None
        store.close()

    def test_lookup_by_hash_across_paths(self, tmp_path: Path):
        store = SQLiteEmbeddingStore(tmp_path / "embeddings.db")
        store.store("h1", [1.0], 1, project_id="p", file_path="a.ts")
        assert store.load("h1") is not None
        store.store("h1", [1.0], 1, project_id="p", file_path="copy/a.ts")
        assert store.count() == 2

    def test_delete_and_clear(self, tmp_path: Path):
        store = SQLiteEmbeddingStore(tmp_path / "embeddings.db")
        store.store("h1", [1.0], 1, project_id="p1")
        store.store("h2", [1.0], 1, project_id="p2")
        assert store.delete_project("p1") == 1
        assert store.count() == 1
        assert store.clear() == 1
        assert store.count() == 0

    def test_persists_across_instances(self, tmp_path: Path):
        db = tmp_path / "embeddings.db"
        first = SQLiteEmbeddingStore(db)
        first.store("h1", [1.0, 0.0], 2)
        first.close()
        assert SQLiteEmbeddingStore(db).load("h1") is not None


class TestPrepareText:
    def test_header(self):
        assert prepare_text("src/a.ts", "x", "typescript") == "File: src/a.ts (typescript)\n\nx"
        assert prepare_text("notes", "x") == "File: notes\n\nx"

    def test_truncation(self):
        text = prepare_text("a.py", "q" * 9000, "python", max_chars=8000)
        assert text.endswith(TRUNCATION_MARKER)
        assert text.count("q") == 8000


class TestEmbeddingAdapter:
    @pytest.mark.asyncio
    async def test_same_content_embedded_once(self, adapter, counting_provider):
        files = [FileToEmbed(path="a.ts", content="export const a = 1;")]
        first = await adapter.embed_batch(files)
        second = await adapter.embed_batch(files)
        assert len(counting_provider.calls) == 1
        assert first[0].embedding == second[0].embedding
        assert second[0].cached

    @pytest.mark.asyncio
    async def test_duplicate_content_in_one_batch(self, adapter, counting_provider):
        files = [
            FileToEmbed(path="a.ts", content="same"),
            FileToEmbed(path="b.ts", content="same"),
        ]
        results = await adapter.embed_batch(files)
        assert counting_provider.texts == ["File: a.ts (typescript)\n\nsame"]
        assert [r.path for r in results] == ["a.ts", "b.ts"]
        assert results[0].content_hash == results[1].content_hash == content_hash("same")

    @pytest.mark.asyncio
    async def test_binary_files_never_sent(self, adapter, counting_provider, sample_files):
        files = [{"path": p, "content": c} for p, c in sample_files.items()]
        results = await adapter.embed_batch(files)
        assert "public/logo.png" not in {r.path for r in results}
        assert not any("logo.png" in t.split("\n", 1)[0] for t in counting_provider.texts)
        assert len(results) == len(sample_files) - 1

    @pytest.mark.asyncio
    async def test_env_files_never_sent(self, adapter, counting_provider):
        files = [
            {"path": ".env.local", "content": "STRIPE_KEY=sk_live_123"},
            {"path": "src/app.ts", "content": "export const app = 1;\n"},
        ]
        results = await adapter.embed_batch(files)
        assert [r.path for r in results] == ["src/app.ts"]
        assert not any("sk_live_123" in t for t in counting_provider.texts)

    @pytest.mark.asyncio
    async def test_sequential_batches_with_delay(self, counting_provider):
        sleeps: list[float] = []

        async def record_sleep(seconds: float) -> None:
            sleeps.append(seconds)

        config = EmbeddingConfig(batch_size=50, batch_delay_s=0.1)
        adapter = EmbeddingAdapter(counting_provider, EmbeddingCache(), config, sleep=record_sleep)
        progress: list[tuple[int, int]] = []
        results = await adapter.embed_batch(_files(120), on_progress=lambda d, t, p: progress.append((d, t)))

        assert [len(c) for c in counting_provider.calls] == [50, 50, 20]
        assert sleeps == [0.1, 0.1]
        assert len(results) == 120
        assert progress[-1] == (120, 120)

    @pytest.mark.asyncio
    async def test_rate_limit_retried_once(self):
        provider = FlakyProvider(failures=1)
        sleeps: list[float] = []

        async def record_sleep(seconds: float) -> None:
            sleeps.append(seconds)

        adapter = EmbeddingAdapter(provider, EmbeddingCache(), EmbeddingConfig(retry_backoff_s=1.5), sleep=record_sleep)
        results = await adapter.embed_batch(_files(3))
        assert len(results) == 3
        assert provider.attempts == 2
        assert sleeps == [1.5]

    @pytest.mark.asyncio
    async def test_rate_limit_twice_propagates(self):
        provider = FlakyProvider(failures=2)
        adapter = EmbeddingAdapter(provider, EmbeddingCache(), fast_embedding_config(), sleep=no_sleep)
        with pytest.raises(RateLimitedError):
            await adapter.embed_batch(_files(1))
        assert provider.attempts == 2

    @pytest.mark.asyncio
    async def test_batch_timeout(self):
        adapter = EmbeddingAdapter(
            SlowProvider(delay=1.0), EmbeddingCache(), fast_embedding_config(batch_timeout_s=0.05), sleep=no_sleep
        )
        with pytest.raises(ProviderUnavailableError):
            await adapter.embed_batch(_files(1))

    @pytest.mark.asyncio
    async def test_unavailable_provider(self):
        adapter = EmbeddingAdapter(
            FailingProvider(ProviderUnavailableError("down")), EmbeddingCache(), fast_embedding_config(), sleep=no_sleep
        )
        with pytest.raises(ProviderUnavailableError):
            await adapter.embed_batch(_files(1))

    @pytest.mark.asyncio
    async def test_vector_count_mismatch(self):
        adapter = EmbeddingAdapter(ShortProvider("short"), EmbeddingCache(), fast_embedding_config(), sleep=no_sleep)
        with pytest.raises(ProviderUnavailableError):
            await adapter.embed_batch(_files(2))

    @pytest.mark.asyncio
    async def test_persistent_tier_shared_between_adapters(self, tmp_path: Path):
        store = SQLiteEmbeddingStore(tmp_path / "embeddings.db")
        first = CountingProvider()
        await EmbeddingAdapter(first, EmbeddingCache(store), fast_embedding_config(), sleep=no_sleep).embed_batch(
            _files(4), project_id="p"
        )
        second = CountingProvider()
        results = await EmbeddingAdapter(
            second, EmbeddingCache(store), fast_embedding_config(), sleep=no_sleep
        ).embed_batch(_files(4), project_id="p")
        assert len(first.calls) == 1
        assert second.calls == []
        assert all(r.cached for r in results)

    @pytest.mark.asyncio
    async def test_queries_are_not_cached(self, adapter, counting_provider):
        await adapter.embed_query("login handler")
        await adapter.embed_query("login handler")
        assert len(counting_provider.calls) == 2


class TestLocalProvider:
    @pytest.mark.asyncio
    async def test_deterministic_and_normalized(self):
        provider = HashingEmbeddingProvider(dimensions=128)
        a = await provider.embed_texts(["loginHandler checks the password"])
        b = await provider.embed_texts(["loginHandler checks the password"])
        assert a.vectors == b.vectors
        assert len(a.vectors[0]) == 128
        assert np.isclose(np.linalg.norm(a.vectors[0]), 1.0)

    @pytest.mark.asyncio
    async def test_similar_texts_score_higher(self):
        provider = HashingEmbeddingProvider(dimensions=256)
        resp = await provider.embed_texts([
            "login handler password session",
            "loginHandler checks password and creates session",
            "shopping cart price formatting",
        ])
        q, near, far = (np.asarray(v) for v in resp.vectors)
        assert q @ near > q @ far

    def test_factory(self):
        provider = create_embedding_provider(EmbeddingConfig(provider="local", dimensions=32))
        assert isinstance(provider, HashingEmbeddingProvider)
        assert provider.dimensions == 32
        with pytest.raises(ValueError):
            create_embedding_provider(EmbeddingConfig(provider="nope"))
