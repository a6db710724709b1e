"""Two-tier embedding cache keyed by content hash.

Tier 1 is an in-process map with a time-based TTL; it is purely an
optimization. Tier 2 is a persistent store, which is authoritative and is
never evicted here (deleting a project's embeddings is an explicit
operation). A hit in tier 2 repopulates tier 1.

The cache is injected wherever it is needed, so tests can pass their own
instance, a fake persistent tier, or a fake clock.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

from ctxbundle.exceptions import StoreError

logger = logging.getLogger("ctxbundle.cache")

DEFAULT_TTL_SECONDS = 5 * 60


@dataclass
class CacheEntry:
    """In-process cache entry."""

    embedding: list[float]
    token_count: int
    last_used: float
    project_id: str = ""


@dataclass(frozen=True)
class CachedEmbedding:
    """A cache hit."""

    embedding: list[float]
    token_count: int
    tier: str  # "memory" or "persistent"


class PersistentTier(Protocol):
    """Storage behind the in-process tier."""

    def load(self, content_hash: str) -> tuple[list[float], int, str] | None: ...

    def store(
        self,
        content_hash: str,
        embedding: list[float],
        token_count: int,
        project_id: str = "",
        file_path: str = "",
    ) -> None: ...

    def delete_project(self, project_id: str) -> int: ...


class InMemoryEmbeddingStore:
    """Dict-backed persistent tier (process lifetime), for tests and one-shot runs."""

    def __init__(self) -> None:
        self._rows: dict[tuple[str, str, str], tuple[list[float], int]] = {}
        self._lock = threading.Lock()

    def load(self, content_hash: str) -> tuple[list[float], int, str] | None:
        with self._lock:
            for (project_id, _, h), (embedding, token_count) in self._rows.items():
                if h == content_hash:
                    return embedding, token_count, project_id
        return None

    def store(
        self,
        content_hash: str,
        embedding: list[float],
        token_count: int,
        project_id: str = "",
        file_path: str = "",
    ) -> None:
        with self._lock:
            self._rows[(project_id, file_path, content_hash)] = (list(embedding), token_count)

    def delete_project(self, project_id: str) -> int:
        with self._lock:
            doomed = [k for k in self._rows if k[0] == project_id]
            for k in doomed:
                del self._rows[k]
        return len(doomed)

    def __len__(self) -> int:
        return len(self._rows)


class MemoryTier:
    """TTL map from content hash to embedding."""

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    def get(self, content_hash: str) -> CacheEntry | None:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(content_hash)
            if entry is None:
                return None
            if now - entry.last_used >= self.ttl_seconds:
                del self._entries[content_hash]
                return None
            entry.last_used = now
            return entry

    def put(self, content_hash: str, embedding: list[float], token_count: int, project_id: str = "") -> None:
        with self._lock:
            self._entries[content_hash] = CacheEntry(
                embedding=list(embedding),
                token_count=token_count,
                last_used=self._clock(),
                project_id=project_id,
            )

    def clear_expired(self) -> int:
        now = self._clock()
        with self._lock:
            expired = [h for h, e in self._entries.items() if now - e.last_used >= self.ttl_seconds]
            for h in expired:
                del self._entries[h]
        return len(expired)

    def evict_project(self, project_id: str) -> int:
        with self._lock:
            doomed = [h for h, e in self._entries.items() if e.project_id == project_id]
            for h in doomed:
                del self._entries[h]
        return len(doomed)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, content_hash: str) -> bool:
        return self.get(content_hash) is not None


class EmbeddingCache:
    """Content-hash keyed embedding cache with an in-process and a persistent tier.

    Usage:
        cache = EmbeddingCache(SQLiteEmbeddingStore(db_path))
        hit = cache.get(content_hash)
        if hit is None:
            cache.put(content_hash, vector, token_count)
    """

    def __init__(
        self,
        persistent: PersistentTier | None = None,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.memory = MemoryTier(ttl_seconds=ttl_seconds, clock=clock)
        self.persistent: PersistentTier = persistent if persistent is not None else InMemoryEmbeddingStore()
        self.hits = 0
        self.misses = 0

    def get(self, content_hash: str) -> CachedEmbedding | None:
        """Look up an embedding: in-process tier first, then persistent."""
        entry = self.memory.get(content_hash)
        if entry is not None:
            self.hits += 1
            logger.debug(f"Memory cache hit for {content_hash[:12]}")
            return CachedEmbedding(entry.embedding, entry.token_count, "memory")

        try:
            stored = self.persistent.load(content_hash)
        except StoreError as e:
            logger.warning(f"Persistent embedding cache unavailable: {e}")
            stored = None

        if stored is None:
            self.misses += 1
            return None

        embedding, token_count, project_id = stored
        self.memory.put(content_hash, embedding, token_count, project_id)
        self.hits += 1
        logger.debug(f"Persistent cache hit for {content_hash[:12]}")
        return CachedEmbedding(embedding, token_count, "persistent")

    def put(
        self,
        content_hash: str,
        embedding: list[float],
        token_count: int,
        project_id: str = "",
        file_path: str = "",
    ) -> None:
        """Write through both tiers. Last write wins for a given key."""
        self.memory.put(content_hash, embedding, token_count, project_id)
        try:
            self.persistent.store(content_hash, embedding, token_count, project_id, file_path)
        except StoreError as e:
            logger.warning(f"Could not persist embedding for {file_path or content_hash[:12]}: {e}")

    def clear_expired(self) -> int:
        """Drop expired in-process entries. Returns how many were removed."""
        cleared = self.memory.clear_expired()
        if cleared:
            logger.info(f"Cleared {cleared} expired cache entries")
        return cleared

    def evict_project(self, project_id: str) -> int:
        """Delete a project's embeddings from both tiers."""
        self.memory.evict_project(project_id)
        return self.persistent.delete_project(project_id)

    def stats(self) -> dict[str, int]:
        return {
            "entries": len(self.memory),
            "hits": self.hits,
            "misses": self.misses,
        }
