"""TTL caches for embeddings, query expansions and search results."""

from __future__ import annotations

import re
import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass
from typing import Generic, TypeVar

import structlog

from catalog_rag.config import CacheConfig
from catalog_rag.providers.base import EmbeddingProvider
from catalog_rag.types import RankedProduct

logger = structlog.get_logger(__name__)

V = TypeVar("V")

_WHITESPACE = re.compile(r"\s+")


@dataclass(slots=True)
class CacheEntry(Generic[V]):
    value: V
    expires_at: float


class TTLCache(Generic[V]):
    """Insertion-ordered map with per-entry expiry and a size bound.

    Expired entries are dropped lazily on read. Writes sweep expired entries
    once the size bound is reached and then evict oldest-first.

    All operations are synchronous, so under asyncio no other task can observe
    a half-applied mutation.
    """

    def __init__(
        self,
        *,
        ttl_seconds: float,
        max_entries: int,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._entries: OrderedDict[str, CacheEntry[V]] = OrderedDict()
        self.hits = 0
        self.misses = 0
        self.evictions = 0

    def get(self, key: str) -> V | None:
        entry = self._entries.get(key)
        if entry is None:
            self.misses += 1
            return None
        if self._clock() >= entry.expires_at:
            del self._entries[key]
            self.misses += 1
            return None
        self.hits += 1
        return entry.value

    def set(self, key: str, value: V, *, ttl_seconds: float | None = None) -> None:
        ttl = self.ttl_seconds if ttl_seconds is None else ttl_seconds
        self._entries.pop(key, None)
        self._entries[key] = CacheEntry(value=value, expires_at=self._clock() + ttl)
        if len(self._entries) > self.max_entries:
            self.sweep()
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)
            self.evictions += 1

    def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def delete_prefix(self, prefix: str) -> int:
        doomed = [key for key in self._entries if key.startswith(prefix)]
        for key in doomed:
            del self._entries[key]
        return len(doomed)

    def sweep(self) -> int:
        """Drop every expired entry and return how many were removed."""
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if now >= entry.expires_at]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and self.get(key) is not None

    def stats(self) -> dict[str, int]:
        return {
            "size": len(self._entries),
            "hits": self.hits,
            "misses": self.misses,
            "evictions": self.evictions,
        }


def normalize_cache_text(text: str) -> str:
    return _WHITESPACE.sub(" ", text).strip().lower()


class EmbeddingCache:
    """Memoizes provider embeddings; a missing vector is `None`, never an error."""

    def __init__(
        self,
        provider: EmbeddingProvider | None,
        config: CacheConfig | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config or CacheConfig()
        self.provider = provider
        self._cache: TTLCache[tuple[float, ...]] = TTLCache(
            ttl_seconds=self.config.embedding_ttl_seconds,
            max_entries=self.config.embedding_max_entries,
            clock=clock,
        )

    @staticmethod
    def key(text: str) -> str:
        return f"embedding:{normalize_cache_text(text)}"

    async def get_embedding(self, text: str) -> tuple[float, ...] | None:
        normalized = normalize_cache_text(text)
        if not normalized:
            return None

        key = f"embedding:{normalized}"
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        if self.provider is None:
            return None

        try:
            vector = await self.provider.embed(normalized)
        except Exception as exc:
            logger.warning("embedding_provider_failed", error=str(exc), text=normalized[:50])
            return None
        if not vector:
            logger.warning("embedding_provider_empty", text=normalized[:50])
            return None

        embedding = tuple(float(value) for value in vector)
        self._cache.set(key, embedding)
        return embedding

    def stats(self) -> dict[str, int]:
        return self._cache.stats()


class SearchResultCache:
    """Final hydrated result sets keyed by tenant, query and result kind."""

    def __init__(
        self,
        config: CacheConfig | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config or CacheConfig()
        self._cache: TTLCache[tuple[RankedProduct, ...]] = TTLCache(
            ttl_seconds=self.config.search_ttl_seconds,
            max_entries=self.config.search_max_entries,
            clock=clock,
        )

    @staticmethod
    def key(tenant_id: str, query: str, kind: str) -> str:
        return f"search:{tenant_id}:{normalize_cache_text(query)}:{kind}"

    def get(self, tenant_id: str, query: str, kind: str = "products") -> list[RankedProduct] | None:
        cached = self._cache.get(self.key(tenant_id, query, kind))
        if cached is None:
            return None
        return list(cached)

    def set(
        self,
        tenant_id: str,
        query: str,
        results: list[RankedProduct],
        kind: str = "products",
    ) -> None:
        self._cache.set(self.key(tenant_id, query, kind), tuple(results))

    def invalidate_tenant(self, tenant_id: str) -> int:
        return self._cache.delete_prefix(f"search:{tenant_id}:")

    def stats(self) -> dict[str, int]:
        return self._cache.stats()
