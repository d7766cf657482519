"""Best-effort AI rewrite of vague queries into keyword-dense descriptions."""

from __future__ import annotations

import time
from collections.abc import Callable, Iterable

import structlog

from catalog_rag.cache import TTLCache, normalize_cache_text
from catalog_rag.config import CacheConfig, ExpansionConfig
from catalog_rag.providers.base import CompletionProvider
from catalog_rag.retrieval.text import contains_any, contains_phrase, normalize_text, word_count
from catalog_rag.types import Fallback, Ok, Outcome

logger = structlog.get_logger(__name__)

_EXPANSION_PROMPT = """
User Query: "{query}"
Task: Act as an expert shopping assistant. Expand this query into a single descriptive paragraph that captures the intent, synonyms, related categories, and technical specifications of the ideal product.
Focus on providing a rich set of keywords in both {language} and English.
Example: "smart watch" -> "A wearable electronic device, digital wrist-worn computer with health monitoring, fitness tracking, heart rate sensor, GPS, and smartphone notifications, compatible with Android and iOS."

Write only the replacement descriptive paragraph. Do not include introductory text.
""".strip()


def is_vague_query(
    query: str,
    *,
    generic_markers: Iterable[str] = (),
    brand_tokens: Iterable[str] = (),
    known_names: Iterable[str] = (),
    max_vague_words: int = 3,
    specific_query_words: int = 4,
) -> bool:
    """Decide whether `query` is too unspecific to match directly.

    A query longer than `specific_query_words` words, or one mentioning a
    brand or a known product name, is specific. Otherwise it is vague when it
    has at most `max_vague_words` words or contains a generic intent marker.
    """

    words = word_count(query)
    if words == 0 or words > specific_query_words:
        return False
    if contains_phrase(query, tuple(brand_tokens)) or contains_phrase(query, tuple(known_names)):
        return False
    return words <= max_vague_words or contains_any(query, tuple(generic_markers))


class QueryExpansionService:
    """Expands vague queries through a completion provider, cached per tenant."""

    def __init__(
        self,
        provider: CompletionProvider | None,
        config: ExpansionConfig | None = None,
        cache_config: CacheConfig | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.provider = provider
        self.config = config or ExpansionConfig()
        cache_config = cache_config or CacheConfig()
        self._cache: TTLCache[str] = TTLCache(
            ttl_seconds=cache_config.expansion_ttl_seconds,
            max_entries=cache_config.expansion_max_entries,
            clock=clock,
        )

    @staticmethod
    def cache_key(tenant_id: str, query: str) -> str:
        return f"expand:{tenant_id}:{normalize_cache_text(query)}"

    def should_expand(self, query: str, known_names: Iterable[str] = ()) -> bool:
        return is_vague_query(
            query,
            generic_markers=self.config.generic_markers,
            brand_tokens=self.config.brand_tokens,
            known_names=known_names,
            max_vague_words=self.config.max_vague_words,
            specific_query_words=self.config.specific_query_words,
        )

    async def maybe_expand(
        self,
        query: str,
        tenant_id: str,
        *,
        known_names: Iterable[str] = (),
    ) -> Outcome[str]:
        if not self.should_expand(query, known_names):
            logger.debug("expansion_skipped", tenant_id=tenant_id, query=query[:50])
            return Fallback(query, reason="specific query")
        return await self.expand(query, tenant_id)

    async def expand(self, query: str, tenant_id: str) -> Outcome[str]:
        key = self.cache_key(tenant_id, query)
        cached = self._cache.get(key)
        if cached is not None:
            logger.debug("expansion_cache_hit", tenant_id=tenant_id, query=query[:50])
            return Ok(cached)

        if self.provider is None:
            return Fallback(query, reason="no completion provider")

        prompt = _EXPANSION_PROMPT.format(query=query, language=self.config.primary_language)
        try:
            expanded = await self.provider.complete(
                prompt,
                max_tokens=self.config.max_tokens,
                temperature=self.config.temperature,
            )
        except Exception as exc:
            logger.warning("expansion_failed", tenant_id=tenant_id, error=str(exc))
            return Fallback(query, reason=str(exc))

        expanded = expanded.strip()
        if not normalize_text(expanded):
            return Fallback(query, reason="empty expansion")

        self._cache.set(key, expanded)
        logger.debug("query_expanded", tenant_id=tenant_id, query=query[:50])
        return Ok(expanded)

    def stats(self) -> dict[str, int]:
        return self._cache.stats()
