"""FAQ and policy retrieval for non-product intents."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from dataclasses import replace

import structlog

from catalog_rag.cache import TTLCache
from catalog_rag.config import IndexConfig, SearchConfig
from catalog_rag.providers.base import CatalogStore
from catalog_rag.retrieval.fusion import rrf_scores
from catalog_rag.retrieval.text import normalize_text, tokenize
from catalog_rag.types import KnowledgeItem

logger = structlog.get_logger(__name__)

# Intent -> (kinds searched, hard keywords that boost on-topic entries).
_INTENT_ROUTES: dict[str, tuple[tuple[str, ...], tuple[str, ...]]] = {
    "shipping_info": (("faq", "policy"), ("شحن", "توصيل", "shipping", "delivery")),
    "shipping_inquiry": (("faq", "policy"), ("شحن", "توصيل", "shipping", "delivery")),
    "complaint": (("policy",), ("إرجاع", "ضمان", "return", "refund", "warranty")),
}
_DEFAULT_ROUTE: tuple[tuple[str, ...], tuple[str, ...]] = (("faq", "policy"), ())


class KnowledgeSearch:
    """Keyword search over a tenant's FAQs and policies.

    Entries are fetched per tenant and kind and cached for the index TTL. When
    the intent carries hard keywords, the keyword ranking of the query and the
    ranking of the hard keywords are fused with RRF.
    """

    def __init__(
        self,
        store: CatalogStore,
        index_config: IndexConfig | None = None,
        search_config: SearchConfig | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.store = store
        self.search_config = search_config or SearchConfig()
        index_config = index_config or IndexConfig()
        self._cache: TTLCache[tuple[KnowledgeItem, ...]] = TTLCache(
            ttl_seconds=index_config.ttl_seconds, max_entries=1000, clock=clock
        )

    async def search(self, query: str, intent: str, tenant_id: str) -> list[KnowledgeItem]:
        kinds, hard_keywords = _INTENT_ROUTES.get(intent, _DEFAULT_ROUTE)
        loaded = await asyncio.gather(*(self._items(tenant_id, kind) for kind in kinds))
        items = [
            item for batch in loaded for item in batch if item.tenant_id == tenant_id
        ]
        if not items:
            return []

        routes = [self._rank(tokenize(query), items)]
        if hard_keywords:
            routes.append(self._rank([normalize_text(k) for k in hard_keywords], items))

        scores = rrf_scores(
            ([item.id for item in route] for route in routes), k=self.search_config.rrf_k
        )
        by_id = {item.id: item for item in items}
        ranked = sorted(scores.items(), key=lambda pair: pair[1], reverse=True)
        return [
            replace(by_id[item_id], score=score)
            for item_id, score in ranked[: self.search_config.final_k]
        ]

    def invalidate_tenant(self, tenant_id: str) -> int:
        return self._cache.delete_prefix(f"knowledge:{tenant_id}:")

    async def _items(self, tenant_id: str, kind: str) -> tuple[KnowledgeItem, ...]:
        key = f"knowledge:{tenant_id}:{kind}"
        cached = self._cache.get(key)
        if cached is not None:
            return cached
        if kind == "faq":
            fetched = await self.store.find_active_faqs(tenant_id)
        else:
            fetched = await self.store.find_active_policies(tenant_id)
        items = tuple(fetched)
        self._cache.set(key, items)
        logger.debug("knowledge_loaded", tenant_id=tenant_id, kind=kind, count=len(items))
        return items

    def _rank(self, keywords: list[str], items: list[KnowledgeItem]) -> list[KnowledgeItem]:
        keywords = [k for k in keywords if len(k) >= self.search_config.min_keyword_length]
        if not keywords:
            return []
        scored: list[tuple[float, KnowledgeItem]] = []
        for item in items:
            title = normalize_text(item.title)
            content = normalize_text(item.content)
            score = 0.0
            for keyword in keywords:
                if keyword in title:
                    score += self.search_config.name_hit_weight
                elif keyword in content:
                    score += self.search_config.text_hit_weight
            if score > 0:
                scored.append((score, item))
        scored.sort(key=lambda pair: pair[0], reverse=True)
        return [item for _, item in scored[: self.search_config.fanout_k]]
