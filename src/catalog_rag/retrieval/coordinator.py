"""Top-level retrieval entry point used by the agent orchestration layer."""

from __future__ import annotations

import time
from collections.abc import Callable, Iterable, Mapping
from typing import Any

import structlog

from catalog_rag.cache import EmbeddingCache, SearchResultCache
from catalog_rag.config import EngineConfig
from catalog_rag.errors import CatalogRagError
from catalog_rag.index.store import TenantIndexStore
from catalog_rag.obs.tracing import RetrievalTrace, Timer, TraceStore
from catalog_rag.providers.base import (
    CatalogStore,
    CompletionProvider,
    EmbeddingProvider,
    RateLimiter,
)
from catalog_rag.ratelimit import SlidingWindowRateLimiter
from catalog_rag.retrieval.category import CategoryDetector, select_category_records
from catalog_rag.retrieval.context import ContextInferencer
from catalog_rag.retrieval.expansion import QueryExpansionService
from catalog_rag.retrieval.hybrid import HybridSearchEngine
from catalog_rag.retrieval.hydrator import ResultHydrator
from catalog_rag.retrieval.knowledge import KnowledgeSearch
from catalog_rag.retrieval.rerank import ReRanker
from catalog_rag.types import (
    KnowledgeItem,
    LiteProductRecord,
    Ok,
    RankedCandidate,
    RankedProduct,
    Turn,
)

logger = structlog.get_logger(__name__)

PRODUCTS_KIND = "products"
CATEGORY_KIND = "category"


class RetrievalCoordinator:
    """Sequences rate limiting, caching, inference, search and isolation.

    State order per call:
    RATE_CHECK -> CACHE_LOOKUP -> (hit: done) -> CONTEXT_INFER -> EXPAND? ->
    HYBRID_SEARCH -> HYDRATE -> RERANK? -> ISOLATE_FILTER -> CACHE_STORE.

    A query that context inference may rewrite ("how much?" with memory) is
    looked up in the result cache under its rewritten form, because the same
    words refer to different products in different conversations.

    `retrieve` never raises: throttling, invalid input, provider outages and
    store failures all resolve to fewer or no results.
    """

    def __init__(
        self,
        store: CatalogStore,
        *,
        embedding_provider: EmbeddingProvider | None = None,
        completion_provider: CompletionProvider | None = None,
        rate_limiter: RateLimiter | None = None,
        config: EngineConfig | None = None,
        trace_store: TraceStore | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config or EngineConfig()
        self.store = store
        self.index = TenantIndexStore(store, self.config.index, clock=clock)
        self.embeddings = EmbeddingCache(embedding_provider, self.config.cache, clock=clock)
        self.search_cache = SearchResultCache(self.config.cache, clock=clock)
        self.expander = QueryExpansionService(
            completion_provider, self.config.expansion, self.config.cache, clock=clock
        )
        self.engine = HybridSearchEngine(self.index, self.embeddings, self.config.search)
        self.hydrator = ResultHydrator(store)
        self.reranker = ReRanker(completion_provider, self.config.rerank)
        self.context = ContextInferencer(self.config.context)
        self.knowledge = KnowledgeSearch(
            store, self.config.index, self.config.search, clock=clock
        )
        self.categories = CategoryDetector(
            store, completion_provider, self.config.category, self.config.index, clock=clock
        )
        self.rate_limiter = rate_limiter or SlidingWindowRateLimiter(
            self.config.rate_limit, clock=clock
        )
        self.traces = trace_store

    async def retrieve(
        self,
        query: str,
        intent: str,
        customer_id: str | None,
        tenant_id: str,
        client_address: Any = None,
        conversation_memory: Iterable[Turn | Mapping[str, Any]] = (),
    ) -> list[RankedProduct]:
        """Return at most `final_k` hydrated products of `tenant_id` for `query`."""

        if not _valid_id(tenant_id):
            logger.warning("retrieval_invalid_tenant", tenant_type=type(tenant_id).__name__)
            return []
        if not isinstance(query, str) or not query.strip():
            return []
        query = query.strip()
        client_address = _sanitize_address(client_address, tenant_id)
        memory = coerce_turns(conversation_memory)

        if not await self._admit(tenant_id, client_address, "search"):
            return []

        trace = self.traces.start(tenant_id, query) if self.traces is not None else None
        with Timer() as total:
            results, cache_hit = await self._retrieve_products(
                query, intent, tenant_id, memory, trace
            )

        logger.info(
            "retrieval_completed",
            tenant_id=tenant_id,
            customer_id=customer_id,
            intent=intent,
            query=query[:50],
            results=len(results),
            cache_hit=cache_hit,
            latency_ms=round(total.elapsed_ms, 2),
        )
        if trace is not None and self.traces is not None:
            self.traces.complete(
                trace,
                result_count=len(results),
                top_score=results[0].rrf_score if results else 0.0,
                latency_ms=total.elapsed_ms,
                cache_hit=cache_hit,
            )
        return results

    async def _retrieve_products(
        self,
        query: str,
        intent: str,
        tenant_id: str,
        memory: list[Turn],
        trace: RetrievalTrace | None,
    ) -> tuple[list[RankedProduct], bool]:
        context_dependent = self.context.applies(query, intent, memory)
        if not context_dependent:
            cached = self.search_cache.get(tenant_id, query, PRODUCTS_KIND)
            if cached is not None:
                logger.debug("search_cache_hit", tenant_id=tenant_id, query=query[:50])
                return cached, True

        await self._load_index(tenant_id)

        resolved = query
        if context_dependent:
            with Timer() as timer:
                inferred = self.context.infer(
                    query, intent, memory, self.index.records(tenant_id)
                )
            if inferred is not None:
                resolved = inferred
            self._step(trace, "CONTEXT", timer.elapsed_ms, resolved=resolved)
            cached = self.search_cache.get(tenant_id, resolved, PRODUCTS_KIND)
            if cached is not None:
                logger.debug("search_cache_hit", tenant_id=tenant_id, query=resolved[:50])
                return cached, True

        try:
            results = await self._search(resolved, tenant_id, trace)
        except Exception:
            logger.exception("retrieval_failed", tenant_id=tenant_id, query=resolved[:50])
            return [], False

        results = isolate(results, tenant_id)[: self.config.search.final_k]
        if results:
            self.search_cache.set(tenant_id, resolved, results, PRODUCTS_KIND)
        return results, False

    async def _search(
        self, query: str, tenant_id: str, trace: RetrievalTrace | None
    ) -> list[RankedProduct]:
        records = self.index.records(tenant_id)
        browsing = self.engine.is_browse_query(query)

        expanded = None
        if not browsing:
            with Timer() as timer:
                expansion = await self.expander.maybe_expand(
                    query, tenant_id, known_names=[record.name for record in records]
                )
            expanded = expansion.value if isinstance(expansion, Ok) else None
            self._step(trace, "EXPANSION", timer.elapsed_ms, expanded=expanded is not None)

        with Timer() as timer:
            candidates = await self.engine.search(query, tenant_id, expanded_query=expanded)
        self._step(trace, "RETRIEVAL", timer.elapsed_ms, candidates=len(candidates))

        if not candidates and self.config.search.fallback_to_catalog and records:
            logger.debug("catalog_fallback", tenant_id=tenant_id, query=query[:50])
            candidates = [
                RankedCandidate(record=record, score=0.0, source="catalog")
                for record in records[: self.config.search.hydrate_k]
            ]
            return await self.hydrator.hydrate(candidates, tenant_id)

        with Timer() as timer:
            hydrated = await self.hydrator.hydrate(candidates, tenant_id)
        self._step(trace, "HYDRATION", timer.elapsed_ms, hydrated=len(hydrated))

        # Browse listings keep recency order.
        if browsing:
            return hydrated

        with Timer() as timer:
            reranked = await self.reranker.maybe_rerank(query, hydrated)
        self._step(
            trace, "RERANK", timer.elapsed_ms, applied=isinstance(reranked, Ok)
        )
        return reranked.value

    async def retrieve_knowledge(
        self,
        query: str,
        intent: str,
        tenant_id: str,
        client_address: Any = None,
    ) -> list[KnowledgeItem]:
        """FAQ / policy retrieval for shipping, complaint and general intents."""

        if not _valid_id(tenant_id) or not isinstance(query, str) or not query.strip():
            return []
        client_address = _sanitize_address(client_address, tenant_id)
        if not await self._admit(tenant_id, client_address, "knowledge"):
            return []
        try:
            items = await self.knowledge.search(query.strip(), intent, tenant_id)
        except Exception:
            logger.exception("knowledge_retrieval_failed", tenant_id=tenant_id, intent=intent)
            return []
        return [item for item in items if item.tenant_id == tenant_id]

    async def retrieve_category(
        self,
        message: str,
        tenant_id: str,
        client_address: Any = None,
    ) -> list[RankedProduct]:
        """Every product of the category `message` asks for, ordered by name.

        Returns an empty list when the message is not a whole-category request,
        so the caller can fall back to `retrieve`.
        """

        if not _valid_id(tenant_id) or not isinstance(message, str) or not message.strip():
            return []
        message = message.strip()
        client_address = _sanitize_address(client_address, tenant_id)
        if not await self._admit(tenant_id, client_address, "category"):
            return []

        cached = self.search_cache.get(tenant_id, message, CATEGORY_KIND)
        if cached is not None:
            return cached

        await self._load_index(tenant_id)

        try:
            detection = await self.categories.detect(message, tenant_id)
        except Exception:
            logger.exception("category_detection_crashed", tenant_id=tenant_id)
            return []
        if not isinstance(detection, Ok) or detection.value is None:
            logger.debug("category_not_detected", tenant_id=tenant_id, reason=detection.reason)
            return []

        match = detection.value
        records = select_category_records(
            match, self.index.records(tenant_id), tenant_id, self.config.category.max_results
        )
        candidates = [
            RankedCandidate(
                record=record,
                score=match.confidence,
                source="category",
                rrf_score=match.confidence,
            )
            for record in records
        ]
        results = isolate(await self.hydrator.hydrate(candidates, tenant_id), tenant_id)
        logger.info(
            "category_retrieval_completed",
            tenant_id=tenant_id,
            category_id=match.category.id if match.category is not None else "all",
            results=len(results),
        )
        if results:
            self.search_cache.set(tenant_id, message, results, CATEGORY_KIND)
        return results

    def invalidate_tenant(self, tenant_id: str) -> None:
        """Forget a tenant's index snapshot and cached searches after a catalog edit."""
        removed = self.index.clear(tenant_id)
        dropped = self.search_cache.invalidate_tenant(tenant_id)
        self.knowledge.invalidate_tenant(tenant_id)
        self.categories.invalidate_tenant(tenant_id)
        logger.info(
            "tenant_invalidated", tenant_id=tenant_id, removed=removed, cached_searches=dropped
        )

    def upsert_product(self, record: LiteProductRecord) -> None:
        self.index.upsert(record)
        self.search_cache.invalidate_tenant(record.tenant_id)

    def remove_product(self, product_id: str) -> bool:
        tenant_id = self.index.remove(product_id)
        if tenant_id is None:
            return False
        self.search_cache.invalidate_tenant(tenant_id)
        return True

    def stats(self) -> dict[str, Any]:
        return {
            "index": self.index.stats(),
            "embedding_cache": self.embeddings.stats(),
            "expansion_cache": self.expander.stats(),
            "search_cache": self.search_cache.stats(),
        }

    async def _load_index(self, tenant_id: str) -> None:
        # A failed load leaves the previous snapshot, or an empty one, in place.
        try:
            await self.index.ensure_loaded(tenant_id)
        except CatalogRagError as exc:
            logger.warning("retrieval_on_stale_index", tenant_id=tenant_id, error=str(exc))
        except Exception:
            logger.exception("tenant_load_unexpected_failure", tenant_id=tenant_id)

    async def _admit(self, tenant_id: str, client_address: str | None, action: str) -> bool:
        try:
            decision = await self.rate_limiter.check(tenant_id, client_address, action)
        except Exception as exc:
            logger.warning("rate_limiter_unavailable", tenant_id=tenant_id, error=str(exc))
            return True
        if not decision.allowed:
            logger.info(
                "retrieval_throttled",
                tenant_id=tenant_id,
                client_address=client_address,
                reason=decision.reason,
            )
        return decision.allowed

    def _step(
        self, trace: RetrievalTrace | None, name: str, latency_ms: float, **detail: Any
    ) -> None:
        if trace is not None and self.traces is not None:
            self.traces.add_step(trace, name, latency_ms, **detail)


def isolate(results: list[RankedProduct], tenant_id: str) -> list[RankedProduct]:
    """Final tenant filter; anything it drops indicates an upstream bug."""
    kept = []
    for item in results:
        if item.tenant_id != tenant_id:
            logger.error(
                "isolation_violation_final",
                tenant_id=tenant_id,
                record_tenant_id=item.tenant_id,
                product_id=item.id,
            )
            continue
        kept.append(item)
    return kept


def coerce_turns(memory: Iterable[Turn | Mapping[str, Any]] | None) -> list[Turn]:
    turns: list[Turn] = []
    for item in memory or ():
        if isinstance(item, Turn):
            turns.append(item)
            continue
        if not isinstance(item, Mapping):
            continue
        role = item.get("role")
        content = item.get("content")
        if role in ("user", "assistant") and isinstance(content, str):
            turns.append(Turn(role=role, content=content))
    return turns


def _valid_id(value: Any) -> bool:
    return isinstance(value, str) and bool(value.strip())


def _sanitize_address(client_address: Any, tenant_id: str) -> str | None:
    if client_address is None or isinstance(client_address, str):
        return client_address or None
    logger.warning(
        "invalid_client_address",
        tenant_id=tenant_id,
        address_type=type(client_address).__name__,
    )
    return None
