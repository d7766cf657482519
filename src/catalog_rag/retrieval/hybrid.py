"""Dual-route product search over the tenant lite index."""

from __future__ import annotations

import asyncio
from math import sqrt

import structlog

from catalog_rag.cache import EmbeddingCache
from catalog_rag.config import SearchConfig
from catalog_rag.index.store import TenantIndexStore
from catalog_rag.retrieval.fusion import reciprocal_rank_fusion
from catalog_rag.retrieval.text import contains_any, normalize_text, tokenize
from catalog_rag.types import LiteProductRecord, RankedCandidate

logger = structlog.get_logger(__name__)


class HybridSearchEngine:
    """Combines vector-similarity and keyword routes with RRF.

    Both routes scan only the requesting tenant's partition. The vector route
    uses the (possibly expanded) query, the keyword route the literal one,
    because an expansion paragraph dilutes exact name hits.
    """

    def __init__(
        self,
        index: TenantIndexStore,
        embeddings: EmbeddingCache,
        config: SearchConfig | None = None,
    ) -> None:
        self.index = index
        self.embeddings = embeddings
        self.config = config or SearchConfig()

    def is_browse_query(self, query: str) -> bool:
        return contains_any(query, self.config.browse_markers)

    async def search(
        self,
        query: str,
        tenant_id: str,
        *,
        expanded_query: str | None = None,
    ) -> list[RankedCandidate]:
        """Return fused candidates, truncated to `hydrate_k`."""

        if self.is_browse_query(query):
            recent = self.index.recent(tenant_id, self.config.browse_limit)
            logger.debug("browse_query", tenant_id=tenant_id, count=len(recent))
            return [
                RankedCandidate(
                    record=record,
                    score=self.config.browse_score,
                    source="browse",
                    rrf_score=self.config.browse_score,
                )
                for record in recent
            ]

        vector_results, text_results = await asyncio.gather(
            self.vector_search(expanded_query or query, tenant_id),
            self.keyword_search(query, tenant_id),
        )
        fused = reciprocal_rank_fusion(
            {"vector": vector_results, "text": text_results},
            k=self.config.rrf_k,
        )
        logger.debug(
            "hybrid_search",
            tenant_id=tenant_id,
            vector_count=len(vector_results),
            text_count=len(text_results),
            fused_count=len(fused),
        )
        return fused[: self.config.hydrate_k]

    async def vector_search(self, query: str, tenant_id: str) -> list[RankedCandidate]:
        query_embedding = await self.embeddings.get_embedding(query)
        if query_embedding is None:
            return []

        scored: list[RankedCandidate] = []
        for record in self._scan(tenant_id):
            if record.embedding is None:
                continue
            similarity = cosine_similarity(query_embedding, record.embedding)
            if similarity < self.config.min_vector_similarity:
                continue
            scored.append(RankedCandidate(record=record, score=similarity, source="vector"))

        ranked = sorted(scored, key=lambda item: item.score, reverse=True)
        return ranked[: self.config.fanout_k]

    async def keyword_search(self, query: str, tenant_id: str) -> list[RankedCandidate]:
        keywords = [
            token for token in tokenize(query) if len(token) >= self.config.min_keyword_length
        ]
        if not keywords:
            return []

        scored: list[RankedCandidate] = []
        for record in self._scan(tenant_id):
            score = self._keyword_score(keywords, record)
            if score > 0:
                scored.append(RankedCandidate(record=record, score=score, source="text"))

        ranked = sorted(scored, key=lambda item: item.score, reverse=True)
        return ranked[: self.config.fanout_k]

    def _keyword_score(self, keywords: list[str], record: LiteProductRecord) -> float:
        name = normalize_text(record.name)
        text = normalize_text(record.searchable_text)
        score = 0.0
        for keyword in keywords:
            if keyword in name:
                score += self.config.name_hit_weight
            elif keyword in text:
                score += self.config.text_hit_weight
        return score

    def _scan(self, tenant_id: str) -> list[LiteProductRecord]:
        records = []
        for record in self.index.records(tenant_id):
            if record.tenant_id != tenant_id:
                logger.error(
                    "isolation_violation_scan",
                    tenant_id=tenant_id,
                    record_tenant_id=record.tenant_id,
                    product_id=record.id,
                )
                continue
            records.append(record)
        return records


def cosine_similarity(a: tuple[float, ...], b: tuple[float, ...]) -> float:
    if not a or not b or len(a) != len(b):
        return 0.0
    numerator = sum(x * y for x, y in zip(a, b, strict=True))
    norm_a = sqrt(sum(x * x for x in a))
    norm_b = sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return numerator / (norm_a * norm_b)
