"""Conditional AI re-ranking of hydrated results."""

from __future__ import annotations

import re
from collections.abc import Sequence

import structlog

from catalog_rag.config import RerankConfig
from catalog_rag.providers.base import CompletionProvider
from catalog_rag.types import Fallback, Ok, Outcome, RankedProduct

logger = structlog.get_logger(__name__)

_INDEX_PATTERN = re.compile(r"\d+")

_RERANK_PROMPT = """
User Search Query: "{query}"
Candidates:
{candidates}

Task: Based on the search query, re-order the candidates from most relevant to least relevant.
Only return a comma-separated list of indices. Example: 2,0,1,3
""".strip()


def is_ambiguous_ranking(
    scores: Sequence[float],
    *,
    variance_threshold: float = 0.1,
    ratio_threshold: float = 1.3,
) -> bool:
    """True when the leading scores are too close to trust the default order.

    Ambiguous when the population variance of `scores` is below
    `variance_threshold`, or when the top score is positive and less than
    `ratio_threshold` times the second one.
    """

    if len(scores) < 2:
        return False
    mean = sum(scores) / len(scores)
    variance = sum((score - mean) ** 2 for score in scores) / len(scores)
    if variance < variance_threshold:
        return True

    top, second = scores[0], scores[1]
    ratio = top / second if second > 0 else float("inf")
    return top > 0 and ratio < ratio_threshold


def parse_permutation(answer: str, size: int) -> list[int]:
    """Extract distinct in-range indices from a free-text answer, in order."""
    seen: set[int] = set()
    order: list[int] = []
    for match in _INDEX_PATTERN.findall(answer):
        idx = int(match)
        if 0 <= idx < size and idx not in seen:
            seen.add(idx)
            order.append(idx)
    return order


class ReRanker:
    """Asks a completion provider to reorder candidates when scores are ambiguous."""

    def __init__(
        self,
        provider: CompletionProvider | None,
        config: RerankConfig | None = None,
    ) -> None:
        self.provider = provider
        self.config = config or RerankConfig()

    def should_rerank(self, results: Sequence[RankedProduct]) -> bool:
        if len(results) <= self.config.min_candidates:
            return False
        scores = [item.rrf_score or item.score for item in results]
        ambiguous = is_ambiguous_ranking(
            scores,
            variance_threshold=self.config.variance_threshold,
            ratio_threshold=self.config.ratio_threshold,
        )
        logger.debug("rerank_gate", ambiguous=ambiguous, candidates=len(results))
        return ambiguous

    async def maybe_rerank(
        self, query: str, results: list[RankedProduct]
    ) -> Outcome[list[RankedProduct]]:
        if not self.should_rerank(results):
            return Fallback(results, reason="clear ranking")
        return await self.rerank(query, results)

    async def rerank(
        self, query: str, results: list[RankedProduct]
    ) -> Outcome[list[RankedProduct]]:
        if self.provider is None:
            return Fallback(results, reason="no completion provider")

        shortlist = results[: self.config.max_candidates]
        lines = "\n".join(
            f"[{i}] Name: {item.product.name}, Price: {item.product.price}, "
            f"Category: {item.product.category or 'N/A'}"
            for i, item in enumerate(shortlist)
        )
        prompt = _RERANK_PROMPT.format(query=query, candidates=lines)

        try:
            answer = await self.provider.complete(
                prompt,
                max_tokens=self.config.max_tokens,
                temperature=self.config.temperature,
            )
        except Exception as exc:
            logger.warning("rerank_failed", error=str(exc))
            return Fallback(results, reason=str(exc))

        order = parse_permutation(answer, len(shortlist))
        if not order:
            logger.warning("rerank_unparsable", answer=answer[:80])
            return Fallback(results, reason="no indices in answer")

        used = set(order)
        reranked = [shortlist[idx] for idx in order]
        reranked.extend(item for i, item in enumerate(shortlist) if i not in used)
        reranked.extend(results[len(shortlist) :])
        return Ok(reranked)
