"""Reciprocal Rank Fusion for multi-route retrieval results."""

from __future__ import annotations

from collections.abc import Iterable, Sequence

from catalog_rag.types import RankedCandidate


def rrf_scores(ranked_ids: Iterable[Sequence[str]], *, k: int = 60) -> dict[str, float]:
    """Sum `1 / (k + rank + 1)` per id over every ranked list.

    `rank` is the 0-based position in a list. The returned dict keeps
    first-seen order: lists in iteration order, positions within each list.
    """

    scores: dict[str, float] = {}
    for ids in ranked_ids:
        for rank, item_id in enumerate(ids):
            scores[item_id] = scores.get(item_id, 0.0) + 1.0 / (k + rank + 1)
    return scores


def reciprocal_rank_fusion(
    route_results: dict[str, list[RankedCandidate]],
    *,
    k: int = 60,
) -> list[RankedCandidate]:
    """Fuse ordered candidate lists by rank rather than by raw score.

    Route scores live on incomparable scales (cosine similarity vs keyword
    hits), so only positions are used. A candidate found by one route only
    still gets that route's contribution, and a route returning nothing simply
    adds nothing.

    The fused list is sorted by summed score, descending. Python's sort is
    stable, so ties keep first-seen order: routes in dict order, then list
    order within each route. Each returned candidate is a copy of its
    first-seen instance, carrying that route's local `score` and `source`.
    """

    first_seen: dict[str, RankedCandidate] = {}
    for items in route_results.values():
        for item in items:
            first_seen.setdefault(item.id, item)

    scores = rrf_scores(([item.id for item in items] for items in route_results.values()), k=k)
    fused = [
        RankedCandidate(
            record=first_seen[item_id].record,
            score=first_seen[item_id].score,
            source=first_seen[item_id].source,
            rrf_score=score,
        )
        for item_id, score in scores.items()
    ]
    return sorted(fused, key=lambda item: item.rrf_score, reverse=True)
