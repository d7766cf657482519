"""Detection of whole-category requests ("show me your bags")."""

from __future__ import annotations

import json
import math
import re
import time
from collections.abc import Callable, Iterable
from typing import Any

import structlog

from catalog_rag.cache import TTLCache
from catalog_rag.config import CategoryConfig, IndexConfig
from catalog_rag.providers.base import CatalogStore, CompletionProvider
from catalog_rag.retrieval.text import normalize_text
from catalog_rag.types import Category, CategoryMatch, Fallback, LiteProductRecord, Ok, Outcome

logger = structlog.get_logger(__name__)

_JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)

_CATEGORY_PROMPT = """
Customer message: "{message}"

Store categories:
{categories}

Task: Decide whether the customer wants to browse a whole category or is looking for specific products.
- A specific product name, a model number, or several products joined by "and" or "و" means specific products: categoryName is null.
- A generic request for a kind of product means that category: use its exact name from the list.
- A request for all products means categoryName is "{all_marker}".

Answer with JSON only:
{{"categoryName": "<category name, null or {all_marker}>", "confidence": <0.0-1.0>, "reasoning": "<one short sentence>"}}
""".strip()


def format_categories(categories: Iterable[Category]) -> str:
    lines = []
    for position, category in enumerate(categories, start=1):
        line = f"{position}. {category.name}"
        if category.description:
            line += f" ({category.description})"
        lines.append(line)
    return "\n".join(lines)


def parse_category_answer(answer: str) -> dict[str, Any] | None:
    """Extract the JSON object from a model answer, tolerating code fences and chatter."""

    match = _JSON_OBJECT.search(answer or "")
    if match is None:
        return None
    try:
        payload = json.loads(match.group(0))
    except json.JSONDecodeError:
        return None
    return payload if isinstance(payload, dict) else None


def select_category_records(
    match: CategoryMatch, records: Iterable[LiteProductRecord], tenant_id: str, limit: int
) -> list[LiteProductRecord]:
    """Records of the matched category (or every record), ordered by name."""

    category_id = match.category.id if match.category is not None else None
    selected = [
        record
        for record in records
        if record.tenant_id == tenant_id
        and (category_id is None or record.category_id == category_id)
    ]
    selected.sort(key=lambda record: normalize_text(record.name))
    return selected[:limit]


class CategoryDetector:
    """Asks the completion provider whether a message names a whole category.

    Detection is best effort: a missing provider, an empty category list, an
    unparsable or low-confidence answer and any provider error all resolve to
    a `Fallback(None)`, and the caller goes on with regular search.
    """

    def __init__(
        self,
        store: CatalogStore,
        provider: CompletionProvider | None,
        config: CategoryConfig | None = None,
        index_config: IndexConfig | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.store = store
        self.provider = provider
        self.config = config or CategoryConfig()
        index_config = index_config or IndexConfig()
        self._cache: TTLCache[tuple[Category, ...]] = TTLCache(
            ttl_seconds=index_config.ttl_seconds, max_entries=1000, clock=clock
        )

    async def categories(self, tenant_id: str) -> tuple[Category, ...]:
        key = f"categories:{tenant_id}"
        cached = self._cache.get(key)
        if cached is not None:
            return cached
        fetched = await self.store.find_active_categories(tenant_id)
        categories = tuple(category for category in fetched if category.tenant_id == tenant_id)
        self._cache.set(key, categories)
        logger.debug("categories_loaded", tenant_id=tenant_id, count=len(categories))
        return categories

    def invalidate_tenant(self, tenant_id: str) -> int:
        return int(self._cache.delete(f"categories:{tenant_id}"))

    async def detect(self, message: str, tenant_id: str) -> Outcome[CategoryMatch | None]:
        if self.provider is None:
            return Fallback(None, reason="no completion provider")

        try:
            categories = await self.categories(tenant_id)
        except Exception as exc:
            logger.warning("category_load_failed", tenant_id=tenant_id, error=str(exc))
            return Fallback(None, reason=str(exc))
        if not categories:
            return Fallback(None, reason="no categories")

        prompt = _CATEGORY_PROMPT.format(
            message=message,
            categories=format_categories(categories),
            all_marker=self.config.all_marker,
        )
        try:
            answer = await self.provider.complete(
                prompt,
                max_tokens=self.config.max_tokens,
                temperature=self.config.temperature,
            )
        except Exception as exc:
            logger.warning("category_detection_failed", tenant_id=tenant_id, error=str(exc))
            return Fallback(None, reason=str(exc))

        payload = parse_category_answer(answer)
        if payload is None:
            logger.warning("category_answer_unparsable", tenant_id=tenant_id, answer=answer[:80])
            return Fallback(None, reason="unparsable answer")

        name = payload.get("categoryName")
        if not isinstance(name, str) or not name.strip():
            return Fallback(None, reason="no category requested")
        confidence = _as_confidence(payload.get("confidence"))
        if confidence < self.config.min_confidence:
            logger.debug("category_low_confidence", tenant_id=tenant_id, confidence=confidence)
            return Fallback(None, reason=f"confidence {confidence:.2f}")

        reasoning = str(payload.get("reasoning") or "")
        wanted = normalize_text(name)
        if wanted == normalize_text(self.config.all_marker):
            return Ok(CategoryMatch(category=None, confidence=confidence, reasoning=reasoning))
        for category in categories:
            if normalize_text(category.name) == wanted:
                logger.debug(
                    "category_detected",
                    tenant_id=tenant_id,
                    category_id=category.id,
                    confidence=confidence,
                )
                return Ok(
                    CategoryMatch(category=category, confidence=confidence, reasoning=reasoning)
                )
        return Fallback(None, reason=f"unknown category {name!r}")


def _as_confidence(value: Any) -> float:
    if isinstance(value, bool):
        return 0.0
    try:
        confidence = float(value)
    except (TypeError, ValueError):
        return 0.0
    return confidence if math.isfinite(confidence) else 0.0
