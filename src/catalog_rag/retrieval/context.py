"""Resolves elliptical follow-up queries against recent conversation turns."""

from __future__ import annotations

from collections.abc import Sequence

import structlog

from catalog_rag.config import ContextConfig
from catalog_rag.retrieval.text import contains_any, tokenize, word_count
from catalog_rag.types import LiteProductRecord, Turn

logger = structlog.get_logger(__name__)


class ContextInferencer:
    """Prepends the product most recently discussed by the assistant.

    "how much?" after the assistant described "Red Shoe" becomes
    "Red Shoe how much?".
    """

    def __init__(self, config: ContextConfig | None = None) -> None:
        self.config = config or ContextConfig()

    def applies(self, query: str, intent: str, memory: Sequence[Turn]) -> bool:
        if not memory or intent not in self.config.intents:
            return False
        return word_count(query) <= self.config.max_vague_words or contains_any(
            query, self.config.followup_markers
        )

    def infer(
        self,
        query: str,
        intent: str,
        memory: Sequence[Turn],
        products: Sequence[LiteProductRecord],
    ) -> str | None:
        """Return the rewritten query, or None when no product can be inferred."""

        if not products or not self.applies(query, intent, memory):
            return None

        names = _name_lookup(products)
        if not names:
            return None
        longest = max(len(key.split()) for key in names)

        for turn in reversed(memory):
            if turn.role != "assistant" or not turn.content:
                continue
            product_name = _find_mention(tokenize(turn.content), names, longest)
            if product_name is not None:
                logger.debug("context_inferred", product=product_name, query=query[:50])
                return f"{product_name} {query}"
        return None


def _name_lookup(products: Sequence[LiteProductRecord]) -> dict[str, str]:
    names: dict[str, str] = {}
    for product in products:
        if not product.name:
            continue
        key = " ".join(tokenize(product.name))
        if key:
            names.setdefault(key, product.name)
    return names


def _find_mention(tokens: list[str], names: dict[str, str], longest: int) -> str | None:
    for size in range(min(longest, len(tokens)), 0, -1):
        for start in range(len(tokens) - size + 1):
            hit = names.get(" ".join(tokens[start : start + size]))
            if hit is not None:
                return hit
    return None
