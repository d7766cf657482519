"""Contracts for the collaborators the engine talks to."""

from __future__ import annotations

from typing import Protocol

from catalog_rag.types import (
    Category,
    FullProductRecord,
    KnowledgeItem,
    LiteProductRecord,
    RateDecision,
)


class CatalogStore(Protocol):
    """System of record for products, categories, FAQs and policies."""

    async def find_active_products(self, tenant_id: str) -> list[LiteProductRecord]:
        """Return lite projections of every active product of one tenant."""

    async def find_products_by_ids(self, ids: list[str]) -> list[FullProductRecord]:
        """Return full records for the given ids in one round trip."""

    async def find_active_faqs(self, tenant_id: str) -> list[KnowledgeItem]:
        """Return the tenant's active FAQ entries."""

    async def find_active_policies(self, tenant_id: str) -> list[KnowledgeItem]:
        """Return the tenant's active policies."""

    async def find_active_categories(self, tenant_id: str) -> list[Category]:
        """Return the tenant's active categories ordered by name."""


class EmbeddingProvider(Protocol):
    """Converts text to a fixed-length vector. May raise."""

    async def embed(self, text: str) -> list[float]:
        """Embed one text."""


class CompletionProvider(Protocol):
    """Single-prompt text completion. May raise."""

    async def complete(self, prompt: str, *, max_tokens: int, temperature: float) -> str:
        """Return the model's text answer for `prompt`."""


class RateLimiter(Protocol):
    """Admission gate for search calls."""

    async def check(
        self, tenant_id: str, client_address: str | None, action: str
    ) -> RateDecision:
        """Decide whether the call may proceed."""
