"""Deterministic in-process collaborators for tests and local prototyping."""

from __future__ import annotations

from collections.abc import Sequence
from hashlib import blake2b
from math import sqrt

from catalog_rag.types import Category, FullProductRecord, KnowledgeItem, LiteProductRecord


class HashingEmbedder:
    """Deterministic sparse-like embedding without external model calls.

    In production, replace it with `LangChainEmbeddingProvider` over an
    embedding model.
    """

    def __init__(self, dimension: int = 256) -> None:
        self.dimension = dimension

    async def embed(self, text: str) -> list[float]:
        return self.embed_sync(text)

    def embed_sync(self, text: str) -> list[float]:
        vector = [0.0 for _ in range(self.dimension)]
        tokens = text.lower().split()
        if not tokens:
            return vector

        for token in tokens:
            digest = blake2b(token.encode("utf-8"), digest_size=8).digest()
            idx = int.from_bytes(digest[:4], "little") % self.dimension
            sign = -1.0 if digest[4] % 2 else 1.0
            vector[idx] += sign

        norm = sqrt(sum(value * value for value in vector))
        if norm == 0:
            return vector
        return [value / norm for value in vector]


def to_lite_record(
    product: FullProductRecord, embedding: Sequence[float] | None = None
) -> LiteProductRecord:
    """Project a full product onto the fields kept resident in the index."""

    searchable = f"{product.name} {product.category or ''}".strip().lower()
    return LiteProductRecord(
        id=product.id,
        tenant_id=product.tenant_id,
        name=product.name,
        searchable_text=searchable,
        price=float(product.price),
        category_id=product.category_id,
        stock_level=product.stock,
        embedding=tuple(embedding) if embedding else None,
    )


class InMemoryCatalogStore:
    """Dict-backed system of record.

    Call counters let tests assert how many round trips a code path made.
    """

    def __init__(self) -> None:
        self._products: dict[str, FullProductRecord] = {}
        self._embeddings: dict[str, tuple[float, ...] | None] = {}
        self._inactive: set[str] = set()
        self._knowledge: dict[str, KnowledgeItem] = {}
        self._categories: dict[str, Category] = {}
        self._inactive_categories: set[str] = set()
        self.product_loads = 0
        self.hydrations = 0
        self.knowledge_loads = 0
        self.category_loads = 0

    def add_product(
        self,
        product: FullProductRecord,
        *,
        embedding: Sequence[float] | None = None,
        active: bool = True,
    ) -> None:
        self._products[product.id] = product
        self._embeddings[product.id] = tuple(embedding) if embedding else None
        if active:
            self._inactive.discard(product.id)
        else:
            self._inactive.add(product.id)

    def remove_product(self, product_id: str) -> None:
        self._products.pop(product_id, None)
        self._embeddings.pop(product_id, None)
        self._inactive.discard(product_id)

    def add_knowledge(self, item: KnowledgeItem) -> None:
        self._knowledge[item.id] = item

    def add_category(self, category: Category, *, active: bool = True) -> None:
        self._categories[category.id] = category
        if active:
            self._inactive_categories.discard(category.id)
        else:
            self._inactive_categories.add(category.id)

    async def find_active_products(self, tenant_id: str) -> list[LiteProductRecord]:
        self.product_loads += 1
        return [
            to_lite_record(product, self._embeddings.get(product.id))
            for product in self._products.values()
            if product.tenant_id == tenant_id and product.id not in self._inactive
        ]

    async def find_products_by_ids(self, ids: list[str]) -> list[FullProductRecord]:
        self.hydrations += 1
        return [self._products[pid] for pid in ids if pid in self._products]

    async def find_active_faqs(self, tenant_id: str) -> list[KnowledgeItem]:
        self.knowledge_loads += 1
        return self._knowledge_of(tenant_id, "faq")

    async def find_active_policies(self, tenant_id: str) -> list[KnowledgeItem]:
        self.knowledge_loads += 1
        return self._knowledge_of(tenant_id, "policy")

    async def find_active_categories(self, tenant_id: str) -> list[Category]:
        self.category_loads += 1
        categories = [
            category
            for category in self._categories.values()
            if category.tenant_id == tenant_id and category.id not in self._inactive_categories
        ]
        return sorted(categories, key=lambda category: category.name)

    def _knowledge_of(self, tenant_id: str, kind: str) -> list[KnowledgeItem]:
        return [
            item
            for item in self._knowledge.values()
            if item.tenant_id == tenant_id and item.kind == kind
        ]
