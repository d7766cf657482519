"""Shared domain models."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Generic, Literal, TypeVar

T = TypeVar("T")


@dataclass(slots=True, frozen=True)
class LiteProductRecord:
    """Minimal product projection kept resident for every loaded tenant."""

    id: str
    tenant_id: str
    name: str
    searchable_text: str
    price: float
    category_id: str | None = None
    stock_level: int = 0
    embedding: tuple[float, ...] | None = None


@dataclass(slots=True, frozen=True)
class ProductVariant:
    """A color or size option of a product."""

    id: str
    name: str
    type: str | None = None
    price_delta: float = 0.0
    stock: int = 0
    is_active: bool = True


@dataclass(slots=True, frozen=True)
class FullProductRecord:
    """Hydrated product as returned by the system of record."""

    id: str
    tenant_id: str
    name: str
    price: float
    description: str = ""
    stock: int = 0
    category: str | None = None
    category_id: str | None = None
    variants: tuple[ProductVariant, ...] = ()
    images: tuple[str, ...] = ()


@dataclass(slots=True)
class RankedCandidate:
    """Intermediate fusion unit, scoped to a single retrieval call."""

    record: LiteProductRecord
    score: float
    source: str
    rrf_score: float = 0.0

    @property
    def id(self) -> str:
        return self.record.id


@dataclass(slots=True, frozen=True)
class RankedProduct:
    """A hydrated, ranked product handed back to the response pipeline."""

    product: FullProductRecord
    score: float
    rrf_score: float
    source: str
    price_range: tuple[float, float] | None
    sizes: tuple[str, ...]
    colors: tuple[str, ...]
    available: bool
    image_urls: tuple[str, ...]
    summary: str

    @property
    def id(self) -> str:
        return self.product.id

    @property
    def tenant_id(self) -> str:
        return self.product.tenant_id

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True, frozen=True)
class KnowledgeItem:
    """A tenant FAQ entry or policy."""

    id: str
    tenant_id: str
    kind: Literal["faq", "policy"]
    title: str
    content: str
    score: float = 0.0


@dataclass(slots=True, frozen=True)
class Category:
    """An active product category of one tenant."""

    id: str
    tenant_id: str
    name: str
    description: str = ""


@dataclass(slots=True, frozen=True)
class CategoryMatch:
    """A detected whole-category request; `category` is None for the full catalog."""

    category: Category | None
    confidence: float
    reasoning: str = ""


@dataclass(slots=True, frozen=True)
class Turn:
    """One conversation message."""

    role: Literal["user", "assistant"]
    content: str


@dataclass(slots=True, frozen=True)
class RateDecision:
    allowed: bool
    reason: str = ""


@dataclass(slots=True, frozen=True)
class Ok(Generic[T]):
    """Best-effort call produced a usable value."""

    value: T


@dataclass(slots=True, frozen=True)
class Fallback(Generic[T]):
    """Best-effort call degraded; `value` is the untouched input."""

    value: T
    reason: str = field(default="")


Outcome = Ok[T] | Fallback[T]
