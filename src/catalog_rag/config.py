"""Configuration models for the retrieval engine."""

from __future__ import annotations

from pydantic import BaseModel, Field


class IndexConfig(BaseModel):
    """Configures the per-tenant lite index refresh policy."""

    ttl_seconds: float = Field(default=15 * 60, gt=0.0)
    load_attempts: int = Field(default=3, ge=1)
    load_backoff_seconds: float = Field(default=5.0, ge=0.0)


class CacheConfig(BaseModel):
    """Configures TTLs and size bounds of the cache layers."""

    embedding_ttl_seconds: float = Field(default=24 * 60 * 60, gt=0.0)
    embedding_max_entries: int = Field(default=1000, ge=1)
    expansion_ttl_seconds: float = Field(default=60 * 60, gt=0.0)
    expansion_max_entries: int = Field(default=1000, ge=1)
    search_ttl_seconds: float = Field(default=5 * 60, gt=0.0)
    search_max_entries: int = Field(default=500, ge=1)


class SearchConfig(BaseModel):
    """Configures dual-route retrieval and fusion."""

    fanout_k: int = Field(default=20, ge=1)
    hydrate_k: int = Field(default=10, ge=1)
    final_k: int = Field(default=8, ge=1)
    rrf_k: int = Field(default=60, ge=1)
    browse_limit: int = Field(default=20, ge=1)
    browse_score: float = 10.0
    min_vector_similarity: float = Field(default=0.3, ge=-1.0, le=1.0)
    name_hit_weight: float = Field(default=5.0, ge=0.0)
    text_hit_weight: float = Field(default=2.0, ge=0.0)
    min_keyword_length: int = Field(default=3, ge=1)
    fallback_to_catalog: bool = True
    browse_markers: tuple[str, ...] = (
        "منتجات",
        "احذية",
        "كوتشي",
        "products",
        "catalog",
        "everything",
        "all items",
    )


class ExpansionConfig(BaseModel):
    """Configures the vague-query gate and the expansion prompt."""

    max_vague_words: int = Field(default=3, ge=1)
    specific_query_words: int = Field(default=4, ge=1)
    max_tokens: int = Field(default=100, ge=1)
    temperature: float = Field(default=0.1, ge=0.0, le=2.0)
    primary_language: str = "Arabic"
    generic_markers: tuple[str, ...] = (
        "بكام",
        "موجود",
        "منه",
        "عايز",
        "اشوف",
        "ممكن",
        "available?",
        "how much",
        "in stock",
        "show me",
        "do you have",
    )
    brand_tokens: tuple[str, ...] = (
        "نايك",
        "nike",
        "أديداس",
        "adidas",
        "بوما",
        "puma",
        "اسكوتش",
        "scotch",
    )


class RerankConfig(BaseModel):
    """Configures the ambiguity gate and the AI judge call."""

    min_candidates: int = Field(default=3, ge=1)
    variance_threshold: float = Field(default=0.1, ge=0.0)
    ratio_threshold: float = Field(default=1.3, ge=1.0)
    max_candidates: int = Field(default=10, ge=2)
    max_tokens: int = Field(default=50, ge=1)
    temperature: float = Field(default=0.1, ge=0.0, le=2.0)


class ContextConfig(BaseModel):
    """Configures elliptical follow-up resolution from conversation memory."""

    intents: tuple[str, ...] = ("product_inquiry", "price_inquiry", "general_inquiry")
    max_vague_words: int = Field(default=3, ge=1)
    followup_markers: tuple[str, ...] = (
        "بكام",
        "سعره",
        "موجود",
        "منه",
        "الوان",
        "مقاسات",
        "تفاصيل",
        "how much",
        "price",
        "available",
        "colors",
        "sizes",
        "details",
    )


class CategoryConfig(BaseModel):
    """Configures whole-category request detection."""

    min_confidence: float = Field(default=0.6, ge=0.0, le=1.0)
    max_tokens: int = Field(default=500, ge=1)
    temperature: float = Field(default=0.1, ge=0.0, le=2.0)
    max_results: int = Field(default=50, ge=1)
    all_marker: str = "all"


class RateLimitConfig(BaseModel):
    """Configures the default sliding-window rate limiter."""

    max_requests: int = Field(default=60, ge=1)
    window_seconds: float = Field(default=60.0, gt=0.0)


class EngineConfig(BaseModel):
    """Aggregate configuration for a `RetrievalCoordinator`."""

    index: IndexConfig = Field(default_factory=IndexConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    search: SearchConfig = Field(default_factory=SearchConfig)
    expansion: ExpansionConfig = Field(default_factory=ExpansionConfig)
    rerank: RerankConfig = Field(default_factory=RerankConfig)
    context: ContextConfig = Field(default_factory=ContextConfig)
    rate_limit: RateLimitConfig = Field(default_factory=RateLimitConfig)
    category: CategoryConfig = Field(default_factory=CategoryConfig)
