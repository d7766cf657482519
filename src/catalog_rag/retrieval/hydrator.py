"""Expands lite search results into fully enriched product records."""

from __future__ import annotations

import re
from urllib.parse import urlparse

import structlog

from catalog_rag.providers.base import CatalogStore
from catalog_rag.types import FullProductRecord, ProductVariant, RankedCandidate, RankedProduct

logger = structlog.get_logger(__name__)

_SIZE_PATTERN = re.compile(r"\b(3[5-9]|4[0-9]|5[0-9]|[SMLX]{1,3}L?)\b", flags=re.IGNORECASE)
_COLOR_KEYWORDS = (
    "أسود",
    "أبيض",
    "أحمر",
    "أزرق",
    "أخضر",
    "بني",
    "رمادي",
    "كحلي",
    "بيج",
    "وردي",
    "برتقالي",
    "أصفر",
    "black",
    "white",
    "red",
    "blue",
    "green",
    "brown",
    "gray",
    "grey",
    "navy",
    "beige",
    "pink",
    "orange",
    "yellow",
)


class ResultHydrator:
    """Batch-fetches full records and merges the ranking fields back in.

    The output keeps the order of the lite input. Ids the store no longer
    returns are dropped, and so is any record owned by another tenant.
    """

    def __init__(self, store: CatalogStore) -> None:
        self.store = store

    async def hydrate(
        self, candidates: list[RankedCandidate], tenant_id: str
    ) -> list[RankedProduct]:
        if not candidates:
            return []

        ids = [candidate.id for candidate in candidates]
        try:
            products = await self.store.find_products_by_ids(ids)
        except Exception:
            logger.exception("hydration_failed", tenant_id=tenant_id, count=len(ids))
            return []

        by_id = {product.id: product for product in products}
        hydrated: list[RankedProduct] = []
        for candidate in candidates:
            product = by_id.get(candidate.id)
            if product is None:
                continue
            if product.tenant_id != tenant_id:
                logger.error(
                    "isolation_violation_hydrate",
                    tenant_id=tenant_id,
                    record_tenant_id=product.tenant_id,
                    product_id=product.id,
                )
                continue
            hydrated.append(enrich(product, candidate))
        return hydrated


def enrich(product: FullProductRecord, candidate: RankedCandidate) -> RankedProduct:
    variants = [variant for variant in product.variants if variant.is_active]
    sizes, colors = classify_variants(variants)
    price_range = None
    if variants:
        prices = [product.price + variant.price_delta for variant in variants]
        price_range = (min(prices), max(prices))
    available = product.stock > 0 or any(variant.stock > 0 for variant in variants)
    image_urls = tuple(url for url in product.images if is_valid_image_url(url))

    return RankedProduct(
        product=product,
        score=candidate.score,
        rrf_score=candidate.rrf_score,
        source=candidate.source,
        price_range=price_range,
        sizes=sizes,
        colors=colors,
        available=available,
        image_urls=image_urls,
        summary=_summarize(product, price_range, sizes, colors, available),
    )


def classify_variants(
    variants: list[ProductVariant],
) -> tuple[tuple[str, ...], tuple[str, ...]]:
    """Split variants into sizes and colors.

    The declared variant type wins. Untyped variants are classified by name:
    shoe sizes 35-59 and S/M/L/XL style labels are sizes, names containing a
    known color word are colors, anything else is ignored.
    """

    sizes: list[str] = []
    colors: list[str] = []
    for variant in variants:
        name = variant.name.strip()
        if not name:
            continue
        kind = (variant.type or "").lower()
        if kind == "size":
            target = sizes
        elif kind == "color":
            target = colors
        elif _SIZE_PATTERN.search(name):
            target = sizes
        elif any(color in name.lower() for color in _COLOR_KEYWORDS):
            target = colors
        else:
            continue
        if name not in target:
            target.append(name)
    return tuple(sorted(sizes, key=_size_sort_key)), tuple(colors)


def _size_sort_key(size: str) -> tuple[int, float, str]:
    match = re.match(r"\d+(\.\d+)?", size)
    if match:
        return (0, float(match.group(0)), size)
    return (1, 0.0, size)


def is_valid_image_url(url: str) -> bool:
    if not isinstance(url, str) or len(url) <= 10:
        return False
    parsed = urlparse(url)
    return parsed.scheme in {"http", "https"} and bool(parsed.netloc)


def _summarize(
    product: FullProductRecord,
    price_range: tuple[float, float] | None,
    sizes: tuple[str, ...],
    colors: tuple[str, ...],
    available: bool,
) -> str:
    lines = [
        f"Product: {product.name}",
        f"Category: {product.category or 'N/A'}",
        f"Price: {product.price:,.2f}",
    ]
    if price_range is not None and price_range[0] != price_range[1]:
        lines.append(f"Price range: {price_range[0]:,.2f} - {price_range[1]:,.2f}")
    if sizes:
        lines.append(f"Sizes: {', '.join(sizes)}")
    if colors:
        lines.append(f"Colors: {', '.join(colors)}")
    lines.append(f"Availability: {'in stock' if available else 'out of stock'}")
    if product.description:
        lines.append(f"Description: {product.description[:200]}")
    return "\n".join(lines)
