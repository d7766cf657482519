import pytest

from catalog_rag.config import CategoryConfig
from catalog_rag.providers.memory import InMemoryCatalogStore
from catalog_rag.retrieval.category import (
    CategoryDetector,
    format_categories,
    parse_category_answer,
    select_category_records,
)
from catalog_rag.types import Category, CategoryMatch, Fallback, LiteProductRecord, Ok


class _FakeCompletion:
    def __init__(self, answer: str = "", fail: bool = False) -> None:
        self.answer = answer
        self.fail = fail
        self.calls: list[tuple[str, int, float]] = []

    async def complete(self, prompt: str, *, max_tokens: int, temperature: float) -> str:
        self.calls.append((prompt, max_tokens, temperature))
        if self.fail:
            raise ConnectionError("provider unreachable")
        return self.answer


def _store() -> InMemoryCatalogStore:
    store = InMemoryCatalogStore()
    store.add_category(Category(id="c-shoes", tenant_id="t1", name="Shoes", description="all footwear"))
    store.add_category(Category(id="c-bags", tenant_id="t1", name="Bags"))
    store.add_category(Category(id="c-old", tenant_id="t1", name="Archive"), active=False)
    store.add_category(Category(id="c-other", tenant_id="t2", name="Scarves"))
    return store


def _record(product_id: str, name: str, category_id: str | None, tenant_id: str = "t1") -> LiteProductRecord:
    return LiteProductRecord(
        id=product_id,
        tenant_id=tenant_id,
        name=name,
        searchable_text=name.lower(),
        price=10.0,
        category_id=category_id,
    )


@pytest.mark.asyncio
async def test_detects_named_category_from_json_answer() -> None:
    provider = _FakeCompletion(
        '```json\n{"categoryName": "shoes", "confidence": 0.9, "reasoning": "generic request"}\n```'
    )
    detector = CategoryDetector(_store(), provider, CategoryConfig())

    outcome = await detector.detect("show me your shoes", "t1")

    assert isinstance(outcome, Ok)
    assert outcome.value.category.id == "c-shoes"
    assert outcome.value.confidence == 0.9
    prompt, max_tokens, temperature = provider.calls[0]
    assert "1. Bags\n2. Shoes (all footwear)" in prompt
    assert "Archive" not in prompt and "Scarves" not in prompt
    assert (max_tokens, temperature) == (500, 0.1)


@pytest.mark.asyncio
async def test_all_marker_selects_the_whole_catalog() -> None:
    detector = CategoryDetector(_store(), _FakeCompletion('{"categoryName": "all", "confidence": 0.8}'))

    outcome = await detector.detect("what do you sell?", "t1")

    assert outcome == Ok(CategoryMatch(category=None, confidence=0.8))


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "answer",
    [
        '{"categoryName": null, "confidence": 0.95}',
        '{"categoryName": "Shoes", "confidence": 0.59}',
        '{"categoryName": "Shoes", "confidence": "high"}',
        '{"categoryName": "Hats", "confidence": 0.9}',
        "I think they want shoes",
        "[1, 2]",
    ],
)
async def test_unusable_answers_fall_back(answer: str) -> None:
    detector = CategoryDetector(_store(), _FakeCompletion(answer))

    outcome = await detector.detect("nike air max 90", "t1")

    assert isinstance(outcome, Fallback)
    assert outcome.value is None


@pytest.mark.asyncio
async def test_detection_is_skipped_without_provider_or_categories() -> None:
    provider = _FakeCompletion('{"categoryName": "Shoes", "confidence": 0.9}')

    no_provider = await CategoryDetector(_store(), None).detect("shoes", "t1")
    no_categories = await CategoryDetector(_store(), provider).detect("shoes", "t3")

    assert no_provider == Fallback(None, reason="no completion provider")
    assert no_categories == Fallback(None, reason="no categories")
    assert provider.calls == []


@pytest.mark.asyncio
async def test_provider_error_falls_back() -> None:
    detector = CategoryDetector(_store(), _FakeCompletion(fail=True))

    outcome = await detector.detect("shoes", "t1")

    assert isinstance(outcome, Fallback)
    assert "provider unreachable" in outcome.reason


@pytest.mark.asyncio
async def test_categories_are_cached_until_invalidated() -> None:
    store = _store()
    detector = CategoryDetector(store, _FakeCompletion('{"categoryName": "Bags", "confidence": 0.7}'))

    await detector.detect("bags", "t1")
    await detector.detect("any bags?", "t1")
    assert store.category_loads == 1

    assert detector.invalidate_tenant("t1") == 1
    await detector.detect("bags", "t1")
    assert store.category_loads == 2


def test_select_category_records_filters_and_orders_by_name() -> None:
    shoes = Category(id="c-shoes", tenant_id="t1", name="Shoes")
    records = [
        _record("p1", "Running Shoe", "c-shoes"),
        _record("p2", "Leather Bag", "c-bags"),
        _record("p3", "Canvas Shoe", "c-shoes"),
        _record("p4", "Foreign Shoe", "c-shoes", tenant_id="t2"),
    ]

    by_category = select_category_records(CategoryMatch(shoes, 0.9), records, "t1", limit=10)
    everything = select_category_records(CategoryMatch(None, 0.9), records, "t1", limit=2)

    assert [record.id for record in by_category] == ["p3", "p1"]
    assert [record.id for record in everything] == ["p3", "p2"]


def test_answer_parsing_and_category_listing() -> None:
    assert parse_category_answer('Sure! {"categoryName": "Bags"} hope it helps') == {"categoryName": "Bags"}
    assert parse_category_answer("{not json}") is None
    assert format_categories([Category(id="c1", tenant_id="t1", name="Bags")]) == "1. Bags"
