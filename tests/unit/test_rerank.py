import pytest

from catalog_rag.config import RerankConfig
from catalog_rag.retrieval.rerank import ReRanker
from catalog_rag.types import Fallback, FullProductRecord, Ok, RankedProduct


def _ranked(name: str, rrf_score: float) -> RankedProduct:
    product = FullProductRecord(
        id=name.lower().replace(" ", "-"), tenant_id="t1", name=name, price=100.0, category="shoes"
    )
    return RankedProduct(
        product=product,
        score=1.0,
        rrf_score=rrf_score,
        source="text",
        price_range=None,
        sizes=(),
        colors=(),
        available=True,
        image_urls=(),
        summary=name,
    )


class _FakeCompletion:
    def __init__(self, answer: str = "", fail: bool = False) -> None:
        self.answer = answer
        self.fail = fail
        self.prompts: list[str] = []

    async def complete(self, prompt: str, *, max_tokens: int, temperature: float) -> str:
        self.prompts.append(prompt)
        if self.fail:
            raise ConnectionError("provider unreachable")
        return self.answer


def _results() -> list[RankedProduct]:
    return [
        _ranked("Running Shoe", 0.0325),
        _ranked("Leather Shoe", 0.0322),
        _ranked("Canvas Shoe", 0.0317),
        _ranked("Kids Shoe", 0.0161),
    ]


@pytest.mark.asyncio
async def test_ambiguous_results_are_reordered_by_provider() -> None:
    provider = _FakeCompletion("Ranking: 2,0")
    reranker = ReRanker(provider, RerankConfig())

    outcome = await reranker.maybe_rerank("canvas shoes", _results())

    assert isinstance(outcome, Ok)
    assert [item.product.name for item in outcome.value] == [
        "Canvas Shoe",
        "Running Shoe",
        "Leather Shoe",
        "Kids Shoe",
    ]
    assert "[0] Name: Running Shoe, Price: 100.0, Category: shoes" in provider.prompts[0]


@pytest.mark.asyncio
async def test_three_or_fewer_results_skip_reranking() -> None:
    provider = _FakeCompletion("2,1,0")

    outcome = await ReRanker(provider).maybe_rerank("shoes", _results()[:3])

    assert isinstance(outcome, Fallback)
    assert provider.prompts == []


@pytest.mark.asyncio
async def test_provider_failure_keeps_original_order() -> None:
    results = _results()

    outcome = await ReRanker(_FakeCompletion(fail=True)).rerank("shoes", results)

    assert isinstance(outcome, Fallback)
    assert outcome.value == results


@pytest.mark.asyncio
async def test_unparsable_answer_keeps_original_order() -> None:
    results = _results()

    outcome = await ReRanker(_FakeCompletion("the first one")).rerank("shoes", results)

    assert isinstance(outcome, Fallback)
    assert outcome.value == results


@pytest.mark.asyncio
async def test_only_the_shortlist_is_sent_and_tail_is_kept() -> None:
    provider = _FakeCompletion("1,0")
    reranker = ReRanker(provider, RerankConfig(max_candidates=2))

    outcome = await reranker.rerank("shoes", _results())

    assert [item.product.name for item in outcome.value] == [
        "Leather Shoe",
        "Running Shoe",
        "Canvas Shoe",
        "Kids Shoe",
    ]
    assert "[2]" not in provider.prompts[0]
