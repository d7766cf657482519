from catalog_rag.config import ExpansionConfig
from catalog_rag.retrieval.expansion import is_vague_query
from catalog_rag.retrieval.rerank import is_ambiguous_ranking, parse_permutation

_CONFIG = ExpansionConfig()


def _vague(query: str, known_names: tuple[str, ...] = ()) -> bool:
    return is_vague_query(
        query,
        generic_markers=_CONFIG.generic_markers,
        brand_tokens=_CONFIG.brand_tokens,
        known_names=known_names,
    )


def test_short_queries_are_vague() -> None:
    assert _vague("shoes?")
    assert _vague("عايز كوتشي")


def test_long_queries_with_a_brand_are_specific() -> None:
    assert not _vague("nike running shoes for men size")
    assert not _vague("nike shoes")
    assert not _vague("كوتشي نايك")


def test_known_product_names_make_a_query_specific() -> None:
    assert not _vague("red shoe", known_names=("Red Shoe",))
    assert _vague("what price", known_names=("Hat",))


def test_four_word_queries_need_a_generic_marker() -> None:
    assert not _vague("leather shoes for running")
    assert _vague("show me leather shoes")


def test_more_than_four_words_is_never_vague() -> None:
    assert not _vague("do you have any leather shoes")
    assert not _vague("   ")


def test_close_scores_are_ambiguous() -> None:
    assert is_ambiguous_ranking([0.05, 0.049])
    assert is_ambiguous_ranking([5.0, 4.5, 1.0])


def test_clear_winner_is_not_ambiguous() -> None:
    assert not is_ambiguous_ranking([0.9, 0.1])
    assert not is_ambiguous_ranking([10.0, 0.0])
    assert not is_ambiguous_ranking([0.5])


def test_parse_permutation_ignores_duplicates_and_out_of_range() -> None:
    assert parse_permutation("2, 0, 7, 2, 1", 3) == [2, 0, 1]
    assert parse_permutation("Ranking: [3] then [1]", 4) == [3, 1]
    assert parse_permutation("no idea", 4) == []
