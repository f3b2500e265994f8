"""Tests for cart affinity mining."""

import asyncio

import pytest
from conftest import BasketHistory, make_item

from src.engine.affinity import (
    AffinityScorer,
    get_complementary_categories,
    rule_strength,
)
from src.engine.sources import InMemoryCatalog

BASKETS = [{"A", "B"}] * 6 + [{"A", "C"}] * 2 + [{"D"}] * 2


@pytest.fixture
def history():
    return BasketHistory(BASKETS)


@pytest.fixture
def scorer(history):
    catalog = InMemoryCatalog([make_item(i) for i in ("A", "B", "C", "D")])
    return AffinityScorer(history, catalog=catalog)


def test_empty_cart_is_neutral(scorer):
    scores = asyncio.run(scorer.calculate_affinity_scores(["A", "B", "D"], []))

    assert scores == {"A": 0.5, "B": 0.5, "D": 0.5}


def test_co_occurring_items_scored_by_confidence_and_lift(scorer):
    scores = asyncio.run(scorer.calculate_affinity_scores(["B", "C", "D"], ["A"]))

    # Of the 8 baskets holding A: B appears in 6, C in 2.
    assert scores["B"] == pytest.approx(0.75)
    assert scores["C"] == pytest.approx(0.25)
    assert scores["D"] == 0.5


def test_items_without_history_never_score_zero(scorer):
    scores = asyncio.run(scorer.calculate_affinity_scores(["NEW"], ["A"]))

    assert scores == {"NEW": 0.5}


def test_cart_items_score_zero(scorer):
    scores = asyncio.run(scorer.calculate_affinity_scores(["A"], ["A"]))

    assert scores["A"] == 0.0


def test_rules_carry_support_confidence_and_lift(scorer):
    rules = asyncio.run(scorer.get_rules_for_items(["A"]))
    top = rules[0]

    assert (top.antecedent, top.consequent) == (["A"], ["B"])
    assert top.support == pytest.approx(0.75)
    assert top.confidence == pytest.approx(0.75)
    assert top.lift == pytest.approx(1.0)
    assert top.order_count == 6
    assert rule_strength(top) == pytest.approx(0.75)


def test_rules_are_cached(scorer, history):
    asyncio.run(scorer.get_rules_for_items(["A"]))
    asyncio.run(scorer.get_rules_for_items(["A"]))

    assert history.basket_calls == 1


def test_thresholds_filter_weak_rules(scorer):
    scorer.set_thresholds(min_support=0.01, min_confidence=0.5)

    scores = asyncio.run(scorer.calculate_affinity_scores(["B", "C"], ["A"]))

    assert scores["B"] == pytest.approx(0.75)
    assert scores["C"] == 0.5


def test_source_failure_yields_neutral_scores():
    scorer = AffinityScorer(BasketHistory(BASKETS, fail=True))

    scores = asyncio.run(scorer.calculate_affinity_scores(["B", "C"], ["A"]))

    assert scores == {"B": 0.5, "C": 0.5}


def test_complete_meal_suggestions(scorer):
    suggestions = asyncio.run(scorer.get_complete_meal_suggestions(["A"]))

    assert [s.item_id for s in suggestions] == ["B"]
    assert suggestions[0].rules[0].consequent == ["B"]
    assert asyncio.run(scorer.get_complete_meal_suggestions([])) == []


def test_also_bought_suggestions(scorer):
    suggestions = asyncio.run(scorer.get_also_bought_suggestions("A"))

    assert [s.item_id for s in suggestions] == ["B"]
    assert suggestions[0].score == pytest.approx(0.75)


def test_frequent_bundles(scorer):
    bundles = asyncio.run(scorer.get_frequent_bundles())

    assert len(bundles) == 1
    assert bundles[0].items == ["A", "B"]
    assert bundles[0].count == 6
    assert bundles[0].support == pytest.approx(0.6)


def test_frequent_triples():
    baskets = [{"A", "B", "C"}] * 4 + [{"A", "B"}] * 2
    scorer = AffinityScorer(BasketHistory(baskets))

    bundles = scorer.find_frequent_itemsets(baskets, min_size=2, max_size=3)
    by_items = {tuple(b.items): b.count for b in bundles}

    assert by_items[("A", "B")] == 6
    assert by_items[("A", "B", "C")] == 4
    assert scorer.find_frequent_itemsets(baskets, min_size=3, max_size=3)[0].items == [
        "A",
        "B",
        "C",
    ]


def test_complementary_categories():
    assert "Raita" in get_complementary_categories("Biryani")
    assert get_complementary_categories("Unknown") == []
