"""Tests for collaborative filtering with temporal decay."""

import asyncio
import math
from datetime import timedelta

import pytest
from conftest import NOW, order_lines

from src.engine.collaborative import CollaborativeScorer, calculate_optimal_decay_rate
from src.engine.sources import DataFrameOrderHistory


@pytest.fixture
def history():
    """c1: A today, B 20 days ago. c2: A, C. c3: B, C. c4: D."""
    return DataFrameOrderHistory(
        order_lines(
            [
                ("o1", "c1", "A", 1, NOW),
                ("o2", "c1", "B", 1, NOW - timedelta(days=20)),
                ("o3", "c2", "A", 1, NOW - timedelta(days=2)),
                ("o3", "c2", "C", 1, NOW - timedelta(days=2)),
                ("o4", "c3", "B", 1, NOW - timedelta(days=3)),
                ("o4", "c3", "C", 1, NOW - timedelta(days=3)),
                ("o5", "c4", "D", 2, NOW - timedelta(days=1)),
                ("o6", None, "D", 1, NOW),
            ]
        )
    )


@pytest.fixture
def scorer(history):
    return CollaborativeScorer(history, decay_rate=0.05, clock=lambda: NOW)


def test_anonymous_customer_is_neutral(scorer):
    scores = asyncio.run(scorer.calculate_scores(["A", "B"], None))

    assert scores == {"A": 0.5, "B": 0.5}


def test_customer_without_history_is_neutral(scorer):
    scores = asyncio.run(scorer.calculate_scores(["A", "C"], "stranger"))

    assert scores == {"A": 0.5, "C": 0.5}


def test_profile_applies_temporal_decay(scorer):
    profile = asyncio.run(scorer.get_customer_profile("c1"))

    assert profile.preferences == {"A": 1.0, "B": 1.0}
    assert profile.recency_weighted["A"] == pytest.approx(1.0)
    assert profile.recency_weighted["B"] == pytest.approx(math.exp(-1.0))


def test_scores_follow_item_similarity(scorer):
    scores = asyncio.run(scorer.calculate_scores(["A", "B", "C", "D", "NEW"], "c1"))

    # A was ordered heavily and recently.
    assert scores["A"] == pytest.approx(0.3)
    # C shares half its buyers with both A and B.
    assert scores["C"] == pytest.approx((0.5 * 1.0 + 0.5 * math.exp(-1.0)) / 1.0)
    # B is similar to A and to itself.
    assert scores["B"] == pytest.approx((0.5 * 1.0 + 1.0 * math.exp(-1.0)) / 1.5)
    # D shares no buyers; NEW has never been ordered.
    assert scores["D"] == 0.5
    assert scores["NEW"] == 0.5


def test_decay_rate_change_rebuilds_profiles(scorer):
    asyncio.run(scorer.get_customer_profile("c1"))
    scorer.set_decay_rate(0.1)

    profile = asyncio.run(scorer.get_customer_profile("c1"))

    assert profile.recency_weighted["B"] == pytest.approx(math.exp(-2.0))


def test_find_similar_customers(scorer):
    similar = asyncio.run(scorer.find_similar_customers("c1"))

    assert [s["customer_id"] for s in similar] == ["c2", "c3"]
    assert all(s["similarity"] == pytest.approx(1.0) for s in similar)


def test_customer_based_recommendations(scorer):
    recommendations = asyncio.run(scorer.get_customer_based_recommendations("c1"))

    assert recommendations == [{"item_id": "C", "score": 1.0}]


def test_similar_customers_for_unknown_customer(scorer):
    assert asyncio.run(scorer.find_similar_customers("stranger")) == []
    assert asyncio.run(scorer.get_customer_based_recommendations("stranger")) == []


@pytest.mark.parametrize(
    "business_type,expected",
    [("food", 0.1), ("fashion", 0.05), ("electronics", 0.02), ("books", 0.03), ("toys", 0.05)],
)
def test_optimal_decay_rate(business_type, expected):
    assert calculate_optimal_decay_rate(business_type) == expected


def test_timezone_aware_order_history():
    history = DataFrameOrderHistory(
        order_lines(
            [
                ("o1", "c1", "A", 1, "2024-06-05T12:00:00Z"),
                ("o2", "c1", "B", 1, "2024-05-16T14:00:00+02:00"),
                ("o3", "c2", "A", 1, "2024-06-03T12:00:00Z"),
                ("o3", "c2", "C", 1, "2024-06-03T12:00:00Z"),
            ]
        )
    )
    scorer = CollaborativeScorer(history, decay_rate=0.05, clock=lambda: NOW)

    profile = asyncio.run(scorer.get_customer_profile("c1"))
    similar = asyncio.run(scorer.find_similar_customers("c1"))
    recommended = asyncio.run(scorer.get_customer_based_recommendations("c1"))

    assert profile.recency_weighted["A"] == pytest.approx(1.0)
    assert profile.recency_weighted["B"] == pytest.approx(math.exp(-1.0))
    assert [s["customer_id"] for s in similar] == ["c2"]
    assert [r["item_id"] for r in recommended] == ["C"]
