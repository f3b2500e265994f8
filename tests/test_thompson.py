"""Tests for the Thompson sampling scorer."""

import asyncio

import pytest

from src.engine.exceptions import StatisticsStoreError
from src.engine.sampling import BetaSampler
from src.engine.stats_store import InMemoryStatisticsStore
from src.engine.thompson import (
    ThompsonSamplingEngine,
    calculate_regret,
    optimal_exploration_rate,
)


class BrokenStore(InMemoryStatisticsStore):
    async def get_many(self, item_ids):
        raise ConnectionError("statistics store down")

    async def increment(self, item_id, impressions=0, conversions=0):
        raise ConnectionError("statistics store down")


@pytest.fixture
def store():
    return InMemoryStatisticsStore()


@pytest.fixture
def engine(store):
    return ThompsonSamplingEngine(store, sampler=BetaSampler(seed=42))


def test_sample_scores_returns_one_score_per_item(engine):
    scores = asyncio.run(engine.sample_scores(["A", "B", "C", "A"]))

    assert set(scores) == {"A", "B", "C"}
    assert all(0.0 <= s <= 1.0 for s in scores.values())


def test_scoring_does_not_write_statistics(engine, store):
    asyncio.run(engine.sample_scores(["A", "B"]))

    assert asyncio.run(store.all_counters()) == []


def test_store_read_failure_falls_back_to_prior(caplog):
    engine = ThompsonSamplingEngine(BrokenStore(), sampler=BetaSampler(seed=1))

    arms = asyncio.run(engine.get_or_create_arms(["A", "B"]))
    scores = asyncio.run(engine.sample_scores(["A", "B"]))

    assert all(arm.alpha == 1 and arm.beta == 1 for arm in arms.values())
    assert set(scores) == {"A", "B"}
    assert "using uninformed priors" in caplog.text


def test_record_impression_and_conversion(engine, store):
    async def scenario():
        await engine.record_impression("A")
        await engine.record_impression("A")
        await engine.record_conversion("A")
        return await store.get("A")

    counters = asyncio.run(scenario())

    assert counters.impressions == 3
    assert counters.conversions == 1


def test_conversion_invalidates_cached_arm(engine):
    async def scenario():
        before = (await engine.get_or_create_arms(["A"]))["A"]
        await engine.record_conversion("A")
        after = (await engine.get_or_create_arms(["A"]))["A"]
        return before, after

    before, after = asyncio.run(scenario())

    assert (before.alpha, before.beta) == (1, 1)
    assert (after.alpha, after.beta) == (2, 1)


def test_write_failure_raises_store_error():
    engine = ThompsonSamplingEngine(BrokenStore())

    with pytest.raises(StatisticsStoreError):
        asyncio.run(engine.record_impression("A"))


def test_well_observed_winner_samples_higher(store):
    engine = ThompsonSamplingEngine(store, sampler=BetaSampler(seed=3))

    async def scenario():
        await store.increment("good", impressions=1000, conversions=400)
        await store.increment("bad", impressions=1000, conversions=20)
        wins = 0
        for _ in range(200):
            scores = await engine.sample_scores(["good", "bad"])
            wins += scores["good"] > scores["bad"]
        return wins

    assert asyncio.run(scenario()) == 200


def test_stats_and_top_performers(engine, store):
    async def scenario():
        await store.increment("A", impressions=10, conversions=5)
        await store.increment("B", impressions=10, conversions=1)
        await store.increment("C", impressions=2, conversions=2)
        stats = await engine.get_stats(["A"])
        top = await engine.get_top_performers(limit=2)
        return stats, top

    stats, top = asyncio.run(scenario())

    assert stats[0].impressions == 10
    assert stats[0].conversions == 5
    assert stats[0].conversion_rate == pytest.approx(0.5)
    assert stats[0].expected_value == pytest.approx(6 / 12)
    assert [s.item_id for s in top] == ["C", "A"]


def test_reset_all_clears_store_and_cache(engine, store):
    async def scenario():
        await store.increment("A", impressions=10, conversions=9)
        await engine.get_or_create_arms(["A"])
        await engine.reset_all()
        return (await engine.get_or_create_arms(["A"]))["A"]

    arm = asyncio.run(scenario())

    assert (arm.alpha, arm.beta) == (1, 1)


@pytest.mark.parametrize(
    "catalog_size,expected",
    [(100, 0.10), (4, 0.30), (10_000, 0.05), (1, 0.30), (0, 0.30)],
)
def test_optimal_exploration_rate(catalog_size, expected):
    assert optimal_exploration_rate(catalog_size) == pytest.approx(expected)


def test_calculate_regret():
    assert calculate_regret(0.3, 0.1, 100) == pytest.approx(20.0)
    assert calculate_regret(0.2, 0.2, 50) == 0.0
