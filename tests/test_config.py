"""Tests for business configuration, settings and request context."""

from datetime import datetime
from pathlib import Path

import pytest
from pydantic import ValidationError

from src.engine.config import (
    BUSINESS_CONFIGS,
    BusinessConfig,
    EngineSettings,
    SignalWeights,
    get_business_config,
)
from src.engine.context import build_context, time_of_day_for
from src.engine.exceptions import InvalidWeightsError, UnknownBusinessTypeError


@pytest.mark.parametrize("business_type", sorted(BUSINESS_CONFIGS))
def test_predefined_weights_sum_to_one(business_type):
    weights = get_business_config(business_type).weights.as_dict()

    assert sum(weights.values()) == pytest.approx(1.0, abs=0.01)


def test_weights_must_sum_to_one():
    with pytest.raises(ValidationError):
        SignalWeights(thompson_sampling=0.5, trending=0.5, affinity=0.5, collaborative=0.5)


def test_weights_from_mapping_rejects_unknown_signal():
    with pytest.raises(InvalidWeightsError):
        SignalWeights.from_mapping(
            {"thompson_sampling": 0.5, "trending": 0.5, "affinity": 0.0, "popularity": 0.0}
        )


def test_weights_from_mapping():
    weights = SignalWeights.from_mapping(
        {"thompson_sampling": 0.25, "trending": 0.25, "affinity": 0.25, "collaborative": 0.25}
    )

    assert weights.collaborative == 0.25


def test_unknown_business_type():
    with pytest.raises(UnknownBusinessTypeError) as exc_info:
        get_business_config("spaceships")

    assert "grocery" in exc_info.value.details["available"]


def test_pharmacy_does_not_explore():
    assert get_business_config("pharmacy").exploration_enabled is False


def test_from_dict_merges_with_predefined_vertical():
    config = BusinessConfig.from_dict({"type": "grocery", "diversity_factor": 0.1})

    assert config.diversity_factor == 0.1
    assert config.weights == get_business_config("grocery").weights
    assert config.trending_window_hours == 168


def test_from_dict_custom_vertical():
    config = BusinessConfig.from_dict(
        {
            "type": "flowers",
            "weights": {
                "thompson_sampling": 0.1,
                "trending": 0.6,
                "affinity": 0.1,
                "collaborative": 0.2,
            },
            "unused_key": True,
        }
    )

    assert config.type == "flowers"
    assert config.weights.trending == 0.6
    assert config.exploration_enabled is True


def test_settings_from_env(monkeypatch, tmp_path):
    monkeypatch.setenv("SIGNALRANK_BUSINESS_TYPE", "books")
    monkeypatch.setenv("SIGNALRANK_SCORER_TIMEOUT", "0.5")
    monkeypatch.setenv("SIGNALRANK_STATS_SNAPSHOT_EVERY", "25")
    monkeypatch.setenv("SIGNALRANK_DATA_DIR", str(tmp_path))
    monkeypatch.delenv("SIGNALRANK_STATS_SNAPSHOT", raising=False)

    settings = EngineSettings.from_env()

    assert settings.business_type == "books"
    assert settings.scorer_timeout_seconds == 0.5
    assert settings.data_dir == Path(tmp_path)
    assert settings.stats_snapshot_path is None
    assert settings.candidate_batch_size == 500
    assert settings.stats_snapshot_every == 25


@pytest.mark.parametrize(
    "hour,expected",
    [(7, "morning"), (12, "afternoon"), (18, "evening"), (23, "night"), (2, "morning")],
)
def test_time_of_day_buckets(hour, expected):
    assert time_of_day_for(datetime(2024, 6, 5, hour)) == expected


def test_build_context_derives_time_fields():
    saturday = datetime(2024, 6, 8, 19, 30)

    context = build_context("s-1", customer_id="", current_time=saturday, cart_items=["1", ""])

    assert context.is_weekend is True
    assert context.day_of_week == 5
    assert context.time_of_day == "evening"
    assert context.customer_id is None
    assert context.is_anonymous
    assert context.cart_items == ["1"]
