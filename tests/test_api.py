"""Tests for the FastAPI application endpoints.

This module contains integration tests for the SignalRank API endpoints,
including health checks, ranking, feedback and trending.
"""

import asyncio

import pytest
from fastapi.testclient import TestClient

from src.api.main import app
from src.api.metrics import metrics_service
from src.api.state import build_runtime, get_runtime, persist_statistics, set_runtime
from src.engine.config import EngineSettings

# Create test client
client = TestClient(app)


@pytest.fixture(autouse=True)
def runtime():
    """Engine over empty sources, rebuilt for every test."""
    metrics_service.reset()
    set_runtime(build_runtime(EngineSettings()))
    yield get_runtime()
    set_runtime(None)
    metrics_service.reset()


def candidate(item_id, category="Curry", **kwargs):
    return {"id": item_id, "name": f"Item {item_id}", "category": category, **kwargs}


def test_ping_endpoint():
    """Test that the /ping endpoint returns correct status and JSON."""
    response = client.get("/ping")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_status_endpoint():
    response = client.get("/status")

    assert response.status_code == 200
    data = response.json()

    assert data["engine_loaded"] is True
    assert data["business_type"] == "food-delivery"
    assert set(data["weights"]) == {
        "thompson_sampling",
        "trending",
        "affinity",
        "collaborative",
    }
    assert data["catalog_size"] == 0
    assert data["order_lines"] == 0
    assert isinstance(data["timestamp_last_loaded"], str)


def test_recommend_with_inline_candidates():
    payload = {
        "session_id": "s-1",
        "cart_items": ["A"],
        "limit": 2,
        "candidates": [
            candidate("A"),
            candidate("B", metadata={"chef": "Asha"}),
            candidate("C"),
            candidate("D", is_available=False),
        ],
    }

    response = client.post("/recommendations", json=payload)

    assert response.status_code == 200
    data = response.json()
    assert data["session_id"] == "s-1"
    assert data["business_type"] == "food-delivery"
    assert data["experiment_group"] in ("A", "B", "C")

    recs = data["recommendations"]
    assert len(recs) == 2
    assert {r["item_id"] for r in recs} == {"B", "C"}
    assert [r["rank"] for r in recs] == [1, 2]
    assert recs[0]["score"] >= recs[1]["score"]
    for rec in recs:
        assert 0.0 <= rec["score"] <= 1.0
        assert set(rec["signals"]) >= {"thompson_sampling", "trending", "affinity", "collaborative"}
    by_id = {r["item_id"]: r for r in recs}
    assert by_id["B"]["metadata"] == {"chef": "Asha"}


def test_recommend_records_impressions(runtime):
    payload = {"session_id": "s-1", "candidates": [candidate("A"), candidate("B")]}

    response = client.post("/recommendations", json=payload)

    assert response.status_code == 200
    counters = asyncio.run(runtime.store.all_counters())
    assert {c.item_id: c.impressions for c in counters} == {"A": 1, "B": 1}
    assert metrics_service.get_metrics()["ranking_count"] == 1


def test_recommend_from_empty_catalog_returns_empty_list():
    response = client.post("/recommendations", json={"session_id": "s-1"})

    assert response.status_code == 200
    data = response.json()
    assert data["recommendations"] == []
    assert data["experiment_group"] is None
    assert metrics_service.get_metrics()["empty_rankings"] == 1


def test_recommend_validates_limit():
    response = client.post("/recommendations", json={"session_id": "s-1", "limit": 0})

    assert response.status_code == 422


def test_feedback_accepted(runtime):
    response = client.post(
        "/recommendations/feedback", json={"item_id": "A", "action": "order"}
    )

    assert response.status_code == 202
    assert response.json() == {"status": "accepted", "item_id": "A", "action": "order"}

    counters = asyncio.run(runtime.store.get("A"))
    assert (counters.impressions, counters.conversions) == (1, 1)
    assert metrics_service.get_metrics()["feedback_events"] == {"order": 1}


def test_trending_on_empty_history():
    response = client.get("/trending", params={"window": "last_3_hours", "limit": 5})

    assert response.status_code == 200
    assert response.json() == []


def test_breakout_on_empty_history():
    response = client.get("/trending/breakout")

    assert response.status_code == 200
    assert response.json() == []


def test_metrics_endpoint():
    client.post("/recommendations", json={"session_id": "s-1", "candidates": [candidate("A")]})

    response = client.get("/metrics")

    assert response.status_code == 200
    data = response.json()
    assert data["ranking_count"] == 1
    assert data["empty_rankings"] == 0
    assert data["average_latency_ms"] >= 0


def test_request_id_header_is_echoed():
    response = client.get("/ping", headers={"X-Request-ID": "req-123"})

    assert response.headers["X-Request-ID"] == "req-123"


def test_request_id_generated_when_missing():
    response = client.get("/ping")

    assert response.headers.get("X-Request-ID")


def test_statistics_survive_runtime_rebuild(tmp_path):
    settings = EngineSettings(stats_snapshot_path=tmp_path / "stats.joblib")
    set_runtime(build_runtime(settings))
    asyncio.run(get_runtime().recorder.record("X", "order"))

    assert persist_statistics() is True

    set_runtime(build_runtime(settings))
    counters = asyncio.run(get_runtime().store.get("X"))
    assert (counters.impressions, counters.conversions) == (1, 1)


def test_persist_statistics_without_snapshot_path():
    assert persist_statistics() is False


def test_shutdown_writes_statistics_snapshot(tmp_path):
    snapshot = tmp_path / "stats.joblib"
    set_runtime(build_runtime(EngineSettings(stats_snapshot_path=snapshot)))

    with TestClient(app) as lifespan_client:
        response = lifespan_client.post(
            "/recommendations/feedback", json={"item_id": "X", "action": "order"}
        )
        assert response.status_code == 202
        assert not snapshot.exists()

    assert snapshot.exists()
    restored = build_runtime(EngineSettings(stats_snapshot_path=snapshot))
    assert asyncio.run(restored.store.get("X")).conversions == 1
