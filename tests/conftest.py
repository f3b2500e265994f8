"""Shared fixtures for the SignalRank test suite."""

import sys
from datetime import datetime, timedelta
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Set

import pandas as pd
import pytest

# Add project root to Python path for imports
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from src.engine.models import CandidateItem
from src.engine.sources import DataFrameOrderHistory, OrderHistorySource
from src.engine.utils import build_interaction_matrix

NOW = datetime(2024, 6, 5, 12, 0, 0)


def make_item(item_id: str, category: str = "Curry", **kwargs) -> CandidateItem:
    return CandidateItem(id=item_id, name=f"Item {item_id}", category=category, **kwargs)


def order_lines(rows: Iterable[tuple]) -> pd.DataFrame:
    """Build an order-line frame from ``(order_id, customer_id, item_id,
    quantity, created_at)`` tuples; status defaults to completed."""
    records = []
    for row in rows:
        order_id, customer_id, item_id, quantity, created_at = row[:5]
        status = row[5] if len(row) > 5 else "completed"
        records.append(
            {
                "order_id": order_id,
                "customer_id": customer_id,
                "item_id": item_id,
                "quantity": quantity,
                "created_at": created_at,
                "status": status,
            }
        )
    return pd.DataFrame(
        records,
        columns=["order_id", "customer_id", "item_id", "quantity", "created_at", "status"],
    )


class BasketHistory(OrderHistorySource):
    """Order history made of bare baskets; counts calls for cache tests."""

    def __init__(self, baskets: List[Set[str]], fail: bool = False):
        self.baskets = baskets
        self.fail = fail
        self.basket_calls = 0

    async def get_order_counts(self, item_ids, start, end) -> Dict[str, int]:
        return {}

    async def get_baskets(self, containing=None, limit=1000) -> List[Set[str]]:
        self.basket_calls += 1
        if self.fail:
            raise ConnectionError("order store unreachable")
        wanted = set(containing) if containing is not None else None
        baskets = [b for b in self.baskets if wanted is None or b & wanted]
        return [set(b) for b in baskets[:limit]]

    async def get_customer_orders(self, customer_id, limit=100):
        return []

    async def get_customer_item_matrix(self):
        lines = pd.DataFrame(columns=["customer_id", "item_id"])
        return build_interaction_matrix(lines)


class CountingHistory(OrderHistorySource):
    """Serves fixed window counts keyed by window start."""

    def __init__(self, counts_by_start: Optional[Dict[datetime, Dict[str, int]]] = None,
                 fail: bool = False):
        self.counts_by_start = counts_by_start or {}
        self.fail = fail
        self.count_calls = 0

    async def get_order_counts(self, item_ids, start, end) -> Dict[str, int]:
        self.count_calls += 1
        if self.fail:
            raise TimeoutError("order counts query timed out")
        counts = self.counts_by_start.get(start, {})
        return {i: counts[i] for i in item_ids if i in counts}

    async def get_baskets(self, containing=None, limit=1000):
        return []

    async def get_customer_orders(self, customer_id, limit=100):
        return []

    async def get_customer_item_matrix(self):
        return build_interaction_matrix(pd.DataFrame(columns=["customer_id", "item_id"]))


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def empty_history() -> DataFrameOrderHistory:
    return DataFrameOrderHistory(order_lines([]))


@pytest.fixture
def trending_history() -> DataFrameOrderHistory:
    """A: 10 now / 2 before, B: 3 / 3, C: 0 / 5 over 6-hour windows."""
    current = NOW - timedelta(hours=1)
    previous = NOW - timedelta(hours=7)
    return DataFrameOrderHistory(
        order_lines(
            [
                ("o1", "c1", "A", 10, current),
                ("o2", "c2", "A", 2, previous),
                ("o3", "c3", "B", 3, current),
                ("o4", "c3", "B", 3, previous),
                ("o5", None, "C", 5, previous),
                # Outside both windows and cancelled lines are ignored.
                ("o6", "c1", "C", 50, NOW - timedelta(hours=30)),
                ("o7", "c2", "A", 40, current, "cancelled"),
            ]
        )
    )
