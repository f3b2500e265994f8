"""External data sources consumed by the engine.

The engine never owns catalog or order storage. It talks to two narrow
interfaces:

* ``CandidateSource`` - available catalog items, optionally by category.
* ``OrderHistorySource`` - aggregated order quantities, order baskets and
  customer histories.

``InMemoryCatalog`` and ``DataFrameOrderHistory`` are reference
implementations backed by Python lists and a pandas DataFrame; they are what
the API and CLI use when pointed at CSV exports.
"""

import abc
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

import pandas as pd
from scipy.sparse import csr_matrix

from src.engine.models import CandidateItem
from src.engine.utils import build_interaction_matrix

# Configure module logger
logger = logging.getLogger(__name__)

DEFAULT_CANDIDATE_LIMIT = 500
EXCLUDED_ORDER_STATUSES = ("cancelled", "refunded")
ORDER_COLUMNS = ["order_id", "customer_id", "item_id", "quantity", "created_at", "status"]


@dataclass(frozen=True)
class CustomerOrder:
    """One historical order of a customer."""

    order_id: str
    created_at: datetime
    items: Dict[str, int] = field(default_factory=dict)


class CandidateSource(abc.ABC):
    @abc.abstractmethod
    async def fetch_candidates(
        self, category: Optional[str] = None, limit: int = DEFAULT_CANDIDATE_LIMIT
    ) -> List[CandidateItem]:
        """Return available items, optionally restricted to one category."""


class OrderHistorySource(abc.ABC):
    @abc.abstractmethod
    async def get_order_counts(
        self, item_ids: Iterable[str], start: datetime, end: datetime
    ) -> Dict[str, int]:
        """Ordered quantity per item for orders created in ``[start, end)``."""

    @abc.abstractmethod
    async def get_baskets(
        self, containing: Optional[Iterable[str]] = None, limit: int = 1000
    ) -> List[Set[str]]:
        """Item sets of the most recent orders, optionally only those
        containing at least one of ``containing``."""

    @abc.abstractmethod
    async def get_customer_orders(
        self, customer_id: str, limit: int = 100
    ) -> List[CustomerOrder]:
        """A customer's most recent orders, newest first."""

    @abc.abstractmethod
    async def get_customer_item_matrix(
        self,
    ) -> Tuple[csr_matrix, Dict[Any, int], Dict[Any, int]]:
        """Binary customer x item matrix over all identified customers."""


class InMemoryCatalog(CandidateSource):
    """Catalog held in memory."""

    def __init__(self, items: Iterable[CandidateItem]):
        self._items = list(items)

    @classmethod
    def from_csv(cls, csv_path: str) -> "InMemoryCatalog":
        """Load a catalog export.

        Expected columns: id, name, category, price; optional rating,
        rating_count, tags (``|``-separated), preparation_time, popularity,
        is_available. Any other column lands in ``metadata``.

        Raises:
            FileNotFoundError: If the CSV does not exist.
        """
        csv_file = Path(csv_path)
        if not csv_file.exists():
            raise FileNotFoundError(f"Catalog CSV not found: {csv_path}")

        df = pd.read_csv(csv_file)
        known = {
            "id", "name", "category", "price", "rating", "rating_count",
            "tags", "preparation_time", "popularity", "is_available",
        }
        items = []
        for row in df.to_dict(orient="records"):
            row = {k: v for k, v in row.items() if not _is_missing(v)}
            tags = row.get("tags")
            items.append(
                CandidateItem(
                    id=str(row["id"]),
                    name=str(row.get("name", "")),
                    category=str(row.get("category", "")),
                    price=float(row.get("price", 0.0)),
                    rating=row.get("rating"),
                    rating_count=int(row["rating_count"]) if "rating_count" in row else None,
                    tags=str(tags).split("|") if tags else [],
                    preparation_time=(
                        int(row["preparation_time"]) if "preparation_time" in row else None
                    ),
                    popularity=float(row.get("popularity", 0.0)),
                    is_available=bool(row.get("is_available", True)),
                    metadata={k: v for k, v in row.items() if k not in known},
                )
            )
        logger.info(f"Loaded {len(items)} catalog items from {csv_path}")
        return cls(items)

    async def fetch_candidates(
        self, category: Optional[str] = None, limit: int = DEFAULT_CANDIDATE_LIMIT
    ) -> List[CandidateItem]:
        items = [
            item
            for item in self._items
            if item.is_available and (category is None or item.category == category)
        ]
        return items[:limit]


class DataFrameOrderHistory(OrderHistorySource):
    """Order history backed by a pandas DataFrame of order lines.

    One row per order line with columns ``order_id``, ``customer_id``
    (nullable for guest orders), ``item_id``, ``quantity``, ``created_at`` and
    ``status``. Cancelled and refunded orders are ignored everywhere. Queries
    run in a worker thread so the event loop stays free.
    """

    def __init__(self, orders: pd.DataFrame):
        missing = set(ORDER_COLUMNS) - set(orders.columns)
        if missing:
            raise ValueError(f"Order history missing required columns: {missing}")

        df = orders.copy()
        df["order_id"] = df["order_id"].map(_as_id)
        df["item_id"] = df["item_id"].map(_as_id)
        df["customer_id"] = df["customer_id"].map(_as_id).astype(object)
        df["quantity"] = df["quantity"].fillna(1).astype(int)
        # Offsets are converted to UTC and dropped; naive values are taken as UTC.
        df["created_at"] = pd.to_datetime(df["created_at"], utc=True).dt.tz_localize(None)
        df["status"] = df["status"].fillna("completed").astype(str)

        self._orders = df[~df["status"].isin(EXCLUDED_ORDER_STATUSES)].reset_index(drop=True)

        logger.info(
            "Order history loaded",
            extra={
                "order_lines": len(self._orders),
                "orders": int(self._orders["order_id"].nunique()),
                "excluded_lines": len(df) - len(self._orders),
            },
        )

    @classmethod
    def from_csv(cls, csv_path: str) -> "DataFrameOrderHistory":
        """Load order lines from a CSV export.

        Raises:
            FileNotFoundError: If the CSV does not exist.
            ValueError: If a required column is missing.
        """
        csv_file = Path(csv_path)
        if not csv_file.exists():
            raise FileNotFoundError(f"Order history CSV not found: {csv_path}")
        logger.info(f"Loading order history from {csv_path}")
        return cls(pd.read_csv(csv_file))

    @property
    def orders(self) -> pd.DataFrame:
        return self._orders

    async def get_order_counts(
        self, item_ids: Iterable[str], start: datetime, end: datetime
    ) -> Dict[str, int]:
        return await asyncio.to_thread(self._order_counts, list(item_ids), start, end)

    def _order_counts(
        self, item_ids: List[str], start: datetime, end: datetime
    ) -> Dict[str, int]:
        df = self._orders
        mask = (
            df["item_id"].isin(item_ids)
            & (df["created_at"] >= pd.Timestamp(start))
            & (df["created_at"] < pd.Timestamp(end))
        )
        totals = df.loc[mask].groupby("item_id")["quantity"].sum()
        return {str(item_id): int(qty) for item_id, qty in totals.items()}

    async def get_baskets(
        self, containing: Optional[Iterable[str]] = None, limit: int = 1000
    ) -> List[Set[str]]:
        wanted = set(containing) if containing is not None else None
        return await asyncio.to_thread(self._baskets, wanted, limit)

    def _baskets(self, wanted: Optional[Set[str]], limit: int) -> List[Set[str]]:
        df = self._orders
        if wanted is not None:
            order_ids = df.loc[df["item_id"].isin(wanted), "order_id"].unique()
            df = df[df["order_id"].isin(order_ids)]
        if df.empty:
            return []

        latest = df.groupby("order_id")["created_at"].max().sort_values(ascending=False)
        recent_ids = latest.index[:limit]
        grouped = df[df["order_id"].isin(recent_ids)].groupby("order_id")["item_id"]
        baskets = grouped.apply(set)
        return [baskets[order_id] for order_id in recent_ids]

    async def get_customer_orders(
        self, customer_id: str, limit: int = 100
    ) -> List[CustomerOrder]:
        return await asyncio.to_thread(self._customer_orders, str(customer_id), limit)

    def _customer_orders(self, customer_id: str, limit: int) -> List[CustomerOrder]:
        df = self._orders[self._orders["customer_id"] == customer_id]
        if df.empty:
            return []

        orders = []
        for order_id, lines in df.groupby("order_id"):
            quantities = lines.groupby("item_id")["quantity"].sum()
            orders.append(
                CustomerOrder(
                    order_id=str(order_id),
                    created_at=lines["created_at"].max().to_pydatetime(),
                    items={str(k): int(v) for k, v in quantities.items()},
                )
            )
        orders.sort(key=lambda o: o.created_at, reverse=True)
        return orders[:limit]

    async def get_customer_item_matrix(
        self,
    ) -> Tuple[csr_matrix, Dict[Any, int], Dict[Any, int]]:
        return await asyncio.to_thread(self._customer_item_matrix)

    def _customer_item_matrix(self) -> Tuple[csr_matrix, Dict[Any, int], Dict[Any, int]]:
        identified = self._orders[self._orders["customer_id"].notna()]
        return build_interaction_matrix(
            identified, row_col="customer_id", item_col="item_id", binary=True
        )


def _is_missing(value: Any) -> bool:
    try:
        return bool(pd.isna(value))
    except (TypeError, ValueError):
        return False


def _as_id(value: Any) -> Optional[str]:
    """Normalize an identifier read from CSV; integral floats lose their ``.0``."""
    if _is_missing(value):
        return None
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)
