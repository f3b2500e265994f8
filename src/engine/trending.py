"""Trending velocity detection.

Compares an item's order quantity in the current window ``[now - W, now)``
with the preceding window of equal length to find items gaining momentum,
independently of how popular they already are.
"""

import logging
import math
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from src.engine.models import Momentum, TrendingItem
from src.engine.sources import CandidateSource, OrderHistorySource
from src.engine.utils import NEUTRAL_SCORE, TTLCache, clamp

# Configure module logger
logger = logging.getLogger(__name__)

TIME_WINDOWS = {
    "last_hour": 1,
    "last_3_hours": 3,
    "last_6_hours": 6,
    "last_12_hours": 12,
    "last_24_hours": 24,
    "last_week": 168,
}

DEFAULT_WINDOW_HOURS = 6
DEFAULT_TRENDING_CACHE_TTL_SECONDS = 600.0
MOMENTUM_THRESHOLD = 10.0
MAX_VELOCITY = 100.0

BREAKOUT_WINDOW_HOURS = 3
BREAKOUT_MIN_ORDERS = 5


def percent_change(current: float, previous: float) -> float:
    """Relative growth in percent; a zero base counts as ``current * 100``."""
    if previous > 0:
        return (current - previous) / previous * 100.0
    return current * 100.0


def classify_momentum(change: float) -> Momentum:
    """Rising above +10%, falling below -10%, stable otherwise (bounds inclusive)."""
    if change > MOMENTUM_THRESHOLD:
        return "rising"
    if change < -MOMENTUM_THRESHOLD:
        return "falling"
    return "stable"


def trending_score(
    current: float, previous: float, velocity: float, window_hours: float
) -> float:
    """Blend popularity, velocity and recency into a score in [0, 1].

    ``previous`` is implied by ``velocity`` and kept for signature symmetry
    with the window counts.
    """
    popularity = math.log10(current + 1)
    velocity_component = clamp(velocity / MAX_VELOCITY, -1.0, 1.0)
    recency = 1.0 / math.sqrt(window_hours)

    raw = 0.4 * popularity + 0.4 * velocity_component + 0.2 * recency

    # raw sits roughly in [-1, 2]
    return clamp((raw + 1.0) / 3.0, 0.0, 1.0)


def calculate_viral_coefficient(
    orders_before: int, orders_after: int, exposures: int
) -> float:
    """Additional orders generated per exposure."""
    if exposures == 0:
        return 0.0
    return (orders_after - orders_before) / exposures


class TrendDetector:
    """Computes :class:`TrendingItem` snapshots from an order-history source.

    Results are cached per ``(window, item ids)`` for ``cache_ttl_seconds``
    and only ever expire; order history changes continuously so there is no
    write-through invalidation.
    """

    def __init__(
        self,
        history: OrderHistorySource,
        catalog: Optional[CandidateSource] = None,
        cache_ttl_seconds: float = DEFAULT_TRENDING_CACHE_TTL_SECONDS,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.history = history
        self.catalog = catalog
        self._clock = clock or datetime.utcnow
        self._cache: TTLCache[List[TrendingItem]] = TTLCache(cache_ttl_seconds)

    async def calculate_trending_scores(
        self, item_ids: Iterable[str], window_hours: float = DEFAULT_WINDOW_HOURS
    ) -> Dict[str, float]:
        """Trending score per item; items without a snapshot score 0.5."""
        ids = list(dict.fromkeys(item_ids))
        trending = await self.get_trending_items(ids, window_hours, limit=len(ids))
        scores = {item.item_id: item.trending_score for item in trending}
        for item_id in ids:
            scores.setdefault(item_id, NEUTRAL_SCORE)
        return scores

    async def get_trending_items(
        self,
        item_ids: Iterable[str],
        window_hours: float = DEFAULT_WINDOW_HOURS,
        limit: int = 50,
    ) -> List[TrendingItem]:
        """Ranked trending breakdown for ``item_ids``.

        Returns an empty list when the window query fails; callers fill the
        gap with neutral scores.
        """
        if window_hours <= 0:
            raise ValueError(f"window_hours must be positive, got {window_hours}")

        ids = list(dict.fromkeys(item_ids))
        if not ids:
            return []

        cache_key: Tuple[float, Tuple[str, ...]] = (window_hours, tuple(ids))
        cached = self._cache.get(cache_key)
        if cached is not None:
            return cached[:limit]

        now = self._clock()
        window = timedelta(hours=window_hours)
        window_start = now - window
        previous_start = window_start - window

        try:
            current_counts = await self.history.get_order_counts(ids, window_start, now)
            previous_counts = await self.history.get_order_counts(
                ids, previous_start, window_start
            )
        except Exception as e:
            logger.warning(
                "Trending window query failed, degrading to neutral scores",
                extra={
                    "window_hours": window_hours,
                    "item_count": len(ids),
                    "error": str(e),
                    "error_type": type(e).__name__,
                },
            )
            return []

        trending = [
            self._build_item(
                item_id,
                current_counts.get(item_id, 0),
                previous_counts.get(item_id, 0),
                window_hours,
            )
            for item_id in ids
        ]
        trending.sort(key=lambda t: (-t.trending_score, t.item_id))
        for rank, item in enumerate(trending, start=1):
            item.rank = rank

        self._cache.set(cache_key, trending)

        logger.debug(
            "Computed trending snapshot",
            extra={
                "window_hours": window_hours,
                "item_count": len(trending),
                "rising": sum(1 for t in trending if t.momentum == "rising"),
            },
        )
        return trending[:limit]

    @staticmethod
    def _build_item(
        item_id: str, current: int, previous: int, window_hours: float
    ) -> TrendingItem:
        velocity = (current - previous) / window_hours
        change = percent_change(current, previous)
        return TrendingItem(
            item_id=item_id,
            velocity=velocity,
            # velocity doubles as the acceleration proxy
            acceleration=velocity,
            trending_score=trending_score(current, previous, velocity, window_hours),
            momentum=classify_momentum(change),
            current_orders=current,
            previous_orders=previous,
            percent_change=change,
        )

    async def get_global_trending(
        self, limit: int = 20, window_hours: float = DEFAULT_WINDOW_HOURS
    ) -> List[TrendingItem]:
        """Trending across the whole available catalog."""
        return await self._trending_for_catalog(None, limit, window_hours)

    async def get_category_trending(
        self,
        category: str,
        limit: int = 10,
        window_hours: float = DEFAULT_WINDOW_HOURS,
    ) -> List[TrendingItem]:
        """Trending items within one catalog category.

        Args:
            category: Category to restrict candidates to.
            limit: Maximum number of items returned.
            window_hours: Width of the current and previous windows.

        Returns:
            Items ranked by trending score, highest first; empty when the
            catalog cannot be read.

        Raises:
            RuntimeError: If the detector has no candidate source.
        """
        return await self._trending_for_catalog(category, limit, window_hours)

    async def _trending_for_catalog(
        self, category: Optional[str], limit: int, window_hours: float
    ) -> List[TrendingItem]:
        if self.catalog is None:
            raise RuntimeError("TrendDetector was created without a candidate source")

        try:
            candidates = await self.catalog.fetch_candidates(category=category)
        except Exception as e:
            logger.error(
                "Failed to fetch catalog for trending",
                extra={"category": category, "error": str(e)},
            )
            return []

        return await self.get_trending_items(
            [item.id for item in candidates], window_hours, limit
        )

    async def get_breakout_items(
        self, threshold: float = 200.0, min_orders: int = BREAKOUT_MIN_ORDERS
    ) -> List[TrendingItem]:
        """Items with sudden growth over the last three hours."""
        trending = await self.get_global_trending(50, BREAKOUT_WINDOW_HOURS)
        return [
            item
            for item in trending
            if item.percent_change >= threshold and item.current_orders >= min_orders
        ]

    async def get_item_trending_score(
        self, item_id: str, window_hours: float = DEFAULT_WINDOW_HOURS
    ) -> float:
        """Trending score of a single item; 0.5 when it cannot be computed."""
        scores = await self.calculate_trending_scores([item_id], window_hours)
        return scores.get(item_id, NEUTRAL_SCORE)

    def clear_cache(self) -> None:
        self._cache.clear()
