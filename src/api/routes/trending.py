"""Trending endpoints for the SignalRank API."""

import logging
from typing import List, Optional

from fastapi import APIRouter, Query

from src.api.exceptions import InvalidRequestError
from src.api.state import get_runtime
from src.engine.models import TrendingItem
from src.engine.trending import TIME_WINDOWS

# Configure module logger
logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/trending",
    tags=["trending"],
)


@router.get("", response_model=List[TrendingItem])
async def get_trending(
    window: str = Query("last_6_hours", description=f"One of {sorted(TIME_WINDOWS)}"),
    category: Optional[str] = None,
    limit: int = Query(20, ge=1, le=100),
) -> List[TrendingItem]:
    """Items gaining momentum, globally or within one category.

    Raises:
        InvalidRequestError: If ``window`` is not a known preset.
    """
    if window not in TIME_WINDOWS:
        raise InvalidRequestError(
            f"Unknown trending window '{window}'",
            details={"window": window, "available": sorted(TIME_WINDOWS)},
        )

    detector = get_runtime().engine.trending
    window_hours = TIME_WINDOWS[window]
    if category:
        return await detector.get_category_trending(category, limit, window_hours)
    return await detector.get_global_trending(limit, window_hours)


@router.get("/breakout", response_model=List[TrendingItem])
async def get_breakout(
    threshold: float = Query(200.0, ge=0),
    min_orders: int = Query(5, ge=0),
) -> List[TrendingItem]:
    """Items with sudden growth over the last three hours."""
    return await get_runtime().engine.trending.get_breakout_items(threshold, min_orders)
