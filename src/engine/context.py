"""Request context construction."""

import logging
from datetime import datetime
from typing import Iterable, Optional

from src.engine.models import RecommendationContext, TimeOfDay

logger = logging.getLogger(__name__)


def time_of_day_for(moment: datetime) -> TimeOfDay:
    """Bucket a timestamp into morning / afternoon / evening / night."""
    hour = moment.hour
    if hour < 11:
        return "morning"
    if hour < 16:
        return "afternoon"
    if hour < 21:
        return "evening"
    return "night"


def build_context(
    session_id: str,
    customer_id: Optional[str] = None,
    current_time: Optional[datetime] = None,
    cart_items: Optional[Iterable[str]] = None,
    category: Optional[str] = None,
    excluded_items: Optional[Iterable[str]] = None,
    device_type: str = "mobile",
) -> RecommendationContext:
    """Build a :class:`RecommendationContext` with its derived time fields.

    Args:
        session_id: Session identifier used for experiment bucketing.
        customer_id: Authenticated customer, or None for anonymous traffic.
        current_time: Request timestamp (defaults to now).
        cart_items: Item ids currently in the cart.
        category: Optional category filter for candidate retrieval.
        excluded_items: Item ids the caller never wants back.
        device_type: Coarse device hint.

    Returns:
        Frozen context for one ranking request.
    """
    now = current_time or datetime.now()
    weekday = now.weekday()

    context = RecommendationContext(
        session_id=session_id,
        customer_id=customer_id or None,
        current_time=now,
        time_of_day=time_of_day_for(now),
        day_of_week=weekday,
        is_weekend=weekday >= 5,
        cart_items=[str(i) for i in (cart_items or []) if i],
        category=category or None,
        excluded_items=[str(i) for i in (excluded_items or []) if i],
        device_type=device_type,
    )

    logger.debug(
        "Built recommendation context",
        extra={
            "session_id": session_id,
            "anonymous": context.is_anonymous,
            "time_of_day": context.time_of_day,
            "cart_size": len(context.cart_items),
        },
    )
    return context
