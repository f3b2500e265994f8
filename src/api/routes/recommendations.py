"""Recommendation endpoints for the SignalRank API.

``POST /recommendations`` ranks candidates for a session and
``POST /recommendations/feedback`` ingests interaction events. Impressions
of served items and feedback writes run as background tasks after the
response is sent, so statistics latency never reaches the caller.
"""

import logging
import time
from datetime import datetime
from typing import Dict, List, Optional

from fastapi import APIRouter, BackgroundTasks, status
from pydantic import BaseModel, Field

from src.api.exceptions import InvalidRequestError
from src.api.metrics import metrics_service
from src.api.state import get_runtime
from src.engine.context import build_context
from src.engine.exceptions import InvalidFeedbackError
from src.engine.feedback import parse_action
from src.engine.models import CandidateItem, DeviceType, RankedRecommendation

# Configure module logger
logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/recommendations",
    tags=["recommendations"],
)

MAX_LIMIT = 50


class RecommendationRequest(BaseModel):
    """Ranking request.

    When ``candidates`` is omitted the catalog is queried, filtered by
    ``category``.
    """

    session_id: str = Field(
        ..., min_length=1, description="Session id used for experiment bucketing"
    )
    customer_id: Optional[str] = Field(default=None, description="Absent for anonymous shoppers")
    cart_items: List[str] = Field(default_factory=list)
    category: Optional[str] = None
    excluded_items: List[str] = Field(default_factory=list)
    device_type: DeviceType = "mobile"
    limit: int = Field(default=10, ge=1, le=MAX_LIMIT)
    diversify: bool = False
    candidates: Optional[List[CandidateItem]] = None


class RecommendationResponse(BaseModel):
    session_id: str
    business_type: str
    experiment_group: Optional[str] = None
    recommendations: List[RankedRecommendation]
    generated_at: datetime


class FeedbackRequest(BaseModel):
    item_id: str = Field(..., min_length=1)
    action: str = Field(..., description="view, add_to_cart, order, remove_from_cart or dismiss")
    session_id: Optional[str] = None


@router.post("", response_model=RecommendationResponse)
async def recommend(
    request: RecommendationRequest, background_tasks: BackgroundTasks
) -> RecommendationResponse:
    """Rank items for a shopper's session.

    Example:
        POST /recommendations {"session_id": "s-1", "cart_items": ["42"]}
    """
    start_time = time.time()
    runtime = get_runtime()

    context = build_context(
        session_id=request.session_id,
        customer_id=request.customer_id,
        cart_items=request.cart_items,
        category=request.category,
        excluded_items=request.excluded_items,
        device_type=request.device_type,
    )

    if request.candidates is not None:
        results = await runtime.engine.recommend(
            request.candidates, context, request.limit, diversify=request.diversify
        )
    else:
        results = await runtime.engine.fetch_and_recommend(
            runtime.catalog,
            context,
            request.limit,
            batch_size=runtime.settings.candidate_batch_size,
            diversify=request.diversify,
        )

    if results:
        background_tasks.add_task(
            runtime.recorder.record_impressions, [r.item_id for r in results]
        )

    latency_ms = (time.time() - start_time) * 1000
    metrics_service.record_ranking(latency_ms, len(results))

    return RecommendationResponse(
        session_id=request.session_id,
        business_type=runtime.engine.config.type,
        experiment_group=results[0].experiment_group if results else None,
        recommendations=results,
        generated_at=datetime.utcnow(),
    )


@router.post("/feedback", status_code=status.HTTP_202_ACCEPTED)
async def record_feedback(
    feedback: FeedbackRequest, background_tasks: BackgroundTasks
) -> Dict[str, str]:
    """Accept one interaction event; the statistics write happens afterwards.

    Raises:
        InvalidRequestError: If the action is not supported.
    """
    try:
        action = parse_action(feedback.action)
    except InvalidFeedbackError as e:
        raise InvalidRequestError(e.message, details=e.details) from e

    runtime = get_runtime()
    background_tasks.add_task(runtime.recorder.record, feedback.item_id, action)
    metrics_service.record_feedback(action.value)

    logger.debug(
        "Feedback accepted",
        extra={
            "item_id": feedback.item_id,
            "action": action.value,
            "session_id": feedback.session_id,
        },
    )
    return {"status": "accepted", "item_id": feedback.item_id, "action": action.value}
