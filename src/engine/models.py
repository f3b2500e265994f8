"""Data model for the ranking engine.

Catalog items and request context come in, ranked recommendations go out.
The remaining models are derived snapshots (bandit arms, trending records,
affinity rules) that can always be regenerated from the statistics store or
order history.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

TimeOfDay = Literal["morning", "afternoon", "evening", "night"]
DeviceType = Literal["mobile", "desktop", "tablet"]
Momentum = Literal["rising", "stable", "falling"]


class FeedbackAction(str, Enum):
    """Interaction kinds reported by the serving surface."""

    VIEW = "view"
    ADD_TO_CART = "add_to_cart"
    ORDER = "order"
    REMOVE_FROM_CART = "remove_from_cart"
    DISMISS = "dismiss"


class CandidateItem(BaseModel):
    """A recommendable catalog entity.

    ``metadata`` is carried through to the response untouched and never
    contributes to scoring.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    name: str = ""
    category: str = ""
    price: float = 0.0
    rating: Optional[float] = None
    rating_count: Optional[int] = None
    tags: List[str] = Field(default_factory=list)
    preparation_time: Optional[int] = None
    popularity: float = 0.0
    is_available: bool = True
    metadata: Dict[str, Any] = Field(default_factory=dict)


class RecommendationContext(BaseModel):
    """Per-request input built once by :func:`src.engine.context.build_context`."""

    model_config = ConfigDict(frozen=True)

    session_id: str
    customer_id: Optional[str] = None
    current_time: datetime
    time_of_day: TimeOfDay
    day_of_week: int = Field(..., ge=0, le=6)
    is_weekend: bool
    cart_items: List[str] = Field(default_factory=list)
    category: Optional[str] = None
    excluded_items: List[str] = Field(default_factory=list)
    device_type: DeviceType = "mobile"

    @property
    def is_anonymous(self) -> bool:
        return not self.customer_id


class BanditArm(BaseModel):
    """Beta posterior shape parameters for one item.

    alpha = conversions + 1 and beta = failures + 1, so both stay >= 1.
    """

    item_id: str
    alpha: float = Field(default=1.0, ge=1.0)
    beta: float = Field(default=1.0, ge=1.0)
    last_updated: datetime = Field(default_factory=datetime.utcnow)

    @classmethod
    def from_counts(
        cls,
        item_id: str,
        impressions: int,
        conversions: int,
        last_updated: Optional[datetime] = None,
    ) -> "BanditArm":
        # Conversions recorded without a matching impression still count as
        # impressions, so failures can never go negative.
        failures = max(impressions - conversions, 0)
        return cls(
            item_id=item_id,
            alpha=conversions + 1,
            beta=failures + 1,
            last_updated=last_updated or datetime.utcnow(),
        )

    @property
    def expected_value(self) -> float:
        return self.alpha / (self.alpha + self.beta)


class BanditStats(BaseModel):
    """Read model derived from a :class:`BanditArm`."""

    item_id: str
    impressions: int
    conversions: int
    conversion_rate: float
    uncertainty: float
    expected_value: float


class TrendingItem(BaseModel):
    """Velocity snapshot for one item over one time window."""

    item_id: str
    velocity: float
    acceleration: float
    trending_score: float = Field(..., ge=0.0, le=1.0)
    momentum: Momentum
    current_orders: int
    previous_orders: int
    percent_change: float
    rank: int = 0


class AffinityRule(BaseModel):
    """Association rule mined from order baskets."""

    antecedent: List[str]
    consequent: List[str]
    support: float
    confidence: float
    lift: float
    order_count: int


class AffinityScore(BaseModel):
    item_id: str
    score: float
    rules: List[AffinityRule] = Field(default_factory=list)


class ItemSet(BaseModel):
    items: List[str]
    support: float
    count: int


class SignalBreakdown(BaseModel):
    """Component signal values behind one blended score."""

    thompson_sampling: float
    trending: float
    affinity: float
    collaborative: float
    final_score: float


class RankedRecommendation(BaseModel):
    """One ranked output row; exists only inside a single response."""

    item_id: str
    score: float
    rank: int
    signals: SignalBreakdown
    reasons: List[str] = Field(default_factory=list)
    confidence: float = 0.0
    exploration: bool = False
    experiment_group: Optional[Literal["A", "B", "C"]] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
