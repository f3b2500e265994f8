"""Collaborative filtering with temporal decay.

Scores candidates for an identified customer from item-item cosine
similarity over the customer x item order matrix, weighted by the
customer's own preferences. Preferences decay exponentially with order age,
``weight = e^(-decay_rate * days_ago)``, so recent behavior dominates.
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

import numpy as np
from scipy.sparse import csr_matrix
from sklearn.metrics.pairwise import cosine_similarity

from src.engine.sources import OrderHistorySource
from src.engine.utils import NEUTRAL_SCORE, TTLCache, neutral_scores

# Configure module logger
logger = logging.getLogger(__name__)

DEFAULT_DECAY_RATE = 0.05
DEFAULT_COLLABORATIVE_CACHE_TTL_SECONDS = 1800.0
PROFILE_ORDER_LIMIT = 100
RECENT_FAVORITE_THRESHOLD = 0.7
RECENT_FAVORITE_SCORE = 0.3
SIMILAR_CUSTOMER_POOL = 20

DECAY_RATES = {
    "food": 0.1,
    "fashion": 0.05,
    "electronics": 0.02,
    "books": 0.03,
}

_MATRIX_KEY = "customer_item_matrix"


def calculate_optimal_decay_rate(business_type: str) -> float:
    """Preference decay per day for a business type; food decays fastest."""
    return DECAY_RATES.get(business_type, DEFAULT_DECAY_RATE)


@dataclass
class CustomerProfile:
    """Max-normalized item preferences for one customer."""

    customer_id: str
    preferences: Dict[str, float] = field(default_factory=dict)
    recency_weighted: Dict[str, float] = field(default_factory=dict)
    last_updated: datetime = field(default_factory=datetime.utcnow)

    @property
    def has_history(self) -> bool:
        return bool(self.recency_weighted)


class CollaborativeScorer:
    """Personalization signal for identified customers."""

    def __init__(
        self,
        history: OrderHistorySource,
        decay_rate: float = DEFAULT_DECAY_RATE,
        cache_ttl_seconds: float = DEFAULT_COLLABORATIVE_CACHE_TTL_SECONDS,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.history = history
        self.decay_rate = decay_rate
        self._clock = clock or datetime.utcnow
        self._profiles: TTLCache[CustomerProfile] = TTLCache(cache_ttl_seconds)
        self._matrix: TTLCache[Tuple[csr_matrix, Dict[Any, int], Dict[Any, int]]] = TTLCache(
            cache_ttl_seconds
        )

    async def calculate_scores(
        self, candidate_ids: Iterable[str], customer_id: Optional[str] = None
    ) -> Dict[str, float]:
        """Personalization score per candidate.

        Anonymous customers and customers without history get 0.5 for every
        candidate. Items the customer ordered heavily and recently score 0.3
        to leave room for discovery.
        """
        candidates = list(dict.fromkeys(candidate_ids))
        if not customer_id:
            return neutral_scores(candidates)

        profile = await self.get_customer_profile(customer_id)
        if not profile.has_history:
            logger.debug(f"No order history for customer {customer_id}, using neutral scores")
            return neutral_scores(candidates)

        matrix, _, item_map = await self._get_matrix()
        liked = [item_id for item_id in profile.recency_weighted if item_id in item_map]
        known = [item_id for item_id in candidates if item_id in item_map]

        similarity = np.zeros((len(liked), len(known)))
        if liked and known:
            item_vectors = matrix.T.tocsr()
            similarity = cosine_similarity(
                item_vectors[[item_map[i] for i in liked]],
                item_vectors[[item_map[i] for i in known]],
            )
        column = {item_id: idx for idx, item_id in enumerate(known)}
        weights = np.array([profile.recency_weighted[i] for i in liked])

        scores = {}
        for item_id in candidates:
            if profile.recency_weighted.get(item_id, 0.0) > RECENT_FAVORITE_THRESHOLD:
                scores[item_id] = RECENT_FAVORITE_SCORE
                continue

            if item_id not in column:
                scores[item_id] = NEUTRAL_SCORE
                continue

            sims = similarity[:, column[item_id]]
            positive = sims > 0
            total_weight = float(sims[positive].sum())
            if total_weight > 0:
                weighted = float((sims[positive] * weights[positive]).sum())
                scores[item_id] = min(1.0, weighted / total_weight)
            else:
                scores[item_id] = NEUTRAL_SCORE

        return scores

    async def get_customer_profile(self, customer_id: str) -> CustomerProfile:
        """Decay-weighted preferences over the last 100 orders (cached)."""
        cached = self._profiles.get(customer_id)
        if cached is not None:
            return cached

        try:
            orders = await self.history.get_customer_orders(
                customer_id, limit=PROFILE_ORDER_LIMIT
            )
        except Exception as e:
            logger.warning(
                "Failed to load customer orders, using empty profile",
                extra={
                    "customer_id": customer_id,
                    "error": str(e),
                    "error_type": type(e).__name__,
                },
            )
            return CustomerProfile(customer_id=customer_id)

        now = self._clock()
        preferences: Dict[str, float] = {}
        weighted: Dict[str, float] = {}
        for order in orders:
            days_ago = max((now - order.created_at).total_seconds() / 86400.0, 0.0)
            decay = math.exp(-self.decay_rate * days_ago)
            for item_id, quantity in order.items.items():
                preferences[item_id] = preferences.get(item_id, 0.0) + quantity
                weighted[item_id] = weighted.get(item_id, 0.0) + quantity * decay

        profile = CustomerProfile(
            customer_id=customer_id,
            preferences=_max_normalize(preferences),
            recency_weighted=_max_normalize(weighted),
            last_updated=now,
        )
        self._profiles.set(customer_id, profile)
        return profile

    async def _get_matrix(self) -> Tuple[csr_matrix, Dict[Any, int], Dict[Any, int]]:
        cached = self._matrix.get(_MATRIX_KEY)
        if cached is not None:
            return cached
        built = await self.history.get_customer_item_matrix()
        self._matrix.set(_MATRIX_KEY, built)
        return built

    async def find_similar_customers(
        self, customer_id: str, limit: int = 10
    ) -> List[Dict[str, Any]]:
        """Customers sharing items with ``customer_id``, by normalized overlap."""
        profile = await self.get_customer_profile(customer_id)
        if not profile.preferences:
            return []

        matrix, customer_map, item_map = await self._get_matrix()
        columns = [item_map[i] for i in profile.preferences if i in item_map]
        if not columns:
            return []

        overlap = np.asarray(matrix[:, columns].sum(axis=1)).ravel()
        index_to_customer = {idx: cid for cid, idx in customer_map.items()}
        self_idx = customer_map.get(customer_id)
        if self_idx is not None:
            overlap[self_idx] = 0

        max_overlap = overlap.max() if overlap.size else 0
        if max_overlap <= 0:
            return []

        results = [
            {"customer_id": index_to_customer[idx], "similarity": float(overlap[idx] / max_overlap)}
            for idx in np.flatnonzero(overlap)
        ]
        results.sort(key=lambda r: (-r["similarity"], str(r["customer_id"])))
        return results[:limit]

    async def get_customer_based_recommendations(
        self, customer_id: str, limit: int = 10
    ) -> List[Dict[str, Any]]:
        """Items similar customers ordered that ``customer_id`` has not."""
        similar = await self.find_similar_customers(customer_id, SIMILAR_CUSTOMER_POOL)
        if not similar:
            return []

        profile = await self.get_customer_profile(customer_id)
        matrix, customer_map, item_map = await self._get_matrix()

        rows = [customer_map[s["customer_id"]] for s in similar]
        sims = np.array([s["similarity"] for s in similar])
        item_scores = np.asarray(matrix[rows].T.dot(sims)).ravel()

        index_to_item = {idx: item_id for item_id, idx in item_map.items()}
        scores = {
            index_to_item[idx]: float(item_scores[idx])
            for idx in np.flatnonzero(item_scores)
            if index_to_item[idx] not in profile.preferences
        }
        if not scores:
            return []

        max_score = max(scores.values())
        results = [
            {"item_id": item_id, "score": score / max_score}
            for item_id, score in scores.items()
        ]
        results.sort(key=lambda r: (-r["score"], r["item_id"]))
        return results[:limit]

    def set_decay_rate(self, rate: float) -> None:
        """Change the decay rate; cached profiles are rebuilt on next use."""
        self.decay_rate = rate
        self.clear_cache()

    def clear_cache(self) -> None:
        self._profiles.clear()
        self._matrix.clear()


def _max_normalize(values: Dict[str, float]) -> Dict[str, float]:
    if not values:
        return {}
    peak = max(values.values())
    if peak <= 0:
        return dict(values)
    return {key: value / peak for key, value in values.items()}
