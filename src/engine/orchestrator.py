"""Signal fusion and ranking.

The orchestrator filters candidates, runs the four scorers concurrently,
blends their outputs with the business vertical's weights, reserves a few
slots for under-sampled items and returns annotated, ranked results.

Every scorer sits behind its own bulkhead: an exception or timeout makes
that signal neutral (0.5) for the request instead of failing it.
"""

import asyncio
import hashlib
import logging
import math
import time
from typing import Awaitable, Callable, Dict, List, Optional, Sequence

import numpy as np

from src.engine.affinity import AffinityScorer
from src.engine.collaborative import CollaborativeScorer
from src.engine.config import (
    DEFAULT_BUSINESS_TYPE,
    SIGNAL_NAMES,
    BusinessConfig,
    EngineSettings,
    get_business_config,
)
from src.engine.models import (
    CandidateItem,
    RankedRecommendation,
    RecommendationContext,
    SignalBreakdown,
)
from src.engine.sampling import BetaSampler
from src.engine.sources import CandidateSource, OrderHistorySource
from src.engine.stats_store import InMemoryStatisticsStore, StatisticsStore
from src.engine.thompson import ThompsonSamplingEngine, optimal_exploration_rate
from src.engine.trending import TrendDetector
from src.engine.utils import NEUTRAL_SCORE, clamp

# Configure module logger
logger = logging.getLogger(__name__)

DEFAULT_SCORER_TIMEOUT_SECONDS = 2.0
REASON_THRESHOLD = 0.7
EXPERIMENT_GROUPS = ("A", "B", "C")

REASONS = {
    "thompson_sampling": "Optimized for discovery",
    "trending": "Trending up fast",
    "affinity": "Goes great with your cart",
    "collaborative": "Based on your preferences",
}

DegradationListener = Callable[[str, str], None]


def assign_experiment_group(session_id: str) -> str:
    """Stable A/B/C bucket for a session."""
    digest = hashlib.md5(session_id.encode("utf-8")).hexdigest()
    return EXPERIMENT_GROUPS[int(digest, 16) % len(EXPERIMENT_GROUPS)]


def calculate_confidence(signals: Sequence[float]) -> float:
    """Agreement between signals: ``max(0, 1 - variance)``."""
    if not signals:
        return 0.0
    return max(0.0, 1.0 - float(np.var(signals)))


def item_similarity(first: CandidateItem, second: CandidateItem) -> float:
    """Content similarity used for diversity: category match plus tag overlap."""
    similarity = 0.0
    if first.category and first.category == second.category:
        similarity += 0.5

    tags_a, tags_b = set(first.tags), set(second.tags)
    union = tags_a | tags_b
    if union:
        similarity += 0.3 * len(tags_a & tags_b) / len(union)

    return min(1.0, similarity)


class RecommendationEngine:
    """Ranks candidate items for one request context."""

    def __init__(
        self,
        thompson: ThompsonSamplingEngine,
        trending: TrendDetector,
        affinity: AffinityScorer,
        collaborative: CollaborativeScorer,
        business_config: Optional[BusinessConfig] = None,
        scorer_timeout: float = DEFAULT_SCORER_TIMEOUT_SECONDS,
        on_degradation: Optional[DegradationListener] = None,
    ):
        self.thompson = thompson
        self.trending = trending
        self.affinity = affinity
        self.collaborative = collaborative
        self.scorer_timeout = scorer_timeout
        self.on_degradation = on_degradation
        self._apply_config(business_config or get_business_config(DEFAULT_BUSINESS_TYPE))

    def _apply_config(self, config: BusinessConfig) -> None:
        self.config = config
        self.affinity.set_thresholds(self.affinity.min_support, config.affinity_min_confidence)
        self.collaborative.set_decay_rate(config.decay_rate)
        logger.info(
            "Recommendation engine configured",
            extra={
                "business_type": config.type,
                "weights": config.weights.as_dict(),
                "exploration_enabled": config.exploration_enabled,
            },
        )

    def set_business_type(self, business_type: str) -> None:
        """Switch to a predefined vertical.

        Raises:
            UnknownBusinessTypeError: If the vertical is not defined.
        """
        self._apply_config(get_business_config(business_type))

    def set_config(self, config: BusinessConfig) -> None:
        """Apply a custom vertical configuration (e.g. from BusinessConfig.from_dict)."""
        self._apply_config(config)

    def get_config(self) -> BusinessConfig:
        """Return a copy of the active configuration; mutating it has no effect."""
        return self.config.model_copy(deep=True)

    async def recommend(
        self,
        candidates: Sequence[CandidateItem],
        context: RecommendationContext,
        limit: int = 10,
        diversify: bool = False,
    ) -> List[RankedRecommendation]:
        """Rank ``candidates`` for ``context``.

        Results are ordered by blended score, ties broken by item id. With
        ``diversify`` the final list is re-ranked with maximal marginal
        relevance using the vertical's diversity factor.

        Returns:
            At most ``limit`` recommendations; empty when nothing is eligible.
        """
        start_time = time.time()

        eligible = self._filter_candidates(candidates, context)
        if not eligible or limit <= 0:
            logger.info(
                "No eligible candidates",
                extra={"session_id": context.session_id, "candidates": len(candidates)},
            )
            return []

        items_by_id = {item.id: item for item in eligible}
        item_ids = list(items_by_id)

        signals = await self._score_all(item_ids, context)
        weights = self.config.weights.as_dict()
        blended = {
            item_id: sum(weights[name] * signals[name][item_id] for name in SIGNAL_NAMES)
            for item_id in item_ids
        }

        ranked = sorted(item_ids, key=lambda i: (-blended[i], i))
        selected, explored = await self._select_with_exploration(
            ranked, signals["thompson_sampling"], limit
        )
        selected.sort(key=lambda i: (-blended[i], i))

        if diversify and self.config.diversity_factor > 0:
            selected = self._apply_diversity(selected, blended, items_by_id)

        group = assign_experiment_group(context.session_id)
        results = []
        for rank, item_id in enumerate(selected, start=1):
            values = {name: signals[name][item_id] for name in SIGNAL_NAMES}
            results.append(
                RankedRecommendation(
                    item_id=item_id,
                    score=blended[item_id],
                    rank=rank,
                    signals=SignalBreakdown(**values, final_score=blended[item_id]),
                    reasons=[REASONS[n] for n in SIGNAL_NAMES if values[n] > REASON_THRESHOLD],
                    confidence=calculate_confidence(list(values.values())),
                    exploration=item_id in explored,
                    experiment_group=group,
                    metadata=dict(items_by_id[item_id].metadata),
                )
            )

        logger.info(
            "Generated recommendations",
            extra={
                "session_id": context.session_id,
                "customer_id": context.customer_id,
                "business_type": self.config.type,
                "eligible": len(item_ids),
                "returned": len(results),
                "explored": len(explored),
                "duration_ms": round((time.time() - start_time) * 1000, 2),
            },
        )
        return results

    async def fetch_and_recommend(
        self,
        candidate_source: CandidateSource,
        context: RecommendationContext,
        limit: int = 10,
        batch_size: int = 500,
        diversify: bool = False,
    ) -> List[RankedRecommendation]:
        """Fetch candidates from ``candidate_source`` and rank them.

        An unreachable source yields an empty result rather than an error.
        """
        try:
            candidates = await candidate_source.fetch_candidates(
                category=context.category, limit=batch_size
            )
        except Exception as e:
            logger.error(
                "Candidate source unavailable, returning empty recommendations",
                extra={
                    "session_id": context.session_id,
                    "error": str(e),
                    "error_type": type(e).__name__,
                },
            )
            self._notify_degradation("candidates", type(e).__name__)
            return []
        return await self.recommend(candidates, context, limit, diversify=diversify)

    def _filter_candidates(
        self, candidates: Sequence[CandidateItem], context: RecommendationContext
    ) -> List[CandidateItem]:
        excluded = set(context.excluded_items)
        if self.config.exclude_cart_items:
            excluded.update(context.cart_items)

        eligible: Dict[str, CandidateItem] = {}
        for item in candidates:
            if not item.is_available or item.id in excluded or item.id in eligible:
                continue
            if context.category is not None and item.category != context.category:
                continue
            eligible[item.id] = item
        return list(eligible.values())

    async def _score_all(
        self, item_ids: List[str], context: RecommendationContext
    ) -> Dict[str, Dict[str, float]]:
        scorers = {
            "thompson_sampling": lambda: self.thompson.sample_scores(item_ids),
            "trending": lambda: self.trending.calculate_trending_scores(
                item_ids, self.config.trending_window_hours
            ),
            "affinity": lambda: self.affinity.calculate_affinity_scores(
                item_ids, context.cart_items
            ),
            "collaborative": lambda: self.collaborative.calculate_scores(
                item_ids, context.customer_id
            ),
        }
        outputs = await asyncio.gather(
            *(self._run_scorer(name, scorers[name]) for name in SIGNAL_NAMES)
        )

        signals = {}
        for name, output in zip(SIGNAL_NAMES, outputs):
            signals[name] = {
                item_id: clamp(float(output.get(item_id, NEUTRAL_SCORE)), 0.0, 1.0)
                for item_id in item_ids
            }
        return signals

    async def _run_scorer(
        self, name: str, call: Callable[[], Awaitable[Dict[str, float]]]
    ) -> Dict[str, float]:
        try:
            return await asyncio.wait_for(call(), timeout=self.scorer_timeout)
        except asyncio.TimeoutError:
            logger.warning(
                f"Scorer {name} timed out, using neutral scores",
                extra={"signal": name, "timeout_seconds": self.scorer_timeout},
            )
            self._notify_degradation(name, "timeout")
        except Exception as e:
            logger.warning(
                f"Scorer {name} failed, using neutral scores",
                extra={"signal": name, "error": str(e), "error_type": type(e).__name__},
                exc_info=True,
            )
            self._notify_degradation(name, type(e).__name__)
        return {}

    async def _select_with_exploration(
        self, ranked: List[str], sampled: Dict[str, float], limit: int
    ):
        """Top ``limit`` items, with a share of slots held for under-sampled ones."""
        if not self.config.exploration_enabled or len(ranked) <= limit:
            return ranked[:limit], set()

        n_explore = math.floor(limit * optimal_exploration_rate(len(ranked)))
        if n_explore == 0:
            return ranked[:limit], set()

        exploit = ranked[: limit - n_explore]
        remaining = ranked[limit - n_explore :]

        try:
            arms = await self.thompson.get_or_create_arms(remaining)
        except Exception as e:
            logger.warning(
                "Could not read bandit arms for exploration slots",
                extra={"error": str(e), "error_type": type(e).__name__},
            )
            return ranked[:limit], set()

        threshold = self.config.exploration_impression_threshold
        under_sampled = [
            item_id
            for item_id in remaining
            if arms[item_id].alpha + arms[item_id].beta - 2 < threshold
        ]
        under_sampled.sort(key=lambda i: (-sampled[i], i))
        explored = under_sampled[:n_explore]

        chosen = set(explored)
        fill = [i for i in remaining if i not in chosen][: n_explore - len(explored)]
        return exploit + explored + fill, chosen

    def _apply_diversity(
        self,
        selected: List[str],
        relevance: Dict[str, float],
        items_by_id: Dict[str, CandidateItem],
    ) -> List[str]:
        """Greedy maximal-marginal-relevance re-ranking."""
        if len(selected) <= 2:
            return selected

        factor = self.config.diversity_factor
        reranked = [selected[0]]
        pool = selected[1:]
        while pool:
            best_id, best_score = None, -math.inf
            for item_id in pool:
                diversity = sum(
                    1.0 - item_similarity(items_by_id[item_id], items_by_id[chosen])
                    for chosen in reranked
                ) / len(reranked)
                mmr = (1 - factor) * relevance[item_id] + factor * diversity
                if mmr > best_score:
                    best_id, best_score = item_id, mmr
            reranked.append(best_id)
            pool.remove(best_id)
        return reranked

    def _notify_degradation(self, signal: str, reason: str) -> None:
        if self.on_degradation is None:
            return
        try:
            self.on_degradation(signal, reason)
        except Exception:
            logger.exception("Degradation listener failed")


def create_engine(
    history: OrderHistorySource,
    catalog: Optional[CandidateSource] = None,
    store: Optional[StatisticsStore] = None,
    settings: Optional[EngineSettings] = None,
    sampler: Optional[BetaSampler] = None,
    on_degradation: Optional[DegradationListener] = None,
) -> RecommendationEngine:
    """Wire the four scorers and the orchestrator from settings.

    Args:
        history: Order history used by trending, affinity and collaborative.
        catalog: Candidate source for catalog-wide queries (global trending,
            complete-the-meal suggestions).
        store: Statistics store; a fresh in-memory store when omitted.
        settings: Engine settings; defaults when omitted.
        sampler: Beta sampler, seedable for tests.
        on_degradation: Called with ``(signal, reason)`` when a signal degrades.
    """
    settings = settings or EngineSettings()
    config = get_business_config(settings.business_type)

    if store is None:
        snapshot = str(settings.stats_snapshot_path) if settings.stats_snapshot_path else None
        store = InMemoryStatisticsStore(snapshot_path=snapshot)

    engine = RecommendationEngine(
        thompson=ThompsonSamplingEngine(
            store, sampler=sampler, cache_ttl_seconds=settings.bandit_cache_ttl_seconds
        ),
        trending=TrendDetector(
            history, catalog=catalog, cache_ttl_seconds=settings.trending_cache_ttl_seconds
        ),
        affinity=AffinityScorer(
            history,
            catalog=catalog,
            min_confidence=config.affinity_min_confidence,
            cache_ttl_seconds=settings.affinity_cache_ttl_seconds,
        ),
        collaborative=CollaborativeScorer(
            history,
            decay_rate=config.decay_rate,
            cache_ttl_seconds=settings.collaborative_cache_ttl_seconds,
        ),
        business_config=config,
        scorer_timeout=settings.scorer_timeout_seconds,
        on_degradation=on_degradation,
    )
    return engine
