"""Thompson sampling over per-item Beta posteriors.

Each item is a bandit arm with a Beta(conversions + 1, failures + 1)
posterior. Scoring draws one sample per arm rather than using the posterior
mean, so items with few observations occasionally sample high and get shown,
while well-observed items converge to their true conversion rate.

Scoring only reads the statistics store. Impressions and conversions are
written by the feedback path through :meth:`record_impression` and
:meth:`record_conversion`.
"""

import logging
import math
from typing import Dict, Iterable, List, Optional

from src.engine.exceptions import StatisticsStoreError
from src.engine.models import BanditArm, BanditStats
from src.engine.sampling import BetaSampler, beta_std
from src.engine.stats_store import StatisticsStore
from src.engine.utils import TTLCache, clamp

# Configure module logger
logger = logging.getLogger(__name__)

DEFAULT_ARM_CACHE_TTL_SECONDS = 300.0
MIN_EXPLORATION_RATE = 0.05
MAX_EXPLORATION_RATE = 0.30


class ThompsonSamplingEngine:
    """Exploration-exploitation scorer backed by a statistics store."""

    def __init__(
        self,
        store: StatisticsStore,
        sampler: Optional[BetaSampler] = None,
        cache_ttl_seconds: float = DEFAULT_ARM_CACHE_TTL_SECONDS,
    ):
        self.store = store
        self.sampler = sampler or BetaSampler()
        self._arm_cache: TTLCache[BanditArm] = TTLCache(cache_ttl_seconds)

    async def sample_scores(self, item_ids: Iterable[str]) -> Dict[str, float]:
        """Draw one Beta sample in [0, 1] per item."""
        arms = await self.get_or_create_arms(item_ids)
        return {
            item_id: self.sampler.sample_beta(arm.alpha, arm.beta)
            for item_id, arm in arms.items()
        }

    async def get_or_create_arms(self, item_ids: Iterable[str]) -> Dict[str, BanditArm]:
        """Resolve arms from cache, then the store, then the uniform prior.

        A store read failure degrades the affected items to the prior for this
        call only; those priors are not cached.
        """
        arms: Dict[str, BanditArm] = {}
        uncached: List[str] = []

        for item_id in dict.fromkeys(item_ids):
            cached = self._arm_cache.get(item_id)
            if cached is not None:
                arms[item_id] = cached
            else:
                uncached.append(item_id)

        if not uncached:
            return arms

        try:
            counters = await self.store.get_many(uncached)
        except Exception as e:
            logger.warning(
                "Statistics store read failed, using uninformed priors",
                extra={
                    "item_count": len(uncached),
                    "error": str(e),
                    "error_type": type(e).__name__,
                },
            )
            for item_id in uncached:
                arms[item_id] = BanditArm(item_id=item_id)
            return arms

        for item_id in uncached:
            found = counters.get(item_id)
            if found is None:
                arm = BanditArm(item_id=item_id)
            else:
                arm = BanditArm.from_counts(
                    item_id, found.impressions, found.conversions, found.updated_at
                )
            self._arm_cache.set(item_id, arm)
            arms[item_id] = arm

        return arms

    async def record_impression(self, item_id: str) -> None:
        """Count one showing of ``item_id``.

        Raises:
            StatisticsStoreError: If the store rejects the write.
        """
        try:
            await self.store.increment(item_id, impressions=1)
        except Exception as e:
            raise StatisticsStoreError("impression write", e) from e

    async def record_conversion(self, item_id: str) -> None:
        """Count one impression and one conversion, then drop the cached arm.

        Raises:
            StatisticsStoreError: If the store rejects the write.
        """
        try:
            await self.store.increment(item_id, impressions=1, conversions=1)
        except Exception as e:
            raise StatisticsStoreError("conversion write", e) from e
        finally:
            self._arm_cache.invalidate(item_id)

    async def get_stats(self, item_ids: Iterable[str]) -> List[BanditStats]:
        """Counts, conversion rate, expected value and uncertainty per item."""
        arms = await self.get_or_create_arms(item_ids)
        return [_stats_for(arm) for arm in arms.values()]

    async def get_top_performers(self, limit: int = 10) -> List[BanditStats]:
        """Recorded items ordered by posterior mean, best first."""
        counters = await self.store.all_counters()
        stats = [
            _stats_for(BanditArm.from_counts(c.item_id, c.impressions, c.conversions))
            for c in counters
        ]
        stats.sort(key=lambda s: (-s.expected_value, s.item_id))
        return stats[:limit]

    async def reset_all(self) -> None:
        """Administrative reset: wipe the store and the arm cache."""
        self._arm_cache.clear()
        await self.store.reset()

    def clear_cache(self) -> None:
        self._arm_cache.clear()


def _stats_for(arm: BanditArm) -> BanditStats:
    conversions = int(arm.alpha - 1)
    impressions = int(arm.alpha + arm.beta - 2)
    return BanditStats(
        item_id=arm.item_id,
        impressions=impressions,
        conversions=conversions,
        conversion_rate=conversions / impressions if impressions > 0 else 0.0,
        uncertainty=beta_std(arm.alpha, arm.beta),
        expected_value=arm.expected_value,
    )


def optimal_exploration_rate(catalog_size: int) -> float:
    """Share of slots to reserve for exploration: clamp(1/sqrt(n), 0.05, 0.30).

    Small catalogs explore more, large catalogs less.
    """
    if catalog_size <= 0:
        return MAX_EXPLORATION_RATE
    rate = 1.0 / math.sqrt(catalog_size)
    return clamp(rate, MIN_EXPLORATION_RATE, MAX_EXPLORATION_RATE)


def calculate_regret(
    best_conversion_rate: float, actual_conversion_rate: float, impressions: int
) -> float:
    """Opportunity cost of not showing the best item."""
    return (best_conversion_rate - actual_conversion_rate) * impressions
