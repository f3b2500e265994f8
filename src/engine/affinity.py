"""Cross-item affinity mining ("frequently bought together").

Association rules ``{A} => {B}`` are mined from recent order baskets that
contain a cart item:

* support    - share of baskets containing both A and B
* confidence - P(B | A)
* lift       - confidence / P(B)

A candidate's affinity is the best ``confidence * min(lift, 2)`` over the
rules that recommend it, capped at 1. Candidates no rule points at score a
neutral 0.5 so a sparse signal never vetoes an otherwise strong item.
"""

import logging
from collections import Counter
from itertools import combinations
from typing import Dict, Iterable, List, Optional, Set, Tuple

import numpy as np
import pandas as pd

from src.engine.models import AffinityRule, AffinityScore, ItemSet
from src.engine.sources import CandidateSource, OrderHistorySource
from src.engine.utils import NEUTRAL_SCORE, TTLCache, build_interaction_matrix, neutral_scores

# Configure module logger
logger = logging.getLogger(__name__)

DEFAULT_AFFINITY_CACHE_TTL_SECONDS = 3600.0
DEFAULT_MIN_SUPPORT = 0.01
DEFAULT_MIN_CONFIDENCE = 0.1
MAX_RULES = 50
MAX_BASKETS = 1000
MAX_LIFT = 2.0
MIN_BUNDLE_COUNT = 3

COMPLEMENTARY_CATEGORIES: Dict[str, List[str]] = {
    "Main Course": ["Sides", "Bread", "Beverages", "Raita"],
    "Biryani": ["Raita", "Beverages", "Salad"],
    "Pizza": ["Garlic Bread", "Beverages", "Sides"],
    "Curry": ["Naan", "Rice", "Raita", "Papad"],
    "Street Food": ["Chutney", "Beverages"],
    "Desserts": ["Beverages"],
}


def get_complementary_categories(category: str) -> List[str]:
    return COMPLEMENTARY_CATEGORIES.get(category, [])


def rule_strength(rule: AffinityRule) -> float:
    """Confidence weighted by lift, with lift capped at 2."""
    return rule.confidence * min(rule.lift, MAX_LIFT)


class AffinityScorer:
    """Scores candidates by historical co-occurrence with the cart."""

    def __init__(
        self,
        history: OrderHistorySource,
        catalog: Optional[CandidateSource] = None,
        min_support: float = DEFAULT_MIN_SUPPORT,
        min_confidence: float = DEFAULT_MIN_CONFIDENCE,
        max_rules: int = MAX_RULES,
        cache_ttl_seconds: float = DEFAULT_AFFINITY_CACHE_TTL_SECONDS,
    ):
        self.history = history
        self.catalog = catalog
        self.min_support = min_support
        self.min_confidence = min_confidence
        self.max_rules = max_rules
        self._rules_cache: TTLCache[List[AffinityRule]] = TTLCache(cache_ttl_seconds)

    async def calculate_affinity_scores(
        self, candidate_ids: Iterable[str], cart_item_ids: Iterable[str]
    ) -> Dict[str, float]:
        """Affinity boost per candidate given the current cart.

        An empty cart scores every candidate 0.5. Candidates already in the
        cart score 0.
        """
        candidates = list(dict.fromkeys(candidate_ids))
        cart = list(dict.fromkeys(cart_item_ids))
        if not cart:
            return neutral_scores(candidates)

        rules = await self.get_rules_for_items(cart)
        best: Dict[str, float] = {}
        for rule in rules:
            for item_id in rule.consequent:
                best[item_id] = max(best.get(item_id, 0.0), rule_strength(rule))

        cart_set = set(cart)
        scores = {}
        for item_id in candidates:
            if item_id in cart_set:
                scores[item_id] = 0.0
            elif item_id in best:
                scores[item_id] = min(1.0, best[item_id])
            else:
                scores[item_id] = NEUTRAL_SCORE
        return scores

    async def get_rules_for_items(self, item_ids: Iterable[str]) -> List[AffinityRule]:
        """Rules whose antecedent is one of ``item_ids``, strongest first.

        Source failures yield no rules, which makes every candidate neutral.
        """
        antecedents = tuple(sorted(set(item_ids)))
        if not antecedents:
            return []

        cached = self._rules_cache.get(antecedents)
        if cached is not None:
            return cached

        try:
            baskets = await self.history.get_baskets(
                containing=antecedents, limit=MAX_BASKETS
            )
        except Exception as e:
            logger.warning(
                "Failed to load baskets for affinity mining",
                extra={
                    "antecedents": list(antecedents),
                    "error": str(e),
                    "error_type": type(e).__name__,
                },
            )
            return []

        rules = self._mine_rules(antecedents, baskets)
        self._rules_cache.set(antecedents, rules)

        logger.debug(
            "Mined affinity rules",
            extra={
                "antecedents": len(antecedents),
                "baskets": len(baskets),
                "rules": len(rules),
            },
        )
        return rules

    def _mine_rules(
        self, antecedents: Tuple[str, ...], baskets: List[Set[str]]
    ) -> List[AffinityRule]:
        total = len(baskets)
        if total == 0:
            return []

        item_counts: Counter = Counter()
        pair_counts: Counter = Counter()
        for basket in baskets:
            item_counts.update(basket)
            for antecedent in antecedents:
                if antecedent not in basket:
                    continue
                for consequent in basket:
                    if consequent not in antecedents:
                        pair_counts[(antecedent, consequent)] += 1

        rules = []
        for (antecedent, consequent), count in pair_counts.items():
            support = count / total
            if support < self.min_support:
                continue

            confidence = count / item_counts[antecedent]
            if confidence < self.min_confidence:
                continue

            consequent_prob = item_counts[consequent] / total
            lift = confidence / consequent_prob if consequent_prob > 0 else 0.0

            rules.append(
                AffinityRule(
                    antecedent=[antecedent],
                    consequent=[consequent],
                    support=support,
                    confidence=confidence,
                    lift=lift,
                    order_count=count,
                )
            )

        rules.sort(key=lambda r: (-(r.confidence * r.lift), r.consequent[0]))
        return rules[: self.max_rules]

    async def get_complete_meal_suggestions(
        self, cart_item_ids: Iterable[str], limit: int = 10
    ) -> List[AffinityScore]:
        """Above-neutral complements for the cart across the whole catalog.

        Args:
            cart_item_ids: Item ids currently in the cart.
            limit: Maximum number of suggestions.

        Returns:
            Suggestions scored above 0.5, strongest first; empty for an
            empty cart.

        Raises:
            RuntimeError: If the scorer has no candidate source.
        """
        cart = list(cart_item_ids)
        if not cart:
            return []
        if self.catalog is None:
            raise RuntimeError("AffinityScorer was created without a candidate source")

        candidates = await self.catalog.fetch_candidates()
        scores = await self.calculate_affinity_scores(
            [item.id for item in candidates], cart
        )
        rules = await self.get_rules_for_items(cart)
        return _above_neutral(scores, rules, limit)

    async def get_also_bought_suggestions(
        self, item_id: str, limit: int = 5
    ) -> List[AffinityScore]:
        """Customers who bought ``item_id`` also bought..."""
        rules = await self.get_rules_for_items([item_id])
        consequents = [c for rule in rules for c in rule.consequent if c != item_id]
        scores = await self.calculate_affinity_scores(consequents, [item_id])
        return _above_neutral(scores, rules, limit)

    async def get_frequent_bundles(
        self, min_size: int = 2, max_size: int = 3
    ) -> List[ItemSet]:
        """Item sets of ``min_size``..``max_size`` items frequently ordered
        together, by descending support."""
        try:
            baskets = await self.history.get_baskets(limit=MAX_BASKETS)
        except Exception as e:
            logger.error(
                "Failed to load baskets for bundle mining",
                extra={"error": str(e), "error_type": type(e).__name__},
            )
            return []
        return self.find_frequent_itemsets(baskets, min_size, max_size)

    def find_frequent_itemsets(
        self, baskets: List[Set[str]], min_size: int = 2, max_size: int = 3
    ) -> List[ItemSet]:
        """Apriori-style search over a binary order x item matrix."""
        total = len(baskets)
        if total == 0:
            return []
        min_count = max(MIN_BUNDLE_COUNT, total * self.min_support)

        lines = pd.DataFrame(
            [(idx, item_id) for idx, basket in enumerate(baskets) for item_id in basket],
            columns=["order_idx", "item_id"],
        )
        matrix, _, item_map = build_interaction_matrix(
            lines, row_col="order_idx", item_col="item_id", binary=True
        )
        dense = matrix.toarray().astype(bool)

        item_counts = dense.sum(axis=0)
        frequent = sorted(
            (item_id for item_id, idx in item_map.items() if item_counts[idx] >= min_count),
            key=str,
        )

        itemsets = []
        for size in range(max(min_size, 2), max_size + 1):
            for combo in combinations(frequent, size):
                columns = [item_map[item_id] for item_id in combo]
                count = int(np.all(dense[:, columns], axis=1).sum())
                if count >= min_count:
                    itemsets.append(
                        ItemSet(items=list(combo), support=count / total, count=count)
                    )

        itemsets.sort(key=lambda s: (-s.support, s.items))
        return itemsets

    def set_thresholds(self, min_support: float, min_confidence: float) -> None:
        """Change mining thresholds; cached rules are dropped."""
        self.min_support = min_support
        self.min_confidence = min_confidence
        self.clear_cache()

    def clear_cache(self) -> None:
        self._rules_cache.clear()


def _above_neutral(
    scores: Dict[str, float], rules: List[AffinityRule], limit: int
) -> List[AffinityScore]:
    results = [
        AffinityScore(
            item_id=item_id,
            score=score,
            rules=[rule for rule in rules if item_id in rule.consequent],
        )
        for item_id, score in scores.items()
        if score > NEUTRAL_SCORE
    ]
    results.sort(key=lambda r: (-r.score, r.item_id))
    return results[:limit]
