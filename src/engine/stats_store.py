"""Bandit statistics store.

Per-item impression and conversion counters. Every mutation is an atomic
increment performed by the store itself, so concurrent feedback from many
requests never loses updates. Reads return immutable snapshots.
"""

import abc
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from src.engine.utils import load_artifact, save_artifact

# Configure module logger
logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ItemCounters:
    """Counter snapshot for one item."""

    item_id: str
    impressions: int = 0
    conversions: int = 0
    updated_at: datetime = field(default_factory=datetime.utcnow)


class StatisticsStore(abc.ABC):
    """Key-value counter store keyed by item id."""

    @abc.abstractmethod
    async def increment(
        self, item_id: str, impressions: int = 0, conversions: int = 0
    ) -> ItemCounters:
        """Atomically add to an item's counters, creating them if absent."""

    @abc.abstractmethod
    async def get(self, item_id: str) -> Optional[ItemCounters]:
        """Point read; None when the item has never been recorded."""

    async def get_many(self, item_ids: Iterable[str]) -> Dict[str, ItemCounters]:
        result = {}
        for item_id in item_ids:
            counters = await self.get(item_id)
            if counters is not None:
                result[item_id] = counters
        return result

    @abc.abstractmethod
    async def all_counters(self) -> List[ItemCounters]:
        """Every recorded item."""

    @abc.abstractmethod
    async def reset(self) -> None:
        """Administrative reset of every counter."""


class InMemoryStatisticsStore(StatisticsStore):
    """Process-local store; the lock makes this instance the single owner.

    Counters can be snapshotted to disk with joblib and restored on start-up.
    """

    def __init__(self, snapshot_path: Optional[str] = None):
        self._counters: Dict[str, ItemCounters] = {}
        self._lock = threading.Lock()
        self.snapshot_path = snapshot_path

    async def increment(
        self, item_id: str, impressions: int = 0, conversions: int = 0
    ) -> ItemCounters:
        if impressions < 0 or conversions < 0:
            raise ValueError("Counters are monotonic; increments must be non-negative")

        with self._lock:
            current = self._counters.get(item_id) or ItemCounters(item_id=item_id)
            updated = ItemCounters(
                item_id=item_id,
                impressions=current.impressions + impressions,
                conversions=current.conversions + conversions,
                updated_at=datetime.utcnow(),
            )
            self._counters[item_id] = updated
        return updated

    async def get(self, item_id: str) -> Optional[ItemCounters]:
        with self._lock:
            return self._counters.get(item_id)

    async def get_many(self, item_ids: Iterable[str]) -> Dict[str, ItemCounters]:
        with self._lock:
            return {
                item_id: self._counters[item_id]
                for item_id in item_ids
                if item_id in self._counters
            }

    async def all_counters(self) -> List[ItemCounters]:
        with self._lock:
            return list(self._counters.values())

    async def reset(self) -> None:
        with self._lock:
            count = len(self._counters)
            self._counters.clear()
        logger.warning("Statistics store reset", extra={"items_cleared": count})

    def save_snapshot(self, path: Optional[str] = None) -> None:
        """Write all counters to ``path`` (or the configured snapshot path)."""
        target = path or self.snapshot_path
        if target is None:
            raise ValueError("No snapshot path configured")
        with self._lock:
            payload = {
                item_id: (c.impressions, c.conversions, c.updated_at)
                for item_id, c in self._counters.items()
            }
        save_artifact(payload, str(target))
        logger.info("Saved statistics snapshot", extra={"items": len(payload)})

    def load_snapshot(self, path: Optional[str] = None) -> int:
        """Replace in-memory counters with a saved snapshot.

        Returns:
            Number of items loaded.

        Raises:
            FileNotFoundError: If the snapshot does not exist.
        """
        target = path or self.snapshot_path
        if target is None:
            raise ValueError("No snapshot path configured")
        payload = load_artifact(str(target))
        with self._lock:
            self._counters = {
                item_id: ItemCounters(
                    item_id=item_id,
                    impressions=impressions,
                    conversions=conversions,
                    updated_at=updated_at,
                )
                for item_id, (impressions, conversions, updated_at) in payload.items()
            }
        logger.info("Loaded statistics snapshot", extra={"items": len(payload)})
        return len(payload)
