"""Feedback ingestion.

Maps serving-surface interactions onto bandit statistics:

* ``view`` counts an impression
* ``add_to_cart`` and ``order`` count a conversion (impression included)
* ``remove_from_cart`` and ``dismiss`` are accepted without touching the
  statistics; they are reserved for negative-feedback modeling

Writes are retried with exponential backoff and never raise into the
serving path once accepted.
"""

import asyncio
import logging
from typing import Callable, Iterable, List, Optional, Set, Union

from src.engine.exceptions import InvalidFeedbackError
from src.engine.models import FeedbackAction
from src.engine.thompson import ThompsonSamplingEngine

# Configure module logger
logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BASE_DELAY_SECONDS = 0.1

IMPRESSION_ACTIONS = {FeedbackAction.VIEW}
CONVERSION_ACTIONS = {FeedbackAction.ADD_TO_CART, FeedbackAction.ORDER}


def parse_action(action: Union[str, FeedbackAction]) -> FeedbackAction:
    """Raises InvalidFeedbackError for anything outside the known actions."""
    if isinstance(action, FeedbackAction):
        return action
    try:
        return FeedbackAction(action)
    except ValueError as e:
        raise InvalidFeedbackError(str(action)) from e


class FeedbackRecorder:
    """Writes feedback events to the bandit statistics."""

    def __init__(
        self,
        thompson: ThompsonSamplingEngine,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        base_delay: float = DEFAULT_BASE_DELAY_SECONDS,
        checkpoint: Optional[Callable[[], None]] = None,
        checkpoint_every: int = 0,
    ):
        """Initialize the recorder.

        Args:
            thompson: Engine whose statistics store receives the writes.
            max_attempts: Write attempts per event before giving up.
            base_delay: First retry delay in seconds; doubles per attempt.
            checkpoint: Called (in a worker thread) to persist statistics.
            checkpoint_every: Run ``checkpoint`` after this many successful
                writes; 0 disables periodic checkpoints.
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if checkpoint_every < 0:
            raise ValueError("checkpoint_every must be non-negative")
        self.thompson = thompson
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.checkpoint = checkpoint
        self.checkpoint_every = checkpoint_every
        self._writes = 0
        self._pending: Set[asyncio.Task] = set()

    async def record(self, item_id: str, action: Union[str, FeedbackAction]) -> bool:
        """Record one interaction.

        Returns:
            True when the statistics were updated (or nothing needed
            updating), False when every write attempt failed.

        Raises:
            InvalidFeedbackError: If ``action`` is unknown.
        """
        kind = parse_action(action)

        if kind in IMPRESSION_ACTIONS:
            write = self.thompson.record_impression
        elif kind in CONVERSION_ACTIONS:
            write = self.thompson.record_conversion
        else:
            logger.debug(
                "Feedback accepted without statistics update",
                extra={"item_id": item_id, "action": kind.value},
            )
            return True

        for attempt in range(1, self.max_attempts + 1):
            try:
                await write(item_id)
            except Exception as e:
                if attempt == self.max_attempts:
                    logger.error(
                        "Feedback write failed after retries",
                        extra={
                            "item_id": item_id,
                            "action": kind.value,
                            "attempts": attempt,
                            "error": str(e),
                            "error_type": type(e).__name__,
                        },
                    )
                    return False

                delay = self.base_delay * (2 ** (attempt - 1))
                logger.warning(
                    f"Feedback write failed, retrying in {delay:.2f}s",
                    extra={"item_id": item_id, "action": kind.value, "attempt": attempt},
                )
                await asyncio.sleep(delay)
            else:
                await self._after_write()
                return True
        return False

    async def _after_write(self) -> None:
        self._writes += 1
        if self.checkpoint is None or self.checkpoint_every <= 0:
            return
        if self._writes % self.checkpoint_every:
            return
        try:
            await asyncio.to_thread(self.checkpoint)
        except Exception as e:
            logger.error(
                "Statistics checkpoint failed",
                extra={"writes": self._writes, "error": str(e), "error_type": type(e).__name__},
            )

    async def record_impressions(self, item_ids: Iterable[str]) -> List[bool]:
        """Count one impression for each served item."""
        return list(
            await asyncio.gather(*(self.record(i, FeedbackAction.VIEW) for i in item_ids))
        )

    def record_nowait(
        self, item_id: str, action: Union[str, FeedbackAction]
    ) -> asyncio.Task:
        """Schedule :meth:`record` on the running loop and return immediately.

        Raises:
            InvalidFeedbackError: If ``action`` is unknown.
        """
        kind = parse_action(action)
        return self._track(asyncio.create_task(self.record(item_id, kind)))

    def record_impressions_nowait(self, item_ids: Iterable[str]) -> asyncio.Task:
        """Schedule :meth:`record_impressions` and return immediately."""
        return self._track(asyncio.create_task(self.record_impressions(list(item_ids))))

    def _track(self, task: asyncio.Task) -> asyncio.Task:
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def drain(self, timeout: Optional[float] = None) -> None:
        """Wait for scheduled writes to finish (shutdown and tests)."""
        if self._pending:
            await asyncio.wait(list(self._pending), timeout=timeout)
