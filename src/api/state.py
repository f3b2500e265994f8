"""Engine runtime shared by the API routes.

The engine, its sources and the feedback recorder are built once, on first
use, from :class:`EngineSettings`, and cached at module level. With
``SIGNALRANK_DATA_DIR`` set, the catalog and order history are read from
``catalog.csv`` and ``orders.csv`` in that directory; otherwise the service
starts with empty in-memory sources. With ``SIGNALRANK_STATS_SNAPSHOT`` set,
bandit statistics are restored from that joblib file at build time and written
back on shutdown (and every ``SIGNALRANK_STATS_SNAPSHOT_EVERY`` feedback writes).
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional

import pandas as pd

from src.api.exceptions import EngineNotReadyError
from src.api.metrics import metrics_service
from src.engine.config import EngineSettings, get_settings
from src.engine.exceptions import SourceUnavailableError, UnknownBusinessTypeError
from src.engine.feedback import FeedbackRecorder
from src.engine.orchestrator import RecommendationEngine, create_engine
from src.engine.sources import ORDER_COLUMNS, DataFrameOrderHistory, InMemoryCatalog
from src.engine.stats_store import InMemoryStatisticsStore

# Configure module logger
logger = logging.getLogger(__name__)

CATALOG_FILE = "catalog.csv"
ORDERS_FILE = "orders.csv"


@dataclass
class EngineRuntime:
    engine: RecommendationEngine
    recorder: FeedbackRecorder
    catalog: InMemoryCatalog
    history: DataFrameOrderHistory
    store: InMemoryStatisticsStore
    settings: EngineSettings
    loaded_at: datetime


_runtime: Optional[EngineRuntime] = None


def load_sources(settings: EngineSettings):
    """Read catalog and order history for ``settings``.

    Raises:
        SourceUnavailableError: If a configured CSV cannot be read.
    """
    if settings.data_dir is None:
        logger.warning("SIGNALRANK_DATA_DIR not set, starting with empty sources")
        return InMemoryCatalog([]), DataFrameOrderHistory(pd.DataFrame(columns=ORDER_COLUMNS))

    data_dir = Path(settings.data_dir)
    try:
        catalog = InMemoryCatalog.from_csv(str(data_dir / CATALOG_FILE))
    except Exception as e:
        raise SourceUnavailableError("catalog", e) from e
    try:
        history = DataFrameOrderHistory.from_csv(str(data_dir / ORDERS_FILE))
    except Exception as e:
        raise SourceUnavailableError("order_history", e) from e
    return catalog, history


def build_runtime(settings: Optional[EngineSettings] = None) -> EngineRuntime:
    """Build the engine and its collaborators.

    Raises:
        EngineNotReadyError: If a data source or the configuration is unusable.
    """
    settings = settings or get_settings()

    try:
        catalog, history = load_sources(settings)
    except SourceUnavailableError as e:
        logger.error(e.message, extra=e.details)
        raise EngineNotReadyError(e.message, details=e.details) from e

    snapshot = str(settings.stats_snapshot_path) if settings.stats_snapshot_path else None
    store = InMemoryStatisticsStore(snapshot_path=snapshot)
    if snapshot and Path(snapshot).exists():
        store.load_snapshot()

    try:
        engine = create_engine(
            history,
            catalog=catalog,
            store=store,
            settings=settings,
            on_degradation=metrics_service.record_degradation,
        )
    except UnknownBusinessTypeError as e:
        raise EngineNotReadyError(e.message, details=e.details) from e

    recorder = FeedbackRecorder(
        engine.thompson,
        max_attempts=settings.feedback_max_attempts,
        base_delay=settings.feedback_base_delay_seconds,
        checkpoint=store.save_snapshot if snapshot else None,
        checkpoint_every=settings.stats_snapshot_every,
    )
    return EngineRuntime(
        engine=engine,
        recorder=recorder,
        catalog=catalog,
        history=history,
        store=store,
        settings=settings,
        loaded_at=datetime.utcnow(),
    )


def get_runtime() -> EngineRuntime:
    """Return the cached runtime, building it on first use."""
    global _runtime
    if _runtime is None:
        _runtime = build_runtime()
        logger.info(
            "Engine runtime ready",
            extra={"business_type": _runtime.engine.config.type},
        )
    return _runtime


def set_runtime(runtime: Optional[EngineRuntime]) -> None:
    """Replace (or clear, with None) the cached runtime."""
    global _runtime
    _runtime = runtime


def is_loaded() -> bool:
    return _runtime is not None


def persist_statistics() -> bool:
    """Write the bandit statistics snapshot, if one is configured.

    Returns:
        True when a snapshot was written, False when no runtime is loaded or
        no snapshot path is configured.
    """
    if _runtime is None or _runtime.store.snapshot_path is None:
        return False
    _runtime.store.save_snapshot()
    return True
