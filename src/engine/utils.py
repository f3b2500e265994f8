"""Utility functions for the ranking engine.

This module provides helpers shared by the scorers: score clamping, a small
time-bounded cache, sparse interaction matrices built from order history,
and artifact persistence.
"""

import logging
import threading
import time
from pathlib import Path
from typing import Any, Callable, Dict, Generic, Hashable, Optional, Tuple, TypeVar

import joblib
import numpy as np
import pandas as pd
from scipy.sparse import csr_matrix

# Configure module logger
logger = logging.getLogger(__name__)

NEUTRAL_SCORE = 0.5

V = TypeVar("V")


def clamp(value: float, low: float, high: float) -> float:
    """Clamp ``value`` into ``[low, high]``."""
    return max(low, min(high, value))


def neutral_scores(item_ids) -> Dict[str, float]:
    return {item_id: NEUTRAL_SCORE for item_id in item_ids}


class TTLCache(Generic[V]):
    """Thread-safe mapping whose entries expire after ``ttl_seconds``.

    Entries are derived data: concurrent refreshes simply overwrite each
    other.
    """

    def __init__(
        self,
        ttl_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[Hashable, Tuple[float, V]] = {}
        self._lock = threading.Lock()

    def get(self, key: Hashable) -> Optional[V]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            stored_at, value = entry
            if self._clock() - stored_at >= self.ttl_seconds:
                del self._entries[key]
                return None
            return value

    def set(self, key: Hashable, value: V) -> None:
        with self._lock:
            self._entries[key] = (self._clock(), value)

    def invalidate(self, key: Hashable) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


def build_interaction_matrix(
    df: pd.DataFrame,
    row_col: str = "customer_id",
    item_col: str = "item_id",
    value_col: Optional[str] = None,
    binary: bool = True,
) -> Tuple[csr_matrix, Dict[Any, int], Dict[Any, int]]:
    """Convert interaction rows to a sparse row x item matrix.

    Rows are customers (or orders, for basket analysis) and columns are items.
    Supports binary (interacted / not) and weighted interactions.

    Args:
        df: DataFrame holding at least ``row_col`` and ``item_col``.
        row_col: Column holding row identifiers.
        item_col: Column holding item identifiers.
        value_col: Optional column holding interaction weights. Ignored when
            ``binary`` is True. Duplicate (row, item) pairs are summed.
        binary: If True, each (row, item) pair contributes 1.

    Returns:
        A tuple containing:
            - Sparse CSR matrix of shape (n_rows, n_items)
            - Dictionary mapping row id to matrix row index
            - Dictionary mapping item id to matrix column index

    Raises:
        ValueError: If required columns are missing.

    Example:
        >>> matrix, customer_map, item_map = build_interaction_matrix(
        ...     orders_df, row_col="customer_id", item_col="item_id"
        ... )
        >>> print(f"Matrix shape: {matrix.shape}")
    """
    required_columns = {row_col, item_col}
    if value_col is not None and not binary:
        required_columns.add(value_col)

    if not required_columns.issubset(df.columns):
        missing = required_columns - set(df.columns)
        raise ValueError(f"Interaction data missing required columns: {missing}")

    if df.empty:
        return csr_matrix((0, 0), dtype=np.float32), {}, {}

    unique_rows = sorted(df[row_col].unique())
    unique_items = sorted(df[item_col].unique())

    row_id_to_idx = {row_id: idx for idx, row_id in enumerate(unique_rows)}
    item_id_to_idx = {item_id: idx for idx, item_id in enumerate(unique_items)}

    if binary or value_col is None:
        pairs = df[[row_col, item_col]].drop_duplicates() if binary else df
        grouped = pairs.groupby([row_col, item_col]).size().reset_index(name="value")
    else:
        grouped = df.groupby([row_col, item_col])[value_col].sum().reset_index(name="value")

    row_indices = grouped[row_col].map(row_id_to_idx).values
    col_indices = grouped[item_col].map(item_id_to_idx).values
    data = grouped["value"].values.astype(np.float32)
    if binary:
        data = np.ones(len(grouped), dtype=np.float32)

    matrix = csr_matrix(
        (data, (row_indices, col_indices)),
        shape=(len(unique_rows), len(unique_items)),
        dtype=np.float32,
    )
    matrix.eliminate_zeros()

    logger.debug(
        "Built interaction matrix",
        extra={
            "rows": matrix.shape[0],
            "items": matrix.shape[1],
            "nnz": int(matrix.nnz),
        },
    )

    return matrix, row_id_to_idx, item_id_to_idx


def save_artifact(obj: Any, path: str) -> None:
    """Persist an object with joblib, creating parent directories."""
    output_path = Path(path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    joblib.dump(obj, output_path)
    logger.info(f"Saved artifact to {output_path}")


def load_artifact(path: str) -> Any:
    """Load an object written by :func:`save_artifact`.

    Raises:
        FileNotFoundError: If the artifact does not exist.
    """
    artifact_path = Path(path)
    if not artifact_path.exists():
        raise FileNotFoundError(f"Artifact not found: {artifact_path}")
    obj = joblib.load(artifact_path)
    logger.info(f"Loaded artifact from {artifact_path}")
    return obj
