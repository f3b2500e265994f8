"""Metrics service for tracking ranking performance.

Singleton service counting ranking calls and their latency, feedback events
per action and signal degradations.
"""

import threading
from collections import Counter
from typing import Dict


class MetricsService:
    """Singleton service for tracking API metrics.

    Thread-safe counters shared by the routes and the engine's degradation
    listener.
    """

    _instance = None
    _lock = threading.Lock()

    def __new__(cls):
        """Create singleton instance."""
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = super(MetricsService, cls).__new__(cls)
                    cls._instance._initialized = False
        return cls._instance

    def __init__(self):
        """Initialize metrics counters (once per process)."""
        if self._initialized:
            return

        self._lock = threading.Lock()
        self._reset_counters()
        self._initialized = True

    def _reset_counters(self) -> None:
        self._ranking_count = 0
        self._empty_rankings = 0
        self._total_latency_ms = 0.0
        self._min_latency_ms = float("inf")
        self._max_latency_ms = 0.0
        self._feedback = Counter()
        self._degradations = Counter()

    def record_ranking(self, latency_ms: float, result_count: int) -> None:
        """Record a ranking call with its latency.

        Args:
            latency_ms: Latency in milliseconds
            result_count: Number of recommendations returned
        """
        with self._lock:
            self._ranking_count += 1
            if result_count == 0:
                self._empty_rankings += 1
            self._total_latency_ms += latency_ms
            self._min_latency_ms = min(self._min_latency_ms, latency_ms)
            self._max_latency_ms = max(self._max_latency_ms, latency_ms)

    def record_feedback(self, action: str) -> None:
        """Record an accepted feedback event.

        Args:
            action: Feedback action value, e.g. ``view`` or ``order``
        """
        with self._lock:
            self._feedback[action] += 1

    def record_degradation(self, signal: str, reason: str) -> None:
        """Count a signal that fell back to neutral scores.

        Args:
            signal: Signal name (``trending``, ``candidates``, ...)
            reason: ``timeout`` or the exception class name
        """
        with self._lock:
            self._degradations[f"{signal}:{reason}"] += 1

    def get_metrics(self) -> Dict:
        """Get current metrics.

        Returns:
            Dictionary with metrics including:
            - ranking_count: Total number of ranking calls
            - empty_rankings: Calls that returned no recommendations
            - average_latency_ms / min_latency_ms / max_latency_ms
            - feedback_events: Count per feedback action
            - degradations: Count per ``signal:reason``
        """
        with self._lock:
            avg_latency = (
                self._total_latency_ms / self._ranking_count
                if self._ranking_count > 0
                else 0.0
            )
            min_latency = 0.0 if self._min_latency_ms == float("inf") else self._min_latency_ms

            return {
                "ranking_count": self._ranking_count,
                "empty_rankings": self._empty_rankings,
                "average_latency_ms": round(avg_latency, 2),
                "min_latency_ms": round(min_latency, 2),
                "max_latency_ms": round(self._max_latency_ms, 2),
                "feedback_events": dict(self._feedback),
                "degradations": dict(self._degradations),
            }

    def reset(self) -> None:
        """Reset all metrics (useful for testing)."""
        with self._lock:
            self._reset_counters()


# Global singleton instance
metrics_service = MetricsService()
