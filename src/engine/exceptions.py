"""Exceptions raised by the ranking engine.

Most runtime failures inside the engine are absorbed and degraded to neutral
scores; these types cover configuration mistakes and the internal signals
that the degradation paths catch and log.
"""

from typing import Any, Dict, Optional


class RankingError(Exception):
    """Base exception for ranking engine errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        """Initialize exception.

        Args:
            message: Human-readable error message
            details: Additional error details for debugging
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}


class InvalidWeightsError(RankingError, ValueError):
    """Raised when a signal weight vector does not sum to 1."""

    def __init__(self, total: float, weights: Dict[str, float]):
        message = f"Signal weights must sum to 1.0, got {total:.4f}"
        super().__init__(message, details={"total": total, "weights": weights})


class UnknownBusinessTypeError(RankingError):
    """Raised when no configuration exists for a business vertical."""

    def __init__(self, business_type: str, available: Optional[list] = None):
        message = f"Unknown business type '{business_type}'"
        super().__init__(
            message,
            details={"business_type": business_type, "available": available or []},
        )


class InvalidFeedbackError(RankingError):
    """Raised when a feedback event carries an unsupported action."""

    def __init__(self, action: str):
        message = f"Unsupported feedback action '{action}'"
        super().__init__(message, details={"action": action})


class StatisticsStoreError(RankingError):
    """Raised by a statistics store that cannot serve a read or write."""

    def __init__(self, operation: str, error: Exception):
        message = f"Statistics store {operation} failed: {str(error)}"
        super().__init__(
            message,
            details={
                "operation": operation,
                "error": str(error),
                "error_type": type(error).__name__,
            },
        )


class SourceUnavailableError(RankingError):
    """Raised when the catalog or order-history source cannot be reached."""

    def __init__(self, source: str, error: Exception):
        message = f"Source '{source}' unavailable: {str(error)}"
        super().__init__(
            message,
            details={
                "source": source,
                "error": str(error),
                "error_type": type(error).__name__,
            },
        )
