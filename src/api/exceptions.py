"""Custom exceptions for the SignalRank API.

Defines HTTP-facing exception types; engine errors are translated into
these at the route boundary.
"""

from typing import Any, Dict, Optional


class SignalRankException(Exception):
    """Base exception for SignalRank API errors."""

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        details: Optional[Dict[str, Any]] = None,
    ):
        """Initialize exception.

        Args:
            message: Human-readable error message
            status_code: HTTP status code for API responses
            details: Additional error details for debugging
        """
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.details = details or {}


class EngineNotReadyError(SignalRankException):
    """Raised when the ranking engine cannot be built from its data sources."""

    def __init__(self, reason: str, details: Optional[Dict[str, Any]] = None):
        message = f"Recommendation engine not ready: {reason}"
        super().__init__(
            message=message,
            status_code=503,
            details=details or {"reason": reason},
        )


class InvalidRequestError(SignalRankException):
    """Raised when a request is well-formed JSON but semantically invalid."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message=message, status_code=400, details=details)
