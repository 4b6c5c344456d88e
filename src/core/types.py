"""
Core types and protocols used across modules.

This module provides base types, enums, and protocol definitions that are
shared across the core library to ensure consistency and type safety.
"""

from enum import Enum
from typing import Protocol


class ErrorCategory(Enum):
    """
    Classification of processing failures for retry decisions.

    Categories:
        RETRYABLE: Temporary failures that should retry with backoff
                   (e.g., simulated transient faults, timeouts, a
                   dependency being unavailable)
        PERMANENT: Non-retriable failures that won't succeed on retry
                   (e.g., invalid price, malformed payload, unrecognized
                   product)
    """

    RETRYABLE = "retryable"
    PERMANENT = "permanent"


class ErrorClassifier(Protocol):
    """
    Protocol for error classification implementations.

    The retry consumer depends on this protocol so that the classification
    policy can be swapped without touching the state machine.
    """

    def classify(self, error: Exception) -> ErrorCategory:
        """
        Classify an exception into an error category.

        Args:
            error: Exception to classify

        Returns:
            ErrorCategory indicating how to handle this error
        """
        ...


class BackoffPolicy(Protocol):
    """Protocol for retry delay calculation."""

    def delay(self, attempt: int) -> float:
        """Return the delay in seconds before retrying after ``attempt``."""
        ...


__all__ = [
    "ErrorCategory",
    "ErrorClassifier",
    "BackoffPolicy",
]
