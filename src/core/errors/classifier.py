"""
Failure classification for event processing.

Maps an exception raised while processing an event to RETRYABLE or PERMANENT.
Typed pipeline exceptions carry their own category; payload validation errors
from pydantic are permanent; anything else is treated as retryable.
"""

import logging

import pydantic

from core.errors.exceptions import PipelineError
from core.types import ErrorCategory

logger = logging.getLogger(__name__)


class FailureClassifier:
    """
    Stateless classifier consulted once per failed attempt.

    Never raises: if inspecting the error fails for any reason the error is
    classified as retryable so the attempt bound still applies.

    Example:
        >>> classifier = FailureClassifier()
        >>> classifier.classify(TimeoutError("db timed out"))
        <ErrorCategory.RETRYABLE: 'retryable'>
    """

    def classify(self, error: Exception) -> ErrorCategory:
        try:
            return self._classify(error)
        except Exception:
            logger.warning(
                "Failure classification raised, treating error as retryable",
                extra={"error_type": type(error).__name__},
                exc_info=True,
            )
            return ErrorCategory.RETRYABLE

    @staticmethod
    def _classify(error: Exception) -> ErrorCategory:
        if isinstance(error, PipelineError):
            return error.category

        if isinstance(error, pydantic.ValidationError):
            return ErrorCategory.PERMANENT

        return ErrorCategory.RETRYABLE


__all__ = ["FailureClassifier"]
