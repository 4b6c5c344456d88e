"""
Unified exception hierarchy for the order pipeline.

Provides typed exceptions with retry classification so that the retry
consumer can decide between redelivery and dead-lettering without string
matching.
"""


# Import ErrorCategory from canonical source to avoid duplicate enum issues
# (comparing enums from different classes always returns False)
from core.types import ErrorCategory


class PipelineError(Exception):
    """
    Base exception for all pipeline errors.

    Attributes:
        message: Human-readable error description
        category: Error classification for retry decisions
        cause: Original exception if wrapping
        context: Additional context dict for debugging
    """

    category: ErrorCategory = ErrorCategory.RETRYABLE

    def __init__(
        self,
        message: str,
        cause: Exception | None = None,
        context: dict | None = None,
    ):
        self.message = message
        self.cause = cause
        self.context = context or {}
        super().__init__(message)

    @property
    def is_retryable(self) -> bool:
        return self.category == ErrorCategory.RETRYABLE

    def __str__(self) -> str:
        parts = [self.message]
        if self.cause:
            parts.append(f"Caused by: {self.cause}")
        return " | ".join(parts)


# =============================================================================
# Transient Errors (Retry)
# =============================================================================


class TransientError(PipelineError):
    """Base class for transient/retriable errors."""

    category = ErrorCategory.RETRYABLE


class TransientProcessingError(TransientError):
    """Business processing failed for a reason expected to clear up on retry."""

    pass


# =============================================================================
# Permanent Errors (Don't Retry)
# =============================================================================


class PermanentError(PipelineError):
    """Base class for permanent/non-retriable errors."""

    category = ErrorCategory.PERMANENT


class ValidationError(PermanentError):
    """Event failed validation (bad price, undecodable payload)."""

    pass


class BusinessRuleError(PermanentError):
    """Event violates a business rule (e.g. unrecognized product)."""

    pass


# =============================================================================
# Dead-letter path
# =============================================================================


class SinkUnavailableError(PipelineError):
    """
    Dead-letter sink could not record a failed event.

    Not classified by the failure classifier: the sink has its own
    retry-then-report policy, separate from event redelivery.
    """

    def __init__(
        self,
        message: str,
        cause: Exception | None = None,
        context: dict | None = None,
    ):
        super().__init__(message, cause, context)


class ExhaustedRetriesError(PipelineError):
    """Internal signal: a retryable failure used up its attempts."""

    category = ErrorCategory.PERMANENT

    def __init__(self, attempts: int, cause: Exception | None = None):
        super().__init__(
            f"Retries exhausted after {attempts} attempts",
            cause,
            {"attempts": attempts},
        )
        self.attempts = attempts


# =============================================================================
# Error Classification Utilities
# =============================================================================


def truncate_error_message(error: Exception, max_length: int = 500) -> str:
    """
    Truncate error message to prevent huge dead-letter records.

    Args:
        error: Exception to extract message from
        max_length: Maximum length of error message

    Returns:
        Truncated error message with ellipsis if needed
    """
    error_message = str(error)
    if len(error_message) > max_length:
        return error_message[: max_length - 3] + "..."
    return error_message
