"""
Error classification and exception hierarchy.

Provides:
- ErrorCategory enum for classifying errors
- PipelineError hierarchy for typed exceptions
- FailureClassifier for retry/dead-letter decisions
"""

from core.errors.classifier import FailureClassifier
from core.errors.exceptions import (
    BusinessRuleError,
    # Enums
    ErrorCategory,
    # Internal signals
    ExhaustedRetriesError,
    PermanentError,
    # Base classes
    PipelineError,
    SinkUnavailableError,
    TransientError,
    TransientProcessingError,
    ValidationError,
    # Utilities
    truncate_error_message,
)

__all__ = [
    # Enums
    "ErrorCategory",
    # Base classes
    "PipelineError",
    "TransientError",
    "PermanentError",
    # Concrete errors
    "TransientProcessingError",
    "ValidationError",
    "BusinessRuleError",
    "SinkUnavailableError",
    "ExhaustedRetriesError",
    # Classification
    "FailureClassifier",
    "truncate_error_message",
]
