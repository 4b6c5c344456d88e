"""
Resilience primitives.

Provides:
- ExponentialBackoff: delay schedule for event redelivery
- RetryConfig / with_retry_async: in-line retries for infrastructure calls
"""

from core.resilience.backoff import ExponentialBackoff
from core.resilience.retry import DLQ_SEND_RETRY, RetryConfig, with_retry_async

__all__ = [
    "ExponentialBackoff",
    "RetryConfig",
    "with_retry_async",
    "DLQ_SEND_RETRY",
]
