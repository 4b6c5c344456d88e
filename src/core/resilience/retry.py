"""
Retry utilities for infrastructure calls.

Used for local, in-line retries of short infrastructure operations such as
publishing a dead-letter record. Event redelivery does not go through here:
it is scheduled by the retry consumer so workers are never blocked.
"""

import asyncio
import logging
import random
from collections.abc import Callable
from dataclasses import dataclass
from functools import wraps

logger = logging.getLogger(__name__)


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    exponential_base: float = 2.0

    def __post_init__(self):
        """Ensure proper types from YAML/env vars."""
        self.max_attempts = int(self.max_attempts)
        self.base_delay = float(self.base_delay)
        self.max_delay = float(self.max_delay)
        self.exponential_base = float(self.exponential_base)

    def get_delay(self, attempt: int) -> float:
        """
        Calculate delay with equal jitter to prevent thundering herd.

        Args:
            attempt: 0-indexed attempt number

        Returns:
            Delay in seconds
        """
        base_delay = self.base_delay * (self.exponential_base**attempt)

        # Equal jitter: half fixed, half random
        jitter = random.uniform(0, base_delay / 2)
        delay = (base_delay / 2) + jitter

        return min(delay, self.max_delay)

    def should_retry(self, attempt: int) -> bool:
        """
        Determine if a failed call should be retried.

        Args:
            attempt: 0-indexed attempt that just failed

        Returns:
            True if should retry
        """
        return attempt < self.max_attempts - 1


# Default configuration for dead-letter writes
DLQ_SEND_RETRY = RetryConfig(max_attempts=3, base_delay=0.5, max_delay=5.0)


def with_retry_async(config: RetryConfig | None = None):
    """
    Decorator for retrying async functions with exponential backoff.

    Re-raises the last error once attempts are exhausted.

    Args:
        config: Retry configuration (defaults to DLQ_SEND_RETRY)

    Usage:
        @with_retry_async(config=RetryConfig(max_attempts=5))
        async def publish():
            ...
    """
    if config is None:
        config = DLQ_SEND_RETRY

    def decorator(func: Callable):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            for attempt in range(config.max_attempts):
                try:
                    result = await func(*args, **kwargs)

                    if attempt > 0:
                        logger.info(
                            "Retry succeeded for %s after %d attempts",
                            func.__name__,
                            attempt + 1,
                            extra={
                                "operation": func.__name__,
                                "attempt": attempt + 1,
                                "total_attempts": config.max_attempts,
                            },
                        )

                    return result

                except Exception as e:
                    if not config.should_retry(attempt):
                        logger.error(
                            "Max retries exhausted for %s: %s",
                            func.__name__,
                            str(e)[:200],
                            extra={
                                "operation": func.__name__,
                                "error_type": type(e).__name__,
                                "max_attempts": config.max_attempts,
                                "error_message": str(e)[:200],
                            },
                        )
                        raise

                    delay = config.get_delay(attempt)
                    logger.warning(
                        "Retryable error for %s, will retry",
                        func.__name__,
                        extra={
                            "operation": func.__name__,
                            "attempt": attempt + 1,
                            "max_attempts": config.max_attempts,
                            "delay_seconds": round(delay, 2),
                            "error_message": str(e)[:200],
                        },
                    )

                    await asyncio.sleep(delay)

        return wrapper

    return decorator


__all__ = [
    "RetryConfig",
    "with_retry_async",
    "DLQ_SEND_RETRY",
]
