"""Exponential backoff schedule for event redelivery."""

import random
from dataclasses import dataclass


@dataclass(frozen=True)
class ExponentialBackoff:
    """
    Delay before the next retry of an event, given the attempt that failed.

    delay(n) = base_delay * multiplier ** (n - 1), capped at max_delay.

    Optional jitter adds up to ``jitter_ratio`` of the base value on top.
    The ratio is bounded by ``multiplier - 1`` so the jittered value for
    attempt n never exceeds the unjittered value for attempt n + 1, which
    keeps the schedule non-decreasing.

    Example:
        >>> backoff = ExponentialBackoff(base_delay=1.0, multiplier=2.0)
        >>> [backoff.delay(n) for n in (1, 2, 3)]
        [1.0, 2.0, 4.0]
    """

    base_delay: float = 1.0
    multiplier: float = 2.0
    max_delay: float | None = None
    jitter_ratio: float = 0.0

    def __post_init__(self):
        if self.base_delay < 0:
            raise ValueError(f"base_delay must be >= 0, got {self.base_delay}")
        if self.multiplier < 1:
            raise ValueError(f"multiplier must be >= 1, got {self.multiplier}")
        if self.max_delay is not None and self.max_delay < self.base_delay:
            raise ValueError(
                f"max_delay ({self.max_delay}) must be >= base_delay ({self.base_delay})"
            )
        if not 0 <= self.jitter_ratio <= self.multiplier - 1:
            raise ValueError(
                f"jitter_ratio must be between 0 and multiplier - 1 "
                f"({self.multiplier - 1}), got {self.jitter_ratio}"
            )

    def delay(self, attempt: int) -> float:
        """
        Calculate the delay in seconds after a failed attempt.

        Args:
            attempt: 1-indexed number of the attempt that just failed

        Returns:
            Delay in seconds
        """
        if attempt < 1:
            raise ValueError(f"attempt must be >= 1, got {attempt}")

        delay = self.base_delay * (self.multiplier ** (attempt - 1))
        if self.jitter_ratio:
            delay += random.uniform(0, delay * self.jitter_ratio)

        if self.max_delay is not None:
            return min(delay, self.max_delay)
        return delay


__all__ = ["ExponentialBackoff"]
