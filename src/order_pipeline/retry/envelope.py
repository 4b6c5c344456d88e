"""Retry envelope: an event plus the state of its retry path."""

import time
from dataclasses import dataclass, field, replace

from order_pipeline.schemas.events import OrderEvent


@dataclass(frozen=True)
class RetryEnvelope:
    """
    Wraps an event for (re)processing.

    Attributes:
        event: The order event, never modified
        origin_topic: Topic the event was consumed from
        attempt: 1-indexed attempt this envelope represents
        last_error: Exception observed on the previous failed attempt
        first_seen_at: Wall-clock time of the first attempt
    """

    event: OrderEvent
    origin_topic: str
    attempt: int = 1
    last_error: Exception | None = None
    first_seen_at: float = field(default_factory=time.time)

    def __post_init__(self):
        if self.attempt < 1:
            raise ValueError(f"attempt must be >= 1, got {self.attempt}")

    @property
    def event_id(self) -> str:
        return self.event.order_id

    def next_attempt(self, error: Exception) -> "RetryEnvelope":
        """Envelope for the following attempt, recording the failure."""
        return replace(self, attempt=self.attempt + 1, last_error=error)


__all__ = ["RetryEnvelope"]
