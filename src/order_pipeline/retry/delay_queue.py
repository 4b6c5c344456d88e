"""In-memory delay queue for retry scheduling."""

import heapq
import itertools
import logging
from dataclasses import dataclass, field

from order_pipeline.retry.envelope import RetryEnvelope

logger = logging.getLogger(__name__)


@dataclass(order=True)
class DelayedEnvelope:
    """Heap entry ordered by due time, then insertion order."""

    due_at: float
    sequence: int
    envelope: RetryEnvelope = field(compare=False)


class DelayQueue:
    """Min-heap of envelopes ordered by due time.

    Due times come from a monotonic clock supplied by the caller. Envelopes
    due at the same instant pop in insertion order.
    """

    def __init__(self) -> None:
        self._heap: list[DelayedEnvelope] = []
        self._counter = itertools.count()

    def __len__(self) -> int:
        return len(self._heap)

    @property
    def next_due_at(self) -> float | None:
        if not self._heap:
            return None
        return self._heap[0].due_at

    def push(self, envelope: RetryEnvelope, due_at: float) -> None:
        heapq.heappush(self._heap, DelayedEnvelope(due_at, next(self._counter), envelope))

    def pop_ready(self, now: float) -> list[RetryEnvelope]:
        """Pop all envelopes whose due time is <= now."""
        ready = []
        while self._heap and self._heap[0].due_at <= now:
            ready.append(heapq.heappop(self._heap).envelope)
        return ready

    def drain(self) -> list[RetryEnvelope]:
        """Remove and return every queued envelope in due order."""
        entries = sorted(self._heap)
        self._heap.clear()
        return [entry.envelope for entry in entries]


__all__ = ["DelayQueue", "DelayedEnvelope"]
