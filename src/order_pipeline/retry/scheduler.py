"""
In-process delayed requeue for retryable failures.

Envelopes are parked in a DelayQueue and a background task dispatches each
one when it comes due. Every dispatched retry runs as its own task, so a
slow-to-recover event never holds up the consumer or other retries.

Retries do not survive a restart. A shard consumer commits the source offset
once the first attempt has been handled, so anything pending at shutdown is
either drained (stop(drain=True)) or abandoned with a warning that lists the
affected event ids.
"""

import asyncio
import contextlib
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any

from order_pipeline.common.metrics import update_pending_retries
from order_pipeline.retry.delay_queue import DelayQueue
from order_pipeline.retry.envelope import RetryEnvelope

logger = logging.getLogger(__name__)

RetryHandler = Callable[[RetryEnvelope], Awaitable[Any]]

IDLE_POLL_SECONDS = 0.05


class RetryScheduler:
    """
    Schedules envelopes for reprocessing after a delay.

    Lifecycle:
        start(handler) -> schedule(envelope, delay)* -> stop(drain=...)

    While draining, retries scheduled by in-flight attempts are still
    accepted so an event can run through its remaining attempts. Once
    stopped, schedule() refuses new envelopes and logs them as abandoned.

    Usage:
        >>> scheduler = RetryScheduler(worker_id="orders-0")
        >>> await scheduler.start(retry_consumer.process)
        >>> scheduler.schedule(envelope.next_attempt(error), delay=2.0)
        >>> await scheduler.stop(drain=False)
    """

    def __init__(
        self,
        worker_id: str = "retry-scheduler",
        clock: Callable[[], float] = time.monotonic,
    ):
        self.worker_id = worker_id
        self._clock = clock
        self._queue = DelayQueue()
        self._handler: RetryHandler | None = None
        self._in_flight: dict[asyncio.Task, RetryEnvelope] = {}
        self._wakeup = asyncio.Event()
        self._processor_task: asyncio.Task | None = None
        self._accepting = False

        # Metrics
        self._scheduled = 0
        self._dispatched = 0
        self._abandoned = 0

    @property
    def is_running(self) -> bool:
        return self._accepting

    @property
    def pending_count(self) -> int:
        """Envelopes waiting for their delay plus retries currently running."""
        return len(self._queue) + len(self._in_flight)

    def get_stats(self) -> dict[str, int]:
        return {
            "scheduled": self._scheduled,
            "dispatched": self._dispatched,
            "abandoned": self._abandoned,
            "queued": len(self._queue),
            "in_flight": len(self._in_flight),
        }

    async def start(self, handler: RetryHandler) -> None:
        if self._processor_task is not None:
            logger.warning("Retry scheduler already running, ignoring duplicate start call")
            return

        self._handler = handler
        self._accepting = True
        self._processor_task = asyncio.create_task(
            self._process_delayed(), name=f"retry-scheduler-{self.worker_id}"
        )
        logger.debug("Retry scheduler started", extra={"worker_name": self.worker_id})

    def schedule(self, envelope: RetryEnvelope, delay: float) -> bool:
        """
        Park an envelope until ``delay`` seconds from now.

        Returns:
            True if queued, False if the scheduler is stopped and the
            retry was abandoned.
        """
        if not self._accepting:
            self._abandoned += 1
            logger.warning(
                "Retry scheduler stopped, abandoning retry",
                extra={
                    "event_id": envelope.event_id,
                    "attempt": envelope.attempt,
                    "abandoned_count": 1,
                },
            )
            return False

        self._queue.push(envelope, self._clock() + max(0.0, delay))
        self._scheduled += 1
        update_pending_retries(self.worker_id, self.pending_count)
        self._wakeup.set()
        return True

    async def wait_idle(self, timeout: float | None = None) -> bool:
        """Wait until no retries are queued or running. Returns False on timeout."""
        deadline = None if timeout is None else self._clock() + timeout
        while self.pending_count:
            if deadline is not None and self._clock() >= deadline:
                return False
            await asyncio.sleep(IDLE_POLL_SECONDS)
        return True

    async def stop(self, drain: bool = False, timeout: float | None = 10.0) -> list[RetryEnvelope]:
        """
        Stop the scheduler.

        Args:
            drain: Wait (up to ``timeout``) for pending retries to finish
                before stopping; otherwise abandon them immediately.
            timeout: Bound on the drain wait in seconds (None = unbounded)

        Returns:
            Envelopes that were abandoned (queued or still running).
        """
        if self._processor_task is None:
            return []

        if drain and self.pending_count:
            logger.info(
                "Draining pending retries before shutdown",
                extra={"pending_retries": self.pending_count, "worker_name": self.worker_id},
            )
            if not await self.wait_idle(timeout):
                logger.warning(
                    "Retry drain timed out",
                    extra={"pending_retries": self.pending_count, "worker_name": self.worker_id},
                )

        self._accepting = False

        self._processor_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._processor_task
        self._processor_task = None

        abandoned = self._queue.drain()

        in_flight = list(self._in_flight.items())
        for task, _ in in_flight:
            task.cancel()
        if in_flight:
            await asyncio.gather(*(task for task, _ in in_flight), return_exceptions=True)
        abandoned.extend(envelope for _, envelope in in_flight)
        self._in_flight.clear()

        self._abandoned += len(abandoned)
        update_pending_retries(self.worker_id, 0)

        if abandoned:
            logger.warning(
                "Abandoned pending retries on shutdown",
                extra={
                    "abandoned_count": len(abandoned),
                    "event_ids": [e.event_id for e in abandoned],
                    "worker_name": self.worker_id,
                },
            )

        logger.info(
            "Retry scheduler stopped",
            extra={"worker_name": self.worker_id, **self.get_stats()},
        )
        return abandoned

    async def _process_delayed(self) -> None:
        """Dispatch due envelopes, sleeping until the next due time or a new arrival."""
        while True:
            for envelope in self._queue.pop_ready(self._clock()):
                self._dispatch(envelope)

            next_due = self._queue.next_due_at
            timeout = None if next_due is None else max(0.0, next_due - self._clock())

            self._wakeup.clear()
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(self._wakeup.wait(), timeout)

    def _dispatch(self, envelope: RetryEnvelope) -> None:
        task = asyncio.create_task(self._run_retry(envelope))
        self._in_flight[task] = envelope
        task.add_done_callback(self._on_retry_done)
        self._dispatched += 1

        logger.debug(
            "Dispatching retry",
            extra={"event_id": envelope.event_id, "attempt": envelope.attempt},
        )

    async def _run_retry(self, envelope: RetryEnvelope) -> None:
        try:
            await self._handler(envelope)
        except Exception:
            # The handler has already reported the failure with the full payload
            logger.error(
                "Retry attempt failed outside the retry state machine",
                extra={"event_id": envelope.event_id, "attempt": envelope.attempt},
                exc_info=True,
            )

    def _on_retry_done(self, task: asyncio.Task) -> None:
        self._in_flight.pop(task, None)
        update_pending_retries(self.worker_id, self.pending_count)


__all__ = ["RetryScheduler", "RetryHandler"]
