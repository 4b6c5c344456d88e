"""
Retry/dead-letter state machine for order events.

    RECEIVED -> PROCESSING -> SUCCEEDED
                           -> RETRY_SCHEDULED -> (after delay) PROCESSING
                           -> DEAD_LETTERED

Every attempt resolves to exactly one of these outcomes. Business failures
never escape: they become a retry or a dead-letter record. The only error
that propagates is SinkUnavailableError, raised when the dead-letter record
itself could not be written, so the source offset is not committed.
"""

import logging
import time
from enum import Enum

from core.errors.classifier import FailureClassifier
from core.errors.exceptions import (
    ExhaustedRetriesError,
    SinkUnavailableError,
    ValidationError,
)
from core.logging.utilities import log_exception
from core.resilience.backoff import ExponentialBackoff
from core.types import BackoffPolicy, ErrorCategory, ErrorClassifier
from order_pipeline.aggregation.aggregator import PriceAggregator
from order_pipeline.common.metrics import (
    record_dlq_sink_failure,
    record_event_succeeded,
    record_processing_duration,
    record_retry_scheduled,
)
from order_pipeline.dlq.sink import DeadLetterSink
from order_pipeline.processing import ProcessingFunction, validate_price
from order_pipeline.retry.envelope import RetryEnvelope
from order_pipeline.retry.scheduler import RetryScheduler
from order_pipeline.schemas.dlq import REASON_EXHAUSTED, REASON_PERMANENT
from order_pipeline.schemas.events import OrderEvent

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 3


class ProcessingState(str, Enum):
    RECEIVED = "received"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    RETRY_SCHEDULED = "retry_scheduled"
    DEAD_LETTERED = "dead_lettered"


class RetryConsumer:
    """
    Drives one event through processing, retries and dead-lettering.

    One instance per shard; the aggregator is shared across shards.

    Args:
        processor: Async processing function invoked on each attempt
        aggregator: Receives the price of every successful event
        sink: Dead-letter destination
        scheduler: Delayed requeue for retryable failures
        classifier: Maps failures to RETRYABLE / PERMANENT
        backoff: Delay policy between attempts
        max_attempts: Total attempts per event, including the first

    Example:
        >>> consumer = RetryConsumer(OrderProcessor(), aggregator, dlq_producer, scheduler)
        >>> await scheduler.start(consumer.process)
        >>> await consumer.handle(event, origin_topic="orders")
        <ProcessingState.SUCCEEDED: 'succeeded'>
    """

    def __init__(
        self,
        processor: ProcessingFunction,
        aggregator: PriceAggregator,
        sink: DeadLetterSink,
        scheduler: RetryScheduler,
        classifier: ErrorClassifier | None = None,
        backoff: BackoffPolicy | None = None,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    ):
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {max_attempts}")

        self._processor = processor
        self._aggregator = aggregator
        self._sink = sink
        self._scheduler = scheduler
        self._classifier = classifier or FailureClassifier()
        self._backoff = backoff or ExponentialBackoff()
        self.max_attempts = max_attempts

    async def handle(self, event: OrderEvent, origin_topic: str) -> ProcessingState:
        """First attempt for an event freshly consumed from ``origin_topic``."""
        logger.debug(
            "Event received",
            extra={
                "event_id": event.order_id,
                "origin_topic": origin_topic,
                "state": ProcessingState.RECEIVED.value,
            },
        )
        return await self.process(RetryEnvelope(event=event, origin_topic=origin_topic))

    async def process(self, envelope: RetryEnvelope) -> ProcessingState:
        """Run one attempt and resolve it to a terminal state or a scheduled retry."""
        event = envelope.event
        start_time = time.perf_counter()

        logger.debug(
            "Processing event",
            extra={
                "event_id": event.order_id,
                "attempt": envelope.attempt,
                "max_attempts": self.max_attempts,
                "state": ProcessingState.PROCESSING.value,
            },
        )

        try:
            validate_price(event)
        except ValidationError as e:
            # Bad prices are permanent by construction; the classifier is not consulted
            state = await self._dead_letter(envelope, e, REASON_PERMANENT, ErrorCategory.PERMANENT)
            record_processing_duration(state.value, time.perf_counter() - start_time)
            return state

        try:
            await self._processor(event)
        except Exception as e:
            state = await self._handle_failure(envelope, e)
            record_processing_duration(state.value, time.perf_counter() - start_time)
            return state

        self._aggregator.update(event.price)
        record_event_succeeded()

        duration = time.perf_counter() - start_time
        record_processing_duration(ProcessingState.SUCCEEDED.value, duration)
        logger.info(
            "Event processed",
            extra={
                "event_id": event.order_id,
                "product": event.product,
                "price": event.price,
                "attempt": envelope.attempt,
                "state": ProcessingState.SUCCEEDED.value,
                "duration_ms": round(duration * 1000, 2),
            },
        )
        return ProcessingState.SUCCEEDED

    async def _handle_failure(self, envelope: RetryEnvelope, error: Exception) -> ProcessingState:
        category = self._classifier.classify(error)

        if category == ErrorCategory.PERMANENT:
            return await self._dead_letter(envelope, error, REASON_PERMANENT, category)

        if envelope.attempt >= self.max_attempts:
            exhausted = ExhaustedRetriesError(envelope.attempt, cause=error)
            return await self._dead_letter(envelope, exhausted, REASON_EXHAUSTED, category)

        delay = self._backoff.delay(envelope.attempt)
        retry = envelope.next_attempt(error)

        logger.warning(
            "Retryable failure, scheduling retry",
            extra={
                "event_id": envelope.event_id,
                "attempt": envelope.attempt,
                "max_attempts": self.max_attempts,
                "delay_seconds": round(delay, 3),
                "error_category": category.value,
                "error_type": type(error).__name__,
                "error_message": str(error)[:500],
                "state": ProcessingState.RETRY_SCHEDULED.value,
            },
        )
        if self._scheduler.schedule(retry, delay):
            record_retry_scheduled(retry.attempt)
        return ProcessingState.RETRY_SCHEDULED

    async def _dead_letter(
        self,
        envelope: RetryEnvelope,
        error: Exception,
        reason: str,
        category: ErrorCategory,
    ) -> ProcessingState:
        """Write the event to the dead-letter sink; raise SinkUnavailableError on failure."""
        underlying = error.cause if isinstance(error, ExhaustedRetriesError) else error

        logger.error(
            "Dead-lettering event",
            extra={
                "event_id": envelope.event_id,
                "origin_topic": envelope.origin_topic,
                "attempt": envelope.attempt,
                "max_attempts": self.max_attempts,
                "reason": reason,
                "error_category": category.value,
                "error_type": type(underlying).__name__,
                "error_message": str(underlying)[:500],
                "state": ProcessingState.DEAD_LETTERED.value,
            },
        )

        try:
            await self._sink.record(
                envelope.event, envelope.origin_topic, envelope.attempt, error
            )
        except Exception as e:
            record_dlq_sink_failure()
            # Never drop silently: the full payload goes to the log
            log_exception(
                logger,
                e,
                "Dead-letter write failed, event not recorded",
                event_id=envelope.event_id,
                origin_topic=envelope.origin_topic,
                attempt=envelope.attempt,
                reason=reason,
                event_payload=envelope.event.to_wire(),
            )
            if isinstance(e, SinkUnavailableError):
                raise
            raise SinkUnavailableError(
                "Dead-letter sink rejected the record",
                cause=e,
                context={"event_id": envelope.event_id},
            ) from e

        return ProcessingState.DEAD_LETTERED


__all__ = ["ProcessingState", "RetryConsumer", "DEFAULT_MAX_ATTEMPTS"]
