"""
Unit tests for the RetryConsumer state machine.

Test Coverage:
    - Success updates the aggregate exactly once
    - Invalid prices are dead-lettered on attempt 1 without calling the processor
    - Permanent failures are dead-lettered immediately
    - Retryable failures are rescheduled with the backoff delay
    - Exhausted retries are dead-lettered with the final attempt count
    - Sink failures propagate as SinkUnavailableError
    - End-to-end flows with a real scheduler and tiny delays

No infrastructure required - in-memory sink.
"""

from unittest.mock import AsyncMock, Mock

import pytest

from core.errors.exceptions import (
    BusinessRuleError,
    ExhaustedRetriesError,
    SinkUnavailableError,
    TransientProcessingError,
    ValidationError,
)
from core.resilience.backoff import ExponentialBackoff
from core.types import ErrorCategory
from order_pipeline.aggregation.aggregator import PriceAggregator
from order_pipeline.processing import OrderProcessor
from order_pipeline.retry.consumer import ProcessingState, RetryConsumer
from order_pipeline.retry.envelope import RetryEnvelope
from order_pipeline.retry.scheduler import RetryScheduler


@pytest.fixture
def aggregator():
    return PriceAggregator()


@pytest.fixture
def scheduler():
    scheduler = Mock(spec=RetryScheduler)
    scheduler.schedule.return_value = True
    return scheduler


def _consumer(processor, aggregator, sink, scheduler, **kwargs):
    kwargs.setdefault("backoff", ExponentialBackoff(base_delay=1.0, multiplier=2.0))
    return RetryConsumer(
        processor=processor,
        aggregator=aggregator,
        sink=sink,
        scheduler=scheduler,
        **kwargs,
    )


class TestInit:
    def test_rejects_zero_max_attempts(self, aggregator, sink, scheduler):
        with pytest.raises(ValueError, match="max_attempts"):
            _consumer(AsyncMock(), aggregator, sink, scheduler, max_attempts=0)


class TestSuccess:
    @pytest.mark.asyncio
    async def test_updates_aggregate(self, make_event, aggregator, sink, scheduler):
        consumer = _consumer(OrderProcessor(), aggregator, sink, scheduler)

        state = await consumer.handle(make_event(price=12.5), origin_topic="orders")

        assert state == ProcessingState.SUCCEEDED
        assert aggregator.snapshot().count == 1
        assert aggregator.snapshot().total == 12.5
        assert sink.records == []
        scheduler.schedule.assert_not_called()

    @pytest.mark.asyncio
    async def test_zero_price_is_valid(self, make_event, aggregator, sink, scheduler):
        consumer = _consumer(OrderProcessor(), aggregator, sink, scheduler)

        state = await consumer.handle(make_event(price=0.0), origin_topic="orders")

        assert state == ProcessingState.SUCCEEDED
        assert aggregator.snapshot().count == 1

    @pytest.mark.asyncio
    async def test_success_on_retry_counts_once(self, make_event, aggregator, sink, scheduler):
        consumer = _consumer(OrderProcessor(), aggregator, sink, scheduler)
        envelope = RetryEnvelope(
            event=make_event(price=7.0),
            origin_topic="orders",
            attempt=2,
            last_error=TransientProcessingError("earlier"),
        )

        assert await consumer.process(envelope) == ProcessingState.SUCCEEDED
        assert aggregator.snapshot().count == 1


class TestInvalidPrice:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("price", [-5.0, float("nan"), float("inf")])
    async def test_dead_lettered_on_first_attempt(self, make_event, aggregator, sink, scheduler, price):
        processor = AsyncMock()
        consumer = _consumer(processor, aggregator, sink, scheduler)

        state = await consumer.handle(make_event(price=price), origin_topic="orders")

        assert state == ProcessingState.DEAD_LETTERED
        processor.assert_not_awaited()
        assert aggregator.snapshot().count == 0
        assert len(sink.records) == 1
        assert sink.records[0]["attempt_count"] == 1
        assert sink.records[0]["origin_topic"] == "orders"
        assert isinstance(sink.records[0]["last_error"], ValidationError)

    @pytest.mark.asyncio
    async def test_classifier_not_consulted(self, make_event, aggregator, sink, scheduler):
        classifier = Mock()
        classifier.classify.return_value = ErrorCategory.RETRYABLE
        consumer = _consumer(AsyncMock(), aggregator, sink, scheduler, classifier=classifier)

        await consumer.handle(make_event(price=-1.0), origin_topic="orders")

        classifier.classify.assert_not_called()
        scheduler.schedule.assert_not_called()


class TestPermanentFailure:
    @pytest.mark.asyncio
    async def test_dead_lettered_immediately(self, make_event, aggregator, sink, scheduler):
        consumer = _consumer(OrderProcessor(), aggregator, sink, scheduler)

        state = await consumer.handle(make_event(product="fail_perm"), origin_topic="orders")

        assert state == ProcessingState.DEAD_LETTERED
        scheduler.schedule.assert_not_called()
        assert sink.records[0]["attempt_count"] == 1
        assert isinstance(sink.records[0]["last_error"], BusinessRuleError)

    @pytest.mark.asyncio
    async def test_classifier_decides(self, make_event, aggregator, sink, scheduler):
        classifier = Mock()
        classifier.classify.return_value = ErrorCategory.PERMANENT
        processor = AsyncMock(side_effect=TimeoutError("slow"))
        consumer = _consumer(processor, aggregator, sink, scheduler, classifier=classifier)

        state = await consumer.handle(make_event(), origin_topic="orders")

        assert state == ProcessingState.DEAD_LETTERED
        classifier.classify.assert_called_once()
        assert isinstance(sink.records[0]["last_error"], TimeoutError)


class TestRetryableFailure:
    @pytest.mark.asyncio
    async def test_schedules_next_attempt_with_backoff(self, make_event, aggregator, sink, scheduler):
        consumer = _consumer(OrderProcessor(), aggregator, sink, scheduler)

        state = await consumer.handle(make_event(product="fail_temp"), origin_topic="orders")

        assert state == ProcessingState.RETRY_SCHEDULED
        assert sink.records == []
        retry, delay = scheduler.schedule.call_args[0]
        assert retry.attempt == 2
        assert isinstance(retry.last_error, TransientProcessingError)
        assert delay == 1.0

    @pytest.mark.asyncio
    async def test_delay_grows_with_attempt(self, make_event, aggregator, sink, scheduler):
        consumer = _consumer(OrderProcessor(), aggregator, sink, scheduler, max_attempts=5)
        envelope = RetryEnvelope(event=make_event(product="fail_temp"), origin_topic="orders", attempt=3)

        await consumer.process(envelope)

        retry, delay = scheduler.schedule.call_args[0]
        assert retry.attempt == 4
        assert delay == 4.0

    @pytest.mark.asyncio
    async def test_untyped_errors_are_retried(self, make_event, aggregator, sink, scheduler):
        consumer = _consumer(AsyncMock(side_effect=ConnectionError("db")), aggregator, sink, scheduler)

        assert await consumer.handle(make_event(), origin_topic="orders") == ProcessingState.RETRY_SCHEDULED

    @pytest.mark.asyncio
    async def test_exhausted_on_last_attempt(self, make_event, aggregator, sink, scheduler):
        consumer = _consumer(OrderProcessor(), aggregator, sink, scheduler, max_attempts=3)
        envelope = RetryEnvelope(event=make_event(product="fail_temp"), origin_topic="orders", attempt=3)

        state = await consumer.process(envelope)

        assert state == ProcessingState.DEAD_LETTERED
        scheduler.schedule.assert_not_called()
        record = sink.records[0]
        assert record["attempt_count"] == 3
        assert isinstance(record["last_error"], ExhaustedRetriesError)
        assert isinstance(record["last_error"].cause, TransientProcessingError)

    @pytest.mark.asyncio
    async def test_single_attempt_dead_letters_on_first_failure(self, make_event, aggregator, sink, scheduler):
        consumer = _consumer(OrderProcessor(), aggregator, sink, scheduler, max_attempts=1)

        state = await consumer.handle(make_event(product="fail_temp"), origin_topic="orders")

        assert state == ProcessingState.DEAD_LETTERED
        assert sink.records[0]["attempt_count"] == 1

    @pytest.mark.asyncio
    async def test_scheduler_refusal_still_reports_scheduled(self, make_event, aggregator, sink, scheduler):
        scheduler.schedule.return_value = False
        consumer = _consumer(OrderProcessor(), aggregator, sink, scheduler)

        state = await consumer.handle(make_event(product="fail_temp"), origin_topic="orders")

        assert state == ProcessingState.RETRY_SCHEDULED
        assert sink.records == []


class TestSinkFailure:
    @pytest.mark.asyncio
    async def test_raises_sink_unavailable(self, make_event, aggregator, failing_sink, scheduler):
        consumer = _consumer(OrderProcessor(), aggregator, failing_sink, scheduler)

        with pytest.raises(SinkUnavailableError) as exc_info:
            await consumer.handle(make_event(product="fail_perm"), origin_topic="orders")

        assert isinstance(exc_info.value.cause, ConnectionError)
        assert exc_info.value.context == {"event_id": "o-1"}

    @pytest.mark.asyncio
    async def test_sink_unavailable_passes_through(self, make_event, aggregator, scheduler):
        original = SinkUnavailableError("dlq down")
        sink = Mock()
        sink.record = AsyncMock(side_effect=original)
        consumer = _consumer(OrderProcessor(), aggregator, sink, scheduler)

        with pytest.raises(SinkUnavailableError) as exc_info:
            await consumer.handle(make_event(price=-1.0), origin_topic="orders")

        assert exc_info.value is original

    @pytest.mark.asyncio
    async def test_logs_full_payload(self, make_event, aggregator, failing_sink, scheduler, caplog):
        consumer = _consumer(OrderProcessor(), aggregator, failing_sink, scheduler)

        with pytest.raises(SinkUnavailableError):
            await consumer.handle(make_event(order_id="o-77", price=-2.0), origin_topic="orders")

        failures = [r for r in caplog.records if r.getMessage().startswith("Dead-letter write failed")]
        assert len(failures) == 1
        assert failures[0].event_payload == {"orderId": "o-77", "product": "book", "price": -2.0}
        assert failures[0].error_type == "ConnectionError"
        assert failures[0].error_message == "broker unreachable"
        assert failures[0].exc_info is not None


class TestEndToEnd:
    """Real scheduler, tiny backoff."""

    @pytest.fixture
    async def running(self, aggregator, sink):
        scheduler = RetryScheduler(worker_id="e2e")
        consumer = RetryConsumer(
            processor=OrderProcessor(),
            aggregator=aggregator,
            sink=sink,
            scheduler=scheduler,
            backoff=ExponentialBackoff(base_delay=0.01, multiplier=2.0),
            max_attempts=3,
        )
        await scheduler.start(consumer.process)
        yield consumer, scheduler
        await scheduler.stop()

    @pytest.mark.asyncio
    async def test_mixed_stream(self, running, make_event, aggregator, sink):
        consumer, scheduler = running
        events = [
            make_event(order_id="o-1", price=10.0),
            make_event(order_id="o-2", price=20.0),
            make_event(order_id="o-3", product="fail_temp", price=99.0),
            make_event(order_id="o-4", price=30.0),
        ]

        for event in events:
            await consumer.handle(event, origin_topic="orders")
        assert await scheduler.wait_idle(timeout=5.0)

        stats = aggregator.snapshot().to_stats()
        assert stats == {"totalOrders": 3, "totalValue": "60.00", "runningAveragePrice": "20.00"}
        assert len(sink.records) == 1
        record = sink.records[0]
        assert record["event"].order_id == "o-3"
        assert record["attempt_count"] == 3
        assert isinstance(record["last_error"], ExhaustedRetriesError)

    @pytest.mark.asyncio
    async def test_negative_price(self, running, make_event, aggregator, sink):
        consumer, scheduler = running

        await consumer.handle(make_event(order_id="o-9", price=-5.0), origin_topic="orders")
        assert await scheduler.wait_idle(timeout=1.0)

        assert aggregator.snapshot().count == 0
        assert [r["attempt_count"] for r in sink.records] == [1]
        assert scheduler.get_stats()["scheduled"] == 0

    @pytest.mark.asyncio
    async def test_recovers_after_transient_failures(self, aggregator, sink, make_event):
        processor = AsyncMock(side_effect=[TransientProcessingError("db"), None])
        scheduler = RetryScheduler(worker_id="e2e-recover")
        consumer = RetryConsumer(
            processor=processor,
            aggregator=aggregator,
            sink=sink,
            scheduler=scheduler,
            backoff=ExponentialBackoff(base_delay=0.01),
        )
        await scheduler.start(consumer.process)
        try:
            await consumer.handle(make_event(price=15.0), origin_topic="orders")
            assert await scheduler.wait_idle(timeout=2.0)
        finally:
            await scheduler.stop()

        assert processor.await_count == 2
        assert aggregator.snapshot().to_stats()["totalValue"] == "15.00"
        assert sink.records == []
