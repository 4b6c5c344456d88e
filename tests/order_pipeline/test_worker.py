"""Tests for OrderShardWorker wiring and payload decoding."""

import json
from unittest.mock import AsyncMock

import pytest

from core.errors.exceptions import SinkUnavailableError
from order_pipeline.aggregation.aggregator import PriceAggregator
from order_pipeline.common.types import PipelineMessage
from order_pipeline.schemas.events import OrderEvent
from order_pipeline.worker import OrderShardWorker


def _message(value: bytes | None) -> PipelineMessage:
    return PipelineMessage(topic="orders", partition=0, offset=7, timestamp=0, key=b"o-1", value=value)


@pytest.fixture
def worker(pipeline_config):
    worker = OrderShardWorker(pipeline_config, PriceAggregator(), instance_id="1")
    worker.retry_consumer.handle = AsyncMock()
    worker.dlq_producer.record_undecodable = AsyncMock()
    return worker


class TestWiring:
    def test_retry_settings_come_from_config(self, pipeline_config):
        pipeline_config.max_attempts = 5
        pipeline_config.base_delay_seconds = 0.5
        pipeline_config.multiplier = 3.0

        worker = OrderShardWorker(pipeline_config, PriceAggregator())

        assert worker.retry_consumer.max_attempts == 5
        assert worker.retry_consumer._backoff.delay(1) == 0.5
        assert worker.retry_consumer._backoff.delay(2) == 1.5

    def test_consumer_joins_shared_group(self, pipeline_config):
        worker = OrderShardWorker(pipeline_config, PriceAggregator(), instance_id="2")

        assert worker.consumer.group_id == pipeline_config.consumer_group
        assert worker.consumer.topics == [pipeline_config.orders_topic]
        assert worker.worker_id.startswith("orders-2-")
        assert worker.dlq_producer.dlq_topic == "orders-dlq"

    def test_not_running_before_start(self, pipeline_config):
        assert OrderShardWorker(pipeline_config, PriceAggregator()).is_running is False


class TestHandleMessage:
    @pytest.mark.asyncio
    async def test_decoded_event_goes_to_retry_consumer(self, worker):
        payload = json.dumps({"orderId": "o-1", "product": "book", "price": 12.5}).encode()

        await worker.handle_message(_message(payload))

        worker.retry_consumer.handle.assert_awaited_once_with(
            OrderEvent(order_id="o-1", product="book", price=12.5), origin_topic="orders"
        )
        worker.dlq_producer.record_undecodable.assert_not_awaited()

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "payload",
        [
            b"not json",
            b"\xff\xfe",
            b'{"product": "book", "price": 1.0}',
            b'{"orderId": "o-1", "product": "book", "price": "cheap"}',
            None,
            b"[" * 200000 + b"]" * 200000,
        ],
        ids=["not-json", "bad-utf8", "missing-id", "bad-price", "empty", "deeply-nested"],
    )
    async def test_undecodable_payload_is_dead_lettered(self, worker, payload):
        await worker.handle_message(_message(payload))

        worker.retry_consumer.handle.assert_not_awaited()
        worker.dlq_producer.record_undecodable.assert_awaited_once()
        message, error = worker.dlq_producer.record_undecodable.await_args[0]
        assert message.offset == 7
        assert isinstance(error, (ValueError, RecursionError))

    @pytest.mark.asyncio
    async def test_dead_letter_failure_propagates(self, worker, caplog):
        worker.dlq_producer.record_undecodable.side_effect = SinkUnavailableError("dlq down")

        with pytest.raises(SinkUnavailableError):
            await worker.handle_message(_message(b"not json"))

        failures = [r for r in caplog.records if r.getMessage().startswith("Dead-letter write failed")]
        assert len(failures) == 1
        assert failures[0].event_payload == "not json"
        assert failures[0].error_type == "SinkUnavailableError"

    @pytest.mark.asyncio
    async def test_nan_price_decodes_and_is_left_to_processing(self, worker):
        await worker.handle_message(_message(b'{"orderId": "o-1", "product": "book", "price": NaN}'))

        event = worker.retry_consumer.handle.await_args[0][0]
        assert event.has_valid_price is False


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_stop_order(self, worker):
        calls = []
        worker.consumer.stop = AsyncMock(side_effect=lambda: calls.append("consumer"))
        worker.scheduler.stop = AsyncMock(side_effect=lambda **kw: calls.append(("scheduler", kw)))
        worker.dlq_producer.stop = AsyncMock(side_effect=lambda: calls.append("producer"))

        await worker.stop(drain=True, drain_timeout=5.0)

        assert calls == ["consumer", ("scheduler", {"drain": True, "timeout": 5.0}), "producer"]

    @pytest.mark.asyncio
    async def test_start_starts_scheduler_before_consuming(self, worker):
        worker.consumer.start = AsyncMock()

        await worker.start()

        assert worker.scheduler.is_running
        worker.consumer.start.assert_awaited_once()
        await worker.scheduler.stop()
