"""Shared fixtures for order pipeline tests."""

import pytest

from config.config import PipelineConfig
from order_pipeline.schemas.events import OrderEvent


class RecordingSink:
    """In-memory DeadLetterSink that remembers every record."""

    def __init__(self, error: Exception | None = None):
        self.records: list[dict] = []
        self.error = error

    async def record(self, event, origin_topic, attempt_count, last_error):
        if self.error is not None:
            raise self.error
        self.records.append(
            {
                "event": event,
                "origin_topic": origin_topic,
                "attempt_count": attempt_count,
                "last_error": last_error,
            }
        )


@pytest.fixture
def make_event():
    def _make(order_id="o-1", product="book", price=10.0) -> OrderEvent:
        return OrderEvent(order_id=order_id, product=product, price=price)

    return _make


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def failing_sink():
    return RecordingSink(error=ConnectionError("broker unreachable"))


@pytest.fixture
def pipeline_config():
    return PipelineConfig(
        bootstrap_servers="localhost:9092",
        worker_count=2,
        stats_port=0,
        metrics_port=None,
    )
