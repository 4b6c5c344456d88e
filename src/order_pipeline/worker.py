"""
Shard worker for the orders topic.

Each worker owns one Kafka consumer in the shared consumer group, plus the
retry scheduler, retry consumer and dead-letter producer for that shard.
All workers in a process feed the same PriceAggregator.
"""

import logging

from config.config import PipelineConfig
from core.errors.exceptions import SinkUnavailableError
from core.logging.utilities import log_exception
from core.resilience.backoff import ExponentialBackoff
from core.utils import generate_worker_id
from order_pipeline.aggregation.aggregator import PriceAggregator
from order_pipeline.common.consumer import MessageConsumer
from order_pipeline.common.metrics import record_dlq_sink_failure
from order_pipeline.common.types import PipelineMessage
from order_pipeline.dlq.producer import DLQProducer
from order_pipeline.processing import OrderProcessor, ProcessingFunction
from order_pipeline.retry.consumer import RetryConsumer
from order_pipeline.retry.scheduler import RetryScheduler
from order_pipeline.schemas.events import OrderEvent

logger = logging.getLogger(__name__)


class OrderShardWorker:
    """Consumes one share of the orders topic's partitions."""

    def __init__(
        self,
        config: PipelineConfig,
        aggregator: PriceAggregator,
        instance_id: str = "0",
        processor: ProcessingFunction | None = None,
    ):
        self.config = config
        self.instance_id = instance_id
        self.worker_id = generate_worker_id(f"orders-{instance_id}")

        self.dlq_producer = DLQProducer(
            config=config,
            group_id=config.consumer_group,
            worker_id=self.worker_id,
        )
        self.scheduler = RetryScheduler(worker_id=self.worker_id)
        self.retry_consumer = RetryConsumer(
            processor=processor or OrderProcessor(config.allowed_products),
            aggregator=aggregator,
            sink=self.dlq_producer,
            scheduler=self.scheduler,
            backoff=ExponentialBackoff(
                base_delay=config.base_delay_seconds,
                multiplier=config.multiplier,
                max_delay=config.max_delay_seconds,
                jitter_ratio=config.jitter_ratio,
            ),
            max_attempts=config.max_attempts,
        )
        self.consumer = MessageConsumer(
            config=config,
            group_id=config.consumer_group,
            topics=[config.orders_topic],
            message_handler=self.handle_message,
            worker_id=self.worker_id,
        )

    @property
    def is_running(self) -> bool:
        return self.consumer.is_running

    async def start(self) -> None:
        """Start the retry scheduler, then consume until stopped. Blocks."""
        await self.scheduler.start(self.retry_consumer.process)
        await self.consumer.start()

    async def stop(self, drain: bool = False, drain_timeout: float | None = None) -> None:
        """Stop consuming first, then settle pending retries and close the producer."""
        await self.consumer.stop()
        await self.scheduler.stop(drain=drain, timeout=drain_timeout)
        await self.dlq_producer.stop()

    async def handle_message(self, message: PipelineMessage) -> None:
        """Decode one record and run it through the retry state machine."""
        try:
            event = OrderEvent.from_bytes(message.value or b"")
        except (ValueError, RecursionError) as e:
            # JSON, UTF-8, schema and nesting-depth errors; none of them improve on retry
            logger.error(
                "Undecodable order payload, dead-lettering",
                extra={
                    "origin_topic": message.topic,
                    "error_type": type(e).__name__,
                    "error_message": str(e)[:500],
                },
            )
            try:
                await self.dlq_producer.record_undecodable(message, e)
            except SinkUnavailableError as sink_error:
                record_dlq_sink_failure()
                log_exception(
                    logger,
                    sink_error,
                    "Dead-letter write failed for undecodable payload",
                    origin_topic=message.topic,
                    event_payload=message.value_text,
                )
                raise
            return

        await self.retry_consumer.handle(event, origin_topic=message.topic)


__all__ = ["OrderShardWorker"]
