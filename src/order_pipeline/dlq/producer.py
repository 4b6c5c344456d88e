"""DLQ producer for routing failed order events to the dead-letter topic."""

import logging

from aiokafka import AIOKafkaProducer

from config.config import PipelineConfig
from core.errors.exceptions import SinkUnavailableError, ValidationError, truncate_error_message
from core.resilience.retry import DLQ_SEND_RETRY, RetryConfig, with_retry_async
from order_pipeline.common.kafka_config import build_connection_config
from order_pipeline.common.metrics import record_dlq_message
from order_pipeline.common.types import PipelineMessage
from order_pipeline.dlq.sink import describe_failure
from order_pipeline.schemas.dlq import REASON_PERMANENT, DeadLetterRecord
from order_pipeline.schemas.events import OrderEvent

logger = logging.getLogger(__name__)


class DLQProducer:
    """Lazy-initialized Kafka producer implementing DeadLetterSink.

    Only connects on first record, so no connection is made when nothing
    fails. Each write waits for the broker ack (acks=all, idempotent) and is
    retried locally; if it still fails, SinkUnavailableError is raised so the
    caller can report the event and avoid committing its offset.
    """

    def __init__(
        self,
        config: PipelineConfig,
        group_id: str,
        worker_id: str,
        retry_config: RetryConfig | None = None,
    ):
        self._config = config
        self._dlq_topic = config.dlq_topic
        self._group_id = group_id
        self._worker_id = worker_id
        self._retry_config = retry_config or DLQ_SEND_RETRY
        self._producer: AIOKafkaProducer | None = None

    @property
    def dlq_topic(self) -> str:
        return self._dlq_topic

    async def _ensure_started(self) -> None:
        if self._producer is not None:
            return

        logger.info(
            "Initializing DLQ producer",
            extra={"dlq_topic": self._dlq_topic, "worker_name": self._worker_id},
        )

        producer_config = {
            **build_connection_config(self._config),
            "value_serializer": lambda v: v,
            "acks": "all",
            "enable_idempotence": True,
            "retry_backoff_ms": 1000,
        }
        for key, value in self._config.producer_defaults.items():
            producer_config.setdefault(key, value)

        producer = AIOKafkaProducer(**producer_config)
        await producer.start()
        self._producer = producer

        logger.info(
            "DLQ producer started successfully",
            extra={"dlq_topic": self._dlq_topic},
        )

    async def record(
        self,
        event: OrderEvent,
        origin_topic: str,
        attempt_count: int,
        last_error: Exception,
    ) -> None:
        """Publish a dead-letter record for a failed event."""
        reason, error, category = describe_failure(last_error)
        record = DeadLetterRecord(
            event=event,
            origin_topic=origin_topic,
            attempt_count=attempt_count,
            reason=reason,
            error_type=type(error).__name__,
            error_message=truncate_error_message(error),
            error_category=category.value,
            consumer_group=self._group_id,
            worker_id=self._worker_id,
        )
        await self._publish(record, key=event.order_id.encode("utf-8"))

    async def record_undecodable(self, message: PipelineMessage, error: Exception) -> None:
        """Publish a dead-letter record for a payload that is not a valid order."""
        record = DeadLetterRecord(
            event=None,
            raw_value=message.value_text,
            origin_topic=message.topic,
            attempt_count=1,
            reason=REASON_PERMANENT,
            error_type=type(error).__name__,
            error_message=truncate_error_message(error),
            error_category=ValidationError.category.value,
            consumer_group=self._group_id,
            worker_id=self._worker_id,
        )
        await self._publish(record, key=message.key or f"dlq-{message.offset}".encode())

    async def _publish(self, record: DeadLetterRecord, key: bytes) -> None:
        headers = [
            ("dlq_source_topic", record.origin_topic.encode("utf-8")),
            ("dlq_reason", record.reason.encode("utf-8")),
            ("dlq_error_category", record.error_category.encode("utf-8")),
            ("dlq_attempt_count", str(record.attempt_count).encode("utf-8")),
        ]
        value = record.to_bytes()

        @with_retry_async(config=self._retry_config)
        async def _send():
            await self._ensure_started()
            return await self._producer.send_and_wait(
                self._dlq_topic, key=key, value=value, headers=headers
            )

        try:
            metadata = await _send()
        except Exception as e:
            raise SinkUnavailableError(
                f"Failed to write dead-letter record to {self._dlq_topic}",
                cause=e,
                context={"event_id": record.event_id, "dlq_topic": self._dlq_topic},
            ) from e

        logger.info(
            "Event sent to DLQ successfully",
            extra={
                "event_id": record.event_id,
                "dlq_topic": self._dlq_topic,
                "dlq_partition": metadata.partition,
                "dlq_offset": metadata.offset,
                "origin_topic": record.origin_topic,
                "attempt": record.attempt_count,
                "reason": record.reason,
                "error_type": record.error_type,
            },
        )
        record_dlq_message(record.reason)

    async def stop(self) -> None:
        if self._producer is None:
            return

        try:
            await self._producer.flush()
            await self._producer.stop()
            logger.info("DLQ producer stopped successfully")
        except Exception:
            logger.error("Error stopping DLQ producer", exc_info=True)
        finally:
            self._producer = None


__all__ = ["DLQProducer"]
