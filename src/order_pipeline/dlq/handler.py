"""
Dead-letter topic handler.

Consumes the dead-letter topic under its own consumer group and logs every
record for operator review, with its transport metadata. Keeps in-memory
counts by reason for the shutdown summary. Replay is manual and out of band.
"""

import logging
from collections import Counter

from pydantic import ValidationError as PydanticValidationError

from config.config import PipelineConfig
from core.utils import generate_worker_id
from order_pipeline.common.consumer import MessageConsumer
from order_pipeline.common.types import PipelineMessage
from order_pipeline.schemas.dlq import DeadLetterRecord

logger = logging.getLogger(__name__)

UNPARSEABLE = "unparseable"


class DLQHandler:
    """
    Dead-letter queue handler for manual review.

    Usage:
        >>> handler = DLQHandler(config)
        >>> await handler.start()  # blocks until stop()
        >>> handler.counts_by_reason
        {'exhausted': 1}
        >>> await handler.stop()
    """

    def __init__(self, config: PipelineConfig):
        self.config = config
        self.worker_id = generate_worker_id("dlq-handler")
        self._dlq_topic = config.dlq_topic
        self._counts: Counter[str] = Counter()
        self._consumer: MessageConsumer | None = None

        logger.info(
            "Initialized DLQ handler",
            extra={"dlq_topic": self._dlq_topic, "group_id": config.dlq_consumer_group},
        )

    @property
    def counts_by_reason(self) -> dict[str, int]:
        return dict(self._counts)

    @property
    def total_records(self) -> int:
        return sum(self._counts.values())

    async def start(self) -> None:
        """Start consuming the dead-letter topic. Blocks until stopped."""
        self._consumer = MessageConsumer(
            config=self.config,
            group_id=self.config.dlq_consumer_group,
            topics=[self._dlq_topic],
            message_handler=self.handle_message,
            worker_id=self.worker_id,
        )
        logger.info("Starting DLQ handler", extra={"dlq_topic": self._dlq_topic})
        await self._consumer.start()

    async def stop(self) -> None:
        """Stop the handler. Safe to call multiple times."""
        if self._consumer:
            await self._consumer.stop()
            self._consumer = None

        logger.info(
            "DLQ handler stopped",
            extra={"dlq_counts": self.counts_by_reason},
        )

    async def handle_message(self, message: PipelineMessage) -> None:
        """Log one dead-letter record. Never raises, so review never stalls."""
        transport = {
            "message_topic": message.topic,
            "message_partition": message.partition,
            "message_offset": message.offset,
            "message_key": message.key_text,
            "dlq_headers": message.headers_dict(),
        }

        try:
            record = self.parse_dlq_message(message)
        except (PydanticValidationError, ValueError) as e:
            self._counts[UNPARSEABLE] += 1
            logger.warning(
                "Unparseable record on dead-letter topic",
                extra={
                    **transport,
                    "error_type": type(e).__name__,
                    "error_message": str(e)[:500],
                    "event_payload": message.value_text,
                },
            )
            return

        self._counts[record.reason] += 1
        logger.error(
            "Dead-lettered order received",
            extra={
                **transport,
                "event_id": record.event_id,
                "origin_topic": record.origin_topic,
                "attempt": record.attempt_count,
                "reason": record.reason,
                "error_type": record.error_type,
                "error_message": record.error_message,
                "error_category": record.error_category,
                "event_payload": record.event.to_wire() if record.event else record.raw_value,
            },
        )

    @staticmethod
    def parse_dlq_message(message: PipelineMessage) -> DeadLetterRecord:
        if not message.value:
            raise ValueError("Dead-letter message has no value")
        return DeadLetterRecord.from_bytes(message.value)


__all__ = ["DLQHandler"]
