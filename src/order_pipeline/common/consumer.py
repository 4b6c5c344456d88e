"""Kafka message consumer with per-message commits and redelivery on handler failure."""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable

from aiokafka import AIOKafkaConsumer
from aiokafka.structs import ConsumerRecord, TopicPartition

from config.config import PipelineConfig
from core.logging import MessageLogContext
from order_pipeline.common.kafka_config import build_connection_config
from order_pipeline.common.metrics import (
    record_message_consumed,
    update_assigned_partitions,
    update_connection_status,
)
from order_pipeline.common.types import PipelineMessage, from_consumer_record

logger = logging.getLogger(__name__)

# Pause before re-polling after a handler failure rewound a partition
REDELIVERY_BACKOFF_SECONDS = 1.0


class MessageConsumer:
    """Async Kafka consumer that hands each record to a message handler.

    The offset of a record is committed only after its handler returns.
    If the handler raises, the partition is rewound to that record so it is
    delivered again (at-least-once); later records of the same partition in
    the batch are not processed until then.
    """

    def __init__(
        self,
        config: PipelineConfig,
        group_id: str,
        topics: list[str],
        message_handler: Callable[[PipelineMessage], Awaitable[None]],
        worker_id: str,
        enable_message_commit: bool = True,
    ):
        if not topics:
            raise ValueError("At least one topic must be specified")

        self.config = config
        self.group_id = group_id
        self.topics = topics
        self.message_handler = message_handler
        self.worker_id = worker_id
        self.consumer_config: dict = dict(config.consumer_defaults)
        self._enable_message_commit = enable_message_commit
        self._consumer: AIOKafkaConsumer | None = None
        self._running = False

        logger.info(
            "Initialized message consumer",
            extra={
                "worker_name": worker_id,
                "topics": topics,
                "group_id": group_id,
                "enable_message_commit": enable_message_commit,
            },
        )

    # Optional consumer config keys forwarded to AIOKafkaConsumer if present
    _OPTIONAL_CONSUMER_KEYS = (
        "heartbeat_interval_ms",
        "fetch_min_bytes",
        "fetch_max_wait_ms",
    )

    def _build_kafka_config(self) -> dict:
        """Build the AIOKafkaConsumer configuration dict."""
        cfg = {
            **build_connection_config(self.config),
            "group_id": self.group_id,
            "client_id": self.worker_id,
            "enable_auto_commit": False,
            "auto_offset_reset": self.consumer_config.get("auto_offset_reset", "earliest"),
            "max_poll_records": self.consumer_config.get("max_poll_records", 100),
            "max_poll_interval_ms": self.consumer_config.get("max_poll_interval_ms", 300000),
            "session_timeout_ms": self.consumer_config.get("session_timeout_ms", 30000),
        }

        for key in self._OPTIONAL_CONSUMER_KEYS:
            if key in self.consumer_config:
                cfg[key] = self.consumer_config[key]

        return cfg

    async def start(self) -> None:
        """Connect and consume until stop() is called. Blocks."""
        if self._running:
            logger.warning("Consumer already running, ignoring duplicate start call")
            return

        logger.info("Starting message consumer", extra={"topics": self.topics, "group_id": self.group_id})

        self._consumer = AIOKafkaConsumer(*self.topics, **self._build_kafka_config())
        await self._consumer.start()
        self._running = True
        update_connection_status("consumer", connected=True)

        try:
            await self._consume_loop()
        except asyncio.CancelledError:
            logger.info("Consumer loop cancelled, shutting down")
            raise
        except Exception:
            logger.error("Consumer loop terminated with error", exc_info=True)
            raise
        finally:
            self._running = False

    async def stop(self) -> None:
        """Stop consuming. Offsets are already committed per message."""
        if self._consumer is None:
            logger.debug("Consumer not running or already stopped")
            return

        logger.info("Stopping message consumer", extra={"group_id": self.group_id})
        self._running = False

        try:
            await self._consumer.stop()
            logger.info("Message consumer stopped successfully")
        except Exception:
            logger.error("Error stopping message consumer", exc_info=True)
            raise
        finally:
            update_connection_status("consumer", connected=False)
            update_assigned_partitions(self.group_id, 0)
            self._consumer = None

    async def _wait_for_assignment(self) -> bool:
        """Wait for partition assignment, logging once. Returns True when assigned."""
        logged_waiting = False
        while self._running and self._consumer:
            assignment = self._consumer.assignment()
            if assignment:
                partition_info = [f"{tp.topic}:{tp.partition}" for tp in assignment]
                logger.info(
                    "Partition assignment received, starting message consumption",
                    extra={"group_id": self.group_id, "partitions": partition_info},
                )
                update_assigned_partitions(self.group_id, len(assignment))
                return True
            if not logged_waiting:
                logger.info(
                    "Waiting for partition assignment (consumer group rebalance in progress)",
                    extra={"group_id": self.group_id, "topics": self.topics},
                )
                logged_waiting = True
            await asyncio.sleep(0.5)
        return False

    async def _fetch_and_process_batch(self) -> bool:
        """Fetch a batch and process it partition by partition.

        Returns False if the consumer was stopped mid-batch, True otherwise.
        """
        data = await self._consumer.getmany(timeout_ms=1000)
        rewound = False

        for tp, messages in data.items():
            for message in messages:
                if not self._running:
                    return False
                if not await self._process_message(message):
                    if self._consumer is None:
                        return False
                    self._consumer.seek(tp, message.offset)
                    rewound = True
                    break

        if rewound:
            await asyncio.sleep(REDELIVERY_BACKOFF_SECONDS)
        return True

    async def _consume_loop(self) -> None:
        if not await self._wait_for_assignment():
            return

        while self._running and self._consumer:
            try:
                if not await self._fetch_and_process_batch():
                    return
            except asyncio.CancelledError:
                logger.info("Consumption loop cancelled")
                raise
            except Exception:
                logger.error("Error in consumption loop", exc_info=True)
                await asyncio.sleep(1)

    async def _process_message(self, message: ConsumerRecord) -> bool:
        """Run the handler for one record. Returns False if it must be redelivered."""
        with MessageLogContext(
            topic=message.topic,
            partition=message.partition,
            offset=message.offset,
            key=message.key.decode("utf-8", errors="replace") if message.key else None,
            consumer_group=self.group_id,
        ):
            start_time = time.perf_counter()
            pipeline_message = from_consumer_record(message)

            try:
                await self.message_handler(pipeline_message)
            except Exception as e:
                record_message_consumed(message.topic, self.group_id, success=False)
                logger.error(
                    "Message handler failed - offset not committed, message will be redelivered",
                    extra={
                        "error_type": type(e).__name__,
                        "error_message": str(e)[:500],
                        "duration_ms": round((time.perf_counter() - start_time) * 1000, 2),
                    },
                    exc_info=True,
                )
                return False

            if self._consumer is None:
                # stop() closed the client while the handler ran
                logger.info(
                    "Consumer stopped during handler, offset not committed",
                    extra={"group_id": self.group_id},
                )
                record_message_consumed(message.topic, self.group_id, success=True)
                return True

            if self._enable_message_commit:
                await self._consumer.commit(
                    {TopicPartition(message.topic, message.partition): message.offset + 1}
                )

            record_message_consumed(message.topic, self.group_id, success=True)
            return True

    @property
    def is_running(self) -> bool:
        return self._running and self._consumer is not None


__all__ = ["MessageConsumer"]
