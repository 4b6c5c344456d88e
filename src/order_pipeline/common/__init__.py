"""Shared infrastructure: Kafka transport, metrics and signal handling."""

from order_pipeline.common.consumer import MessageConsumer
from order_pipeline.common.types import PipelineMessage, from_consumer_record

__all__ = ["MessageConsumer", "PipelineMessage", "from_consumer_record"]
