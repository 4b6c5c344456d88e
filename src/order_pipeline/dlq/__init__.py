"""
Dead-letter handling.

Components:
    DeadLetterSink - contract used by the retry consumer
    DLQProducer    - Kafka implementation of the sink
    DLQHandler     - consumer of the dead-letter topic for review
"""

from order_pipeline.dlq.handler import DLQHandler
from order_pipeline.dlq.producer import DLQProducer
from order_pipeline.dlq.sink import DeadLetterSink, describe_failure

__all__ = ["DeadLetterSink", "DLQProducer", "DLQHandler", "describe_failure"]
