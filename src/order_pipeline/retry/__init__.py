"""
Retry handling for order events.

Components:
    RetryConsumer  - per-event state machine (process, retry, dead-letter)
    RetryScheduler - in-process delayed requeue
    DelayQueue     - min-heap of envelopes keyed by due time
    RetryEnvelope  - event plus attempt bookkeeping
"""

from order_pipeline.retry.consumer import ProcessingState, RetryConsumer
from order_pipeline.retry.delay_queue import DelayQueue
from order_pipeline.retry.envelope import RetryEnvelope
from order_pipeline.retry.scheduler import RetryScheduler

__all__ = [
    "ProcessingState",
    "RetryConsumer",
    "RetryScheduler",
    "DelayQueue",
    "RetryEnvelope",
]
