"""
Order pipeline: retrying order consumption with a running price aggregate.

Architecture:
    orders → MessageConsumer → RetryConsumer → PriceAggregator → /aggregation/stats
                                    ↓ (retryable failure)
                              RetryScheduler (in-process, exponential backoff)
                                    ↓ (permanent failure or retries exhausted)
                              orders-dlq → DLQHandler

Subpackages:
    schemas      - OrderEvent and DeadLetterRecord
    retry        - state machine, delayed requeue
    dlq          - dead-letter sink, producer and handler
    aggregation  - thread-safe aggregate and its HTTP read path
    common       - Kafka transport, metrics, signals

Dependencies:
    - core.*: errors, classification, backoff, logging
    - aiokafka: Kafka client
    - pydantic: Message schema validation
"""

__version__ = "0.1.0"
