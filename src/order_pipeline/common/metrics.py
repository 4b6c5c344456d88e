"""
Prometheus metrics for the order pipeline.

Metrics are registered on the default prometheus_client registry and exposed
by ``start_http_server(metrics_port)`` in the CLI entry point.

Metric naming follows <subsystem>_<name>_<unit> with ``_total`` for counters.
"""

from prometheus_client import Counter, Gauge, Histogram

# Message counts
messages_consumed_counter = Counter(
    "order_pipeline_messages_consumed_total",
    "Total number of messages consumed from topics",
    labelnames=["topic", "consumer_group", "success"],
)

# State machine outcomes
events_succeeded_counter = Counter(
    "order_pipeline_events_succeeded_total",
    "Total events processed successfully and added to the aggregate",
)

retries_scheduled_counter = Counter(
    "order_pipeline_retries_scheduled_total",
    "Total retries scheduled after a retryable failure",
    labelnames=["attempt"],
)

dlq_messages_counter = Counter(
    "order_pipeline_dlq_messages_total",
    "Total events sent to the dead-letter topic",
    labelnames=["reason"],
)

dlq_sink_failures_counter = Counter(
    "order_pipeline_dlq_sink_failures_total",
    "Total dead-letter writes that failed after local retries",
)

# Retry scheduler
pending_retries_gauge = Gauge(
    "order_pipeline_pending_retries",
    "Current number of events waiting for a scheduled retry",
    labelnames=["worker_id"],
)

# Connection health
connection_status_gauge = Gauge(
    "order_pipeline_connection_status",
    "Kafka connection status (1=connected, 0=disconnected)",
    labelnames=["component"],
)

consumer_assigned_partitions_gauge = Gauge(
    "order_pipeline_consumer_assigned_partitions",
    "Number of partitions assigned to consumer",
    labelnames=["consumer_group"],
)

# Processing duration
event_processing_duration_seconds = Histogram(
    "order_pipeline_event_processing_duration_seconds",
    "Time spent processing a single event attempt",
    labelnames=["outcome"],
    buckets=[0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0],
)


def record_message_consumed(topic: str, consumer_group: str, success: bool = True) -> None:
    messages_consumed_counter.labels(
        topic=topic, consumer_group=consumer_group, success=str(success).lower()
    ).inc()


def record_event_succeeded() -> None:
    events_succeeded_counter.inc()


def record_retry_scheduled(attempt: int) -> None:
    retries_scheduled_counter.labels(attempt=str(attempt)).inc()


def record_dlq_message(reason: str) -> None:
    dlq_messages_counter.labels(reason=reason).inc()


def record_dlq_sink_failure() -> None:
    dlq_sink_failures_counter.inc()


def record_processing_duration(outcome: str, duration: float) -> None:
    event_processing_duration_seconds.labels(outcome=outcome).observe(duration)


def update_pending_retries(worker_id: str, count: int) -> None:
    pending_retries_gauge.labels(worker_id=worker_id).set(count)


def update_connection_status(component: str, connected: bool) -> None:
    connection_status_gauge.labels(component=component).set(1 if connected else 0)


def update_assigned_partitions(consumer_group: str, count: int) -> None:
    consumer_assigned_partitions_gauge.labels(consumer_group=consumer_group).set(count)


__all__ = [
    "messages_consumed_counter",
    "events_succeeded_counter",
    "retries_scheduled_counter",
    "dlq_messages_counter",
    "dlq_sink_failures_counter",
    "pending_retries_gauge",
    "connection_status_gauge",
    "consumer_assigned_partitions_gauge",
    "event_processing_duration_seconds",
    "record_message_consumed",
    "record_event_succeeded",
    "record_retry_scheduled",
    "record_dlq_message",
    "record_dlq_sink_failure",
    "record_processing_duration",
    "update_pending_retries",
    "update_connection_status",
    "update_assigned_partitions",
]
