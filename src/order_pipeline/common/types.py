"""Transport-agnostic message types."""

from dataclasses import dataclass

__all__ = [
    "PipelineMessage",
    "from_consumer_record",
]


@dataclass(frozen=True)
class PipelineMessage:
    """Transport-agnostic message received from Kafka."""

    topic: str
    partition: int
    offset: int
    timestamp: int
    key: bytes | None = None
    value: bytes | None = None
    headers: list[tuple[str, bytes]] | None = None

    @property
    def key_text(self) -> str | None:
        return self.key.decode("utf-8", errors="replace") if self.key else None

    @property
    def value_text(self) -> str | None:
        return self.value.decode("utf-8", errors="replace") if self.value else None

    def headers_dict(self) -> dict[str, str]:
        return {
            k: v.decode("utf-8", errors="replace") if isinstance(v, bytes) else v
            for k, v in (self.headers or [])
        }


def from_consumer_record(record) -> PipelineMessage:
    """Convert aiokafka ConsumerRecord to PipelineMessage."""
    headers = None
    if hasattr(record, "headers") and record.headers:
        headers = [(k, v) for k, v in record.headers]

    return PipelineMessage(
        topic=record.topic,
        partition=record.partition,
        offset=record.offset,
        timestamp=record.timestamp,
        key=record.key,
        value=record.value,
        headers=headers,
    )
