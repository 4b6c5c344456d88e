"""
Dead-letter record schema.

Published to the dead-letter topic for every event that failed permanently
or exhausted its retries. Carries enough context for an operator to inspect
or replay the event out-of-band.
"""

from datetime import datetime, timezone
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator

from order_pipeline.schemas.events import OrderEvent

REASON_PERMANENT = "permanent"
REASON_EXHAUSTED = "exhausted"


class DeadLetterRecord(BaseModel):
    """Schema for records on the dead-letter topic.

    Attributes:
        event: The failed event, or None when the payload could not be decoded
        raw_value: Original payload text (only set when undecodable)
        origin_topic: Topic the event was consumed from
        attempt_count: Attempt on which the event was given up (1-indexed)
        reason: "permanent" (non-retryable failure) or "exhausted" (retries used up)
        error_type: Exception class name of the last failure
        error_message: Error description (truncated to 500 chars)
        error_category: Classification of the last failure
        consumer_group: Consumer group that processed the event
        worker_id: Worker instance that dead-lettered the event
        dead_lettered_at: Timestamp when the record was created

    Example:
        >>> record = DeadLetterRecord(
        ...     event=OrderEvent(order_id="o-1", product="fail_temp", price=5.0),
        ...     origin_topic="orders",
        ...     attempt_count=3,
        ...     reason="exhausted",
        ...     error_type="TransientProcessingError",
        ...     error_message="Simulated database issue",
        ...     error_category="retryable",
        ... )
    """

    model_config = ConfigDict(ser_json_inf_nan="strings")

    event: Optional[OrderEvent] = Field(
        default=None,
        description="Failed event, None if the payload could not be decoded"
    )
    raw_value: Optional[str] = Field(
        default=None,
        description="Original payload text for undecodable messages"
    )
    origin_topic: str = Field(
        ...,
        description="Topic the event was consumed from",
        min_length=1
    )
    attempt_count: int = Field(
        ...,
        description="Attempt number on which the event was dead-lettered",
        ge=1
    )
    reason: Literal["permanent", "exhausted"] = Field(
        ...,
        description="Why the event was dead-lettered"
    )
    error_type: str = Field(
        ...,
        description="Exception class name of the last failure"
    )
    error_message: str = Field(
        default="",
        description="Error description (truncated to 500 chars)"
    )
    error_category: str = Field(
        ...,
        description="Classification of the last failure (retryable/permanent)"
    )
    consumer_group: Optional[str] = None
    worker_id: Optional[str] = None
    dead_lettered_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="Timestamp when the event was dead-lettered"
    )

    @field_validator("error_message")
    @classmethod
    def truncate_error_message(cls, v: str) -> str:
        if len(v) > 500:
            return v[:497] + "..."
        return v

    @field_serializer("dead_lettered_at")
    def serialize_timestamp(self, timestamp: datetime) -> str:
        """Serialize datetime to ISO 8601 format."""
        return timestamp.isoformat()

    @property
    def event_id(self) -> Optional[str]:
        return self.event.order_id if self.event else None

    def to_bytes(self) -> bytes:
        return self.model_dump_json(by_alias=True).encode("utf-8")

    @classmethod
    def from_bytes(cls, value: bytes | str) -> "DeadLetterRecord":
        return cls.model_validate_json(value)


__all__ = ["DeadLetterRecord", "REASON_PERMANENT", "REASON_EXHAUSTED"]
