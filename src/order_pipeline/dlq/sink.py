"""Dead-letter sink contract used by the retry consumer."""

from typing import Protocol, runtime_checkable

from core.errors.exceptions import ExhaustedRetriesError
from core.types import ErrorCategory
from order_pipeline.schemas.dlq import REASON_EXHAUSTED, REASON_PERMANENT
from order_pipeline.schemas.events import OrderEvent


@runtime_checkable
class DeadLetterSink(Protocol):
    """
    Durable, append-only destination for failed events.

    record() must not return until the record is acknowledged. Implementations
    raise SinkUnavailableError when the record could not be written.
    """

    async def record(
        self,
        event: OrderEvent,
        origin_topic: str,
        attempt_count: int,
        last_error: Exception,
    ) -> None: ...


def describe_failure(last_error: Exception) -> tuple[str, Exception, ErrorCategory]:
    """
    Split a dead-lettering error into (reason, underlying error, category).

    ExhaustedRetriesError is unwrapped so records carry the class of the
    failure that kept recurring rather than the internal signal.
    """
    if isinstance(last_error, ExhaustedRetriesError):
        cause = last_error.cause or last_error
        return REASON_EXHAUSTED, cause, ErrorCategory.RETRYABLE

    category = getattr(last_error, "category", ErrorCategory.PERMANENT)
    if not isinstance(category, ErrorCategory):
        category = ErrorCategory.PERMANENT
    return REASON_PERMANENT, last_error, category


__all__ = ["DeadLetterSink", "describe_failure"]
