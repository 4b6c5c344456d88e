"""Message schemas for the orders and dead-letter topics."""

from order_pipeline.schemas.dlq import REASON_EXHAUSTED, REASON_PERMANENT, DeadLetterRecord
from order_pipeline.schemas.events import OrderEvent

__all__ = [
    "OrderEvent",
    "DeadLetterRecord",
    "REASON_PERMANENT",
    "REASON_EXHAUSTED",
]
