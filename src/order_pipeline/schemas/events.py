"""
Order event schema.

Wire format on the orders topic (camelCase, as produced by the order API):

    {"orderId": "3f1c...", "product": "widget", "price": 19.99}

The price is NOT range-checked here. A negative or non-finite price is a
permanent processing failure decided by the retry consumer, so such events
still decode and can be dead-lettered with full context.
"""

import json
import math

from pydantic import BaseModel, ConfigDict, Field, field_validator


class OrderEvent(BaseModel):
    """Immutable order record flowing through the pipeline.

    Attributes:
        order_id: Opaque event identity (``orderId`` on the wire)
        product: Product identifier
        price: Unit price as a float; may be invalid until processed

    Example:
        >>> event = OrderEvent.model_validate({"orderId": "o-1", "product": "book", "price": 12.5})
        >>> event.order_id
        'o-1'
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, ser_json_inf_nan="strings")

    order_id: str = Field(
        ...,
        alias="orderId",
        description="Opaque event identifier",
        min_length=1,
    )
    product: str = Field(
        ...,
        description="Product identifier",
    )
    price: float = Field(
        ...,
        description="Order price (validated by the retry consumer, not on decode)",
    )

    @field_validator("order_id", mode="before")
    @classmethod
    def coerce_order_id(cls, v):
        """Accept numeric ids from producers that don't quote them."""
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        return v

    @field_validator("price", mode="before")
    @classmethod
    def reject_bool_price(cls, v):
        """JSON true/false is not a price, even though float() accepts it."""
        if isinstance(v, bool):
            raise ValueError("price must be a number, not a boolean")
        return v

    @property
    def has_valid_price(self) -> bool:
        return math.isfinite(self.price) and self.price >= 0

    @classmethod
    def from_bytes(cls, value: bytes | str) -> "OrderEvent":
        """Decode an event from a raw broker payload.

        Uses the stdlib decoder so ``NaN``/``Infinity`` literals survive
        and are rejected later as invalid prices rather than as parse errors.
        """
        if isinstance(value, bytes):
            value = value.decode("utf-8")
        return cls.model_validate(json.loads(value))

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True)


__all__ = ["OrderEvent"]
