"""
Business processing for order events.

The processing function is what the retry consumer invokes on each attempt.
It raises typed pipeline errors so the failure classifier never needs to
inspect messages or product names.
"""

import logging
import math
from collections.abc import Awaitable, Callable, Iterable

from core.errors.exceptions import BusinessRuleError, TransientProcessingError, ValidationError
from order_pipeline.schemas.events import OrderEvent

logger = logging.getLogger(__name__)

ProcessingFunction = Callable[[OrderEvent], Awaitable[None]]

# Products that simulate downstream failures
FAIL_TEMP_PRODUCT = "fail_temp"
FAIL_PERM_PRODUCT = "fail_perm"


def validate_price(event: OrderEvent) -> None:
    """Raise ValidationError if the price is negative or not finite."""
    if not math.isfinite(event.price):
        raise ValidationError(
            f"Price must be a finite number, got {event.price}",
            context={"event_id": event.order_id, "price": event.price},
        )
    if event.price < 0:
        raise ValidationError(
            f"Price must be >= 0, got {event.price}",
            context={"event_id": event.order_id, "price": event.price},
        )


class OrderProcessor:
    """
    Default processing function for order events.

    - product "fail_temp" raises TransientProcessingError (simulated database issue)
    - product "fail_perm" raises BusinessRuleError
    - when allowed_products is set, any other product raises BusinessRuleError

    Product matching is case-insensitive.
    """

    def __init__(self, allowed_products: Iterable[str] | None = None):
        self.allowed_products = frozenset(p.strip().lower() for p in allowed_products or ())

    async def __call__(self, event: OrderEvent) -> None:
        await self.process(event)

    async def process(self, event: OrderEvent) -> None:
        product = event.product.strip().lower()

        if product == FAIL_TEMP_PRODUCT:
            raise TransientProcessingError(
                "Temporary failure - simulated database issue",
                context={"event_id": event.order_id, "product": event.product},
            )

        if product == FAIL_PERM_PRODUCT:
            raise BusinessRuleError(
                "Permanent failure - product rejected",
                context={"event_id": event.order_id, "product": event.product},
            )

        if self.allowed_products and product not in self.allowed_products:
            raise BusinessRuleError(
                f"Unrecognized product: {event.product}",
                context={"event_id": event.order_id, "product": event.product},
            )

        logger.debug(
            "Order processed",
            extra={"event_id": event.order_id, "product": event.product, "price": event.price},
        )


__all__ = [
    "ProcessingFunction",
    "OrderProcessor",
    "validate_price",
    "FAIL_TEMP_PRODUCT",
    "FAIL_PERM_PRODUCT",
]
