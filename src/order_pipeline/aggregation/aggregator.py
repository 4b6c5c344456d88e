"""
Running price aggregate over successfully processed orders.

One PriceAggregator is shared by every shard consumer in the process and is
read from the stats server thread, so count and total live behind a single
threading.Lock and are always read and written together.
"""

import logging
import threading
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AggregateSnapshot:
    """Consistent (count, total) pair read from the aggregator."""

    count: int = 0
    total: float = 0.0

    @property
    def average(self) -> float:
        if self.count == 0:
            return 0.0
        return self.total / self.count

    def to_stats(self) -> dict:
        """Format for the stats read path.

        Returns:
            {"totalOrders": int, "totalValue": "0.00", "runningAveragePrice": "0.00"}
        """
        return {
            "totalOrders": self.count,
            "totalValue": f"{self.total:.2f}",
            "runningAveragePrice": f"{self.average:.2f}",
        }


class PriceAggregator:
    """
    Thread-safe count/sum accumulator.

    update() and snapshot() both hold the same lock, so a reader never sees
    a total without the count that includes it. Inputs are assumed valid:
    the retry consumer only forwards finite, non-negative prices.

    Example:
        >>> aggregator = PriceAggregator()
        >>> aggregator.update(10.0)
        >>> aggregator.update(20.0)
        >>> aggregator.snapshot().to_stats()
        {'totalOrders': 2, 'totalValue': '30.00', 'runningAveragePrice': '15.00'}
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._count = 0
        self._total = 0.0

    def update(self, price: float) -> None:
        with self._lock:
            self._count += 1
            self._total += price
            count, total = self._count, self._total

        logger.debug(
            "Aggregate updated",
            extra={"price": price, "total_orders": count, "total_value": total},
        )

    def snapshot(self) -> AggregateSnapshot:
        with self._lock:
            return AggregateSnapshot(count=self._count, total=self._total)


__all__ = ["AggregateSnapshot", "PriceAggregator"]
