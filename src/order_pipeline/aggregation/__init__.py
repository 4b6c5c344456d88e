"""Price aggregate and its HTTP read path."""

from order_pipeline.aggregation.aggregator import AggregateSnapshot, PriceAggregator
from order_pipeline.aggregation.stats_server import StatsServer

__all__ = ["AggregateSnapshot", "PriceAggregator", "StatsServer"]
