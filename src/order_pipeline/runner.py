"""
Pipeline runner: wires shard workers, the DLQ handler and the stats server,
and owns the shutdown sequence.
"""

import asyncio
import logging

from config.config import PipelineConfig
from core.logging.utilities import log_startup_banner
from order_pipeline.aggregation.aggregator import PriceAggregator
from order_pipeline.aggregation.stats_server import StatsServer
from order_pipeline.dlq.handler import DLQHandler
from order_pipeline.processing import ProcessingFunction
from order_pipeline.worker import OrderShardWorker

logger = logging.getLogger(__name__)

READINESS_CHECK_INTERVAL_SECONDS = 1.0


class PipelineRunner:
    """
    Runs the order pipeline until a shutdown event is set.

    Shutdown sequence:
        1. Stop consuming on every shard
        2. Drain or abandon pending retries (config.drain_on_shutdown)
        3. Stop dead-letter producers, DLQ handler and stats server

    Usage:
        >>> runner = PipelineRunner(config, worker_count=3, with_dlq_handler=True)
        >>> await runner.run(shutdown_event)
    """

    def __init__(
        self,
        config: PipelineConfig,
        worker_count: int | None = None,
        run_orders: bool = True,
        with_dlq_handler: bool = False,
        processor: ProcessingFunction | None = None,
    ):
        self.config = config
        self.aggregator = PriceAggregator()
        count = worker_count if worker_count is not None else config.worker_count
        if count < 1:
            raise ValueError(f"worker_count must be >= 1, got {count}")

        self.workers: list[OrderShardWorker] = []
        if run_orders:
            self.workers = [
                OrderShardWorker(config, self.aggregator, instance_id=str(i), processor=processor)
                for i in range(count)
            ]
        self.dlq_handler = DLQHandler(config) if with_dlq_handler else None
        self.stats_server = StatsServer(
            self.aggregator,
            port=config.stats_port if run_orders else None,
            worker_name="order-pipeline" if run_orders else "dlq-handler",
        )
        self._tasks: list[asyncio.Task] = []

    async def run(self, shutdown_event: asyncio.Event) -> None:
        """Start everything, wait for shutdown or a fatal worker error, then stop."""
        await self.stats_server.start()

        log_startup_banner(
            logger,
            worker_name="Order Pipeline",
            instance_id=f"{len(self.workers)} shard(s)",
            input_topic=self.config.orders_topic if self.workers else None,
            dlq_topic=self.config.dlq_topic,
            consumer_group=self.config.consumer_group if self.workers else self.config.dlq_consumer_group,
            stats_port=self.stats_server.actual_port,
        )

        for worker in self.workers:
            self._tasks.append(
                asyncio.create_task(worker.start(), name=f"orders-{worker.instance_id}")
            )
        if self.dlq_handler:
            self._tasks.append(asyncio.create_task(self.dlq_handler.start(), name="dlq-handler"))

        readiness_task = asyncio.create_task(self._watch_readiness())
        shutdown_waiter = asyncio.create_task(shutdown_event.wait())

        try:
            done, _ = await asyncio.wait(
                [shutdown_waiter, *self._tasks], return_when=asyncio.FIRST_COMPLETED
            )
            for task in done:
                if task is not shutdown_waiter and not task.cancelled() and task.exception():
                    self.stats_server.set_error(f"{task.get_name()} failed: {task.exception()}")
                    logger.error(
                        "Worker failed, shutting down pipeline",
                        extra={"worker_name": task.get_name()},
                        exc_info=task.exception(),
                    )
        finally:
            shutdown_waiter.cancel()
            readiness_task.cancel()
            await self.shutdown()

    async def shutdown(self) -> None:
        logger.info("Shutting down order pipeline")
        self.stats_server.set_ready(transport_connected=False)

        for worker in self.workers:
            try:
                await worker.stop(
                    drain=self.config.drain_on_shutdown,
                    drain_timeout=self.config.drain_timeout_seconds,
                )
            except Exception:
                logger.error(
                    "Error stopping shard worker",
                    extra={"worker_name": worker.worker_id},
                    exc_info=True,
                )

        if self.dlq_handler:
            try:
                await self.dlq_handler.stop()
            except Exception:
                logger.error("Error stopping DLQ handler", exc_info=True)

        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()

        snapshot = self.aggregator.snapshot()
        logger.info(
            "Order pipeline stopped",
            extra={"total_orders": snapshot.count, "total_value": snapshot.total},
        )
        await self.stats_server.stop()

    async def _watch_readiness(self) -> None:
        """Ready once every shard consumer is connected."""
        while True:
            connected = all(worker.is_running for worker in self.workers)
            self.stats_server.set_ready(transport_connected=connected)
            await asyncio.sleep(READINESS_CHECK_INTERVAL_SECONDS)


__all__ = ["PipelineRunner"]
