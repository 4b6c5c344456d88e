"""
HTTP read path for the price aggregate, plus health endpoints.

Endpoints:
- /aggregation/stats - Current aggregate (never fails, zeros before any event)
- /health/live - Liveness probe (is the process running?)
- /health/ready - Readiness probe (are the shard consumers connected?)

The server runs on its own thread with its own event loop so a busy
consumption loop cannot starve the probes. Handlers only read state.

Usage:
    server = StatsServer(aggregator, port=8080)
    await server.start()
    server.set_ready(transport_connected=True)
    ...
    await server.stop()
"""

import asyncio
import logging
import threading
from datetime import UTC, datetime

from aiohttp import web

from order_pipeline.aggregation.aggregator import PriceAggregator

logger = logging.getLogger(__name__)


class StatsServer:
    """
    HTTP server exposing the aggregate and Kubernetes-style probes.

    Readiness Check:
        Returns 200 OK only once the transport connection is established and
        no worker failure has been recorded. Returns 503 otherwise.

    Example:
        >>> server = StatsServer(PriceAggregator(), port=0)
        >>> await server.start()
        >>> server.actual_port
        54321
        >>> await server.stop()
    """

    def __init__(
        self,
        aggregator: PriceAggregator,
        port: int | None = 8080,
        worker_name: str = "order-pipeline",
    ):
        """
        Initialize stats server.

        Args:
            aggregator: Aggregate to serve (read-only)
            port: HTTP port to listen on. Use 0 for dynamic port assignment,
                  or None to disable the server (default: 8080)
            worker_name: Name used in logs and probe responses
        """
        self.aggregator = aggregator
        self.port = port
        self.worker_name = worker_name
        self._enabled = port is not None
        self._ready = False
        self._transport_connected = False
        self._started_at = datetime.now(UTC)
        self._actual_port: int | None = None
        self._error_message: str | None = None

        # aiohttp components
        self._runner: web.AppRunner | None = None
        self._site: web.TCPSite | None = None

        # Thread management for isolated event loop
        self._thread: threading.Thread | None = None
        self._server_started = threading.Event()
        self._shutdown_event = threading.Event()
        self._state_lock = threading.Lock()

    def set_ready(self, transport_connected: bool) -> None:
        """Update readiness from the consumers' connection state."""
        with self._state_lock:
            self._transport_connected = transport_connected
            old_ready = self._ready
            self._ready = transport_connected and self._error_message is None

            if old_ready != self._ready:
                logger.info(
                    f"Readiness status changed: {old_ready} -> {self._ready}",
                    extra={"worker_name": self.worker_name},
                )

    def set_error(self, error_message: str) -> None:
        """Record a worker failure; readiness stays false from then on."""
        with self._state_lock:
            self._error_message = error_message
            self._ready = False
        logger.error(
            f"Stats server error state set: {error_message}",
            extra={"worker_name": self.worker_name},
        )

    async def handle_stats(self, request: web.Request) -> web.Response:
        """Handle GET /aggregation/stats."""
        return web.json_response(self.aggregator.snapshot().to_stats())

    async def handle_liveness(self, request: web.Request) -> web.Response:
        """Handle GET /health/live - always 200 while the server runs."""
        uptime_seconds = (datetime.now(UTC) - self._started_at).total_seconds()
        return web.json_response(
            {
                "status": "alive",
                "worker": self.worker_name,
                "uptime_seconds": int(uptime_seconds),
                "timestamp": datetime.now(UTC).isoformat(),
            }
        )

    async def handle_readiness(self, request: web.Request) -> web.Response:
        """Handle GET /health/ready - 200 if ready, 503 otherwise."""
        with self._state_lock:
            ready = self._ready
            transport_connected = self._transport_connected
            error_message = self._error_message

        body = {
            "status": "ready" if ready else "not_ready",
            "worker": self.worker_name,
            "checks": {"transport_connected": transport_connected},
            "timestamp": datetime.now(UTC).isoformat(),
        }
        if ready:
            return web.json_response(body, status=200)

        reasons = []
        if not transport_connected:
            reasons.append("transport_disconnected")
        if error_message:
            reasons.append("worker_failed")
            body["error"] = error_message
        body["reasons"] = reasons
        return web.json_response(body, status=503)

    def create_app(self) -> web.Application:
        """Create aiohttp application with stats and health endpoints."""
        app = web.Application()
        app.router.add_get("/aggregation/stats", self.handle_stats)
        app.router.add_get("/health/live", self.handle_liveness)
        app.router.add_get("/health/ready", self.handle_readiness)
        return app

    def _run_server_thread(self) -> None:
        """Entry point for the server thread."""
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        try:
            loop.run_until_complete(self._serve())
        except Exception as e:
            logger.error(
                f"Stats server thread error: {e}",
                extra={"worker_name": self.worker_name},
                exc_info=True,
            )
        finally:
            # Unblock start() if _serve() failed before binding
            self._server_started.set()
            loop.close()

    async def _serve(self) -> None:
        """Bind, then wait for the shutdown signal."""
        try:
            self._runner = web.AppRunner(self.create_app())
            await self._runner.setup()
            self._site = web.TCPSite(self._runner, "0.0.0.0", self.port, reuse_address=True)
            await self._site.start()

            # Capture actual port (important when using port=0 for dynamic assignment)
            if self._site._server and self._site._server.sockets:
                self._actual_port = self._site._server.sockets[0].getsockname()[1]
            else:
                self._actual_port = self.port

            logger.info(
                "Stats server started",
                extra={
                    "worker_name": self.worker_name,
                    "port": self._actual_port,
                    "stats_endpoint": f"http://localhost:{self._actual_port}/aggregation/stats",
                },
            )
            self._server_started.set()

            while not self._shutdown_event.is_set():
                await asyncio.sleep(0.1)
        finally:
            if self._runner:
                await self._runner.cleanup()
                self._runner = None
                self._site = None

    async def start(self) -> None:
        """
        Start the HTTP server in a dedicated thread.

        A bind failure is logged and the pipeline continues without the
        read path rather than crashing the consumers.
        """
        if not self._enabled:
            logger.debug("Stats server is disabled, skipping start")
            return

        if self._thread is not None and self._thread.is_alive():
            return

        self._thread = threading.Thread(
            target=self._run_server_thread,
            name=f"stats-server-{self.worker_name}",
            daemon=True,
        )
        self._thread.start()

        started = await asyncio.to_thread(self._server_started.wait, 5.0)
        if not started or self._actual_port is None:
            logger.error(
                "Stats server failed to start listening",
                extra={"worker_name": self.worker_name, "port": self.port},
            )
            self._enabled = False

    async def stop(self) -> None:
        """Stop the HTTP server and join its thread."""
        if not self._thread:
            return

        self._shutdown_event.set()
        await asyncio.to_thread(self._thread.join, 5.0)

        if self._thread.is_alive():
            logger.warning(
                "Stats server thread did not stop cleanly",
                extra={"worker_name": self.worker_name},
            )
        else:
            logger.info("Stats server stopped", extra={"worker_name": self.worker_name})

        self._thread = None
        self._actual_port = None
        self._server_started.clear()
        self._shutdown_event.clear()

    @property
    def is_ready(self) -> bool:
        with self._state_lock:
            return self._ready

    @property
    def actual_port(self) -> int | None:
        """Port the server is listening on (useful with port=0)."""
        return self._actual_port

    @property
    def is_enabled(self) -> bool:
        return self._enabled


__all__ = ["StatsServer"]
