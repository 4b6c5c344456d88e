"""Order pipeline entry point. Use --help for usage."""

import argparse
import asyncio
import logging
import os
import socket
import sys
from pathlib import Path

from dotenv import load_dotenv
from prometheus_client import start_http_server

from config.config import PipelineConfig, load_config
from core.logging.setup import setup_logging
from order_pipeline.common.signals import setup_shutdown_signal_handlers
from order_pipeline.runner import PipelineRunner

# Project root directory (where .env file is located)
# __main__.py is at src/order_pipeline/__main__.py, so root is 3 levels up
PROJECT_ROOT = Path(__file__).parent.parent.parent

# Placeholder logger until setup_logging() is called in main()
logger = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="python -m order_pipeline",
        description="Run the order processing pipeline",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Consume orders with 3 shard workers and serve /aggregation/stats
    python -m order_pipeline

    # Also log everything that lands on the dead-letter topic
    python -m order_pipeline run --with-dlq-handler

    # Only watch the dead-letter topic
    python -m order_pipeline dlq
        """,
    )

    parser.add_argument(
        "command",
        nargs="?",
        choices=["run", "dlq"],
        default="run",
        help="run: consume orders (default); dlq: only run the dead-letter handler",
    )

    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to config.yaml (default: bundled config/config.yaml)",
    )

    parser.add_argument(
        "--worker-count",
        "-c",
        type=int,
        default=None,
        help="Number of shard workers sharing the consumer group (default: from config)",
    )

    parser.add_argument(
        "--with-dlq-handler",
        action="store_true",
        help="Run the dead-letter handler alongside the shard workers",
    )

    parser.add_argument(
        "--metrics-port",
        type=int,
        default=None,
        help="Port for Prometheus metrics server (default: from config, 0 disables)",
    )

    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=os.getenv("LOG_LEVEL", "INFO"),
        help="Logging level (default: INFO)",
    )

    parser.add_argument(
        "--log-dir",
        type=Path,
        default=None,
        help="Also write JSON logs to rotating files in this directory",
    )

    parser.add_argument(
        "--json-logs",
        action="store_true",
        default=os.getenv("JSON_LOGS", "").lower() in ("1", "true", "yes"),
        help="Emit JSON log lines on the console (also via JSON_LOGS env var)",
    )

    return parser.parse_args(argv)


def start_metrics_server(preferred_port: int) -> int:
    """Start Prometheus metrics server with automatic port fallback.
    Returns actual port number that the server is listening on."""
    try:
        start_http_server(preferred_port)
        return preferred_port
    except OSError as e:
        if e.errno != 98:
            raise
        logger.info(
            "Port already in use, finding available port",
            extra={"port": preferred_port},
        )
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
            s.bind(("", 0))
            available_port = s.getsockname()[1]
        start_http_server(available_port)
        return available_port


async def run_pipeline(config: PipelineConfig, args: argparse.Namespace) -> None:
    shutdown_event = asyncio.Event()

    def request_shutdown() -> None:
        if shutdown_event.is_set():
            return
        logger.info("Shutdown signal received, stopping pipeline")
        shutdown_event.set()

    setup_shutdown_signal_handlers(request_shutdown)

    runner = PipelineRunner(
        config,
        worker_count=args.worker_count,
        run_orders=args.command == "run",
        with_dlq_handler=args.command == "dlq" or args.with_dlq_handler,
    )
    await runner.run(shutdown_event)


def main(argv: list[str] | None = None) -> int:
    global logger

    load_dotenv(PROJECT_ROOT / ".env")
    args = parse_args(argv)

    setup_logging(
        name="order_pipeline",
        stage=args.command,
        log_dir=args.log_dir,
        json_format=args.json_logs,
        console_level=getattr(logging, args.log_level),
    )
    logger = logging.getLogger(__name__)

    try:
        config = load_config(args.config)
    except (FileNotFoundError, ValueError) as e:
        logger.error("Invalid configuration", extra={"error_message": str(e)})
        return 1

    metrics_port = args.metrics_port if args.metrics_port is not None else config.metrics_port
    if metrics_port:
        actual_port = start_metrics_server(metrics_port)
        logger.info("Metrics server started", extra={"port": actual_port})

    try:
        asyncio.run(run_pipeline(config, args))
    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received, shutting down...")
    except Exception:
        logger.error("Fatal error", exc_info=True)
        return 1

    logger.info("Pipeline shutdown complete")
    return 0


if __name__ == "__main__":
    sys.exit(main())
