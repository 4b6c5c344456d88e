"""Logging setup and configuration."""

import logging
import sys
from datetime import datetime
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path

from core.logging.context import set_log_context
from core.logging.formatters import ConsoleFormatter, JSONFormatter

# Default settings
DEFAULT_ROTATION_WHEN = "midnight"
DEFAULT_ROTATION_INTERVAL = 1
DEFAULT_BACKUP_COUNT = 7
DEFAULT_CONSOLE_LEVEL = logging.INFO
DEFAULT_FILE_LEVEL = logging.DEBUG

# Noisy loggers to suppress
NOISY_LOGGERS = [
    "aiokafka",
    "aiohttp",
    "aiohttp.access",
]


def get_log_file_path(log_dir: Path, domain: str | None = None, stage: str | None = None) -> Path:
    """
    Build log file path with a date subfolder.

    Structure: {log_dir}/{YYYY-MM-DD}/{domain}_{stage}_{HHMM}.log

    Args:
        log_dir: Base log directory
        domain: Pipeline domain (e.g. "orders")
        stage: Stage name (consumer, dlq_handler, ...)

    Returns:
        Full path to log file
    """
    now = datetime.now()
    parts = [p for p in (domain, stage) if p] or ["pipeline"]
    filename = f"{'_'.join(parts)}_{now.strftime('%H%M')}.log"
    return log_dir / now.strftime("%Y-%m-%d") / filename


def setup_logging(
    name: str = "order_pipeline",
    stage: str | None = None,
    domain: str | None = None,
    log_dir: Path | None = None,
    json_format: bool = False,
    console_level: int = DEFAULT_CONSOLE_LEVEL,
    file_level: int = DEFAULT_FILE_LEVEL,
    rotation_when: str = DEFAULT_ROTATION_WHEN,
    rotation_interval: int = DEFAULT_ROTATION_INTERVAL,
    backup_count: int = DEFAULT_BACKUP_COUNT,
    suppress_noisy: bool = True,
    worker_id: str | None = None,
) -> logging.Logger:
    """
    Configure root logging with a console handler and an optional rotating file.

    Console output is JSON when ``json_format`` is set (containerized
    deployments scraping stdout), otherwise human-readable. File output,
    when ``log_dir`` is given, is always JSON.

    Args:
        name: Logger name to return
        stage: Stage name for log context
        domain: Pipeline domain for log context
        log_dir: Directory for log files (no file handler when None)
        json_format: Use JSON format on the console
        console_level: Console handler level
        file_level: File handler level
        rotation_when: When to rotate logs - 'midnight', 'H' (hourly), 'M' (minutes)
        rotation_interval: Interval for rotation
        backup_count: Number of backup files to keep
        suppress_noisy: Quiet down Kafka and HTTP client loggers
        worker_id: Worker identifier for context

    Returns:
        Configured logger instance
    """
    if worker_id:
        set_log_context(worker_id=worker_id)
    if stage:
        set_log_context(stage=stage)
    if domain:
        set_log_context(domain=domain)

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)  # Capture all, handlers filter
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(console_level)
    console_handler.setFormatter(JSONFormatter() if json_format else ConsoleFormatter())
    root_logger.addHandler(console_handler)

    log_file = None
    if log_dir is not None:
        log_file = get_log_file_path(log_dir, domain=domain, stage=stage)
        log_file.parent.mkdir(parents=True, exist_ok=True)

        file_handler = TimedRotatingFileHandler(
            log_file,
            when=rotation_when,
            interval=rotation_interval,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setLevel(file_level)
        file_handler.setFormatter(JSONFormatter())
        root_logger.addHandler(file_handler)

    if suppress_noisy:
        for logger_name in NOISY_LOGGERS:
            logging.getLogger(logger_name).setLevel(logging.WARNING)

    logger = logging.getLogger(name)
    logger.debug(
        f"Logging initialized: file={log_file}, json={json_format}",
        extra={"operation": "setup_logging"},
    )
    return logger


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Logger instance
    """
    return logging.getLogger(name)
