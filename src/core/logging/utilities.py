"""Logging utility functions."""

import logging
from typing import Any


def log_exception(
    logger: logging.Logger,
    exc: Exception,
    msg: str,
    level: int = logging.ERROR,
    include_traceback: bool = True,
    **kwargs: Any,
) -> None:
    """
    Log exception with context and optional traceback.

    Automatically extracts error_category from PipelineError subclasses.

    Args:
        logger: Logger instance
        exc: Exception to log
        msg: Context message
        level: Log level (default: ERROR)
        include_traceback: Include full traceback (default: True)
        **kwargs: Additional context fields

    Example:
        try:
            await sink.record(event, topic, attempt, error)
        except SinkUnavailableError as e:
            log_exception(logger, e, "Dead-letter write failed", event_id=event.order_id)
    """
    error_category = kwargs.get("error_category")
    if error_category is None and hasattr(exc, "category"):
        cat = exc.category
        kwargs["error_category"] = cat.value if hasattr(cat, "value") else str(cat)

    error_msg = str(exc)
    if len(error_msg) > 500:
        error_msg = error_msg[:500] + "..."
    kwargs["error_message"] = error_msg
    kwargs.setdefault("error_type", type(exc).__name__)

    if include_traceback:
        logger.log(level, msg, exc_info=exc, extra=kwargs)
    else:
        logger.log(level, msg, extra=kwargs)


_BANNER_FIELDS: list[tuple[str, str]] = [
    ("instance_id", "Instance:     {}"),
    ("input_topic", "Input Topic:  {}"),
    ("dlq_topic", "DLQ Topic:    {}"),
    ("consumer_group", "Group:        {}"),
    ("stats_port", "Stats:        http://localhost:{}/aggregation/stats"),
]


def log_startup_banner(
    logger: logging.Logger,
    worker_name: str,
    **kwargs: Any,
) -> None:
    """
    Log startup banner with worker configuration.

    Args:
        logger: Logger instance
        worker_name: Worker name (e.g., "Order Consumer")
        **kwargs: Optional fields: instance_id, input_topic, dlq_topic,
            consumer_group, stats_port, version
    """
    separator = "=" * 50

    lines = ["", separator, worker_name]

    version = kwargs.get("version")
    if version:
        lines.append(f"Version: {version}")

    lines.append(separator)

    for field_name, fmt in _BANNER_FIELDS:
        value = kwargs.get(field_name)
        if value:
            lines.append(fmt.format(value))

    lines.append(separator)
    lines.append("")

    logger.info("\n".join(lines))
