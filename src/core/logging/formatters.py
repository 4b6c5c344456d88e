"""Log formatters for JSON and console output."""

import json
import logging
import sys
from datetime import UTC, datetime
from typing import Any

from core.logging.context import get_log_context, get_message_context
from core.utils.json_serializers import json_serializer


class JSONFormatter(logging.Formatter):
    """
    JSON log formatter with context injection.

    Produces one JSON object per line for easy parsing with jq/grep.
    """

    # Fields to extract from LogRecord extras
    EXTRA_FIELDS = [
        # Event identity
        "event_id",
        "product",
        "price",
        "origin_topic",
        # Retry state machine
        "state",
        "attempt",
        "max_attempts",
        "total_attempts",
        "delay_seconds",
        "reason",
        "pending_retries",
        "abandoned_count",
        "event_ids",
        # Errors
        "error_category",
        "error_message",
        "error_type",
        "error",
        # Dead-letter
        "dlq_topic",
        "dlq_partition",
        "dlq_offset",
        "dlq_headers",
        "dlq_counts",
        "event_payload",
        # Aggregate
        "total_orders",
        "total_value",
        # Operation tracking
        "operation",
        "duration_ms",
        "worker_name",
        "group_id",
        "topics",
        "partitions",
        "port",
        # Message transport metadata
        "message_topic",
        "message_partition",
        "message_offset",
        "message_key",
    ]

    # Type mapping for numeric fields so aggregations don't see strings
    NUMERIC_FIELDS = {
        "price": float,
        "delay_seconds": float,
        "duration_ms": float,
        "total_value": float,
        "attempt": int,
        "max_attempts": int,
        "total_attempts": int,
        "pending_retries": int,
        "abandoned_count": int,
        "total_orders": int,
        "dlq_partition": int,
        "dlq_offset": int,
        "message_partition": int,
        "message_offset": int,
        "port": int,
    }

    def _ensure_type(self, field: str, value: Any) -> Any:
        """
        Coerce numeric fields to their expected type.

        Returns None when conversion fails.
        """
        if field not in self.NUMERIC_FIELDS or value is None:
            return value

        expected_type = self.NUMERIC_FIELDS[field]
        try:
            return expected_type(value)
        except (ValueError, TypeError):
            return None

    @staticmethod
    def _base_log_entry(record: logging.LogRecord) -> dict[str, Any]:
        return {
            "ts": datetime.now(UTC).strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

    @staticmethod
    def _inject_context(log_entry: dict[str, Any]) -> None:
        for field, value in get_log_context().items():
            if value:
                log_entry[field] = value

        message_context = get_message_context()
        if message_context["message_topic"]:
            log_entry.update(message_context)

    @staticmethod
    def _should_include_source_location(record: logging.LogRecord) -> bool:
        return record.levelno in (logging.DEBUG, logging.ERROR, logging.CRITICAL)

    def _inject_extra_fields(self, log_entry: dict[str, Any], record: logging.LogRecord) -> None:
        for field in self.EXTRA_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                log_entry[field] = self._ensure_type(field, value)

    def _inject_exception(self, log_entry: dict[str, Any], record: logging.LogRecord) -> None:
        if not record.exc_info:
            return

        exc_type, exc_value, _ = record.exc_info
        log_entry["exception"] = {
            "type": exc_type.__name__ if exc_type else None,
            "message": str(exc_value) if exc_value else None,
            "stacktrace": self.formatException(record.exc_info),
        }

    def format(self, record: logging.LogRecord) -> str:
        log_entry = self._base_log_entry(record)

        self._inject_context(log_entry)

        if self._should_include_source_location(record):
            log_entry["file"] = f"{record.filename}:{record.lineno}"

        self._inject_extra_fields(log_entry, record)
        self._inject_exception(log_entry, record)

        return json.dumps(log_entry, default=json_serializer, ensure_ascii=False)


class ConsoleFormatter(logging.Formatter):
    """
    Human-readable console formatter with color-coded log levels.

    Colors are auto-disabled when output is not a TTY (pipes, files).
    """

    # ANSI color codes
    COLORS = {
        logging.DEBUG: "\033[36m",  # Cyan
        logging.INFO: "\033[32m",  # Green
        logging.WARNING: "\033[33m",  # Yellow
        logging.ERROR: "\033[31m",  # Red
        logging.CRITICAL: "\033[35m",  # Magenta
    }
    RESET = "\033[0m"

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._use_colors = sys.stdout.isatty()

    def _format_level_name(self, record: logging.LogRecord) -> str:
        level_name = record.levelname
        if not self._use_colors:
            return level_name

        color = self.COLORS.get(record.levelno, "")
        if not color:
            return level_name

        return f"{color}{level_name}{self.RESET}"

    @staticmethod
    def _build_prefix(level_name: str, log_context: dict[str, Any]) -> str:
        parts = [
            datetime.now().strftime("%Y-%m-%d %H:%M:%S"),
            level_name,
        ]

        if log_context["domain"]:
            parts.append(f"[{log_context['domain']}]")
        if log_context["stage"]:
            parts.append(f"[{log_context['stage']}]")

        return " - ".join(parts)

    @staticmethod
    def _build_tags(record: logging.LogRecord, log_context: dict[str, Any]) -> list[str]:
        event_id = getattr(record, "event_id", None) or log_context.get("event_id")
        attempt = getattr(record, "attempt", None)

        tags = []
        if event_id:
            tags.append(f"[{str(event_id)[:8]}]")
        if attempt:
            tags.append(f"[attempt:{attempt}]")
        return tags

    def format(self, record: logging.LogRecord) -> str:
        """Format log record for console output with optional color coding."""
        log_context = get_log_context()

        level_name = self._format_level_name(record)
        prefix = self._build_prefix(level_name, log_context)
        tags = self._build_tags(record, log_context)

        message = record.getMessage()
        if tags:
            message = f"{' '.join(tags)} {message}"

        line = f"{prefix} - {message}"
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line
