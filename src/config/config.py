"""Order pipeline configuration from YAML file.

Loads from config/config.yaml with all settings in one place:
- Shared Kafka connection settings and consumer/producer defaults
- Order topics, consumer groups, and shard count
- Retry policy (max attempts, backoff base/multiplier)
- Stats and metrics HTTP ports

Environment variables ARE supported using ${VAR_NAME} and
${VAR_NAME:-default} syntax in YAML files.
"""

import json
import logging
import os
import re
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

logger = logging.getLogger(__name__)


def load_yaml(path: Path) -> Dict[str, Any]:
    """Load YAML file and return dict."""
    if not path.exists():
        return {}
    with open(path, "r") as f:
        return yaml.safe_load(f) or {}


def _expand_env_vars(data: Any) -> Any:
    """Recursively expand ${VAR_NAME} and ${VAR_NAME:-default} environment variables in config data."""
    if isinstance(data, dict):
        return {key: _expand_env_vars(value) for key, value in data.items()}
    elif isinstance(data, list):
        return [_expand_env_vars(item) for item in data]
    elif isinstance(data, str):
        pattern = r"\$\{([^}:]+)(?::-(([^}]*))?)?\}"

        def replacer(match):
            var_name = match.group(1)
            default_value = match.group(2) if match.group(2) is not None else match.group(0)
            return os.getenv(var_name, default_value)

        return re.sub(pattern, replacer, data)
    else:
        return data


def _as_bool(value: Any) -> bool:
    # bool("false") would be True
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


def _as_list(value: Any) -> List[str]:
    if not value:
        return []
    if isinstance(value, str):
        return [item.strip() for item in value.split(",") if item.strip()]
    return [str(item) for item in value]


# Default config file: config/config.yaml in src/ directory
DEFAULT_CONFIG_FILE = Path(__file__).parent / "config.yaml"


@dataclass
class PipelineConfig:
    """Order pipeline configuration.

    Configuration structure:
        kafka:
          connection: {...}           # Shared connection settings
          consumer_defaults: {...}    # Consumer tuning
          producer_defaults: {...}    # Producer tuning (dead-letter writes)
          orders:
            topics: {orders, dlq}
            consumer_group: ...
            dlq_consumer_group: ...
            worker_count: 3
            allowed_products: []
            retry: {max_attempts, base_delay_seconds, multiplier, ...}
        server:
          stats_port: 8080
          metrics_port: 8000

    All Kafka timing values in milliseconds; retry delays in seconds.
    Treated as read-only once loaded.
    """

    # =========================================================================
    # CONNECTION SETTINGS
    # =========================================================================
    bootstrap_servers: str = "localhost:9092"
    security_protocol: str = "PLAINTEXT"
    sasl_mechanism: str = "PLAIN"
    sasl_plain_username: str = ""
    sasl_plain_password: str = ""
    request_timeout_ms: int = 120000  # 2 minutes
    metadata_max_age_ms: int = 300000  # 5 minutes
    connections_max_idle_ms: int = 540000  # 9 minutes

    consumer_defaults: Dict[str, Any] = field(default_factory=dict)
    producer_defaults: Dict[str, Any] = field(default_factory=dict)

    # =========================================================================
    # TOPICS AND GROUPS
    # =========================================================================
    orders_topic: str = "orders"
    dlq_topic: str = ""  # Empty means "{orders_topic}-dlq"
    consumer_group: str = "order-processor-group"
    dlq_consumer_group: str = "dlq-handler-group"
    worker_count: int = 3
    allowed_products: List[str] = field(default_factory=list)

    # =========================================================================
    # RETRY POLICY
    # =========================================================================
    max_attempts: int = 3
    base_delay_seconds: float = 1.0
    multiplier: float = 2.0
    max_delay_seconds: float = 30.0
    jitter_ratio: float = 0.0
    drain_on_shutdown: bool = False
    drain_timeout_seconds: float = 10.0

    # =========================================================================
    # SERVERS
    # =========================================================================
    stats_port: int = 8080
    metrics_port: Optional[int] = 8000

    def __post_init__(self):
        if not self.dlq_topic:
            self.dlq_topic = f"{self.orders_topic}-dlq"

    def validate(self) -> None:
        """Validate configuration for correctness and constraints."""
        if not self.bootstrap_servers:
            raise ValueError("bootstrap_servers is required in kafka.connection section")
        if not self.orders_topic:
            raise ValueError("kafka.orders.topics.orders is required")
        if self.dlq_topic == self.orders_topic:
            raise ValueError(
                f"dead-letter topic must differ from the orders topic, got '{self.dlq_topic}'"
            )

        settings = {
            "max_attempts": self.max_attempts,
            "base_delay_seconds": self.base_delay_seconds,
            "multiplier": self.multiplier,
            "max_delay_seconds": self.max_delay_seconds,
            "jitter_ratio": self.jitter_ratio,
            "worker_count": self.worker_count,
            "drain_timeout_seconds": self.drain_timeout_seconds,
        }
        self._validate_min(settings, "max_attempts", 1, inclusive=True, context="retry")
        self._validate_min(settings, "base_delay_seconds", 0, inclusive=True, context="retry")
        self._validate_min(settings, "multiplier", 1, inclusive=True, context="retry")
        self._validate_min(settings, "drain_timeout_seconds", 0, inclusive=True, context="retry")
        self._validate_range(settings, "worker_count", 1, 64, context="orders")
        self._validate_range(
            settings, "jitter_ratio", 0, self.multiplier - 1, context="retry"
        )
        if self.max_delay_seconds < self.base_delay_seconds:
            raise ValueError(
                f"retry: max_delay_seconds ({self.max_delay_seconds}) must be >= "
                f"base_delay_seconds ({self.base_delay_seconds})"
            )

        self._validate_consumer_settings(self.consumer_defaults, "consumer_defaults")
        self._validate_enum(
            {"security_protocol": self.security_protocol},
            "security_protocol",
            ["PLAINTEXT", "SSL", "SASL_PLAINTEXT", "SASL_SSL"],
            "connection",
        )

    @staticmethod
    def _validate_enum(
        settings: Dict[str, Any],
        key: str,
        valid_values: List[Any],
        context: str
    ) -> None:
        """Validate that a setting's value is in a list of valid values."""
        if key in settings and settings[key] not in valid_values:
            raise ValueError(
                f"{context}: {key} must be one of {valid_values}, "
                f"got '{settings[key]}'"
            )

    @staticmethod
    def _validate_min(
        settings: Dict[str, Any],
        key: str,
        min_value: float,
        inclusive: bool,
        context: str
    ) -> None:
        """Validate that a setting's value meets a minimum threshold."""
        if key in settings:
            value = settings[key]
            if inclusive and value < min_value:
                raise ValueError(
                    f"{context}: {key} must be >= {min_value}, got {value}"
                )
            elif not inclusive and value <= min_value:
                raise ValueError(
                    f"{context}: {key} must be > {min_value}, got {value}"
                )

    @staticmethod
    def _validate_range(
        settings: Dict[str, Any],
        key: str,
        min_value: float,
        max_value: float,
        context: str
    ) -> None:
        """Validate that a setting's value is within a range (inclusive)."""
        if key in settings:
            value = settings[key]
            if not (min_value <= value <= max_value):
                raise ValueError(
                    f"{context}: {key} must be between {min_value} and {max_value}, got {value}"
                )

    def _validate_consumer_settings(self, settings: Dict[str, Any], context: str) -> None:
        """Validate consumer settings against Kafka requirements and logical constraints."""
        if "heartbeat_interval_ms" in settings and "session_timeout_ms" in settings:
            heartbeat = settings["heartbeat_interval_ms"]
            session_timeout = settings["session_timeout_ms"]
            if heartbeat >= session_timeout / 3:
                raise ValueError(
                    f"{context}: heartbeat_interval_ms ({heartbeat}) must be < "
                    f"session_timeout_ms/3 ({session_timeout/3:.0f})"
                )

        if "session_timeout_ms" in settings and "max_poll_interval_ms" in settings:
            session_timeout = settings["session_timeout_ms"]
            max_poll_interval = settings["max_poll_interval_ms"]
            if session_timeout >= max_poll_interval:
                raise ValueError(
                    f"{context}: session_timeout_ms ({session_timeout}) must be < "
                    f"max_poll_interval_ms ({max_poll_interval})"
                )

        self._validate_min(settings, "max_poll_records", 1, inclusive=True, context=context)
        self._validate_enum(settings, "auto_offset_reset", ["earliest", "latest", "none"], context)


def _deep_merge(base: Dict[str, Any], overlay: Dict[str, Any]) -> Dict[str, Any]:
    """Deep merge overlay into base dict."""
    result = base.copy()
    for key, value in overlay.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def load_config(
    config_path: Optional[Path] = None,
    overrides: Optional[Dict[str, Any]] = None,
) -> PipelineConfig:
    """Load pipeline configuration from a config.yaml file.

    Environment variables ARE supported using ${VAR_NAME} syntax in YAML files.
    ``overrides`` is deep-merged into the ``kafka:`` section before parsing.
    """
    if config_path is None:
        config_path = DEFAULT_CONFIG_FILE

    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path}\n" f"Expected file: config/config.yaml"
        )

    logger.info(f"Loading configuration from file: {config_path}")
    yaml_data = load_yaml(config_path)
    yaml_data = _expand_env_vars(yaml_data)

    if "kafka" not in yaml_data:
        raise ValueError("Invalid config file: missing 'kafka:' section")

    kafka_config = yaml_data["kafka"]

    if overrides:
        logger.debug(f"Applying overrides: {list(overrides.keys())}")
        kafka_config = _deep_merge(kafka_config, overrides)

    connection = kafka_config.get("connection", {})
    orders = kafka_config.get("orders", {})
    topics = orders.get("topics", {})
    retry = orders.get("retry", {})
    server = yaml_data.get("server", {})

    metrics_port = server.get("metrics_port", 8000)

    config = PipelineConfig(
        bootstrap_servers=connection.get("bootstrap_servers", "localhost:9092"),
        security_protocol=connection.get("security_protocol", "PLAINTEXT"),
        sasl_mechanism=connection.get("sasl_mechanism", "PLAIN"),
        sasl_plain_username=connection.get("sasl_plain_username", ""),
        sasl_plain_password=connection.get("sasl_plain_password", ""),
        request_timeout_ms=int(connection.get("request_timeout_ms", 120000)),
        metadata_max_age_ms=int(connection.get("metadata_max_age_ms", 300000)),
        connections_max_idle_ms=int(connection.get("connections_max_idle_ms", 540000)),
        consumer_defaults=kafka_config.get("consumer_defaults", {}),
        producer_defaults=kafka_config.get("producer_defaults", {}),
        orders_topic=topics.get("orders", "orders"),
        dlq_topic=topics.get("dlq", ""),
        consumer_group=orders.get("consumer_group", "order-processor-group"),
        dlq_consumer_group=orders.get("dlq_consumer_group", "dlq-handler-group"),
        worker_count=int(orders.get("worker_count", 3)),
        allowed_products=_as_list(orders.get("allowed_products")),
        max_attempts=int(retry.get("max_attempts", 3)),
        base_delay_seconds=float(retry.get("base_delay_seconds", 1.0)),
        multiplier=float(retry.get("multiplier", 2.0)),
        max_delay_seconds=float(retry.get("max_delay_seconds", 30.0)),
        jitter_ratio=float(retry.get("jitter_ratio", 0.0)),
        drain_on_shutdown=_as_bool(retry.get("drain_on_shutdown", False)),
        drain_timeout_seconds=float(retry.get("drain_timeout_seconds", 10.0)),
        stats_port=int(server.get("stats_port", 8080)),
        metrics_port=int(metrics_port) if metrics_port not in (None, "") else None,
    )

    logger.debug(
        "Configuration loaded",
        extra={"topics": [config.orders_topic, config.dlq_topic], "group_id": config.consumer_group},
    )

    config.validate()
    return config


_config: Optional[PipelineConfig] = None


def get_config() -> PipelineConfig:
    """Get or load the singleton config instance."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def set_config(config: PipelineConfig) -> None:
    """Set the singleton config instance (useful for testing)."""
    global _config
    _config = config


def reset_config() -> None:
    """Reset the singleton config instance (forces reload on next get_config() call)."""
    global _config
    _config = None


def _cli_main() -> int:
    """CLI entry point for config validation and debugging."""
    import argparse

    parser = argparse.ArgumentParser(description="Order pipeline configuration tool")
    parser.add_argument("--config", type=Path, help="Path to config.yaml file")
    parser.add_argument("--json", action="store_true", help="Output in JSON format")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")

    try:
        config = load_config(config_path=args.config)
    except (FileNotFoundError, ValueError) as e:
        if args.json:
            print(json.dumps({"error": str(e)}))
        else:
            print(f"✗ Error: {e}", file=sys.stderr)
        return 1

    if args.json:
        print(json.dumps({"validation": {"passed": True}, "config": config.__dict__}, default=str))
    else:
        print("✓ Configuration validation passed")
        print(f"  - Orders topic: {config.orders_topic}")
        print(f"  - Dead-letter topic: {config.dlq_topic}")
        print(f"  - Max attempts: {config.max_attempts}")
    return 0


if __name__ == "__main__":
    sys.exit(_cli_main())
