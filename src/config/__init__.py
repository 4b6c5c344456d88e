"""Configuration loading for the order pipeline.

Configuration is loaded from ``config/config.yaml`` (bundled default) or a
path given on the command line.

Main Functions
--------------

    - load_config(): Load configuration from a YAML file
    - get_config(): Get or load singleton config instance
    - set_config(): Replace the singleton (tests)
    - reset_config(): Reset singleton config instance

Usage
-----

    >>> from config import get_config
    >>> config = get_config()
    >>> config.orders_topic
    'orders'
    >>> config.dlq_topic
    'orders-dlq'

Configuration Priority
----------------------

1. ``overrides`` passed to load_config()
2. Environment variables referenced as ${VAR} in YAML
3. YAML values
4. Dataclass defaults
"""

from config.config import (
    DEFAULT_CONFIG_FILE,
    PipelineConfig,
    get_config,
    load_config,
    reset_config,
    set_config,
)

__all__ = [
    "load_config",
    "get_config",
    "set_config",
    "reset_config",
    "PipelineConfig",
    "DEFAULT_CONFIG_FILE",
]
