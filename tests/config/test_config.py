import os
from pathlib import Path
from unittest.mock import patch

import pytest
import yaml

from config.config import (
    DEFAULT_CONFIG_FILE,
    PipelineConfig,
    _as_bool,
    _as_list,
    _deep_merge,
    _expand_env_vars,
    get_config,
    load_config,
    load_yaml,
    reset_config,
    set_config,
)


def _write_config(tmp_path: Path, data: dict) -> Path:
    path = tmp_path / "config.yaml"
    path.write_text(yaml.dump(data))
    return path


# =========================================================================
# load_yaml
# =========================================================================


class TestLoadYaml:
    def test_returns_empty_dict_for_nonexistent_file(self):
        assert load_yaml(Path("/nonexistent/path/config.yaml")) == {}

    def test_loads_yaml_file(self, tmp_path):
        config_file = tmp_path / "test.yaml"
        config_file.write_text("key: value\nnested:\n  a: 1\n")
        assert load_yaml(config_file) == {"key": "value", "nested": {"a": 1}}

    def test_returns_empty_dict_for_empty_file(self, tmp_path):
        config_file = tmp_path / "empty.yaml"
        config_file.write_text("")
        assert load_yaml(config_file) == {}


# =========================================================================
# _expand_env_vars
# =========================================================================


class TestExpandEnvVars:
    def test_expands_simple_variable(self):
        with patch.dict(os.environ, {"MY_VAR": "hello"}):
            assert _expand_env_vars("prefix-${MY_VAR}-suffix") == "prefix-hello-suffix"

    def test_expands_variable_with_default(self):
        with patch.dict(os.environ, {}, clear=True):
            assert _expand_env_vars("${MISSING_VAR:-fallback}") == "fallback"

    def test_uses_env_value_over_default(self):
        with patch.dict(os.environ, {"MY_VAR": "real_value"}):
            assert _expand_env_vars("${MY_VAR:-fallback}") == "real_value"

    def test_expands_nested_structures(self):
        with patch.dict(os.environ, {"VAL": "x"}):
            data = {"a": {"b": ["${VAL}", "static"]}, "port": 5432}
            assert _expand_env_vars(data) == {"a": {"b": ["x", "static"]}, "port": 5432}

    def test_keeps_literal_when_no_env_var(self):
        with patch.dict(os.environ, {}, clear=True):
            assert _expand_env_vars("${UNDEFINED_VAR}") == "${UNDEFINED_VAR}"

    def test_empty_default_value(self):
        with patch.dict(os.environ, {}, clear=True):
            assert _expand_env_vars("${MISSING:-}") == ""


# =========================================================================
# _deep_merge / coercion helpers
# =========================================================================


class TestDeepMerge:
    def test_merges_nested_dicts(self):
        base = {"x": {"a": 1, "b": 2}}
        overlay = {"x": {"b": 3, "c": 4}}
        assert _deep_merge(base, overlay) == {"x": {"a": 1, "b": 3, "c": 4}}

    def test_overlay_replaces_dict_with_non_dict(self):
        assert _deep_merge({"a": {"nested": True}}, {"a": "flat"}) == {"a": "flat"}

    def test_does_not_modify_original(self):
        base = {"a": 1}
        _deep_merge(base, {"b": 2})
        assert base == {"a": 1}


class TestCoercion:
    @pytest.mark.parametrize("value", ["true", "True", "1", "yes", "on", True])
    def test_truthy(self, value):
        assert _as_bool(value) is True

    @pytest.mark.parametrize("value", ["false", "0", "no", "", False])
    def test_falsy(self, value):
        assert _as_bool(value) is False

    def test_list_from_comma_string(self):
        assert _as_list("book, pen ,,lamp") == ["book", "pen", "lamp"]

    def test_list_from_yaml_list(self):
        assert _as_list(["book", 7]) == ["book", "7"]

    @pytest.mark.parametrize("value", [None, "", []])
    def test_empty_list(self, value):
        assert _as_list(value) == []


# =========================================================================
# PipelineConfig
# =========================================================================


class TestPipelineConfig:
    def test_default_values(self):
        config = PipelineConfig()
        assert config.orders_topic == "orders"
        assert config.dlq_topic == "orders-dlq"
        assert config.consumer_group == "order-processor-group"
        assert config.worker_count == 3
        assert config.max_attempts == 3
        assert config.base_delay_seconds == 1.0
        assert config.multiplier == 2.0
        assert config.stats_port == 8080

    def test_dlq_topic_derived_from_orders_topic(self):
        assert PipelineConfig(orders_topic="purchases").dlq_topic == "purchases-dlq"

    def test_explicit_dlq_topic_kept(self):
        assert PipelineConfig(dlq_topic="dead-orders").dlq_topic == "dead-orders"

    def test_defaults_validate(self):
        PipelineConfig().validate()

    @pytest.mark.parametrize(
        "kwargs, match",
        [
            ({"bootstrap_servers": ""}, "bootstrap_servers"),
            ({"dlq_topic": "orders"}, "must differ"),
            ({"max_attempts": 0}, "max_attempts"),
            ({"base_delay_seconds": -1.0}, "base_delay_seconds"),
            ({"multiplier": 0.5}, "multiplier"),
            ({"worker_count": 0}, "worker_count"),
            ({"worker_count": 65}, "worker_count"),
            ({"jitter_ratio": 1.5}, "jitter_ratio"),
            ({"base_delay_seconds": 10.0, "max_delay_seconds": 5.0}, "max_delay_seconds"),
            ({"security_protocol": "TLS"}, "security_protocol"),
        ],
    )
    def test_rejects_invalid_settings(self, kwargs, match):
        with pytest.raises(ValueError, match=match):
            PipelineConfig(**kwargs).validate()

    def test_rejects_heartbeat_too_close_to_session_timeout(self):
        config = PipelineConfig(
            consumer_defaults={"heartbeat_interval_ms": 20000, "session_timeout_ms": 30000}
        )
        with pytest.raises(ValueError, match="heartbeat_interval_ms"):
            config.validate()

    def test_rejects_session_timeout_above_max_poll_interval(self):
        config = PipelineConfig(
            consumer_defaults={"session_timeout_ms": 400000, "max_poll_interval_ms": 300000}
        )
        with pytest.raises(ValueError, match="session_timeout_ms"):
            config.validate()

    def test_rejects_unknown_offset_reset(self):
        config = PipelineConfig(consumer_defaults={"auto_offset_reset": "newest"})
        with pytest.raises(ValueError, match="auto_offset_reset"):
            config.validate()


# =========================================================================
# load_config
# =========================================================================


class TestLoadConfig:
    def test_raises_for_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "missing.yaml")

    def test_raises_for_missing_kafka_section(self, tmp_path):
        path = _write_config(tmp_path, {"server": {"stats_port": 8080}})
        with pytest.raises(ValueError, match="kafka"):
            load_config(path)

    def test_loads_minimal_config(self, tmp_path):
        path = _write_config(tmp_path, {"kafka": {"connection": {"bootstrap_servers": "broker:9092"}}})

        config = load_config(path)

        assert config.bootstrap_servers == "broker:9092"
        assert config.orders_topic == "orders"
        assert config.dlq_topic == "orders-dlq"

    def test_loads_orders_and_retry_sections(self, tmp_path):
        path = _write_config(
            tmp_path,
            {
                "kafka": {
                    "connection": {"bootstrap_servers": "broker:9092"},
                    "orders": {
                        "topics": {"orders": "purchases", "dlq": "purchases-dead"},
                        "consumer_group": "purchases-group",
                        "worker_count": 5,
                        "allowed_products": ["book", "pen"],
                        "retry": {"max_attempts": 5, "base_delay_seconds": 0.5, "multiplier": 3.0},
                    },
                },
                "server": {"stats_port": 9090, "metrics_port": 9100},
            },
        )

        config = load_config(path)

        assert config.orders_topic == "purchases"
        assert config.dlq_topic == "purchases-dead"
        assert config.consumer_group == "purchases-group"
        assert config.worker_count == 5
        assert config.allowed_products == ["book", "pen"]
        assert config.max_attempts == 5
        assert config.base_delay_seconds == 0.5
        assert config.multiplier == 3.0
        assert config.stats_port == 9090
        assert config.metrics_port == 9100

    def test_applies_overrides(self, tmp_path):
        path = _write_config(tmp_path, {"kafka": {"connection": {"bootstrap_servers": "broker:9092"}}})

        config = load_config(path, overrides={"orders": {"retry": {"max_attempts": 7}}})

        assert config.max_attempts == 7
        assert config.bootstrap_servers == "broker:9092"

    def test_expands_env_vars_and_coerces_types(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(
            "kafka:\n"
            "  connection:\n"
            "    bootstrap_servers: ${TEST_BROKERS:-localhost:9092}\n"
            "  orders:\n"
            "    worker_count: ${TEST_WORKERS:-3}\n"
            "    allowed_products: ${TEST_PRODUCTS:-}\n"
            "    retry:\n"
            "      drain_on_shutdown: ${TEST_DRAIN:-false}\n"
        )

        env = {"TEST_BROKERS": "kafka-1:9092", "TEST_WORKERS": "8", "TEST_PRODUCTS": "book,pen", "TEST_DRAIN": "true"}
        with patch.dict(os.environ, env):
            config = load_config(path)

        assert config.bootstrap_servers == "kafka-1:9092"
        assert config.worker_count == 8
        assert config.allowed_products == ["book", "pen"]
        assert config.drain_on_shutdown is True

    def test_validates_after_loading(self, tmp_path):
        path = _write_config(
            tmp_path,
            {"kafka": {"orders": {"topics": {"orders": "orders", "dlq": "orders"}}}},
        )
        with pytest.raises(ValueError, match="must differ"):
            load_config(path)

    def test_blank_metrics_port_disables_metrics(self, tmp_path):
        path = _write_config(tmp_path, {"kafka": {}, "server": {"metrics_port": ""}})
        assert load_config(path).metrics_port is None

    def test_bundled_config_loads(self):
        with patch.dict(os.environ, {}, clear=True):
            config = load_config(DEFAULT_CONFIG_FILE)

        assert config.orders_topic == "orders"
        assert config.dlq_topic == "orders-dlq"
        assert config.worker_count == 3
        assert config.allowed_products == []
        assert config.metrics_port == 8000


# =========================================================================
# Singleton: get_config / set_config / reset_config
# =========================================================================


class TestConfigSingleton:
    def setup_method(self):
        reset_config()

    def teardown_method(self):
        reset_config()

    def test_set_config_and_get_config(self):
        custom = PipelineConfig(bootstrap_servers="test:9092")
        set_config(custom)
        assert get_config() is custom

    def test_reset_config_clears_singleton(self):
        set_config(PipelineConfig(bootstrap_servers="test:9092"))
        reset_config()

        from config import config as config_module

        assert config_module._config is None
