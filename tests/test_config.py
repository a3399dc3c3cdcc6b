"""
Settings and Logging Tests
"""

import json
import logging
import sys
from datetime import timedelta

import pytest
from pydantic import ValidationError

from node_optimizer.common.config import Settings, get_settings, setup_logging
from node_optimizer.common.config.logging_config import ColoredFormatter, JSONFormatter


def make_record(msg="hello", level=logging.INFO, **extra):
    record = logging.LogRecord("node_optimizer.test", level, __file__, 10, msg, (), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestSettings:
    """Test suite for environment driven settings"""

    @pytest.fixture(autouse=True)
    def required_env(self, monkeypatch, tmp_path):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("GNO_PROJECT_ID", "123456789012")
        monkeypatch.setenv("GNO_CLUSTER_NAME", "prod")
        monkeypatch.setenv("GNO_CLUSTER_LOCATION", "ap-northeast-1")
        get_settings.cache_clear()
        yield
        get_settings.cache_clear()

    def test_defaults(self):
        settings = Settings()

        assert settings.cluster_name == "prod"
        assert settings.minimum_preemptible_node_count == 0
        assert settings.optimize_preemptible_node is True
        assert settings.eviction_backoff_seconds == 30.0
        assert settings.eviction_max_attempts == 3
        assert settings.node_pacing_seconds == 60.0
        assert settings.run_timeout_seconds is None
        assert settings.node_name_prefix_template is None
        assert settings.preemptible_label_value == "SPOT"

    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("GNO_MINIMUM_PREEMPTIBLE_NODE_COUNT", "2")
        monkeypatch.setenv("GNO_OPTIMIZE_AUTOSCALE_ONDEMAND_NODE", "false")
        monkeypatch.setenv("GNO_NODE_NAME_PREFIX_TEMPLATE", "gke-{cluster}-{pool}")

        settings = Settings()

        assert settings.minimum_preemptible_node_count == 2
        assert settings.optimize_autoscale_ondemand_node is False
        assert settings.node_name_prefix_template == "gke-{cluster}-{pool}"

    def test_missing_required(self, monkeypatch):
        monkeypatch.delenv("GNO_CLUSTER_NAME")
        with pytest.raises(ValidationError):
            Settings()

    def test_negative_minimum_rejected(self, monkeypatch):
        monkeypatch.setenv("GNO_MINIMUM_PREEMPTIBLE_NODE_COUNT", "-1")
        with pytest.raises(ValidationError):
            Settings()

    def test_get_settings_is_cached(self):
        assert get_settings() is get_settings()


class TestLogging:
    """Test suite for the log formatters"""

    def test_json_formatter_emits_extra_fields(self):
        line = JSONFormatter().format(make_record(event="node_cordoned", node="spot-1"))
        data = json.loads(line)

        assert data["severity"] == "INFO"
        assert data["message"] == "hello"
        assert data["event"] == "node_cordoned"
        assert data["node"] == "spot-1"
        assert "args" not in data

    def test_json_formatter_serializes_unknown_types(self):
        data = json.loads(JSONFormatter().format(make_record(age=timedelta(hours=1))))
        assert data["age"] == "1:00:00"

    def test_json_formatter_includes_exception(self):
        try:
            raise RuntimeError("boom")
        except RuntimeError:
            record = logging.LogRecord("x", logging.ERROR, __file__, 1, "failed", (), sys.exc_info())

        data = json.loads(JSONFormatter().format(record))
        assert "RuntimeError: boom" in data["exception"]

    def test_colored_formatter_restores_levelname(self):
        record = make_record(level=logging.WARNING)
        output = ColoredFormatter(fmt="%(levelname)s %(message)s").format(record)

        assert "\033[33m" in output
        assert record.levelname == "WARNING"

    def test_setup_logging_replaces_handlers(self):
        root = logging.getLogger()
        saved = root.handlers[:], root.level
        try:
            setup_logging("node-optimizer", log_level="DEBUG", log_format="text")
            setup_logging("node-optimizer", log_level="DEBUG", log_format="json")

            assert len(root.handlers) == 1
            assert isinstance(root.handlers[0].formatter, JSONFormatter)
            assert logging.getLogger("botocore").level == logging.INFO
        finally:
            root.handlers[:] = saved[0]
            root.setLevel(saved[1])
