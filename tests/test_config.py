"""Tests for the config module: loading, placeholder resolution, validation."""

import json
from pathlib import Path

import pytest

from request_telemetry.config import ConfigError, TelemetryConfig, load_config, validate_config


@pytest.fixture
def write_config(tmp_path):
    """Helper that writes a config dict to tmp_path/telemetry.json."""

    def _write(cfg, name: str = "telemetry.json"):
        path = tmp_path / name
        path.write_text(cfg if isinstance(cfg, str) else json.dumps(cfg))
        return str(path)

    return _write


# ── load_config ──────────────────────────────────────────────────


class TestLoadConfig:
    def test_loads_valid_json(self, write_config):
        path = write_config({"logging": {"level": "DEBUG"}})
        assert load_config(path) == {"logging": {"level": "DEBUG"}}

    def test_loads_bundled_config(self):
        """The example telemetry.json at the repo root must load and validate."""
        result = load_config(Path(__file__).resolve().parent.parent / "telemetry.json")
        assert validate_config(result) == []

    def test_resolves_env_placeholders(self, write_config, monkeypatch):
        monkeypatch.setenv("TEST_TELEMETRY_LEVEL", "ERROR")
        path = write_config({"logging": {"level": "${TEST_TELEMETRY_LEVEL:-INFO}"}})
        assert load_config(path)["logging"]["level"] == "ERROR"

    def test_placeholder_default(self, write_config, monkeypatch):
        monkeypatch.delenv("TEST_TELEMETRY_UNSET", raising=False)
        path = write_config({"tracing": {"app_module_prefixes": ["${TEST_TELEMETRY_UNSET:-shopapp}"]}})
        assert load_config(path)["tracing"]["app_module_prefixes"] == ["shopapp"]

    def test_placeholder_without_default_is_empty(self, write_config, monkeypatch):
        monkeypatch.delenv("TEST_TELEMETRY_UNSET", raising=False)
        path = write_config({"logging": {"file": "${TEST_TELEMETRY_UNSET}"}})
        assert load_config(path)["logging"]["file"] == ""

    def test_missing_file_raises_config_error(self):
        with pytest.raises(ConfigError, match="not found"):
            load_config("nonexistent_file_that_does_not_exist.json")

    def test_invalid_json_raises_config_error(self, write_config):
        path = write_config("{not json")
        with pytest.raises(ConfigError, match="Invalid JSON"):
            load_config(path)

    def test_non_object_raises_config_error(self, write_config):
        path = write_config([1, 2, 3])
        with pytest.raises(ConfigError, match="must be an object"):
            load_config(path)


# ── validate_config ──────────────────────────────────────────────


class TestValidateConfig:
    def test_empty_config_is_valid(self):
        assert validate_config({}) == []

    def test_unknown_section(self):
        errors = validate_config({"database": {}})
        assert errors == ["Unknown config section: 'database'"]

    def test_section_must_be_object(self):
        errors = validate_config({"cache": 5})
        assert any("'cache' must be an object" in e for e in errors)

    def test_bad_log_level(self):
        errors = validate_config({"logging": {"level": "VERBOSE"}})
        assert any("logging.level" in e for e in errors)

    def test_warn_accepted(self):
        assert validate_config({"logging": {"level": "warn"}}) == []

    def test_bad_log_format(self):
        errors = validate_config({"logging": {"format": "xml"}})
        assert any("logging.format" in e for e in errors)

    def test_bad_trace_header(self):
        errors = validate_config({"tracing": {"trace_header": "  "}})
        assert errors == ["tracing.trace_header must be a non-empty string"]

    def test_bad_prefixes(self):
        errors = validate_config({"tracing": {"app_module_prefixes": "shopapp"}})
        assert errors == ["tracing.app_module_prefixes must be a list of non-empty strings"]

    @pytest.mark.parametrize("size", [0, -1, "100", 1.5, True])
    def test_bad_window_size(self, size):
        errors = validate_config({"metrics": {"window_size": size}})
        assert errors == ["metrics.window_size must be a positive integer"]

    def test_bad_excluded_paths(self):
        errors = validate_config({"metrics": {"excluded_paths": "/health"}})
        assert errors == ["metrics.excluded_paths must be a list of paths"]

    def test_bad_cache_values(self):
        errors = validate_config({"cache": {"default_ttl_seconds": -1, "sweep_interval_seconds": 0}})
        assert errors == [
            "cache.default_ttl_seconds must be a non-negative number",
            "cache.sweep_interval_seconds must be a positive number",
        ]

    def test_placeholder_strings_rejected_for_numbers(self):
        errors = validate_config({"cache": {"default_ttl_seconds": "60"}})
        assert errors == ["cache.default_ttl_seconds must be a non-negative number"]


# ── TelemetryConfig ──────────────────────────────────────────────


class TestTelemetryConfig:
    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("LOG_SERVICE_NAME", raising=False)
        cfg = TelemetryConfig.from_dict({})
        assert cfg == TelemetryConfig()
        assert cfg.log_level == "INFO"
        assert cfg.trace_header == "X-Trace-Id"
        assert cfg.window_size == 100
        assert "/metrics" in cfg.excluded_paths
        assert cfg.default_ttl_seconds == 60

    def test_from_dict(self, monkeypatch):
        monkeypatch.delenv("LOG_SERVICE_NAME", raising=False)
        cfg = TelemetryConfig.from_dict(
            {
                "logging": {"level": "warn", "format": "DEV", "file": "", "service_name": "orders"},
                "tracing": {"trace_header": "X-Correlation-Id", "app_module_prefixes": ["shopapp"]},
                "metrics": {"window_size": 50, "excluded_paths": []},
                "cache": {"default_ttl_seconds": 0, "sweep_interval_seconds": 0.5},
            }
        )
        assert cfg.log_level == "WARNING"
        assert cfg.log_format == "dev"
        assert cfg.log_file is None
        assert cfg.service_name == "orders"
        assert cfg.trace_header == "X-Correlation-Id"
        assert cfg.app_module_prefixes == ("shopapp",)
        assert cfg.window_size == 50
        assert cfg.excluded_paths == frozenset()
        assert cfg.default_ttl_seconds == 0
        assert cfg.sweep_interval_seconds == 0.5

    def test_service_name_env_override(self, monkeypatch):
        monkeypatch.setenv("LOG_SERVICE_NAME", "from-env")
        cfg = TelemetryConfig.from_dict({"logging": {"service_name": "orders"}})
        assert cfg.service_name == "from-env"

    def test_invalid_raises_with_all_errors(self):
        with pytest.raises(ConfigError) as excinfo:
            TelemetryConfig.from_dict({"metrics": {"window_size": 0}, "bogus": {}})
        message = str(excinfo.value)
        assert "metrics.window_size" in message
        assert "bogus" in message

    def test_from_file(self, write_config, monkeypatch):
        monkeypatch.delenv("LOG_SERVICE_NAME", raising=False)
        path = write_config({"cache": {"default_ttl_seconds": 5}})
        assert TelemetryConfig.from_file(path).default_ttl_seconds == 5
