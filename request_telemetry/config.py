"""
Configuration loading and validation for the telemetry core.

Centralises config parsing so it happens once at startup rather than
redundantly in every component constructor.  The file is JSON; string values
may carry ``${ENV_VAR:-default}`` placeholders which are resolved against the
process environment (after loading a ``.env`` file when one exists).
"""

import json
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, FrozenSet, List, Optional, Tuple, Union

from dotenv import load_dotenv

from .constants import (
    DEFAULT_CACHE_TTL_SECONDS,
    DEFAULT_CONFIG_PATH,
    DEFAULT_EXCLUDED_PATHS,
    DEFAULT_LOG_FORMAT,
    DEFAULT_LOG_LEVEL,
    DEFAULT_SERVICE_NAME,
    DEFAULT_SWEEP_INTERVAL_SECONDS,
    LATENCY_WINDOW_SIZE,
    LOG_FORMATS,
    LOG_LEVELS,
    TRACE_ID_HEADER,
)

# Sections the loader understands.  Unknown sections are reported by
# ``validate_config`` but otherwise ignored.
_KNOWN_SECTIONS: Tuple[str, ...] = ("logging", "tracing", "metrics", "cache")


class ConfigError(Exception):
    """Raised when the configuration file is missing or invalid."""


def load_config(config_path: Union[str, Path] = DEFAULT_CONFIG_PATH) -> Dict[str, Any]:
    """
    Load configuration from a JSON file and resolve ``${ENV_VAR:-default}``
    placeholders in all string values.

    Args:
        config_path: Path to the config file.  Relative paths are resolved
            against the current working directory.

    Returns:
        Fully-resolved configuration dictionary.

    Raises:
        ConfigError: If the file cannot be read or parsed.
    """
    load_dotenv()
    full_path = Path(config_path)

    if not full_path.exists():
        raise ConfigError(f"Configuration file not found: {full_path}")

    try:
        with open(full_path, "r") as f:
            config = json.load(f)
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Invalid JSON in {full_path}: {exc}") from exc

    if not isinstance(config, dict):
        raise ConfigError(f"Top-level value in {full_path} must be an object")

    return _resolve(config)


def validate_config(config: Dict[str, Any]) -> List[str]:
    """
    Validate a config dict against the known sections.

    Returns:
        A list of human-readable error strings.  Empty means valid.
    """
    errors: List[str] = []

    for key in config:
        if key not in _KNOWN_SECTIONS:
            errors.append(f"Unknown config section: '{key}'")

    for section in _KNOWN_SECTIONS:
        value = config.get(section, {})
        if not isinstance(value, dict):
            errors.append(f"Config section '{section}' must be an object")

    log_cfg = _section(config, "logging")
    level = str(log_cfg.get("level", DEFAULT_LOG_LEVEL)).upper()
    if level not in LOG_LEVELS:
        errors.append(f"logging.level must be one of {sorted(LOG_LEVELS)}, got '{level}'")
    fmt = str(log_cfg.get("format", DEFAULT_LOG_FORMAT)).lower()
    if fmt not in LOG_FORMATS:
        errors.append(f"logging.format must be one of {sorted(LOG_FORMATS)}, got '{fmt}'")

    tracing_cfg = _section(config, "tracing")
    header = tracing_cfg.get("trace_header", TRACE_ID_HEADER)
    if not isinstance(header, str) or not header.strip():
        errors.append("tracing.trace_header must be a non-empty string")
    prefixes = tracing_cfg.get("app_module_prefixes", [])
    if not isinstance(prefixes, list) or not all(isinstance(p, str) and p for p in prefixes):
        errors.append("tracing.app_module_prefixes must be a list of non-empty strings")

    metrics_cfg = _section(config, "metrics")
    if not _is_positive_int(metrics_cfg.get("window_size", LATENCY_WINDOW_SIZE)):
        errors.append("metrics.window_size must be a positive integer")
    excluded = metrics_cfg.get("excluded_paths", [])
    if not isinstance(excluded, list):
        errors.append("metrics.excluded_paths must be a list of paths")

    cache_cfg = _section(config, "cache")
    ttl = cache_cfg.get("default_ttl_seconds", DEFAULT_CACHE_TTL_SECONDS)
    if not _is_number(ttl) or ttl < 0:
        errors.append("cache.default_ttl_seconds must be a non-negative number")
    interval = cache_cfg.get("sweep_interval_seconds", DEFAULT_SWEEP_INTERVAL_SECONDS)
    if not _is_number(interval) or interval <= 0:
        errors.append("cache.sweep_interval_seconds must be a positive number")

    return errors


# ── Typed settings ───────────────────────────────────────────────


@dataclass(frozen=True)
class TelemetryConfig:
    """Typed view over the ``logging`` / ``tracing`` / ``metrics`` / ``cache`` sections."""

    log_level: str = DEFAULT_LOG_LEVEL
    log_format: str = DEFAULT_LOG_FORMAT
    log_file: Optional[str] = None
    service_name: str = DEFAULT_SERVICE_NAME
    trace_header: str = TRACE_ID_HEADER
    app_module_prefixes: Tuple[str, ...] = ()
    window_size: int = LATENCY_WINDOW_SIZE
    excluded_paths: FrozenSet[str] = field(default_factory=lambda: DEFAULT_EXCLUDED_PATHS)
    default_ttl_seconds: float = DEFAULT_CACHE_TTL_SECONDS
    sweep_interval_seconds: float = DEFAULT_SWEEP_INTERVAL_SECONDS

    @classmethod
    def from_dict(cls, config: Dict[str, Any]) -> "TelemetryConfig":
        """Build settings from a loaded config dict.

        Raises:
            ConfigError: If ``validate_config`` reports any problem.
        """
        errors = validate_config(config)
        if errors:
            raise ConfigError("; ".join(errors))

        log_cfg = _section(config, "logging")
        tracing_cfg = _section(config, "tracing")
        metrics_cfg = _section(config, "metrics")
        cache_cfg = _section(config, "cache")

        level = str(log_cfg.get("level", DEFAULT_LOG_LEVEL)).upper()
        excluded = metrics_cfg.get("excluded_paths")
        return cls(
            log_level="WARNING" if level == "WARN" else level,
            log_format=str(log_cfg.get("format", DEFAULT_LOG_FORMAT)).lower(),
            log_file=log_cfg.get("file") or None,
            service_name=os.environ.get(
                "LOG_SERVICE_NAME", log_cfg.get("service_name", DEFAULT_SERVICE_NAME)
            ),
            trace_header=tracing_cfg.get("trace_header", TRACE_ID_HEADER),
            app_module_prefixes=tuple(tracing_cfg.get("app_module_prefixes", [])),
            window_size=int(metrics_cfg.get("window_size", LATENCY_WINDOW_SIZE)),
            excluded_paths=(
                frozenset(excluded) if excluded is not None else DEFAULT_EXCLUDED_PATHS
            ),
            default_ttl_seconds=cache_cfg.get("default_ttl_seconds", DEFAULT_CACHE_TTL_SECONDS),
            sweep_interval_seconds=cache_cfg.get(
                "sweep_interval_seconds", DEFAULT_SWEEP_INTERVAL_SECONDS
            ),
        )

    @classmethod
    def from_file(cls, config_path: Union[str, Path] = DEFAULT_CONFIG_PATH) -> "TelemetryConfig":
        return cls.from_dict(load_config(config_path))


# ── Private helpers ──────────────────────────────────────────────

_PLACEHOLDER_RE = re.compile(r"\$\{(\w+)(?::-([^}]*))?\}")


def _section(config: Dict[str, Any], name: str) -> Dict[str, Any]:
    value = config.get(name) or {}
    return value if isinstance(value, dict) else {}


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_positive_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


def _resolve(obj: Any) -> Any:
    """Recursively resolve ``${ENV_VAR:-default}`` in string values."""
    if isinstance(obj, str):
        return _PLACEHOLDER_RE.sub(_replace_match, obj)
    elif isinstance(obj, dict):
        return {k: _resolve(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_resolve(v) for v in obj]
    return obj


def _replace_match(m: re.Match) -> str:
    var = m.group(1)
    default = m.group(2) if m.group(2) is not None else ""
    return os.environ.get(var, default)
