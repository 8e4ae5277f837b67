"""
Request Telemetry - correlation ids, structured logs, endpoint metrics and a TTL cache
"""

__version__ = "0.3.0"

from .cache import CacheSweeper, ExpiringCache
from .config import ConfigError, TelemetryConfig, load_config, validate_config
from .telemetry import Telemetry

__all__ = [
    "Telemetry",
    "TelemetryConfig",
    "ConfigError",
    "load_config",
    "validate_config",
    "ExpiringCache",
    "CacheSweeper",
]
