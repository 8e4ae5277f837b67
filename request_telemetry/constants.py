"""
Centralised constants for the request telemetry core.

Defaults, header names and thresholds live here so they can be imported by
any module without circular dependencies.
"""

# ── Version ──────────────────────────────────────────────────────
APP_VERSION = "0.3.0"
DEFAULT_SERVICE_NAME = "request-telemetry"
DEFAULT_CONFIG_PATH = "telemetry.json"

# ── Logging ──────────────────────────────────────────────────────
LOG_MAX_BYTES = 10 * 1024 * 1024  # 10 MB per log file
LOG_BACKUP_COUNT = 5
DEFAULT_LOG_LEVEL = "INFO"
DEFAULT_LOG_FORMAT = "json"
LOG_FORMATS = frozenset({"json", "dev"})
LOG_LEVELS = frozenset({"DEBUG", "INFO", "WARNING", "WARN", "ERROR", "CRITICAL"})
INTERNAL_LOGGER_NAME = "request_telemetry.internal"

# ── Tracing ──────────────────────────────────────────────────────
TRACE_ID_HEADER = "X-Trace-Id"
REQUEST_ID_HEADER = "X-Request-Id"
TRACEPARENT_HEADER = "traceparent"
FORWARDED_FOR_HEADER = "X-Forwarded-For"
USER_AGENT_HEADER = "User-Agent"
TRACE_ID_LENGTH = 32  # hex chars, 128 bit
SPAN_ID_LENGTH = 16  # hex chars, 64 bit

# ── Metrics ──────────────────────────────────────────────────────
LATENCY_WINDOW_SIZE = 100  # most recent samples kept per endpoint
ERROR_STATUS_THRESHOLD = 400
DEFAULT_EXCLUDED_PATHS = frozenset({"/metrics", "/metrics/prometheus", "/health", "/cache/stats"})

# ── Cache ────────────────────────────────────────────────────────
DEFAULT_CACHE_TTL_SECONDS = 60
DEFAULT_SWEEP_INTERVAL_SECONDS = 60
