"""
Structured JSON logging with correlation enrichment.

Every log line is a single JSON object with guaranteed keys: ``timestamp``,
``level``, ``logger``, ``message``, ``service``, plus ``trace_id`` /
``span_id`` / ``request_id`` while a request is active and the event groups
(``http``, ``query``, ``error``, ``context``) as nested objects.

``StructuredLogger`` is the event-level API used by the request hooks and by
handler code (query timings, caught errors).  It never raises: a record that
cannot be built is replaced by a bare message and counted in ``failures``.
"""

import json
import logging
import os
import sys
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Iterator, Mapping, Optional, Sequence, Union

from ..constants import (
    APP_VERSION,
    DEFAULT_SERVICE_NAME,
    INTERNAL_LOGGER_NAME,
    LOG_BACKUP_COUNT,
    LOG_MAX_BYTES,
)
from .context import CorrelationContext, CorrelationIds, current_correlation, get_correlation_context
from .errors import ErrorInfo, build_error_info

# Default service name, overridable via LOG_SERVICE_NAME env var
SERVICE_NAME: str = os.environ.get("LOG_SERVICE_NAME", DEFAULT_SERVICE_NAME)

# Event groups rendered as nested objects, in output order.
EVENT_GROUPS = ("http", "query", "error", "context")

_internal_logger = logging.getLogger(INTERNAL_LOGGER_NAME)


def _level_name(levelno: int) -> str:
    if levelno == logging.WARNING:
        return "WARN"
    return logging.getLevelName(levelno)


def _safe_message(record: logging.LogRecord) -> str:
    try:
        return record.getMessage()
    except Exception:
        return str(record.msg)


# ── JSON Formatter ───────────────────────────────────────────────


class _JsonFormatter(logging.Formatter):
    """Emit each record as a single-line JSON object.

    Records written through ``StructuredLogger`` carry their own correlation.
    Plain ``logging`` calls fall back to the process-wide context.
    """

    def __init__(self, service: Optional[str] = None) -> None:
        super().__init__()
        self.service = service or SERVICE_NAME

    def format(self, record: logging.LogRecord) -> str:
        try:
            return self._format(record)
        except Exception as exc:
            fallback = {
                "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
                "level": _level_name(record.levelno),
                "message": _safe_message(record),
                "format_error": type(exc).__name__,
            }
            return json.dumps(fallback, default=repr, ensure_ascii=False)

    def _format(self, record: logging.LogRecord) -> str:
        timestamp = getattr(record, "event_timestamp", None) or datetime.fromtimestamp(
            record.created, tz=timezone.utc
        ).isoformat()
        entry: Dict[str, Any] = {
            "timestamp": timestamp,
            "level": _level_name(record.levelno),
            "logger": record.name,
            "message": record.getMessage(),
            "service": self.service,
            "version": APP_VERSION,
            "thread": record.threadName,
        }

        # Add source location for DEBUG / ERROR+
        if record.levelno <= logging.DEBUG or record.levelno >= logging.ERROR:
            entry["func"] = record.funcName
            entry["line"] = record.lineno
            entry["file"] = record.pathname

        # Correlation captured at build time, else whatever is active now
        correlation = getattr(record, "correlation", None)
        if correlation is None:
            active = current_correlation()
            correlation = active.as_dict() if active else None
        if correlation:
            entry.update(correlation)

        fields = getattr(record, "telemetry_fields", None) or {}
        for group in EVENT_GROUPS:
            if group in fields:
                entry[group] = dict(fields[group])

        # Exception info
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
            if "error" not in entry:
                entry["error_type"] = record.exc_info[0].__name__

        return json.dumps(entry, default=str, ensure_ascii=False)


# ── Plain Formatter (dev / console) ─────────────────────────────


class _DevFormatter(logging.Formatter):
    """Human-readable coloured output for local development."""

    _COLORS = {
        "DEBUG": "\033[36m",     # cyan
        "INFO": "\033[32m",      # green
        "WARN": "\033[33m",      # yellow
        "ERROR": "\033[31m",     # red
        "CRITICAL": "\033[35m",  # magenta
    }
    _RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        level = _level_name(record.levelno)
        color = self._COLORS.get(level, "")
        ts = datetime.fromtimestamp(record.created).strftime("%H:%M:%S.%f")[:-3]
        correlation = getattr(record, "correlation", None) or {}
        tid = correlation.get("trace_id", "")
        prefix = f"[{tid[:8]}] " if tid else ""
        base = (
            f"{color}{ts} {level:<8}{self._RESET} "
            f"{record.name} {prefix}{_safe_message(record)}"
        )
        fields = getattr(record, "telemetry_fields", None) or {}
        for group in EVENT_GROUPS:
            if group in fields:
                base += f" {group}={json.dumps(dict(fields[group]), default=str)}"
        if record.exc_info and record.exc_info[0] is not None:
            base += "\n" + self.formatException(record.exc_info)
        return base


# ── Logger Factory ───────────────────────────────────────────────


def setup_structured_logger(
    name: str,
    log_file: Optional[Union[str, Path]] = None,
    *,
    level: Optional[Union[int, str]] = None,
    debug: bool = False,
    fmt: Optional[str] = None,
    service: Optional[str] = None,
) -> logging.Logger:
    """Create (or retrieve) a structured JSON logger.

    Args:
        name: Logger name.
        log_file: Optional path of a rotating JSON log file.
        level: Explicit level (overrides *debug*).
        debug: If ``True``, sets level to ``DEBUG``.
        fmt: ``"json"`` or ``"dev"`` for the console handler.  Falls back
            to the ``LOG_FORMAT`` env var, then to the coloured dev format.
        service: Service name stamped on every JSON line.

    Returns:
        A configured ``logging.Logger``.
    """
    if level is None:
        level = logging.DEBUG if debug else logging.INFO
    elif isinstance(level, str):
        level = logging.getLevelName(level.upper())

    logger = logging.getLogger(name)
    logger.setLevel(level)

    if logger.handlers:
        for h in logger.handlers:
            h.setLevel(level)
        return logger

    # ── Console handler: JSON in prod, coloured in dev ──────────
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(level)

    console_format = (fmt or os.environ.get("LOG_FORMAT", "")).lower()
    if console_format == "json":
        console_handler.setFormatter(_JsonFormatter(service))
    else:
        console_handler.setFormatter(_DevFormatter())
    logger.addHandler(console_handler)

    # ── JSON file handler ────────────────────────────────────────
    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_path,
            maxBytes=LOG_MAX_BYTES,
            backupCount=LOG_BACKUP_COUNT,
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(_JsonFormatter(service))
        logger.addHandler(file_handler)

    return logger


# ── Log events ───────────────────────────────────────────────────


@dataclass(frozen=True)
class LogEvent:
    """One fully-built log record, handed to the sink exactly once."""

    level: int
    message: str
    fields: Mapping[str, Mapping[str, Any]]
    correlation: Optional[CorrelationIds]
    timestamp: str
    cause: Optional[BaseException] = None

    def extra(self) -> Dict[str, Any]:
        extra: Dict[str, Any] = {
            "telemetry_fields": self.fields,
            "event_timestamp": self.timestamp,
        }
        # An empty mapping stops the formatter falling back to the default context
        extra["correlation"] = self.correlation.as_dict() if self.correlation is not None else {}
        return extra

    def exc_info(self):
        if self.cause is None:
            return None
        return (type(self.cause), self.cause, self.cause.__traceback__)


class QueryTiming:
    """Handle yielded by ``StructuredLogger.timed_query``."""

    def __init__(self) -> None:
        self.rows_affected = 0
        self.duration_ms: Optional[float] = None


class StructuredLogger:
    """Event-level structured logger writing to one stdlib logger.

    Usage::

        slog = StructuredLogger(setup_structured_logger("app", fmt="json"))
        slog.log_query("SELECT", "SELECT * FROM users", 12, 3, "main")
    """

    def __init__(
        self,
        logger: Union[logging.Logger, str] = "request_telemetry",
        *,
        context: Optional[CorrelationContext] = None,
        app_prefixes: Sequence[str] = (),
    ) -> None:
        """
        Args:
            logger: The sink, or the name of a stdlib logger to use as one.
            context: Correlation source.  Defaults to the process-wide one.
            app_prefixes: Module prefixes of application code, used when
                attributing errors to a call site.
        """
        self._logger = logging.getLogger(logger) if isinstance(logger, str) else logger
        self._context = context if context is not None else get_correlation_context()
        self.app_prefixes = tuple(app_prefixes)
        self.failures = 0
        self._failures_lock = threading.Lock()

    @property
    def logger(self) -> logging.Logger:
        return self._logger

    @property
    def context(self) -> CorrelationContext:
        return self._context

    # ── HTTP lifecycle ───────────────────────────────────────────

    def log_request_start(
        self,
        method: str,
        path: str,
        client_ip: Optional[str],
        user_agent: Optional[str],
    ) -> None:
        http = {
            "method": method,
            "path": path,
            "client_ip": client_ip,
            "user_agent": user_agent,
        }
        self._emit(logging.INFO, "HTTP request started", {"http": http})

    def log_request_end(
        self,
        method: str,
        path: str,
        status_code: int,
        duration_ms: Optional[float],
        client_ip: Optional[str],
        user_agent: Optional[str],
        error: Optional[ErrorInfo] = None,
        exc: Optional[BaseException] = None,
    ) -> None:
        http = {
            "method": method,
            "path": path,
            "status_code": status_code,
            "duration_ms": round(duration_ms, 2) if duration_ms is not None else None,
            "client_ip": client_ip,
            "user_agent": user_agent,
        }
        if error is None:
            self._emit(logging.INFO, "HTTP request completed", {"http": http})
        else:
            self._emit(
                logging.ERROR,
                "HTTP request failed",
                {"http": http, "error": error.to_dict()},
                cause=exc,
            )

    # ── Persistence ──────────────────────────────────────────────

    def log_query(
        self,
        query_type: str,
        statement: str,
        duration_ms: float,
        rows_affected: int,
        database: str,
    ) -> None:
        query = _query_group(query_type, statement, duration_ms, rows_affected, database)
        self._emit(logging.INFO, "Database query executed", {"query": query})

    def log_slow_query(
        self,
        query_type: str,
        statement: str,
        duration_ms: float,
        rows_affected: int,
        database: str,
        threshold_ms: float,
    ) -> None:
        query = _query_group(query_type, statement, duration_ms, rows_affected, database)
        context = {
            "threshold_ms": threshold_ms,
            "warning": "Query exceeded performance threshold",
        }
        self._emit(
            logging.WARNING,
            "Slow database query detected",
            {"query": query, "context": context},
        )

    @contextmanager
    def timed_query(
        self,
        query_type: str,
        statement: str,
        database: str,
        slow_threshold_ms: Optional[float] = None,
    ) -> Iterator[QueryTiming]:
        """Time the enclosed block and log it as a query.

        Set ``rows_affected`` on the yielded handle inside the block.  The
        record is a slow-query warning when *slow_threshold_ms* is given and
        exceeded.  Exceptions from the block propagate and nothing is logged.
        """
        timing = QueryTiming()
        start = time.perf_counter()
        yield timing
        timing.duration_ms = (time.perf_counter() - start) * 1000.0
        duration = round(timing.duration_ms, 2)
        if slow_threshold_ms is not None and timing.duration_ms > slow_threshold_ms:
            self.log_slow_query(
                query_type, statement, duration, timing.rows_affected, database, slow_threshold_ms
            )
        else:
            self.log_query(query_type, statement, duration, timing.rows_affected, database)

    # ── Errors / generic ─────────────────────────────────────────

    def log_error(
        self,
        message: str,
        exc: BaseException,
        context: Optional[Mapping[str, Any]] = None,
    ) -> None:
        """Log *exc* with call-site attribution and its full traceback attached."""
        try:
            error = build_error_info(exc, self.app_prefixes).to_dict()
        except Exception as build_exc:
            self._degrade(logging.ERROR, message, build_exc)
            return
        fields: Dict[str, Any] = {"error": error}
        if context is not None:
            fields["context"] = context
        self._emit(logging.ERROR, message, fields, cause=exc)

    def log_info(self, message: str, context: Optional[Mapping[str, Any]] = None) -> None:
        fields = {"context": context} if context is not None else {}
        self._emit(logging.INFO, message, fields)

    # ── Emission ─────────────────────────────────────────────────

    def build_event(
        self,
        level: int,
        message: str,
        fields: Mapping[str, Mapping[str, Any]],
        cause: Optional[BaseException] = None,
    ) -> LogEvent:
        frozen = MappingProxyType(
            {group: MappingProxyType(dict(values)) for group, values in fields.items()}
        )
        return LogEvent(
            level=level,
            message=str(message),
            fields=frozen,
            correlation=self._context.current(),
            timestamp=datetime.now(timezone.utc).isoformat(),
            cause=cause,
        )

    def _emit(
        self,
        level: int,
        message: str,
        fields: Mapping[str, Mapping[str, Any]],
        cause: Optional[BaseException] = None,
        stacklevel: int = 3,
    ) -> None:
        # stacklevel 3: the caller of the public log_* method
        try:
            event = self.build_event(level, message, fields, cause)
            self._logger.log(
                event.level,
                event.message,
                extra=event.extra(),
                exc_info=event.exc_info(),
                stacklevel=stacklevel,
            )
        except Exception as exc:
            self._degrade(level, message, exc, stacklevel=stacklevel + 1)

    def _degrade(self, level: int, message: Any, exc: Exception, stacklevel: int = 3) -> None:
        with self._failures_lock:
            self.failures += 1
        try:
            ids = self._context.current()
            correlation = ids.as_dict() if ids is not None else {}
            self._logger.log(
                level, "%s", message, extra={"correlation": correlation}, stacklevel=stacklevel
            )
            _internal_logger.debug(
                "Structured log record degraded: %s: %s", type(exc).__name__, exc
            )
        except Exception:
            # Sink unusable; drop the record.
            return


def _query_group(
    query_type: str,
    statement: str,
    duration_ms: float,
    rows_affected: int,
    database: str,
) -> Dict[str, Any]:
    return {
        "type": query_type,
        "statement": statement,
        "duration_ms": duration_ms,
        "rows_affected": rows_affected,
        "database": database,
    }
