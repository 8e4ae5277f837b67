"""
Request lifecycle hooks: the seam between a dispatcher and the core.

``RequestLifecycleHook.on_start`` / ``on_complete`` are framework-agnostic:
they take any request-like object exposing ``method``, ``path``,
``headers.get(name)`` and ``remote_addr``, and a response-like object
exposing ``status_code``.  ``install_flask`` wires them into a Flask app's
``before_request`` / ``after_request`` / ``teardown_request`` hooks.

Hooks are fail-open: a failure inside them is reported on the internal
logger and never changes how the request is handled.
"""

import logging
import time
from collections import namedtuple
from typing import Any, Callable, FrozenSet, Iterable, Optional

from flask import Flask, g, jsonify, request
from werkzeug.exceptions import HTTPException

from ..constants import (
    FORWARDED_FOR_HEADER,
    INTERNAL_LOGGER_NAME,
    REQUEST_ID_HEADER,
    TRACE_ID_HEADER,
    USER_AGENT_HEADER,
)
from .context import CorrelationContext, extract_inbound_trace_id, get_correlation_context
from .errors import build_error_info
from .logging import StructuredLogger
from .metrics import MetricsAggregator

_internal_logger = logging.getLogger(INTERNAL_LOGGER_NAME)

_ResponseStatus = namedtuple("_ResponseStatus", ["status_code"])


def client_ip(req: Any) -> Optional[str]:
    """``X-Forwarded-For`` when the request came through a proxy, else the peer address."""
    forwarded = req.headers.get(FORWARDED_FOR_HEADER)
    if forwarded:
        return forwarded
    return getattr(req, "remote_addr", None)


class RequestLifecycleHook:
    """Begin/end correlation, log the request, record its metrics.

    Usage::

        hook = RequestLifecycleHook(slog, metrics)
        hook.install_flask(app)
    """

    # Attribute set on the request object to carry the start timestamp
    START_ATTRIBUTE = "telemetry_start"

    def __init__(
        self,
        logger: StructuredLogger,
        metrics: MetricsAggregator,
        *,
        context: Optional[CorrelationContext] = None,
        trace_header: str = TRACE_ID_HEADER,
        excluded_paths: Iterable[str] = (),
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            logger: Structured logger receiving the request start/end records.
            metrics: Aggregator receiving one ``record`` per completed request.
            context: Correlation holder.  Defaults to the process-wide one.
            trace_header: Inbound header carrying a caller's trace id.
            excluded_paths: Paths never recorded in metrics (e.g. ``/metrics``).
            clock: Monotonic time source in seconds.
        """
        self.logger = logger
        self.metrics = metrics
        self.context = context if context is not None else get_correlation_context()
        self.trace_header = trace_header
        self.excluded_paths: FrozenSet[str] = frozenset(excluded_paths)
        self._clock = clock

    # ── hooks ────────────────────────────────────────────────────

    def on_start(self, req: Any) -> bool:
        """Called before the handler.  Always returns ``True``."""
        try:
            self.context.begin(extract_inbound_trace_id(req.headers, self.trace_header))
            setattr(req, self.START_ATTRIBUTE, self._clock())
            self.logger.log_request_start(
                req.method,
                req.path,
                client_ip(req),
                req.headers.get(USER_AGENT_HEADER),
            )
        except Exception:
            _internal_logger.debug("Request start hook failed", exc_info=True)
        return True

    def on_complete(self, req: Any, response: Any = None, error: Optional[BaseException] = None) -> None:
        """Called after the handler, on every exit path."""
        try:
            start = getattr(req, self.START_ATTRIBUTE, None)
            duration_ms = (self._clock() - start) * 1000.0 if start is not None else None

            status_code = getattr(response, "status_code", None)
            if status_code is None:
                status_code = 500 if error is not None else 200

            error_info = build_error_info(error, self.logger.app_prefixes) if error is not None else None
            self.logger.log_request_end(
                req.method,
                req.path,
                status_code,
                duration_ms,
                client_ip(req),
                req.headers.get(USER_AGENT_HEADER),
                error=error_info,
                exc=error,
            )

            if duration_ms is not None and req.path not in self.excluded_paths:
                self.metrics.record(req.method, req.path, status_code, duration_ms)
        except Exception:
            _internal_logger.debug("Request completion hook failed", exc_info=True)
        finally:
            self.context.end()

    # ── Flask installation ───────────────────────────────────────

    def install_flask(self, app: Flask) -> None:
        app.before_request(self._flask_before)
        app.after_request(self._flask_after)
        app.teardown_request(self._flask_teardown)

    def _flask_before(self) -> None:
        self.on_start(request)

    def _flask_after(self, response):
        g.telemetry_status = response.status_code

        # Inject ids into response headers for client correlation
        ids = self.context.current()
        if ids is not None:
            response.headers[TRACE_ID_HEADER] = ids.trace_id
            response.headers[REQUEST_ID_HEADER] = ids.request_id
        return response

    def _flask_teardown(self, exc: Optional[BaseException] = None) -> None:
        error = exc if exc is not None else g.pop("telemetry_error", None)
        status = g.pop("telemetry_status", None)
        response = _ResponseStatus(status) if status is not None else None
        self.on_complete(request, response, error)


# ── Flask error handler ──────────────────────────────────────────


def install_error_handler(app: Flask, logger: StructuredLogger) -> None:
    """Register a Flask error handler that logs every unhandled exception.

    HTTP exceptions (400, 404, ...) pass through untouched.  Anything else is
    logged with ``log_error``, remembered for the request-end record, and
    answered with a JSON 500.
    """

    @app.errorhandler(Exception)
    def _handle_exception(exc: Exception):
        if isinstance(exc, HTTPException):
            return exc

        g.telemetry_error = exc
        logger.log_error(
            "Unhandled exception",
            exc,
            {"exception_type": type(exc).__name__, "path": request.path},
        )
        ids = logger.context.current()
        return (
            jsonify(
                {
                    "error": "Internal Server Error",
                    "request_id": ids.request_id if ids else "",
                }
            ),
            500,
        )
