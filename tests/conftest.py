"""
Test fixtures and configuration for pytest
"""

import json
import logging
import uuid

import pytest

from request_telemetry.observability.context import CorrelationContext, end_correlation
from request_telemetry.observability.logging import StructuredLogger, _JsonFormatter


class CapturingHandler(logging.Handler):
    """Collect every record as the parsed JSON line the sink would emit."""

    def __init__(self):
        super().__init__(level=logging.DEBUG)
        self.setFormatter(_JsonFormatter(service="test-service"))
        self.lines = []

    def emit(self, record):
        self.lines.append(json.loads(self.format(record)))

    def by_message(self, message):
        return [line for line in self.lines if line["message"] == message]


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def attach_capture(logger: logging.Logger) -> CapturingHandler:
    handler = CapturingHandler()
    logger.addHandler(handler)
    return handler


@pytest.fixture
def sink():
    """A fresh, non-propagating stdlib logger with a capturing handler."""
    logger = logging.getLogger(f"test.sink.{uuid.uuid4().hex[:8]}")
    logger.setLevel(logging.DEBUG)
    logger.propagate = False
    handler = attach_capture(logger)
    yield logger, handler
    logger.removeHandler(handler)


@pytest.fixture
def capture_logger():
    """Attach a capturing handler to a named logger at DEBUG; undone after the test."""
    attached = []

    def _capture(name: str) -> CapturingHandler:
        logger = logging.getLogger(name)
        handler = attach_capture(logger)
        attached.append((logger, handler, logger.level))
        logger.setLevel(logging.DEBUG)
        return handler

    yield _capture

    for logger, handler, level in attached:
        logger.removeHandler(handler)
        logger.setLevel(level)


@pytest.fixture
def correlation():
    """An isolated ``CorrelationContext`` (not the process-wide one)."""
    ctx = CorrelationContext(name=f"test_correlation_{uuid.uuid4().hex[:8]}")
    yield ctx
    ctx.end()


@pytest.fixture
def slog(sink, correlation):
    """``StructuredLogger`` over the capturing sink; ``shopapp`` is application code."""
    logger, handler = sink
    structured = StructuredLogger(logger, context=correlation, app_prefixes=("shopapp",))
    structured.captured = handler
    return structured


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture(autouse=True)
def _clear_default_correlation():
    """Never let one test's request ids leak into the next."""
    yield
    end_correlation()


@pytest.fixture
def make_app(capture_logger):
    """Factory for a small Flask app with telemetry installed.

    Returns ``(app, telemetry, captured)`` where ``captured`` collects every
    record written by the telemetry's structured logger.
    """
    from flask import Flask, jsonify

    from request_telemetry import Telemetry, TelemetryConfig

    created = []

    def _make(config=None, **init_kwargs):
        config = config or TelemetryConfig(service_name=f"test-svc-{uuid.uuid4().hex[:8]}")
        telemetry = Telemetry(config)
        captured = capture_logger(config.service_name)

        app = Flask(__name__)

        @app.route("/api/users", methods=["GET"])
        def list_users():
            return jsonify({"users": []})

        @app.route("/api/users", methods=["POST"])
        def create_user():
            return jsonify({"id": 1}), 201

        @app.route("/api/boom")
        def boom():
            raise RuntimeError("kaboom")

        @app.route("/api/whoami")
        def whoami():
            ids = telemetry.context.current()
            telemetry.logger.log_info("Handling whoami")
            return jsonify(ids.as_dict())

        telemetry.init_app(app, **init_kwargs)
        created.append(telemetry)
        return app, telemetry, captured

    yield _make

    for telemetry in created:
        telemetry.shutdown()
