"""
Telemetry routes: health check, metrics and cache statistics.

Endpoints:
    GET /health              JSON liveness status with uptime
    GET /metrics             JSON metrics snapshot
    GET /metrics/prometheus  Prometheus exposition format
    GET /cache/stats         Cache hit/miss statistics
"""

from datetime import datetime, timezone

from flask import Blueprint, Response, current_app, jsonify

telemetry_bp = Blueprint("telemetry", __name__)


def _telemetry():
    return current_app.extensions["request_telemetry"]


# ── Health ───────────────────────────────────────────────────────


@telemetry_bp.route("/health")
def health():
    """Liveness check with uptime and process memory."""
    telemetry = _telemetry()
    payload = {
        "status": "healthy",
        "uptime_seconds": int(telemetry.metrics.uptime_seconds()),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }

    # Supplement with resource usage where the platform provides it
    try:
        import resource

        ru = resource.getrusage(resource.RUSAGE_SELF)
        payload["memory"] = {"max_rss_kb": ru.ru_maxrss}
    except ImportError:
        payload["memory"] = {}

    return jsonify(payload)


# ── Metrics ──────────────────────────────────────────────────────


@telemetry_bp.route("/metrics")
def metrics_json():
    """JSON metrics snapshot for custom dashboards."""
    return jsonify(_telemetry().metrics.snapshot())


@telemetry_bp.route("/metrics/prometheus")
def metrics_prometheus():
    """Prometheus text exposition format."""
    text = _telemetry().metrics.prometheus_exposition()
    return Response(text, mimetype="text/plain; charset=utf-8")


# ── Cache ────────────────────────────────────────────────────────


@telemetry_bp.route("/cache/stats")
def cache_stats():
    return jsonify(_telemetry().cache.stats())
