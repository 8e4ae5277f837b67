"""
In-process request metrics: per-endpoint traffic, errors and latency.

Each distinct ``(method, path)`` gets an ``EndpointMetrics`` with its own
lock, so requests to different endpoints never contend.  Latency is kept as
a rolling window of the most recent samples; aggregates in ``snapshot`` are
computed over that window, not over the process lifetime.

Exposed as a JSON-friendly snapshot and in Prometheus text exposition
format.  Nothing is persisted; state lives for the process only.
"""

import math
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, List, Optional, Tuple

from ..constants import ERROR_STATUS_THRESHOLD, LATENCY_WINDOW_SIZE


def round_half_up(value: float, digits: int = 2) -> float:
    """Round half away from zero on the scaled value (``0.125`` -> ``0.13``)."""
    scale = 10 ** digits
    return math.floor(value * scale + 0.5) / scale


def _rate_pct(part: int, total: int) -> float:
    return round_half_up(part / total * 100) if total else 0.0


# ── Per-endpoint state ───────────────────────────────────────────


@dataclass
class EndpointMetrics:
    """Counters and latency window for one ``(method, path)``."""

    method: str
    path: str
    window_size: int = LATENCY_WINDOW_SIZE
    total_requests: int = 0
    total_errors: int = 0
    recent_latencies_ms: Deque[float] = field(init=False, repr=False)
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def __post_init__(self):
        self.recent_latencies_ms = deque(maxlen=self.window_size)

    def observe(self, status_code: int, duration_ms: float) -> None:
        with self.lock:
            self.total_requests += 1
            if status_code >= ERROR_STATUS_THRESHOLD:
                self.total_errors += 1
            # deque(maxlen=...) drops the oldest sample
            self.recent_latencies_ms.append(duration_ms)

    def stats(self) -> Dict[str, Any]:
        """Return a consistent JSON-friendly view of this endpoint."""
        with self.lock:
            total = self.total_requests
            errors = self.total_errors
            samples = list(self.recent_latencies_ms)

        data: Dict[str, Any] = {
            "method": self.method,
            "total_requests": total,
            "total_errors": errors,
            "error_rate": _rate_pct(errors, total),
        }
        if samples:
            data["avg_response_time_ms"] = round_half_up(sum(samples) / len(samples))
            data["max_response_time_ms"] = max(samples)
            data["min_response_time_ms"] = min(samples)
        return data


# ── Aggregator ───────────────────────────────────────────────────


class MetricsAggregator:
    """Thread-safe per-endpoint request metrics.

    Usage::

        metrics = MetricsAggregator()
        metrics.record("GET", "/api/users", 200, 12.5)
        metrics.snapshot()["endpoints"]["/api/users"]["avg_response_time_ms"]
    """

    def __init__(self, window_size: int = LATENCY_WINDOW_SIZE) -> None:
        self.window_size = window_size
        self._endpoints: Dict[Tuple[str, str], EndpointMetrics] = {}
        # Guards creation of new keys only; updates use the endpoint's lock.
        self._registry_lock = threading.Lock()
        self._start_time = time.time()

    def _endpoint(self, method: str, path: str) -> EndpointMetrics:
        key = (method, path)
        metrics = self._endpoints.get(key)
        if metrics is None:
            with self._registry_lock:
                metrics = self._endpoints.get(key)
                if metrics is None:
                    metrics = EndpointMetrics(method, path, window_size=self.window_size)
                    self._endpoints[key] = metrics
        return metrics

    def _all_endpoints(self) -> List[EndpointMetrics]:
        with self._registry_lock:
            return list(self._endpoints.values())

    def record(self, method: str, path: str, status_code: int, duration_ms: float) -> None:
        """Count one completed request and keep its latency in the window."""
        self._endpoint(method, path).observe(status_code, duration_ms)

    def uptime_seconds(self) -> float:
        return time.time() - self._start_time

    # ── Snapshot / export ────────────────────────────────────────

    def snapshot(self) -> Dict[str, Any]:
        """Return a JSON-friendly snapshot of all endpoints.

        ``endpoints`` is keyed by path.  A path seen under more than one
        method is split into ``"<METHOD> <path>"`` keys instead.
        """
        per_endpoint = [(m.method, m.path, m.stats()) for m in self._all_endpoints()]

        methods_per_path: Dict[str, int] = {}
        for _, path, _ in per_endpoint:
            methods_per_path[path] = methods_per_path.get(path, 0) + 1

        endpoints: Dict[str, Dict[str, Any]] = {}
        total_requests = 0
        total_errors = 0
        for method, path, stats in per_endpoint:
            key = path if methods_per_path[path] == 1 else f"{method} {path}"
            endpoints[key] = stats
            total_requests += stats["total_requests"]
            total_errors += stats["total_errors"]

        return {
            "uptime_seconds": int(self.uptime_seconds()),
            "total_requests": total_requests,
            "total_errors": total_errors,
            "overall_error_rate": _rate_pct(total_errors, total_requests),
            "endpoints": endpoints,
        }

    def get_endpoint(self, method: str, path: str) -> Optional[Dict[str, Any]]:
        """Return the stats of one endpoint, or ``None`` if never observed."""
        metrics = self._endpoints.get((method, path))
        return metrics.stats() if metrics is not None else None

    def prometheus_exposition(self) -> str:
        """Return metrics in Prometheus text exposition format."""
        lines: List[str] = []

        lines.append("# HELP uptime_seconds Process uptime in seconds")
        lines.append("# TYPE uptime_seconds gauge")
        lines.append(f"uptime_seconds {self.uptime_seconds():.1f}")

        rows = sorted(
            ((m.method, m.path, m.stats()) for m in self._all_endpoints()),
            key=lambda row: (row[1], row[0]),
        )

        lines.append("# HELP http_requests_total Completed HTTP requests")
        lines.append("# TYPE http_requests_total counter")
        for method, path, stats in rows:
            lines.append(f"http_requests_total{_labels(method, path)} {stats['total_requests']}")

        lines.append("# HELP http_errors_total Completed HTTP requests with status >= 400")
        lines.append("# TYPE http_errors_total counter")
        for method, path, stats in rows:
            lines.append(f"http_errors_total{_labels(method, path)} {stats['total_errors']}")

        for suffix, key in (
            ("avg", "avg_response_time_ms"),
            ("max", "max_response_time_ms"),
            ("min", "min_response_time_ms"),
        ):
            name = f"http_request_window_{suffix}_ms"
            lines.append(f"# TYPE {name} gauge")
            for method, path, stats in rows:
                if key in stats:
                    lines.append(f"{name}{_labels(method, path)} {stats[key]}")

        return "\n".join(lines) + "\n"

    # ── Reset (testing) ──────────────────────────────────────────

    def reset(self) -> None:
        """Drop all accumulated endpoint state."""
        with self._registry_lock:
            self._endpoints = {}


def _escape_label(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")


def _labels(method: str, path: str) -> str:
    return f'{{method="{_escape_label(method)}",path="{_escape_label(path)}"}}'
