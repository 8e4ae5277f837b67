"""
Observability package: correlation context, structured logging, metrics, and request hooks.

Provides:
- ``CorrelationContext`` / ``correlation_scope``: task-local trace, span and request ids
- ``StructuredLogger`` / ``setup_structured_logger``: JSON-formatted event logging
- ``build_error_info``: exception description with call-site attribution
- ``MetricsAggregator``: per-endpoint traffic, error and latency statistics
- ``RequestLifecycleHook``: dispatcher hooks tying the above together
"""

from .context import (
    CorrelationContext,
    CorrelationIds,
    correlation_scope,
    current_correlation,
    get_correlation_context,
)
from .errors import ErrorInfo, ErrorSite, build_error_info
from .hooks import RequestLifecycleHook, install_error_handler
from .logging import LogEvent, StructuredLogger, setup_structured_logger
from .metrics import EndpointMetrics, MetricsAggregator

__all__ = [
    "CorrelationContext",
    "CorrelationIds",
    "correlation_scope",
    "current_correlation",
    "get_correlation_context",
    "ErrorInfo",
    "ErrorSite",
    "build_error_info",
    "LogEvent",
    "StructuredLogger",
    "setup_structured_logger",
    "EndpointMetrics",
    "MetricsAggregator",
    "RequestLifecycleHook",
    "install_error_handler",
]
