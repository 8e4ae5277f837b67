"""
Correlation context: per-request trace, span and request identifiers.

The identifiers live in a ``contextvars.ContextVar`` so every thread and
every asyncio task sees only its own request.  ``begin`` is called when a
request enters, ``end`` when it leaves; ``end`` must run on every exit path,
so callers either pair the two in ``try/finally`` or use
``correlation_scope``.

Generated ids are W3C Trace Context-compatible (32 hex trace id, 16 hex
span id) so traces can be correlated with external systems if one is later
adopted.  Nothing is exported from here.
"""

import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass
from typing import Any, Dict, Iterator, Mapping, Optional

from ..constants import SPAN_ID_LENGTH, TRACE_ID_HEADER, TRACE_ID_LENGTH, TRACEPARENT_HEADER


@dataclass(frozen=True)
class CorrelationIds:
    """Identifiers threaded through one request's log records."""

    trace_id: str
    span_id: str
    request_id: str

    def as_dict(self) -> Dict[str, str]:
        return {
            "trace_id": self.trace_id,
            "span_id": self.span_id,
            "request_id": self.request_id,
        }


def _new_id(length: int = TRACE_ID_LENGTH) -> str:
    """Generate a random hex ID (32 chars = 128-bit trace id, 16 = 64-bit span)."""
    return uuid.uuid4().hex[:length]


class CorrelationContext:
    """Task-local holder for the active request's ``CorrelationIds``.

    Usage::

        ctx = CorrelationContext()
        with ctx.scope(request.headers.get("X-Trace-Id")) as ids:
            handle(request)
    """

    def __init__(self, name: str = "request_telemetry_correlation") -> None:
        self._var: ContextVar[Optional[CorrelationIds]] = ContextVar(name, default=None)

    def begin(self, inbound_trace_id: Optional[str] = None) -> CorrelationIds:
        """Allocate ids for a new request and make them current.

        ``inbound_trace_id`` is reused verbatim when it is a non-empty string;
        otherwise a fresh trace id is generated.
        """
        trace_id = inbound_trace_id if inbound_trace_id else _new_id(TRACE_ID_LENGTH)
        ids = CorrelationIds(
            trace_id=trace_id,
            span_id=_new_id(SPAN_ID_LENGTH),
            request_id=str(uuid.uuid4()),
        )
        self._var.set(ids)
        return ids

    def current(self) -> Optional[CorrelationIds]:
        """Return the active ids, or ``None`` outside a request."""
        return self._var.get()

    def end(self) -> None:
        """Clear the active ids.  Safe to call when nothing is active."""
        self._var.set(None)

    @contextmanager
    def scope(self, inbound_trace_id: Optional[str] = None) -> Iterator[CorrelationIds]:
        ids = self.begin(inbound_trace_id)
        try:
            yield ids
        finally:
            self.end()


# ── Process-wide default ─────────────────────────────────────────

_default_context = CorrelationContext()


def get_correlation_context() -> CorrelationContext:
    """Return the process-wide ``CorrelationContext`` shared by the core."""
    return _default_context


def begin_correlation(inbound_trace_id: Optional[str] = None) -> CorrelationIds:
    return _default_context.begin(inbound_trace_id)


def current_correlation() -> Optional[CorrelationIds]:
    return _default_context.current()


def end_correlation() -> None:
    _default_context.end()


def correlation_scope(inbound_trace_id: Optional[str] = None):
    """Context manager: ``begin`` on entry, ``end`` on every exit path."""
    return _default_context.scope(inbound_trace_id)


# ── Header parsing ───────────────────────────────────────────────


def extract_inbound_trace_id(
    headers: Mapping[str, Any],
    header_name: str = TRACE_ID_HEADER,
) -> Optional[str]:
    """Extract an inbound trace ID from request headers.

    Supports:
    * the configured trace header (``X-Trace-Id`` by default)
    * ``traceparent`` (W3C Trace Context)

    Returns:
        The trace id, or ``None`` when no usable header is present.
    """
    trace_id = headers.get(header_name) or ""
    if trace_id:
        return trace_id

    # W3C traceparent: 00-<trace_id>-<parent_span_id>-<flags>
    tp = headers.get(TRACEPARENT_HEADER) or ""
    if tp:
        parts = tp.split("-")
        if len(parts) >= 4 and len(parts[1]) == TRACE_ID_LENGTH:
            return parts[1]

    return None
