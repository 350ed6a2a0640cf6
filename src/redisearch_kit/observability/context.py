"""Context propagation for correlating log lines with index operations."""

from __future__ import annotations

from contextvars import ContextVar
from uuid import uuid4


# Per-context trace metadata: trace_id, span_id and the active index name
trace_context: ContextVar[dict | None] = ContextVar("trace_context", default=None)


def generate_trace_id() -> str:
    """Generate a 32-char hex trace ID."""
    return uuid4().hex


def get_trace_context() -> dict:
    """Get current trace context, creating a trace id on first use."""
    ctx = trace_context.get()
    if ctx is None or not ctx.get("trace_id"):
        ctx = {"trace_id": generate_trace_id(), "span_id": ""}
        trace_context.set(ctx)
    return ctx


def set_trace_context(trace_id: str, span_id: str, **extra: object) -> None:
    """Replace the trace context for the current context."""
    trace_context.set({"trace_id": trace_id, "span_id": span_id, **extra})


def update_trace_context(**values: object) -> None:
    """Merge values into the current trace context, keeping the trace id."""
    ctx = get_trace_context()
    trace_context.set({**ctx, **values})
