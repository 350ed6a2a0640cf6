"""Observability module for OpenTelemetry-aligned tracing and structured logging."""

from redisearch_kit.observability.context import get_trace_context, set_trace_context, trace_context
from redisearch_kit.observability.logging import JsonFormatter, configure_logging, redact_url
from redisearch_kit.observability.setup import setup_observability
from redisearch_kit.observability.tracing import create_span, get_tracer, init_tracing, reset_tracer


__all__ = [
    "JsonFormatter",
    "configure_logging",
    "create_span",
    "get_trace_context",
    "get_tracer",
    "init_tracing",
    "redact_url",
    "reset_tracer",
    "set_trace_context",
    "setup_observability",
    "trace_context",
]
