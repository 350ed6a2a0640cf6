"""One-call logging and tracing setup driven by ``Settings``."""

from __future__ import annotations

import logging

from redisearch_kit.config import Settings, get_settings
from redisearch_kit.observability.logging import configure_logging
from redisearch_kit.observability.tracing import init_tracing


logger = logging.getLogger(__name__)


def setup_observability(settings: Settings | None = None) -> None:
    """Configure logging and, when enabled, install the tracer provider."""
    settings = settings or get_settings()
    configure_logging(level=settings.log_level, json_output=settings.log_json)
    if settings.tracing_enabled:
        init_tracing(service_name=settings.service_name)
    else:
        logger.info("Tracing disabled; spans use the global no-op provider")
