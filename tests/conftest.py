"""Shared test fixtures and configuration."""

import os

import pytest

from redisearch_kit.config import get_settings
from redisearch_kit.observability.context import trace_context


# Complete test environment that overrides every config value
TEST_ENV = {
    "REDIS_URL": "redis://localhost:6379",
    "VALIDATE_ON_LOAD": "true",
    "LOAD_BATCH_SIZE": "200",
    "QUERY_BATCH_SIZE": "10",
    "PAGE_SIZE": "30",
    "LOG_LEVEL": "info",
    "LOG_JSON": "true",
    "TRACING_ENABLED": "false",
    "SERVICE_NAME": "redisearch-kit-tests",
}


# Set environment variables immediately when conftest.py is loaded
for key, value in TEST_ENV.items():
    os.environ[key] = value


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Reset environment, cached settings and trace context around each test."""
    for key, value in TEST_ENV.items():
        monkeypatch.setenv(key, value)
    monkeypatch.delenv("REDIS_SOCKET_TIMEOUT", raising=False)
    get_settings.cache_clear()
    token = trace_context.set(None)
    yield
    trace_context.reset(token)
    get_settings.cache_clear()
