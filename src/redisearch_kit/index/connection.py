"""Redis client construction and search-module checks."""

from __future__ import annotations

import logging
from typing import Any

import redis
from redis.exceptions import RedisError

from redisearch_kit.config import get_settings
from redisearch_kit.exceptions import ServerError
from redisearch_kit.index.results import decode
from redisearch_kit.observability.logging import redact_url


logger = logging.getLogger(__name__)

SEARCH_MODULE_NAMES = frozenset({"search", "searchlight", "ft"})


def get_redis_connection(url: str | None = None, **kwargs: Any) -> redis.Redis:
    """Build a client for ``url`` (default: ``Settings.redis_url``).

    Responses are left undecoded so binary vector fields survive reads.
    """
    settings = get_settings()
    url = url or settings.redis_url
    if settings.redis_socket_timeout is not None:
        kwargs.setdefault("socket_timeout", settings.redis_socket_timeout)
    kwargs.setdefault("decode_responses", False)
    try:
        client = redis.Redis.from_url(url, **kwargs)
    except (ValueError, RedisError) as exc:
        msg = f"Invalid Redis connection URL {redact_url(url)}: {exc}"
        raise ServerError(msg) from exc
    logger.debug("Created Redis client for %s", redact_url(url))
    return client


def validate_modules(client: redis.Redis) -> None:
    """Fail unless the server exposes the search module."""
    try:
        modules = client.execute_command("MODULE", "LIST")
    except RedisError as exc:
        msg = f"Unable to list Redis modules: {exc}"
        raise ServerError(msg, command="MODULE LIST") from exc

    names = set()
    for module in modules or []:
        if isinstance(module, dict):
            entries = {decode(key): decode(value) for key, value in module.items()}
        else:
            items = list(module)
            entries = {decode(items[i]): decode(items[i + 1]) for i in range(0, len(items) - 1, 2)}
        if entries.get("name"):
            names.add(str(entries["name"]).lower())

    if not names & SEARCH_MODULE_NAMES:
        msg = f"Redis search module is not loaded (found modules: {sorted(names) or 'none'})"
        raise ServerError(msg, command="MODULE LIST")
