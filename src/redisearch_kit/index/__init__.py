"""Index runtime: connections, document storage and the ``SearchIndex`` facade."""

from redisearch_kit.index.connection import get_redis_connection, validate_modules
from redisearch_kit.index.results import SearchResult
from redisearch_kit.index.search_index import SearchIndex
from redisearch_kit.index.storage import BaseStorage, HashStorage, JsonStorage


__all__ = [
    "BaseStorage",
    "HashStorage",
    "JsonStorage",
    "SearchIndex",
    "SearchResult",
    "get_redis_connection",
    "validate_modules",
]
