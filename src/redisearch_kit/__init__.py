"""redisearch-kit: schema, query and index tooling for Redis search."""

from redisearch_kit.exceptions import (
    DocumentValidationError,
    NotFoundError,
    QueryValidationError,
    RedisSearchKitError,
    SchemaValidationError,
    ServerError,
    UnsupportedOperationError,
    ValidationError,
)
from redisearch_kit.index import SearchIndex, SearchResult
from redisearch_kit.query import (
    CountQuery,
    Filter,
    FilterQuery,
    SortField,
    TextQuery,
    VectorQuery,
    VectorRangeQuery,
)
from redisearch_kit.schema import IndexSchema, StorageType


__version__ = "0.1.0"

__all__ = [
    "CountQuery",
    "DocumentValidationError",
    "Filter",
    "FilterQuery",
    "IndexSchema",
    "NotFoundError",
    "QueryValidationError",
    "RedisSearchKitError",
    "SchemaValidationError",
    "SearchIndex",
    "SearchResult",
    "ServerError",
    "SortField",
    "StorageType",
    "TextQuery",
    "UnsupportedOperationError",
    "ValidationError",
    "VectorQuery",
    "VectorRangeQuery",
    "__version__",
]
