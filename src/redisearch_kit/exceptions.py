"""Exception hierarchy for redisearch-kit.

Every error raised by the library derives from ``RedisSearchKitError`` so
callers can catch the whole family at once. The concrete classes also inherit
from the closest builtin (``ValueError``, ``LookupError``,
``NotImplementedError``) so generic handlers keep working.
"""

from __future__ import annotations

from typing import Any


class RedisSearchKitError(Exception):
    """Base class for all library errors."""


class ValidationError(RedisSearchKitError, ValueError):
    """Raised when a field, schema, document or query is malformed."""


class SchemaValidationError(ValidationError):
    """Raised for invalid field definitions or index schemas."""


class QueryValidationError(ValidationError):
    """Raised when a query fails pre-flight checks before reaching the server."""


class DocumentValidationError(ValidationError):
    """Raised when a document does not match the schema it is loaded into."""

    def __init__(
        self,
        message: str,
        *,
        field_name: str | None = None,
        expected: Any = None,
        actual: Any = None,
    ) -> None:
        super().__init__(message)
        self.field_name = field_name
        self.expected = expected
        self.actual = actual


class NotFoundError(RedisSearchKitError, LookupError):
    """Raised when an index is absent where presence is required."""


class ServerError(RedisSearchKitError):
    """Raised when the search server rejects a command."""

    def __init__(self, message: str, *, command: str | None = None, index_name: str | None = None) -> None:
        super().__init__(message)
        self.command = command
        self.index_name = index_name


class UnsupportedOperationError(RedisSearchKitError, NotImplementedError):
    """Raised for operations that are explicitly disabled."""
