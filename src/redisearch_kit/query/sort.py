"""Sort specifications for search queries.

A sort spec may be given as:
- a field name (``"price"``), sorted with the query's default direction
- a ``(field, direction)`` pair (``("price", "DESC")``)
- a ``SortField``
- a list mixing any of the above

``FT.SEARCH`` sorts by a single field, so only the first entry reaches the
server; the remaining ones are kept on the query and reported in the log.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
import logging
from typing import Any

from redisearch_kit.exceptions import QueryValidationError


logger = logging.getLogger(__name__)

_DIRECTIONS = ("ASC", "DESC")


@dataclass(frozen=True)
class SortField:
    """One sort key and its direction."""

    field_name: str
    ascending: bool = True

    def __post_init__(self) -> None:
        if not isinstance(self.field_name, str) or not self.field_name.strip():
            msg = "Sort field name cannot be null or empty"
            raise QueryValidationError(msg)
        object.__setattr__(self, "field_name", self.field_name.strip())

    @classmethod
    def asc(cls, field_name: str) -> SortField:
        return cls(field_name, ascending=True)

    @classmethod
    def desc(cls, field_name: str) -> SortField:
        return cls(field_name, ascending=False)

    @property
    def direction(self) -> str:
        return "ASC" if self.ascending else "DESC"


SortEntry = str | SortField | tuple[str, str]
SortSpec = SortEntry | Sequence[SortEntry]


def parse_direction(direction: Any) -> bool:
    """Return ``True`` for ``ASC`` and ``False`` for ``DESC``, in any case."""
    if not isinstance(direction, str) or not direction.strip():
        msg = "Sort direction cannot be null or empty"
        raise QueryValidationError(msg)
    normalized = direction.strip().upper()
    if normalized not in _DIRECTIONS:
        msg = f"Sort direction must be 'ASC' or 'DESC', got: '{direction}'"
        raise QueryValidationError(msg)
    return normalized == "ASC"


def _is_pair(spec: Any) -> bool:
    return (
        isinstance(spec, tuple)
        and len(spec) == 2
        and isinstance(spec[1], str)
        and spec[1].strip().upper() in _DIRECTIONS
    )


def _parse_entry(entry: Any, ascending: bool) -> SortField:
    if isinstance(entry, SortField):
        return entry
    if isinstance(entry, str):
        return SortField(entry, ascending)
    if _is_pair(entry):
        return SortField(entry[0], parse_direction(entry[1]))
    msg = f"Unsupported sort spec entry: {entry!r}"
    raise QueryValidationError(msg)


def parse_sort_spec(spec: SortSpec | None, ascending: bool = True) -> list[SortField]:
    """Normalize ``spec`` into a list of ``SortField``.

    ``None`` and an empty list mean no sorting. ``ascending`` applies to
    bare field names only.
    """
    if spec is None:
        return []
    if isinstance(spec, (str, SortField)) or _is_pair(spec):
        return [_parse_entry(spec, ascending)]
    if not isinstance(spec, Sequence):
        msg = f"Unsupported sort spec: {spec!r}"
        raise QueryValidationError(msg)
    fields = [_parse_entry(entry, ascending) for entry in spec]
    if len(fields) > 1:
        logger.warning(
            "Multiple sort fields specified (%d), but the server sorts by one field only. Using '%s'",
            len(fields),
            fields[0].field_name,
        )
    return fields
