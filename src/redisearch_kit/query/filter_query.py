"""Query objects that render to ``FT.SEARCH`` arguments.

``BaseQuery`` owns the argument layout shared by every query type
(``RETURN``, ``SORTBY``, ``LIMIT``, ``PARAMS``, ``DIALECT``). Subclasses only
decide the query string and its parameters.
"""

from __future__ import annotations

import copy
from typing import Any

from redisearch_kit.exceptions import QueryValidationError, UnsupportedOperationError
from redisearch_kit.query.filter import WILDCARD, Filter
from redisearch_kit.query.sort import SortField, SortSpec, parse_sort_spec


DEFAULT_DIALECT = 2


def _filter_string(filter_expression: Filter | str | None) -> str:
    if filter_expression is None:
        return WILDCARD
    if isinstance(filter_expression, Filter):
        return filter_expression.build()
    if isinstance(filter_expression, str):
        return filter_expression.strip() or WILDCARD
    msg = f"filter_expression must be a Filter or a string, got {type(filter_expression).__name__}"
    raise QueryValidationError(msg)


class BaseQuery:
    """Common paging, sorting and argument rendering for search queries."""

    def __init__(
        self,
        filter_expression: Filter | str | None = None,
        return_fields: list[str] | None = None,
        num_results: int = 10,
        sort_by: SortSpec | None = None,
        sort_ascending: bool = True,
        in_order: bool = False,
        dialect: int = DEFAULT_DIALECT,
        params: dict[str, Any] | None = None,
    ) -> None:
        if isinstance(num_results, bool) or not isinstance(num_results, int) or num_results <= 0:
            msg = f"num_results must be a positive integer, got {num_results!r}"
            raise QueryValidationError(msg)
        if isinstance(dialect, bool) or not isinstance(dialect, int) or dialect < 1:
            msg = f"dialect must be a positive integer, got {dialect!r}"
            raise QueryValidationError(msg)
        self._filter = filter_expression
        self._filter_string = _filter_string(filter_expression)
        self.return_fields: list[str] = list(return_fields or [])
        self.num_results = num_results
        self.sort_fields: list[SortField] = parse_sort_spec(sort_by, sort_ascending)
        self.in_order = in_order
        self.dialect = dialect
        self._params = dict(params or {})
        self._offset = 0
        self._num = num_results

    @property
    def filter(self) -> str:
        """The rendered filter expression (``*`` when there is none)."""
        return self._filter_string

    @property
    def sort_by(self) -> str | None:
        """The field the server sorts by (the first of ``sort_fields``)."""
        return self.sort_fields[0].field_name if self.sort_fields else None

    @property
    def sort_ascending(self) -> bool:
        return self.sort_fields[0].ascending if self.sort_fields else True

    def set_sort(self, sort_by: SortSpec | None, ascending: bool = True) -> None:
        self.sort_fields = parse_sort_spec(sort_by, ascending)

    @property
    def offset(self) -> int:
        return self._offset

    @property
    def limit(self) -> int:
        return self._num

    def paging(self, offset: int, num: int) -> BaseQuery:
        """Return a copy of this query that fetches ``num`` rows from ``offset``."""
        if offset < 0 or num < 0:
            msg = f"Paging values must be non-negative, got offset={offset} num={num}"
            raise QueryValidationError(msg)
        page = copy.copy(self)
        page.return_fields = list(self.return_fields)
        page.sort_fields = list(self.sort_fields)
        page._params = dict(self._params)
        page._offset = offset
        page._num = num
        return page

    def set_filter(self, filter_expression: Filter | str | None) -> None:
        self._filter = filter_expression
        self._filter_string = _filter_string(filter_expression)

    def query_string(self) -> str:
        return self._filter_string

    def params(self) -> dict[str, Any]:
        return dict(self._params)

    def _flags(self) -> list[str]:
        return []

    def _return_fields(self) -> list[str]:
        return list(self.return_fields)

    def _scoring_args(self) -> list[str]:
        return []

    def search_args(self) -> list[Any]:
        """Return the ``FT.SEARCH`` arguments that follow the index name."""
        args: list[Any] = [self.query_string(), *self._flags()]
        fields = self._return_fields()
        if fields:
            args.extend(["RETURN", str(len(fields)), *fields])
        if self.in_order:
            args.append("INORDER")
        args.extend(self._scoring_args())
        if self.sort_fields:
            first = self.sort_fields[0]
            args.extend(["SORTBY", first.field_name, first.direction])
        args.extend(["LIMIT", str(self._offset), str(self._num)])
        params = self.params()
        if params:
            args.extend(["PARAMS", str(len(params) * 2)])
            for key, value in params.items():
                args.extend([key, value])
        args.extend(["DIALECT", str(self.dialect)])
        return args

    def __str__(self) -> str:
        return " ".join(str(arg) for arg in self.search_args() if not isinstance(arg, bytes))


class FilterQuery(BaseQuery):
    """
    A filter-only search.

    Example:
        FilterQuery(Filter.tag("genre", "comedy"), return_fields=["title", "$.year"], num_results=20)
    """


class CountQuery(BaseQuery):
    """Counts the documents that match a filter without returning them."""

    def __init__(self, filter_expression: Filter | str | None = None, dialect: int = DEFAULT_DIALECT) -> None:
        super().__init__(filter_expression, dialect=dialect)
        self._num = 0

    def _flags(self) -> list[str]:
        return ["NOCONTENT"]

    def paging(self, offset: int, num: int) -> BaseQuery:
        msg = "CountQuery does not support paging"
        raise UnsupportedOperationError(msg)
