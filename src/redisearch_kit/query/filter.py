"""
Filter expressions for the RediSearch query grammar.

Filters form an immutable tree. Leaf nodes are predicates on one field
(tag, text, numeric range, geo radius, prefix) and inner nodes combine them
with AND, OR and NOT. ``build()`` renders the tree to a query string and is
pure: the same tree always renders to the same string.

Example:
    expr = Filter.tag("genre", "comedy") & Filter.numeric("year").between(1990, 2000)
    expr.build()  # "(@genre:{comedy} @year:[1990 2000])"

Field names that are JSON paths (``$.price``) are escaped before rendering.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date, datetime, time, timezone
from enum import Enum

from redisearch_kit.exceptions import QueryValidationError
from redisearch_kit.query.escaping import TAG_ESCAPER, TEXT_ESCAPER, escape_field_name
from redisearch_kit.utils.formatting import format_number


WILDCARD = "*"


class GeoUnit(str, Enum):
    METERS = "m"
    KILOMETERS = "km"
    MILES = "mi"
    FEET = "ft"


class TextMode(str, Enum):
    """How a text predicate value is rendered."""

    MATCH = "match"
    EXACT = "exact"
    FUZZY = "fuzzy"
    WILDCARD = "wildcard"
    CONDITIONAL = "conditional"


def _require_field(field: str) -> str:
    if not isinstance(field, str) or not field.strip():
        msg = "Field name is required"
        raise QueryValidationError(msg)
    return field.strip()


def _require_value(value: str | None) -> str:
    if value is None:
        msg = "Value is required"
        raise QueryValidationError(msg)
    return str(value)


def _require_number(value: object) -> float | int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        msg = f"Numeric filter value must be a number, got {value!r}"
        raise QueryValidationError(msg)
    return value


class Filter(ABC):
    """Base class for filter expression nodes."""

    @abstractmethod
    def build(self) -> str:
        """Render the expression to a query string."""

    def __str__(self) -> str:
        return self.build()

    def __and__(self, other: Filter) -> Filter:
        return Filter.and_(self, other)

    def __or__(self, other: Filter) -> Filter:
        return Filter.or_(self, other)

    def __invert__(self) -> Filter:
        return Filter.not_(self)

    # ------------------------------------------------------------------
    # Predicate factories
    # ------------------------------------------------------------------
    @staticmethod
    def tag(field: str, *values: str) -> Filter:
        """Match any of ``values`` on a tag field; no values matches everything."""
        field = _require_field(field)
        flat: list[str] = []
        for value in values:
            if isinstance(value, (list, tuple, set, frozenset)):
                flat.extend(str(item) for item in value)
            elif value is not None:
                flat.append(str(value))
        if not flat:
            return RawExpression(WILDCARD)
        return TagMatch(field, tuple(flat))

    @staticmethod
    def tag_not(field: str, *values: str) -> Filter:
        return Filter.not_(Filter.tag(field, *values))

    @staticmethod
    def text(field: str, value: str) -> Filter:
        """Full-text match; values with spaces are grouped in parentheses."""
        return TextMatch(_require_field(field), _require_value(value))

    @staticmethod
    def text_not(field: str, value: str) -> Filter:
        return Filter.not_(Filter.text(field, value))

    @staticmethod
    def exact(field: str, value: str) -> Filter:
        return TextMatch(_require_field(field), _require_value(value), TextMode.EXACT)

    @staticmethod
    def fuzzy(field: str, value: str) -> Filter:
        return TextMatch(_require_field(field), _require_value(value), TextMode.FUZZY)

    @staticmethod
    def wildcard(field: str, pattern: str) -> Filter:
        return TextMatch(_require_field(field), _require_value(pattern), TextMode.WILDCARD)

    @staticmethod
    def conditional(field: str, pattern: str) -> Filter:
        """Raw alternation such as ``engineer|doctor``."""
        return TextMatch(_require_field(field), _require_value(pattern), TextMode.CONDITIONAL)

    @staticmethod
    def prefix(field: str, value: str) -> Filter:
        return PrefixMatch(_require_field(field), _require_value(value))

    @staticmethod
    def numeric(field: str) -> NumericFilterBuilder:
        return NumericFilterBuilder(_require_field(field))

    @staticmethod
    def geo(field: str) -> GeoFilterBuilder:
        return GeoFilterBuilder(_require_field(field))

    @staticmethod
    def timestamp(field: str) -> TimestampFilterBuilder:
        return TimestampFilterBuilder(_require_field(field))

    @staticmethod
    def custom(expression: str) -> Filter:
        """Wrap a hand-written query expression."""
        if not isinstance(expression, str) or not expression.strip():
            msg = "Expression is required"
            raise QueryValidationError(msg)
        return RawExpression(expression)

    # ------------------------------------------------------------------
    # Boolean combinators
    # ------------------------------------------------------------------
    @staticmethod
    def and_(*filters: Filter) -> Filter:
        if not filters:
            msg = "At least one filter is required"
            raise QueryValidationError(msg)
        return AndFilter(tuple(filters))

    @staticmethod
    def or_(*filters: Filter) -> Filter:
        if not filters:
            msg = "At least one filter is required"
            raise QueryValidationError(msg)
        return OrFilter(tuple(filters))

    @staticmethod
    def not_(filter_expression: Filter) -> Filter:
        if filter_expression is None:
            msg = "Filter is required"
            raise QueryValidationError(msg)
        return NotFilter(filter_expression)


@dataclass(frozen=True)
class RawExpression(Filter):
    expression: str

    def build(self) -> str:
        return self.expression


@dataclass(frozen=True)
class TagMatch(Filter):
    field: str
    values: tuple[str, ...]

    def build(self) -> str:
        joined = "|".join(TAG_ESCAPER.escape(value) for value in self.values)
        return f"@{escape_field_name(self.field)}:{{{joined}}}"


@dataclass(frozen=True)
class TextMatch(Filter):
    field: str
    value: str
    mode: TextMode = TextMode.MATCH

    def build(self) -> str:
        name = escape_field_name(self.field)
        if self.mode is TextMode.EXACT:
            return f'@{name}:"{self.value}"'
        if self.mode is TextMode.FUZZY:
            return f"@{name}:%{self.value}%"
        if self.mode is TextMode.WILDCARD:
            return f"@{name}:{self.value}"
        if self.mode is TextMode.CONDITIONAL:
            return f"@{name}:({self.value})"
        escaped = TEXT_ESCAPER.escape(self.value)
        if " " in self.value:
            return f"@{name}:({escaped})"
        return f"@{name}:{escaped}"


@dataclass(frozen=True)
class PrefixMatch(Filter):
    field: str
    value: str

    def build(self) -> str:
        return f"@{escape_field_name(self.field)}:{self.value}*"


@dataclass(frozen=True)
class NumericRange(Filter):
    """Range predicate; ``None`` bounds are open-ended (``-inf``/``+inf``)."""

    field: str
    lower: float | int | None = None
    upper: float | int | None = None
    lower_exclusive: bool = False
    upper_exclusive: bool = False

    def build(self) -> str:
        low = "-inf" if self.lower is None else format_number(self.lower)
        high = "+inf" if self.upper is None else format_number(self.upper)
        if self.lower_exclusive and self.lower is not None:
            low = f"({low}"
        if self.upper_exclusive and self.upper is not None:
            high = f"({high}"
        return f"@{escape_field_name(self.field)}:[{low} {high}]"


@dataclass(frozen=True)
class GeoRadius(Filter):
    field: str
    longitude: float
    latitude: float
    radius: float
    unit: GeoUnit = GeoUnit.KILOMETERS

    def build(self) -> str:
        return (
            f"@{escape_field_name(self.field)}:"
            f"[{format_number(self.longitude)} {format_number(self.latitude)} "
            f"{format_number(self.radius)} {self.unit.value}]"
        )


@dataclass(frozen=True)
class AndFilter(Filter):
    children: tuple[Filter, ...]

    def build(self) -> str:
        parts = [child.build() for child in self.children]
        parts = [part for part in parts if part != WILDCARD]
        if not parts:
            return WILDCARD
        return f"({' '.join(parts)})"


@dataclass(frozen=True)
class OrFilter(Filter):
    children: tuple[Filter, ...]

    def build(self) -> str:
        parts = [child.build() for child in self.children]
        if WILDCARD in parts:
            return WILDCARD
        return f"({' | '.join(parts)})"


@dataclass(frozen=True)
class NotFilter(Filter):
    child: Filter

    def build(self) -> str:
        # An unconstrained child (e.g. a tag filter without values) stays unconstrained.
        built = self.child.build()
        if built == WILDCARD:
            return WILDCARD
        return f"-{built}"


class NumericFilterBuilder:
    """Builds numeric range predicates for one field."""

    def __init__(self, field: str) -> None:
        self.field = field

    def between(self, lower: float | int, upper: float | int) -> Filter:
        """Inclusive range ``[lower upper]``."""
        return NumericRange(self.field, _require_number(lower), _require_number(upper))

    def gt(self, value: float | int) -> Filter:
        return NumericRange(self.field, lower=_require_number(value), lower_exclusive=True)

    def gte(self, value: float | int) -> Filter:
        return NumericRange(self.field, lower=_require_number(value))

    def lt(self, value: float | int) -> Filter:
        return NumericRange(self.field, upper=_require_number(value), upper_exclusive=True)

    def lte(self, value: float | int) -> Filter:
        return NumericRange(self.field, upper=_require_number(value))

    def eq(self, value: float | int) -> Filter:
        value = _require_number(value)
        return NumericRange(self.field, value, value)

    def ne(self, value: float | int) -> Filter:
        return Filter.not_(self.eq(value))


class GeoFilterBuilder:
    """Builds geo radius predicates for one field."""

    def __init__(self, field: str) -> None:
        self.field = field

    def radius(
        self,
        longitude: float,
        latitude: float,
        radius: float,
        unit: GeoUnit | str = GeoUnit.KILOMETERS,
    ) -> Filter:
        for value in (longitude, latitude, radius):
            _require_number(value)
        if radius < 0:
            msg = f"Geo radius must be non-negative, got {radius}"
            raise QueryValidationError(msg)
        try:
            geo_unit = GeoUnit(unit)
        except ValueError:
            msg = f"Invalid geo unit '{unit}'. Expected one of: m, km, mi, ft"
            raise QueryValidationError(msg) from None
        return GeoRadius(self.field, longitude, latitude, radius, geo_unit)

    def not_radius(
        self,
        longitude: float,
        latitude: float,
        radius: float,
        unit: GeoUnit | str = GeoUnit.KILOMETERS,
    ) -> Filter:
        return Filter.not_(self.radius(longitude, latitude, radius, unit))


def to_epoch_seconds(value: datetime | date | int | float) -> float | int:
    """Convert a datetime, date or epoch number to epoch seconds.

    Naive datetimes and dates are interpreted as UTC.
    """
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.timestamp()
    if isinstance(value, date):
        return datetime.combine(value, time.min, tzinfo=timezone.utc).timestamp()
    return _require_number(value)


class TimestampFilterBuilder:
    """Numeric predicates over epoch-second timestamps."""

    def __init__(self, field: str) -> None:
        self._numeric = NumericFilterBuilder(field)

    def after(self, value: datetime | date | int | float) -> Filter:
        return self._numeric.gt(to_epoch_seconds(value))

    def before(self, value: datetime | date | int | float) -> Filter:
        return self._numeric.lt(to_epoch_seconds(value))

    def between(self, start: datetime | date | int | float, end: datetime | date | int | float) -> Filter:
        return self._numeric.between(to_epoch_seconds(start), to_epoch_seconds(end))

    def eq(self, value: datetime | date | int | float) -> Filter:
        return self._numeric.eq(to_epoch_seconds(value))
