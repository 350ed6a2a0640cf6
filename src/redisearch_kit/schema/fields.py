"""
Field definitions for RediSearch index schemas.

Each field variant is a frozen dataclass that validates itself on
construction and knows how to render its own slice of an ``FT.CREATE``
command. Supports:
- TextField: full-text searchable strings
- TagField: exact-match tags with a configurable separator
- NumericField: numbers for range filters and sorting
- GeoField: ``lon,lat`` points for radius filters
- VectorField: FLAT, HNSW or SVS-VAMANA vector indexes

The server's schema parser rejects modifiers that appear out of order, so
``to_wire_schema()`` always emits them in one fixed sequence per variant:

- Text: [INDEXEMPTY] [INDEXMISSING] [SORTABLE [UNF]] [NOINDEX] [NOSTEM] [WEIGHT w] [PHONETIC m] [WITHSUFFIXTRIE]
- Tag: [INDEXEMPTY] [INDEXMISSING] [SORTABLE] [NOINDEX] [SEPARATOR s] [CASESENSITIVE] [WITHSUFFIXTRIE]
- Numeric: [INDEXMISSING] [SORTABLE [UNF]] [NOINDEX]
- Geo: [INDEXMISSING] [SORTABLE] [NOINDEX]
- Vector: ALGORITHM count KEY VALUE ...

UNF only applies to sortable fields and is dropped otherwise.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, fields as dataclass_fields
from enum import Enum
import logging
import re
from typing import Any, ClassVar, TypeVar

from redisearch_kit.exceptions import SchemaValidationError
from redisearch_kit.utils.formatting import format_number


logger = logging.getLogger(__name__)

JSON_PATH_PREFIX = "$."

_EnumT = TypeVar("_EnumT", bound=Enum)
_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")


class FieldType(str, Enum):
    """Types of fields supported by the search server."""

    TEXT = "text"
    TAG = "tag"
    NUMERIC = "numeric"
    GEO = "geo"
    VECTOR = "vector"

    @property
    def wire_token(self) -> str:
        """Return the uppercase token used in ``FT.CREATE``."""
        return self.value.upper()

    @classmethod
    def parse(cls, token: str) -> FieldType:
        """Parse a field type token in either case."""
        try:
            return cls(str(token).strip().lower())
        except ValueError:
            msg = f"Unknown field type: {token}"
            raise SchemaValidationError(msg) from None


class VectorAlgorithm(str, Enum):
    FLAT = "FLAT"
    HNSW = "HNSW"
    SVS_VAMANA = "SVS-VAMANA"


class DistanceMetric(str, Enum):
    L2 = "L2"
    IP = "IP"
    COSINE = "COSINE"


class VectorDataType(str, Enum):
    FLOAT16 = "FLOAT16"
    FLOAT32 = "FLOAT32"
    FLOAT64 = "FLOAT64"
    BFLOAT16 = "BFLOAT16"
    INT8 = "INT8"
    UINT8 = "UINT8"


class CompressionType(str, Enum):
    """Vector compression schemes available to SVS-VAMANA indexes."""

    LVQ4 = "LVQ4"
    LVQ4x4 = "LVQ4x4"
    LVQ4x8 = "LVQ4x8"
    LVQ8 = "LVQ8"
    LeanVec4x8 = "LeanVec4x8"
    LeanVec8x8 = "LeanVec8x8"

    @property
    def is_leanvec(self) -> bool:
        return self.value.startswith("LeanVec")


SVS_DATATYPES = frozenset({VectorDataType.FLOAT16, VectorDataType.FLOAT32})


def coerce_enum(enum_cls: type[_EnumT], value: Any, label: str) -> _EnumT:
    """Convert ``value`` to a member of ``enum_cls``, case-insensitively.

    Both the member value (``SVS-VAMANA``) and the member name
    (``SVS_VAMANA``) are accepted.
    """
    if isinstance(value, enum_cls):
        return value
    token = str(value).strip().upper()
    for member in enum_cls:
        if token in (str(member.value).upper(), member.name.upper()):
            return member
    choices = ", ".join(str(member.value) for member in enum_cls)
    msg = f"Invalid {label} '{value}'. Expected one of: {choices}"
    raise SchemaValidationError(msg)


def json_path_for(name: str, path: str | None = None) -> str:
    """Return the JSON path a field is indexed under in JSON storage."""
    if path:
        return path
    if name.startswith(JSON_PATH_PREFIX):
        return name
    return f"{JSON_PATH_PREFIX}{name}"


@dataclass(frozen=True)
class BaseField(ABC):
    """Attributes shared by every field variant."""

    name: str
    alias: str | None = None
    indexed: bool = True
    sortable: bool = False
    path: str | None = None

    # Keys emitted by to_dict() beyond the common ones, in output order.
    _dict_keys: ClassVar[tuple[tuple[str, str], ...]] = ()

    def __post_init__(self) -> None:
        if not isinstance(self.name, str) or not self.name.strip():
            msg = "Field name cannot be null or empty"
            raise SchemaValidationError(msg)
        object.__setattr__(self, "name", self.name.strip())
        if self.alias is not None and not self.alias.strip():
            object.__setattr__(self, "alias", None)
        if self.path is not None and not self.path.strip():
            object.__setattr__(self, "path", None)

    @property
    @abstractmethod
    def field_type(self) -> FieldType:
        """Return the field type."""

    @property
    def wire_name(self) -> str:
        """The identifier the server indexes: the JSON path when set, else the name."""
        return self.path or self.name

    @property
    def query_name(self) -> str:
        """The identifier used to reference this field inside query strings."""
        return self.alias or self.wire_name

    def to_field_reference(self) -> tuple[str, str | None]:
        """Return the ``(name, alias)`` pair used in query return lists."""
        return self.wire_name, self.alias

    def to_wire_schema(self) -> list[str]:
        """Return this field's ``FT.CREATE`` tokens in canonical order."""
        tokens = [self.wire_name]
        if self.alias:
            tokens.extend(["AS", self.alias])
        tokens.append(self.field_type.wire_token)
        tokens.extend(self._modifier_tokens())
        return tokens

    @abstractmethod
    def _modifier_tokens(self) -> list[str]:
        """Return the tokens that follow the type token."""

    def to_dict(self) -> dict[str, Any]:
        """Serialize the field for a structured schema document."""
        data: dict[str, Any] = {"name": self.name, "type": self.field_type.value}
        if self.alias:
            data["alias"] = self.alias
        if self.path:
            data["path"] = self.path
        if self.sortable:
            data["sortable"] = True
        if not self.indexed:
            data["indexed"] = False
        for attr, key in self._dict_keys:
            value = getattr(self, attr)
            default = _field_default(type(self), attr)
            if value != default:
                data[key] = value
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any], *, json_storage: bool = False) -> BaseField:
        """Deserialize a field definition.

        ``attrs`` entries are merged under the top-level keys, except ``as``
        which overrides ``alias``. Keys may be camelCase or snake_case. With
        ``json_storage`` the field's path defaults to ``$.<name>``.
        """
        if not isinstance(data, dict):
            msg = f"Field definition must be a mapping, got {type(data).__name__}"
            raise SchemaValidationError(msg)
        if not data.get("name"):
            msg = "Field definition is missing required attribute 'name'"
            raise SchemaValidationError(msg)
        if not data.get("type"):
            msg = f"Field '{data['name']}' is missing required attribute 'type'"
            raise SchemaValidationError(msg)

        field_type = FieldType.parse(data["type"])
        field_cls = FIELD_CLASSES[field_type]

        attrs = data.get("attrs") or {}
        options: dict[str, Any] = {}
        for key, value in {**attrs, **data}.items():
            if key in ("attrs", "type", "as"):
                continue
            options[_normalize_key(key)] = value
        if attrs.get("as"):
            options["alias"] = attrs["as"]
        if "no_index" in options:
            options["indexed"] = not options.pop("no_index")

        if field_type is FieldType.VECTOR and options.get("dims") is None:
            msg = f"Vector field '{data['name']}' is missing required attribute 'dims'"
            raise SchemaValidationError(msg)

        if json_storage:
            options["path"] = json_path_for(str(data["name"]).strip(), options.get("path"))
            if options["path"] == str(data["name"]).strip():
                options["path"] = None
        else:
            options.pop("path", None)

        known = {f.name for f in dataclass_fields(field_cls)}
        unknown = sorted(set(options) - known)
        if unknown:
            logger.debug("Ignoring unsupported attributes for field %s: %s", data["name"], unknown)
        return field_cls(**{key: value for key, value in options.items() if key in known})


_KEY_ALIASES = {
    "phonetic_matcher": "phonetic",
    "data_type": "datatype",
    "dim": "dims",
    "casesensitive": "case_sensitive",
    "nostem": "no_stem",
    "with_suffix_trie": "withsuffixtrie",
}


def _normalize_key(key: str) -> str:
    key = str(key)
    snake = key.lower() if "_" in key or key.isupper() else _CAMEL_BOUNDARY.sub("_", key).lower()
    return _KEY_ALIASES.get(snake, snake)


def _field_default(field_cls: type, attr: str) -> Any:
    for item in dataclass_fields(field_cls):
        if item.name == attr:
            return item.default
    return None


def _positive(field_name: str, label: str, value: Any, *, allow_zero: bool = False) -> None:
    if value is None:
        return
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        msg = f"Field '{field_name}': {label} must be a number, got {value!r}"
        raise SchemaValidationError(msg)
    if value < 0 or (value == 0 and not allow_zero):
        msg = f"Field '{field_name}': {label} must be positive, got {value}"
        raise SchemaValidationError(msg)


@dataclass(frozen=True)
class TextField(BaseField):
    """
    Full-text field.

    Args:
        name: Field name (e.g., "title", "body")
        weight: Relevance weight in scoring (default: 1.0)
        no_stem: Disable stemming when indexing
        phonetic: Phonetic matcher such as "dm:en"
        unf: Keep the un-normalized form for sorting (requires sortable)
        index_missing: Index documents that lack the field
        index_empty: Index empty strings
        withsuffixtrie: Keep a suffix trie for faster contains and suffix queries
    """

    weight: float = 1.0
    no_stem: bool = False
    phonetic: str | None = None
    unf: bool = False
    index_missing: bool = False
    index_empty: bool = False
    withsuffixtrie: bool = False

    _dict_keys: ClassVar[tuple[tuple[str, str], ...]] = (
        ("weight", "weight"),
        ("no_stem", "noStem"),
        ("phonetic", "phonetic"),
        ("unf", "unf"),
        ("index_missing", "indexMissing"),
        ("index_empty", "indexEmpty"),
        ("withsuffixtrie", "withsuffixtrie"),
    )

    def __post_init__(self) -> None:
        super().__post_init__()
        _positive(self.name, "weight", self.weight)
        object.__setattr__(self, "weight", float(self.weight))

    @property
    def field_type(self) -> FieldType:
        return FieldType.TEXT

    def _modifier_tokens(self) -> list[str]:
        tokens: list[str] = []
        if self.index_empty:
            tokens.append("INDEXEMPTY")
        if self.index_missing:
            tokens.append("INDEXMISSING")
        if self.sortable:
            tokens.append("SORTABLE")
            if self.unf:
                tokens.append("UNF")
        if not self.indexed:
            tokens.append("NOINDEX")
        if self.no_stem:
            tokens.append("NOSTEM")
        if self.weight != 1.0:
            tokens.extend(["WEIGHT", format_number(self.weight)])
        if self.phonetic:
            tokens.extend(["PHONETIC", self.phonetic])
        if self.withsuffixtrie:
            tokens.append("WITHSUFFIXTRIE")
        return tokens


@dataclass(frozen=True)
class TagField(BaseField):
    """
    Exact-match tag field.

    Args:
        name: Field name (e.g., "category", "tags")
        separator: Splits multi-valued strings (default: ",")
        case_sensitive: Keep original case when matching
        index_missing: Index documents that lack the field
        index_empty: Index empty strings
        withsuffixtrie: Keep a suffix trie for faster contains and suffix queries
    """

    separator: str = ","
    case_sensitive: bool = False
    index_missing: bool = False
    index_empty: bool = False
    withsuffixtrie: bool = False

    _dict_keys: ClassVar[tuple[tuple[str, str], ...]] = (
        ("separator", "separator"),
        ("case_sensitive", "caseSensitive"),
        ("index_missing", "indexMissing"),
        ("index_empty", "indexEmpty"),
        ("withsuffixtrie", "withsuffixtrie"),
    )

    def __post_init__(self) -> None:
        super().__post_init__()
        if not self.separator:
            object.__setattr__(self, "separator", ",")

    @property
    def field_type(self) -> FieldType:
        return FieldType.TAG

    def _modifier_tokens(self) -> list[str]:
        tokens: list[str] = []
        if self.index_empty:
            tokens.append("INDEXEMPTY")
        if self.index_missing:
            tokens.append("INDEXMISSING")
        if self.sortable:
            tokens.append("SORTABLE")
        if not self.indexed:
            tokens.append("NOINDEX")
        if self.separator != ",":
            tokens.extend(["SEPARATOR", self.separator])
        if self.case_sensitive:
            tokens.append("CASESENSITIVE")
        if self.withsuffixtrie:
            tokens.append("WITHSUFFIXTRIE")
        return tokens


@dataclass(frozen=True)
class NumericField(BaseField):
    """Numeric field for range filters and sorting."""

    unf: bool = False
    index_missing: bool = False

    _dict_keys: ClassVar[tuple[tuple[str, str], ...]] = (
        ("unf", "unf"),
        ("index_missing", "indexMissing"),
    )

    @property
    def field_type(self) -> FieldType:
        return FieldType.NUMERIC

    def _modifier_tokens(self) -> list[str]:
        tokens: list[str] = []
        if self.index_missing:
            tokens.append("INDEXMISSING")
        if self.sortable:
            tokens.append("SORTABLE")
            if self.unf:
                tokens.append("UNF")
        if not self.indexed:
            tokens.append("NOINDEX")
        return tokens


@dataclass(frozen=True)
class GeoField(BaseField):
    """Geographic point field stored as ``"lon,lat"``."""

    index_missing: bool = False

    _dict_keys: ClassVar[tuple[tuple[str, str], ...]] = (("index_missing", "indexMissing"),)

    @property
    def field_type(self) -> FieldType:
        return FieldType.GEO

    def _modifier_tokens(self) -> list[str]:
        tokens: list[str] = []
        if self.index_missing:
            tokens.append("INDEXMISSING")
        if self.sortable:
            tokens.append("SORTABLE")
        if not self.indexed:
            tokens.append("NOINDEX")
        return tokens


# Tuning parameters grouped by the algorithm that accepts them.
_ALGORITHM_PARAMS: dict[VectorAlgorithm, tuple[str, ...]] = {
    VectorAlgorithm.FLAT: ("initial_cap", "block_size"),
    VectorAlgorithm.HNSW: ("initial_cap", "m", "ef_construction", "ef_runtime", "epsilon"),
    VectorAlgorithm.SVS_VAMANA: (
        "compression",
        "reduce",
        "graph_max_degree",
        "construction_window_size",
        "search_window_size",
        "svs_epsilon",
        "training_threshold",
    ),
}

# (attribute, wire key) in emission order.
_VECTOR_WIRE_KEYS: tuple[tuple[str, str], ...] = (
    ("initial_cap", "INITIAL_CAP"),
    ("block_size", "BLOCK_SIZE"),
    ("m", "M"),
    ("ef_construction", "EF_CONSTRUCTION"),
    ("ef_runtime", "EF_RUNTIME"),
    ("epsilon", "EPSILON"),
    ("compression", "COMPRESSION"),
    ("reduce", "REDUCE"),
    ("graph_max_degree", "GRAPH_MAX_DEGREE"),
    ("construction_window_size", "CONSTRUCTION_WINDOW_SIZE"),
    ("search_window_size", "SEARCH_WINDOW_SIZE"),
    ("svs_epsilon", "EPSILON"),
    ("training_threshold", "TRAINING_THRESHOLD"),
)


@dataclass(frozen=True)
class VectorField(BaseField):
    """
    Vector similarity field.

    Args:
        name: Field name (e.g., "embedding")
        dims: Number of vector elements (required, > 0)
        algorithm: FLAT, HNSW or SVS-VAMANA (default: FLAT)
        distance_metric: L2, IP or COSINE (default: COSINE)
        datatype: Element type (default: FLOAT32). SVS-VAMANA accepts only
            FLOAT16 and FLOAT32.
        initial_cap, block_size: FLAT tuning
        m, ef_construction, ef_runtime, epsilon: HNSW tuning
        compression, reduce, graph_max_degree, construction_window_size,
        search_window_size, svs_epsilon, training_threshold: SVS-VAMANA tuning.
            ``reduce`` needs a LeanVec compression and must be below ``dims``.
    """

    dims: int | None = None
    algorithm: VectorAlgorithm = VectorAlgorithm.FLAT
    distance_metric: DistanceMetric = DistanceMetric.COSINE
    datatype: VectorDataType = VectorDataType.FLOAT32
    initial_cap: int | None = None
    block_size: int | None = None
    m: int | None = None
    ef_construction: int | None = None
    ef_runtime: int | None = None
    epsilon: float | None = None
    compression: CompressionType | None = None
    reduce: int | None = None
    graph_max_degree: int | None = None
    construction_window_size: int | None = None
    search_window_size: int | None = None
    svs_epsilon: float | None = None
    training_threshold: int | None = None

    def __post_init__(self) -> None:
        super().__post_init__()
        object.__setattr__(self, "algorithm", coerce_enum(VectorAlgorithm, self.algorithm, "vector algorithm"))
        object.__setattr__(
            self, "distance_metric", coerce_enum(DistanceMetric, self.distance_metric, "distance metric")
        )
        object.__setattr__(self, "datatype", coerce_enum(VectorDataType, self.datatype, "vector datatype"))
        if self.compression is not None:
            object.__setattr__(
                self, "compression", coerce_enum(CompressionType, self.compression, "compression type")
            )
        self._validate()

    def _validate(self) -> None:
        if isinstance(self.dims, bool) or not isinstance(self.dims, int) or self.dims <= 0:
            msg = f"Vector field '{self.name}': dims must be a positive integer, got {self.dims!r}"
            raise SchemaValidationError(msg)

        accepted = _ALGORITHM_PARAMS[self.algorithm]
        for algorithm, params in _ALGORITHM_PARAMS.items():
            if algorithm is self.algorithm:
                continue
            for param in params:
                if param not in accepted and getattr(self, param) is not None:
                    msg = (
                        f"Vector field '{self.name}': parameter '{param}' is not valid "
                        f"for the {self.algorithm.value} algorithm"
                    )
                    raise SchemaValidationError(msg)

        for param in ("initial_cap", "block_size", "m", "ef_construction", "ef_runtime", "graph_max_degree"):
            _positive(self.name, param, getattr(self, param))
        for param in ("construction_window_size", "search_window_size", "training_threshold", "reduce"):
            _positive(self.name, param, getattr(self, param))
        for param in ("epsilon", "svs_epsilon"):
            _positive(self.name, param, getattr(self, param), allow_zero=True)

        if self.algorithm is VectorAlgorithm.SVS_VAMANA and self.datatype not in SVS_DATATYPES:
            msg = (
                f"SVS-VAMANA only supports FLOAT16 and FLOAT32 datatypes. "
                f"Got: {self.datatype.value}. Unsupported types: BFLOAT16, FLOAT64, INT8, UINT8."
            )
            raise SchemaValidationError(msg)

        if self.reduce is not None:
            if self.compression is None:
                msg = f"Vector field '{self.name}': reduce requires compression to be set"
                raise SchemaValidationError(msg)
            if not self.compression.is_leanvec:
                msg = (
                    f"Vector field '{self.name}': reduce is only supported with LeanVec compression "
                    f"types. Got compression={self.compression.value}. "
                    f"Either use LeanVec4x8/LeanVec8x8 or remove the reduce parameter."
                )
                raise SchemaValidationError(msg)
            if self.reduce >= self.dims:
                msg = f"Vector field '{self.name}': reduce ({self.reduce}) must be less than dims ({self.dims})"
                raise SchemaValidationError(msg)

        if self.sortable:
            msg = f"Vector field '{self.name}' cannot be sortable"
            raise SchemaValidationError(msg)

    @property
    def field_type(self) -> FieldType:
        return FieldType.VECTOR

    def vector_attributes(self) -> list[tuple[str, str]]:
        """Return the ``(KEY, value)`` pairs sent after the algorithm token."""
        pairs = [
            ("TYPE", self.datatype.value),
            ("DIM", str(self.dims)),
            ("DISTANCE_METRIC", self.distance_metric.value),
        ]
        for attr, key in _VECTOR_WIRE_KEYS:
            value = getattr(self, attr)
            if value is None:
                continue
            if isinstance(value, Enum):
                pairs.append((key, str(value.value)))
            else:
                pairs.append((key, format_number(value)))
        return pairs

    def _modifier_tokens(self) -> list[str]:
        pairs = self.vector_attributes()
        tokens = [self.algorithm.value, str(len(pairs) * 2)]
        for key, value in pairs:
            tokens.extend([key, value])
        return tokens

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        attrs: dict[str, Any] = {
            "dims": self.dims,
            "algorithm": self.algorithm.value.lower(),
            "distance_metric": self.distance_metric.value.lower(),
            "datatype": self.datatype.value.lower(),
        }
        for attr, _key in _VECTOR_WIRE_KEYS:
            value = getattr(self, attr)
            if value is None:
                continue
            attrs[attr] = value.value if isinstance(value, Enum) else value
        data["attrs"] = attrs
        return data


FIELD_CLASSES: dict[FieldType, type[BaseField]] = {
    FieldType.TEXT: TextField,
    FieldType.TAG: TagField,
    FieldType.NUMERIC: NumericField,
    FieldType.GEO: GeoField,
    FieldType.VECTOR: VectorField,
}
