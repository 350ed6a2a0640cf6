"""
Index schema: index-level configuration plus an ordered set of fields.

A schema can be built in code, parsed from a YAML or JSON document, mutated
with ``add_field``/``remove_field``, rendered back to text and translated into
the arguments of ``FT.CREATE``. Field order is insertion order and is
significant for serialization.

Example:
    schema = IndexSchema(
        IndexInfo(name="docs", prefix="doc"),
        fields=[
            TextField("title", sortable=True),
            TagField("category"),
            VectorField("embedding", dims=768, algorithm="hnsw"),
        ],
    )

The structured document format mirrors the constructor::

    version: "0.1.0"
    index:
      name: docs
      prefix: doc
      storage_type: hash
    fields:
      - name: title
        type: text
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, replace
from enum import Enum
import logging
from pathlib import Path
from typing import Any

import orjson
import yaml

from redisearch_kit.exceptions import SchemaValidationError
from redisearch_kit.schema.fields import (
    JSON_PATH_PREFIX,
    BaseField,
    VectorField,
    json_path_for,
)


logger = logging.getLogger(__name__)

SCHEMA_VERSION = "0.1.0"
DEFAULT_PREFIX = "rvl"
DEFAULT_KEY_SEPARATOR = ":"


class StorageType(str, Enum):
    """How documents are stored in Redis."""

    HASH = "hash"
    JSON = "json"


class SchemaFormat(str, Enum):
    """Structured text formats a schema can be read from or written to."""

    YAML = "yaml"
    JSON = "json"


@dataclass(frozen=True)
class IndexInfo:
    """
    Index-level configuration.

    Args:
        name: Index name (required)
        prefix: Key prefix, or a list of prefixes. A single-element list is
            normalized to a plain string; longer lists are kept verbatim and
            only the first entry is used when building keys.
        key_separator: Separator between prefix and id (default: ":")
        storage_type: HASH or JSON (default: HASH)
        stopwords: None keeps the server default, [] disables stopwords,
            any other list replaces them
    """

    name: str
    prefix: str | list[str] = DEFAULT_PREFIX
    key_separator: str = DEFAULT_KEY_SEPARATOR
    storage_type: StorageType = StorageType.HASH
    stopwords: list[str] | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.name, str) or not self.name.strip():
            msg = "Index name is required"
            raise SchemaValidationError(msg)
        object.__setattr__(self, "name", self.name.strip())
        object.__setattr__(self, "prefix", _normalize_prefix(self.prefix))
        if self.key_separator is None:
            object.__setattr__(self, "key_separator", DEFAULT_KEY_SEPARATOR)
        try:
            storage_type = StorageType(str(getattr(self.storage_type, "value", self.storage_type)).lower())
        except ValueError:
            msg = f"Invalid storage type '{self.storage_type}'. Expected 'hash' or 'json'"
            raise SchemaValidationError(msg) from None
        object.__setattr__(self, "storage_type", storage_type)
        if self.stopwords is not None:
            if isinstance(self.stopwords, str):
                msg = "stopwords must be a list of strings"
                raise SchemaValidationError(msg)
            object.__setattr__(self, "stopwords", [str(word) for word in self.stopwords])

    @property
    def prefixes(self) -> list[str]:
        """Return every prefix as a list (empty when there is no prefix)."""
        if isinstance(self.prefix, list):
            return list(self.prefix)
        return [self.prefix] if self.prefix else []

    @property
    def key_prefix(self) -> str:
        """Return the prefix used to build document keys (the first one)."""
        prefixes = self.prefixes
        return prefixes[0] if prefixes else ""

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "name": self.name,
            "prefix": list(self.prefix) if isinstance(self.prefix, list) else self.prefix,
            "key_separator": self.key_separator,
            "storage_type": self.storage_type.value,
        }
        if self.stopwords is not None:
            data["stopwords"] = list(self.stopwords)
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> IndexInfo:
        if not isinstance(data, Mapping):
            msg = "Schema must contain an 'index' section"
            raise SchemaValidationError(msg)
        if not data.get("name"):
            msg = "Index section must define a 'name'"
            raise SchemaValidationError(msg)
        return cls(
            name=data["name"],
            prefix=data.get("prefix", DEFAULT_PREFIX),
            key_separator=data.get("key_separator", DEFAULT_KEY_SEPARATOR),
            storage_type=data.get("storage_type", StorageType.HASH),
            stopwords=data.get("stopwords"),
        )


def _normalize_prefix(prefix: Any) -> str | list[str]:
    if prefix is None:
        return ""
    if isinstance(prefix, str):
        return prefix
    if isinstance(prefix, Iterable):
        values = [str(item) for item in prefix]
        if not values:
            return ""
        if len(values) == 1:
            return values[0]
        return values
    msg = f"Prefix must be a string or a list of strings, got {type(prefix).__name__}"
    raise SchemaValidationError(msg)


class IndexSchema:
    """
    Schema definition for a search index.

    Fields live in a single insertion-ordered mapping keyed by field name.
    In JSON storage every field is indexed under its JSON path (``path`` when
    given, else ``$.<name>``); in HASH storage paths are dropped.
    """

    def __init__(self, index: IndexInfo, fields: Iterable[BaseField | Mapping[str, Any]] | None = None) -> None:
        if not isinstance(index, IndexInfo):
            msg = f"index must be an IndexInfo, got {type(index).__name__}"
            raise SchemaValidationError(msg)
        self.index = index
        self._fields: dict[str, BaseField] = {}
        if fields:
            self.add_fields(fields)

    # ------------------------------------------------------------------
    # Construction and serialization
    # ------------------------------------------------------------------
    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> IndexSchema:
        """Build a schema from its structured document form."""
        if not isinstance(data, Mapping):
            msg = f"Schema document must be a mapping, got {type(data).__name__}"
            raise SchemaValidationError(msg)
        if "index" not in data or data["index"] is None:
            msg = "Schema must contain an 'index' section"
            raise SchemaValidationError(msg)
        index = IndexInfo.from_dict(data["index"])
        raw_fields = data.get("fields") or []
        if not isinstance(raw_fields, list):
            msg = "'fields' must be a list of field definitions"
            raise SchemaValidationError(msg)
        json_storage = index.storage_type is StorageType.JSON
        fields = [BaseField.from_dict(item, json_storage=json_storage) for item in raw_fields]
        return cls(index, fields)

    @classmethod
    def from_text(cls, fmt: SchemaFormat | str, content: str | bytes) -> IndexSchema:
        """Parse a schema document written in ``fmt``."""
        return cls.from_dict(_decode(SchemaFormat(fmt), content))

    @classmethod
    def from_yaml_file(cls, path: str | Path) -> IndexSchema:
        file_path = Path(path)
        if not file_path.exists():
            msg = f"Schema file {file_path} does not exist"
            raise FileNotFoundError(msg)
        return cls.from_text(SchemaFormat.YAML, file_path.read_text(encoding="utf-8"))

    @classmethod
    def from_json_file(cls, path: str | Path) -> IndexSchema:
        file_path = Path(path)
        if not file_path.exists():
            msg = f"Schema file {file_path} does not exist"
            raise FileNotFoundError(msg)
        return cls.from_text(SchemaFormat.JSON, file_path.read_bytes())

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the structured document form, preserving field order."""
        return {
            "version": SCHEMA_VERSION,
            "index": self.index.to_dict(),
            "fields": [f.to_dict() for f in self._fields.values()],
        }

    def to_text(self, fmt: SchemaFormat | str) -> str:
        """Render the schema as YAML or JSON text."""
        return _encode(SchemaFormat(fmt), self.to_dict())

    def to_yaml_file(self, path: str | Path, *, overwrite: bool = True) -> None:
        file_path = Path(path)
        if file_path.exists() and not overwrite:
            msg = f"Schema file {file_path} already exists"
            raise FileExistsError(msg)
        file_path.write_text(self.to_text(SchemaFormat.YAML), encoding="utf-8")

    def copy(self) -> IndexSchema:
        """Return an independent copy; multi-prefix lists keep their raw form."""
        clone = IndexSchema(replace(self.index, prefix=self.index.prefix))
        clone._fields = dict(self._fields)
        return clone

    # ------------------------------------------------------------------
    # Field access
    # ------------------------------------------------------------------
    def __getitem__(self, name: str) -> BaseField:
        """Get field by name."""
        return self._fields[name]

    def __contains__(self, name: object) -> bool:
        """Check if field exists."""
        return name in self._fields

    def __iter__(self) -> Iterator[BaseField]:
        """Iterate over fields in insertion order."""
        return iter(list(self._fields.values()))

    def __len__(self) -> int:
        """Return number of fields."""
        return len(self._fields)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, IndexSchema):
            return NotImplemented
        return self.index == other.index and list(self._fields.items()) == list(other._fields.items())

    def __repr__(self) -> str:
        return f"IndexSchema(index={self.index!r}, fields={list(self._fields.values())!r})"

    @property
    def name(self) -> str:
        return self.index.name

    @property
    def storage_type(self) -> StorageType:
        return self.index.storage_type

    @property
    def fields(self) -> list[BaseField]:
        return list(self._fields.values())

    @property
    def field_names(self) -> list[str]:
        return list(self._fields)

    @property
    def vector_fields(self) -> list[VectorField]:
        return [f for f in self._fields.values() if isinstance(f, VectorField)]

    def field(self, name: str) -> BaseField | None:
        """Return the field registered under ``name``, or None."""
        return self._fields.get(name)

    def resolve_field(self, name: str) -> BaseField | None:
        """Find a field by name, JSON path or alias.

        ``title``, ``$.title`` and a declared alias all resolve to the same
        field, so queries may use either form.
        """
        if name in self._fields:
            return self._fields[name]
        candidates = {name}
        if name.startswith(JSON_PATH_PREFIX):
            candidates.add(name[len(JSON_PATH_PREFIX) :])
        else:
            candidates.add(f"{JSON_PATH_PREFIX}{name}")
        for candidate in candidates:
            if candidate in self._fields:
                return self._fields[candidate]
        for item in self._fields.values():
            if item.wire_name in candidates or item.alias == name:
                return item
        return None

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------
    def add_field(self, field_def: BaseField | Mapping[str, Any]) -> BaseField:
        """Add one field. A duplicate name raises ``SchemaValidationError``."""
        return self.add_fields([field_def])[0]

    def add_fields(self, field_defs: Iterable[BaseField | Mapping[str, Any]]) -> list[BaseField]:
        """Add several fields; nothing is added unless every field is valid."""
        prepared: list[BaseField] = []
        names = set(self._fields)
        wire_names = {f.wire_name for f in self._fields.values()}
        for field_def in field_defs:
            item = self._prepare_field(field_def)
            if item.name in names or item.wire_name in wire_names:
                msg = f"Duplicate field name: {item.name}"
                raise SchemaValidationError(msg)
            names.add(item.name)
            wire_names.add(item.wire_name)
            prepared.append(item)
        for item in prepared:
            self._fields[item.name] = item
        return prepared

    def remove_field(self, name: str) -> None:
        """Remove a field; unknown names are ignored."""
        if self._fields.pop(name, None) is None:
            logger.debug("Field %s not found in schema %s; nothing removed", name, self.name)

    def _prepare_field(self, field_def: BaseField | Mapping[str, Any]) -> BaseField:
        json_storage = self.index.storage_type is StorageType.JSON
        if isinstance(field_def, Mapping):
            return BaseField.from_dict(dict(field_def), json_storage=json_storage)
        if not isinstance(field_def, BaseField):
            msg = f"Expected a field definition, got {type(field_def).__name__}"
            raise SchemaValidationError(msg)
        if json_storage:
            path = json_path_for(field_def.name, field_def.path)
            if path != field_def.name and path != field_def.path:
                return replace(field_def, path=path)
            return field_def
        if field_def.path:
            return replace(field_def, path=None)
        return field_def

    # ------------------------------------------------------------------
    # Wire format
    # ------------------------------------------------------------------
    def to_create_args(self) -> list[str]:
        """Return the ``FT.CREATE`` arguments that follow the index name."""
        args = ["ON", self.index.storage_type.value.upper()]
        prefixes = self.index.prefixes
        if prefixes:
            args.extend(["PREFIX", str(len(prefixes)), *prefixes])
        if self.index.stopwords is not None:
            args.extend(["STOPWORDS", str(len(self.index.stopwords)), *self.index.stopwords])
        args.append("SCHEMA")
        for item in self._fields.values():
            args.extend(item.to_wire_schema())
        return args


def _decode(fmt: SchemaFormat, content: str | bytes) -> Any:
    try:
        if fmt is SchemaFormat.YAML:
            return yaml.safe_load(content)
        return orjson.loads(content)
    except (yaml.YAMLError, orjson.JSONDecodeError) as exc:
        msg = f"Unable to parse {fmt.value} schema: {exc}"
        raise SchemaValidationError(msg) from exc


def _encode(fmt: SchemaFormat, data: dict[str, Any]) -> str:
    if fmt is SchemaFormat.YAML:
        return yaml.safe_dump(data, sort_keys=False, default_flow_style=False)
    return orjson.dumps(data, option=orjson.OPT_INDENT_2).decode("utf-8")
