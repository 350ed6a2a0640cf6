"""Document preparation and persistence for HASH and JSON indexes.

Every document goes through the same pipeline before it is written:

1. optional preprocessing hook (a ``None`` result is an error, never a skip)
2. key creation from the id field, or a generated ULID
3. validation against the schema's field declarations
4. coercion to the storage encoding (vectors become byte buffers for HASH
   storage and float lists for JSON storage)

``prepare_document`` exposes that pipeline for a single document so it can be
exercised without a Redis connection. ``write`` runs it for a batch first and
only then sends the batch through a non-transactional pipeline.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
import logging
import re
from typing import Any, ClassVar

import numpy as np
import orjson
from redis.client import Pipeline

from redisearch_kit.exceptions import DocumentValidationError, ValidationError
from redisearch_kit.index.results import decode
from redisearch_kit.schema.fields import (
    JSON_PATH_PREFIX,
    BaseField,
    GeoField,
    NumericField,
    TagField,
    TextField,
    VectorDataType,
    VectorField,
)
from redisearch_kit.schema.index_schema import IndexSchema, StorageType
from redisearch_kit.utils.ids import generate_id
from redisearch_kit.utils.vectors import (
    array_to_buffer,
    buffer_to_array,
    check_integer_values,
    dtype_itemsize,
    numpy_dtype,
)


logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 200

Document = Mapping[str, Any]
Preprocessor = Callable[[dict[str, Any]], Any]

_MISSING = object()
_SIMPLE_PATH = re.compile(r"^\$(\.[A-Za-z_][A-Za-z0-9_\-]*)+$")
_GEO_POINT = re.compile(r"^\s*(-?\d+(?:\.\d+)?)\s*,\s*(-?\d+(?:\.\d+)?)\s*$")
_INTEGER_TYPES = frozenset({VectorDataType.INT8, VectorDataType.UINT8})


def _type_name(value: Any) -> str:
    return type(value).__name__


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float, np.integer, np.floating)) and not isinstance(value, (bool, np.bool_))


def build_key(id_value: str, prefix: str, key_separator: str) -> str:
    """Return ``prefix + separator + id``, or ``id`` alone without a prefix.

    A prefix that already ends with the separator is not doubled.
    """
    if not prefix:
        return str(id_value)
    if key_separator and prefix.endswith(key_separator):
        prefix = prefix[: -len(key_separator)]
    return f"{prefix}{key_separator}{id_value}"


class BaseStorage:
    """Shared document pipeline; subclasses provide the Redis commands."""

    type: ClassVar[StorageType]

    def __init__(self, index_schema: IndexSchema, default_batch_size: int = DEFAULT_BATCH_SIZE) -> None:
        self.index_schema = index_schema
        self.default_batch_size = default_batch_size

    @property
    def prefix(self) -> str:
        return self.index_schema.index.key_prefix

    @property
    def key_separator(self) -> str:
        return self.index_schema.index.key_separator

    def key(self, id_value: str) -> str:
        return build_key(id_value, self.prefix, self.key_separator)

    def create_key(self, document: Document, id_field: str | None = None) -> str:
        """Build a key from ``document[id_field]``, or from a new ULID."""
        if id_field is None:
            return self.key(generate_id())
        value = document.get(id_field)
        if value is None or value == "":
            msg = f"Missing id field: {id_field}"
            raise DocumentValidationError(msg, field_name=id_field, expected="id value", actual=None)
        return self.key(str(value))

    # ------------------------------------------------------------------
    # Field value access
    # ------------------------------------------------------------------
    def _field_value(self, document: Document, field: BaseField) -> Any:
        return document.get(field.name, _MISSING)

    def _with_field_value(self, document: dict[str, Any], field: BaseField, value: Any) -> None:
        document[field.name] = value

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------
    def validate_document(self, document: Document) -> None:
        """Check every declared field present in ``document``.

        Raises:
            DocumentValidationError: naming the field with the expected and
                actual kinds.
        """
        for field in self.index_schema:
            value = self._field_value(document, field)
            if value is _MISSING or value is None:
                continue
            if isinstance(field, VectorField):
                self._validate_vector(field, value)
            elif isinstance(field, TextField):
                if not isinstance(value, str):
                    _raise_kind(field, "a string", value)
            elif isinstance(field, NumericField):
                if not _is_number(value):
                    _raise_kind(field, "a number", value)
            elif isinstance(field, TagField):
                if isinstance(value, str):
                    continue
                if not isinstance(value, (list, tuple)) or not all(isinstance(item, str) for item in value):
                    _raise_kind(field, "a string or a list of strings", value)
            elif isinstance(field, GeoField):
                if not isinstance(value, str) or not _valid_geo(value):
                    _raise_kind(field, "a 'longitude,latitude' string", value)

    def _validate_vector(self, field: VectorField, value: Any) -> None:
        if isinstance(value, (bytes, bytearray)):
            self._validate_vector_buffer(field, bytes(value))
            return
        if isinstance(value, np.ndarray):
            value = value.tolist()
        if not isinstance(value, (list, tuple)):
            msg = (
                f"Schema validation failed for field '{field.name}'. Vector field expects a list of "
                f"numbers, but got {_type_name(value)}"
            )
            raise DocumentValidationError(msg, field_name=field.name, expected="list of numbers", actual=_type_name(value))
        for item in value:
            if not _is_number(item):
                msg = (
                    f"Schema validation failed for field '{field.name}'. Vector field expects a list of "
                    f"numbers, but got element of type {_type_name(item)}"
                )
                raise DocumentValidationError(msg, field_name=field.name, expected="number", actual=_type_name(item))
        if field.datatype in _INTEGER_TYPES:
            _check_integer_elements(field, value)
        _check_dims(field, len(value))

    def _validate_vector_buffer(self, field: VectorField, value: bytes) -> None:
        itemsize = dtype_itemsize(field.datatype)
        if len(value) % itemsize:
            msg = (
                f"Vector field '{field.name}' expects {field.datatype.value} elements of {itemsize} bytes, "
                f"but got a buffer of {len(value)} bytes"
            )
            raise DocumentValidationError(msg, field_name=field.name, expected=itemsize, actual=len(value))
        _check_dims(field, len(value) // itemsize)

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------
    def coerce_document(self, document: Document) -> dict[str, Any]:
        raise NotImplementedError

    def prepare_document(
        self,
        document: Document,
        *,
        id_field: str | None = None,
        key: str | None = None,
        preprocess: Preprocessor | None = None,
        validate: bool = True,
    ) -> tuple[str, dict[str, Any]]:
        """Run one document through preprocess, key creation, validation and coercion."""
        if preprocess is not None:
            processed = preprocess(dict(document))
            if processed is None:
                msg = "Preprocess function returned None for document"
                raise DocumentValidationError(msg)
            document = processed
        if not isinstance(document, Mapping):
            msg = f"Document must be a mapping, got {_type_name(document)}"
            raise DocumentValidationError(msg, expected="mapping", actual=_type_name(document))
        if key is None:
            key = self.create_key(document, id_field)
        if validate:
            self.validate_document(document)
        return key, self.coerce_document(document)

    def write(
        self,
        client: Any,
        documents: Sequence[Document],
        *,
        id_field: str | None = None,
        keys: Sequence[str] | None = None,
        ttl: int | None = None,
        preprocess: Preprocessor | None = None,
        batch_size: int | None = None,
        validate: bool = True,
    ) -> list[str]:
        """Write ``documents`` in pipelined batches and return their keys.

        Each batch is fully prepared before anything is sent, so an invalid
        document stops the load before its batch reaches Redis. Batches that
        were already written stay written.
        """
        if isinstance(documents, Mapping) or not isinstance(documents, Sequence):
            msg = "documents must be a list of mappings"
            raise ValidationError(msg)
        if keys is not None and len(keys) != len(documents):
            msg = f"Length of keys ({len(keys)}) does not match length of documents ({len(documents)})"
            raise ValidationError(msg)
        if ttl is not None and ttl <= 0:
            msg = f"ttl must be a positive number of seconds, got {ttl}"
            raise ValidationError(msg)
        batch_size = batch_size or self.default_batch_size
        if batch_size <= 0:
            msg = f"batch_size must be positive, got {batch_size}"
            raise ValidationError(msg)

        written: list[str] = []
        for start in range(0, len(documents), batch_size):
            chunk = documents[start : start + batch_size]
            prepared = [
                self.prepare_document(
                    document,
                    id_field=id_field,
                    key=keys[start + offset] if keys is not None else None,
                    preprocess=preprocess,
                    validate=validate,
                )
                for offset, document in enumerate(chunk)
            ]
            with client.pipeline(transaction=False) as pipe:
                for key, obj in prepared:
                    self._set(pipe, key, obj)
                    if ttl is not None:
                        pipe.expire(key, ttl)
                pipe.execute()
            written.extend(key for key, _ in prepared)
            logger.debug("Wrote %d documents to %s", len(prepared), self.index_schema.name)
        return written

    def get(self, client: Any, keys: Sequence[str]) -> list[dict[str, Any] | None]:
        """Fetch documents by key; missing keys come back as ``None``."""
        if not keys:
            return []
        with client.pipeline(transaction=False) as pipe:
            for key in keys:
                self._get(pipe, key)
            replies = pipe.execute()
        return [self._decode_fetched(reply) for reply in replies]

    def _set(self, pipe: Pipeline, key: str, obj: dict[str, Any]) -> None:
        raise NotImplementedError

    def _get(self, pipe: Pipeline, key: str) -> None:
        raise NotImplementedError

    def _decode_fetched(self, reply: Any) -> dict[str, Any] | None:
        raise NotImplementedError


class HashStorage(BaseStorage):
    """Flat documents written with ``HSET``; vectors are stored as bytes."""

    type = StorageType.HASH

    def coerce_document(self, document: Document) -> dict[str, Any]:
        obj: dict[str, Any] = {}
        for name, value in document.items():
            if value is None:
                continue
            field = self.index_schema.field(name)
            if isinstance(field, VectorField) and not isinstance(value, (bytes, bytearray)):
                value = array_to_buffer(value, field.datatype)
            elif isinstance(field, TagField) and isinstance(value, (list, tuple)):
                value = field.separator.join(value)
            elif isinstance(value, bool):
                value = int(value)
            obj[name] = value
        return obj

    def _set(self, pipe: Pipeline, key: str, obj: dict[str, Any]) -> None:
        pipe.hset(key, mapping=obj)

    def _get(self, pipe: Pipeline, key: str) -> None:
        pipe.hgetall(key)

    def _decode_fetched(self, reply: Any) -> dict[str, Any] | None:
        if not reply:
            return None
        binary = {field.name for field in self.index_schema.vector_fields}
        result: dict[str, Any] = {}
        for raw_key, raw_value in reply.items():
            name = decode(raw_key)
            result[name] = raw_value if name in binary else decode(raw_value)
        return result


class JsonStorage(BaseStorage):
    """Nested documents written with ``JSON.SET``; vectors are float lists."""

    type = StorageType.JSON

    def _path_parts(self, field: BaseField) -> list[str] | None:
        path = field.wire_name
        if not path.startswith(JSON_PATH_PREFIX):
            return [path]
        if not _SIMPLE_PATH.match(path):
            return None
        return path[len(JSON_PATH_PREFIX) :].split(".")

    def _field_value(self, document: Document, field: BaseField) -> Any:
        parts = self._path_parts(field)
        if parts is None:
            return _MISSING
        current: Any = document
        for part in parts:
            if not isinstance(current, Mapping) or part not in current:
                return _MISSING
            current = current[part]
        return current

    def _with_field_value(self, document: dict[str, Any], field: BaseField, value: Any) -> None:
        parts = self._path_parts(field)
        if parts is None:
            return
        current = document
        for part in parts[:-1]:
            child = current.get(part)
            if not isinstance(child, Mapping):
                return
            child = dict(child)
            current[part] = child
            current = child
        current[parts[-1]] = value

    def _validate_vector(self, field: VectorField, value: Any) -> None:
        if isinstance(value, (bytes, bytearray)):
            msg = (
                f"Schema validation failed for field '{field.name}'. JSON documents store vectors as "
                f"lists of numbers, but got bytes"
            )
            raise DocumentValidationError(msg, field_name=field.name, expected="list of numbers", actual="bytes")
        super()._validate_vector(field, value)

    def coerce_document(self, document: Document) -> dict[str, Any]:
        obj = dict(document)
        for field in self.index_schema.vector_fields:
            value = self._field_value(obj, field)
            if value is _MISSING or value is None:
                continue
            if isinstance(value, (bytes, bytearray)):
                value = buffer_to_array(bytes(value), field.datatype)
            elif isinstance(value, np.ndarray):
                value = value.tolist()
            if field.datatype in _INTEGER_TYPES:
                check_integer_values(value, field.datatype)
                value = [int(item) for item in value]
            else:
                value = [float(item) for item in value]
            self._with_field_value(obj, field, value)
        return obj

    def _set(self, pipe: Pipeline, key: str, obj: dict[str, Any]) -> None:
        pipe.execute_command("JSON.SET", key, "$", orjson.dumps(obj, option=orjson.OPT_SERIALIZE_NUMPY))

    def _get(self, pipe: Pipeline, key: str) -> None:
        pipe.execute_command("JSON.GET", key)

    def _decode_fetched(self, reply: Any) -> dict[str, Any] | None:
        if reply is None:
            return None
        return orjson.loads(reply)


STORAGE_TYPES: dict[StorageType, type[BaseStorage]] = {
    StorageType.HASH: HashStorage,
    StorageType.JSON: JsonStorage,
}


def _raise_kind(field: BaseField, expected: str, value: Any) -> None:
    msg = (
        f"Schema validation failed for field '{field.name}'. "
        f"Field expects {expected}, but got {_type_name(value)} value '{value}'"
    )
    raise DocumentValidationError(msg, field_name=field.name, expected=expected, actual=_type_name(value))


def _check_dims(field: VectorField, actual: int) -> None:
    if actual != field.dims:
        msg = f"Vector field '{field.name}' expects {field.dims} dimensions, but got {actual}"
        raise DocumentValidationError(msg, field_name=field.name, expected=field.dims, actual=actual)


def _check_integer_elements(field: VectorField, values: Sequence[Any]) -> None:
    bounds = np.iinfo(numpy_dtype(field.datatype))
    expected = f"{field.datatype.value} integer between {bounds.min} and {bounds.max}"
    for item in values:
        integral = not isinstance(item, (float, np.floating)) or float(item).is_integer()
        if not integral or not bounds.min <= item <= bounds.max:
            msg = (
                f"Schema validation failed for field '{field.name}'. Vector field expects {expected} "
                f"values, but got {item!r}"
            )
            raise DocumentValidationError(msg, field_name=field.name, expected=expected, actual=item)


def _valid_geo(value: str) -> bool:
    match = _GEO_POINT.match(value)
    if not match:
        return False
    longitude, latitude = float(match.group(1)), float(match.group(2))
    return -180 <= longitude <= 180 and -85.05112878 <= latitude <= 85.05112878
