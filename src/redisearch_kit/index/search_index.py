"""
Search index runtime.

``SearchIndex`` binds an ``IndexSchema`` to a Redis connection and drives the
index lifecycle (absent -> created -> populated -> absent): creating and
dropping the index, loading validated documents, fetching and expiring keys,
and running filter and vector queries, including batched and paginated
variants.

Every server round trip goes through ``execute_command`` or a
non-transactional pipeline, and every Redis error is re-raised as one of the
library's exceptions with the command and index name attached. Nothing is
retried.

Example:
    index = SearchIndex.from_yaml("schema.yaml", redis_url="redis://localhost:6379")
    index.create(overwrite=True)
    index.load([{"id": "1", "title": "hello", "embedding": [0.1, 0.2, 0.3]}], id_field="id")
    results = index.query(VectorQuery([0.1, 0.2, 0.3], "embedding", num_results=5))
"""

from __future__ import annotations

from collections.abc import Generator, Iterable, Mapping, Sequence
import copy
import logging
from pathlib import Path
from typing import Any

from redis.exceptions import RedisError, ResponseError

from redisearch_kit.config import Settings, get_settings
from redisearch_kit.exceptions import (
    NotFoundError,
    QueryValidationError,
    SchemaValidationError,
    ServerError,
    UnsupportedOperationError,
    ValidationError,
)
from redisearch_kit.index.connection import get_redis_connection, validate_modules
from redisearch_kit.index.results import (
    SearchResult,
    decode,
    normalize_distance,
    parse_info_reply,
    parse_search_reply,
    schema_from_info,
)
from redisearch_kit.index.storage import STORAGE_TYPES, BaseStorage, Preprocessor
from redisearch_kit.observability.tracing import create_span
from redisearch_kit.query.filter import WILDCARD, Filter
from redisearch_kit.query.filter_query import DEFAULT_DIALECT, BaseQuery, CountQuery, FilterQuery
from redisearch_kit.query.text import TextQuery
from redisearch_kit.query.vector import DISTANCE_ID, BaseVectorQuery, VectorQuery, VectorRangeQuery
from redisearch_kit.schema.fields import TextField, VectorAlgorithm, VectorField
from redisearch_kit.schema.index_schema import IndexInfo, IndexSchema, StorageType


logger = logging.getLogger(__name__)

_UNKNOWN_INDEX_MARKERS = ("unknown index name", "no such index")

QueryInput = BaseQuery | Filter


def _is_unknown_index(exc: Exception) -> bool:
    message = str(exc).lower()
    return any(marker in message for marker in _UNKNOWN_INDEX_MARKERS)


class SearchIndex:
    """A RediSearch index bound to a Redis client.

    Args:
        schema: The index schema; it stays live-attached, so mutate it only
            while no load or search is in flight
        redis_client: An existing ``redis.Redis`` client (responses must not
            be decoded)
        redis_url: URL used to build a client lazily when none is given
        validate_on_load: Validate documents before writing (default from
            ``Settings.validate_on_load``)
        settings: Override the process settings
    """

    def __init__(
        self,
        schema: IndexSchema,
        redis_client: Any | None = None,
        redis_url: str | None = None,
        *,
        validate_on_load: bool | None = None,
        settings: Settings | None = None,
        connection_kwargs: Mapping[str, Any] | None = None,
    ) -> None:
        if not isinstance(schema, IndexSchema):
            msg = f"schema must be an IndexSchema, got {type(schema).__name__}"
            raise SchemaValidationError(msg)
        self._schema = schema
        self._settings = settings or get_settings()
        self._validate_on_load = (
            self._settings.validate_on_load if validate_on_load is None else validate_on_load
        )
        self._redis_client = redis_client
        self._owns_client = False
        self._redis_url = redis_url
        self._connection_kwargs = dict(connection_kwargs or {})
        self._storage: BaseStorage = STORAGE_TYPES[schema.storage_type](
            schema, default_batch_size=self._settings.load_batch_size
        )

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------
    @classmethod
    def from_dict(cls, schema_dict: Mapping[str, Any], **kwargs: Any) -> SearchIndex:
        return cls(IndexSchema.from_dict(schema_dict), **kwargs)

    @classmethod
    def from_yaml(cls, schema_path: str | Path, **kwargs: Any) -> SearchIndex:
        return cls(IndexSchema.from_yaml_file(schema_path), **kwargs)

    @classmethod
    def from_existing(
        cls,
        name: str,
        redis_client: Any | None = None,
        redis_url: str | None = None,
        **kwargs: Any,
    ) -> SearchIndex:
        """Rebuild a ``SearchIndex`` from the ``FT.INFO`` of an existing index."""
        if redis_client is None:
            redis_client = get_redis_connection(redis_url)
        bootstrap = cls(IndexSchema(IndexInfo(name=name)), redis_client=redis_client, **kwargs)
        info = bootstrap.info()
        schema = IndexSchema.from_dict(schema_from_info(name, info))
        return cls(schema, redis_client=redis_client, **kwargs)

    def connect(self, redis_url: str | None = None, *, validate: bool = False, **kwargs: Any) -> SearchIndex:
        """Create and attach a client for ``redis_url``."""
        client = get_redis_connection(redis_url or self._redis_url, **{**self._connection_kwargs, **kwargs})
        if validate:
            validate_modules(client)
        self._redis_client = client
        self._owns_client = True
        return self

    def set_client(self, redis_client: Any) -> SearchIndex:
        """Attach an existing client; the index will not close it."""
        self._redis_client = redis_client
        self._owns_client = False
        return self

    def disconnect(self) -> None:
        """Close the client if this index created it, and detach it."""
        if self._redis_client is not None and self._owns_client:
            self._redis_client.close()
        self._redis_client = None
        self._owns_client = False

    def __enter__(self) -> SearchIndex:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.disconnect()

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------
    @property
    def client(self) -> Any:
        """The Redis client, created lazily from the configured URL."""
        if self._redis_client is None:
            self.connect(self._redis_url)
        return self._redis_client

    @property
    def schema(self) -> IndexSchema:
        """A copy of the schema; edits do not affect the index."""
        return self._schema.copy()

    @property
    def name(self) -> str:
        return self._schema.index.name

    @property
    def prefix(self) -> str:
        """The prefix used for document keys (the first configured prefix)."""
        return self._schema.index.key_prefix

    @property
    def key_separator(self) -> str:
        return self._schema.index.key_separator

    @property
    def storage_type(self) -> StorageType:
        return self._schema.storage_type

    @property
    def validate_on_load(self) -> bool:
        return self._validate_on_load

    def key(self, id_value: str) -> str:
        """Return the full Redis key for a document id."""
        return self._storage.key(id_value)

    def _span_attributes(self, **extra: Any) -> dict[str, Any]:
        return {"db.system": "redis", "db.index": self.name, **extra}

    # ------------------------------------------------------------------
    # Command execution
    # ------------------------------------------------------------------
    def _execute(self, command: str, *args: Any) -> Any:
        try:
            return self.client.execute_command(command, *args)
        except RedisError as exc:
            raise self._server_error(command, exc) from exc

    def _server_error(
        self, command: str, exc: RedisError, index_name: str | None = None
    ) -> ServerError | NotFoundError:
        """Map a Redis error onto ``NotFoundError`` or ``ServerError``."""
        index_name = index_name or self.name
        if isinstance(exc, ResponseError) and _is_unknown_index(exc):
            return NotFoundError(f"Index '{index_name}' does not exist")
        msg = f"{command} failed for index '{index_name}': {exc}"
        return ServerError(msg, command=command, index_name=index_name)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def create(self, overwrite: bool = False, drop: bool = False) -> None:
        """Create the index from the schema.

        Args:
            overwrite: Drop and recreate the index when it already exists
            drop: When overwriting, also delete the indexed documents

        Raises:
            SchemaValidationError: The schema has no fields
            ValidationError: The index exists and ``overwrite`` is False
        """
        if len(self._schema) == 0:
            msg = "No fields defined for index"
            raise SchemaValidationError(msg)

        with create_span("search_index.create", attributes=self._span_attributes(overwrite=overwrite)):
            if self.exists():
                if not overwrite:
                    msg = f"Index '{self.name}' already exists; pass overwrite=True to recreate it"
                    raise ValidationError(msg)
                logger.info("Index %s already exists, overwriting", self.name)
                self.delete(drop=drop)

            self._execute("FT.CREATE", self.name, *self._schema.to_create_args())
            logger.info("Created index %s with %d fields", self.name, len(self._schema))

    def delete(self, drop: bool = True, ignore_missing: bool = False) -> None:
        """Drop the index, and its documents when ``drop`` is True.

        Raises:
            NotFoundError: The index does not exist and ``ignore_missing`` is False
        """
        args = [self.name, "DD"] if drop else [self.name]
        with create_span("search_index.delete", attributes=self._span_attributes(drop=drop)):
            try:
                self._execute("FT.DROPINDEX", *args)
            except NotFoundError:
                if ignore_missing:
                    logger.info("Index %s does not exist; nothing to delete", self.name)
                    return
                raise
            logger.info("Deleted index %s", self.name)

    def exists(self) -> bool:
        """Check whether the index exists on the server."""
        return self.name in self.listall()

    def listall(self) -> list[str]:
        """List every search index on the server."""
        reply = self._execute("FT._LIST")
        return [str(decode(name)) for name in reply or []]

    def info(self, name: str | None = None) -> dict[str, Any]:
        """Return ``FT.INFO`` for this index (or ``name``) as a dict.

        Raises:
            NotFoundError: The index does not exist
        """
        index_name = name or self.name
        try:
            reply = self.client.execute_command("FT.INFO", index_name)
        except RedisError as exc:
            raise self._server_error("FT.INFO", exc, index_name) from exc
        return parse_info_reply(reply)

    def clear(self, batch_size: int | None = None) -> int:
        """Delete every document in the index, keeping the index itself.

        Returns:
            Number of keys deleted
        """
        batch_size = batch_size or self._settings.load_batch_size
        total = 0
        with create_span("search_index.clear", attributes=self._span_attributes()) as span:
            while True:
                reply = self._execute(
                    "FT.SEARCH", self.name, WILDCARD, "NOCONTENT", "LIMIT", "0", str(batch_size),
                    "DIALECT", str(DEFAULT_DIALECT),
                )
                keys = [doc["id"] for doc in parse_search_reply(reply, nocontent=True).docs]
                if not keys:
                    break
                deleted = self.drop_keys(keys)
                total += deleted
                if deleted == 0 or len(keys) < batch_size:
                    break
            span.set_attribute("search_index.deleted", total)
        logger.info("Cleared %d documents from index %s", total, self.name)
        return total

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------
    def load(
        self,
        data: Sequence[Mapping[str, Any]],
        id_field: str | None = None,
        keys: Sequence[str] | None = None,
        ttl: int | None = None,
        preprocess: Preprocessor | None = None,
        batch_size: int | None = None,
    ) -> list[str]:
        """Validate, coerce and write documents; return their keys in input order.

        Args:
            data: Documents to write
            id_field: Document field holding the id; a document without it
                fails the load. Without an id field keys get a ULID.
            keys: Explicit keys, one per document
            ttl: Expire every written key after this many seconds
            preprocess: Hook applied to each document first; returning None
                fails the load
            batch_size: Documents per pipeline round trip

        Raises:
            DocumentValidationError: A document does not match the schema
            ServerError: Redis rejected a write
        """
        with create_span("search_index.load", attributes=self._span_attributes(documents=len(data))) as span:
            try:
                written = self._storage.write(
                    self.client,
                    data,
                    id_field=id_field,
                    keys=keys,
                    ttl=ttl,
                    preprocess=preprocess,
                    batch_size=batch_size,
                    validate=self._validate_on_load,
                )
            except RedisError as exc:
                raise self._server_error("LOAD", exc) from exc
            span.set_attribute("search_index.loaded", len(written))
        logger.info("Loaded %d documents into index %s", len(written), self.name)
        return written

    def add_document(self, doc_id: str, document: Mapping[str, Any]) -> str:
        """Write a single document under ``doc_id``; an existing key is replaced."""
        return self.load([document], keys=[self.key(doc_id)])[0]

    def _resolve_key(self, id_or_key: str) -> str:
        prefix = self.prefix
        if prefix:
            separator = self.key_separator
            if separator and prefix.endswith(separator):
                prefix = prefix[: -len(separator)]
            if id_or_key.startswith(f"{prefix}{separator}"):
                return id_or_key
        return self.key(id_or_key)

    def fetch(self, id_or_key: str) -> dict[str, Any] | None:
        """Fetch one document by id or full key; ``None`` when it does not exist."""
        key = self._resolve_key(id_or_key)
        try:
            return self._storage.get(self.client, [key])[0]
        except RedisError as exc:
            raise self._server_error("FETCH", exc) from exc

    def drop_keys(self, keys: str | Iterable[str]) -> int:
        """Delete documents by full key and return how many were removed."""
        key_list = [keys] if isinstance(keys, str) else list(keys)
        if not key_list:
            return 0
        try:
            return int(self.client.delete(*key_list))
        except RedisError as exc:
            raise self._server_error("DEL", exc) from exc

    def drop_documents(self, ids: str | Iterable[str]) -> int:
        """Delete documents by id and return how many were removed."""
        id_list = [ids] if isinstance(ids, str) else list(ids)
        return self.drop_keys([self.key(doc_id) for doc_id in id_list])

    def delete_document(self, doc_id: str) -> bool:
        return self.drop_documents(doc_id) == 1

    def expire_keys(self, keys: str | Sequence[str], ttl: int) -> int | list[int]:
        """Set a time-to-live on keys.

        Returns:
            For one key, 1 when the TTL was set and 0 when the key does not
            exist. For a list, one such status per key in input order.
        """
        if ttl is None or ttl <= 0:
            msg = f"ttl must be a positive number of seconds, got {ttl}"
            raise ValidationError(msg)
        try:
            if isinstance(keys, str):
                return int(bool(self.client.expire(keys, ttl)))
            if not keys:
                return []
            with self.client.pipeline(transaction=False) as pipe:
                for key in keys:
                    pipe.expire(key, ttl)
                replies = pipe.execute()
        except RedisError as exc:
            raise self._server_error("EXPIRE", exc) from exc
        return [int(bool(reply)) for reply in replies]

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------
    def search(self, query: str, *args: Any) -> SearchResult:
        """Run a raw ``FT.SEARCH`` query string with optional extra arguments.

        Without extra arguments the query runs with ``DIALECT 2``.
        """
        search_args = list(args) if args else ["DIALECT", str(DEFAULT_DIALECT)]
        with create_span("search_index.search", attributes=self._span_attributes(query=query[:100])) as span:
            reply = self._execute("FT.SEARCH", self.name, query, *search_args)
            result = parse_search_reply(
                reply,
                binary_fields=self._binary_fields(),
                nocontent=_has_flag(search_args, "NOCONTENT"),
                with_scores=_has_flag(search_args, "WITHSCORES"),
            )
            span.set_attribute("search_index.result_count", len(result))
        return result

    def query(self, query: QueryInput) -> list[dict[str, Any]] | int:
        """Run a filter, text, vector or count query.

        Returns:
            Result documents in server order, or the match count for a
            ``CountQuery``

        Raises:
            QueryValidationError: The query does not fit the schema (unknown
                or mistyped field, dimension mismatch, a runtime parameter the
                field's algorithm does not accept)
            NotFoundError: The index does not exist
        """
        prepared = self._prepare_query(query)
        with create_span(
            "search_index.query",
            attributes=self._span_attributes(query_type=type(prepared).__name__),
        ) as span:
            reply = self._execute("FT.SEARCH", self.name, *prepared.search_args())
            processed = self._process_reply(prepared, reply)
            if isinstance(processed, list):
                span.set_attribute("search_index.result_count", len(processed))
        return processed

    def count(self, filter_expression: Filter | str | None = None) -> int:
        """Count documents matching ``filter_expression`` (all documents by default)."""
        return self.query(CountQuery(filter_expression))

    def batch_search(
        self,
        queries: Sequence[str | Sequence[Any]],
        batch_size: int | None = None,
    ) -> list[SearchResult]:
        """Run raw queries in pipelined chunks; one result per query, in order.

        Each item is a query string or a ``(query, *args)`` sequence.
        """
        if not queries:
            return []
        batch_size = self._batch_size(batch_size)
        commands = []
        for item in queries:
            if isinstance(item, str):
                commands.append([item, "DIALECT", str(DEFAULT_DIALECT)])
            else:
                commands.append(list(item))

        results: list[SearchResult] = []
        with create_span(
            "search_index.batch_search", attributes=self._span_attributes(queries=len(queries), batch_size=batch_size)
        ):
            for replies, chunk in self._run_batches(commands, batch_size):
                for reply, args in zip(replies, chunk, strict=True):
                    results.append(
                        parse_search_reply(
                            reply, binary_fields=self._binary_fields(), nocontent=_has_flag(args, "NOCONTENT")
                        )
                    )
        return results

    def batch_query(
        self,
        queries: Sequence[QueryInput],
        batch_size: int | None = None,
    ) -> list[list[dict[str, Any]] | int]:
        """Run query objects in pipelined chunks; one result per query, in order.

        Every query is validated before the first request is sent.
        """
        if not queries:
            return []
        batch_size = self._batch_size(batch_size)
        prepared = [self._prepare_query(query) for query in queries]
        commands = [query.search_args() for query in prepared]

        results: list[list[dict[str, Any]] | int] = []
        with create_span(
            "search_index.batch_query", attributes=self._span_attributes(queries=len(queries), batch_size=batch_size)
        ):
            offset = 0
            for replies, _chunk in self._run_batches(commands, batch_size):
                for reply in replies:
                    results.append(self._process_reply(prepared[offset], reply))
                    offset += 1
        return results

    def paginate(self, query: QueryInput, page_size: int | None = None) -> Generator[list[dict[str, Any]], None, None]:
        """Yield result pages of at most ``page_size`` documents.

        Pages are fetched one request at a time with an advancing offset and
        the sequence ends after a short or empty page. Stop iterating to
        cancel; nothing is prefetched.
        """
        page_size = self._settings.page_size if page_size is None else page_size
        if isinstance(page_size, bool) or not isinstance(page_size, int) or page_size <= 0:
            msg = f"page_size must be a positive integer, got {page_size!r}"
            raise QueryValidationError(msg)
        prepared = self._prepare_query(query)
        if isinstance(prepared, CountQuery):
            msg = "CountQuery results cannot be paginated"
            raise UnsupportedOperationError(msg)
        return self._paginate(prepared, page_size)

    def _paginate(self, query: BaseQuery, page_size: int) -> Generator[list[dict[str, Any]], None, None]:
        offset = 0
        while True:
            page = self.query(query.paging(offset, page_size))
            if not page:
                return
            yield page
            if len(page) < page_size:
                return
            offset += page_size

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _batch_size(self, batch_size: int | None) -> int:
        batch_size = self._settings.query_batch_size if batch_size is None else batch_size
        if isinstance(batch_size, bool) or not isinstance(batch_size, int) or batch_size <= 0:
            msg = f"batch_size must be a positive integer, got {batch_size!r}"
            raise QueryValidationError(msg)
        return batch_size

    def _run_batches(
        self, commands: list[list[Any]], batch_size: int
    ) -> Generator[tuple[list[Any], list[list[Any]]], None, None]:
        for start in range(0, len(commands), batch_size):
            chunk = commands[start : start + batch_size]
            try:
                with self.client.pipeline(transaction=False) as pipe:
                    for args in chunk:
                        pipe.execute_command("FT.SEARCH", self.name, *args)
                    replies = pipe.execute()
            except RedisError as exc:
                raise self._server_error("FT.SEARCH", exc) from exc
            logger.debug("Executed %d queries against %s", len(chunk), self.name)
            yield replies, chunk

    def _binary_fields(self) -> set[str]:
        if self.storage_type is not StorageType.HASH:
            return set()
        names: set[str] = set()
        for field in self._schema.vector_fields:
            names.update({field.name, field.query_name})
        return names

    def _prepare_query(self, query: QueryInput) -> BaseQuery:
        """Validate a query against the schema before anything is sent."""
        if isinstance(query, Filter):
            return FilterQuery(query)
        if not isinstance(query, BaseQuery):
            msg = f"Unsupported query type: {type(query).__name__}"
            raise QueryValidationError(msg)
        if isinstance(query, TextQuery):
            return self._prepare_text_query(query)
        if not isinstance(query, BaseVectorQuery):
            return query

        field = self._schema.resolve_field(query.vector_field_name)
        if field is None:
            msg = f"Vector field '{query.vector_field_name}' not found in index '{self.name}'"
            raise QueryValidationError(msg)
        if not isinstance(field, VectorField):
            msg = f"Field '{query.vector_field_name}' is a {field.field_type.value} field, not a vector field"
            raise QueryValidationError(msg)
        if isinstance(query, VectorQuery) and query.ef_runtime is not None and field.algorithm is not VectorAlgorithm.HNSW:
            msg = f"EF_RUNTIME is only valid for HNSW algorithm, not {field.algorithm.value}"
            raise QueryValidationError(msg)
        if isinstance(query, VectorRangeQuery) and query.epsilon is not None and field.algorithm is VectorAlgorithm.FLAT:
            msg = f"EPSILON is not valid for the FLAT algorithm used by field '{field.name}'"
            raise QueryValidationError(msg)

        prepared = copy.copy(query)
        if not isinstance(query.vector, (bytes, bytearray)):
            prepared.set_dtype(field.datatype.value)
        if prepared.vector_dims != field.dims:
            msg = (
                f"Query vector has {prepared.vector_dims} dimensions, "
                f"but field '{field.name}' expects {field.dims}"
            )
            raise QueryValidationError(msg)
        prepared.vector_field_name = field.query_name
        return prepared

    def _prepare_text_query(self, query: TextQuery) -> TextQuery:
        weights: dict[str, float] = {}
        for name, weight in query.field_weights.items():
            field = self._schema.resolve_field(name)
            if field is None:
                msg = f"Text field '{name}' not found in index '{self.name}'"
                raise QueryValidationError(msg)
            if not isinstance(field, TextField):
                msg = f"Field '{name}' is a {field.field_type.value} field, not a text field"
                raise QueryValidationError(msg)
            weights[field.query_name] = weight
        prepared = copy.copy(query)
        prepared.set_field_weights(weights)
        return prepared

    def _process_reply(self, query: BaseQuery, reply: Any) -> list[dict[str, Any]] | int:
        if isinstance(query, CountQuery):
            return parse_search_reply(reply, nocontent=True).total
        with_scores = isinstance(query, TextQuery) and query.return_score
        docs = parse_search_reply(reply, binary_fields=self._binary_fields(), with_scores=with_scores).docs
        if isinstance(query, BaseVectorQuery) and query.normalize_vector_distance:
            field = self._schema.resolve_field(query.vector_field_name)
            if isinstance(field, VectorField):
                for doc in docs:
                    if isinstance(doc.get(DISTANCE_ID), float):
                        doc[DISTANCE_ID] = normalize_distance(doc[DISTANCE_ID], field.distance_metric)
        return docs


def _has_flag(args: Sequence[Any], flag: str) -> bool:
    return any(isinstance(arg, str) and arg.upper() == flag for arg in args)
