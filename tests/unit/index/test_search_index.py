"""Unit tests for the SearchIndex runtime against an in-memory Redis double."""

from unittest.mock import MagicMock, patch

import numpy as np
import pytest
from redis.exceptions import ConnectionError as RedisConnectionError, ResponseError

from redisearch_kit.exceptions import (
    DocumentValidationError,
    NotFoundError,
    QueryValidationError,
    SchemaValidationError,
    ServerError,
    UnsupportedOperationError,
    ValidationError,
)
from redisearch_kit.index.search_index import SearchIndex
from redisearch_kit.query.filter import Filter
from redisearch_kit.query.filter_query import CountQuery, FilterQuery
from redisearch_kit.query.text import TextQuery
from redisearch_kit.query.vector import VectorQuery, VectorRangeQuery
from redisearch_kit.schema.fields import NumericField, TagField, TextField, VectorField
from redisearch_kit.schema.index_schema import IndexInfo, IndexSchema


pytestmark = pytest.mark.unit


def _schema(**index_kwargs):
    return IndexSchema(
        IndexInfo(name="movies", prefix="movie", **index_kwargs),
        [
            TextField("title"),
            TagField("genre"),
            NumericField("year", sortable=True),
            VectorField("embedding", dims=3, algorithm="HNSW", datatype="FLOAT16"),
            VectorField("thumb", dims=2),
        ],
    )


@pytest.fixture
def index(fake_redis):
    return SearchIndex(_schema(), redis_client=fake_redis)


def _limit(args):
    position = args.index("LIMIT")
    return int(args[position + 1]), int(args[position + 2])


def _params(args):
    position = args.index("PARAMS")
    values = args[position + 2 : position + 2 + int(args[position + 1])]
    return dict(zip(values[::2], values[1::2]))


def _paged_reply(total):
    def _reply(*args):
        offset, num = _limit(args)
        ids = range(offset, min(offset + num, total))
        reply = [total]
        for doc_id in ids:
            reply.extend([f"movie:{doc_id}".encode(), [b"title", f"t{doc_id}".encode()]])
        return reply

    return _reply


class TestLifecycle:
    def test_create_sends_ft_create(self, index, fake_redis):
        fake_redis.responses["FT._LIST"] = []
        index.create()
        create = fake_redis.commands_named("FT.CREATE")[0]
        assert create[:7] == ("FT.CREATE", "movies", "ON", "HASH", "PREFIX", "1", "movie")
        assert "SCHEMA" in create

    def test_create_existing_without_overwrite(self, index, fake_redis):
        fake_redis.responses["FT._LIST"] = [b"movies"]
        with pytest.raises(ValidationError, match="already exists"):
            index.create()
        assert fake_redis.commands_named("FT.CREATE") == []

    def test_create_with_overwrite_drops_first(self, index, fake_redis):
        fake_redis.responses["FT._LIST"] = [b"movies"]
        index.create(overwrite=True)
        names = [command[0] for command in fake_redis.commands]
        assert names == ["FT._LIST", "FT.DROPINDEX", "FT.CREATE"]
        assert fake_redis.commands_named("FT.DROPINDEX")[0] == ("FT.DROPINDEX", "movies")

    def test_create_with_overwrite_and_drop(self, index, fake_redis):
        fake_redis.responses["FT._LIST"] = [b"movies"]
        index.create(overwrite=True, drop=True)
        assert fake_redis.commands_named("FT.DROPINDEX")[0] == ("FT.DROPINDEX", "movies", "DD")

    def test_create_without_fields(self, fake_redis):
        empty = SearchIndex(IndexSchema(IndexInfo(name="empty")), redis_client=fake_redis)
        with pytest.raises(SchemaValidationError, match="No fields"):
            empty.create()

    def test_delete_drops_documents_by_default(self, index, fake_redis):
        index.delete()
        assert fake_redis.commands == [("FT.DROPINDEX", "movies", "DD")]

    def test_delete_missing_index(self, index, fake_redis):
        fake_redis.responses["FT.DROPINDEX"] = ResponseError("Unknown index name")
        with pytest.raises(NotFoundError):
            index.delete()
        index.delete(ignore_missing=True)

    def test_exists_and_listall(self, index, fake_redis):
        fake_redis.responses["FT._LIST"] = [b"movies", b"other"]
        assert index.exists() is True
        assert index.listall() == ["movies", "other"]

    def test_info_missing_index(self, index, fake_redis):
        fake_redis.responses["FT.INFO"] = ResponseError("movies: no such index")
        with pytest.raises(NotFoundError):
            index.info()

    def test_server_errors_are_wrapped(self, index, fake_redis):
        fake_redis.responses["FT.SEARCH"] = ResponseError("Syntax error at offset 3")
        with pytest.raises(ServerError) as exc_info:
            index.search("@title:(")
        assert exc_info.value.command == "FT.SEARCH"
        assert exc_info.value.index_name == "movies"
        assert isinstance(exc_info.value.__cause__, ResponseError)

    def test_other_response_errors_are_not_reported_as_missing_index(self, index, fake_redis):
        fake_redis.responses["FT.SEARCH"] = ResponseError("Document not found in the index")
        with pytest.raises(ServerError) as exc_info:
            index.search("*")
        assert not isinstance(exc_info.value, NotFoundError)

    def test_info_errors_carry_command_and_index(self, index, fake_redis):
        fake_redis.responses["FT.INFO"] = ResponseError("wrong number of arguments")
        with pytest.raises(ServerError) as exc_info:
            index.info()
        assert exc_info.value.command == "FT.INFO"
        assert exc_info.value.index_name == "movies"
        assert isinstance(exc_info.value.__cause__, ResponseError)

    def test_connection_errors_are_wrapped(self, index, fake_redis):
        fake_redis.responses["FT.SEARCH"] = RedisConnectionError("Connection refused")
        with pytest.raises(ServerError) as exc_info:
            index.search("*")
        assert exc_info.value.index_name == "movies"

    def test_from_existing(self, fake_redis):
        fake_redis.responses["FT.INFO"] = [
            b"index_name",
            b"movies",
            b"index_definition",
            [b"key_type", b"JSON", b"prefixes", [b"movie"]],
            b"attributes",
            [[b"identifier", b"$.title", b"attribute", b"title", b"type", b"TEXT", b"WEIGHT", b"2"]],
        ]
        index = SearchIndex.from_existing("movies", redis_client=fake_redis)
        assert index.storage_type.value == "json"
        field = index.schema.resolve_field("title")
        assert field.wire_name == "$.title"
        assert field.weight == 2.0

    def test_schema_property_is_a_copy(self, index):
        index.schema.remove_field("title")
        assert "title" in index.schema

    def test_lazy_client_is_closed_on_exit(self):
        client = MagicMock()
        with patch("redisearch_kit.index.search_index.get_redis_connection", return_value=client) as connect:
            with SearchIndex(_schema(), redis_url="redis://cache:6379") as index:
                assert index.client is client
        connect.assert_called_once_with("redis://cache:6379")
        client.close.assert_called_once()

    def test_injected_client_is_not_closed(self):
        client = MagicMock()
        with SearchIndex(_schema(), redis_client=client):
            pass
        client.close.assert_not_called()


class TestDocuments:
    def test_load_and_fetch(self, index):
        keys = index.load(
            [{"id": "1", "title": "Heat", "year": 1995}, {"id": "2", "title": "Up", "year": 2009}],
            id_field="id",
        )
        assert keys == ["movie:1", "movie:2"]
        assert index.fetch("1")["title"] == "Heat"
        assert index.fetch("movie:2")["title"] == "Up"
        assert index.fetch("3") is None

    def test_load_rejects_invalid_documents(self, index, fake_redis):
        with pytest.raises(DocumentValidationError, match="Field expects a number"):
            index.load([{"id": "1", "year": "1995"}], id_field="id")
        assert fake_redis.hashes == {}

    def test_load_without_validation(self, fake_redis):
        index = SearchIndex(_schema(), redis_client=fake_redis, validate_on_load=False)
        index.load([{"id": "1", "year": "1995"}], id_field="id")
        assert fake_redis.hashes["movie:1"][b"year"] == b"1995"

    def test_load_with_ttl(self, index, fake_redis):
        index.load([{"id": "1", "title": "Heat"}], id_field="id", ttl=30)
        assert fake_redis.ttls == {"movie:1": 30}

    def test_add_and_delete_document(self, index, fake_redis):
        assert index.add_document("7", {"title": "Heat"}) == "movie:7"
        assert index.delete_document("7") is True
        assert index.delete_document("7") is False

    def test_drop_keys(self, index, fake_redis):
        index.load([{"id": "1"}, {"id": "2"}], id_field="id")
        assert index.drop_keys([]) == 0
        assert fake_redis.commands_named("DEL") == []
        assert index.drop_keys("movie:1") == 1
        assert index.drop_documents(["2", "3"]) == 1

    def test_expire_keys(self, index):
        index.load([{"id": "1"}], id_field="id")
        assert index.expire_keys("movie:1", 10) == 1
        assert index.expire_keys("movie:9", 10) == 0
        assert index.expire_keys(["movie:1", "movie:9"], 10) == [1, 0]

    def test_clear_deletes_in_batches(self, index, fake_redis):
        index.load([{"id": str(i)} for i in range(3)], id_field="id")

        def _nocontent(*args):
            assert "NOCONTENT" in args
            _, num = _limit(args)
            keys = sorted(fake_redis.hashes)[:num]
            return [len(fake_redis.hashes), *[key.encode() for key in keys]]

        fake_redis.responses["FT.SEARCH"] = _nocontent
        assert index.clear(batch_size=2) == 3
        assert fake_redis.hashes == {}


class TestQueries:
    def test_filter_query(self, index, fake_redis):
        fake_redis.responses["FT.SEARCH"] = [1, b"movie:1", [b"title", b"Heat"]]
        results = index.query(FilterQuery(Filter.tag("genre", "crime"), return_fields=["title"]))
        assert results == [{"id": "movie:1", "title": "Heat"}]
        command = fake_redis.commands_named("FT.SEARCH")[0]
        assert command[:3] == ("FT.SEARCH", "movies", "@genre:{crime}")

    def test_bare_filter_is_wrapped(self, index, fake_redis):
        fake_redis.responses["FT.SEARCH"] = [0]
        assert index.query(Filter.numeric("year").gt(2000)) == []
        assert fake_redis.commands_named("FT.SEARCH")[0][2] == "@year:[(2000 +inf]"

    def test_count(self, index, fake_redis):
        fake_redis.responses["FT.SEARCH"] = [42]
        assert index.count(Filter.tag("genre", "crime")) == 42
        command = fake_redis.commands_named("FT.SEARCH")[0]
        assert command[3:7] == ("NOCONTENT", "LIMIT", "0", "0")

    def test_raw_search(self, index, fake_redis):
        fake_redis.responses["FT.SEARCH"] = [1, b"movie:1", [b"title", b"Heat"]]
        result = index.search("@title:heat")
        assert result.total == 1
        assert fake_redis.commands_named("FT.SEARCH")[0] == ("FT.SEARCH", "movies", "@title:heat", "DIALECT", "2")

    def test_vector_query_uses_field_datatype(self, index, fake_redis):
        fake_redis.responses["FT.SEARCH"] = [1, b"movie:1", [b"vector_distance", b"0.5"]]
        query = VectorQuery([1.0, 2.0, 3.0], "embedding", num_results=2)

        results = index.query(query)

        assert results == [{"id": "movie:1", "vector_distance": 0.5}]
        params = _params(fake_redis.commands_named("FT.SEARCH")[0])
        assert params["vec"] == np.array([1.0, 2.0, 3.0], dtype="<f2").tobytes()
        assert query.dtype == "float32"

    def test_vector_distance_normalization(self, index, fake_redis):
        fake_redis.responses["FT.SEARCH"] = [1, b"movie:1", [b"vector_distance", b"0.5"]]
        query = VectorQuery([1.0, 2.0, 3.0], "embedding", normalize_vector_distance=True)
        assert index.query(query)[0]["vector_distance"] == 0.75

    def test_vector_query_unknown_field(self, index):
        with pytest.raises(QueryValidationError, match="not found"):
            index.query(VectorQuery([1.0], "missing"))

    def test_vector_query_on_non_vector_field(self, index):
        with pytest.raises(QueryValidationError, match="not a vector field"):
            index.query(VectorQuery([1.0], "title"))

    def test_vector_dimension_mismatch(self, index, fake_redis):
        with pytest.raises(QueryValidationError, match="Query vector has 2 dimensions"):
            index.query(VectorQuery([1.0, 2.0], "embedding"))
        assert fake_redis.commands == []

    def test_ef_runtime_requires_hnsw(self, index):
        with pytest.raises(QueryValidationError, match="EF_RUNTIME is only valid for HNSW algorithm, not FLAT"):
            index.query(VectorQuery([1.0, 2.0], "thumb", ef_runtime=10))

    def test_epsilon_is_rejected_for_flat_fields(self, index, fake_redis):
        with pytest.raises(QueryValidationError, match="EPSILON is not valid for the FLAT algorithm used by field 'thumb'"):
            index.query(VectorRangeQuery([1.0, 2.0], "thumb", epsilon=0.01))
        assert fake_redis.commands == []

    def test_epsilon_is_sent_for_hnsw_fields(self, index, fake_redis):
        fake_redis.responses["FT.SEARCH"] = [0]
        index.query(VectorRangeQuery([1.0, 2.0, 3.0], "embedding", epsilon=0.01))
        assert "$EPSILON: 0.01" in fake_redis.commands_named("FT.SEARCH")[0][2]

    def test_text_query_returns_scores(self, index, fake_redis):
        fake_redis.responses["FT.SEARCH"] = [1, b"movie:1", b"1.5", [b"title", b"Heat"]]
        results = index.query(TextQuery("heat", "title"))
        assert results == [{"id": "movie:1", "score": 1.5, "title": "Heat"}]
        command = fake_redis.commands_named("FT.SEARCH")[0]
        assert command[2:6] == ("@title:(heat)", "WITHSCORES", "SCORER", "BM25STD")

    def test_text_query_without_scores(self, index, fake_redis):
        fake_redis.responses["FT.SEARCH"] = [1, b"movie:1", [b"title", b"Heat"]]
        assert index.query(TextQuery("heat", "title", return_score=False)) == [{"id": "movie:1", "title": "Heat"}]

    def test_text_query_resolves_field_names(self, fake_redis):
        schema = IndexSchema(
            IndexInfo(name="docs", prefix="doc", storage_type="json"),
            [TextField("title"), TextField("plot", alias="summary")],
        )
        index = SearchIndex(schema, redis_client=fake_redis)
        fake_redis.responses["FT.SEARCH"] = [0]
        query = TextQuery("heat", {"title": 2.0, "plot": 1.0})
        index.query(query)
        sent = fake_redis.commands_named("FT.SEARCH")[0][2]
        assert sent == "(@\\$\\.title:(heat)=>{$weight: 2} | @summary:(heat))"
        assert query.field_weights == {"title": 2.0, "plot": 1.0}

    def test_text_query_unknown_field(self, index):
        with pytest.raises(QueryValidationError, match="Text field 'missing' not found in index 'movies'"):
            index.query(TextQuery("heat", "missing"))

    def test_text_query_on_non_text_field(self, index):
        with pytest.raises(QueryValidationError, match="is a tag field, not a text field"):
            index.query(TextQuery("heat", "genre"))

    def test_range_query(self, index, fake_redis):
        fake_redis.responses["FT.SEARCH"] = [0]
        index.query(VectorRangeQuery([1.0, 2.0], "thumb", distance_threshold=0.3))
        command = fake_redis.commands_named("FT.SEARCH")[0]
        assert command[2].startswith("@thumb:[VECTOR_RANGE $distance_threshold $vec]")

    def test_json_vector_field_is_queried_by_path(self, fake_redis):
        schema = IndexSchema(
            IndexInfo(name="docs", prefix="doc", storage_type="json"),
            [VectorField("embedding", dims=2)],
        )
        index = SearchIndex(schema, redis_client=fake_redis)
        fake_redis.responses["FT.SEARCH"] = [0]
        index.query(VectorQuery([1.0, 2.0], "embedding"))
        assert "@\\$\\.embedding $vec" in fake_redis.commands_named("FT.SEARCH")[0][2]


class TestBatchingAndPaging:
    def test_batch_search_preserves_order(self, index, fake_redis):
        def _echo(*args):
            return [1, args[2].encode(), [b"title", args[2].encode()]]

        fake_redis.responses["FT.SEARCH"] = _echo
        results = index.batch_search(["a", "b", ("c", "LIMIT", "0", "1")], batch_size=2)

        assert [result.docs[0]["title"] for result in results] == ["a", "b", "c"]
        assert [len(batch) for batch in fake_redis.pipelines] == [2, 1]

    def test_batch_search_empty(self, index, fake_redis):
        assert index.batch_search([]) == []
        assert fake_redis.pipelines == []

    def test_batch_query_validates_before_sending(self, index, fake_redis):
        queries = [FilterQuery(), VectorQuery([1.0], "embedding")]
        with pytest.raises(QueryValidationError):
            index.batch_query(queries)
        assert fake_redis.pipelines == []

    def test_batch_query_mixes_counts_and_documents(self, index, fake_redis):
        fake_redis.responses["FT.SEARCH"] = [1, b"movie:1", [b"title", b"Heat"]]
        results = index.batch_query([FilterQuery(), CountQuery()])
        assert results == [[{"id": "movie:1", "title": "Heat"}], 1]

    def test_paginate_stops_after_short_page(self, index, fake_redis):
        fake_redis.responses["FT.SEARCH"] = _paged_reply(5)
        pages = list(index.paginate(FilterQuery(), page_size=2))
        assert [len(page) for page in pages] == [2, 2, 1]
        assert [_limit(command) for command in fake_redis.commands_named("FT.SEARCH")] == [(0, 2), (2, 2), (4, 2)]

    def test_paginate_stops_on_empty_page(self, index, fake_redis):
        fake_redis.responses["FT.SEARCH"] = _paged_reply(4)
        pages = list(index.paginate(FilterQuery(), page_size=2))
        assert [len(page) for page in pages] == [2, 2]
        assert len(fake_redis.commands_named("FT.SEARCH")) == 3

    def test_paginate_is_lazy(self, index, fake_redis):
        fake_redis.responses["FT.SEARCH"] = _paged_reply(10)
        pages = index.paginate(FilterQuery(), page_size=3)
        assert fake_redis.commands == []
        next(pages)
        assert len(fake_redis.commands) == 1

    def test_count_query_cannot_be_paginated(self, index):
        with pytest.raises(UnsupportedOperationError):
            index.paginate(CountQuery())

    def test_page_size_must_be_positive(self, index):
        with pytest.raises(QueryValidationError, match="page_size must be a positive integer"):
            index.paginate(FilterQuery(), page_size=0)
