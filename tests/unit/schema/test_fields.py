"""Unit tests for field definitions and their FT.CREATE rendering."""

import itertools

import pytest

from redisearch_kit.exceptions import SchemaValidationError
from redisearch_kit.schema.fields import (
    BaseField,
    CompressionType,
    DistanceMetric,
    FieldType,
    GeoField,
    NumericField,
    TagField,
    TextField,
    VectorAlgorithm,
    VectorDataType,
    VectorField,
    coerce_enum,
    json_path_for,
)


pytestmark = pytest.mark.unit


class TestFieldType:
    def test_parse_accepts_any_case(self):
        assert FieldType.parse("TEXT") is FieldType.TEXT
        assert FieldType.parse(" vector ") is FieldType.VECTOR

    def test_parse_rejects_unknown_token(self):
        with pytest.raises(SchemaValidationError, match="Unknown field type: blob"):
            FieldType.parse("blob")

    def test_wire_token_is_uppercase(self):
        assert FieldType.NUMERIC.wire_token == "NUMERIC"


class TestTextField:
    def test_minimal_text_field(self):
        assert TextField("title").to_wire_schema() == ["title", "TEXT"]

    def test_blank_name_is_rejected(self):
        with pytest.raises(SchemaValidationError, match="Field name cannot be null or empty"):
            TextField("  ")

    def test_modifiers_follow_canonical_order(self):
        field = TextField(
            "body",
            sortable=True,
            unf=True,
            indexed=False,
            no_stem=True,
            weight=2.5,
            phonetic="dm:en",
            index_missing=True,
            index_empty=True,
            withsuffixtrie=True,
        )
        assert field.to_wire_schema() == [
            "body",
            "TEXT",
            "INDEXEMPTY",
            "INDEXMISSING",
            "SORTABLE",
            "UNF",
            "NOINDEX",
            "NOSTEM",
            "WEIGHT",
            "2.5",
            "PHONETIC",
            "dm:en",
            "WITHSUFFIXTRIE",
        ]

    def test_unf_without_sortable_is_dropped(self):
        assert TextField("title", unf=True).to_wire_schema() == ["title", "TEXT"]

    def test_default_weight_is_not_emitted(self):
        assert "WEIGHT" not in TextField("title", weight=1).to_wire_schema()

    def test_integral_weight_renders_without_fraction(self):
        assert TextField("title", weight=2.0).to_wire_schema()[-2:] == ["WEIGHT", "2"]

    def test_weight_must_be_positive(self):
        with pytest.raises(SchemaValidationError, match="weight must be positive"):
            TextField("title", weight=0)

    def test_alias_renders_as_clause(self):
        assert TextField("title", alias="t").to_wire_schema() == ["title", "AS", "t", "TEXT"]


class TestTagField:
    def test_modifiers_follow_canonical_order(self):
        field = TagField(
            "genre",
            separator="|",
            case_sensitive=True,
            sortable=True,
            indexed=False,
            index_missing=True,
            index_empty=True,
            withsuffixtrie=True,
        )
        assert field.to_wire_schema() == [
            "genre",
            "TAG",
            "INDEXEMPTY",
            "INDEXMISSING",
            "SORTABLE",
            "NOINDEX",
            "SEPARATOR",
            "|",
            "CASESENSITIVE",
            "WITHSUFFIXTRIE",
        ]

    def test_default_separator_is_not_emitted(self):
        assert TagField("genre").to_wire_schema() == ["genre", "TAG"]

    def test_empty_separator_falls_back_to_comma(self):
        assert TagField("genre", separator="").separator == ","


class TestNumericAndGeoFields:
    def test_numeric_modifiers(self):
        field = NumericField("year", sortable=True, unf=True, indexed=False, index_missing=True)
        assert field.to_wire_schema() == ["year", "NUMERIC", "INDEXMISSING", "SORTABLE", "UNF", "NOINDEX"]

    def test_geo_modifiers(self):
        field = GeoField("location", sortable=True, index_missing=True)
        assert field.to_wire_schema() == ["location", "GEO", "INDEXMISSING", "SORTABLE"]


class TestModifierCombinations:
    """Every combination of optional modifiers keeps the canonical order."""

    CASES = {
        TextField: (
            ("INDEXEMPTY", "INDEXMISSING", "SORTABLE", "UNF", "NOINDEX", "NOSTEM", "WEIGHT", "PHONETIC", "WITHSUFFIXTRIE"),
            {
                "index_empty": (False, True),
                "index_missing": (False, True),
                "sortable": (False, True),
                "unf": (False, True),
                "indexed": (True, False),
                "no_stem": (False, True),
                "weight": (1.0, 2.5),
                "phonetic": (None, "dm:en"),
                "withsuffixtrie": (False, True),
            },
        ),
        TagField: (
            ("INDEXEMPTY", "INDEXMISSING", "SORTABLE", "NOINDEX", "SEPARATOR", "CASESENSITIVE", "WITHSUFFIXTRIE"),
            {
                "index_empty": (False, True),
                "index_missing": (False, True),
                "sortable": (False, True),
                "indexed": (True, False),
                "separator": (",", "|"),
                "case_sensitive": (False, True),
                "withsuffixtrie": (False, True),
            },
        ),
        NumericField: (
            ("INDEXMISSING", "SORTABLE", "UNF", "NOINDEX"),
            {
                "index_missing": (False, True),
                "sortable": (False, True),
                "unf": (False, True),
                "indexed": (True, False),
            },
        ),
        GeoField: (
            ("INDEXMISSING", "SORTABLE", "NOINDEX"),
            {
                "index_missing": (False, True),
                "sortable": (False, True),
                "indexed": (True, False),
            },
        ),
    }

    @pytest.mark.parametrize("field_cls", list(CASES), ids=lambda cls: cls.__name__)
    def test_modifiers_are_a_subsequence_of_canonical_order(self, field_cls):
        canonical, choices = self.CASES[field_cls]
        for values in itertools.product(*choices.values()):
            options = dict(zip(choices, values))
            tokens = field_cls("f", **options).to_wire_schema()[2:]
            keywords = [token for token in tokens if token in canonical]
            positions = [canonical.index(token) for token in keywords]
            assert positions == sorted(set(positions)), options
            assert ("UNF" in keywords) == bool(options.get("unf") and options["sortable"]), options
            assert ("NOINDEX" in keywords) == (not options["indexed"]), options


class TestVectorField:
    def test_flat_vector_with_defaults(self):
        field = VectorField("embedding", dims=3)
        assert field.to_wire_schema() == [
            "embedding",
            "VECTOR",
            "FLAT",
            "6",
            "TYPE",
            "FLOAT32",
            "DIM",
            "3",
            "DISTANCE_METRIC",
            "COSINE",
        ]

    def test_hnsw_parameters_are_counted(self):
        field = VectorField(
            "embedding",
            dims=768,
            algorithm="hnsw",
            distance_metric="l2",
            m=16,
            ef_construction=200,
            ef_runtime=10,
        )
        tokens = field.to_wire_schema()
        assert tokens[2:4] == ["HNSW", "12"]
        assert tokens[4:] == [
            "TYPE",
            "FLOAT32",
            "DIM",
            "768",
            "DISTANCE_METRIC",
            "L2",
            "M",
            "16",
            "EF_CONSTRUCTION",
            "200",
            "EF_RUNTIME",
            "10",
        ]

    def test_svs_vamana_with_leanvec_reduce(self):
        field = VectorField(
            "embedding",
            dims=1024,
            algorithm="SVS-VAMANA",
            datatype="float16",
            compression="LeanVec4x8",
            reduce=256,
            graph_max_degree=40,
        )
        tokens = field.to_wire_schema()
        assert tokens[2:4] == ["SVS-VAMANA", "12"]
        assert ["COMPRESSION", "LeanVec4x8"] == tokens[10:12]
        assert ["REDUCE", "256"] == tokens[12:14]
        assert field.compression is CompressionType.LeanVec4x8

    def test_dims_are_required(self):
        with pytest.raises(SchemaValidationError, match="dims must be a positive integer"):
            VectorField("embedding")

    def test_svs_rejects_unsupported_datatype(self):
        with pytest.raises(SchemaValidationError, match="SVS-VAMANA only supports FLOAT16 and FLOAT32"):
            VectorField("embedding", dims=8, algorithm="SVS-VAMANA", datatype="INT8")

    def test_reduce_requires_compression(self):
        with pytest.raises(SchemaValidationError, match="reduce requires compression"):
            VectorField("embedding", dims=8, algorithm="SVS-VAMANA", reduce=4)

    def test_reduce_requires_leanvec_compression(self):
        with pytest.raises(SchemaValidationError, match="only supported with LeanVec"):
            VectorField("embedding", dims=8, algorithm="SVS-VAMANA", compression="LVQ8", reduce=4)

    def test_reduce_must_be_below_dims(self):
        with pytest.raises(SchemaValidationError, match="must be less than dims"):
            VectorField("embedding", dims=8, algorithm="SVS-VAMANA", compression="LeanVec8x8", reduce=8)

    def test_parameters_of_other_algorithms_are_rejected(self):
        with pytest.raises(SchemaValidationError, match="'m' is not valid for the FLAT algorithm"):
            VectorField("embedding", dims=8, m=16)

    def test_vector_cannot_be_sortable(self):
        with pytest.raises(SchemaValidationError, match="cannot be sortable"):
            VectorField("embedding", dims=8, sortable=True)

    def test_unknown_metric_is_rejected(self):
        with pytest.raises(SchemaValidationError, match="Invalid distance metric"):
            VectorField("embedding", dims=8, distance_metric="manhattan")


class TestFieldDictionaries:
    def test_from_dict_merges_attrs_and_camel_case_keys(self):
        field = BaseField.from_dict(
            {"name": "genre", "type": "tag", "attrs": {"caseSensitive": True, "separator": ";"}}
        )
        assert field == TagField("genre", separator=";", case_sensitive=True)

    def test_from_dict_reads_alias_from_attrs(self):
        field = BaseField.from_dict({"name": "title", "type": "text", "attrs": {"as": "t"}})
        assert field.alias == "t"

    def test_from_dict_vector_requires_dims(self):
        with pytest.raises(SchemaValidationError, match="missing required attribute 'dims'"):
            BaseField.from_dict({"name": "embedding", "type": "vector", "attrs": {"algorithm": "flat"}})

    def test_from_dict_vector(self):
        field = BaseField.from_dict(
            {
                "name": "embedding",
                "type": "vector",
                "attrs": {"dims": 4, "algorithm": "hnsw", "distance_metric": "ip", "datatype": "float16"},
            }
        )
        assert isinstance(field, VectorField)
        assert field.algorithm is VectorAlgorithm.HNSW
        assert field.distance_metric is DistanceMetric.IP
        assert field.datatype is VectorDataType.FLOAT16

    def test_from_dict_missing_type(self):
        with pytest.raises(SchemaValidationError, match="missing required attribute 'type'"):
            BaseField.from_dict({"name": "title"})

    def test_from_dict_ignores_unknown_attributes(self):
        field = BaseField.from_dict({"name": "year", "type": "numeric", "attrs": {"colour": "blue"}})
        assert field == NumericField("year")

    def test_from_dict_defaults_json_path(self):
        field = BaseField.from_dict({"name": "title", "type": "text"}, json_storage=True)
        assert field.path == "$.title"
        assert field.wire_name == "$.title"

    def test_from_dict_drops_path_for_hash(self):
        field = BaseField.from_dict({"name": "title", "type": "text", "path": "$.title"})
        assert field.path is None

    def test_to_dict_emits_only_non_defaults(self):
        assert TextField("title", weight=2.0, no_stem=True).to_dict() == {
            "name": "title",
            "type": "text",
            "weight": 2.0,
            "noStem": True,
        }

    def test_withsuffixtrie_round_trips(self):
        field = BaseField.from_dict({"name": "sku", "type": "tag", "attrs": {"withSuffixTrie": True}})
        assert field == TagField("sku", withsuffixtrie=True)
        assert field.to_dict() == {"name": "sku", "type": "tag", "withsuffixtrie": True}
        assert BaseField.from_dict(TextField("title", withsuffixtrie=True).to_dict()).withsuffixtrie is True

    def test_vector_to_dict_round_trips(self):
        field = VectorField("embedding", dims=4, algorithm="HNSW", m=8)
        assert BaseField.from_dict(field.to_dict()) == field


class TestHelpers:
    def test_coerce_enum_matches_name_or_value(self):
        assert coerce_enum(VectorAlgorithm, "svs_vamana", "algorithm") is VectorAlgorithm.SVS_VAMANA
        assert coerce_enum(VectorAlgorithm, "svs-vamana", "algorithm") is VectorAlgorithm.SVS_VAMANA

    def test_json_path_for(self):
        assert json_path_for("title") == "$.title"
        assert json_path_for("$.title") == "$.title"
        assert json_path_for("title", "$.meta.title") == "$.meta.title"
