"""Filter expressions and search query builders."""

from redisearch_kit.query.escaping import TokenEscaper, escape_field_name
from redisearch_kit.query.filter import Filter, GeoUnit
from redisearch_kit.query.filter_query import BaseQuery, CountQuery, FilterQuery
from redisearch_kit.query.sort import SortField, parse_sort_spec
from redisearch_kit.query.text import TextQuery
from redisearch_kit.query.vector import DISTANCE_ID, HybridPolicy, VectorQuery, VectorRangeQuery


__all__ = [
    "DISTANCE_ID",
    "BaseQuery",
    "CountQuery",
    "Filter",
    "FilterQuery",
    "GeoUnit",
    "HybridPolicy",
    "SortField",
    "TextQuery",
    "TokenEscaper",
    "VectorQuery",
    "VectorRangeQuery",
    "escape_field_name",
    "parse_sort_spec",
]
