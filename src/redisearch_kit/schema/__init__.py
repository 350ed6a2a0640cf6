"""Index schema model: field variants, index configuration and (de)serialization."""

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
)
from redisearch_kit.schema.index_schema import IndexInfo, IndexSchema, SchemaFormat, StorageType


__all__ = [
    "BaseField",
    "CompressionType",
    "DistanceMetric",
    "FieldType",
    "GeoField",
    "IndexInfo",
    "IndexSchema",
    "NumericField",
    "SchemaFormat",
    "StorageType",
    "TagField",
    "TextField",
    "VectorAlgorithm",
    "VectorDataType",
    "VectorField",
]
