"""Vector similarity queries: KNN and distance-range searches.

The query vector travels as a query parameter (``$vec``) packed as
little-endian bytes of the target field's datatype. The rendered query string
only references it:

    (@genre:{comedy})=>[KNN $K @embedding $vec AS vector_distance]
    @embedding:[VECTOR_RANGE $distance_threshold $vec]=>{$YIELD_DISTANCE_AS: vector_distance}

Results come back in server order, which for these queries is ascending
``vector_distance``.
"""

from __future__ import annotations

from collections.abc import Sequence
from enum import Enum
from typing import Any

from redisearch_kit.exceptions import QueryValidationError, ValidationError
from redisearch_kit.query.escaping import escape_field_name
from redisearch_kit.query.filter import WILDCARD, Filter
from redisearch_kit.query.filter_query import DEFAULT_DIALECT, BaseQuery
from redisearch_kit.query.sort import SortSpec
from redisearch_kit.utils.formatting import format_number
from redisearch_kit.utils.vectors import array_to_buffer, dtype_itemsize


DISTANCE_ID = "vector_distance"
VECTOR_PARAM = "vec"


class HybridPolicy(str, Enum):
    """How the server combines a pre-filter with KNN search."""

    BATCHES = "BATCHES"
    ADHOC_BF = "ADHOC_BF"


class BaseVectorQuery(BaseQuery):
    """Holds the query vector and its target field."""

    def __init__(
        self,
        vector: Sequence[float] | bytes,
        vector_field_name: str,
        return_fields: list[str] | None = None,
        filter_expression: Filter | str | None = None,
        dtype: str = "float32",
        num_results: int = 10,
        return_score: bool = True,
        dialect: int = DEFAULT_DIALECT,
        sort_by: SortSpec | None = DISTANCE_ID,
        sort_ascending: bool = True,
        in_order: bool = False,
        normalize_vector_distance: bool = False,
    ) -> None:
        if not isinstance(vector_field_name, str) or not vector_field_name.strip():
            msg = "Vector field name is required"
            raise QueryValidationError(msg)
        if vector is None:
            msg = "Vector is required"
            raise QueryValidationError(msg)
        if len(vector) == 0:
            msg = "Vector cannot be empty"
            raise QueryValidationError(msg)
        super().__init__(
            filter_expression,
            return_fields=return_fields,
            num_results=num_results,
            sort_by=sort_by,
            sort_ascending=sort_ascending,
            in_order=in_order,
            dialect=dialect,
        )
        self.vector_field_name = vector_field_name.strip()
        self.return_score = return_score
        self.normalize_vector_distance = normalize_vector_distance
        self._vector = vector
        self.set_dtype(dtype)

    @property
    def vector(self) -> Sequence[float] | bytes:
        return self._vector

    @property
    def dtype(self) -> str:
        return self._dtype

    def set_dtype(self, dtype: str) -> None:
        """Change the element type the vector is packed as."""
        try:
            itemsize = dtype_itemsize(dtype)
        except ValidationError as exc:
            raise QueryValidationError(str(exc)) from exc
        if isinstance(self._vector, (bytes, bytearray)) and len(self._vector) % itemsize:
            msg = f"Vector buffer of {len(self._vector)} bytes does not match datatype {dtype}"
            raise QueryValidationError(msg)
        self._dtype = str(getattr(dtype, "value", dtype)).lower()

    @property
    def vector_dims(self) -> int:
        """Number of elements in the query vector."""
        if isinstance(self._vector, (bytes, bytearray)):
            return len(self._vector) // dtype_itemsize(self._dtype)
        return len(self._vector)

    def vector_buffer(self) -> bytes:
        if isinstance(self._vector, (bytes, bytearray)):
            return bytes(self._vector)
        try:
            return array_to_buffer(self._vector, self._dtype)
        except (TypeError, ValueError) as exc:
            msg = f"Query vector must be a sequence of numbers: {exc}"
            raise QueryValidationError(msg) from exc

    def _return_fields(self) -> list[str]:
        fields = list(self.return_fields)
        if fields and self.return_score and DISTANCE_ID not in fields:
            fields.append(DISTANCE_ID)
        return fields


class VectorQuery(BaseVectorQuery):
    """
    K-nearest-neighbour search.

    Args:
        vector: Query vector as numbers or a pre-packed buffer
        vector_field_name: Field name or JSON path of the vector field
        num_results: K, the number of neighbours to return
        filter_expression: Optional pre-filter
        ef_runtime: HNSW search-list size override (rejected for FLAT fields)
        hybrid_policy: BATCHES or ADHOC_BF
        batch_size: Batch size for the BATCHES policy
    """

    def __init__(
        self,
        vector: Sequence[float] | bytes,
        vector_field_name: str,
        return_fields: list[str] | None = None,
        filter_expression: Filter | str | None = None,
        dtype: str = "float32",
        num_results: int = 10,
        return_score: bool = True,
        dialect: int = DEFAULT_DIALECT,
        sort_by: SortSpec | None = DISTANCE_ID,
        sort_ascending: bool = True,
        in_order: bool = False,
        hybrid_policy: HybridPolicy | str | None = None,
        batch_size: int | None = None,
        ef_runtime: int | None = None,
        normalize_vector_distance: bool = False,
    ) -> None:
        super().__init__(
            vector,
            vector_field_name,
            return_fields=return_fields,
            filter_expression=filter_expression,
            dtype=dtype,
            num_results=num_results,
            return_score=return_score,
            dialect=dialect,
            sort_by=sort_by,
            sort_ascending=sort_ascending,
            in_order=in_order,
            normalize_vector_distance=normalize_vector_distance,
        )
        if ef_runtime is not None and (isinstance(ef_runtime, bool) or not isinstance(ef_runtime, int) or ef_runtime <= 0):
            msg = f"ef_runtime must be a positive integer, got {ef_runtime!r}"
            raise QueryValidationError(msg)
        self.ef_runtime = ef_runtime

        self.hybrid_policy: HybridPolicy | None = None
        if hybrid_policy is not None:
            try:
                self.hybrid_policy = HybridPolicy(str(getattr(hybrid_policy, "value", hybrid_policy)).upper())
            except ValueError:
                msg = f"Invalid hybrid_policy '{hybrid_policy}'. Expected BATCHES or ADHOC_BF"
                raise QueryValidationError(msg) from None
        if batch_size is not None:
            if isinstance(batch_size, bool) or not isinstance(batch_size, int) or batch_size <= 0:
                msg = f"batch_size must be a positive integer, got {batch_size!r}"
                raise QueryValidationError(msg)
            if self.hybrid_policy is not HybridPolicy.BATCHES:
                msg = "batch_size can only be used with hybrid_policy BATCHES"
                raise QueryValidationError(msg)
        self.batch_size = batch_size

    def query_string(self) -> str:
        base = self.filter
        prefix = WILDCARD if base == WILDCARD else f"({base})"
        knn = f"KNN $K @{escape_field_name(self.vector_field_name)} ${VECTOR_PARAM}"
        if self.hybrid_policy is not None:
            knn += f" HYBRID_POLICY {self.hybrid_policy.value}"
            if self.batch_size is not None:
                knn += f" BATCH_SIZE {self.batch_size}"
        if self.ef_runtime is not None:
            knn += " EF_RUNTIME $EF_RUNTIME"
        return f"{prefix}=>[{knn} AS {DISTANCE_ID}]"

    def params(self) -> dict[str, Any]:
        params: dict[str, Any] = {"K": self.num_results, VECTOR_PARAM: self.vector_buffer()}
        if self.ef_runtime is not None:
            params["EF_RUNTIME"] = self.ef_runtime
        return params


class VectorRangeQuery(BaseVectorQuery):
    """
    Returns every document within ``distance_threshold`` of the query vector.

    Args:
        distance_threshold: Maximum distance to include (default: 0.2)
        epsilon: Optional range search boundary factor
    """

    DISTANCE_THRESHOLD_PARAM = "distance_threshold"

    def __init__(
        self,
        vector: Sequence[float] | bytes,
        vector_field_name: str,
        return_fields: list[str] | None = None,
        filter_expression: Filter | str | None = None,
        dtype: str = "float32",
        distance_threshold: float = 0.2,
        epsilon: float | None = None,
        num_results: int = 10,
        return_score: bool = True,
        dialect: int = DEFAULT_DIALECT,
        sort_by: SortSpec | None = DISTANCE_ID,
        sort_ascending: bool = True,
        in_order: bool = False,
        normalize_vector_distance: bool = False,
    ) -> None:
        super().__init__(
            vector,
            vector_field_name,
            return_fields=return_fields,
            filter_expression=filter_expression,
            dtype=dtype,
            num_results=num_results,
            return_score=return_score,
            dialect=dialect,
            sort_by=sort_by,
            sort_ascending=sort_ascending,
            in_order=in_order,
            normalize_vector_distance=normalize_vector_distance,
        )
        self.set_distance_threshold(distance_threshold)
        if epsilon is not None and (isinstance(epsilon, bool) or not isinstance(epsilon, (int, float)) or epsilon < 0):
            msg = f"epsilon must be a non-negative number, got {epsilon!r}"
            raise QueryValidationError(msg)
        self.epsilon = epsilon

    @property
    def distance_threshold(self) -> float:
        return self._distance_threshold

    def set_distance_threshold(self, distance_threshold: float) -> None:
        if (
            isinstance(distance_threshold, bool)
            or not isinstance(distance_threshold, (int, float))
            or distance_threshold < 0
        ):
            msg = f"distance_threshold must be a non-negative number, got {distance_threshold!r}"
            raise QueryValidationError(msg)
        self._distance_threshold = float(distance_threshold)

    def query_string(self) -> str:
        base = (
            f"@{escape_field_name(self.vector_field_name)}:"
            f"[VECTOR_RANGE ${self.DISTANCE_THRESHOLD_PARAM} ${VECTOR_PARAM}]"
        )
        attrs = [f"$YIELD_DISTANCE_AS: {DISTANCE_ID}"]
        if self.epsilon is not None:
            attrs.append(f"$EPSILON: {format_number(self.epsilon)}")
        range_query = f"{base}=>{{{'; '.join(attrs)}}}"
        if self.filter == WILDCARD:
            return range_query
        return f"({range_query} {self.filter})"

    def params(self) -> dict[str, Any]:
        return {
            self.DISTANCE_THRESHOLD_PARAM: self._distance_threshold,
            VECTOR_PARAM: self.vector_buffer(),
        }
