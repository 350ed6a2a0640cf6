"""Conversion between Python number sequences and vector byte buffers.

Hash documents and query parameters carry vectors as raw little-endian byte
buffers whose element type follows the field's declared datatype. JSON
documents carry plain float lists instead.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

import ml_dtypes
import numpy as np

from redisearch_kit.exceptions import ValidationError


_NUMPY_DTYPES: dict[str, np.dtype] = {
    "FLOAT16": np.dtype("<f2"),
    "FLOAT32": np.dtype("<f4"),
    "FLOAT64": np.dtype("<f8"),
    "BFLOAT16": np.dtype(ml_dtypes.bfloat16),
    "INT8": np.dtype("i1"),
    "UINT8": np.dtype("u1"),
}


def numpy_dtype(dtype: Any) -> np.dtype:
    """Map a datatype name (or ``VectorDataType`` member) to a numpy dtype."""
    token = str(getattr(dtype, "value", dtype)).strip().upper()
    try:
        return _NUMPY_DTYPES[token]
    except KeyError:
        msg = f"Unsupported vector datatype '{dtype}'. Expected one of: {', '.join(_NUMPY_DTYPES)}"
        raise ValidationError(msg) from None


def dtype_itemsize(dtype: Any) -> int:
    """Return the byte width of one vector element."""
    return numpy_dtype(dtype).itemsize


def array_to_buffer(values: Sequence[float] | np.ndarray, dtype: Any = "float32") -> bytes:
    """Pack ``values`` into a little-endian buffer of ``dtype`` elements."""
    target = numpy_dtype(dtype)
    array = np.asarray(values, dtype=np.float64 if target.kind in "fV" else None)
    if array.ndim != 1:
        msg = f"Vector must be one-dimensional, got shape {array.shape}"
        raise ValidationError(msg)
    if target.kind in "iu":
        check_integer_values(array, target)
    return array.astype(target).tobytes()


def check_integer_values(values: Sequence[float] | np.ndarray, dtype: Any) -> None:
    """Reject values that would wrap or truncate when stored as ``dtype`` integers."""
    target = numpy_dtype(dtype)
    array = np.asarray(values)
    if array.size == 0:
        return
    if array.dtype.kind not in "iuf":
        msg = f"{target.name.upper()} vectors require integer values, got {array.dtype} elements"
        raise ValidationError(msg)
    if array.dtype.kind == "f" and not np.all(np.isfinite(array) & (array == np.trunc(array))):
        msg = f"{target.name.upper()} vectors require integral values"
        raise ValidationError(msg)
    bounds = np.iinfo(target)
    if array.min() < bounds.min or array.max() > bounds.max:
        msg = f"{target.name.upper()} vectors require values between {bounds.min} and {bounds.max}"
        raise ValidationError(msg)


def buffer_to_array(buffer: bytes, dtype: Any = "float32") -> list[float]:
    """Unpack a vector buffer into a list of Python numbers."""
    target = numpy_dtype(dtype)
    if len(buffer) % target.itemsize:
        msg = f"Buffer of {len(buffer)} bytes is not a whole number of {target.itemsize}-byte elements"
        raise ValidationError(msg)
    array = np.frombuffer(buffer, dtype=target)
    if target.kind in "iu":
        return [int(item) for item in array]
    return [float(item) for item in array.astype(np.float64)]
