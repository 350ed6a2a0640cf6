"""Decoding of raw ``FT.SEARCH`` and ``FT.INFO`` replies.

The index talks to the server through ``execute_command`` so replies arrive
in their raw RESP2 shape (or RESP3 maps when the client negotiated protocol
3). Both are normalized here into plain Python structures.
"""

from __future__ import annotations

from collections.abc import Collection, Mapping
from dataclasses import dataclass, field
import logging
from typing import Any

import orjson

from redisearch_kit.exceptions import ServerError
from redisearch_kit.query.text import SCORE_ID
from redisearch_kit.query.vector import DISTANCE_ID
from redisearch_kit.schema.fields import DistanceMetric


logger = logging.getLogger(__name__)

JSON_DOCUMENT_KEY = "$"


@dataclass
class SearchResult:
    """Documents returned by one search, in server order."""

    total: int
    docs: list[dict[str, Any]] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.docs)

    def __iter__(self):
        return iter(self.docs)


def decode(value: Any) -> Any:
    """Decode UTF-8 bytes to ``str``; undecodable bytes are left as ``bytes``."""
    if isinstance(value, (bytes, bytearray)):
        try:
            return bytes(value).decode("utf-8")
        except UnicodeDecodeError:
            return bytes(value)
    return value


def decode_nested(value: Any) -> Any:
    if isinstance(value, (list, tuple)):
        return [decode_nested(item) for item in value]
    if isinstance(value, Mapping):
        return {decode(key): decode_nested(item) for key, item in value.items()}
    return decode(value)


def pairs_to_dict(values: list[Any], binary_fields: Collection[str] = ()) -> dict[str, Any]:
    """Turn ``[k1, v1, k2, v2, ...]`` into a dict, keeping binary fields raw."""
    result: dict[str, Any] = {}
    for position in range(0, len(values) - 1, 2):
        key = decode(values[position])
        value = values[position + 1]
        result[key] = value if key in binary_fields else decode(value)
    return result


def _expand_json_payload(doc: dict[str, Any]) -> dict[str, Any]:
    payload = doc.pop(JSON_DOCUMENT_KEY, None)
    if payload is None:
        return doc
    try:
        loaded = orjson.loads(payload)
    except orjson.JSONDecodeError:
        logger.warning("Could not decode JSON payload for document %s", doc.get("id"))
        doc[JSON_DOCUMENT_KEY] = payload
        return doc
    if isinstance(loaded, list) and len(loaded) == 1:
        loaded = loaded[0]
    if isinstance(loaded, dict):
        return {**loaded, **doc}
    doc["json"] = loaded
    return doc


def _to_float(value: Any) -> Any:
    value = decode(value)
    try:
        return float(value)
    except (TypeError, ValueError):
        return value


def _coerce_distance(doc: dict[str, Any]) -> None:
    if DISTANCE_ID in doc:
        try:
            doc[DISTANCE_ID] = float(doc[DISTANCE_ID])
        except (TypeError, ValueError):
            logger.debug("Non-numeric %s in document %s", DISTANCE_ID, doc.get("id"))


def parse_search_reply(
    reply: Any,
    *,
    binary_fields: Collection[str] = (),
    nocontent: bool = False,
    with_scores: bool = False,
) -> SearchResult:
    """Decode a raw ``FT.SEARCH`` reply into a ``SearchResult``.

    RESP2 replies look like ``[total, id1, [f, v, ...], id2, [...], ...]``
    (ids only with ``NOCONTENT``, and a score after each id with
    ``WITHSCORES``); RESP3 replies are maps with ``total_results`` and
    ``results``.
    """
    if isinstance(reply, Mapping):
        return _parse_resp3_search(reply, binary_fields, with_scores)
    if not isinstance(reply, (list, tuple)) or not reply:
        msg = f"Unexpected FT.SEARCH reply: {reply!r}"
        raise ServerError(msg, command="FT.SEARCH")

    total = int(reply[0])
    docs: list[dict[str, Any]] = []
    if nocontent and not with_scores:
        docs = [{"id": decode(doc_id)} for doc_id in reply[1:]]
        return SearchResult(total=total, docs=docs)

    position = 1
    while position < len(reply):
        doc: dict[str, Any] = {"id": decode(reply[position])}
        position += 1
        if with_scores and position < len(reply):
            doc[SCORE_ID] = _to_float(reply[position])
            position += 1
        fields = reply[position] if position < len(reply) else None
        if isinstance(fields, (list, tuple)):
            doc.update(pairs_to_dict(list(fields), binary_fields))
            position += 1
        doc = _expand_json_payload(doc)
        _coerce_distance(doc)
        docs.append(doc)
    return SearchResult(total=total, docs=docs)


def _parse_resp3_search(
    reply: Mapping[Any, Any], binary_fields: Collection[str], with_scores: bool = False
) -> SearchResult:
    data = {decode(key): value for key, value in reply.items()}
    docs: list[dict[str, Any]] = []
    for row in data.get("results", []):
        row_data = {decode(key): value for key, value in row.items()}
        doc: dict[str, Any] = {"id": decode(row_data.get("id"))}
        if with_scores and "score" in row_data:
            doc[SCORE_ID] = _to_float(row_data["score"])
        for key, value in (row_data.get("extra_attributes") or {}).items():
            name = decode(key)
            doc[name] = value if name in binary_fields else decode(value)
        doc = _expand_json_payload(doc)
        _coerce_distance(doc)
        docs.append(doc)
    return SearchResult(total=int(data.get("total_results", len(docs))), docs=docs)


def parse_info_reply(reply: Any) -> dict[str, Any]:
    """Turn a flat ``FT.INFO`` reply into a dict with decoded keys."""
    if isinstance(reply, Mapping):
        return decode_nested(reply)
    if not isinstance(reply, (list, tuple)):
        msg = f"Unexpected FT.INFO reply: {reply!r}"
        raise ServerError(msg, command="FT.INFO")
    return {decode(reply[i]): decode_nested(reply[i + 1]) for i in range(0, len(reply) - 1, 2)}


def normalize_distance(distance: float, metric: DistanceMetric) -> float:
    """Map a raw distance to a 0..1 similarity score.

    COSINE distances lie in [0, 2] and become ``(2 - d) / 2``; L2 distances
    become ``1 / (1 + d)``. IP scores are returned unchanged.
    """
    if metric is DistanceMetric.COSINE:
        return (2 - distance) / 2
    if metric is DistanceMetric.L2:
        return 1 / (1 + distance)
    return distance


# FT.INFO attribute flags and the field options they map to.
_INFO_FLAGS = {
    "SORTABLE": "sortable",
    "UNF": "unf",
    "NOSTEM": "no_stem",
    "CASESENSITIVE": "case_sensitive",
    "INDEXMISSING": "index_missing",
    "INDEXEMPTY": "index_empty",
    "WITHSUFFIXTRIE": "withsuffixtrie",
}
_INFO_VECTOR_KEYS = {
    "algorithm": "algorithm",
    "data_type": "datatype",
    "dim": "dims",
    "distance_metric": "distance_metric",
    "m": "m",
    "ef_construction": "ef_construction",
    "ef_runtime": "ef_runtime",
    "epsilon": "epsilon",
    "initial_cap": "initial_cap",
    "block_size": "block_size",
    "compression": "compression",
    "reduce": "reduce",
    "graph_max_degree": "graph_max_degree",
    "construction_window_size": "construction_window_size",
    "search_window_size": "search_window_size",
    "training_threshold": "training_threshold",
}
_INT_VECTOR_KEYS = frozenset(
    {
        "dims",
        "m",
        "ef_construction",
        "ef_runtime",
        "initial_cap",
        "block_size",
        "reduce",
        "graph_max_degree",
        "construction_window_size",
        "search_window_size",
        "training_threshold",
    }
)


def _field_from_info(attribute: list[Any]) -> dict[str, Any] | None:
    tokens = [decode_nested(item) for item in attribute]
    options: dict[str, Any] = {}
    identifier = alias = field_type = None
    position = 0
    while position < len(tokens):
        token = tokens[position]
        key = str(token)
        lowered = key.lower()
        has_value = position + 1 < len(tokens)
        if lowered == "identifier" and has_value:
            identifier = tokens[position + 1]
            position += 2
        elif lowered == "attribute" and has_value:
            alias = tokens[position + 1]
            position += 2
        elif lowered == "type" and has_value:
            field_type = str(tokens[position + 1]).lower()
            position += 2
        elif key.upper() in _INFO_FLAGS:
            options[_INFO_FLAGS[key.upper()]] = True
            position += 1
        elif key.upper() == "NOINDEX":
            options["indexed"] = False
            position += 1
        elif key.upper() in ("WEIGHT", "SEPARATOR", "PHONETIC") and has_value:
            options[key.lower()] = tokens[position + 1]
            position += 2
        elif lowered in _INFO_VECTOR_KEYS and has_value:
            options[_INFO_VECTOR_KEYS[lowered]] = tokens[position + 1]
            position += 2
        else:
            position += 1

    if identifier is None or field_type is None:
        return None
    data: dict[str, Any] = {"name": identifier, "type": field_type}
    if alias and alias != identifier:
        data["alias"] = alias
    if field_type == "vector":
        attrs = {key: options.pop(key) for key in list(options) if key in _INFO_VECTOR_KEYS.values()}
        for key in _INT_VECTOR_KEYS & attrs.keys():
            attrs[key] = int(attrs[key])
        if "epsilon" in attrs:
            attrs["epsilon"] = float(attrs["epsilon"])
        data["attrs"] = attrs
    else:
        for key in list(options):
            if key in _INFO_VECTOR_KEYS.values():
                options.pop(key)
        if "weight" in options:
            options["weight"] = float(options["weight"])
        if field_type != "text":
            options.pop("no_stem", None)
            options.pop("weight", None)
            options.pop("phonetic", None)
    data.update(options)
    return data


def schema_from_info(name: str, info: Mapping[str, Any]) -> dict[str, Any]:
    """Rebuild a structured schema document from a parsed ``FT.INFO`` reply."""
    index: dict[str, Any] = {"name": name}
    definition = info.get("index_definition") or []
    if isinstance(definition, Mapping):
        definition = [item for pair in definition.items() for item in pair]
    for position in range(0, len(definition) - 1, 2):
        key = str(definition[position])
        value = definition[position + 1]
        if key == "key_type":
            index["storage_type"] = str(value).lower()
        elif key == "prefixes":
            index["prefix"] = list(value) if isinstance(value, list) else value

    fields = []
    for attribute in info.get("attributes") or []:
        if isinstance(attribute, Mapping):
            attribute = [item for pair in attribute.items() for item in pair]
        parsed = _field_from_info(list(attribute))
        if parsed is not None:
            fields.append(parsed)
    return {"index": index, "fields": fields}
