"""Full-text queries scored by the server.

The search text is split on whitespace; each token is lowercased, stripped of
commas and escaped, and the tokens are OR-ed together. Every target field gets
the same token group, with an optional relevance weight:

    (@title:(heat | city) | @plot:(heat | city)=>{$weight: 2})

A filter is intersected with the text clause, and the server ranks matches
with ``SCORER`` (``BM25STD`` by default).
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from redisearch_kit.exceptions import QueryValidationError
from redisearch_kit.query.escaping import TEXT_ESCAPER, escape_field_name
from redisearch_kit.query.filter import WILDCARD, Filter
from redisearch_kit.query.filter_query import DEFAULT_DIALECT, BaseQuery
from redisearch_kit.query.sort import SortSpec
from redisearch_kit.utils.formatting import format_number


DEFAULT_SCORER = "BM25STD"
SCORE_ID = "score"


def _validate_weights(weights: Mapping[str, Any]) -> dict[str, float]:
    if not weights:
        msg = "At least one text field must be specified"
        raise QueryValidationError(msg)
    validated: dict[str, float] = {}
    for name, weight in weights.items():
        if not isinstance(name, str) or not name.strip():
            msg = "Text field name cannot be null or empty"
            raise QueryValidationError(msg)
        if weight is None:
            msg = f"Weight for field '{name}' cannot be null"
            raise QueryValidationError(msg)
        if isinstance(weight, bool) or not isinstance(weight, (int, float)) or weight <= 0:
            msg = f"Weight for field '{name}' must be positive, got {weight}"
            raise QueryValidationError(msg)
        validated[name.strip()] = float(weight)
    return validated


class TextQuery(BaseQuery):
    """
    Full-text search over one or more text fields.

    Args:
        text: Search text (required, non-blank)
        text_field_name: A field name, or a mapping of field name to weight
        filter_expression: Optional filter intersected with the text match
        scorer: Server scoring function (default: BM25STD)
        return_score: Ask the server for each document's score (``WITHSCORES``)

    Example:
        TextQuery("heat city", {"title": 2.0, "plot": 1.0}, filter_expression=Filter.numeric("year").gt(1990))
    """

    def __init__(
        self,
        text: str,
        text_field_name: str | Mapping[str, float],
        filter_expression: Filter | str | None = None,
        return_fields: list[str] | None = None,
        num_results: int = 10,
        scorer: str = DEFAULT_SCORER,
        return_score: bool = True,
        sort_by: SortSpec | None = None,
        sort_ascending: bool = True,
        in_order: bool = False,
        dialect: int = DEFAULT_DIALECT,
    ) -> None:
        if not isinstance(text, str) or not text.strip():
            msg = "Text cannot be null or empty"
            raise QueryValidationError(msg)
        if not isinstance(scorer, str) or not scorer.strip():
            msg = "Scorer cannot be null or empty"
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
        self.text = text
        self.scorer = scorer.strip()
        self.return_score = return_score
        if isinstance(text_field_name, str):
            text_field_name = {text_field_name: 1.0}
        self._field_weights = _validate_weights(text_field_name)
        if not self.tokens:
            msg = f"Text '{text}' contains no searchable tokens"
            raise QueryValidationError(msg)

    @property
    def field_weights(self) -> dict[str, float]:
        return dict(self._field_weights)

    def set_field_weights(self, field_weights: str | Mapping[str, float]) -> None:
        if isinstance(field_weights, str):
            field_weights = {field_weights: 1.0}
        self._field_weights = _validate_weights(field_weights)

    @property
    def tokens(self) -> list[str]:
        """The escaped search tokens, lowercased and without commas."""
        tokens = []
        for raw in self.text.split():
            cleaned = raw.replace(",", "").strip().lower()
            if cleaned:
                tokens.append(TEXT_ESCAPER.escape(cleaned))
        return tokens

    def query_string(self) -> str:
        terms = " | ".join(self.tokens)
        clauses = []
        for name, weight in self._field_weights.items():
            clause = f"@{escape_field_name(name)}:({terms})"
            if weight != 1.0:
                clause += f"=>{{$weight: {format_number(weight)}}}"
            clauses.append(clause)
        text_query = " | ".join(clauses)
        if len(clauses) > 1:
            text_query = f"({text_query})"
        if self.filter == WILDCARD:
            return text_query
        return f"({text_query} {self.filter})"

    def _flags(self) -> list[str]:
        return ["WITHSCORES"] if self.return_score else []

    def _scoring_args(self) -> list[str]:
        return ["SCORER", self.scorer]
