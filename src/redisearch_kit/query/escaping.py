"""Escaping rules for values and field names embedded in query strings."""

from __future__ import annotations

import re

from redisearch_kit.schema.fields import JSON_PATH_PREFIX


class TokenEscaper:
    """Backslash-escape punctuation that the query parser treats as syntax."""

    # Characters that RediSearch tokenizes on, see
    # https://redis.io/docs/latest/develop/interact/search-and-query/advanced-concepts/escaping/
    DEFAULT_ESCAPED_CHARS = r"[,.<>{}\[\]\\\"\':;!@#$%^&*()\-+=~\/ ]"

    def __init__(self, escape_chars_re: re.Pattern[str] | str | None = None) -> None:
        if escape_chars_re is None:
            escape_chars_re = self.DEFAULT_ESCAPED_CHARS
        if isinstance(escape_chars_re, str):
            escape_chars_re = re.compile(escape_chars_re)
        self.escaped_chars_re = escape_chars_re

    def escape(self, value: str) -> str:
        if not isinstance(value, str):
            msg = f"Value must be a string object for token escaping, got type {type(value)}"
            raise TypeError(msg)
        return self.escaped_chars_re.sub(lambda match: f"\\{match.group(0)}", value)


# Free text keeps spaces as term separators but escapes everything else.
TEXT_ESCAPER = TokenEscaper(r"[,.<>{}\[\]\\\"\':;!@#$%^&*()\-+=~\/|?]")
TAG_ESCAPER = TokenEscaper()


def escape_field_name(name: str) -> str:
    """Escape a JSON-path field name (``$.a.b`` -> ``\\$\\.a\\.b``).

    Plain field names are returned unchanged.
    """
    if name.startswith(JSON_PATH_PREFIX):
        return name.replace("$", "\\$").replace(".", "\\.")
    return name
