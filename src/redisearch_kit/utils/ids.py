"""Document id generation."""

from __future__ import annotations

from ulid import ULID


def generate_id() -> str:
    """Return a new ULID string.

    ULIDs are 26 Crockford base32 characters and sort lexically by creation
    time, so generated keys stay ordered within a prefix.
    """
    return str(ULID())
