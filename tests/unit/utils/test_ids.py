"""Unit tests for id generation and number formatting."""

import pytest
from ulid import ULID

from redisearch_kit.utils.formatting import format_number
from redisearch_kit.utils.ids import generate_id


pytestmark = pytest.mark.unit


def test_generate_id_is_a_ulid():
    value = generate_id()
    assert len(value) == 26
    assert str(ULID.from_str(value)) == value


def test_generated_ids_are_unique():
    assert len({generate_id() for _ in range(100)}) == 100


@pytest.mark.parametrize(
    ("value", "expected"),
    [(10, "10"), (10.0, "10"), (2.5, "2.5"), (float("inf"), "+inf"), (float("-inf"), "-inf"), (-3.0, "-3")],
)
def test_format_number(value, expected):
    assert format_number(value) == expected


def test_format_number_rejects_bool():
    with pytest.raises(TypeError):
        format_number(True)
