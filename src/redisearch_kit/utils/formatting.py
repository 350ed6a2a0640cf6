"""Number and token formatting for the RediSearch grammar."""

from __future__ import annotations


def format_number(value: float | int) -> str:
    """Render a number the way the query and schema grammars expect it.

    Integral floats drop their trailing ``.0`` so ``10.0`` renders as ``10``.
    Infinities render as ``+inf``/``-inf``.
    """
    if isinstance(value, bool):
        msg = f"Expected a number, got bool {value!r}"
        raise TypeError(msg)
    if isinstance(value, int):
        return str(value)
    number = float(value)
    if number == float("inf"):
        return "+inf"
    if number == float("-inf"):
        return "-inf"
    if number.is_integer():
        return str(int(number))
    return repr(number)
