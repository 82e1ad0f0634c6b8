"""Integer-cents money helpers.

All arithmetic on stored amounts is integer cents. Conversions from decimal
text or user input go through :class:`~decimal.Decimal` with half-up rounding
at the cent boundary, never through binary floating point.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

_CENT = Decimal("0.01")
_HUNDRED = Decimal(100)


def _as_decimal(value: Decimal | int | float | str) -> Decimal:
    if isinstance(value, bool):
        raise TypeError("amount must be numeric, not bool")
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        # repr() gives the shortest round-tripping text, so 0.1 stays 0.1
        return Decimal(repr(value))
    try:
        return Decimal(str(value).strip())
    except InvalidOperation as exc:
        raise ValueError(f"invalid amount: {value!r}") from exc


def dollars_to_cents(dollars: Decimal | int | float | str) -> int:
    """Return ``dollars`` as an integer number of cents (half-up rounding)."""

    d = _as_decimal(dollars)
    if not d.is_finite():
        raise ValueError(f"amount must be finite: {dollars!r}")
    return int((d * _HUNDRED).quantize(Decimal(1), rounding=ROUND_HALF_UP))


def cents_to_dollars(cents: int) -> Decimal:
    """Return ``cents`` as an exact two-place :class:`Decimal` dollar amount."""

    if isinstance(cents, bool) or not isinstance(cents, int):
        raise TypeError("cents must be an int")
    return (Decimal(cents) / _HUNDRED).quantize(_CENT)


def format_cents(cents: int) -> str:
    """Format cents as a plain two-decimal string (``-1234`` → ``"-12.34"``)."""

    return f"{cents_to_dollars(cents):.2f}"


__all__ = ["dollars_to_cents", "cents_to_dollars", "format_cents"]
