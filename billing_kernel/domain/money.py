"""
Money -- the single monetary rounding law.

Responsibility:
    Provides ``round_money``, the only sanctioned way to bring an amount to
    cent precision.  Every engine and service routes amount arithmetic
    through it before comparison or persistence so that no floating-point
    or sub-cent drift accumulates across composed calculations.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
    Imported by every engine.  No outward dependencies.

Invariants enforced:
    - Rounding is half away from zero (``ROUND_HALF_UP`` on ``Decimal``
      rounds ``-0.005`` to ``-0.01``).
    - Results always carry exactly two decimal places.
    - Non-finite or unparseable input degrades to ``0.00``, never raises.

Failure modes:
    - None.  Garbage in yields ``Decimal("0.00")``.

Audit relevance:
    Money must reconcile to the cent across invoices, settlements and SEPA
    files.  Every component rounds through ``round_money``.
"""

from __future__ import annotations

from collections.abc import Iterable
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

CENT = Decimal("0.01")
ZERO = Decimal("0.00")

MoneyLike = Decimal | int | str | float | None


def to_decimal(value: MoneyLike) -> Decimal:
    """
    Convert an arbitrary amount to an unrounded Decimal.

    Floats go through ``repr`` so that ``1.005`` becomes ``Decimal("1.005")``
    rather than its binary approximation.  NaN, infinities, None and
    unparseable strings yield ``Decimal("0")``.
    """
    if value is None:
        return Decimal("0")
    if isinstance(value, bool):
        return Decimal(int(value))
    if isinstance(value, Decimal):
        result = value
    else:
        raw = repr(value) if isinstance(value, float) else str(value).strip()
        try:
            result = Decimal(raw)
        except (InvalidOperation, ValueError):
            return Decimal("0")
    if not result.is_finite():
        return Decimal("0")
    return result


def round_money(value: MoneyLike) -> Decimal:
    """
    Round to 2 decimals, half away from zero.

    Postconditions:
        - Returns a Decimal with exponent -2.
        - ``round_money(NaN) == Decimal("0.00")``.
    """
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def sum_money(values: Iterable[MoneyLike]) -> Decimal:
    """Sum amounts after rounding each one to the cent."""
    total = ZERO
    for value in values:
        total += round_money(value)
    return round_money(total)


def format_amount(value: MoneyLike) -> str:
    """Render an amount with exactly two decimals (``"1234.50"``)."""
    return f"{round_money(value):.2f}"
