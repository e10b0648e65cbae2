"""
Module: billing_engines.rounding
Responsibility:
    Make a set of independently rounded lines add up exactly to an expected
    total by nudging individual lines by one cent at a time.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - Determinism: lines are ordered by (|amount| desc, line_type asc,
      unit_id asc) before adjustment, so the same multiset of lines always
      receives the same cents regardless of input order.
    - Bounded: at most ``iteration_factor * len(lines)`` one-cent steps.
      Any difference left after that is reported as ``residual``.
    - Purity: the input sequence and its lines are never mutated.
    - Returned lines are always rounded to the cent and always in sorted
      order, whether or not a cent had to move.

Failure modes:
    - None.  An empty input yields no lines and the full difference as
      residual.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, replace
from decimal import Decimal

from billing_engines.tracer import traced_engine
from billing_kernel.domain.money import CENT, ZERO, MoneyLike, round_money


@dataclass(frozen=True)
class ReconcileLine:
    unit_id: str
    line_type: str
    amount: Decimal


@dataclass(frozen=True)
class ReconciliationResult:
    lines: tuple[ReconcileLine, ...]
    adjustments: int
    residual: Decimal

    @property
    def total(self) -> Decimal:
        return round_money(sum((line.amount for line in self.lines), ZERO))


def _sort_key(line: ReconcileLine) -> tuple[Decimal, str, str]:
    return (-abs(line.amount), line.line_type, line.unit_id)


@traced_engine(
    "rounding_reconciler",
    "1.0",
    fingerprint_fields=("lines", "expected_total", "iteration_factor"),
)
def reconcile_rounding(
    lines: Sequence[ReconcileLine],
    expected_total: MoneyLike,
    *,
    iteration_factor: int = 2,
) -> ReconciliationResult:
    """
    Distribute the rounding difference across ``lines`` one cent at a time.

    ``diff = expected_total - sum(round_money(line.amount))``.  While
    ``|diff| >= 0.01`` the line at position ``i mod N`` of the sorted list
    receives ``±0.01``.
    """
    ordered = sorted(lines, key=_sort_key)
    amounts = [round_money(line.amount) for line in ordered]
    diff = round_money(round_money(expected_total) - sum(amounts, ZERO))

    max_iterations = len(ordered) * iteration_factor
    i = 0
    while abs(diff) >= CENT and i < max_iterations:
        step = CENT if diff > 0 else -CENT
        idx = i % len(ordered)
        amounts[idx] = round_money(amounts[idx] + step)
        diff = round_money(diff - step)
        i += 1

    adjusted = tuple(
        replace(line, amount=amount) for line, amount in zip(ordered, amounts)
    )
    return ReconciliationResult(lines=adjusted, adjustments=i, residual=diff)
