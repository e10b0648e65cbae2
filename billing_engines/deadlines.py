"""
Module: billing_engines.deadlines
Responsibility:
    Legal deadlines around operating cost settlements (MRG §21) and the
    dunning ladder with statutory default interest (ABGB §1333).

Architecture position:
    Engines -- pure calculation layer, zero I/O.  "Today" is always an
    argument.

Invariants enforced:
    - The settlement for year Y is due by 30 June of Y+1; submission on
      the deadline itself is timely.
    - Claims from the settlement for year Y expire on 1 January of Y+4
      (three-year limitation after the deadline year).
    - Dunning levels are monotone in days overdue.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from billing_engines.tracer import traced_engine
from billing_kernel.domain.money import ZERO, MoneyLike, round_money, to_decimal

DEFAULT_DUNNING_THRESHOLDS = (14, 30, 45)
DEFAULT_INTEREST_RATE = Decimal("4")


@dataclass(frozen=True)
class DunningStep:
    level: int
    name: str
    fee: Decimal


DUNNING_STEPS: tuple[DunningStep, ...] = (
    DunningStep(0, "Offen", Decimal("0.00")),
    DunningStep(1, "Zahlungserinnerung", Decimal("0.00")),
    DunningStep(2, "1. Mahnung", Decimal("5.00")),
    DunningStep(3, "2. Mahnung", Decimal("10.00")),
)


@dataclass(frozen=True)
class DunningAssessment:
    """What is owed on an overdue invoice at a given day."""

    step: DunningStep
    days_overdue: int
    principal: Decimal
    interest: Decimal

    @property
    def total_due(self) -> Decimal:
        return round_money(self.principal + self.step.fee + self.interest)


def settlement_deadline(year: int) -> date:
    return date(year + 1, 6, 30)


def is_settlement_timely(year: int, submitted_on: date) -> bool:
    return submitted_on <= settlement_deadline(year)


def claim_expiry_date(settlement_year: int) -> date:
    return date(settlement_year + 4, 1, 1)


def is_claim_expired(settlement_year: int, on: date) -> bool:
    return on >= claim_expiry_date(settlement_year)


def dunning_level(
    days_overdue: int,
    thresholds: Sequence[int] = DEFAULT_DUNNING_THRESHOLDS,
) -> int:
    """Highest level whose threshold ``days_overdue`` has reached; 0 below the first."""
    level = 0
    for index, threshold in enumerate(thresholds, start=1):
        if days_overdue >= threshold:
            level = index
    return level


def default_interest(
    principal: MoneyLike,
    days_overdue: int,
    annual_rate: MoneyLike = DEFAULT_INTEREST_RATE,
) -> Decimal:
    """Simple statutory interest: ``principal * rate/365/100 * days``, rounded."""
    if days_overdue <= 0:
        return ZERO
    rate = to_decimal(annual_rate)
    return round_money(
        to_decimal(principal) * rate / Decimal("365") / Decimal("100") * Decimal(days_overdue)
    )


@traced_engine(
    "dunning",
    "1.0",
    fingerprint_fields=("principal", "due_date", "as_of", "thresholds", "annual_rate"),
)
def assess_dunning(
    principal: MoneyLike,
    due_date: date,
    as_of: date,
    *,
    thresholds: Sequence[int] = DEFAULT_DUNNING_THRESHOLDS,
    annual_rate: MoneyLike = DEFAULT_INTEREST_RATE,
) -> DunningAssessment:
    """
    Dunning step, fee and interest for an open amount.

    Interest accrues from the second reminder level on; a payment
    reminder (level 1) is free of fees and interest.
    """
    days = max(0, (as_of - due_date).days)
    level = dunning_level(days, thresholds)
    step = DUNNING_STEPS[min(level, len(DUNNING_STEPS) - 1)]
    interest = default_interest(principal, days, annual_rate) if level >= 2 else ZERO
    return DunningAssessment(
        step=step,
        days_overdue=days,
        principal=round_money(principal),
        interest=interest,
    )
