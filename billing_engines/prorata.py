"""
Module: billing_engines.prorata
Responsibility:
    Split an annual cost across the tenants who occupied a unit during the
    year in proportion to the days each one occupied it; the owner carries
    the vacant days.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import billing_kernel.domain.

Invariants enforced:
    - Conservation: sum(tenant amounts) + owner_share == total_amount, to
      the cent.  The rounding residual goes entirely to the first tenant
      in input order, or to the owner when there are no tenants.
    - Occupancy days are inclusive at both ends and clamped to the year.
    - Vacant days are never negative.

Failure modes:
    - None for well-formed input.  Zero total days yields zero ratios.

Audit relevance:
    Tenant settlements (Betriebskostenabrechnung) after a mid-year change
    of tenancy are built from these shares; the conservation invariant
    guarantees that every cent of the annual cost is assigned.
"""

from __future__ import annotations

import calendar
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from billing_engines.tracer import traced_engine
from billing_kernel.domain.dtos import OccupancyPeriod
from billing_kernel.domain.money import ZERO, MoneyLike, round_money


@dataclass(frozen=True)
class TenantShare:
    tenant_id: str
    days: int
    ratio: Decimal
    amount: Decimal


@dataclass(frozen=True)
class ProRataResult:
    """
    Per-tenant shares of an annual amount.

    Guarantees:
        - ``sum(s.amount for s in tenant_shares) + owner_share`` equals the
          rounded input total.
    """

    tenant_shares: tuple[TenantShare, ...]
    owner_share: Decimal
    vacancy_days: int
    total_days: int

    @property
    def total_allocated(self) -> Decimal:
        return round_money(sum((s.amount for s in self.tenant_shares), ZERO) + self.owner_share)


def days_in_year(year: int) -> int:
    return 366 if calendar.isleap(year) else 365


def days_in_month(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


def occupancy_days(
    move_in: date,
    move_out: date | None,
    window_start: date,
    window_end: date,
) -> int:
    """
    Days of ``[move_in, move_out]`` that fall inside the window, both ends
    inclusive.  An open tenancy (``move_out is None``) runs to the window
    end.  Returns 0 when the ranges do not intersect.
    """
    start = max(move_in, window_start)
    end = min(move_out or window_end, window_end)
    if end < start:
        return 0
    return (end - start).days + 1


@traced_engine("prorata", "1.0", fingerprint_fields=("periods", "total_amount", "year"))
def pro_rata_shares(
    periods: Sequence[OccupancyPeriod],
    total_amount: MoneyLike,
    year: int,
) -> ProRataResult:
    """
    Distribute ``total_amount`` over the occupancy periods of one unit.

    Preconditions:
        Periods do not overlap each other.  Overlap is not detected; it
        inflates covered days and shrinks the owner's vacancy share.

    Postconditions:
        Conservation holds exactly (see module docstring).
    """
    total = round_money(total_amount)
    total_days = days_in_year(year)
    window_start = date(year, 1, 1)
    window_end = date(year, 12, 31)

    shares: list[TenantShare] = []
    covered = 0
    for period in periods:
        days = occupancy_days(period.move_in, period.move_out, window_start, window_end)
        covered += days
        ratio = Decimal(days) / Decimal(total_days) if total_days > 0 else Decimal("0")
        shares.append(
            TenantShare(
                tenant_id=period.tenant_id,
                days=days,
                ratio=ratio,
                amount=round_money(total * ratio),
            )
        )

    vacancy_days = max(0, total_days - covered)
    owner_share = (
        round_money(total * Decimal(vacancy_days) / Decimal(total_days))
        if total_days > 0
        else ZERO
    )

    residual = total - (sum((s.amount for s in shares), ZERO) + owner_share)
    if residual != ZERO:
        if shares:
            first = shares[0]
            shares[0] = TenantShare(
                tenant_id=first.tenant_id,
                days=first.days,
                ratio=first.ratio,
                amount=round_money(first.amount + residual),
            )
        else:
            owner_share = round_money(owner_share + residual)

    return ProRataResult(
        tenant_shares=tuple(shares),
        owner_share=owner_share,
        vacancy_days=vacancy_days,
        total_days=total_days,
    )


def monthly_pro_rata(
    move_in: date,
    move_out: date | None,
    year: int,
    month: int,
    monthly_amount: MoneyLike,
) -> Decimal:
    """Monthly charge for a tenancy that starts or ends inside the month."""
    amount = round_money(monthly_amount)
    month_days = days_in_month(year, month)
    days = occupancy_days(
        move_in, move_out, date(year, month, 1), date(year, month, month_days)
    )
    if days == 0:
        return ZERO
    if days == month_days:
        return amount
    return round_money(amount * Decimal(days) / Decimal(month_days))
