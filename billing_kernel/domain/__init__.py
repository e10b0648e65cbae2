"""
Pure domain layer.

This module contains value objects and the money rounding law with NO
dependencies on:
- ORM (SQLAlchemy)
- Database
- I/O

All domain objects are immutable and deterministic.
"""

from billing_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from billing_kernel.domain.dtos import (
    BookingPeriod,
    Expense,
    Invoice,
    InvoiceLine,
    InvoiceStatus,
    OccupancyPeriod,
    PeriodUnlockAudit,
    normalize_description,
)
from billing_kernel.domain.money import (
    CENT,
    ZERO,
    format_amount,
    round_money,
    sum_money,
    to_decimal,
)

__all__ = [
    "BookingPeriod",
    "CENT",
    "Clock",
    "DeterministicClock",
    "Expense",
    "Invoice",
    "InvoiceLine",
    "InvoiceStatus",
    "OccupancyPeriod",
    "PeriodUnlockAudit",
    "SystemClock",
    "ZERO",
    "format_amount",
    "normalize_description",
    "round_money",
    "sum_money",
    "to_decimal",
]
