"""
Data Transfer Objects -- immutable records crossing the engine boundary.

Responsibility:
    Frozen dataclasses for occupancy, invoices, invoice lines, booking
    periods and expenses.  Engines consume and return these; stores persist
    and rehydrate them.  No ORM entity ever leaves the persistence adapter.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
    Imports only ``billing_kernel.domain.money``.

Invariants enforced:
    - ``OccupancyPeriod``: ``move_in <= move_out`` when both are present.
    - ``BookingPeriod``: month in 1..12; a locked period carries
      ``locked_by`` and ``locked_at``.
    - ``Invoice``: bucket balances are non-negative and cent-rounded.
    - ``InvoiceLine``: the idempotency key is
      ``(invoice_id, unit_id, line_type, normalized_description)``.
"""

from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from decimal import Decimal
from enum import Enum

from billing_kernel.domain.money import ZERO, round_money

_ZERO_WIDTH = re.compile("[\u200b-\u200d\ufeff]")
_WHITESPACE = re.compile(r"\s+")


def normalize_description(raw: str | None) -> str:
    """
    Canonical form of a free-text line description.

    Zero-width characters removed, whitespace collapsed, lowercased and
    NFC-normalized.  Two descriptions that differ only in those respects
    map to the same invoice line on re-run.  Normalizing twice gives the
    same result as normalizing once.
    """
    if raw is None:
        return ""
    text = _ZERO_WIDTH.sub("", str(raw))
    text = _WHITESPACE.sub(" ", text).strip().lower()
    # Last, so that removed characters cannot leave a decomposed sequence.
    return unicodedata.normalize("NFC", text)


@dataclass(frozen=True)
class OccupancyPeriod:
    """
    One tenant's exclusive occupancy of a unit.

    ``move_out is None`` means the tenancy is still active.  Overlapping
    periods on the same unit are a caller error and are not detected here.
    """

    tenant_id: str
    move_in: date
    move_out: date | None = None
    unit_id: str | None = None

    def __post_init__(self) -> None:
        if self.move_out is not None and self.move_in > self.move_out:
            raise ValueError(
                f"move_in ({self.move_in}) cannot be after move_out ({self.move_out})"
            )


@dataclass(frozen=True)
class BookingPeriod:
    """
    Accounting month of an organization.

    Contract:
        Absence of a record means the period is open.  The only ordinary
        transition is unlocked -> locked; unlocking is a privileged
        administrative operation with its own audit record.
    """

    organization_id: str
    year: int
    month: int
    is_locked: bool = False
    locked_by: str | None = None
    locked_at: datetime | None = None

    def __post_init__(self) -> None:
        if not 1 <= self.month <= 12:
            raise ValueError(f"month must be between 1 and 12, got {self.month}")
        if self.is_locked and (self.locked_by is None or self.locked_at is None):
            raise ValueError("A locked booking period requires locked_by and locked_at")

    @property
    def key(self) -> tuple[str, int, int]:
        return (self.organization_id, self.year, self.month)

    def locked(self, actor_id: str, at: datetime) -> BookingPeriod:
        return replace(self, is_locked=True, locked_by=actor_id, locked_at=at)

    def unlocked(self) -> BookingPeriod:
        return replace(self, is_locked=False, locked_by=None, locked_at=None)


@dataclass(frozen=True)
class PeriodUnlockAudit:
    """Audit trail entry written whenever a locked period is reopened."""

    organization_id: str
    year: int
    month: int
    actor_id: str
    reason: str
    unlocked_at: datetime
    previously_locked_by: str | None = None
    previously_locked_at: datetime | None = None


class InvoiceStatus(str, Enum):
    """Payment status of a monthly invoice (Vorschreibung)."""

    OFFEN = "offen"
    TEILBEZAHLT = "teilbezahlt"
    BEZAHLT = "bezahlt"


@dataclass(frozen=True)
class Invoice:
    """
    Monthly rent invoice with independently tracked open sub-balances.

    The bucket fields hold what is still OPEN.  ``paid_amount`` accumulates
    what payment allocation has applied so far.
    """

    invoice_id: str
    tenant_id: str
    year: int
    month: int
    betriebskosten: Decimal = ZERO
    heizungskosten: Decimal = ZERO
    grundmiete: Decimal = ZERO
    wasserkosten: Decimal = ZERO
    paid_amount: Decimal = ZERO
    organization_id: str | None = None
    unit_id: str | None = None

    def __post_init__(self) -> None:
        for name in ("betriebskosten", "heizungskosten", "grundmiete", "wasserkosten", "paid_amount"):
            value = round_money(getattr(self, name))
            if value < ZERO:
                raise ValueError(f"{name} cannot be negative, got {value}")
            object.__setattr__(self, name, value)

    @property
    def gesamtbetrag(self) -> Decimal:
        """Total still open across all buckets."""
        return round_money(
            self.betriebskosten + self.heizungskosten + self.grundmiete + self.wasserkosten
        )

    @property
    def status(self) -> InvoiceStatus:
        if self.gesamtbetrag == ZERO:
            return InvoiceStatus.BEZAHLT
        if self.paid_amount > ZERO:
            return InvoiceStatus.TEILBEZAHLT
        return InvoiceStatus.OFFEN


@dataclass(frozen=True)
class InvoiceLine:
    """
    One line of a generated invoice.

    Uniquely keyed by ``(invoice_id, unit_id, line_type,
    normalized_description)``; re-running a generation batch upserts on
    that key instead of inserting duplicates.
    """

    invoice_id: str
    unit_id: str | None
    line_type: str
    description: str
    amount: Decimal
    tax_rate: Decimal = ZERO
    meta: dict = field(default_factory=dict, compare=False, hash=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "amount", round_money(self.amount))
        object.__setattr__(self, "tax_rate", Decimal(str(self.tax_rate)))

    @property
    def normalized_description(self) -> str:
        return normalize_description(self.description)

    @property
    def idempotency_key(self) -> tuple[str, str | None, str, str]:
        return (self.invoice_id, self.unit_id, self.line_type, self.normalized_description)


@dataclass(frozen=True)
class Expense:
    """A property expense booked for an operating cost settlement."""

    expense_id: str
    category: str
    amount: Decimal
    description: str = ""
    allocable: bool = True

    def __post_init__(self) -> None:
        object.__setattr__(self, "amount", round_money(self.amount))
