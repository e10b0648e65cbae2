"""
Persistence ports for the billing services.

Services depend on these protocols only.  ``billing_kernel.stores.memory``
backs them with dictionaries for tests; ``billing_kernel.stores.sql``
backs them with SQLAlchemy records inside the caller's session.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from billing_kernel.domain.dtos import (
    BookingPeriod,
    Invoice,
    InvoiceLine,
    OccupancyPeriod,
    PeriodUnlockAudit,
)


@runtime_checkable
class PeriodLockStore(Protocol):
    """Booking period lookup and lock-state persistence."""

    def get_period(self, organization_id: str, year: int, month: int) -> BookingPeriod | None: ...

    def save_period(self, period: BookingPeriod) -> None: ...

    def record_unlock(self, audit: PeriodUnlockAudit) -> None: ...


@runtime_checkable
class InvoiceStore(Protocol):
    """Monthly invoices with their open bucket balances."""

    def get(self, invoice_id: str) -> Invoice | None: ...

    def save(self, invoice: Invoice) -> None: ...

    def open_invoices_for_tenant(self, tenant_id: str) -> list[Invoice]: ...


@runtime_checkable
class InvoiceLineStore(Protocol):
    """Invoice lines addressed by their idempotency key."""

    def get_by_key(self, key: tuple[str, str | None, str, str]) -> InvoiceLine | None: ...

    def save(self, line: InvoiceLine) -> None: ...

    def lines_for_invoice(self, invoice_id: str) -> list[InvoiceLine]: ...


@runtime_checkable
class OccupancyStore(Protocol):
    """Tenancy periods per unit."""

    def occupancies_for_unit(self, unit_id: str) -> list[OccupancyPeriod]: ...

    def add(self, period: OccupancyPeriod) -> None: ...
