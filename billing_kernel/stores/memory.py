"""
In-memory store adapters.

Dictionary-backed implementations of the persistence ports.  Used by the
test suite and by callers that compute without a database.  Stored values
are frozen DTOs and are returned as is.
"""

from __future__ import annotations

from billing_kernel.domain.dtos import (
    BookingPeriod,
    Invoice,
    InvoiceLine,
    OccupancyPeriod,
    PeriodUnlockAudit,
)


class InMemoryPeriodLockStore:
    def __init__(self) -> None:
        self._periods: dict[tuple[str, int, int], BookingPeriod] = {}
        self.unlock_audits: list[PeriodUnlockAudit] = []

    def get_period(self, organization_id: str, year: int, month: int) -> BookingPeriod | None:
        return self._periods.get((organization_id, year, month))

    def save_period(self, period: BookingPeriod) -> None:
        self._periods[period.key] = period

    def record_unlock(self, audit: PeriodUnlockAudit) -> None:
        self.unlock_audits.append(audit)


class InMemoryInvoiceStore:
    def __init__(self, invoices: list[Invoice] | None = None) -> None:
        self._invoices: dict[str, Invoice] = {}
        for invoice in invoices or []:
            self.save(invoice)

    def get(self, invoice_id: str) -> Invoice | None:
        return self._invoices.get(invoice_id)

    def save(self, invoice: Invoice) -> None:
        self._invoices[invoice.invoice_id] = invoice

    def open_invoices_for_tenant(self, tenant_id: str) -> list[Invoice]:
        return [
            inv for inv in self._invoices.values()
            if inv.tenant_id == tenant_id and inv.gesamtbetrag > 0
        ]


class InMemoryInvoiceLineStore:
    def __init__(self) -> None:
        self._lines: dict[tuple[str, str | None, str, str], InvoiceLine] = {}

    def get_by_key(self, key: tuple[str, str | None, str, str]) -> InvoiceLine | None:
        return self._lines.get(key)

    def save(self, line: InvoiceLine) -> None:
        self._lines[line.idempotency_key] = line

    def lines_for_invoice(self, invoice_id: str) -> list[InvoiceLine]:
        return [line for line in self._lines.values() if line.invoice_id == invoice_id]

    def __len__(self) -> int:
        return len(self._lines)


class InMemoryOccupancyStore:
    def __init__(self) -> None:
        self._by_unit: dict[str, list[OccupancyPeriod]] = {}

    def occupancies_for_unit(self, unit_id: str) -> list[OccupancyPeriod]:
        return list(self._by_unit.get(unit_id, []))

    def add(self, period: OccupancyPeriod) -> None:
        if period.unit_id is None:
            raise ValueError("OccupancyPeriod.unit_id is required for storage")
        self._by_unit.setdefault(period.unit_id, []).append(period)
