"""
DunningService -- reminder levels, fees and interest for overdue rent.

Responsibility:
    Derives the due date of each monthly invoice from the configured due
    day and runs ``assess_dunning`` with the configured thresholds and
    statutory interest rate.  "Today" comes from the injected clock.

Architecture position:
    Services -- imperative shell over ``billing_engines.deadlines``.
    Read-only: it never writes invoices, so no period lock applies.

Failure modes:
    - InvoiceNotFoundError: ``assess_invoice`` with an unknown invoice id.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date

from billing_config import get_active_config
from billing_config.schema import EngineSettings
from billing_engines.deadlines import DunningAssessment, assess_dunning
from billing_kernel.domain.clock import Clock, SystemClock
from billing_kernel.domain.dtos import Invoice
from billing_kernel.exceptions import InvoiceNotFoundError
from billing_kernel.logging_config import get_logger
from billing_kernel.stores.base import InvoiceStore

logger = get_logger("services.dunning")


@dataclass(frozen=True)
class DunningNotice:
    invoice_id: str
    tenant_id: str
    due_date: date
    assessment: DunningAssessment

    @property
    def level(self) -> int:
        return self.assessment.step.level


class DunningService:
    def __init__(
        self,
        invoice_store: InvoiceStore,
        settings: EngineSettings | None = None,
        clock: Clock | None = None,
    ):
        self._invoices = invoice_store
        self._settings = settings or get_active_config()
        self._clock = clock or SystemClock()

    def due_date(self, invoice: Invoice) -> date:
        return date(invoice.year, invoice.month, self._settings.dunning.due_day)

    def assess_invoice(self, invoice_id: str, as_of: date | None = None) -> DunningNotice:
        invoice = self._invoices.get(invoice_id)
        if invoice is None:
            raise InvoiceNotFoundError(invoice_id)
        return self._assess(invoice, as_of or self._clock.today())

    def overdue_for_tenant(self, tenant_id: str, as_of: date | None = None) -> list[DunningNotice]:
        """Notices for every open invoice of the tenant past its due date, oldest first."""
        today = as_of or self._clock.today()
        invoices = sorted(
            self._invoices.open_invoices_for_tenant(tenant_id),
            key=lambda inv: (inv.year, inv.month, inv.invoice_id),
        )
        notices = [self._assess(invoice, today) for invoice in invoices]
        overdue = [n for n in notices if n.assessment.days_overdue > 0]
        logger.info(
            "dunning_assessed",
            extra={
                "tenant_id": tenant_id,
                "as_of": today.isoformat(),
                "overdue_count": len(overdue),
                "highest_level": max((n.level for n in overdue), default=0),
            },
        )
        return overdue

    def _assess(self, invoice: Invoice, as_of: date) -> DunningNotice:
        dunning = self._settings.dunning
        due = self.due_date(invoice)
        return DunningNotice(
            invoice_id=invoice.invoice_id,
            tenant_id=invoice.tenant_id,
            due_date=due,
            assessment=assess_dunning(
                invoice.gesamtbetrag,
                due,
                as_of,
                thresholds=dunning.thresholds,
                annual_rate=dunning.default_interest_rate,
            ),
        )
