"""
PaymentService -- books incoming tenant payments against invoices.

Responsibility:
    Loads the affected invoices, checks the booking period of the payment
    date, runs the pure allocation engines and persists the updated
    invoice balances.

Architecture position:
    Services -- imperative shell.
    Composes PeriodLockGuard, an InvoiceStore and
    ``billing_engines.payment_allocation``.

Invariants enforced:
    - The booking period of the payment date is open, and so is the
      period of every invoice the payment changes.  All checks run before
      the first invoice is saved; a rejected payment writes nothing.
    - Bucket order BK -> Wasser -> Heizung -> Miete per invoice; oldest
      invoice first across invoices.
    - Nothing beyond the open total is applied; the excess is reported
      as ``unapplied``.

Failure modes:
    - PeriodLockError: the payment date or a touched invoice falls into a
      locked period.
    - InvoiceNotFoundError: ``apply_payment`` with an unknown invoice id.
    - ValueError: negative payment amount.

Audit relevance:
    Each booked payment logs ``payment_applied`` with invoice, applied
    amount and resulting status.  Overpayments log ``payment_unapplied``
    at WARNING.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from billing_engines.payment_allocation import (
    FifoAllocationResult,
    PaymentAllocation,
    allocate_payment_fifo,
    allocate_payment_to_invoice,
)
from billing_kernel.domain.clock import Clock, SystemClock
from billing_kernel.domain.money import ZERO, MoneyLike, round_money
from billing_kernel.exceptions import InvoiceNotFoundError
from billing_kernel.logging_config import LogContext, get_logger
from billing_kernel.stores.base import InvoiceStore
from billing_services.period_lock import PeriodLockGuard

logger = get_logger("services.payment")


@dataclass(frozen=True)
class PaymentBooking:
    """Result of booking one payment."""

    booking_date: date
    amount: Decimal
    applied: Decimal
    unapplied: Decimal
    allocations: tuple[PaymentAllocation, ...]


class PaymentService:
    """
    Books payments against stored invoices.

    Non-goals:
        Does NOT create credit notes for ``unapplied`` amounts.  The caller
        decides how to book an overpayment.
    """

    def __init__(
        self,
        invoice_store: InvoiceStore,
        guard: PeriodLockGuard,
        clock: Clock | None = None,
    ):
        self._invoices = invoice_store
        self._guard = guard
        self._clock = clock or SystemClock()

    def apply_payment(
        self,
        organization_id: str,
        invoice_id: str,
        amount: MoneyLike,
        booking_date: date | None = None,
        *,
        include_water: bool = False,
    ) -> PaymentBooking:
        """
        Apply a payment to a single invoice.

        Raises:
            PeriodLockError: the booking date or the invoice period is locked.
            InvoiceNotFoundError: no invoice with ``invoice_id``.
        """
        booked_on = booking_date or self._clock.today()
        self._guard.assert_date_open(organization_id, booked_on)

        invoice = self._invoices.get(invoice_id)
        if invoice is None:
            raise InvoiceNotFoundError(invoice_id)
        self._guard.assert_period_open(organization_id, invoice.year, invoice.month)

        with LogContext.bind(organization_id=organization_id):
            allocation = allocate_payment_to_invoice(
                invoice, amount, include_water=include_water
            )
            self._invoices.save(allocation.updated_invoice)
            self._log_applied(allocation)

            payment = round_money(amount)
            unapplied = round_money(payment - allocation.total_allocated)
            if unapplied > ZERO:
                logger.warning(
                    "payment_unapplied",
                    extra={"invoice_id": invoice_id, "unapplied": str(unapplied)},
                )

        return PaymentBooking(
            booking_date=booked_on,
            amount=payment,
            applied=allocation.total_allocated,
            unapplied=unapplied,
            allocations=(allocation,),
        )

    def apply_tenant_payment(
        self,
        organization_id: str,
        tenant_id: str,
        amount: MoneyLike,
        booking_date: date | None = None,
    ) -> PaymentBooking:
        """
        Spread a payment over the tenant's open invoices, oldest first.

        Raises:
            PeriodLockError: the booking date is locked, or an invoice the
                payment would reach lies in a locked period.
        """
        booked_on = booking_date or self._clock.today()
        self._guard.assert_date_open(organization_id, booked_on)

        open_invoices = self._invoices.open_invoices_for_tenant(tenant_id)
        with LogContext.bind(organization_id=organization_id):
            result: FifoAllocationResult = allocate_payment_fifo(open_invoices, amount)
            for application in result.applications:
                invoice = application.allocation.updated_invoice
                self._guard.assert_period_open(organization_id, invoice.year, invoice.month)
            for application in result.applications:
                self._invoices.save(application.allocation.updated_invoice)
                self._log_applied(application.allocation)

            if result.unapplied > ZERO:
                logger.warning(
                    "payment_unapplied",
                    extra={"tenant_id": tenant_id, "unapplied": str(result.unapplied)},
                )

        return PaymentBooking(
            booking_date=booked_on,
            amount=result.payment_amount,
            applied=result.applied_total,
            unapplied=result.unapplied,
            allocations=tuple(a.allocation for a in result.applications),
        )

    @staticmethod
    def _log_applied(allocation: PaymentAllocation) -> None:
        logger.info(
            "payment_applied",
            extra={
                "invoice_id": allocation.invoice_id,
                "applied": str(allocation.total_allocated),
                "remaining_open": str(allocation.remaining_open),
                "status": allocation.status.value,
            },
        )
