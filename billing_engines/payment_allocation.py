"""
Module: billing_engines.payment_allocation
Responsibility:
    Apply an incoming tenant payment to the open sub-balances of a monthly
    invoice in statutory priority order (MRG), and spread a payment over a
    tenant's open invoices oldest first.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import billing_kernel.domain.

Invariants enforced:
    - Priority: Betriebskosten -> [Wasserkosten] -> Heizungskosten ->
      Grundmiete.  Operating costs are satisfied before rent.
    - Capping: total_allocated <= invoice.gesamtbetrag; excess on a single
      invoice is not tracked here.
    - Order independence: allocating p1 then p2 to the updated invoice
      yields the same buckets as allocating p1 + p2 once.
    - FIFO: invoices are served by (year, month, invoice_id); the payment
      left after the last open invoice is reported as ``unapplied``.

Failure modes:
    - ValueError on a negative payment amount.

Audit relevance:
    The per-bucket split decides which claim a payment extinguishes.  Rent
    arrears and operating-cost arrears have different legal consequences,
    so the split must be reproducible for every booking.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, replace
from decimal import Decimal
from enum import Enum

from billing_engines.tracer import traced_engine
from billing_kernel.domain.dtos import Invoice, InvoiceStatus
from billing_kernel.domain.money import ZERO, MoneyLike, round_money
from billing_kernel.logging_config import get_logger

logger = get_logger("engines.payment_allocation")


class AllocationBucket(str, Enum):
    """Invoice sub-balances, declared in allocation priority order."""

    BETRIEBSKOSTEN = "betriebskosten"
    WASSERKOSTEN = "wasserkosten"
    HEIZUNGSKOSTEN = "heizungskosten"
    GRUNDMIETE = "grundmiete"


@dataclass(frozen=True)
class PaymentAllocation:
    """
    Outcome of applying one payment to one invoice.

    Guarantees:
        - ``sum(allocations.values()) == total_allocated``.
        - ``remaining_open == updated_invoice.gesamtbetrag``.
    """

    invoice_id: str
    allocations: dict[AllocationBucket, Decimal]
    total_allocated: Decimal
    remaining_open: Decimal
    updated_invoice: Invoice
    status: InvoiceStatus

    def allocated(self, bucket: AllocationBucket) -> Decimal:
        return self.allocations.get(bucket, ZERO)


@dataclass(frozen=True)
class InvoiceApplication:
    invoice_id: str
    applied: Decimal
    allocation: PaymentAllocation

    @property
    def status(self) -> InvoiceStatus:
        return self.allocation.status


@dataclass(frozen=True)
class FifoAllocationResult:
    payment_amount: Decimal
    applications: tuple[InvoiceApplication, ...]
    applied_total: Decimal
    unapplied: Decimal


def _bucket_order(invoice: Invoice, include_water: bool) -> tuple[AllocationBucket, ...]:
    if include_water or invoice.wasserkosten > ZERO:
        return tuple(AllocationBucket)
    return tuple(b for b in AllocationBucket if b is not AllocationBucket.WASSERKOSTEN)


@traced_engine(
    "payment_allocation", "1.0", fingerprint_fields=("invoice", "payment_amount", "include_water")
)
def allocate_payment_to_invoice(
    invoice: Invoice,
    payment_amount: MoneyLike,
    *,
    include_water: bool = False,
) -> PaymentAllocation:
    """
    Apply ``payment_amount`` to the invoice buckets in priority order.

    Raises:
        ValueError: if ``payment_amount`` is negative.
    """
    amount = round_money(payment_amount)
    if amount < ZERO:
        raise ValueError(f"Payment amount cannot be negative, got {amount}")

    remaining = amount
    allocations: dict[AllocationBucket, Decimal] = {}
    updates: dict[str, Decimal] = {}
    for bucket in _bucket_order(invoice, include_water):
        open_amount = getattr(invoice, bucket.value)
        applied = min(remaining, open_amount)
        allocations[bucket] = applied
        updates[bucket.value] = round_money(open_amount - applied)
        remaining = round_money(remaining - applied)

    total_allocated = round_money(sum(allocations.values(), ZERO))
    updated = replace(
        invoice,
        paid_amount=round_money(invoice.paid_amount + total_allocated),
        **updates,
    )

    if remaining > ZERO:
        logger.debug(
            "payment_capped_at_invoice_total",
            extra={"invoice_id": invoice.invoice_id, "excess": str(remaining)},
        )

    return PaymentAllocation(
        invoice_id=invoice.invoice_id,
        allocations=allocations,
        total_allocated=total_allocated,
        remaining_open=updated.gesamtbetrag,
        updated_invoice=updated,
        status=updated.status,
    )


def allocate_payments_sequentially(
    invoice: Invoice,
    payments: Iterable[MoneyLike],
    *,
    include_water: bool = False,
) -> PaymentAllocation:
    """
    Fold several payments through the invoice.

    The returned allocation covers all payments combined; it equals
    ``allocate_payment_to_invoice(invoice, sum(payments))``.
    """
    current = invoice
    totals: dict[AllocationBucket, Decimal] = {}
    for payment in payments:
        step = allocate_payment_to_invoice(current, payment, include_water=include_water)
        for bucket, applied in step.allocations.items():
            totals[bucket] = round_money(totals.get(bucket, ZERO) + applied)
        current = step.updated_invoice

    for bucket in _bucket_order(invoice, include_water):
        totals.setdefault(bucket, ZERO)

    return PaymentAllocation(
        invoice_id=invoice.invoice_id,
        allocations={b: totals[b] for b in _bucket_order(invoice, include_water)},
        total_allocated=round_money(sum(totals.values(), ZERO)),
        remaining_open=current.gesamtbetrag,
        updated_invoice=current,
        status=current.status,
    )


@traced_engine("payment_fifo", "1.0", fingerprint_fields=("invoices", "payment_amount"))
def allocate_payment_fifo(
    invoices: Sequence[Invoice],
    payment_amount: MoneyLike,
) -> FifoAllocationResult:
    """
    Spread a tenant payment over open invoices, oldest first.

    Each touched invoice receives ``min(remaining, open)`` split across its
    buckets by ``allocate_payment_to_invoice``.  Fully paid invoices are
    skipped.  What is left after the last open invoice is returned as
    ``unapplied`` for the caller to book as a credit.

    Raises:
        ValueError: if ``payment_amount`` is negative.
    """
    amount = round_money(payment_amount)
    if amount < ZERO:
        raise ValueError(f"Payment amount cannot be negative, got {amount}")

    remaining = amount
    applications: list[InvoiceApplication] = []
    for invoice in sorted(invoices, key=lambda inv: (inv.year, inv.month, inv.invoice_id)):
        if remaining <= ZERO:
            break
        due = invoice.gesamtbetrag
        if due <= ZERO:
            continue
        apply = min(remaining, due)
        allocation = allocate_payment_to_invoice(invoice, apply)
        applications.append(
            InvoiceApplication(
                invoice_id=invoice.invoice_id,
                applied=allocation.total_allocated,
                allocation=allocation,
            )
        )
        remaining = round_money(remaining - allocation.total_allocated)

    applied_total = round_money(sum((a.applied for a in applications), ZERO))
    return FifoAllocationResult(
        payment_amount=amount,
        applications=tuple(applications),
        applied_total=applied_total,
        unapplied=remaining,
    )
