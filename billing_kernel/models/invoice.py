"""
Module: billing_kernel.models.invoice
Responsibility: ORM persistence for monthly invoices (Vorschreibungen) and
    their lines.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - invoice_id is unique (uq_invoice_id).
    - Invoice lines are unique on (invoice_id, unit_id, line_type,
      normalized_description) (uq_invoice_line_key); generation re-runs
      update in place.
    - Bucket balances are non-negative (ck_invoice_buckets_non_negative).
"""

from decimal import Decimal

from sqlalchemy import JSON, CheckConstraint, Index, Numeric, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from billing_kernel.db.base import TrackedBase


class InvoiceRecord(TrackedBase):
    """Monthly invoice with open bucket balances and the amount paid so far."""

    __tablename__ = "invoices"

    __table_args__ = (
        UniqueConstraint("invoice_id", name="uq_invoice_id"),
        Index("idx_invoice_tenant", "tenant_id", "year", "month"),
        CheckConstraint(
            "betriebskosten >= 0 AND heizungskosten >= 0 AND grundmiete >= 0 "
            "AND wasserkosten >= 0",
            name="ck_invoice_buckets_non_negative",
        ),
    )

    invoice_id: Mapped[str] = mapped_column(String(64), nullable=False)
    organization_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    unit_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    year: Mapped[int] = mapped_column(nullable=False)
    month: Mapped[int] = mapped_column(nullable=False)
    betriebskosten: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    heizungskosten: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    grundmiete: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    wasserkosten: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    paid_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="offen")


class InvoiceLineRecord(TrackedBase):
    """One line of an invoice, addressed by its idempotency key."""

    __tablename__ = "invoice_lines"

    __table_args__ = (
        UniqueConstraint(
            "invoice_id",
            "unit_id",
            "line_type",
            "normalized_description",
            name="uq_invoice_line_key",
        ),
        Index("idx_invoice_line_invoice", "invoice_id"),
    )

    invoice_id: Mapped[str] = mapped_column(String(64), nullable=False)
    unit_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    line_type: Mapped[str] = mapped_column(String(50), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    normalized_description: Mapped[str] = mapped_column(Text, nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    tax_rate: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    meta: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
