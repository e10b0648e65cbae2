"""
SQLAlchemy store adapters.

Map between the immutable domain DTOs and the ORM records in
``billing_kernel.models``.  Every adapter works inside the session it was
given and only flushes; committing is the caller's decision
(``billing_kernel.db.engine.session_scope``).  No ORM record is returned to
callers.
"""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from billing_kernel.domain.dtos import (
    BookingPeriod,
    Invoice,
    InvoiceLine,
    OccupancyPeriod,
    PeriodUnlockAudit,
)
from billing_kernel.logging_config import get_logger
from billing_kernel.models import (
    BookingPeriodRecord,
    InvoiceLineRecord,
    InvoiceRecord,
    OccupancyRecord,
    PeriodUnlockRecord,
)

logger = get_logger("stores.sql")

SYSTEM_ACTOR = "system"


def _aware(value: datetime | None) -> datetime | None:
    # SQLite drops tzinfo on the way back; stored values are always UTC.
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


class SqlPeriodLockStore:
    def __init__(self, session: Session):
        self._session = session

    def _record(self, organization_id: str, year: int, month: int) -> BookingPeriodRecord | None:
        return self._session.execute(
            select(BookingPeriodRecord).where(
                BookingPeriodRecord.organization_id == organization_id,
                BookingPeriodRecord.year == year,
                BookingPeriodRecord.month == month,
            )
        ).scalar_one_or_none()

    def get_period(self, organization_id: str, year: int, month: int) -> BookingPeriod | None:
        record = self._record(organization_id, year, month)
        if record is None:
            return None
        return BookingPeriod(
            organization_id=record.organization_id,
            year=record.year,
            month=record.month,
            is_locked=record.is_locked,
            locked_by=record.locked_by,
            locked_at=_aware(record.locked_at),
        )

    def save_period(self, period: BookingPeriod) -> None:
        record = self._record(period.organization_id, period.year, period.month)
        actor = period.locked_by or SYSTEM_ACTOR
        if record is None:
            record = BookingPeriodRecord(
                organization_id=period.organization_id,
                year=period.year,
                month=period.month,
                created_by_id=actor,
            )
            self._session.add(record)
        else:
            record.updated_by_id = actor
        record.is_locked = period.is_locked
        record.locked_by = period.locked_by
        record.locked_at = period.locked_at
        self._session.flush()

    def record_unlock(self, audit: PeriodUnlockAudit) -> None:
        self._session.add(
            PeriodUnlockRecord(
                organization_id=audit.organization_id,
                year=audit.year,
                month=audit.month,
                actor_id=audit.actor_id,
                reason=audit.reason,
                unlocked_at=audit.unlocked_at,
                previously_locked_by=audit.previously_locked_by,
                previously_locked_at=audit.previously_locked_at,
            )
        )
        self._session.flush()


class SqlInvoiceStore:
    def __init__(self, session: Session, actor_id: str = SYSTEM_ACTOR):
        self._session = session
        self._actor_id = actor_id

    def _record(self, invoice_id: str) -> InvoiceRecord | None:
        return self._session.execute(
            select(InvoiceRecord).where(InvoiceRecord.invoice_id == invoice_id)
        ).scalar_one_or_none()

    @staticmethod
    def _to_dto(record: InvoiceRecord) -> Invoice:
        return Invoice(
            invoice_id=record.invoice_id,
            tenant_id=record.tenant_id,
            year=record.year,
            month=record.month,
            betriebskosten=record.betriebskosten,
            heizungskosten=record.heizungskosten,
            grundmiete=record.grundmiete,
            wasserkosten=record.wasserkosten,
            paid_amount=record.paid_amount,
            organization_id=record.organization_id,
            unit_id=record.unit_id,
        )

    def get(self, invoice_id: str) -> Invoice | None:
        record = self._record(invoice_id)
        return self._to_dto(record) if record is not None else None

    def save(self, invoice: Invoice) -> None:
        record = self._record(invoice.invoice_id)
        if record is None:
            record = InvoiceRecord(
                invoice_id=invoice.invoice_id,
                tenant_id=invoice.tenant_id,
                year=invoice.year,
                month=invoice.month,
                created_by_id=self._actor_id,
            )
            self._session.add(record)
        else:
            record.updated_by_id = self._actor_id
        record.organization_id = invoice.organization_id
        record.unit_id = invoice.unit_id
        record.betriebskosten = invoice.betriebskosten
        record.heizungskosten = invoice.heizungskosten
        record.grundmiete = invoice.grundmiete
        record.wasserkosten = invoice.wasserkosten
        record.paid_amount = invoice.paid_amount
        record.status = invoice.status.value
        self._session.flush()

    def open_invoices_for_tenant(self, tenant_id: str) -> list[Invoice]:
        records = self._session.execute(
            select(InvoiceRecord)
            .where(
                InvoiceRecord.tenant_id == tenant_id,
                InvoiceRecord.status != "bezahlt",
            )
            .order_by(InvoiceRecord.year, InvoiceRecord.month, InvoiceRecord.invoice_id)
        ).scalars()
        return [self._to_dto(record) for record in records]


class SqlInvoiceLineStore:
    def __init__(self, session: Session, actor_id: str = SYSTEM_ACTOR):
        self._session = session
        self._actor_id = actor_id

    def _record(self, key: tuple[str, str | None, str, str]) -> InvoiceLineRecord | None:
        invoice_id, unit_id, line_type, normalized = key
        unit_clause = (
            InvoiceLineRecord.unit_id.is_(None)
            if unit_id is None
            else InvoiceLineRecord.unit_id == unit_id
        )
        return self._session.execute(
            select(InvoiceLineRecord).where(
                InvoiceLineRecord.invoice_id == invoice_id,
                unit_clause,
                InvoiceLineRecord.line_type == line_type,
                InvoiceLineRecord.normalized_description == normalized,
            )
        ).scalar_one_or_none()

    @staticmethod
    def _to_dto(record: InvoiceLineRecord) -> InvoiceLine:
        return InvoiceLine(
            invoice_id=record.invoice_id,
            unit_id=record.unit_id,
            line_type=record.line_type,
            description=record.description,
            amount=record.amount,
            tax_rate=record.tax_rate,
            meta=dict(record.meta or {}),
        )

    def get_by_key(self, key: tuple[str, str | None, str, str]) -> InvoiceLine | None:
        record = self._record(key)
        return self._to_dto(record) if record is not None else None

    def save(self, line: InvoiceLine) -> None:
        record = self._record(line.idempotency_key)
        if record is None:
            record = InvoiceLineRecord(
                invoice_id=line.invoice_id,
                unit_id=line.unit_id,
                line_type=line.line_type,
                normalized_description=line.normalized_description,
                created_by_id=self._actor_id,
            )
            self._session.add(record)
        else:
            record.updated_by_id = self._actor_id
        record.description = line.description
        record.amount = line.amount
        record.tax_rate = line.tax_rate
        record.meta = dict(line.meta)
        self._session.flush()

    def lines_for_invoice(self, invoice_id: str) -> list[InvoiceLine]:
        records = self._session.execute(
            select(InvoiceLineRecord)
            .where(InvoiceLineRecord.invoice_id == invoice_id)
            .order_by(InvoiceLineRecord.line_type, InvoiceLineRecord.normalized_description)
        ).scalars()
        return [self._to_dto(record) for record in records]


class SqlOccupancyStore:
    def __init__(self, session: Session):
        self._session = session

    def occupancies_for_unit(self, unit_id: str) -> list[OccupancyPeriod]:
        records = self._session.execute(
            select(OccupancyRecord)
            .where(OccupancyRecord.unit_id == unit_id)
            .order_by(OccupancyRecord.move_in)
        ).scalars()
        return [
            OccupancyPeriod(
                tenant_id=record.tenant_id,
                move_in=record.move_in,
                move_out=record.move_out,
                unit_id=record.unit_id,
            )
            for record in records
        ]

    def add(self, period: OccupancyPeriod) -> None:
        if period.unit_id is None:
            raise ValueError("OccupancyPeriod.unit_id is required for storage")
        self._session.add(
            OccupancyRecord(
                unit_id=period.unit_id,
                tenant_id=period.tenant_id,
                move_in=period.move_in,
                move_out=period.move_out,
            )
        )
        self._session.flush()
        logger.debug(
            "occupancy_added",
            extra={"unit_id": period.unit_id, "tenant_id": period.tenant_id},
        )
