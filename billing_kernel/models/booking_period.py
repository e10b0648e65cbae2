"""
Module: billing_kernel.models.booking_period
Responsibility: ORM persistence for monthly booking periods and the audit
    trail of privileged unlocks.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - At most one booking period per (organization_id, year, month)
      (uq_booking_period).
    - A missing row means the period is open; the lock guard never creates
      rows on read.

Audit relevance:
    ``locked_by`` / ``locked_at`` record who closed a month.  Every reopen
    leaves a PeriodUnlockRecord with actor, reason and the previous lock
    holder; unlock records are append-only.
"""

from datetime import datetime

from sqlalchemy import Boolean, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from billing_kernel.db.base import Base, TrackedBase


class BookingPeriodRecord(TrackedBase):
    """
    Accounting month of an organization.

    Contract:
        Once ``is_locked`` is true, no financial mutation dated inside the
        month is accepted.  Reopening requires a PeriodUnlockRecord.
    """

    __tablename__ = "booking_periods"

    __table_args__ = (
        UniqueConstraint("organization_id", "year", "month", name="uq_booking_period"),
        Index("idx_booking_period_org", "organization_id"),
    )

    organization_id: Mapped[str] = mapped_column(String(64), nullable=False)
    year: Mapped[int] = mapped_column(nullable=False)
    month: Mapped[int] = mapped_column(nullable=False)
    is_locked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    locked_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    locked_at: Mapped[datetime | None] = mapped_column(nullable=True)

    def __repr__(self) -> str:
        state = "locked" if self.is_locked else "open"
        return f"<BookingPeriodRecord {self.organization_id} {self.month}/{self.year} {state}>"


class PeriodUnlockRecord(Base):
    """Append-only audit of a reopened booking period."""

    __tablename__ = "period_unlocks"

    __table_args__ = (
        Index("idx_period_unlock_period", "organization_id", "year", "month"),
    )

    organization_id: Mapped[str] = mapped_column(String(64), nullable=False)
    year: Mapped[int] = mapped_column(nullable=False)
    month: Mapped[int] = mapped_column(nullable=False)
    actor_id: Mapped[str] = mapped_column(String(64), nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    unlocked_at: Mapped[datetime] = mapped_column(nullable=False)
    previously_locked_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    previously_locked_at: Mapped[datetime | None] = mapped_column(nullable=True)
