"""
Module: billing_kernel.models.occupancy
Responsibility: ORM persistence for tenancy periods (Mietverhältnisse) per unit.
Architecture position: Kernel > Models.  May import from db/base.py only.
"""

from datetime import date

from sqlalchemy import CheckConstraint, Date, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from billing_kernel.db.base import Base


class OccupancyRecord(Base):
    """A tenant's occupancy of a unit; an empty move_out means active."""

    __tablename__ = "occupancies"

    __table_args__ = (
        Index("idx_occupancy_unit", "unit_id"),
        CheckConstraint(
            "move_out IS NULL OR move_in <= move_out",
            name="ck_occupancy_dates",
        ),
    )

    unit_id: Mapped[str] = mapped_column(String(64), nullable=False)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    move_in: Mapped[date] = mapped_column(Date, nullable=False)
    move_out: Mapped[date | None] = mapped_column(Date, nullable=True)
