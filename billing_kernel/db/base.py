"""
Module: billing_kernel.db.base
Responsibility: Declarative base for the billing tables.  Fixes the column
    types for money, timestamps and surrogate keys, the constraint naming
    scheme, and the actor columns every written record carries.
Architecture position: Kernel > DB.  Imported by models/ only; imports
    nothing from models/ or stores/.

Invariants enforced:
    - Money columns hold euro cents exactly: ``Money`` is Numeric(14, 2)
      and passes every value through ``round_money`` (HALF_UP) on the way
      in and out, so a store never sees 12.345 or a float.
    - Surrogate keys are uuid4.  Business keys (invoice_id, the line
      idempotency key, organization/year/month) are separate unique
      constraints on the model.
    - Timestamps are timezone-aware.
    - TrackedBase records which actor created and last changed a row.
"""

from datetime import datetime
from decimal import Decimal
from typing import ClassVar
from uuid import UUID, uuid4

from sqlalchemy import DateTime, MetaData, Numeric, String, Uuid, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

from billing_kernel.domain.money import round_money

NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}


class Money(TypeDecorator):
    """Euro amount stored as NUMERIC(14, 2), always cent-rounded."""

    impl = Numeric(14, 2)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return None if value is None else round_money(value)

    def process_result_value(self, value, dialect):
        return None if value is None else round_money(value)


class Base(DeclarativeBase):
    """
    Declarative base for all billing records.

    Annotating a column ``Mapped[Decimal]`` makes it a ``Money`` column;
    rates and other non-currency decimals declare their own Numeric.
    """

    metadata = MetaData(naming_convention=NAMING_CONVENTION)

    type_annotation_map: ClassVar[dict] = {
        Decimal: Money(),
        datetime: DateTime(timezone=True),
        UUID: Uuid(),
    }

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)


class TrackedBase(Base):
    """Row with server-side timestamps and the acting user of the last write."""

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(), onupdate=func.now(), nullable=False
    )
    created_by_id: Mapped[str] = mapped_column(String(64), nullable=False)
    updated_by_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
