"""Persistence ports and their in-memory and SQLAlchemy adapters."""

from billing_kernel.stores.base import (
    InvoiceLineStore,
    InvoiceStore,
    OccupancyStore,
    PeriodLockStore,
)

__all__ = [
    "InvoiceLineStore",
    "InvoiceStore",
    "OccupancyStore",
    "PeriodLockStore",
]
