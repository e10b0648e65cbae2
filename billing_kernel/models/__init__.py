"""ORM records for the billing persistence adapter."""

from billing_kernel.models.booking_period import BookingPeriodRecord, PeriodUnlockRecord
from billing_kernel.models.invoice import InvoiceLineRecord, InvoiceRecord
from billing_kernel.models.occupancy import OccupancyRecord

__all__ = [
    "BookingPeriodRecord",
    "InvoiceLineRecord",
    "InvoiceRecord",
    "OccupancyRecord",
    "PeriodUnlockRecord",
]
