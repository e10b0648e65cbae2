"""
billing_services -- Package init and public API.

Responsibility:
    Imperative shell around the pure engines.  This is the only layer that
    holds stores, reads the clock and loads engine settings.

Architecture position:
    Services -- orchestration over engines + kernel.

    Dependency direction (enforced by tests/architecture/test_layer_boundaries.py):
        billing_services/ -> billing_engines/  (allowed)
        billing_services/ -> billing_kernel/   (allowed)
        billing_services/ -> billing_config/   (allowed)
        billing_engines/  -> billing_services/ (FORBIDDEN)
        billing_kernel/   -> billing_services/ (FORBIDDEN)

Invariants enforced:
    - Every mutating operation passes PeriodLockGuard before its first
      write.
"""

from billing_services.dunning_service import DunningNotice, DunningService
from billing_services.invoice_lines import InvoiceLineService, UpsertResult
from billing_services.payment_service import PaymentBooking, PaymentService
from billing_services.period_lock import PeriodLockGuard, guarded
from billing_services.sepa_export import SepaExport, SepaExportService, SepaMandate
from billing_services.settlement_service import (
    SettlementDetail,
    SettlementResult,
    SettlementService,
    TenantSettlement,
)

__all__ = [
    "DunningNotice",
    "DunningService",
    "InvoiceLineService",
    "PaymentBooking",
    "PaymentService",
    "PeriodLockGuard",
    "SepaExport",
    "SepaExportService",
    "SepaMandate",
    "SettlementDetail",
    "SettlementResult",
    "SettlementService",
    "TenantSettlement",
    "UpsertResult",
    "guarded",
]
