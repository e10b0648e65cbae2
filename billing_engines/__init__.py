"""
Module: billing_engines
Responsibility:
    Package entrypoint that re-exports the public symbols of the pure
    calculation engines.  This is the import surface for billing_services
    and the scripts.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import billing_kernel (domain, exceptions, logging) and
    sibling engine modules.  MUST NOT import billing_services or
    billing_config.

Invariants enforced:
    - Purity: engines never read the clock.  Dates and timestamps are
      explicit parameters supplied by the services.
    - Decimal-only arithmetic routed through ``round_money``.
    - Determinism: identical inputs always produce identical outputs.

Audit relevance:
    Every engine invocation is traced via ``@traced_engine`` (see
    ``billing_engines.tracer``), emitting BILLING_ENGINE_TRACE records with
    engine name, version, input fingerprint and duration.
"""

from billing_engines.categorization import (
    CATEGORY_RULES,
    VAT_RATES,
    ExpenseCategory,
    categorize_expense,
    invoice_vat_rate,
    vat_from_gross,
    vat_rate_for,
)
from billing_engines.deadlines import (
    DunningAssessment,
    assess_dunning,
    claim_expiry_date,
    default_interest,
    dunning_level,
    is_claim_expired,
    is_settlement_timely,
    settlement_deadline,
)
from billing_engines.distribution import (
    DistributionKey,
    DistributionLine,
    HeatingShare,
    UnitBasis,
    VacancyDistribution,
    WaterReading,
    WaterShare,
    distribute,
    distribute_by_key,
    distribute_by_mea,
    distribute_water_costs,
    distribute_with_vacancy,
    split_heating_costs,
)
from billing_engines.payment_allocation import (
    AllocationBucket,
    FifoAllocationResult,
    InvoiceApplication,
    PaymentAllocation,
    allocate_payment_fifo,
    allocate_payment_to_invoice,
    allocate_payments_sequentially,
)
from billing_engines.prorata import (
    ProRataResult,
    TenantShare,
    days_in_month,
    days_in_year,
    monthly_pro_rata,
    occupancy_days,
    pro_rata_shares,
)
from billing_engines.rounding import ReconcileLine, ReconciliationResult, reconcile_rounding
from billing_engines.sepa import (
    FieldLimits,
    SepaAccount,
    SepaControlTotals,
    SepaCreditor,
    SepaDebtor,
    SepaTransfer,
    generate_credit_transfer_xml,
    generate_direct_debit_xml,
    iban_checksum_valid,
    parse_group_header,
    validate_batch,
    validate_creditor,
    validate_debtor,
)
from billing_engines.tracer import traced_engine

__all__ = [
    # Categorization
    "CATEGORY_RULES",
    "VAT_RATES",
    "ExpenseCategory",
    "categorize_expense",
    "invoice_vat_rate",
    "vat_from_gross",
    "vat_rate_for",
    # Deadlines and dunning
    "DunningAssessment",
    "assess_dunning",
    "claim_expiry_date",
    "default_interest",
    "dunning_level",
    "is_claim_expired",
    "is_settlement_timely",
    "settlement_deadline",
    # Distribution
    "DistributionKey",
    "DistributionLine",
    "HeatingShare",
    "UnitBasis",
    "VacancyDistribution",
    "WaterReading",
    "WaterShare",
    "distribute",
    "distribute_by_key",
    "distribute_by_mea",
    "distribute_water_costs",
    "distribute_with_vacancy",
    "split_heating_costs",
    # Payment allocation
    "AllocationBucket",
    "FifoAllocationResult",
    "InvoiceApplication",
    "PaymentAllocation",
    "allocate_payment_fifo",
    "allocate_payment_to_invoice",
    "allocate_payments_sequentially",
    # Pro-rata
    "ProRataResult",
    "TenantShare",
    "days_in_month",
    "days_in_year",
    "monthly_pro_rata",
    "occupancy_days",
    "pro_rata_shares",
    # Rounding
    "ReconcileLine",
    "ReconciliationResult",
    "reconcile_rounding",
    # SEPA
    "FieldLimits",
    "SepaAccount",
    "SepaControlTotals",
    "SepaCreditor",
    "SepaDebtor",
    "SepaTransfer",
    "generate_credit_transfer_xml",
    "generate_direct_debit_xml",
    "iban_checksum_valid",
    "parse_group_header",
    "validate_batch",
    "validate_creditor",
    "validate_debtor",
    # Tracing
    "traced_engine",
]
