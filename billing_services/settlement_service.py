"""
SettlementService -- annual operating cost settlement (Betriebskostenabrechnung).

Responsibility:
    Turns a property's allocable expenses of one year into per-tenant
    settlement results: what each tenant owes (Soll), what the tenant
    prepaid through monthly invoices (Ist) and the difference.  The owner
    carries vacancy.

Architecture position:
    Services -- imperative shell.
    Composes the pure engines in this order:
        categorization -> distribution (heating split, water readings,
        area with vacancy rule) -> rounding reconciler per category ->
        pro-rata per unit by occupancy.
    ``persist`` writes the result as invoice lines through
    InvoiceLineService.

Invariants enforced:
    - Conservation: for every category, the tenant shares plus the owner
      share equal the category total to the cent (reconciler, then the
      exact pro-rata residual rule).
    - ``differenz = ist - soll``.  Positive means a credit for the tenant,
      negative an additional payment (Nachzahlung).
    - Only allocable expenses enter the settlement.
    - ``persist`` checks the December period of the settlement year before
      the first line is written.

Failure modes:
    - PeriodLockError: ``persist`` into a locked settlement period.
    - ValueError: no occupancies given and no OccupancyStore configured.
    - ValueError: heating consumption ratio outside [0, 1].

Audit relevance:
    ``settlement_calculated`` is logged with totals and the tenant count.
    Results built on estimated heating or provisional water consumption
    are flagged ``provisional`` at category, tenant and settlement level.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field, replace
from datetime import date
from decimal import Decimal

from billing_config import get_active_config
from billing_config.schema import EngineSettings
from billing_engines.categorization import ExpenseCategory, categorize_expense, vat_rate_for
from billing_engines.distribution import (
    DistributionKey,
    UnitBasis,
    WaterReading,
    distribute_water_costs,
    distribute_with_vacancy,
    split_heating_costs,
)
from billing_engines.prorata import occupancy_days, pro_rata_shares
from billing_engines.rounding import ReconcileLine, reconcile_rounding
from billing_kernel.domain.dtos import Expense, InvoiceLine, OccupancyPeriod
from billing_kernel.domain.money import ZERO, MoneyLike, round_money, sum_money
from billing_kernel.logging_config import LogContext, get_logger
from billing_kernel.stores.base import InvoiceLineStore, OccupancyStore
from billing_services.invoice_lines import InvoiceLineService, UpsertResult
from billing_services.period_lock import PeriodLockGuard

logger = get_logger("services.settlement")

WATER_KEYWORDS = ("wasser", "water")
WATER_CATEGORY = "wasser"
HEATING_KEY = "heizkg"
SETTLEMENT_MONTH = 12
# Part of the line idempotency key; independent of the sign of the balance.
SALDO_DESCRIPTION = "Saldo"


@dataclass(frozen=True)
class SettlementDetail:
    """One tenant's share of one cost category in one unit."""

    unit_id: str
    category: str
    distribution_key: str
    total_cost: Decimal
    share: Decimal
    provisional: bool = False


@dataclass(frozen=True)
class TenantSettlement:
    tenant_id: str
    unit_ids: tuple[str, ...]
    soll: Decimal
    ist: Decimal
    differenz: Decimal
    details: tuple[SettlementDetail, ...]

    @property
    def provisional(self) -> bool:
        return any(d.provisional for d in self.details)

    @property
    def is_credit(self) -> bool:
        return self.differenz > ZERO


@dataclass(frozen=True)
class SettlementResult:
    """
    Settlement of one property for one year.

    Guarantees:
        ``sum(t.soll for t in tenants) + owner_share == total_expenses``.
    """

    organization_id: str
    property_id: str
    year: int
    total_expenses: Decimal
    category_totals: dict[str, Decimal]
    tenants: tuple[TenantSettlement, ...]
    owner_share: Decimal
    owner_by_category: dict[str, Decimal] = field(default_factory=dict)

    @property
    def total_prepayments(self) -> Decimal:
        return sum_money(t.ist for t in self.tenants)

    @property
    def total_difference(self) -> Decimal:
        return sum_money(t.differenz for t in self.tenants)

    @property
    def provisional(self) -> bool:
        return any(t.provisional for t in self.tenants)

    def for_tenant(self, tenant_id: str) -> TenantSettlement | None:
        for tenant in self.tenants:
            if tenant.tenant_id == tenant_id:
                return tenant
        return None


@dataclass
class _CategoryAllocation:
    unit_amounts: dict[str, Decimal]
    owner_amount: Decimal
    distribution_key: str
    provisional_units: set[str] = field(default_factory=set)


def settlement_category(expense: Expense) -> str:
    """Settlement grouping of an expense: its category, water split out of BK."""
    category = categorize_expense(expense.category)
    if category is ExpenseCategory.BETRIEBSKOSTEN:
        text = f"{expense.category} {expense.description}".casefold()
        if any(keyword in text for keyword in WATER_KEYWORDS):
            return WATER_CATEGORY
    return category.value


class SettlementService:
    """
    Calculates and persists annual operating cost settlements.

    Non-goals:
        - Does NOT read expenses or prepayments from a database; callers
          pass them in.
        - Does NOT render the settlement letter.
    """

    def __init__(
        self,
        guard: PeriodLockGuard,
        line_store: InvoiceLineStore,
        occupancy_store: OccupancyStore | None = None,
        settings: EngineSettings | None = None,
    ):
        self._guard = guard
        self._lines = InvoiceLineService(line_store, guard)
        self._occupancies = occupancy_store
        self._settings = settings or get_active_config()

    def calculate(
        self,
        organization_id: str,
        property_id: str,
        year: int,
        expenses: Sequence[Expense],
        units: Sequence[UnitBasis],
        occupancies: Mapping[str, Sequence[OccupancyPeriod]] | None = None,
        prepayments: Mapping[str, MoneyLike] | None = None,
        *,
        water_readings: Sequence[WaterReading] = (),
        consumption_ratio: MoneyLike = None,
    ) -> SettlementResult:
        """
        Compute the settlement of ``property_id`` for ``year``.

        ``occupancies`` maps unit id to that unit's tenancy periods; when
        omitted they are read from the OccupancyStore.  ``prepayments``
        maps tenant id to the BK and heating prepayments of the year.
        ``consumption_ratio`` defaults to the configured heating ratio.
        """
        periods_by_unit = self._resolve_occupancies(units, occupancies)
        prepaid = {tenant: round_money(v) for tenant, v in (prepayments or {}).items()}
        ratio = (
            consumption_ratio
            if consumption_ratio is not None
            else self._settings.heating.default_consumption_ratio
        )

        window_start, window_end = date(year, 1, 1), date(year, 12, 31)
        effective_units = [
            replace(
                unit,
                occupied=unit.occupied
                and any(
                    occupancy_days(p.move_in, p.move_out, window_start, window_end) > 0
                    for p in periods_by_unit.get(unit.unit_id, ())
                ),
            )
            for unit in units
        ]

        category_totals: dict[str, Decimal] = {}
        for expense in expenses:
            if not expense.allocable:
                continue
            key = settlement_category(expense)
            category_totals[key] = round_money(category_totals.get(key, ZERO) + expense.amount)

        with LogContext.bind(organization_id=organization_id, property_id=property_id):
            tenant_details: dict[str, dict[tuple[str, str], SettlementDetail]] = {}
            tenant_units: dict[str, list[str]] = {}
            owner_by_category: dict[str, Decimal] = {}

            for category in sorted(category_totals):
                total = category_totals[category]
                allocation = self._allocate_category(
                    category, total, effective_units, water_readings, ratio
                )
                owner = allocation.owner_amount

                for unit in effective_units:
                    unit_amount = allocation.unit_amounts.get(unit.unit_id)
                    if unit_amount is None:
                        continue
                    if not unit.occupied:
                        owner = round_money(owner + unit_amount)
                        continue
                    prorata = pro_rata_shares(periods_by_unit.get(unit.unit_id, ()), unit_amount, year)
                    owner = round_money(owner + prorata.owner_share)
                    for share in prorata.tenant_shares:
                        by_key = tenant_details.setdefault(share.tenant_id, {})
                        previous = by_key.get((unit.unit_id, category))
                        if previous is not None:
                            # Re-letting to the same tenant in one year: one line per unit.
                            by_key[(unit.unit_id, category)] = replace(
                                previous, share=round_money(previous.share + share.amount)
                            )
                            continue
                        by_key[(unit.unit_id, category)] = SettlementDetail(
                            unit_id=unit.unit_id,
                            category=category,
                            distribution_key=allocation.distribution_key,
                            total_cost=total,
                            share=share.amount,
                            provisional=unit.unit_id in allocation.provisional_units,
                        )
                        units_of_tenant = tenant_units.setdefault(share.tenant_id, [])
                        if unit.unit_id not in units_of_tenant:
                            units_of_tenant.append(unit.unit_id)

                owner_by_category[category] = owner

            tenants: list[TenantSettlement] = []
            for tenant_id in sorted(set(tenant_details) | set(prepaid)):
                details = tuple(tenant_details.get(tenant_id, {}).values())
                soll = sum_money(d.share for d in details)
                ist = prepaid.get(tenant_id, ZERO)
                tenants.append(
                    TenantSettlement(
                        tenant_id=tenant_id,
                        unit_ids=tuple(tenant_units.get(tenant_id, ())),
                        soll=soll,
                        ist=ist,
                        differenz=round_money(ist - soll),
                        details=details,
                    )
                )

            result = SettlementResult(
                organization_id=organization_id,
                property_id=property_id,
                year=year,
                total_expenses=sum_money(category_totals.values()),
                category_totals=category_totals,
                tenants=tuple(tenants),
                owner_share=sum_money(owner_by_category.values()),
                owner_by_category=owner_by_category,
            )

            logger.info(
                "settlement_calculated",
                extra={
                    "year": year,
                    "total_expenses": str(result.total_expenses),
                    "total_prepayments": str(result.total_prepayments),
                    "owner_share": str(result.owner_share),
                    "tenant_count": len(tenants),
                    "provisional": result.provisional,
                },
            )
        return result

    def persist(
        self,
        result: SettlementResult,
        actor_id: str,
        run_id: str | None = None,
    ) -> UpsertResult:
        """
        Write the settlement as invoice lines, one invoice per tenant.

        Each detail becomes a line of type ``abrechnung_<category>``; the
        balance becomes a single ``abrechnung_saldo`` line whose
        ``meta["label"]`` reads "Guthaben" or "Nachzahlung".  Re-persisting the
        same settlement updates the lines in place.

        Raises:
            PeriodLockError: December of the settlement year is locked.
        """
        lines: list[InvoiceLine] = []
        for tenant in result.tenants:
            invoice_id = settlement_invoice_id(result.property_id, result.year, tenant.tenant_id)
            for detail in tenant.details:
                lines.append(
                    InvoiceLine(
                        invoice_id=invoice_id,
                        unit_id=detail.unit_id,
                        line_type=f"abrechnung_{detail.category}",
                        description=f"Anteil an {detail.category}",
                        amount=detail.share,
                        tax_rate=_settlement_vat(detail.category),
                        meta={
                            "distribution_key": detail.distribution_key,
                            "total_cost": str(detail.total_cost),
                            "provisional": detail.provisional,
                        },
                    )
                )
            lines.append(
                InvoiceLine(
                    invoice_id=invoice_id,
                    unit_id=tenant.unit_ids[0] if tenant.unit_ids else None,
                    line_type="abrechnung_saldo",
                    description=SALDO_DESCRIPTION,
                    amount=tenant.differenz,
                    meta={
                        "soll": str(tenant.soll),
                        "ist": str(tenant.ist),
                        "label": "Guthaben" if tenant.is_credit else "Nachzahlung",
                    },
                )
            )

        return self._lines.upsert_lines(
            result.organization_id,
            result.year,
            SETTLEMENT_MONTH,
            lines,
            actor_id=actor_id,
            run_id=run_id,
        )

    def _resolve_occupancies(
        self,
        units: Sequence[UnitBasis],
        occupancies: Mapping[str, Sequence[OccupancyPeriod]] | None,
    ) -> dict[str, Sequence[OccupancyPeriod]]:
        if occupancies is not None:
            return dict(occupancies)
        if self._occupancies is None:
            raise ValueError("occupancies must be given when no OccupancyStore is configured")
        return {unit.unit_id: self._occupancies.occupancies_for_unit(unit.unit_id) for unit in units}

    def _allocate_category(
        self,
        category: str,
        total: Decimal,
        units: Sequence[UnitBasis],
        water_readings: Sequence[WaterReading],
        consumption_ratio: MoneyLike,
    ) -> _CategoryAllocation:
        match category:
            case ExpenseCategory.HEIZUNG.value:
                shares = split_heating_costs(
                    total,
                    units,
                    consumption_ratio,
                    legal_band=self._settings.heating.legal_band,
                )
                allocation = _CategoryAllocation(
                    unit_amounts={uid: s.total for uid, s in shares.items()},
                    owner_amount=ZERO,
                    distribution_key=HEATING_KEY,
                    provisional_units={uid for uid, s in shares.items() if s.estimated},
                )
            case "wasser":
                water = distribute_water_costs(total, [u.unit_id for u in units], water_readings)
                allocation = _CategoryAllocation(
                    unit_amounts={uid: s.amount for uid, s in water.items()},
                    owner_amount=ZERO,
                    distribution_key=DistributionKey.CONSUMPTION.value,
                    provisional_units={uid for uid, s in water.items() if s.provisional},
                )
            case _:
                vacancy = distribute_with_vacancy(total, units)
                allocation = _CategoryAllocation(
                    unit_amounts=dict(vacancy.tenant_shares),
                    owner_amount=vacancy.owner_share,
                    distribution_key=DistributionKey.AREA.value,
                )

        if not allocation.unit_amounts:
            allocation.owner_amount = total
            return allocation

        expected = round_money(total - allocation.owner_amount)
        reconciled = reconcile_rounding(
            [
                ReconcileLine(unit_id=uid, line_type=category, amount=amount)
                for uid, amount in allocation.unit_amounts.items()
            ],
            expected,
            iteration_factor=self._settings.reconciliation.iteration_factor,
        )
        if reconciled.residual != ZERO:
            logger.warning(
                "settlement_rounding_residual",
                extra={"category": category, "residual": str(reconciled.residual)},
            )
            allocation.owner_amount = round_money(allocation.owner_amount + reconciled.residual)
        allocation.unit_amounts = {line.unit_id: line.amount for line in reconciled.lines}
        return allocation


def settlement_invoice_id(property_id: str, year: int, tenant_id: str) -> str:
    return f"BKA-{property_id}-{year}-{tenant_id}"


def _settlement_vat(category: str) -> Decimal:
    if category == WATER_CATEGORY:
        return vat_rate_for(ExpenseCategory.BETRIEBSKOSTEN)
    return vat_rate_for(ExpenseCategory(category))
