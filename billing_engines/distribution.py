"""
Module: billing_engines.distribution
Responsibility:
    Distribute property-level costs across units by a distribution key
    (Verteilungsschlüssel): floor area, ownership share (MEA), persons,
    metered consumption or equal per unit.  Includes the vacancy rule,
    the HeizKG consumption/area split for heating and the water-meter
    distribution with its provisional fallback.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import billing_kernel.domain and billing_kernel.logging_config.

Invariants enforced:
    - Each unit share is rounded independently with ``round_money``.
      This module does NOT reconcile rounding; callers that need exact
      totals pass the shares through ``billing_engines.rounding``.
    - Weights are non-negative; a zero weight sum yields an empty map.
    - Vacancy rule: the owner carries the vacant-area fraction of the
      total and only the remainder is distributed to occupied units.
    - Heating: consumption pool + area pool == total, to the cent.

Failure modes:
    - ValueError on negative weights.
    - ValueError on a heating consumption ratio outside [0, 1].
    - Ratios outside the configured HeizKG band are accepted but logged
      as a warning.

Audit relevance:
    These shares are the "Soll" side of every operating cost settlement.
    Provisional water shares are flagged so that a settlement built on
    estimated consumption is never mistaken for a metered one.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from billing_engines.tracer import traced_engine
from billing_kernel.domain.money import ZERO, MoneyLike, round_money, sum_money, to_decimal
from billing_kernel.logging_config import get_logger

logger = get_logger("engines.distribution")

DEFAULT_HEATING_BAND = (Decimal("0.55"), Decimal("0.75"))


class DistributionKey(str, Enum):
    """Distribution key for allocating a cost category across units."""

    AREA = "flaeche"  # Nutzfläche in m²
    MEA = "mea"  # Miteigentumsanteile (permille)
    PERSONS = "personen"
    CONSUMPTION = "verbrauch"
    UNITS = "einheiten"  # equal per unit


@dataclass(frozen=True)
class DistributionLine:
    unit_id: str
    value: Decimal


@dataclass(frozen=True)
class UnitBasis:
    """
    Distribution basis values of one unit.

    ``occupied`` drives the vacancy rule; all other fields are weights.
    ``consumption is None`` means the unit has no heat meter reading,
    which is not the same as a reading of zero.
    """

    unit_id: str
    area: Decimal = ZERO
    mea: Decimal = ZERO
    persons: Decimal = ZERO
    consumption: Decimal | None = None
    occupied: bool = True

    def weight(self, key: DistributionKey) -> Decimal:
        match key:
            case DistributionKey.AREA:
                return to_decimal(self.area)
            case DistributionKey.MEA:
                return to_decimal(self.mea)
            case DistributionKey.PERSONS:
                return to_decimal(self.persons)
            case DistributionKey.CONSUMPTION:
                return to_decimal(self.consumption)
            case DistributionKey.UNITS:
                return Decimal("1")
        raise ValueError(f"Unknown distribution key: {key}")


@dataclass(frozen=True)
class VacancyDistribution:
    tenant_shares: dict[str, Decimal]
    owner_share: Decimal
    vacant_area: Decimal
    occupied_area: Decimal


@dataclass(frozen=True)
class HeatingShare:
    """
    Heating cost share of one unit.

    ``estimated`` is set when the unit had no meter reading and paid its
    area fraction of the consumption pool instead (HeizKG §12 substitute
    distribution).  Metered units also count as estimated when all of
    them read zero and the remaining pool had to go by area.
    """

    consumption_share: Decimal
    area_share: Decimal
    total: Decimal
    estimated: bool = False


@dataclass(frozen=True)
class WaterReading:
    unit_id: str
    consumption: Decimal
    coefficient: Decimal = Decimal("1")


@dataclass(frozen=True)
class WaterShare:
    amount: Decimal
    provisional: bool


def _as_lines(lines: Sequence[DistributionLine] | Mapping[str, MoneyLike]) -> list[DistributionLine]:
    if isinstance(lines, Mapping):
        return [DistributionLine(unit_id, to_decimal(value)) for unit_id, value in lines.items()]
    return list(lines)


@traced_engine("distribution", "1.0", fingerprint_fields=("total_expense", "lines"))
def distribute_by_key(
    total_expense: MoneyLike,
    lines: Sequence[DistributionLine] | Mapping[str, MoneyLike],
) -> dict[str, Decimal]:
    """
    ``total * value / sum(values)`` per unit, each rounded independently.

    Returns an empty dict when there are no lines or every weight is zero.

    Raises:
        ValueError: if any weight is negative.
    """
    entries = _as_lines(lines)
    for line in entries:
        if to_decimal(line.value) < 0:
            raise ValueError(f"Negative distribution weight for unit {line.unit_id}: {line.value}")

    value_sum = sum((to_decimal(line.value) for line in entries), Decimal("0"))
    if value_sum == 0:
        return {}

    total = to_decimal(total_expense)
    return {
        line.unit_id: round_money(total * to_decimal(line.value) / value_sum)
        for line in entries
    }


def distribute(
    total: MoneyLike,
    units: Sequence[UnitBasis],
    key: DistributionKey,
) -> dict[str, Decimal]:
    """Distribute ``total`` over ``units`` weighted by ``key``."""
    return distribute_by_key(
        total, [DistributionLine(unit.unit_id, unit.weight(key)) for unit in units]
    )


@traced_engine("vacancy_distribution", "1.0", fingerprint_fields=("total", "units"))
def distribute_with_vacancy(
    total: MoneyLike,
    units: Sequence[UnitBasis],
) -> VacancyDistribution:
    """
    Apply the vacancy rule: the owner absorbs the vacant share of ``total``.

    ``owner_share = round(total * vacant_area / total_area)``; the pool
    ``total - owner_share`` is distributed over occupied units by area.
    Zero total area yields owner 0 and no tenant shares.
    """
    amount = round_money(total)
    occupied_area = sum((to_decimal(u.area) for u in units if u.occupied), Decimal("0"))
    vacant_area = sum((to_decimal(u.area) for u in units if not u.occupied), Decimal("0"))
    total_area = occupied_area + vacant_area

    if total_area <= 0:
        return VacancyDistribution({}, ZERO, vacant_area, occupied_area)

    owner_share = round_money(amount * vacant_area / total_area)
    pool = amount - owner_share
    tenant_shares = distribute_by_key(
        pool,
        [DistributionLine(u.unit_id, to_decimal(u.area)) for u in units if u.occupied],
    )
    if not tenant_shares:
        owner_share = amount

    return VacancyDistribution(
        tenant_shares=tenant_shares,
        owner_share=owner_share,
        vacant_area=vacant_area,
        occupied_area=occupied_area,
    )


@traced_engine(
    "heating_split",
    "1.0",
    fingerprint_fields=("total", "units", "consumption_ratio", "legal_band"),
)
def split_heating_costs(
    total: MoneyLike,
    units: Sequence[UnitBasis],
    consumption_ratio: MoneyLike,
    *,
    legal_band: tuple[Decimal, Decimal] = DEFAULT_HEATING_BAND,
) -> dict[str, HeatingShare]:
    """
    HeizKG split: ``round(total * ratio)`` by metered consumption, the rest
    by floor area.

    A unit without a reading takes its area fraction of the consumption
    pool, so its total is its area fraction of the whole amount.  What
    remains of the pool is split over the metered units by consumption.

    Raises:
        ValueError: if ``consumption_ratio`` is outside [0, 1].
    """
    ratio = to_decimal(consumption_ratio)
    if not Decimal("0") <= ratio <= Decimal("1"):
        raise ValueError(f"consumption_ratio must be within [0, 1], got {ratio}")

    band_min, band_max = legal_band
    if not band_min <= ratio <= band_max:
        logger.warning(
            "heating_ratio_outside_legal_band",
            extra={
                "consumption_ratio": str(ratio),
                "band_min": str(band_min),
                "band_max": str(band_max),
            },
        )

    amount = round_money(total)
    consumption_pool = round_money(amount * ratio)
    area_pool = amount - consumption_pool

    area_shares = distribute(area_pool, units, DistributionKey.AREA)

    metered = [unit for unit in units if unit.consumption is not None]
    estimated_ids = {unit.unit_id for unit in units if unit.consumption is None}
    consumption_shares: dict[str, Decimal] = {}
    if estimated_ids:
        # HeizKG §12: an unmetered unit pays its area fraction of the consumption pool.
        substitute = distribute(consumption_pool, units, DistributionKey.AREA)
        consumption_shares = {uid: substitute.get(uid, ZERO) for uid in estimated_ids}
        logger.warning(
            "heating_consumption_missing",
            extra={"unit_ids": sorted(estimated_ids), "consumption_pool": str(consumption_pool)},
        )

    metered_pool = round_money(consumption_pool - sum_money(consumption_shares.values()))
    metered_shares = distribute(metered_pool, metered, DistributionKey.CONSUMPTION)
    if metered and not metered_shares and metered_pool != ZERO:
        logger.warning(
            "heating_consumption_zero",
            extra={"unit_count": len(metered), "consumption_pool": str(metered_pool)},
        )
        metered_shares = distribute(metered_pool, metered, DistributionKey.AREA)
        estimated_ids.update(unit.unit_id for unit in metered)
    consumption_shares.update(metered_shares)

    result: dict[str, HeatingShare] = {}
    for unit in units:
        c_share = consumption_shares.get(unit.unit_id, ZERO)
        a_share = area_shares.get(unit.unit_id, ZERO)
        result[unit.unit_id] = HeatingShare(
            consumption_share=c_share,
            area_share=a_share,
            total=round_money(c_share + a_share),
            estimated=unit.unit_id in estimated_ids,
        )
    return result


@traced_engine("water_distribution", "1.0", fingerprint_fields=("total", "unit_ids", "readings"))
def distribute_water_costs(
    total: MoneyLike,
    unit_ids: Sequence[str],
    readings: Sequence[WaterReading],
) -> dict[str, WaterShare]:
    """
    Distribute water costs by coefficient-weighted meter readings.

    With no usable readings (building total 0) every unit pays an equal
    share and every share is provisional.  Units without readings in an
    otherwise metered building get a provisional zero share.
    """
    if not unit_ids:
        return {}

    amount = round_money(total)
    known = set(unit_ids)
    weighted: dict[str, Decimal] = {}
    for reading in readings:
        if reading.unit_id not in known:
            continue
        weight = to_decimal(reading.consumption) * to_decimal(reading.coefficient)
        weighted[reading.unit_id] = weighted.get(reading.unit_id, Decimal("0")) + weight

    building_total = sum(weighted.values(), Decimal("0"))
    if building_total > 0:
        result: dict[str, WaterShare] = {}
        for unit_id in unit_ids:
            if unit_id in weighted:
                result[unit_id] = WaterShare(
                    amount=round_money(amount * weighted[unit_id] / building_total),
                    provisional=False,
                )
            else:
                result[unit_id] = WaterShare(amount=ZERO, provisional=True)
        return result

    logger.info(
        "water_distribution_provisional",
        extra={"unit_count": len(unit_ids), "total": str(amount)},
    )
    per_unit = round_money(amount / len(unit_ids))
    return {unit_id: WaterShare(amount=per_unit, provisional=True) for unit_id in unit_ids}


def distribute_by_mea(
    amount: MoneyLike,
    owner_shares: Mapping[str, MoneyLike],
) -> dict[str, Decimal]:
    """
    WEG owner distribution by Miteigentumsanteil.

    Each owner's share is rounded independently and NOT reconciled; the
    sum may differ from ``amount`` by a few cents.
    """
    total_shares = sum((to_decimal(v) for v in owner_shares.values()), Decimal("0"))
    if total_shares == 0:
        return {}
    base = to_decimal(amount)
    return {
        owner_id: round_money(base * to_decimal(share) / total_shares)
        for owner_id, share in owner_shares.items()
    }
