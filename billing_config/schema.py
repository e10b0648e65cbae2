"""
Engine settings schema.

Frozen dataclasses the YAML loader produces.  Services read these and pass
plain values into the pure engines; no engine imports ``billing_config``.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal


@dataclass(frozen=True)
class HeatingSettings:
    """HeizKG consumption/area split parameters."""

    default_consumption_ratio: Decimal = Decimal("0.70")
    band_min: Decimal = Decimal("0.55")
    band_max: Decimal = Decimal("0.75")

    @property
    def legal_band(self) -> tuple[Decimal, Decimal]:
        return (self.band_min, self.band_max)


@dataclass(frozen=True)
class SepaLimits:
    name: int = 70
    identifier: int = 35
    remittance: int = 140


@dataclass(frozen=True)
class SepaSettings:
    direct_debit_namespace: str = "urn:iso:std:iso:20022:tech:xsd:pain.008.001.02"
    credit_transfer_namespace: str = "urn:iso:std:iso:20022:tech:xsd:pain.001.001.03"
    local_instrument: str = "CORE"
    sequence_type: str = "RCUR"
    limits: SepaLimits = SepaLimits()


@dataclass(frozen=True)
class DunningSettings:
    """Reminder schedule.  ``due_day`` is the day of the month rent falls due."""

    thresholds: tuple[int, ...] = (14, 30, 45)
    default_interest_rate: Decimal = Decimal("4.00")
    due_day: int = 5


@dataclass(frozen=True)
class ReconciliationSettings:
    iteration_factor: int = 2


@dataclass(frozen=True)
class EngineSettings:
    """
    Complete engine configuration.

    ``checksum`` is the SHA-256 of the canonical JSON of the source
    document and identifies the configuration in traces.
    """

    config_id: str
    version: int
    checksum: str
    heating: HeatingSettings = HeatingSettings()
    sepa: SepaSettings = SepaSettings()
    dunning: DunningSettings = DunningSettings()
    reconciliation: ReconciliationSettings = ReconciliationSettings()
