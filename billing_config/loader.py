"""
Configuration Loader (``billing_config.loader``).

Responsibility
--------------
Loads the engine settings YAML document and parses it into the frozen
dataclasses of ``billing_config.schema``.  Runtime callers use
``billing_config.get_active_config()``; this module is its implementation.

Invariants enforced
-------------------
* Unknown keys are rejected.  A typo in a settings file must not silently
  fall back to a default.
* Values are range-checked (ratios in [0, 1], ascending dunning thresholds,
  positive field limits).
* ``compute_checksum`` is deterministic for identical documents.

Failure modes
-------------
* Missing file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``ConfigError`` wrapping ``yaml.YAMLError``.
* Unknown key, wrong type or out-of-range value  -> ``ConfigError``.
"""

from __future__ import annotations

import hashlib
import json
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from billing_config.schema import (
    DunningSettings,
    EngineSettings,
    HeatingSettings,
    ReconciliationSettings,
    SepaLimits,
    SepaSettings,
)
from billing_kernel.exceptions import ConfigError

_TOP_LEVEL_KEYS = frozenset(
    {"config_id", "version", "heating", "sepa", "dunning", "reconciliation"}
)


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        ConfigError: if the file is not valid YAML or not a mapping.
    """
    with open(path, encoding="utf-8") as f:
        try:
            data = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise ConfigError(f"Invalid YAML: {exc}", source=str(path)) from exc
    if not isinstance(data, dict):
        raise ConfigError("Settings document must be a mapping", source=str(path))
    return data


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def _section(data: dict[str, Any], name: str, allowed: set[str]) -> dict[str, Any]:
    section = data.get(name) or {}
    if not isinstance(section, dict):
        raise ConfigError(f"'{name}' must be a mapping")
    unknown = set(section) - allowed
    if unknown:
        raise ConfigError(f"Unknown key(s) in '{name}': {', '.join(sorted(unknown))}")
    return section


def _decimal(value: Any, field: str) -> Decimal:
    try:
        result = Decimal(str(value))
    except InvalidOperation as exc:
        raise ConfigError(f"'{field}' must be a number, got {value!r}") from exc
    if not result.is_finite():
        raise ConfigError(f"'{field}' must be finite, got {value!r}")
    return result


def _positive_int(value: Any, field: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ConfigError(f"'{field}' must be a positive integer, got {value!r}")
    return value


def parse_heating(data: dict[str, Any]) -> HeatingSettings:
    section = _section(data, "heating", {"default_consumption_ratio", "legal_band"})
    defaults = HeatingSettings()
    band = section.get("legal_band") or {}
    if not isinstance(band, dict) or set(band) - {"min", "max"}:
        raise ConfigError("'heating.legal_band' accepts only 'min' and 'max'")

    ratio = _decimal(
        section.get("default_consumption_ratio", defaults.default_consumption_ratio),
        "heating.default_consumption_ratio",
    )
    band_min = _decimal(band.get("min", defaults.band_min), "heating.legal_band.min")
    band_max = _decimal(band.get("max", defaults.band_max), "heating.legal_band.max")

    for name, value in (("default_consumption_ratio", ratio), ("legal_band.min", band_min),
                        ("legal_band.max", band_max)):
        if not Decimal("0") <= value <= Decimal("1"):
            raise ConfigError(f"'heating.{name}' must be within [0, 1], got {value}")
    if band_min > band_max:
        raise ConfigError("'heating.legal_band.min' must not exceed 'max'")

    return HeatingSettings(
        default_consumption_ratio=ratio,
        band_min=band_min,
        band_max=band_max,
    )


def parse_sepa(data: dict[str, Any]) -> SepaSettings:
    section = _section(
        data,
        "sepa",
        {"direct_debit_namespace", "credit_transfer_namespace", "local_instrument",
         "sequence_type", "limits"},
    )
    defaults = SepaSettings()
    limits = section.get("limits") or {}
    if not isinstance(limits, dict) or set(limits) - {"name", "identifier", "remittance"}:
        raise ConfigError("'sepa.limits' accepts only 'name', 'identifier' and 'remittance'")

    sequence_type = section.get("sequence_type", defaults.sequence_type)
    if sequence_type not in ("FRST", "RCUR", "OOFF", "FNAL"):
        raise ConfigError(f"'sepa.sequence_type' is not a SEPA sequence type: {sequence_type!r}")

    return SepaSettings(
        direct_debit_namespace=str(
            section.get("direct_debit_namespace", defaults.direct_debit_namespace)
        ),
        credit_transfer_namespace=str(
            section.get("credit_transfer_namespace", defaults.credit_transfer_namespace)
        ),
        local_instrument=str(section.get("local_instrument", defaults.local_instrument)),
        sequence_type=sequence_type,
        limits=SepaLimits(
            name=_positive_int(limits.get("name", defaults.limits.name), "sepa.limits.name"),
            identifier=_positive_int(
                limits.get("identifier", defaults.limits.identifier), "sepa.limits.identifier"
            ),
            remittance=_positive_int(
                limits.get("remittance", defaults.limits.remittance), "sepa.limits.remittance"
            ),
        ),
    )


def parse_dunning(data: dict[str, Any]) -> DunningSettings:
    section = _section(data, "dunning", {"thresholds", "default_interest_rate", "due_day"})
    defaults = DunningSettings()

    raw_thresholds = section.get("thresholds", list(defaults.thresholds))
    if not isinstance(raw_thresholds, list) or not raw_thresholds:
        raise ConfigError("'dunning.thresholds' must be a non-empty list")
    thresholds = tuple(_positive_int(t, "dunning.thresholds") for t in raw_thresholds)
    if list(thresholds) != sorted(set(thresholds)):
        raise ConfigError("'dunning.thresholds' must be strictly ascending")

    rate = _decimal(
        section.get("default_interest_rate", defaults.default_interest_rate),
        "dunning.default_interest_rate",
    )
    if rate < 0:
        raise ConfigError("'dunning.default_interest_rate' cannot be negative")

    due_day = _positive_int(section.get("due_day", defaults.due_day), "dunning.due_day")
    if due_day > 28:
        raise ConfigError(f"'dunning.due_day' must be within 1..28, got {due_day}")

    return DunningSettings(thresholds=thresholds, default_interest_rate=rate, due_day=due_day)


def parse_reconciliation(data: dict[str, Any]) -> ReconciliationSettings:
    section = _section(data, "reconciliation", {"iteration_factor"})
    factor = _positive_int(
        section.get("iteration_factor", ReconciliationSettings().iteration_factor),
        "reconciliation.iteration_factor",
    )
    return ReconciliationSettings(iteration_factor=factor)


def parse_settings(data: dict[str, Any]) -> EngineSettings:
    """
    Parse a complete settings document.

    Raises:
        ConfigError: on unknown keys, missing identity or invalid values.
    """
    unknown = set(data) - _TOP_LEVEL_KEYS
    if unknown:
        raise ConfigError(f"Unknown top-level key(s): {', '.join(sorted(unknown))}")
    if "config_id" not in data:
        raise ConfigError("'config_id' is required")

    return EngineSettings(
        config_id=str(data["config_id"]),
        version=_positive_int(data.get("version", 1), "version"),
        checksum=compute_checksum(data),
        heating=parse_heating(data),
        sepa=parse_sepa(data),
        dunning=parse_dunning(data),
        reconciliation=parse_reconciliation(data),
    )


def load_settings(path: Path) -> EngineSettings:
    """Load and parse a settings file, attaching its path to any ConfigError."""
    data = load_yaml_file(path)
    try:
        return parse_settings(data)
    except ConfigError as exc:
        if exc.source is None:
            raise ConfigError(str(exc), source=str(path)) from exc
        raise
