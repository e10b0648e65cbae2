"""
billing_config -- single public entrypoint for engine settings.

Responsibility:
    Provides ``get_active_config()``, the only way services obtain engine
    settings (heating band, SEPA namespaces and field limits, dunning
    thresholds, default interest, reconciler bound).

Architecture position:
    Configuration -- sits above ``billing_kernel`` and below
    ``billing_services``.  Neither the kernel nor the engines import from
    this package; services pass plain values into the engines.

Invariants enforced:
    - Path resolution order: explicit argument, ``BILLING_CONFIG_PATH``
      environment variable, packaged ``defaults.yaml``.
    - Unknown keys and out-of-range values are rejected with ConfigError.

Audit relevance:
    Every successful call emits a ``BILLING_CONFIG_TRACE`` log entry with
    config_id, version, checksum and source path, tying each calculation
    run to the exact settings that governed it.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from billing_config.loader import load_settings
from billing_config.schema import (
    DunningSettings,
    EngineSettings,
    HeatingSettings,
    ReconciliationSettings,
    SepaLimits,
    SepaSettings,
)

_logger = logging.getLogger("billing_kernel.config")

DEFAULT_CONFIG_PATH = Path(__file__).parent / "defaults.yaml"
CONFIG_PATH_ENV = "BILLING_CONFIG_PATH"


def resolve_config_path(path: Path | str | None = None) -> Path:
    if path is not None:
        return Path(path)
    env_path = os.environ.get(CONFIG_PATH_ENV)
    if env_path:
        return Path(env_path)
    return DEFAULT_CONFIG_PATH


def get_active_config(path: Path | str | None = None) -> EngineSettings:
    """The public configuration entrypoint.

    Non-goals:
        - No caching across calls; callers hold the returned settings for
          the duration of a run.

    Raises:
        FileNotFoundError: If the resolved file does not exist.
        ConfigError: If the document is malformed or fails validation.
    """
    source = resolve_config_path(path)
    settings = load_settings(source)

    _logger.info(
        "BILLING_CONFIG_TRACE",
        extra={
            "trace_type": "BILLING_CONFIG_TRACE",
            "config_id": settings.config_id,
            "config_version": settings.version,
            "checksum": settings.checksum,
            "source": str(source),
        },
    )
    return settings


__all__ = [
    "CONFIG_PATH_ENV",
    "DEFAULT_CONFIG_PATH",
    "DunningSettings",
    "EngineSettings",
    "HeatingSettings",
    "ReconciliationSettings",
    "SepaLimits",
    "SepaSettings",
    "get_active_config",
    "resolve_config_path",
]
