"""
payment_config -- single public entrypoint for runtime settings.

Responsibility:
    ``get_active_settings()`` is the only way services obtain configuration.
    It loads ``defaults.yaml`` (or an explicitly supplied file) into a frozen
    ``KernelSettings`` and emits a PAYMENT_CONFIG_TRACE record.

Architecture position:
    Configuration -- sits above ``payment_kernel`` and below
    ``payment_services`` / ``payment_modules``.  The kernel never imports
    this package; ``payment_config.bridges`` builds kernel collaborators
    from settings.

Failure modes:
    - ``FileNotFoundError`` -- settings file missing.
    - ``yaml.YAMLError`` -- malformed YAML.
    - ``ValueError`` -- unknown keys or out-of-range values.

Audit relevance:
    The PAYMENT_CONFIG_TRACE record carries the checksum of the parsed
    document, tying reconciliation thresholds and fee bases in force at
    the time to an exact configuration.
"""

from __future__ import annotations

import logging
from pathlib import Path

from payment_config.loader import compute_checksum, load_settings, parse_settings
from payment_config.schema import (
    ArtifactSettings,
    ChainSettings,
    IngestionSettings,
    KernelSettings,
    MessagingSettings,
    ReconciliationSettings,
    RemittanceSettings,
    ServicerFeeBasis,
)

_logger = logging.getLogger("payment_kernel.config")

DEFAULT_SETTINGS_PATH = Path(__file__).parent / "defaults.yaml"


def get_active_settings(path: Path | str | None = None) -> KernelSettings:
    """
    Load and validate the active settings.

    Args:
        path: Settings file; defaults to ``payment_config/defaults.yaml``.

    Raises:
        FileNotFoundError: If the file does not exist.
        yaml.YAMLError: If the file is not valid YAML.
        ValueError: If the document has unknown keys or invalid values.
    """
    source = Path(path) if path is not None else DEFAULT_SETTINGS_PATH
    settings = load_settings(source)

    _logger.info(
        "PAYMENT_CONFIG_TRACE",
        extra={
            "trace_type": "PAYMENT_CONFIG_TRACE",
            "source": str(source),
            "checksum": settings.checksum,
            "variance_threshold_minor": settings.reconciliation.variance_threshold_minor,
            "servicer_fee_basis": settings.remittance.servicer_fee_basis.value,
            "max_retries": settings.messaging.max_retries,
        },
    )
    return settings


__all__ = [
    "ArtifactSettings",
    "ChainSettings",
    "DEFAULT_SETTINGS_PATH",
    "IngestionSettings",
    "KernelSettings",
    "MessagingSettings",
    "ReconciliationSettings",
    "RemittanceSettings",
    "ServicerFeeBasis",
    "compute_checksum",
    "get_active_settings",
    "load_settings",
    "parse_settings",
]
