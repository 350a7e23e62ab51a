"""
Configuration Loader (``payment_config.loader``).

Responsibility
--------------
Reads a YAML settings document and parses it into the frozen
``payment_config.schema`` dataclasses.  Runtime callers go through
``payment_config.get_active_settings()``; this module is the parsing step
underneath it.

Invariants enforced
-------------------
* Unknown sections or keys raise ``ValueError``; a typo never silently
  falls back to a default.
* Sections may be omitted; omitted keys take the schema defaults.
* ``compute_checksum`` is a deterministic SHA-256 of the parsed document.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Out-of-range values  -> ``ValueError`` from the schema ``__post_init__``.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import fields
from pathlib import Path
from typing import Any

import yaml

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

_SECTIONS: dict[str, type] = {
    "artifacts": ArtifactSettings,
    "ingestion": IngestionSettings,
    "chain": ChainSettings,
    "reconciliation": ReconciliationSettings,
    "remittance": RemittanceSettings,
    "messaging": MessagingSettings,
}


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Settings document {path} must be a mapping, got {type(data).__name__}")
    return data


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def _parse_section(name: str, cls: type, raw: Any) -> Any:
    if raw is None:
        return cls()
    if not isinstance(raw, dict):
        raise ValueError(f"Settings section '{name}' must be a mapping")

    known = {f.name for f in fields(cls)}
    unknown = sorted(set(raw) - known)
    if unknown:
        raise ValueError(f"Unknown keys in settings section '{name}': {unknown}")

    values = dict(raw)
    if "locator_hash_schemes" in values:
        values["locator_hash_schemes"] = tuple(str(s).lower() for s in values["locator_hash_schemes"])
    if "servicer_fee_basis" in values:
        values["servicer_fee_basis"] = ServicerFeeBasis(values["servicer_fee_basis"])
    for account_key in ("investor_payable_account", "servicer_fee_income_account"):
        if account_key in values:
            values[account_key] = str(values[account_key])
    return cls(**values)


def parse_settings(data: dict[str, Any]) -> KernelSettings:
    unknown = sorted(set(data) - set(_SECTIONS))
    if unknown:
        raise ValueError(f"Unknown settings sections: {unknown}")

    sections = {name: _parse_section(name, cls, data.get(name)) for name, cls in _SECTIONS.items()}
    return KernelSettings(checksum=compute_checksum(data), **sections)


def load_settings(path: Path) -> KernelSettings:
    return parse_settings(load_yaml_file(path))
