"""
KernelSettings schema.

Typed, frozen view of the YAML configuration.  The loader parses
``defaults.yaml`` (or an explicit override file) into these dataclasses;
``__post_init__`` rejects out-of-range values so a bad file fails at load
time rather than mid-payment.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from payment_modules.remittance.models import ServicerFeeBasis


@dataclass(frozen=True)
class ArtifactSettings:
    get_timeout_seconds: float = 5.0
    head_timeout_seconds: float = 3.0
    locator_hash_schemes: tuple[str, ...] = ("s3", "gs", "file")

    def __post_init__(self) -> None:
        if self.get_timeout_seconds <= 0:
            raise ValueError("artifacts.get_timeout_seconds must be > 0")
        if self.head_timeout_seconds <= 0:
            raise ValueError("artifacts.head_timeout_seconds must be > 0")


@dataclass(frozen=True)
class IngestionSettings:
    # Record PAYMENT.RECEIVED in the compliance chain on admission
    audit_accepted: bool = True


@dataclass(frozen=True)
class ChainSettings:
    # Walk the correlation chain after the intake pipeline appends to it
    verify_after_intake: bool = True


@dataclass(frozen=True)
class ReconciliationSettings:
    variance_threshold_minor: int = 0
    investor_payable_account: str = "2110"
    servicer_fee_income_account: str = "4020"

    def __post_init__(self) -> None:
        if self.variance_threshold_minor < 0:
            raise ValueError("reconciliation.variance_threshold_minor must be >= 0")
        if not self.investor_payable_account or not self.servicer_fee_income_account:
            raise ValueError("reconciliation account codes must be non-empty")


@dataclass(frozen=True)
class RemittanceSettings:
    servicer_fee_basis: ServicerFeeBasis = ServicerFeeBasis.COLLECTED
    require_balanced_reconciliation: bool = True
    default_export_format: str = "csv"

    def __post_init__(self) -> None:
        if self.default_export_format not in ("csv", "xml"):
            raise ValueError("remittance.default_export_format must be csv or xml")


@dataclass(frozen=True)
class MessagingSettings:
    max_retries: int = 3
    retry_base_delay_ms: int = 5000
    retry_max_delay_ms: int = 300_000
    retry_jitter_ratio: float = 0.3
    inbox_retention_days: int = 30
    dead_letter_domain: str = "payments"

    def __post_init__(self) -> None:
        if self.max_retries < 1:
            raise ValueError("messaging.max_retries must be >= 1")
        if self.retry_base_delay_ms <= 0:
            raise ValueError("messaging.retry_base_delay_ms must be > 0")
        if self.retry_max_delay_ms < self.retry_base_delay_ms:
            raise ValueError("messaging.retry_max_delay_ms must be >= retry_base_delay_ms")
        if not 0 <= self.retry_jitter_ratio <= 1:
            raise ValueError("messaging.retry_jitter_ratio must be within [0, 1]")
        if self.inbox_retention_days < 1:
            raise ValueError("messaging.inbox_retention_days must be >= 1")


@dataclass(frozen=True)
class KernelSettings:
    """Complete runtime configuration.  ``checksum`` identifies the source document."""

    artifacts: ArtifactSettings = field(default_factory=ArtifactSettings)
    ingestion: IngestionSettings = field(default_factory=IngestionSettings)
    chain: ChainSettings = field(default_factory=ChainSettings)
    reconciliation: ReconciliationSettings = field(default_factory=ReconciliationSettings)
    remittance: RemittanceSettings = field(default_factory=RemittanceSettings)
    messaging: MessagingSettings = field(default_factory=MessagingSettings)
    checksum: str = ""
