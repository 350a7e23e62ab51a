"""Services for the payment kernel (write side)."""

from payment_kernel.services.artifact_fetcher import ArtifactFetcher, HttpArtifactFetcher
from payment_kernel.services.artifact_store import (
    ArtifactInput,
    ArtifactStore,
    HashVerification,
    VerificationStatus,
)
from payment_kernel.services.compliance_audit import ComplianceAuditLog
from payment_kernel.services.hash_chain import ChainRebuild, ChainVerification, HashChainLog
from payment_kernel.services.ingestion_ledger import (
    IngestionLedger,
    IngestionRequest,
    IngestResult,
    IngestStatus,
)
from payment_kernel.services.payment_event_log import PaymentEventLog

__all__ = [
    "ArtifactFetcher",
    "ArtifactInput",
    "ArtifactStore",
    "ChainRebuild",
    "ChainVerification",
    "ComplianceAuditLog",
    "HashChainLog",
    "HashVerification",
    "HttpArtifactFetcher",
    "IngestResult",
    "IngestStatus",
    "IngestionLedger",
    "IngestionRequest",
    "PaymentEventLog",
    "VerificationStatus",
]
