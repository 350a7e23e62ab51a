"""ORM models for the payment kernel."""

from payment_kernel.models.artifact import HashSource, PaymentArtifact
from payment_kernel.models.chain import (
    ChainHead,
    ComplianceAuditLogEntry,
    ComplianceEventType,
    PaymentEvent,
)
from payment_kernel.models.consumer_inbox import ConsumerInboxRecord
from payment_kernel.models.ingestion import PaymentIngestion
from payment_kernel.models.ledger_entry import EntryType, LedgerEntry

__all__ = [
    "ChainHead",
    "ComplianceAuditLogEntry",
    "ComplianceEventType",
    "ConsumerInboxRecord",
    "EntryType",
    "HashSource",
    "LedgerEntry",
    "PaymentArtifact",
    "PaymentEvent",
    "PaymentIngestion",
]
