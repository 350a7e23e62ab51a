"""
Module: payment_kernel.models.chain
Responsibility: Chained-record models -- the per-scope chain head, the
    per-correlation PaymentEvent journal, and the global compliance audit log.
Architecture position: Kernel > Models.  May import from db/base.py only.
Invariants enforced:
    - ChainHead.scope is UNIQUE: one serialization point per chain scope.
      Appenders lock it (SELECT ... FOR UPDATE) to read the tail and advance
      it in the same transaction.
    - (correlation_id, seq) UNIQUE on payment_events and seq UNIQUE on the
      compliance log: two appenders computing against the same tail cannot
      both commit.
    - Records are append-only (ORM listener rejects UPDATE and DELETE).
    - The store does not enforce prev_hash linkage as a constraint;
      continuity is verified by HashChainLog.verify_chain().
Audit relevance:
    These tables ARE the tamper-evident trail.  Every record's hash depends
    on its predecessor's, so any silent insertion or edit is detectable.
"""

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, DateTime, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from payment_kernel.db.base import Base, UUIDString


class ChainHead(Base):
    """Tail pointer of one chain scope."""

    __tablename__ = "chain_heads"

    scope: Mapped[str] = mapped_column(String(200), nullable=False, unique=True)
    seq: Mapped[int] = mapped_column(nullable=False, default=0)
    head_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)


class PaymentEvent(Base):
    """
    One state transition of a payment, chained per correlation id.

    event_hash = compute_chain_hash(prev_hash, data, correlation_id).
    """

    __tablename__ = "payment_events"
    __table_args__ = (
        UniqueConstraint("correlation_id", "seq", name="uq_payment_event_scope_seq"),
        Index("idx_payment_event_ingestion", "ingestion_id"),
        Index("idx_payment_event_payment", "payment_id"),
        Index("idx_payment_event_type", "event_type"),
    )

    correlation_id: Mapped[str] = mapped_column(String(100), nullable=False)
    seq: Mapped[int] = mapped_column(nullable=False)

    event_type: Mapped[str] = mapped_column(String(100), nullable=False)
    actor_type: Mapped[str] = mapped_column(String(10), nullable=False)
    actor_id: Mapped[str] = mapped_column(String(100), nullable=False)

    ingestion_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    payment_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    data: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)

    prev_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    event_hash: Mapped[str] = mapped_column(String(64), nullable=False)

    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def __repr__(self) -> str:
        return f"<PaymentEvent {self.correlation_id}#{self.seq} {self.event_type}>"


class ComplianceEventType(str, Enum):
    """Compliance taxonomy for the events this core records."""

    PAYMENT_RECEIVED = "PAYMENT.RECEIVED"
    PAYMENT_ALLOCATED = "PAYMENT.ALLOCATED"
    PAYMENT_CONFLICT = "PAYMENT.CONFLICT"

    ARTIFACT_STORED = "ARTIFACT.STORED"
    ARTIFACT_DELETED = "ARTIFACT.DELETED"
    ARTIFACT_HASH_MISMATCH = "ARTIFACT.HASH_MISMATCH"

    CONTRACT_CREATED = "REMITTANCE.CONTRACT_CREATED"
    CYCLE_CREATED = "REMITTANCE.CYCLE_CREATED"
    WATERFALL_CALCULATED = "REMITTANCE.WATERFALL_CALCULATED"
    CYCLE_LOCKED = "REMITTANCE.CYCLE_LOCKED"
    EXPORT_GENERATED = "REMITTANCE.EXPORT_GENERATED"
    CYCLE_REMITTED = "REMITTANCE.CYCLE_REMITTED"

    RECONCILIATION_PASSED = "RECONCILIATION.PASSED"
    RECONCILIATION_FAILED = "RECONCILIATION.FAILED"

    CHAIN_DISCONTINUITY = "COMPLIANCE.CHAIN_DISCONTINUITY"
    MESSAGE_DEAD_LETTERED = "SYSTEM.MESSAGE_DEAD_LETTERED"


class ComplianceAuditLogEntry(Base):
    """
    One record of the system-wide compliance chain.

    record_hash = compute_chain_hash(prev_hash, <record fields incl. payload_hash>,
    correlation_id); see ComplianceAuditLog.record_material().
    """

    __tablename__ = "compliance_audit_log"
    __table_args__ = (
        Index("idx_compliance_resource", "resource_type", "resource_id"),
        Index("idx_compliance_correlation", "correlation_id"),
        Index("idx_compliance_event_type", "event_type"),
    )

    seq: Mapped[int] = mapped_column(nullable=False, unique=True)

    correlation_id: Mapped[str] = mapped_column(String(100), nullable=False)
    actor_type: Mapped[str] = mapped_column(String(10), nullable=False)
    actor_id: Mapped[str] = mapped_column(String(100), nullable=False)

    event_type: Mapped[str] = mapped_column(String(100), nullable=False)
    resource_type: Mapped[str] = mapped_column(String(50), nullable=False)
    resource_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    payload_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    changed_fields: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    prev_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    record_hash: Mapped[str] = mapped_column(String(64), nullable=False)

    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def __repr__(self) -> str:
        return f"<ComplianceAuditLogEntry #{self.seq} {self.event_type} {self.resource_type}:{self.resource_id}>"
