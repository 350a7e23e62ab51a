"""
Module: payment_kernel.models.ingestion
Responsibility: ORM persistence for the payment ingestion ledger -- one row
    per distinct inbound payment, keyed by its derived idempotency key.
Architecture position: Kernel > Models.  May import from db/base.py only.
Invariants enforced:
    - idempotency_key is UNIQUE: the database is the final arbiter when two
      deliveries of the same payment race.
    - Immutable after creation (ORM listener rejects UPDATE).
    - amount_minor is integer minor units.
Failure modes:
    - sqlalchemy IntegrityError on duplicate idempotency_key (handled by
      IngestionLedger as the concurrent-duplicate path).
    - ImmutabilityViolationError on any UPDATE attempt.
Audit relevance:
    The ingestion row is the first durable evidence that a payment arrived.
    raw_payload is kept verbatim (as canonical JSON) so payload_hash can be
    recomputed at any time.
"""

from datetime import date, datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import JSON, Date, DateTime, Index, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from payment_kernel.db.base import Base

if TYPE_CHECKING:
    from payment_kernel.models.artifact import PaymentArtifact


class PaymentIngestion(Base):
    """
    A single admitted payment.

    Contract:
        Created on first receipt, never mutated.  A second receipt with the
        same idempotency_key either returns this row (same payload_hash) or
        is a conflict (different payload_hash).

    Guarantees:
        - Deleting an ingestion deletes its artifacts (ORM cascade plus
          ON DELETE CASCADE); no orphan artifacts persist.
    """

    __tablename__ = "payment_ingestions"
    __table_args__ = (
        Index("idx_ingestion_loan", "loan_id"),
        Index("idx_ingestion_channel_ref", "channel", "source_reference"),
        Index("idx_ingestion_value_date", "value_date"),
    )

    idempotency_key: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        unique=True,
    )

    payload_hash: Mapped[str] = mapped_column(String(64), nullable=False)

    channel: Mapped[str] = mapped_column(String(30), nullable=False)
    source_reference: Mapped[str] = mapped_column(String(200), nullable=False)
    method: Mapped[str] = mapped_column(String(30), nullable=False)
    value_date: Mapped[date] = mapped_column(Date, nullable=False)
    amount_minor: Mapped[int] = mapped_column(nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    loan_id: Mapped[str] = mapped_column(String(64), nullable=False)

    raw_payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    normalized_envelope: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)

    correlation_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    received_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    artifacts: Mapped[list["PaymentArtifact"]] = relationship(
        back_populates="ingestion",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="PaymentArtifact.created_at",
    )

    def __repr__(self) -> str:
        return (
            f"<PaymentIngestion {self.id} {self.channel}:{self.source_reference} "
            f"{self.amount_minor} loan={self.loan_id}>"
        )
