"""
Module: payment_kernel.models.artifact
Responsibility: ORM persistence for source evidence attached to an ingestion
    (check images, wire receipts, lockbox scans).
Architecture position: Kernel > Models.  May import from db/base.py only.
Invariants enforced:
    - Every artifact belongs to exactly one ingestion; ON DELETE CASCADE.
    - hash_source records what content_hash actually covers.  A locator hash
      is never presented as a content hash.
Audit relevance:
    The stored hash is evidence.  Verification mismatches are flagged and
    audited, never corrected in place.
"""

from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any
from uuid import UUID

from sqlalchemy import JSON, DateTime, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from payment_kernel.db.base import Base, UUIDString

if TYPE_CHECKING:
    from payment_kernel.models.ingestion import PaymentIngestion


class HashSource(str, Enum):
    """What an artifact's content_hash was computed over."""

    CONTENT = "content"  # bytes fetched from the locator
    LOCATOR = "locator"  # the locator string; best effort only
    PROVIDED = "provided"  # supplied by the producer, believed to be content


class PaymentArtifact(Base):
    """Metadata and hash of one evidence document."""

    __tablename__ = "payment_artifacts"
    __table_args__ = (
        Index("idx_artifact_ingestion_type", "ingestion_id", "artifact_type"),
    )

    ingestion_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("payment_ingestions.id", ondelete="CASCADE"),
        nullable=False,
    )

    artifact_type: Mapped[str] = mapped_column(String(50), nullable=False)
    locator: Mapped[str] = mapped_column(String(1000), nullable=False)

    content_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    hash_source: Mapped[str] = mapped_column(String(10), nullable=False)

    size_bytes: Mapped[int | None] = mapped_column(nullable=True)
    mime_type: Mapped[str | None] = mapped_column(String(100), nullable=True)
    source_metadata: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)

    # None = not probed
    reachable: Mapped[bool | None] = mapped_column(nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    ingestion: Mapped["PaymentIngestion"] = relationship(back_populates="artifacts")

    @property
    def is_content_hash(self) -> bool:
        return self.hash_source != HashSource.LOCATOR.value

    def __repr__(self) -> str:
        return f"<PaymentArtifact {self.id} {self.artifact_type} {self.hash_source}>"
