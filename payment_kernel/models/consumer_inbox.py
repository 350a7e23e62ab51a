"""
Module: payment_kernel.models.consumer_inbox
Responsibility: Idempotent-consumer inbox -- one row per (consumer,
    message_id) successfully processed.
Invariants enforced:
    - (consumer, message_id) UNIQUE: a redelivered message finds its row and
      is acknowledged without re-running the handler.
"""

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from payment_kernel.db.base import Base


class ConsumerInboxRecord(Base):
    __tablename__ = "consumer_inbox"
    __table_args__ = (
        UniqueConstraint("consumer", "message_id", name="uq_consumer_inbox_message"),
        Index("idx_consumer_inbox_processed", "consumer", "processed_at"),
    )

    consumer: Mapped[str] = mapped_column(String(100), nullable=False)
    message_id: Mapped[str] = mapped_column(String(100), nullable=False)
    schema: Mapped[str] = mapped_column(String(100), nullable=False)
    result_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    result_data: Mapped[Any] = mapped_column(JSON, nullable=True)
    processed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
