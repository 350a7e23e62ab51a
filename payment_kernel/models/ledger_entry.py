"""
Module: payment_kernel.models.ledger_entry
Responsibility: Read model of the external general ledger.
Architecture position: Kernel > Models.  The ledger is owned by another
    system; this core only reads it (SqlLedgerReader) to reconcile
    remittance cycles.  Nothing in this codebase writes ledger entries
    except test fixtures.
"""

from datetime import date
from enum import Enum
from typing import Any

from sqlalchemy import JSON, Date, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from payment_kernel.db.base import Base


class EntryType(str, Enum):
    DEBIT = "debit"
    CREDIT = "credit"


class LedgerEntry(Base):
    """One posted GL line.  ``entry_metadata`` carries ``cycle_id`` tags."""

    __tablename__ = "ledger_entries"
    __table_args__ = (
        Index("idx_ledger_account_date", "account_code", "effective_date"),
    )

    account_code: Mapped[str] = mapped_column(String(20), nullable=False)
    entry_type: Mapped[str] = mapped_column(String(6), nullable=False)
    amount_minor: Mapped[int] = mapped_column(nullable=False)
    effective_date: Mapped[date] = mapped_column(Date, nullable=False)
    description: Mapped[str | None] = mapped_column(String(500), nullable=True)

    # "metadata" is reserved on declarative classes
    entry_metadata: Mapped[dict[str, Any]] = mapped_column(
        "metadata", JSON, nullable=False, default=dict
    )
