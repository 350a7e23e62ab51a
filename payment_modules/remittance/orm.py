"""
Remittance ORM Models (``payment_modules.remittance.orm``).

Responsibility
--------------
Persistence for investor contracts and their waterfall rules, remittance
cycles with their collections and per-loan items, generated export files,
and reconciliation snapshots.

Architecture position
---------------------
**Modules layer** -- persistence.  Imports from ``payment_kernel.db.base``.
MUST NOT be imported by ``payment_kernel``; the kernel discovers the
append-only models here through ``payment_modules._orm_registry``.

Invariants enforced
-------------------
* Contracts, rules, cycles, collections and items are operational records
  (TrackedBase).  Cycle status only moves through compare-and-set UPDATEs
  issued by RemittanceService.
* RemittanceExport and ReconciliationSnapshot are evidence (Base) and are
  protected by the immutability listeners.
* (cycle_id, loan_id) is UNIQUE on items: one split per loan per cycle.
"""

from datetime import date, datetime
from uuid import UUID

from sqlalchemy import Date, DateTime, ForeignKey, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from payment_kernel.db.base import Base, TrackedBase, UUIDString


# ---------------------------------------------------------------------------
# InvestorContract
# ---------------------------------------------------------------------------


class InvestorContract(TrackedBase):
    """
    Terms under which collections are remitted to one investor.

    Table: ``remittance_contracts``
    """

    __tablename__ = "remittance_contracts"
    __table_args__ = (
        Index("idx_remittance_contract_investor", "investor_id", "product_code"),
    )

    investor_id: Mapped[str] = mapped_column(String(100), nullable=False)
    product_code: Mapped[str] = mapped_column(String(50), nullable=False)
    method: Mapped[str] = mapped_column(String(50), nullable=False)
    remittance_day: Mapped[int] = mapped_column(nullable=False)
    cutoff_day: Mapped[int] = mapped_column(nullable=False)
    servicer_fee_bps: Mapped[int] = mapped_column(nullable=False)
    late_fee_split_bps: Mapped[int] = mapped_column(nullable=False)
    custodial_bank_account_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    rules: Mapped[list["WaterfallRule"]] = relationship(
        back_populates="contract",
        cascade="all, delete-orphan",
        order_by="WaterfallRule.rank",
    )

    def __repr__(self) -> str:
        return f"<InvestorContract {self.id} investor={self.investor_id} product={self.product_code}>"


class WaterfallRule(TrackedBase):
    """
    Table: ``remittance_waterfall_rules``
    """

    __tablename__ = "remittance_waterfall_rules"
    __table_args__ = (
        UniqueConstraint("contract_id", "rank", name="uq_waterfall_rule_rank"),
    )

    contract_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("remittance_contracts.id"), nullable=False
    )
    rank: Mapped[int] = mapped_column(nullable=False)
    bucket: Mapped[str] = mapped_column(String(20), nullable=False)
    cap_minor: Mapped[int | None] = mapped_column(nullable=True)

    contract: Mapped["InvestorContract"] = relationship(back_populates="rules")


# ---------------------------------------------------------------------------
# RemittanceCycle
# ---------------------------------------------------------------------------


class RemittanceCycle(TrackedBase):
    """
    A time-boxed aggregation of collections for one contract.

    Table: ``remittance_cycles``
    """

    __tablename__ = "remittance_cycles"
    __table_args__ = (
        Index("idx_remittance_cycle_contract_status", "contract_id", "status"),
        Index("idx_remittance_cycle_period", "period_start", "period_end"),
    )

    contract_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("remittance_contracts.id"), nullable=False
    )
    period_start: Mapped[date] = mapped_column(Date, nullable=False)
    period_end: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="open")

    total_principal_minor: Mapped[int] = mapped_column(nullable=False, default=0)
    total_interest_minor: Mapped[int] = mapped_column(nullable=False, default=0)
    total_fees_minor: Mapped[int] = mapped_column(nullable=False, default=0)
    servicer_fee_minor: Mapped[int] = mapped_column(nullable=False, default=0)
    retained_minor: Mapped[int] = mapped_column(nullable=False, default=0)
    investor_due_minor: Mapped[int] = mapped_column(nullable=False, default=0)

    locked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    file_generated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    remitted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    contract: Mapped["InvestorContract"] = relationship()
    items: Mapped[list["RemittanceItem"]] = relationship(
        back_populates="cycle",
        cascade="all, delete-orphan",
        order_by="RemittanceItem.loan_id",
    )

    def contains(self, day: date) -> bool:
        return self.period_start <= day <= self.period_end

    def __repr__(self) -> str:
        return (
            f"<RemittanceCycle {self.id} {self.period_start}..{self.period_end} "
            f"status={self.status}>"
        )


class LoanCollection(TrackedBase):
    """
    Money collected on a loan during a cycle, split into its components.

    Table: ``remittance_collections``
    """

    __tablename__ = "remittance_collections"
    __table_args__ = (
        Index("idx_remittance_collection_cycle_loan", "cycle_id", "loan_id"),
    )

    cycle_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("remittance_cycles.id"), nullable=False
    )
    loan_id: Mapped[str] = mapped_column(String(64), nullable=False)
    principal_minor: Mapped[int] = mapped_column(nullable=False, default=0)
    interest_minor: Mapped[int] = mapped_column(nullable=False, default=0)
    late_fees_minor: Mapped[int] = mapped_column(nullable=False, default=0)
    collected_on: Mapped[date] = mapped_column(Date, nullable=False)
    source_reference: Mapped[str | None] = mapped_column(String(200), nullable=True)


class RemittanceItem(TrackedBase):
    """
    Per-loan investor/servicer split.  The cycle totals are the sum of these.

    Table: ``remittance_items``
    """

    __tablename__ = "remittance_items"
    __table_args__ = (
        UniqueConstraint("cycle_id", "loan_id", name="uq_remittance_item_loan"),
    )

    cycle_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("remittance_cycles.id"), nullable=False
    )
    loan_id: Mapped[str] = mapped_column(String(64), nullable=False)
    principal_minor: Mapped[int] = mapped_column(nullable=False)
    interest_minor: Mapped[int] = mapped_column(nullable=False)
    fees_minor: Mapped[int] = mapped_column(nullable=False)
    investor_share_minor: Mapped[int] = mapped_column(nullable=False)
    servicer_fee_minor: Mapped[int] = mapped_column(nullable=False)
    retained_minor: Mapped[int] = mapped_column(nullable=False, default=0)

    cycle: Mapped["RemittanceCycle"] = relationship(back_populates="items")


# ---------------------------------------------------------------------------
# Evidence (append-only)
# ---------------------------------------------------------------------------


class RemittanceExport(Base):
    """
    A generated remittance file exactly as handed to the investor.

    Table: ``remittance_exports``
    """

    __tablename__ = "remittance_exports"
    __table_args__ = (Index("idx_remittance_export_cycle", "cycle_id"),)

    cycle_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("remittance_cycles.id"), nullable=False
    )
    export_format: Mapped[str] = mapped_column(String(10), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    content_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    byte_size: Mapped[int] = mapped_column(nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class ReconciliationSnapshot(Base):
    """
    Point-in-time comparison of a cycle's remittance totals with the ledger.

    Signed differences are ``ledger - remittance``.  Snapshots are never
    edited; a re-run appends a new one with the next ``run_number`` and
    the newest is authoritative.

    Table: ``reconciliation_snapshots``
    """

    __tablename__ = "reconciliation_snapshots"
    __table_args__ = (
        Index("idx_recon_snapshot_cycle", "cycle_id", "reconciled_at"),
        Index("idx_recon_snapshot_balanced", "is_balanced"),
        UniqueConstraint("cycle_id", "run_number", name="uq_recon_snapshot_run"),
    )

    cycle_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("remittance_cycles.id"), nullable=False
    )
    period_start: Mapped[date] = mapped_column(Date, nullable=False)
    period_end: Mapped[date] = mapped_column(Date, nullable=False)
    # 1-based per cycle; the highest run is authoritative
    run_number: Mapped[int] = mapped_column(nullable=False)

    remit_investor_share_minor: Mapped[int] = mapped_column(nullable=False)
    remit_servicer_fee_minor: Mapped[int] = mapped_column(nullable=False)
    remit_total_minor: Mapped[int] = mapped_column(nullable=False)

    gl_investor_payable_minor: Mapped[int] = mapped_column(nullable=False)
    gl_servicer_income_minor: Mapped[int] = mapped_column(nullable=False)
    gl_total_minor: Mapped[int] = mapped_column(nullable=False)

    diff_investor_minor: Mapped[int] = mapped_column(nullable=False)
    diff_servicer_minor: Mapped[int] = mapped_column(nullable=False)
    diff_total_minor: Mapped[int] = mapped_column(nullable=False)

    is_balanced: Mapped[bool] = mapped_column(nullable=False)
    variance_threshold_minor: Mapped[int] = mapped_column(nullable=False, default=0)
    reconciled_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    reconciled_by: Mapped[str] = mapped_column(String(100), nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    @property
    def differences(self) -> dict[str, int]:
        return {
            "investor": self.diff_investor_minor,
            "servicer": self.diff_servicer_minor,
            "total": self.diff_total_minor,
        }

    def __repr__(self) -> str:
        return f"<ReconciliationSnapshot {self.id} cycle={self.cycle_id} balanced={self.is_balanced}>"
