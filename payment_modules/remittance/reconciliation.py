"""
ReconciliationService -- remittance cycle versus general ledger.

Responsibility:
    Compare what a remittance cycle says is owed (investor share, servicer
    fee) with what the ledger actually moved on the investor-payable and
    servicer-fee-income accounts for the same cycle, persist the comparison
    as an immutable snapshot, and gate release of the cycle on it.

Architecture position:
    Modules > Remittance.  Reads the ledger through the LedgerReader
    abstraction; the variance arithmetic is the pure
    payment_engines.reconciliation.compute_variance.

Invariants enforced:
    - Open cycles are never reconciled (their totals may still change).
    - Every run persists a snapshot, balanced or not.  Snapshots are never
      updated; the highest run_number per cycle is authoritative.
    - Release is allowed only when the latest snapshot is balanced.

Failure modes:
    - CycleNotFoundError / CycleStateError before anything is written.
    - ReconciliationMissingError / ReconciliationVarianceError from
      assert_release_allowed().

Audit relevance:
    Every run writes RECONCILIATION.PASSED or RECONCILIATION.FAILED to the
    compliance chain.  Failures are logged at ERROR with all three signed
    differences.
"""

from abc import ABC, abstractmethod
from datetime import date
from uuid import UUID

from sqlalchemy import case, func, select
from sqlalchemy.orm import Session

from payment_engines.reconciliation import ReconciliationTotals, compute_variance
from payment_kernel.domain.actors import ActorType
from payment_kernel.domain.clock import Clock, SystemClock
from payment_kernel.exceptions import (
    CycleNotFoundError,
    CycleStateError,
    ReconciliationMissingError,
    ReconciliationVarianceError,
)
from payment_kernel.logging_config import get_logger
from payment_kernel.models.chain import ComplianceEventType
from payment_kernel.models.ledger_entry import EntryType, LedgerEntry
from payment_kernel.services.compliance_audit import ComplianceAuditLog
from payment_modules.remittance.models import CycleStatus
from payment_modules.remittance.orm import (
    ReconciliationSnapshot,
    RemittanceCycle,
    RemittanceItem,
)

logger = get_logger("modules.remittance.reconciliation")

# Chart-of-accounts defaults; overridable through ReconciliationSettings
INVESTOR_PAYABLE_ACCOUNT = "2110"
SERVICER_FEE_INCOME_ACCOUNT = "4020"

PASSED_NOTE = "Reconciliation passed - zero variance"
FAILED_NOTE = "RECONCILIATION FAILED - variance detected"


class LedgerReader(ABC):
    """Read access to the general ledger owned by another system."""

    @abstractmethod
    def net_credit(
        self,
        account_code: str,
        period_start: date,
        period_end: date,
        cycle_id: UUID,
    ) -> int:
        """
        Credits minus debits on ``account_code`` for entries effective
        within the period (inclusive) and tagged with ``cycle_id``.
        """
        ...


class SqlLedgerReader(LedgerReader):
    """LedgerReader over the ``ledger_entries`` table."""

    def __init__(self, session: Session):
        self._session = session

    def net_credit(
        self,
        account_code: str,
        period_start: date,
        period_end: date,
        cycle_id: UUID,
    ) -> int:
        signed = case(
            (func.lower(LedgerEntry.entry_type) == EntryType.CREDIT.value, LedgerEntry.amount_minor),
            else_=-LedgerEntry.amount_minor,
        )
        stmt = select(func.coalesce(func.sum(signed), 0)).where(
            LedgerEntry.account_code == account_code,
            LedgerEntry.effective_date >= period_start,
            LedgerEntry.effective_date <= period_end,
            LedgerEntry.entry_metadata["cycle_id"].as_string() == str(cycle_id),
        )
        return int(self._session.execute(stmt).scalar_one())


class ReconciliationService:
    """
    Point-in-time reconciliation of remittance cycles.

    Contract:
        generate_reconciliation() returns the persisted snapshot.

    Guarantees:
        - One new snapshot per call; earlier snapshots are untouched.

    Non-goals:
        - Does NOT commit.
        - Does NOT correct either side; a variance is for an operator to
          investigate.
    """

    def __init__(
        self,
        session: Session,
        ledger_reader: LedgerReader | None = None,
        variance_threshold_minor: int = 0,
        investor_payable_account: str = INVESTOR_PAYABLE_ACCOUNT,
        servicer_fee_income_account: str = SERVICER_FEE_INCOME_ACCOUNT,
        clock: Clock | None = None,
        audit_log: ComplianceAuditLog | None = None,
    ):
        self._session = session
        self._ledger = ledger_reader or SqlLedgerReader(session)
        self._threshold = variance_threshold_minor
        self._investor_account = investor_payable_account
        self._servicer_account = servicer_fee_income_account
        self._clock = clock or SystemClock()
        self._audit_log = audit_log or ComplianceAuditLog(session, self._clock)

    def _get_cycle(self, cycle_id: UUID) -> RemittanceCycle:
        cycle = self._session.get(RemittanceCycle, cycle_id)
        if cycle is None:
            raise CycleNotFoundError(str(cycle_id))
        return cycle

    def _remittance_totals(self, cycle_id: UUID) -> ReconciliationTotals:
        investor, servicer = self._session.execute(
            select(
                func.coalesce(func.sum(RemittanceItem.investor_share_minor), 0),
                func.coalesce(func.sum(RemittanceItem.servicer_fee_minor), 0),
            ).where(RemittanceItem.cycle_id == cycle_id)
        ).one()
        return ReconciliationTotals(investor_minor=int(investor), servicer_minor=int(servicer))

    def _ledger_totals(self, cycle: RemittanceCycle) -> ReconciliationTotals:
        return ReconciliationTotals(
            investor_minor=self._ledger.net_credit(
                self._investor_account, cycle.period_start, cycle.period_end, cycle.id
            ),
            servicer_minor=self._ledger.net_credit(
                self._servicer_account, cycle.period_start, cycle.period_end, cycle.id
            ),
        )

    def _next_run_number(self, cycle_id: UUID) -> int:
        current = self._session.execute(
            select(func.max(ReconciliationSnapshot.run_number)).where(
                ReconciliationSnapshot.cycle_id == cycle_id
            )
        ).scalar_one()
        return (current or 0) + 1

    def generate_reconciliation(
        self,
        cycle_id: UUID,
        user_id: str,
        actor_type: ActorType | str = ActorType.HUMAN,
    ) -> ReconciliationSnapshot:
        """
        Reconcile a locked (or later) cycle against the ledger.

        Raises:
            CycleNotFoundError: Unknown cycle.
            CycleStateError: Cycle is still open.
        """
        cycle = self._get_cycle(cycle_id)
        if cycle.status == CycleStatus.OPEN.value:
            raise CycleStateError(str(cycle_id), CycleStatus.LOCKED.value, cycle.status)

        report = compute_variance(
            self._remittance_totals(cycle.id),
            self._ledger_totals(cycle),
            threshold_minor=self._threshold,
        )

        snapshot = ReconciliationSnapshot(
            cycle_id=cycle.id,
            period_start=cycle.period_start,
            period_end=cycle.period_end,
            run_number=self._next_run_number(cycle.id),
            remit_investor_share_minor=report.remittance.investor_minor,
            remit_servicer_fee_minor=report.remittance.servicer_minor,
            remit_total_minor=report.remittance.total_minor,
            gl_investor_payable_minor=report.ledger.investor_minor,
            gl_servicer_income_minor=report.ledger.servicer_minor,
            gl_total_minor=report.ledger.total_minor,
            diff_investor_minor=report.diff_investor_minor,
            diff_servicer_minor=report.diff_servicer_minor,
            diff_total_minor=report.diff_total_minor,
            is_balanced=report.is_balanced,
            variance_threshold_minor=report.threshold_minor,
            reconciled_at=self._clock.now(),
            reconciled_by=user_id,
            notes=PASSED_NOTE if report.is_balanced else FAILED_NOTE,
        )
        self._session.add(snapshot)
        self._session.flush()

        log_fields = {
            "cycle_id": str(cycle.id),
            "snapshot_id": str(snapshot.id),
            "run_number": snapshot.run_number,
            "diff_investor_minor": report.diff_investor_minor,
            "diff_servicer_minor": report.diff_servicer_minor,
            "diff_total_minor": report.diff_total_minor,
        }
        if report.is_balanced:
            logger.info("reconciliation_passed", extra=log_fields)
            event_type = ComplianceEventType.RECONCILIATION_PASSED
        else:
            logger.error("reconciliation_failed", extra=log_fields)
            event_type = ComplianceEventType.RECONCILIATION_FAILED

        self._audit_log.log(
            event_type=event_type,
            resource_type="remittance_cycle",
            resource_id=cycle.id,
            actor_type=actor_type,
            actor_id=user_id,
            payload={
                "snapshot_id": str(snapshot.id),
                "run_number": snapshot.run_number,
                "remittance": {
                    "investor": report.remittance.investor_minor,
                    "servicer": report.remittance.servicer_minor,
                },
                "ledger": {
                    "investor": report.ledger.investor_minor,
                    "servicer": report.ledger.servicer_minor,
                },
                "differences": report.differences,
                "threshold_minor": report.threshold_minor,
            },
            description=snapshot.notes,
        )
        return snapshot

    # Queries

    def get_latest(self, cycle_id: UUID) -> ReconciliationSnapshot | None:
        return self._session.execute(
            select(ReconciliationSnapshot)
            .where(ReconciliationSnapshot.cycle_id == cycle_id)
            .order_by(ReconciliationSnapshot.run_number.desc())
            .limit(1)
        ).scalar_one_or_none()

    def get_history(self, cycle_id: UUID) -> list[ReconciliationSnapshot]:
        """All snapshots for the cycle, newest first."""
        return list(
            self._session.execute(
                select(ReconciliationSnapshot)
                .where(ReconciliationSnapshot.cycle_id == cycle_id)
                .order_by(ReconciliationSnapshot.run_number.desc())
            ).scalars().all()
        )

    def list_unbalanced(self) -> list[ReconciliationSnapshot]:
        return list(
            self._session.execute(
                select(ReconciliationSnapshot)
                .where(ReconciliationSnapshot.is_balanced.is_(False))
                .order_by(
                    ReconciliationSnapshot.reconciled_at.desc(),
                    ReconciliationSnapshot.run_number.desc(),
                )
            ).scalars().all()
        )

    def assert_release_allowed(self, cycle_id: UUID) -> ReconciliationSnapshot:
        """
        Raises:
            ReconciliationMissingError: The cycle was never reconciled.
            ReconciliationVarianceError: The latest snapshot is unbalanced.
        """
        latest = self.get_latest(cycle_id)
        if latest is None:
            raise ReconciliationMissingError(str(cycle_id))
        if not latest.is_balanced:
            logger.warning(
                "release_blocked_by_variance",
                extra={"cycle_id": str(cycle_id), "snapshot_id": str(latest.id)},
            )
            raise ReconciliationVarianceError(str(cycle_id), str(latest.id), latest.differences)
        return latest
