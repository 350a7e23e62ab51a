"""
Remittance Service (``payment_modules.remittance.service``).

Responsibility
--------------
Runs investor remittance: contract setup, cycle creation, collection
recording, the per-loan investor/servicer split, the cycle state machine
``open -> locked -> file_generated -> remitted`` and export generation.

Architecture position
---------------------
**Modules layer** -- imperative shell.  The split itself is the pure
``split_loan()`` below, which nets the servicer fee through the
``payment_engines`` WaterfallAllocator.  Release steps (export, remitted)
are gated by ``ReconciliationService.assert_release_allowed``.

Invariants enforced
-------------------
* Status transitions are compare-and-set UPDATEs
  (``WHERE status = <expected>``).  Zero rows updated means the cycle was
  not in the expected status, or another writer won; either way
  CycleStateError and nothing else is written.
* Collections are recorded and waterfalls calculated only while open.
* Per loan: ``investor_share + servicer_fee + retained == collected``.
  Cycle totals are the sums of the items.
* Integer minor units throughout; fees use floor division.

Failure modes
-------------
* ContractNotFoundError, CycleNotFoundError.
* CycleStateError on a transition from the wrong status or a lost race.
* InvalidCollectionError for negative amounts or dates outside the period.
* ReconciliationMissingError / ReconciliationVarianceError when a release
  step runs without a balanced reconciliation.
* InvalidExportFormatError for formats other than csv/xml.

Audit relevance
---------------
Contract creation, cycle creation, waterfall calculation, and every status
transition write a REMITTANCE.* entry to the compliance chain.  Exports are
persisted with their SHA-256 and never modified.
"""

import calendar
from collections.abc import Iterable, Mapping, Sequence
from datetime import date, timedelta
from typing import Any
from uuid import UUID

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session

from payment_engines.waterfall import ObligationBucket, WaterfallAllocator
from payment_kernel.domain.actors import SYSTEM_ACTOR_ID, ActorType
from payment_kernel.domain.clock import Clock, SystemClock
from payment_kernel.exceptions import (
    ContractNotFoundError,
    CycleNotFoundError,
    CycleStateError,
    InvalidCollectionError,
)
from payment_kernel.logging_config import LogContext, get_logger
from payment_kernel.models.chain import ComplianceEventType
from payment_kernel.services.compliance_audit import ComplianceAuditLog
from payment_kernel.utils.hashing import sha256_hex
from payment_modules.remittance.export import render
from payment_modules.remittance.models import (
    ContractTerms,
    CycleStatus,
    ExportFormat,
    LoanCollectionTotals,
    LoanRemittance,
    RemittanceMethod,
    RemittanceReport,
    RuleBucket,
    ServicerFeeBasis,
    WaterfallCalculation,
    WaterfallRuleSpec,
)
from payment_modules.remittance.orm import (
    InvestorContract,
    LoanCollection,
    RemittanceCycle,
    RemittanceExport,
    RemittanceItem,
    WaterfallRule,
)
from payment_modules.remittance.reconciliation import ReconciliationService

logger = get_logger("modules.remittance.service")

BPS_DENOMINATOR = 10000

# Status that must hold before each transition, and the status it moves to
_TRANSITIONS: dict[CycleStatus, CycleStatus] = {
    CycleStatus.OPEN: CycleStatus.LOCKED,
    CycleStatus.LOCKED: CycleStatus.FILE_GENERATED,
    CycleStatus.FILE_GENERATED: CycleStatus.REMITTED,
}

_fee_netting = WaterfallAllocator()


# =============================================================================
# Per-loan split
# =============================================================================


def split_loan(
    totals: LoanCollectionTotals,
    rules: Sequence[WaterfallRuleSpec],
    servicer_fee_bps: int,
    late_fee_split_bps: int,
    fee_basis: ServicerFeeBasis = ServicerFeeBasis.COLLECTED,
) -> LoanRemittance:
    """
    Split one loan's collections between investor, servicer and retained.

    1. Servicer fee = basis * servicer_fee_bps // 10000, where the basis is
       everything collected (default) or interest collected only.
    2. With a late_fees rule, late fees are split: the investor gets
       late_fees * late_fee_split_bps // 10000, the servicer the rest.
    3. The servicer fee is netted from the ruled investor buckets in rank
       order; anything the buckets cannot absorb comes out of unruled
       collections.
    4. A rule's cap limits the investor's net amount for that bucket; the
       excess is retained.  Collections with no rule are retained too.
    """
    ordered = sorted(rules, key=lambda r: r.rank)
    ruled = {r.bucket for r in ordered}
    collected = totals.total_minor

    if RuleBucket.LATE_FEES in ruled:
        investor_late = totals.late_fees_minor * late_fee_split_bps // BPS_DENOMINATOR
        servicer_late = totals.late_fees_minor - investor_late
    else:
        investor_late = 0
        servicer_late = 0

    collected_by_bucket = {
        RuleBucket.INTEREST: totals.interest_minor,
        RuleBucket.PRINCIPAL: totals.principal_minor,
        RuleBucket.LATE_FEES: investor_late,
    }
    gross = {r.bucket: collected_by_bucket.get(r.bucket, 0) for r in ordered}
    unruled = collected - sum(gross.values()) - servicer_late

    basis = collected if fee_basis == ServicerFeeBasis.COLLECTED else totals.interest_minor
    fee = min(basis * servicer_fee_bps // BPS_DENOMINATOR, collected - servicer_late)

    netting = _fee_netting.allocate(
        fee,
        [ObligationBucket(r.bucket.value, gross[r.bucket], priority=r.rank) for r in ordered],
    )
    retained = unruled - netting.suspense

    investor: dict[RuleBucket, int] = {}
    for rule in ordered:
        net = gross[rule.bucket] - netting.get(rule.bucket.value)
        if rule.cap_minor is not None and net > rule.cap_minor:
            retained += net - rule.cap_minor
            net = rule.cap_minor
        investor[rule.bucket] = net

    result = LoanRemittance(
        loan_id=totals.loan_id,
        collected_minor=collected,
        principal_minor=investor.get(RuleBucket.PRINCIPAL, 0),
        interest_minor=investor.get(RuleBucket.INTEREST, 0),
        fees_minor=investor.get(RuleBucket.LATE_FEES, 0),
        servicer_fee_minor=fee + servicer_late,
        retained_minor=retained,
    )
    assert (
        result.investor_share_minor + result.servicer_fee_minor + result.retained_minor
        == collected
    ), f"remittance split does not conserve loan {totals.loan_id}"
    return result


def cycle_period_for(today: date, cutoff_day: int) -> tuple[date, date]:
    """
    Period a new cycle covers when initiated on ``today``.

    Before the cutoff day: the whole previous month.  On or after it: the
    start of this month through the cutoff day.  A cutoff beyond the end
    of the month means the last day of the month.
    """
    last_day = calendar.monthrange(today.year, today.month)[1]
    cutoff = date(today.year, today.month, min(cutoff_day, last_day))
    if today < cutoff:
        previous_end = today.replace(day=1) - timedelta(days=1)
        return previous_end.replace(day=1), previous_end
    return today.replace(day=1), cutoff


def _check_component(value: Any, field: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidCollectionError(field, "must be an integer amount in minor units")
    if value < 0:
        raise InvalidCollectionError(field, "must not be negative")
    return value


# =============================================================================
# Service
# =============================================================================


class RemittanceService:
    """
    Investor remittance lifecycle.

    Contract:
        Every mutating method flushes; the caller commits.
    Guarantees:
        - Cycle status only changes through compare-and-set.
        - Release steps re-check the reconciliation gate when
          ``require_balanced_reconciliation`` is on.
    Non-goals:
        - Does NOT post settlement entries to the general ledger.
        - Does NOT transmit files; it stores them.
    """

    def __init__(
        self,
        session: Session,
        reconciliation: ReconciliationService | None = None,
        clock: Clock | None = None,
        audit_log: ComplianceAuditLog | None = None,
        fee_basis: ServicerFeeBasis | str = ServicerFeeBasis.COLLECTED,
        require_balanced_reconciliation: bool = True,
        default_export_format: ExportFormat | str = ExportFormat.CSV,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._audit_log = audit_log or ComplianceAuditLog(session, self._clock)
        self._reconciliation = reconciliation or ReconciliationService(
            session, clock=self._clock, audit_log=self._audit_log
        )
        self._fee_basis = ServicerFeeBasis(fee_basis)
        self._require_balanced = require_balanced_reconciliation
        self._default_format = ExportFormat(default_export_format)

    # -------------------------------------------------------------------------
    # Contracts
    # -------------------------------------------------------------------------

    def create_contract(
        self,
        investor_id: str,
        product_code: str,
        method: RemittanceMethod | str,
        remittance_day: int,
        cutoff_day: int,
        servicer_fee_bps: int,
        late_fee_split_bps: int,
        waterfall_rules: Iterable[WaterfallRuleSpec | Mapping[str, Any]] = (),
        custodial_bank_account_id: str | None = None,
        actor_id: str = SYSTEM_ACTOR_ID,
    ) -> InvestorContract:
        """
        Raises:
            ValueError: Terms out of range or duplicate rule ranks/buckets.
        """
        terms = ContractTerms(
            investor_id=investor_id,
            product_code=product_code,
            method=method,
            remittance_day=remittance_day,
            cutoff_day=cutoff_day,
            servicer_fee_bps=servicer_fee_bps,
            late_fee_split_bps=late_fee_split_bps,
            waterfall_rules=tuple(
                WaterfallRuleSpec(**rule) if isinstance(rule, Mapping) else rule
                for rule in waterfall_rules
            ),
            custodial_bank_account_id=custodial_bank_account_id,
        )

        contract = InvestorContract(
            investor_id=terms.investor_id,
            product_code=terms.product_code,
            method=terms.method.value,
            remittance_day=terms.remittance_day,
            cutoff_day=terms.cutoff_day,
            servicer_fee_bps=terms.servicer_fee_bps,
            late_fee_split_bps=terms.late_fee_split_bps,
            custodial_bank_account_id=terms.custodial_bank_account_id,
            created_by=actor_id,
        )
        contract.rules = [
            WaterfallRule(
                rank=rule.rank,
                bucket=rule.bucket.value,
                cap_minor=rule.cap_minor,
                created_by=actor_id,
            )
            for rule in terms.waterfall_rules
        ]
        self._session.add(contract)
        self._session.flush()

        logger.info(
            "remittance_contract_created",
            extra={
                "contract_id": str(contract.id),
                "investor_id": contract.investor_id,
                "product_code": contract.product_code,
                "rule_count": len(contract.rules),
            },
        )
        self._audit_log.log(
            event_type=ComplianceEventType.CONTRACT_CREATED,
            resource_type="remittance_contract",
            resource_id=contract.id,
            actor_type=ActorType.HUMAN if actor_id != SYSTEM_ACTOR_ID else ActorType.SYSTEM,
            actor_id=actor_id,
            payload={
                "investor_id": contract.investor_id,
                "product_code": contract.product_code,
                "method": contract.method,
                "servicer_fee_bps": contract.servicer_fee_bps,
                "late_fee_split_bps": contract.late_fee_split_bps,
                "rules": [
                    {"rank": r.rank, "bucket": r.bucket.value, "cap_minor": r.cap_minor}
                    for r in terms.waterfall_rules
                ],
            },
        )
        return contract

    def get_contract(self, contract_id: UUID) -> InvestorContract:
        contract = self._session.get(InvestorContract, contract_id)
        if contract is None:
            raise ContractNotFoundError(str(contract_id))
        return contract

    @staticmethod
    def _rule_specs(contract: InvestorContract) -> tuple[WaterfallRuleSpec, ...]:
        return tuple(
            WaterfallRuleSpec(rank=r.rank, bucket=RuleBucket(r.bucket), cap_minor=r.cap_minor)
            for r in contract.rules
        )

    # -------------------------------------------------------------------------
    # Cycles
    # -------------------------------------------------------------------------

    def get_cycle(self, cycle_id: UUID) -> RemittanceCycle:
        cycle = self._session.get(RemittanceCycle, cycle_id)
        if cycle is None:
            raise CycleNotFoundError(str(cycle_id))
        return cycle

    def _get_cycle_for_update(self, cycle_id: UUID) -> RemittanceCycle:
        # Row lock on PostgreSQL so a concurrent transition waits for us
        cycle = self._session.execute(
            select(RemittanceCycle)
            .where(RemittanceCycle.id == cycle_id)
            .with_for_update()
        ).scalar_one_or_none()
        if cycle is None:
            raise CycleNotFoundError(str(cycle_id))
        return cycle

    def get_open_cycle(self, contract_id: UUID) -> RemittanceCycle | None:
        return self._session.execute(
            select(RemittanceCycle).where(
                RemittanceCycle.contract_id == contract_id,
                RemittanceCycle.status == CycleStatus.OPEN.value,
            )
        ).scalars().first()

    def list_cycles(
        self,
        contract_id: UUID,
        status: CycleStatus | str | None = None,
    ) -> list[RemittanceCycle]:
        stmt = select(RemittanceCycle).where(RemittanceCycle.contract_id == contract_id)
        if status is not None:
            stmt = stmt.where(RemittanceCycle.status == CycleStatus(status).value)
        return list(
            self._session.execute(stmt.order_by(RemittanceCycle.period_start)).scalars().all()
        )

    def create_cycle(
        self,
        contract_id: UUID,
        period_start: date,
        period_end: date,
        actor_id: str = SYSTEM_ACTOR_ID,
    ) -> RemittanceCycle:
        """
        Open a cycle for an explicit period.

        Raises:
            ContractNotFoundError: Unknown contract.
            CycleStateError: The contract already has an open cycle.
            ValueError: ``period_end`` precedes ``period_start``.
        """
        contract = self.get_contract(contract_id)
        if period_end < period_start:
            raise ValueError(
                f"period_end {period_end} precedes period_start {period_start}"
            )

        existing = self.get_open_cycle(contract.id)
        if existing is not None:
            logger.warning(
                "remittance_cycle_already_open",
                extra={"contract_id": str(contract.id), "cycle_id": str(existing.id)},
            )
            raise CycleStateError(str(existing.id), "closed", existing.status)

        cycle = RemittanceCycle(
            contract_id=contract.id,
            period_start=period_start,
            period_end=period_end,
            status=CycleStatus.OPEN.value,
            created_by=actor_id,
        )
        self._session.add(cycle)
        self._session.flush()

        logger.info(
            "remittance_cycle_created",
            extra={
                "contract_id": str(contract.id),
                "cycle_id": str(cycle.id),
                "period_start": period_start.isoformat(),
                "period_end": period_end.isoformat(),
            },
        )
        self._audit_log.log(
            event_type=ComplianceEventType.CYCLE_CREATED,
            resource_type="remittance_cycle",
            resource_id=cycle.id,
            actor_id=actor_id,
            payload={
                "contract_id": str(contract.id),
                "period_start": period_start,
                "period_end": period_end,
            },
        )
        return cycle

    def initiate_cycle(self, contract_id: UUID, actor_id: str = SYSTEM_ACTOR_ID) -> RemittanceCycle:
        """Open the next cycle, its period derived from the contract's cutoff day."""
        contract = self.get_contract(contract_id)
        period_start, period_end = cycle_period_for(self._clock.today(), contract.cutoff_day)
        return self.create_cycle(contract.id, period_start, period_end, actor_id=actor_id)

    # -------------------------------------------------------------------------
    # Collections
    # -------------------------------------------------------------------------

    def record_collection(
        self,
        cycle_id: UUID,
        loan_id: str,
        principal_minor: int = 0,
        interest_minor: int = 0,
        late_fees_minor: int = 0,
        collected_on: date | None = None,
        source_reference: str | None = None,
    ) -> LoanCollection:
        """
        Raises:
            CycleNotFoundError: Unknown cycle.
            CycleStateError: Cycle is not open.
            InvalidCollectionError: Bad amounts, blank loan id, or a date
                outside the cycle period.
        """
        cycle = self._get_cycle_for_update(cycle_id)
        if cycle.status != CycleStatus.OPEN.value:
            raise CycleStateError(str(cycle.id), CycleStatus.OPEN.value, cycle.status)

        if loan_id is None or not str(loan_id).strip():
            raise InvalidCollectionError("loan_id", "must not be empty")
        principal = _check_component(principal_minor, "principal_minor")
        interest = _check_component(interest_minor, "interest_minor")
        late_fees = _check_component(late_fees_minor, "late_fees_minor")

        collected_on = collected_on or self._clock.today()
        if not cycle.contains(collected_on):
            raise InvalidCollectionError(
                "collected_on",
                f"{collected_on} is outside the cycle period "
                f"{cycle.period_start}..{cycle.period_end}",
            )

        collection = LoanCollection(
            cycle_id=cycle.id,
            loan_id=str(loan_id).strip(),
            principal_minor=principal,
            interest_minor=interest,
            late_fees_minor=late_fees,
            collected_on=collected_on,
            source_reference=source_reference,
        )
        self._session.add(collection)
        self._session.flush()

        logger.debug(
            "remittance_collection_recorded",
            extra={
                "cycle_id": str(cycle.id),
                "loan_id": collection.loan_id,
                "total_minor": principal + interest + late_fees,
            },
        )
        return collection

    def collection_totals(self, cycle_id: UUID) -> list[LoanCollectionTotals]:
        rows = self._session.execute(
            select(
                LoanCollection.loan_id,
                func.sum(LoanCollection.principal_minor),
                func.sum(LoanCollection.interest_minor),
                func.sum(LoanCollection.late_fees_minor),
            )
            .where(LoanCollection.cycle_id == cycle_id)
            .group_by(LoanCollection.loan_id)
            .order_by(LoanCollection.loan_id)
        ).all()
        return [
            LoanCollectionTotals(
                loan_id=loan_id,
                principal_minor=int(principal or 0),
                interest_minor=int(interest or 0),
                late_fees_minor=int(late_fees or 0),
            )
            for loan_id, principal, interest, late_fees in rows
        ]

    # -------------------------------------------------------------------------
    # Waterfall
    # -------------------------------------------------------------------------

    def calculate_waterfall(self, cycle_id: UUID) -> WaterfallCalculation:
        """
        Split every loan's collections and replace the cycle's items.

        Re-running on an open cycle is allowed and replaces the previous
        items and totals.

        Raises:
            CycleNotFoundError: Unknown cycle.
            CycleStateError: Cycle is not open.
        """
        cycle = self._get_cycle_for_update(cycle_id)
        if cycle.status != CycleStatus.OPEN.value:
            raise CycleStateError(str(cycle.id), CycleStatus.OPEN.value, cycle.status)
        contract = self.get_contract(cycle.contract_id)
        rules = self._rule_specs(contract)

        with LogContext.bind(cycle_id=str(cycle.id)):
            loans = tuple(
                split_loan(
                    totals,
                    rules,
                    contract.servicer_fee_bps,
                    contract.late_fee_split_bps,
                    self._fee_basis,
                )
                for totals in self.collection_totals(cycle.id)
            )

            self._session.execute(
                delete(RemittanceItem).where(RemittanceItem.cycle_id == cycle.id)
            )
            self._session.add_all(
                RemittanceItem(
                    cycle_id=cycle.id,
                    loan_id=loan.loan_id,
                    principal_minor=loan.principal_minor,
                    interest_minor=loan.interest_minor,
                    fees_minor=loan.fees_minor,
                    investor_share_minor=loan.investor_share_minor,
                    servicer_fee_minor=loan.servicer_fee_minor,
                    retained_minor=loan.retained_minor,
                )
                for loan in loans
            )
            self._session.flush()
            self._session.expire(cycle, ["items"])

            totals = {
                "total_principal_minor": sum(loan.principal_minor for loan in loans),
                "total_interest_minor": sum(loan.interest_minor for loan in loans),
                "total_fees_minor": sum(loan.fees_minor for loan in loans),
                "servicer_fee_minor": sum(loan.servicer_fee_minor for loan in loans),
                "retained_minor": sum(loan.retained_minor for loan in loans),
                "investor_due_minor": sum(loan.investor_share_minor for loan in loans),
            }
            self._compare_and_set(cycle.id, CycleStatus.OPEN, **totals)

            calculation = WaterfallCalculation(
                cycle_id=cycle.id,
                contract_id=contract.id,
                total_collected_minor=sum(loan.collected_minor for loan in loans),
                buckets={
                    RuleBucket.INTEREST.value: totals["total_interest_minor"],
                    RuleBucket.PRINCIPAL.value: totals["total_principal_minor"],
                    RuleBucket.LATE_FEES.value: totals["total_fees_minor"],
                    RuleBucket.ESCROW.value: 0,
                    RuleBucket.RECOVERIES.value: 0,
                },
                servicer_fee_minor=totals["servicer_fee_minor"],
                retained_minor=totals["retained_minor"],
                investor_due_minor=totals["investor_due_minor"],
                loans=loans,
            )

            logger.info(
                "waterfall_calculated",
                extra={
                    "loan_count": len(loans),
                    "total_collected_minor": calculation.total_collected_minor,
                    "investor_due_minor": calculation.investor_due_minor,
                    "servicer_fee_minor": calculation.servicer_fee_minor,
                    "retained_minor": calculation.retained_minor,
                },
            )
            self._audit_log.log(
                event_type=ComplianceEventType.WATERFALL_CALCULATED,
                resource_type="remittance_cycle",
                resource_id=cycle.id,
                payload={
                    "loan_count": len(loans),
                    "total_collected_minor": calculation.total_collected_minor,
                    "buckets": calculation.buckets,
                    "servicer_fee_minor": calculation.servicer_fee_minor,
                    "retained_minor": calculation.retained_minor,
                    "investor_due_minor": calculation.investor_due_minor,
                },
            )
        return calculation

    def get_items(self, cycle_id: UUID) -> list[RemittanceItem]:
        return list(
            self._session.execute(
                select(RemittanceItem)
                .where(RemittanceItem.cycle_id == cycle_id)
                .order_by(RemittanceItem.loan_id)
            ).scalars().all()
        )

    # -------------------------------------------------------------------------
    # State machine
    # -------------------------------------------------------------------------

    def _compare_and_set(self, cycle_id: UUID, expected: CycleStatus, **values: Any) -> None:
        result = self._session.execute(
            update(RemittanceCycle)
            .where(
                RemittanceCycle.id == cycle_id,
                RemittanceCycle.status == expected.value,
            )
            .values(**values)
        )
        if result.rowcount == 1:
            return

        actual = self._session.execute(
            select(RemittanceCycle.status).where(RemittanceCycle.id == cycle_id)
        ).scalar_one_or_none()
        if actual is None:
            raise CycleNotFoundError(str(cycle_id))
        logger.warning(
            "remittance_cycle_transition_rejected",
            extra={
                "cycle_id": str(cycle_id),
                "expected_status": expected.value,
                "actual_status": actual,
            },
        )
        raise CycleStateError(str(cycle_id), expected.value, actual)

    def _transition(
        self,
        cycle_id: UUID,
        expected: CycleStatus,
        event_type: ComplianceEventType,
        actor_id: str,
        timestamp_field: str,
        payload: dict[str, Any] | None = None,
    ) -> RemittanceCycle:
        target = _TRANSITIONS[expected]
        now = self._clock.now()
        self._compare_and_set(
            cycle_id,
            expected,
            status=target.value,
            **{timestamp_field: now},
        )
        cycle = self.get_cycle(cycle_id)

        logger.info(
            "remittance_cycle_transitioned",
            extra={
                "cycle_id": str(cycle_id),
                "from_status": expected.value,
                "to_status": target.value,
            },
        )
        self._audit_log.log_change(
            event_type=event_type,
            resource_type="remittance_cycle",
            resource_id=cycle_id,
            previous={"status": expected.value},
            new={"status": target.value, timestamp_field: now, **(payload or {})},
            actor_type=ActorType.HUMAN if actor_id != SYSTEM_ACTOR_ID else ActorType.SYSTEM,
            actor_id=actor_id,
        )
        return cycle

    def _check_release_gate(self, cycle_id: UUID) -> None:
        if self._require_balanced:
            self._reconciliation.assert_release_allowed(cycle_id)

    def lock_cycle(self, cycle_id: UUID, actor_id: str = SYSTEM_ACTOR_ID) -> RemittanceCycle:
        """``open -> locked``.  Collections and totals are frozen from here on."""
        return self._transition(
            cycle_id,
            CycleStatus.OPEN,
            ComplianceEventType.CYCLE_LOCKED,
            actor_id,
            "locked_at",
        )

    def generate_export(
        self,
        cycle_id: UUID,
        export_format: ExportFormat | str | None = None,
        actor_id: str = SYSTEM_ACTOR_ID,
    ) -> RemittanceExport:
        """
        Render and store the remittance file; ``locked -> file_generated``.

        Raises:
            CycleStateError: Cycle is not locked.
            ReconciliationMissingError / ReconciliationVarianceError:
                The gate is on and the latest reconciliation is missing or
                unbalanced.
            InvalidExportFormatError: Unknown format.
        """
        cycle = self.get_cycle(cycle_id)
        if cycle.status != CycleStatus.LOCKED.value:
            raise CycleStateError(str(cycle.id), CycleStatus.LOCKED.value, cycle.status)
        self._check_release_gate(cycle.id)

        export_format = export_format or self._default_format
        content = render(export_format, cycle, self.get_items(cycle.id))
        encoded = content.encode("utf-8")
        fmt = ExportFormat(export_format)

        export = RemittanceExport(
            cycle_id=cycle.id,
            export_format=fmt.value,
            content=content,
            content_hash=sha256_hex(encoded),
            byte_size=len(encoded),
            created_at=self._clock.now(),
        )
        self._transition(
            cycle.id,
            CycleStatus.LOCKED,
            ComplianceEventType.EXPORT_GENERATED,
            actor_id,
            "file_generated_at",
            payload={"export_format": fmt.value, "content_hash": export.content_hash},
        )
        self._session.add(export)
        self._session.flush()

        logger.info(
            "remittance_export_generated",
            extra={
                "cycle_id": str(cycle.id),
                "export_id": str(export.id),
                "export_format": fmt.value,
                "content_hash": export.content_hash,
                "byte_size": export.byte_size,
            },
        )
        return export

    def mark_remitted(self, cycle_id: UUID, actor_id: str = SYSTEM_ACTOR_ID) -> RemittanceCycle:
        """
        ``file_generated -> remitted``, re-checking the reconciliation gate.

        Raises:
            CycleStateError: Cycle is not file_generated.
            ReconciliationMissingError / ReconciliationVarianceError.
        """
        cycle = self.get_cycle(cycle_id)
        if cycle.status != CycleStatus.FILE_GENERATED.value:
            raise CycleStateError(str(cycle.id), CycleStatus.FILE_GENERATED.value, cycle.status)
        self._check_release_gate(cycle.id)
        return self._transition(
            cycle.id,
            CycleStatus.FILE_GENERATED,
            ComplianceEventType.CYCLE_REMITTED,
            actor_id,
            "remitted_at",
            payload={"investor_due_minor": cycle.investor_due_minor},
        )

    # -------------------------------------------------------------------------
    # Read side
    # -------------------------------------------------------------------------

    def get_exports(self, cycle_id: UUID) -> list[RemittanceExport]:
        return list(
            self._session.execute(
                select(RemittanceExport)
                .where(RemittanceExport.cycle_id == cycle_id)
                .order_by(RemittanceExport.created_at)
            ).scalars().all()
        )

    def get_export(self, export_id: UUID) -> RemittanceExport | None:
        return self._session.get(RemittanceExport, export_id)

    def get_report(self, cycle_id: UUID) -> RemittanceReport:
        cycle = self.get_cycle(cycle_id)
        contract = self.get_contract(cycle.contract_id)
        return RemittanceReport(
            cycle_id=cycle.id,
            contract_id=contract.id,
            investor_id=contract.investor_id,
            status=CycleStatus(cycle.status),
            period_start=cycle.period_start,
            period_end=cycle.period_end,
            loan_count=len(self.get_items(cycle.id)),
            principal_minor=cycle.total_principal_minor,
            interest_minor=cycle.total_interest_minor,
            fees_minor=cycle.total_fees_minor,
            servicer_fee_minor=cycle.servicer_fee_minor,
            retained_minor=cycle.retained_minor,
            investor_due_minor=cycle.investor_due_minor,
        )
