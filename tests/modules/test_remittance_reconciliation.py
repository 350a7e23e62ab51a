"""
Tests for ReconciliationService.

Covers:
- Balanced cycles and one-minor-unit variances
- Ledger filtering by account, period and cycle tag
- Snapshot run numbering, history and the unbalanced listing
- Snapshots are append-only
- Release gate on the latest snapshot
"""

from datetime import date
from uuid import uuid4

import pytest

from payment_kernel.exceptions import (
    CycleNotFoundError,
    CycleStateError,
    ImmutabilityViolationError,
    InvalidActorError,
    ReconciliationMissingError,
    ReconciliationVarianceError,
)
from payment_kernel.models.chain import ComplianceEventType
from payment_kernel.models.ledger_entry import LedgerEntry
from payment_modules.remittance import (
    FAILED_NOTE,
    PASSED_NOTE,
    LedgerReader,
    ReconciliationService,
)

OPS_USER = "ops@servicer.example"


@pytest.fixture
def locked_cycle(remittance_service, calculated_cycle):
    remittance_service.lock_cycle(calculated_cycle.id)
    return calculated_cycle


class FixedLedger(LedgerReader):
    """Ledger stand-in answering from a dict of account -> amount."""

    def __init__(self, balances):
        self.balances = balances
        self.calls = []

    def net_credit(self, account_code, period_start, period_end, cycle_id):
        self.calls.append((account_code, period_start, period_end, cycle_id))
        return self.balances.get(account_code, 0)


class TestBalanced:
    def test_matching_ledger(self, reconciliation_service, locked_cycle, balanced_ledger):
        balanced_ledger(locked_cycle)
        snapshot = reconciliation_service.generate_reconciliation(locked_cycle.id, OPS_USER)

        assert snapshot.is_balanced
        assert snapshot.run_number == 1
        assert snapshot.notes == PASSED_NOTE
        assert snapshot.reconciled_by == OPS_USER
        assert snapshot.remit_investor_share_minor == 152113
        assert snapshot.remit_servicer_fee_minor == 2887
        assert snapshot.remit_total_minor == 155000
        assert snapshot.gl_total_minor == 155000
        assert snapshot.differences == {"investor": 0, "servicer": 0, "total": 0}

    def test_passed_logged_and_audited(self, reconciliation_service, locked_cycle, balanced_ledger, audit_log, captured_logs):
        balanced_ledger(locked_cycle)
        snapshot = reconciliation_service.generate_reconciliation(locked_cycle.id, OPS_USER)

        assert any(r["message"] == "reconciliation_passed" for r in captured_logs())
        [entry] = audit_log.get_entries(event_type=ComplianceEventType.RECONCILIATION_PASSED)
        assert entry.actor_type == "human"
        assert entry.actor_id == OPS_USER
        assert entry.payload["snapshot_id"] == str(snapshot.id)

    def test_debits_reduce_ledger_side(self, reconciliation_service, locked_cycle, post_ledger, balanced_ledger):
        balanced_ledger(locked_cycle)
        post_ledger(locked_cycle, "2110", 500)
        post_ledger(locked_cycle, "2110", 500, entry_type="debit")

        assert reconciliation_service.generate_reconciliation(locked_cycle.id, OPS_USER).is_balanced

    def test_empty_cycle_balances_empty_ledger(self, remittance_service, reconciliation_service, open_cycle):
        remittance_service.lock_cycle(open_cycle.id)
        snapshot = reconciliation_service.generate_reconciliation(open_cycle.id, OPS_USER)
        assert snapshot.is_balanced
        assert snapshot.remit_total_minor == 0


class TestVariance:
    def test_one_minor_unit_short(self, reconciliation_service, locked_cycle, post_ledger):
        post_ledger(locked_cycle, "2110", locked_cycle.investor_due_minor - 1)
        post_ledger(locked_cycle, "4020", locked_cycle.servicer_fee_minor)

        snapshot = reconciliation_service.generate_reconciliation(locked_cycle.id, OPS_USER)

        assert not snapshot.is_balanced
        assert snapshot.notes == FAILED_NOTE
        assert snapshot.differences == {"investor": -1, "servicer": 0, "total": -1}

    def test_offsetting_errors_still_fail(self, reconciliation_service, locked_cycle, post_ledger):
        """Totals agree but the investor/servicer split does not."""
        post_ledger(locked_cycle, "2110", locked_cycle.investor_due_minor - 100)
        post_ledger(locked_cycle, "4020", locked_cycle.servicer_fee_minor + 100)

        snapshot = reconciliation_service.generate_reconciliation(locked_cycle.id, OPS_USER)
        assert not snapshot.is_balanced
        assert snapshot.diff_total_minor == 0

    def test_failure_logged_and_audited(self, reconciliation_service, locked_cycle, audit_log, captured_logs):
        reconciliation_service.generate_reconciliation(locked_cycle.id, OPS_USER)

        [record] = [r for r in captured_logs() if r["message"] == "reconciliation_failed"]
        assert record["level"] == "ERROR"
        assert record["diff_investor_minor"] == -152113
        assert record["diff_servicer_minor"] == -2887
        [entry] = audit_log.get_entries(event_type=ComplianceEventType.RECONCILIATION_FAILED)
        assert entry.payload["differences"]["total"] == -155000
        assert entry.description == FAILED_NOTE

    def test_threshold_tolerates_small_variance(self, session, deterministic_clock, audit_log, locked_cycle, post_ledger):
        service = ReconciliationService(
            session, variance_threshold_minor=5, clock=deterministic_clock, audit_log=audit_log
        )
        post_ledger(locked_cycle, "2110", locked_cycle.investor_due_minor - 3)
        post_ledger(locked_cycle, "4020", locked_cycle.servicer_fee_minor)

        snapshot = service.generate_reconciliation(locked_cycle.id, OPS_USER)
        assert snapshot.is_balanced
        assert snapshot.variance_threshold_minor == 5


class TestLedgerFiltering:
    def test_entries_outside_period_ignored(self, reconciliation_service, locked_cycle, post_ledger, balanced_ledger):
        balanced_ledger(locked_cycle)
        post_ledger(locked_cycle, "2110", 999, effective_date=date(2025, 9, 1))
        post_ledger(locked_cycle, "2110", 999, effective_date=date(2025, 7, 31))

        assert reconciliation_service.generate_reconciliation(locked_cycle.id, OPS_USER).is_balanced

    def test_period_bounds_inclusive(self, reconciliation_service, locked_cycle, post_ledger):
        post_ledger(locked_cycle, "2110", 100000, effective_date=date(2025, 8, 1))
        post_ledger(locked_cycle, "2110", locked_cycle.investor_due_minor - 100000, effective_date=date(2025, 8, 31))
        post_ledger(locked_cycle, "4020", locked_cycle.servicer_fee_minor)

        assert reconciliation_service.generate_reconciliation(locked_cycle.id, OPS_USER).is_balanced

    def test_other_cycles_and_accounts_ignored(self, session, reconciliation_service, locked_cycle, balanced_ledger):
        balanced_ledger(locked_cycle)
        session.add_all(
            [
                LedgerEntry(
                    account_code="2110",
                    entry_type="credit",
                    amount_minor=777,
                    effective_date=date(2025, 8, 15),
                    entry_metadata={"cycle_id": str(uuid4())},
                ),
                LedgerEntry(
                    account_code="2110",
                    entry_type="credit",
                    amount_minor=777,
                    effective_date=date(2025, 8, 15),
                    entry_metadata={},
                ),
                LedgerEntry(
                    account_code="1010",
                    entry_type="debit",
                    amount_minor=777,
                    effective_date=date(2025, 8, 15),
                    entry_metadata={"cycle_id": str(locked_cycle.id)},
                ),
            ]
        )
        session.flush()

        assert reconciliation_service.generate_reconciliation(locked_cycle.id, OPS_USER).is_balanced

    def test_custom_reader_and_accounts(self, session, deterministic_clock, audit_log, locked_cycle):
        reader = FixedLedger({"2200": 152113, "4100": 2887})
        service = ReconciliationService(
            session,
            ledger_reader=reader,
            investor_payable_account="2200",
            servicer_fee_income_account="4100",
            clock=deterministic_clock,
            audit_log=audit_log,
        )

        assert service.generate_reconciliation(locked_cycle.id, OPS_USER).is_balanced
        assert [call[0] for call in reader.calls] == ["2200", "4100"]
        assert reader.calls[0][1:] == (date(2025, 8, 1), date(2025, 8, 31), locked_cycle.id)


class TestPreconditions:
    def test_open_cycle_rejected(self, reconciliation_service, calculated_cycle):
        with pytest.raises(CycleStateError):
            reconciliation_service.generate_reconciliation(calculated_cycle.id, OPS_USER)
        assert reconciliation_service.get_latest(calculated_cycle.id) is None

    def test_unknown_cycle(self, reconciliation_service):
        with pytest.raises(CycleNotFoundError):
            reconciliation_service.generate_reconciliation(uuid4(), OPS_USER)

    def test_invalid_actor_type(self, reconciliation_service, locked_cycle):
        with pytest.raises(InvalidActorError):
            reconciliation_service.generate_reconciliation(locked_cycle.id, OPS_USER, actor_type="robot")


class TestSnapshots:
    def test_reruns_append(self, reconciliation_service, locked_cycle, balanced_ledger):
        first = reconciliation_service.generate_reconciliation(locked_cycle.id, OPS_USER)
        balanced_ledger(locked_cycle)
        second = reconciliation_service.generate_reconciliation(locked_cycle.id, OPS_USER)

        assert (first.run_number, second.run_number) == (1, 2)
        assert not first.is_balanced
        assert reconciliation_service.get_latest(locked_cycle.id).id == second.id
        assert [s.run_number for s in reconciliation_service.get_history(locked_cycle.id)] == [2, 1]

    def test_list_unbalanced(self, reconciliation_service, locked_cycle, balanced_ledger):
        failed = reconciliation_service.generate_reconciliation(locked_cycle.id, OPS_USER)
        balanced_ledger(locked_cycle)
        reconciliation_service.generate_reconciliation(locked_cycle.id, OPS_USER)

        assert [s.id for s in reconciliation_service.list_unbalanced()] == [failed.id]

    def test_snapshot_immutable(self, session, reconciliation_service, locked_cycle):
        snapshot = reconciliation_service.generate_reconciliation(locked_cycle.id, OPS_USER)
        snapshot.is_balanced = True
        with pytest.raises(ImmutabilityViolationError):
            session.flush()


class TestReleaseGate:
    def test_missing(self, reconciliation_service, locked_cycle):
        with pytest.raises(ReconciliationMissingError) as exc_info:
            reconciliation_service.assert_release_allowed(locked_cycle.id)
        assert exc_info.value.code == "RECONCILIATION_MISSING"

    def test_unbalanced(self, reconciliation_service, locked_cycle):
        snapshot = reconciliation_service.generate_reconciliation(locked_cycle.id, OPS_USER)
        with pytest.raises(ReconciliationVarianceError) as exc_info:
            reconciliation_service.assert_release_allowed(locked_cycle.id)
        assert exc_info.value.snapshot_id == str(snapshot.id)
        assert exc_info.value.differences["total"] == -155000

    def test_latest_run_decides(self, reconciliation_service, locked_cycle, balanced_ledger):
        reconciliation_service.generate_reconciliation(locked_cycle.id, OPS_USER)
        balanced_ledger(locked_cycle)
        passed = reconciliation_service.generate_reconciliation(locked_cycle.id, OPS_USER)

        assert reconciliation_service.assert_release_allowed(locked_cycle.id).id == passed.id
