"""
Shared fixtures for remittance module tests.

The deterministic clock reads 2025-08-24, so the default cycle covers
August 2025 and collections recorded without a date fall inside it.

DESIGN RULE: Every fixture is opt-in.  No autouse.
"""

from datetime import date

import pytest

from payment_kernel.models.ledger_entry import EntryType, LedgerEntry
from payment_modules.remittance import (
    ReconciliationService,
    RemittanceService,
    RuleBucket,
    WaterfallRuleSpec,
)

AUGUST_START = date(2025, 8, 1)
AUGUST_END = date(2025, 8, 31)

STANDARD_RULES = (
    WaterfallRuleSpec(rank=1, bucket=RuleBucket.INTEREST),
    WaterfallRuleSpec(rank=2, bucket=RuleBucket.PRINCIPAL),
    WaterfallRuleSpec(rank=3, bucket=RuleBucket.LATE_FEES),
)


@pytest.fixture
def reconciliation_service(session, deterministic_clock, audit_log):
    return ReconciliationService(session, clock=deterministic_clock, audit_log=audit_log)


@pytest.fixture
def remittance_service(session, deterministic_clock, audit_log, reconciliation_service):
    return RemittanceService(
        session,
        reconciliation=reconciliation_service,
        clock=deterministic_clock,
        audit_log=audit_log,
    )


@pytest.fixture
def contract(remittance_service):
    """Actual-cash contract: 25 bps servicing, late fees split 50/50."""
    return remittance_service.create_contract(
        investor_id="INV-FNMA",
        product_code="CONV-30",
        method="actual_cash",
        remittance_day=18,
        cutoff_day=25,
        servicer_fee_bps=25,
        late_fee_split_bps=5000,
        waterfall_rules=STANDARD_RULES,
        custodial_bank_account_id="CUST-001",
    )


@pytest.fixture
def open_cycle(remittance_service, contract):
    return remittance_service.create_cycle(contract.id, AUGUST_START, AUGUST_END)


@pytest.fixture
def calculated_cycle(remittance_service, open_cycle):
    """August cycle with two loans collected and the waterfall calculated."""
    remittance_service.record_collection(
        open_cycle.id, "LN-1", principal_minor=80000, interest_minor=20000, late_fees_minor=5000
    )
    remittance_service.record_collection(
        open_cycle.id, "LN-2", principal_minor=40000, interest_minor=10000
    )
    remittance_service.calculate_waterfall(open_cycle.id)
    return open_cycle


@pytest.fixture
def post_ledger(session):
    """Post ledger lines tagged with a cycle id: post_ledger(cycle, account, amount, "credit")."""

    def _post(cycle, account_code, amount_minor, entry_type=EntryType.CREDIT, effective_date=None):
        entry = LedgerEntry(
            account_code=account_code,
            entry_type=EntryType(entry_type).value,
            amount_minor=amount_minor,
            effective_date=effective_date or cycle.period_end,
            description=f"remittance {cycle.id}",
            entry_metadata={"cycle_id": str(cycle.id)},
        )
        session.add(entry)
        session.flush()
        return entry

    return _post


@pytest.fixture
def balanced_ledger(post_ledger):
    """Post exactly the cycle's investor due and servicer fee."""

    def _balance(cycle):
        post_ledger(cycle, "2110", cycle.investor_due_minor)
        post_ledger(cycle, "4020", cycle.servicer_fee_minor)

    return _balance
