"""
Remittance Module (``payment_modules.remittance``).

Responsibility
--------------
Passes collections on serviced loans through to investors: contract terms
and waterfall rules, time-boxed cycles, the per-loan investor/servicer
split, CSV/XML remittance files, and reconciliation of each cycle against
the general ledger before money is released.

Architecture position
---------------------
**Modules layer** -- ``RemittanceService`` and ``ReconciliationService``
are the facades; the split nets fees through
``payment_engines.WaterfallAllocator`` and the variance arithmetic is
``payment_engines.compute_variance``.

Invariants enforced
-------------------
* Cycle status moves only ``open -> locked -> file_generated -> remitted``,
  each step a compare-and-set.
* Exports and reconciliation snapshots are append-only.
* Release steps require a balanced latest reconciliation.
"""

from payment_modules.remittance.export import CSV_COLUMNS, render, render_csv, render_xml
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
    ReconciliationSnapshot,
    RemittanceCycle,
    RemittanceExport,
    RemittanceItem,
    WaterfallRule,
)
from payment_modules.remittance.reconciliation import (
    FAILED_NOTE,
    PASSED_NOTE,
    LedgerReader,
    ReconciliationService,
    SqlLedgerReader,
)
from payment_modules.remittance.service import (
    RemittanceService,
    cycle_period_for,
    split_loan,
)

__all__ = [
    "CSV_COLUMNS",
    "ContractTerms",
    "CycleStatus",
    "ExportFormat",
    "FAILED_NOTE",
    "InvestorContract",
    "LedgerReader",
    "LoanCollection",
    "LoanCollectionTotals",
    "LoanRemittance",
    "PASSED_NOTE",
    "ReconciliationService",
    "ReconciliationSnapshot",
    "RemittanceCycle",
    "RemittanceExport",
    "RemittanceItem",
    "RemittanceMethod",
    "RemittanceReport",
    "RemittanceService",
    "RuleBucket",
    "ServicerFeeBasis",
    "SqlLedgerReader",
    "WaterfallCalculation",
    "WaterfallRule",
    "WaterfallRuleSpec",
    "cycle_period_for",
    "render",
    "render_csv",
    "render_xml",
    "split_loan",
]
