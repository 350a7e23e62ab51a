"""
payment_engines.reconciliation -- Remittance versus ledger variance.

Responsibility:
    Compare remittance-side totals (what the cycle says it owes the investor
    and the servicer) with ledger-side movements for the same buckets, and
    report signed differences.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  The persistence side
    (snapshots, ledger reads) lives in payment_modules.remittance.reconciliation.

Invariants enforced:
    - Differences are signed ``ledger - remittance``; a positive value
      means the ledger moved more than the cycle accounts for.
    - ``is_balanced`` iff every ``abs(difference) <= threshold``.
    - Integer minor units only.

Failure modes:
    - InvalidAllocationInputError for non-integer totals or a negative
      threshold.
"""

from __future__ import annotations

from dataclasses import dataclass

from payment_engines.tracer import traced_engine
from payment_kernel.exceptions import InvalidAllocationInputError


def _check_minor(value: object, field: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidAllocationInputError(field, "reconciliation totals must be integer minor units")
    return value


@dataclass(frozen=True)
class ReconciliationTotals:
    investor_minor: int
    servicer_minor: int

    def __post_init__(self) -> None:
        _check_minor(self.investor_minor, "investor_minor")
        _check_minor(self.servicer_minor, "servicer_minor")

    @property
    def total_minor(self) -> int:
        return self.investor_minor + self.servicer_minor


@dataclass(frozen=True)
class VarianceReport:
    """
    Signed differences between the two sides of a reconciliation.

    Guarantees:
        - ``diff_total_minor == diff_investor_minor + diff_servicer_minor``.
    """

    remittance: ReconciliationTotals
    ledger: ReconciliationTotals
    threshold_minor: int
    diff_investor_minor: int
    diff_servicer_minor: int
    diff_total_minor: int
    is_balanced: bool

    @property
    def differences(self) -> dict[str, int]:
        return {
            "investor": self.diff_investor_minor,
            "servicer": self.diff_servicer_minor,
            "total": self.diff_total_minor,
        }

    @property
    def breaches(self) -> dict[str, int]:
        """Buckets whose difference exceeds the threshold."""
        return {k: v for k, v in self.differences.items() if abs(v) > self.threshold_minor}


@traced_engine("reconciliation_variance", "1.0", fingerprint_fields=("remittance", "ledger", "threshold_minor"))
def compute_variance(
    remittance: ReconciliationTotals,
    ledger: ReconciliationTotals,
    threshold_minor: int = 0,
) -> VarianceReport:
    threshold_minor = _check_minor(threshold_minor, "threshold_minor")
    if threshold_minor < 0:
        raise InvalidAllocationInputError("threshold_minor", "variance threshold must not be negative")

    diff_investor = ledger.investor_minor - remittance.investor_minor
    diff_servicer = ledger.servicer_minor - remittance.servicer_minor
    diff_total = ledger.total_minor - remittance.total_minor

    is_balanced = all(
        abs(d) <= threshold_minor for d in (diff_investor, diff_servicer, diff_total)
    )
    return VarianceReport(
        remittance=remittance,
        ledger=ledger,
        threshold_minor=threshold_minor,
        diff_investor_minor=diff_investor,
        diff_servicer_minor=diff_servicer,
        diff_total_minor=diff_total,
        is_balanced=is_balanced,
    )
