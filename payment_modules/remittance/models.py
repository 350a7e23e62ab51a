"""
payment_modules.remittance.models
=================================

Responsibility:
    Value objects and enumerations for investor remittance: contract terms,
    waterfall rules, cycle status, per-loan collections and the outcome of a
    waterfall calculation.  No persistence, no business logic beyond
    construction checks.

Invariants enforced:
    - Amounts are integer minor units.
    - Basis points are within [0, 10000].
    - Day-of-month fields are within [1, 31].
"""

from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from uuid import UUID


class RemittanceMethod(str, Enum):
    SCHEDULED_P_I = "scheduled_p_i"
    ACTUAL_CASH = "actual_cash"
    SCHEDULED_P_I_WITH_INTEREST_SHORTFALL = "scheduled_p_i_with_interest_shortfall"


class RuleBucket(str, Enum):
    INTEREST = "interest"
    PRINCIPAL = "principal"
    LATE_FEES = "late_fees"
    ESCROW = "escrow"
    RECOVERIES = "recoveries"


class CycleStatus(str, Enum):
    """``open -> locked -> file_generated -> remitted``; no other edges."""

    OPEN = "open"
    LOCKED = "locked"
    FILE_GENERATED = "file_generated"
    REMITTED = "remitted"


class ExportFormat(str, Enum):
    CSV = "csv"
    XML = "xml"


class ServicerFeeBasis(str, Enum):
    """What the contract's servicer-fee bps is applied to."""

    INTEREST = "interest"
    COLLECTED = "collected"


def _check_bps(value: int, name: str) -> None:
    if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value <= 10000:
        raise ValueError(f"{name} must be an integer within [0, 10000], got {value!r}")


def _check_day(value: int, name: str) -> None:
    if isinstance(value, bool) or not isinstance(value, int) or not 1 <= value <= 31:
        raise ValueError(f"{name} must be a day of month within [1, 31], got {value!r}")


@dataclass(frozen=True)
class WaterfallRuleSpec:
    """
    One ranked bucket of an investor contract.

    ``cap_minor`` limits what the investor receives from this bucket per
    loan; the excess is retained by the servicer.
    """

    rank: int
    bucket: RuleBucket
    cap_minor: int | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "bucket", RuleBucket(self.bucket))
        if self.cap_minor is not None and (
            isinstance(self.cap_minor, bool) or not isinstance(self.cap_minor, int) or self.cap_minor < 0
        ):
            raise ValueError(f"cap_minor must be a non-negative integer, got {self.cap_minor!r}")


@dataclass(frozen=True)
class ContractTerms:
    """
    Terms of an investor contract.

    Guarantees:
        - Bps values within [0, 10000]; day fields within [1, 31].
        - Rule ranks are unique; each bucket appears at most once.
    """

    investor_id: str
    product_code: str
    method: RemittanceMethod
    remittance_day: int
    cutoff_day: int
    servicer_fee_bps: int
    late_fee_split_bps: int
    waterfall_rules: tuple[WaterfallRuleSpec, ...] = ()
    custodial_bank_account_id: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "method", RemittanceMethod(self.method))
        object.__setattr__(self, "waterfall_rules", tuple(self.waterfall_rules))
        if not self.investor_id or not self.product_code:
            raise ValueError("investor_id and product_code are required")
        _check_day(self.remittance_day, "remittance_day")
        _check_day(self.cutoff_day, "cutoff_day")
        _check_bps(self.servicer_fee_bps, "servicer_fee_bps")
        _check_bps(self.late_fee_split_bps, "late_fee_split_bps")
        ranks = [r.rank for r in self.waterfall_rules]
        if len(ranks) != len(set(ranks)):
            raise ValueError(f"waterfall rule ranks must be unique, got {ranks}")
        buckets = [r.bucket for r in self.waterfall_rules]
        if len(buckets) != len(set(buckets)):
            raise ValueError("each waterfall bucket may appear in at most one rule")


@dataclass(frozen=True)
class LoanCollectionTotals:
    """Amounts collected on one loan within a cycle period."""

    loan_id: str
    principal_minor: int = 0
    interest_minor: int = 0
    late_fees_minor: int = 0

    @property
    def total_minor(self) -> int:
        return self.principal_minor + self.interest_minor + self.late_fees_minor


@dataclass(frozen=True)
class LoanRemittance:
    """
    Per-loan split produced by the waterfall calculation.

    Guarantees:
        - ``investor_share_minor + servicer_fee_minor + retained_minor
          == collected_minor``.
    """

    loan_id: str
    collected_minor: int
    principal_minor: int
    interest_minor: int
    fees_minor: int
    servicer_fee_minor: int
    retained_minor: int

    @property
    def investor_share_minor(self) -> int:
        return self.principal_minor + self.interest_minor + self.fees_minor


@dataclass(frozen=True)
class WaterfallCalculation:
    """Cycle-level outcome of RemittanceService.calculate_waterfall()."""

    cycle_id: UUID
    contract_id: UUID
    total_collected_minor: int
    buckets: dict[str, int]
    servicer_fee_minor: int
    retained_minor: int
    investor_due_minor: int
    loans: tuple[LoanRemittance, ...] = field(default=())


@dataclass(frozen=True)
class RemittanceReport:
    """Investor-facing summary of one cycle."""

    cycle_id: UUID
    contract_id: UUID
    investor_id: str
    status: CycleStatus
    period_start: date
    period_end: date
    loan_count: int
    principal_minor: int
    interest_minor: int
    fees_minor: int
    servicer_fee_minor: int
    retained_minor: int
    investor_due_minor: int
