"""
payment_engines.waterfall -- Priority-ordered allocation of a payment across obligations.

Responsibility:
    Split one received amount across obligation buckets (fees, interest,
    principal, escrow) in strict priority order, with any excess held in
    suspense.  Also carries the servicing helpers built on the same
    allocation: default bucket order, outstanding-balance assembly, GL
    posting mapping, minimum-payment and shortage checks.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May import payment_kernel.exceptions and logging only.

Invariants enforced:
    - Conservation: ``sum(allocated) + suspense == amount`` exactly, for
      every input (asserted on every call).
    - Exact arithmetic: amounts are ``int`` minor units or ``Decimal``.
      ``float`` and ``bool`` are rejected, never coerced.
    - Stable ordering: buckets sort by priority ascending; equal
      priorities keep declaration order.
    - A bucket with a negative requirement (credit balance) receives zero.

Failure modes:
    - InvalidAllocationInputError for float/bool/non-finite amounts,
      a negative payment, blank or duplicate bucket names.

Audit relevance:
    Every ``allocate`` call is traced via ``@traced_engine`` so the input
    fingerprint of a stored allocation can be re-derived.

Usage:
    allocator = WaterfallAllocator()
    result = allocator.allocate(
        150000,
        [
            ObligationBucket("late_fee", 5000, priority=1),
            ObligationBucket("interest", 20000, priority=2),
            ObligationBucket("principal", 80000, priority=3),
        ],
    )
    result.suspense  # 45000
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Union

from payment_engines.tracer import traced_engine
from payment_kernel.exceptions import InvalidAllocationInputError
from payment_kernel.logging_config import get_logger

logger = get_logger("engines.waterfall")

Amount = Union[int, Decimal]

SUSPENSE = "suspense"


def _check_amount(value: object, field: str) -> Amount:
    # bool is an int subclass; True must not allocate one cent
    if isinstance(value, bool):
        raise InvalidAllocationInputError(field, "booleans are not amounts")
    if isinstance(value, float):
        raise InvalidAllocationInputError(
            field, "floating-point amounts are not accepted; use int minor units or Decimal"
        )
    if isinstance(value, Decimal):
        if not value.is_finite():
            raise InvalidAllocationInputError(field, f"non-finite amount {value}")
        return value
    if isinstance(value, int):
        return value
    raise InvalidAllocationInputError(field, f"unsupported amount type {type(value).__name__}")


@dataclass(frozen=True)
class ObligationBucket:
    """
    One obligation competing for the payment.

    Contract:
        Lower ``priority`` is filled first.  ``required`` may be negative
        (a credit balance); such a bucket is skipped.
    """

    name: str
    required: Amount
    priority: int = 0

    def __post_init__(self) -> None:
        if not isinstance(self.name, str) or not self.name.strip():
            raise InvalidAllocationInputError("name", "bucket name must be a non-empty string")
        if self.name == SUSPENSE:
            raise InvalidAllocationInputError("name", f"'{SUSPENSE}' is reserved")
        _check_amount(self.required, f"{self.name}.required")
        if isinstance(self.priority, bool) or not isinstance(self.priority, int):
            raise InvalidAllocationInputError(f"{self.name}.priority", "priority must be an integer")


@dataclass(frozen=True)
class BucketAllocation:
    name: str
    priority: int
    required: Amount
    allocated: Amount

    @property
    def shortfall(self) -> Amount:
        """Unpaid part of a positive requirement."""
        if self.required <= 0:
            return self.required - self.required
        return self.required - self.allocated

    @property
    def is_satisfied(self) -> bool:
        return self.shortfall == 0


@dataclass(frozen=True)
class WaterfallResult:
    """
    Allocation outcome in priority order.

    Guarantees:
        - ``allocated_total + suspense == amount``.
        - ``allocations`` lists every input bucket once, sorted by priority.
    """

    amount: Amount
    allocations: tuple[BucketAllocation, ...]
    suspense: Amount

    @property
    def allocated_total(self) -> Amount:
        return sum((a.allocated for a in self.allocations), self.amount - self.amount)

    def get(self, name: str) -> Amount:
        if name == SUSPENSE:
            return self.suspense
        for allocation in self.allocations:
            if allocation.name == name:
                return allocation.allocated
        raise KeyError(name)

    def as_dict(self) -> dict[str, Amount]:
        """``{bucket: allocated, ..., "suspense": suspense}``."""
        result = {a.name: a.allocated for a in self.allocations}
        result[SUSPENSE] = self.suspense
        return result


class WaterfallAllocator:
    """
    Allocates a payment across obligation buckets.

    Contract:
        Pure and stateless; safe to share across threads.
    Guarantees:
        - Integer inputs produce integer outputs.  If the amount or any
          requirement is a Decimal, every output is a Decimal.
    Non-goals:
        - Does not round.  Fractional Decimal inputs stay exact.
    """

    @traced_engine("waterfall", "1.0", fingerprint_fields=("amount", "buckets"))
    def allocate(self, amount: Amount, buckets: Sequence[ObligationBucket]) -> WaterfallResult:
        amount = _check_amount(amount, "amount")
        if amount < 0:
            raise InvalidAllocationInputError("amount", f"payment amount must not be negative, got {amount}")

        seen: set[str] = set()
        for bucket in buckets:
            if bucket.name in seen:
                raise InvalidAllocationInputError("name", f"duplicate bucket {bucket.name!r}")
            seen.add(bucket.name)

        use_decimal = isinstance(amount, Decimal) or any(
            isinstance(b.required, Decimal) for b in buckets
        )
        zero: Amount = Decimal(0) if use_decimal else 0
        if use_decimal:
            amount = Decimal(amount)

        # sorted() is stable: equal priorities keep declaration order
        ordered = sorted(buckets, key=lambda b: b.priority)

        remaining = amount
        allocations: list[BucketAllocation] = []
        for bucket in ordered:
            required = Decimal(bucket.required) if use_decimal else bucket.required
            if required <= 0 or remaining <= 0:
                allocated = zero
            else:
                allocated = min(required, remaining)
            remaining -= allocated
            allocations.append(
                BucketAllocation(
                    name=bucket.name,
                    priority=bucket.priority,
                    required=required,
                    allocated=allocated,
                )
            )

        result = WaterfallResult(amount=amount, allocations=tuple(allocations), suspense=remaining)

        # INVARIANT: conservation to the last minor unit
        assert result.allocated_total + result.suspense == amount, (
            f"waterfall leaked: {result.allocated_total} + {result.suspense} != {amount}"
        )

        logger.debug(
            "waterfall_allocated",
            extra={
                "amount": str(amount),
                "bucket_count": len(allocations),
                "suspense": str(remaining),
            },
        )
        return result


# ---------------------------------------------------------------------------
# Servicing helpers
# ---------------------------------------------------------------------------


class BucketName(str, Enum):
    FEES_DUE = "fees_due"
    INTEREST_PAST_DUE = "interest_past_due"
    INTEREST_CURRENT = "interest_current"
    PRINCIPAL = "principal"
    ESCROW = "escrow"
    FUTURE = "future"


DEFAULT_WATERFALL: tuple[BucketName, ...] = (
    BucketName.FEES_DUE,
    BucketName.INTEREST_PAST_DUE,
    BucketName.INTEREST_CURRENT,
    BucketName.PRINCIPAL,
    BucketName.ESCROW,
    BucketName.FUTURE,
)


@dataclass(frozen=True)
class Outstanding:
    """Amounts owed per servicing bucket, in minor units."""

    fees_due_minor: int = 0
    interest_past_due_minor: int = 0
    interest_current_minor: int = 0
    principal_minor: int = 0
    escrow_minor: int = 0

    def for_bucket(self, bucket: BucketName) -> int:
        return {
            BucketName.FEES_DUE: self.fees_due_minor,
            BucketName.INTEREST_PAST_DUE: self.interest_past_due_minor,
            BucketName.INTEREST_CURRENT: self.interest_current_minor,
            BucketName.PRINCIPAL: self.principal_minor,
            BucketName.ESCROW: self.escrow_minor,
            BucketName.FUTURE: 0,
        }[bucket]


def calculate_outstanding(
    principal_balance: int,
    accrued_interest: int,
    current_interest: int,
    unpaid_fees: int,
    escrow_required: int,
) -> Outstanding:
    """Past-due interest is accrued interest beyond the current period's."""
    past_due = accrued_interest - current_interest if accrued_interest > current_interest else 0
    return Outstanding(
        fees_due_minor=unpaid_fees,
        interest_past_due_minor=past_due,
        interest_current_minor=current_interest,
        principal_minor=principal_balance,
        escrow_minor=escrow_required,
    )


@dataclass(frozen=True)
class Allocation:
    bucket: BucketName
    applied_minor: int


@dataclass(frozen=True)
class PaymentAllocation:
    """
    Result of allocate_payment().

    ``unapplied_minor`` is non-zero only when the waterfall has no
    ``future`` bucket to absorb an overpayment.
    """

    allocations: tuple[Allocation, ...]
    unapplied_minor: int = 0

    @property
    def applied_minor(self) -> int:
        return sum(a.applied_minor for a in self.allocations)

    def applied_to(self, bucket: BucketName) -> int:
        return sum(a.applied_minor for a in self.allocations if a.bucket == bucket)


def allocate_payment(
    payment_minor: int,
    waterfall: Iterable[BucketName | str] = DEFAULT_WATERFALL,
    outstanding: Outstanding | None = None,
) -> PaymentAllocation:
    """
    Apply a loan payment in ``waterfall`` order.

    Buckets receiving nothing are omitted.  ``future`` takes whatever is
    left when it is reached.
    """
    outstanding = outstanding or Outstanding()
    order = [BucketName(b) for b in waterfall]
    has_future = BucketName.FUTURE in order

    buckets = [
        ObligationBucket(bucket.value, outstanding.for_bucket(bucket), priority=rank)
        for rank, bucket in enumerate(order)
        if bucket is not BucketName.FUTURE
    ]
    result = WaterfallAllocator().allocate(payment_minor, buckets)

    allocations: list[Allocation] = []
    for bucket in order:
        if bucket is BucketName.FUTURE:
            if result.suspense > 0:
                allocations.append(Allocation(bucket, result.suspense))
            # Buckets after ``future`` never receive anything
            break
        applied = result.get(bucket.value)
        if applied > 0:
            allocations.append(Allocation(bucket, applied))

    return PaymentAllocation(
        allocations=tuple(allocations),
        unapplied_minor=0 if has_future else result.suspense,
    )


class PostingAccount(str, Enum):
    FEES_RECEIVABLE = "fees_receivable"
    INTEREST_RECEIVABLE = "interest_receivable"
    LOAN_PRINCIPAL = "loan_principal"
    ESCROW_LIABILITY = "escrow_liability"
    SUSPENSE = "suspense"


@dataclass(frozen=True)
class AllocationPosting:
    account: PostingAccount
    amount_minor: int
    memo: str


_POSTING_MAP: dict[BucketName, tuple[PostingAccount, str]] = {
    BucketName.FEES_DUE: (PostingAccount.FEES_RECEIVABLE, "Fees paid"),
    BucketName.INTEREST_PAST_DUE: (PostingAccount.INTEREST_RECEIVABLE, "Past due interest paid"),
    BucketName.INTEREST_CURRENT: (PostingAccount.INTEREST_RECEIVABLE, "Current interest paid"),
    BucketName.PRINCIPAL: (PostingAccount.LOAN_PRINCIPAL, "Principal reduction"),
    BucketName.ESCROW: (PostingAccount.ESCROW_LIABILITY, "Escrow deposit"),
    BucketName.FUTURE: (PostingAccount.SUSPENSE, "Prepayment / Future payment"),
}


def allocations_to_postings(allocations: Iterable[Allocation]) -> list[AllocationPosting]:
    """GL posting line for each allocation, in allocation order."""
    postings = []
    for allocation in allocations:
        account, memo = _POSTING_MAP[allocation.bucket]
        postings.append(AllocationPosting(account, allocation.applied_minor, memo))
    return postings


def _non_principal_due(waterfall: Iterable[BucketName], outstanding: Outstanding) -> int:
    return sum(
        outstanding.for_bucket(b)
        for b in waterfall
        if b not in (BucketName.PRINCIPAL, BucketName.FUTURE)
    )


def meets_minimum_payment(
    payment_minor: int,
    min_payment_minor: int,
    waterfall: Iterable[BucketName | str] = DEFAULT_WATERFALL,
    outstanding: Outstanding | None = None,
) -> bool:
    """Payment covers the lesser of the non-principal amount due and the minimum."""
    outstanding = outstanding or Outstanding()
    required = _non_principal_due([BucketName(b) for b in waterfall], outstanding)
    return payment_minor >= min(required, min_payment_minor)


def calculate_shortage(
    payment_minor: int,
    scheduled_payment_minor: int,
    waterfall: Iterable[BucketName | str] = DEFAULT_WATERFALL,
    outstanding: Outstanding | None = None,
) -> int:
    """
    Amount by which ``payment_minor`` falls short of what was expected.

    Expected is every non-principal bucket due before ``future``, plus the
    part of the scheduled payment not already covered by those buckets.
    """
    outstanding = outstanding or Outstanding()
    expected = 0
    for bucket in (BucketName(b) for b in waterfall):
        if bucket is BucketName.FUTURE:
            break
        if bucket is BucketName.PRINCIPAL:
            expected += max(scheduled_payment_minor - expected, 0)
        else:
            expected += outstanding.for_bucket(bucket)
    return max(expected - payment_minor, 0)


def is_delinquent(outstanding: Outstanding) -> bool:
    return outstanding.interest_past_due_minor > 0 or outstanding.fees_due_minor > 0


def calculate_total_due(outstanding: Outstanding, include_full_principal: bool = False) -> int:
    total = (
        outstanding.fees_due_minor
        + outstanding.interest_past_due_minor
        + outstanding.interest_current_minor
        + outstanding.escrow_minor
    )
    if include_full_principal:
        total += outstanding.principal_minor
    return total
