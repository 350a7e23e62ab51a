"""
Module: payment_engines
Responsibility:
    Re-exports the pure calculation engines: the waterfall allocator with
    its servicing helpers, and the reconciliation variance engine.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import payment_kernel exceptions and logging.
    MUST NOT import payment_services or payment_modules.

Invariants enforced:
    - Purity: engines never read the clock or the database.
    - Exact arithmetic: int minor units or Decimal; floats are rejected.

Audit relevance:
    Every engine invocation is traced via ``@traced_engine``
    (PAYMENT_ENGINE_TRACE log records with an input fingerprint).
"""

from payment_engines.reconciliation import (
    ReconciliationTotals,
    VarianceReport,
    compute_variance,
)
from payment_engines.tracer import compute_input_fingerprint, traced_engine
from payment_engines.waterfall import (
    DEFAULT_WATERFALL,
    SUSPENSE,
    Allocation,
    AllocationPosting,
    BucketAllocation,
    BucketName,
    ObligationBucket,
    Outstanding,
    PaymentAllocation,
    PostingAccount,
    WaterfallAllocator,
    WaterfallResult,
    allocate_payment,
    allocations_to_postings,
    calculate_outstanding,
    calculate_shortage,
    calculate_total_due,
    is_delinquent,
    meets_minimum_payment,
)

__all__ = [
    # Waterfall
    "WaterfallAllocator",
    "ObligationBucket",
    "BucketAllocation",
    "WaterfallResult",
    "SUSPENSE",
    # Servicing helpers
    "BucketName",
    "DEFAULT_WATERFALL",
    "Outstanding",
    "Allocation",
    "PaymentAllocation",
    "PostingAccount",
    "AllocationPosting",
    "allocate_payment",
    "allocations_to_postings",
    "calculate_outstanding",
    "calculate_shortage",
    "calculate_total_due",
    "is_delinquent",
    "meets_minimum_payment",
    # Reconciliation
    "ReconciliationTotals",
    "VarianceReport",
    "compute_variance",
    # Tracing
    "traced_engine",
    "compute_input_fingerprint",
]
