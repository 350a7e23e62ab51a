"""
Property-based tests for the money-moving invariants.

Properties:
- Waterfall: allocated + suspense == amount; buckets filled strictly in
  priority order; no bucket over-filled
- Remittance split: investor + servicer + retained == collected, no
  negative component, caps respected
- Variance: balanced exactly when every difference is within threshold
- Idempotency keys and payload hashes are insensitive to presentation
"""

from datetime import date

from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from payment_engines.reconciliation import ReconciliationTotals, compute_variance
from payment_engines.waterfall import ObligationBucket, WaterfallAllocator
from payment_kernel.utils.hashing import compute_payload_hash
from payment_kernel.utils.idempotency import derive_idempotency_key
from payment_modules.remittance import (
    LoanCollectionTotals,
    RuleBucket,
    ServicerFeeBasis,
    WaterfallRuleSpec,
    split_loan,
)

MINOR = st.integers(min_value=0, max_value=10**9)
BPS = st.integers(min_value=0, max_value=10000)

FUZZ_SETTINGS = settings(max_examples=200, deadline=None, suppress_health_check=[HealthCheck.too_slow])

allocator = WaterfallAllocator()


@st.composite
def bucket_lists(draw):
    specs = draw(
        st.lists(
            st.tuples(st.integers(min_value=-1000, max_value=10**7), st.integers(min_value=0, max_value=5)),
            max_size=8,
        )
    )
    return [ObligationBucket(f"b{i}", required, priority=priority) for i, (required, priority) in enumerate(specs)]


@st.composite
def rule_sets(draw):
    buckets = draw(
        st.lists(
            st.sampled_from([RuleBucket.INTEREST, RuleBucket.PRINCIPAL, RuleBucket.LATE_FEES]),
            unique=True,
            max_size=3,
        )
    )
    ranks = draw(st.permutations(range(1, len(buckets) + 1)))
    return [
        WaterfallRuleSpec(rank=rank, bucket=bucket, cap_minor=draw(st.none() | MINOR))
        for rank, bucket in zip(ranks, buckets)
    ]


class TestWaterfallProperties:
    @FUZZ_SETTINGS
    @given(amount=MINOR, buckets=bucket_lists())
    def test_conservation(self, amount, buckets):
        result = allocator.allocate(amount, buckets)
        assert result.allocated_total + result.suspense == amount
        assert result.suspense >= 0

    @FUZZ_SETTINGS
    @given(amount=MINOR, buckets=bucket_lists())
    def test_priority_order(self, amount, buckets):
        result = allocator.allocate(amount, buckets)

        starved = False
        for allocation in result.allocations:
            assert 0 <= allocation.allocated <= max(allocation.required, 0)
            if starved:
                assert allocation.allocated == 0
            if allocation.allocated < max(allocation.required, 0):
                starved = True

    @FUZZ_SETTINGS
    @given(amount=MINOR, buckets=bucket_lists())
    def test_suspense_only_when_all_satisfied(self, amount, buckets):
        result = allocator.allocate(amount, buckets)
        if result.suspense > 0:
            assert all(a.allocated == max(a.required, 0) for a in result.allocations)


class TestRemittanceSplitProperties:
    @FUZZ_SETTINGS
    @given(
        principal=MINOR,
        interest=MINOR,
        late_fees=MINOR,
        rules=rule_sets(),
        fee_bps=BPS,
        split_bps=BPS,
        basis=st.sampled_from(list(ServicerFeeBasis)),
    )
    def test_conservation(self, principal, interest, late_fees, rules, fee_bps, split_bps, basis):
        totals = LoanCollectionTotals("LN-1", principal, interest, late_fees)
        split = split_loan(totals, rules, fee_bps, split_bps, basis)

        assert split.investor_share_minor + split.servicer_fee_minor + split.retained_minor == totals.total_minor
        for component in (
            split.principal_minor,
            split.interest_minor,
            split.fees_minor,
            split.servicer_fee_minor,
            split.retained_minor,
        ):
            assert component >= 0

    @FUZZ_SETTINGS
    @given(principal=MINOR, interest=MINOR, late_fees=MINOR, rules=rule_sets(), fee_bps=BPS, split_bps=BPS)
    def test_caps_respected(self, principal, interest, late_fees, rules, fee_bps, split_bps):
        split = split_loan(LoanCollectionTotals("LN-1", principal, interest, late_fees), rules, fee_bps, split_bps)
        amounts = {
            RuleBucket.PRINCIPAL: split.principal_minor,
            RuleBucket.INTEREST: split.interest_minor,
            RuleBucket.LATE_FEES: split.fees_minor,
        }
        for rule in rules:
            if rule.cap_minor is not None:
                assert amounts[rule.bucket] <= rule.cap_minor

    @FUZZ_SETTINGS
    @given(principal=MINOR, interest=MINOR, late_fees=MINOR, fee_bps=BPS, split_bps=BPS)
    def test_unruled_buckets_pay_investor_nothing(self, principal, interest, late_fees, fee_bps, split_bps):
        rules = [WaterfallRuleSpec(rank=1, bucket=RuleBucket.PRINCIPAL)]
        split = split_loan(LoanCollectionTotals("LN-1", principal, interest, late_fees), rules, fee_bps, split_bps)
        assert split.interest_minor == 0
        assert split.fees_minor == 0


class TestVarianceProperties:
    @FUZZ_SETTINGS
    @given(
        remit_investor=MINOR,
        remit_servicer=MINOR,
        gl_investor=st.integers(min_value=-(10**9), max_value=10**9),
        gl_servicer=st.integers(min_value=-(10**9), max_value=10**9),
        threshold=st.integers(min_value=0, max_value=100),
    )
    def test_balanced_iff_within_threshold(self, remit_investor, remit_servicer, gl_investor, gl_servicer, threshold):
        report = compute_variance(
            ReconciliationTotals(remit_investor, remit_servicer),
            ReconciliationTotals(gl_investor, gl_servicer),
            threshold_minor=threshold,
        )
        diffs = (report.diff_investor_minor, report.diff_servicer_minor, report.diff_total_minor)

        assert report.diff_total_minor == report.diff_investor_minor + report.diff_servicer_minor
        assert report.is_balanced == all(abs(d) <= threshold for d in diffs)

    @FUZZ_SETTINGS
    @given(investor=MINOR, servicer=MINOR)
    def test_identical_sides_balance(self, investor, servicer):
        totals = ReconciliationTotals(investor, servicer)
        assert compute_variance(totals, totals).is_balanced


class TestPresentationInsensitivity:
    @FUZZ_SETTINGS
    @given(
        reference=st.text(alphabet="ABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789-", min_size=1, max_size=20),
        amount=MINOR,
        loan_id=st.integers(min_value=1, max_value=10**9),
        value_date=st.dates(min_value=date(2000, 1, 1), max_value=date(2099, 12, 31)),
        padding=st.sampled_from(["", " ", "\t", "  "]),
    )
    def test_idempotency_key(self, reference, amount, loan_id, value_date, padding):
        canonical = derive_idempotency_key("ach", reference, value_date, amount, str(loan_id))
        variant = derive_idempotency_key(
            f"{padding}ACH", f"{padding}{reference.lower()}{padding}", value_date.isoformat(), amount, loan_id
        )
        assert canonical == variant

    @FUZZ_SETTINGS
    @given(
        payload=st.dictionaries(
            st.text(min_size=1, max_size=10),
            st.one_of(st.integers(), st.text(max_size=20), st.booleans(), st.none()),
            max_size=10,
        )
    )
    def test_payload_hash_ignores_key_order(self, payload):
        reordered = dict(reversed(list(payload.items())))
        assert compute_payload_hash(payload) == compute_payload_hash(reordered)
