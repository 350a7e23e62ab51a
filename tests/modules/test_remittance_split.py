"""
Tests for the pure remittance split and cycle period derivation.

Covers:
- Servicer fee from basis points with floor division
- Late-fee split between investor and servicer
- Fee netting in rule rank order
- Caps and unruled collections retained
- Conservation: investor + servicer + retained == collected
- Cycle periods either side of the cutoff day
"""

from datetime import date

import pytest

from payment_modules.remittance import (
    LoanCollectionTotals,
    RuleBucket,
    ServicerFeeBasis,
    WaterfallRuleSpec,
    cycle_period_for,
    split_loan,
)

INTEREST = WaterfallRuleSpec(rank=1, bucket=RuleBucket.INTEREST)
PRINCIPAL = WaterfallRuleSpec(rank=2, bucket=RuleBucket.PRINCIPAL)
LATE_FEES = WaterfallRuleSpec(rank=3, bucket=RuleBucket.LATE_FEES)

LOAN = LoanCollectionTotals("LN-1", principal_minor=80000, interest_minor=20000, late_fees_minor=5000)


def _conserves(split):
    return split.investor_share_minor + split.servicer_fee_minor + split.retained_minor == split.collected_minor


class TestServicerFee:
    def test_fee_on_total_collected(self):
        """105000 collected at 25 bps floors to 262."""
        split = split_loan(LOAN, [INTEREST, PRINCIPAL, LATE_FEES], 25, 5000)

        assert split.interest_minor == 20000 - 262
        assert split.principal_minor == 80000
        assert split.fees_minor == 2500
        assert split.servicer_fee_minor == 262 + 2500
        assert split.retained_minor == 0
        assert split.investor_share_minor == 102238
        assert _conserves(split)

    def test_fee_on_interest_basis(self):
        split = split_loan(LOAN, [INTEREST, PRINCIPAL, LATE_FEES], 25, 5000, ServicerFeeBasis.INTEREST)
        assert split.servicer_fee_minor == 50 + 2500
        assert split.interest_minor == 19950

    def test_floor_division(self):
        """No fractional minor units: 399 * 25 / 10000 rounds down to zero."""
        totals = LoanCollectionTotals("LN-1", interest_minor=399)
        split = split_loan(totals, [INTEREST], 25, 0)
        assert split.servicer_fee_minor == 0
        assert split.interest_minor == 399

    def test_fee_netted_in_rank_order(self):
        """Principal ranked first absorbs the fee before interest."""
        rules = [
            WaterfallRuleSpec(rank=1, bucket=RuleBucket.PRINCIPAL),
            WaterfallRuleSpec(rank=2, bucket=RuleBucket.INTEREST),
        ]
        totals = LoanCollectionTotals("LN-1", principal_minor=100, interest_minor=10000)
        split = split_loan(totals, rules, 10000, 0, ServicerFeeBasis.INTEREST)

        assert split.principal_minor == 0
        assert split.interest_minor == 100
        assert split.servicer_fee_minor == 10000
        assert _conserves(split)

    def test_fee_beyond_investor_buckets_comes_from_unruled(self):
        totals = LoanCollectionTotals("LN-1", interest_minor=1000)
        split = split_loan(totals, [PRINCIPAL], 10000, 0)

        assert split.servicer_fee_minor == 1000
        assert split.investor_share_minor == 0
        assert split.retained_minor == 0


class TestLateFees:
    def test_split_between_investor_and_servicer(self):
        totals = LoanCollectionTotals("LN-1", late_fees_minor=3001)
        split = split_loan(totals, [LATE_FEES], 0, 5000)

        assert split.fees_minor == 1500
        assert split.servicer_fee_minor == 1501
        assert _conserves(split)

    def test_investor_takes_all(self):
        totals = LoanCollectionTotals("LN-1", late_fees_minor=5000)
        split = split_loan(totals, [LATE_FEES], 0, 10000)
        assert split.fees_minor == 5000

    def test_without_late_fee_rule_retained(self):
        split = split_loan(LOAN, [INTEREST, PRINCIPAL], 25, 5000)

        assert split.fees_minor == 0
        assert split.retained_minor == 5000
        assert split.servicer_fee_minor == 262
        assert _conserves(split)

    def test_servicer_late_share_never_charged_twice(self):
        """The fee cannot exceed what is left after the servicer's late-fee share."""
        totals = LoanCollectionTotals("LN-1", late_fees_minor=5000)
        split = split_loan(totals, [LATE_FEES], 25, 0)

        assert split.servicer_fee_minor == 5000
        assert split.fees_minor == 0
        assert _conserves(split)


class TestCapsAndRetention:
    def test_cap_excess_retained(self):
        capped = WaterfallRuleSpec(rank=2, bucket=RuleBucket.PRINCIPAL, cap_minor=50000)
        split = split_loan(LOAN, [INTEREST, capped, LATE_FEES], 25, 5000)

        assert split.principal_minor == 50000
        assert split.retained_minor == 30000
        assert _conserves(split)

    def test_zero_cap(self):
        capped = WaterfallRuleSpec(rank=1, bucket=RuleBucket.INTEREST, cap_minor=0)
        split = split_loan(LoanCollectionTotals("LN-1", interest_minor=700), [capped], 0, 0)
        assert split.interest_minor == 0
        assert split.retained_minor == 700

    def test_no_rules_everything_retained_after_fee(self):
        split = split_loan(LOAN, [], 25, 5000)

        assert split.investor_share_minor == 0
        assert split.servicer_fee_minor == 262
        assert split.retained_minor == 105000 - 262

    def test_empty_collection(self):
        split = split_loan(LoanCollectionTotals("LN-1"), [INTEREST, PRINCIPAL], 25, 5000)
        assert (split.investor_share_minor, split.servicer_fee_minor, split.retained_minor) == (0, 0, 0)

    def test_invalid_cap(self):
        with pytest.raises(ValueError):
            WaterfallRuleSpec(rank=1, bucket=RuleBucket.INTEREST, cap_minor=-1)


class TestCyclePeriod:
    """Before the cutoff: last month.  On or after: month start to cutoff."""

    @pytest.mark.parametrize(
        "today,cutoff,expected",
        [
            (date(2025, 8, 24), 25, (date(2025, 7, 1), date(2025, 7, 31))),
            (date(2025, 8, 25), 25, (date(2025, 8, 1), date(2025, 8, 25))),
            (date(2025, 8, 31), 25, (date(2025, 8, 1), date(2025, 8, 25))),
            (date(2025, 1, 10), 15, (date(2024, 12, 1), date(2024, 12, 31))),
            (date(2025, 2, 28), 31, (date(2025, 2, 1), date(2025, 2, 28))),
            (date(2024, 3, 5), 10, (date(2024, 2, 1), date(2024, 2, 29))),
        ],
    )
    def test_periods(self, today, cutoff, expected):
        assert cycle_period_for(today, cutoff) == expected
