"""
Tests for the remittance-versus-ledger variance engine.

Covers:
- Zero variance balances
- A single minor-unit discrepancy fails at threshold 0
- Threshold tolerance is inclusive
- Sign convention: ledger minus remittance
"""

import pytest

from payment_engines import ReconciliationTotals, compute_variance
from payment_kernel.exceptions import InvalidAllocationInputError


class TestComputeVariance:
    def test_zero_variance(self):
        report = compute_variance(
            ReconciliationTotals(investor_minor=95000, servicer_minor=5000),
            ReconciliationTotals(investor_minor=95000, servicer_minor=5000),
        )
        assert report.is_balanced
        assert report.differences == {"investor": 0, "servicer": 0, "total": 0}
        assert report.breaches == {}

    def test_one_minor_unit_fails(self):
        """A 1-cent discrepancy is a failure at zero tolerance."""
        report = compute_variance(
            ReconciliationTotals(investor_minor=95000, servicer_minor=5000),
            ReconciliationTotals(investor_minor=94999, servicer_minor=5000),
            threshold_minor=0,
        )
        assert not report.is_balanced
        assert report.diff_investor_minor == -1
        assert report.diff_total_minor == -1
        assert report.breaches == {"investor": -1, "total": -1}

    def test_threshold_is_inclusive(self):
        report = compute_variance(
            ReconciliationTotals(95000, 5000),
            ReconciliationTotals(95002, 4998),
            threshold_minor=2,
        )
        assert report.is_balanced
        assert report.diff_total_minor == 0

    def test_offsetting_bucket_errors_still_fail(self):
        """Totals agree but the split does not."""
        report = compute_variance(
            ReconciliationTotals(95000, 5000),
            ReconciliationTotals(95100, 4900),
        )
        assert not report.is_balanced
        assert report.breaches == {"investor": 100, "servicer": -100}

    def test_ledger_over_remittance_is_positive(self):
        report = compute_variance(ReconciliationTotals(0, 0), ReconciliationTotals(10, 0))
        assert report.diff_investor_minor == 10


class TestInputs:
    def test_negative_threshold_rejected(self):
        with pytest.raises(InvalidAllocationInputError):
            compute_variance(ReconciliationTotals(0, 0), ReconciliationTotals(0, 0), threshold_minor=-1)

    @pytest.mark.parametrize("value", [1.0, "1", None, True])
    def test_non_integer_totals_rejected(self, value):
        with pytest.raises(InvalidAllocationInputError):
            ReconciliationTotals(investor_minor=value, servicer_minor=0)
