"""
Unit Tests for the Overpayment Guard
"""

from decimal import Decimal

import pytest

from ledger.calculators import OverpaymentGuard


@pytest.fixture
def guard():
    return OverpaymentGuard()


class TestOverpaymentGuard:
    """Payment amount checked against the outstanding balance."""

    def test_partial_payment_is_valid(self, guard):
        result = guard.check(Decimal("100"), Decimal("500"))
        assert result.is_valid
        assert result.warning is None

    def test_exact_payment_warns_full_settlement(self, guard):
        result = guard.check("500.00", Decimal("500"), "DEM-1")
        assert result.is_valid
        assert "fully settles" in result.warning
        assert "DEM-1" in result.warning

    def test_overpayment_rejected_with_excess(self, guard):
        result = guard.check(Decimal("600"), Decimal("500"), "DEM-1")
        assert not result.is_valid
        assert result.error_code == "OVERPAYMENT"
        assert result.details["excess_amount"] == 100.0
        assert result.details["balance_amount"] == 500.0
        assert "₹600.00" in result.error and "₹500.00" in result.error

    def test_one_paisa_over_is_rejected(self, guard):
        assert guard.check("500.01", "500.00").error_code == "OVERPAYMENT"

    @pytest.mark.parametrize("amount", [0, -5, "0.00", "abc", None])
    def test_non_positive_or_garbage_rejected(self, guard, amount):
        result = guard.check(amount, Decimal("500"))
        assert not result.is_valid
        assert result.error_code == "INVALID_AMOUNT"

    def test_settled_demand_rejects_any_payment(self, guard):
        assert guard.check(1, Decimal("0")).error_code == "OVERPAYMENT"
