"""
Unit Tests for Discount and Penalty-Waiver Calculators
"""

from decimal import Decimal

import pytest

from ledger.calculators import calculate_discount, calculate_penalty_waiver


class TestDiscountCalculator:
    """Discount on the original amount."""

    def test_percentage(self):
        result = calculate_discount(Decimal("900"), "PERCENTAGE", 10)
        assert result.ok
        assert result.amount == Decimal("90.00")

    def test_percentage_rounds_half_up(self):
        # 333.33 × 15% = 49.9995
        result = calculate_discount(Decimal("333.33"), "PERCENTAGE", 15)
        assert result.amount == Decimal("50.00")

    def test_fixed(self):
        result = calculate_discount(Decimal("900"), "FIXED", "125.555")
        assert result.amount == Decimal("125.56")

    def test_type_is_case_insensitive(self):
        assert calculate_discount(Decimal("100"), "fixed", 10).amount == Decimal("10.00")

    def test_full_percentage_equals_base(self):
        result = calculate_discount(Decimal("900"), "PERCENTAGE", 100)
        assert result.ok
        assert result.amount == Decimal("900.00")

    def test_percentage_over_100(self):
        result = calculate_discount(Decimal("900"), "PERCENTAGE", 150)
        assert result.error_code == "PercentageOutOfRange"
        assert result.amount == Decimal("0.00")

    def test_fixed_exceeding_base(self):
        result = calculate_discount(Decimal("900"), "FIXED", 901)
        assert result.error_code == "ExceedsBase"
        assert "₹901.00" in result.error
        assert "₹900.00" in result.error

    @pytest.mark.parametrize("value", [-1, "abc", None, float("nan")])
    def test_invalid_value(self, value):
        assert calculate_discount(Decimal("900"), "FIXED", value).error_code == "InvalidValue"

    def test_unknown_type(self):
        assert calculate_discount(Decimal("900"), "FLAT", 10).error_code == "InvalidType"

    def test_zero_value_is_not_rejected_here(self):
        result = calculate_discount(Decimal("900"), "FIXED", 0)
        assert result.ok
        assert result.amount == Decimal("0.00")

    @pytest.mark.parametrize("base", ["0", "0.01", "1", "99.99", "900", "123456.78"])
    @pytest.mark.parametrize("kind,value", [("PERCENTAGE", 0), ("PERCENTAGE", 33.333), ("PERCENTAGE", 100),
                                            ("FIXED", 0), ("FIXED", 50), ("FIXED", 1000)])
    def test_never_exceeds_base_or_goes_negative(self, base, kind, value):
        result = calculate_discount(Decimal(base), kind, value)
        assert Decimal("0") <= result.amount <= Decimal(base)


class TestPenaltyWaiverCalculator:
    """Waiver on the penalty pool."""

    def test_fixed_reports_remaining(self):
        result = calculate_penalty_waiver(Decimal("100"), "FIXED", 50)
        assert result.amount == Decimal("50.00")
        assert result.remaining == Decimal("50.00")

    def test_percentage(self):
        result = calculate_penalty_waiver(Decimal("150"), "PERCENTAGE", 50)
        assert result.amount == Decimal("75.00")
        assert result.remaining == Decimal("75.00")

    def test_full_waiver(self):
        result = calculate_penalty_waiver(Decimal("100"), "PERCENTAGE", 100)
        assert result.remaining == Decimal("0.00")

    def test_exceeds_penalty(self):
        result = calculate_penalty_waiver(Decimal("100"), "FIXED", 150)
        assert result.error_code == "ExceedsBase"
        assert result.amount == Decimal("0.00")
        assert result.remaining == Decimal("100.00")
        assert "penalty amount" in result.error

    def test_percentage_out_of_range(self):
        assert calculate_penalty_waiver(Decimal("100"), "PERCENTAGE", 101).error_code == "PercentageOutOfRange"
