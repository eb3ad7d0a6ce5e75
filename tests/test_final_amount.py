"""
Unit Tests for the Final-Amount Formula
"""

from decimal import Decimal
from types import SimpleNamespace

from ledger.calculators import calculate_final_amount, original_amount, penalty_pool


def demand(total, penalty="0", interest="0", penalty_waived="0"):
    return SimpleNamespace(
        total_amount=Decimal(total),
        penalty_amount=Decimal(penalty),
        interest_amount=Decimal(interest),
        penalty_waived=Decimal(penalty_waived),
    )


class TestBases:
    """Original amount and penalty pool."""

    def test_original_amount_excludes_penalty_and_interest(self):
        assert original_amount(demand("1000", "100", "25")) == Decimal("875.00")

    def test_penalty_pool(self):
        assert penalty_pool(demand("1000", "100", "25")) == Decimal("125.00")


class TestFinalAmount:
    """Final amount from discount and waiver."""

    def test_no_adjustments_is_total(self):
        result = calculate_final_amount(demand("1000", "100"))
        assert result.final_amount == Decimal("1000.00")
        assert result.remaining_penalty == Decimal("100.00")

    def test_discount_only(self):
        result = calculate_final_amount(demand("1000", "100"), Decimal("90"))
        assert result.original_amount == Decimal("900.00")
        assert result.final_amount == Decimal("910.00")

    def test_waiver_only(self):
        result = calculate_final_amount(demand("1000", "100"), waiver_amount=Decimal("50"))
        assert result.remaining_penalty == Decimal("50.00")
        assert result.final_amount == Decimal("950.00")

    def test_waiver_defaults_to_demand_penalty_waived(self):
        result = calculate_final_amount(demand("1000", "100", penalty_waived="40"), Decimal("90"))
        assert result.waiver_amount == Decimal("40.00")
        assert result.final_amount == Decimal("870.00")

    def test_null_penalty_waived_defaults_to_zero(self):
        d = demand("1000", "100")
        d.penalty_waived = None
        assert calculate_final_amount(d).final_amount == Decimal("1000.00")

    def test_discount_and_waiver_are_independent(self):
        d = demand("1000", "80", "20")
        result = calculate_final_amount(d, Decimal("90"), Decimal("50"))
        # 900 - 90 + (100 - 50)
        assert result.final_amount == Decimal("860.00")
