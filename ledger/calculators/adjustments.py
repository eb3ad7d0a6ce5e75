"""
Adjustment Calculators

Discounts act on the tax principal (total - penalty - interest); penalty
waivers act on the penalty pool (penalty + interest). Each calculator only
ever sees its own base.
"""

from decimal import Decimal

from ..models import AdjustmentCalculation, AdjustmentType
from ..money import HUNDRED, ZERO, format_inr, parse_amount, round2


class AdjustmentCalculator:
    """Shared PERCENTAGE/FIXED arithmetic for both adjustment kinds."""

    base_label = "base amount"

    def calculate(self, base, adjustment_type, value) -> AdjustmentCalculation:
        base_amount = round2(base)
        parsed = parse_amount(value)
        if parsed is None or parsed < 0:
            return self._reject(base_amount, "InvalidValue", f"Invalid adjustment value: {value!r}")

        kind = str(adjustment_type or "").upper()
        if kind == AdjustmentType.PERCENTAGE.value:
            if parsed > HUNDRED:
                return self._reject(base_amount, "PercentageOutOfRange", f"Percentage cannot exceed 100, got: {parsed}")
            amount = round2(base_amount * parsed / HUNDRED)
        elif kind == AdjustmentType.FIXED.value:
            amount = round2(parsed)
        else:
            return self._reject(base_amount, "InvalidType", f"Invalid adjustment type: {adjustment_type!r}")

        if amount > base_amount:
            return self._reject(
                base_amount,
                "ExceedsBase",
                f"Adjustment of {format_inr(amount)} cannot exceed {self.base_label} of {format_inr(base_amount)}",
            )
        return self._accept(base_amount, amount)

    def _accept(self, base: Decimal, amount: Decimal) -> AdjustmentCalculation:
        return AdjustmentCalculation(amount=amount)

    def _reject(self, base: Decimal, code: str, message: str) -> AdjustmentCalculation:
        return AdjustmentCalculation(amount=ZERO, error_code=code, error=message)


class DiscountCalculator(AdjustmentCalculator):
    """Discount on the original (tax-only) amount."""

    base_label = "original amount"


class PenaltyWaiverCalculator(AdjustmentCalculator):
    """Waiver on the penalty pool; also reports the penalty left after waiving."""

    base_label = "penalty amount"

    def _accept(self, base: Decimal, amount: Decimal) -> AdjustmentCalculation:
        return AdjustmentCalculation(amount=amount, remaining=round2(base - amount))

    def _reject(self, base: Decimal, code: str, message: str) -> AdjustmentCalculation:
        return AdjustmentCalculation(amount=ZERO, remaining=base, error_code=code, error=message)


def calculate_discount(original_amount, discount_type, discount_value) -> AdjustmentCalculation:
    return DiscountCalculator().calculate(original_amount, discount_type, discount_value)


def calculate_penalty_waiver(penalty_amount, waiver_type, waiver_value) -> AdjustmentCalculation:
    return PenaltyWaiverCalculator().calculate(penalty_amount, waiver_type, waiver_value)
