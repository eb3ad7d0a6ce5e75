"""
Final-Amount Formula

    original_amount   = total - penalty - interest
    penalty_pool      = penalty + interest
    remaining_penalty = penalty_pool - waiver
    final_amount      = original_amount - discount + remaining_penalty

Discount and waiver are independent terms; neither one ever touches the
other's base.
"""

from decimal import Decimal

from ..models import FinalAmountBreakdown
from ..money import ZERO, round2


def original_amount(demand) -> Decimal:
    """Tax principal: total minus penalty and interest."""
    return round2(round2(demand.total_amount) - round2(demand.penalty_amount) - round2(demand.interest_amount))


def penalty_pool(demand) -> Decimal:
    """Penalty plus interest."""
    return round2(round2(demand.penalty_amount) + round2(demand.interest_amount))


class FinalAmountCalculator:
    """Single authoritative computation of a demand's payable figure."""

    def calculate(self, demand, discount_amount=ZERO, waiver_amount=None) -> FinalAmountBreakdown:
        """
        Recompute the payable amount for ``demand``.

        ``waiver_amount`` defaults to what the demand already has waived, so a
        caller that only changes the discount keeps an existing waiver intact.
        """
        if waiver_amount is None:
            waiver_amount = demand.penalty_waived or ZERO

        original = original_amount(demand)
        pool = penalty_pool(demand)
        discount = round2(discount_amount)
        waiver = round2(waiver_amount)
        remaining_penalty = round2(pool - waiver)

        return FinalAmountBreakdown(
            original_amount=original,
            penalty_amount=pool,
            discount_amount=discount,
            waiver_amount=waiver,
            remaining_penalty=remaining_penalty,
            final_amount=round2(original - discount + remaining_penalty),
        )


def calculate_final_amount(demand, discount_amount=ZERO, waiver_amount=None) -> FinalAmountBreakdown:
    return FinalAmountCalculator().calculate(demand, discount_amount, waiver_amount)
