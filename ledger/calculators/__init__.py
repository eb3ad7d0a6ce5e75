from .adjustments import (
    AdjustmentCalculator,
    DiscountCalculator,
    PenaltyWaiverCalculator,
    calculate_discount,
    calculate_penalty_waiver,
)
from .distribution import Allocation, allocate_payment, apply_allocation, classify_item, order_items
from .final_amount import FinalAmountCalculator, calculate_final_amount, original_amount, penalty_pool
from .overpayment import OverpaymentGuard

__all__ = [
    "AdjustmentCalculator",
    "DiscountCalculator",
    "PenaltyWaiverCalculator",
    "calculate_discount",
    "calculate_penalty_waiver",
    "Allocation",
    "allocate_payment",
    "apply_allocation",
    "classify_item",
    "order_items",
    "FinalAmountCalculator",
    "calculate_final_amount",
    "original_amount",
    "penalty_pool",
    "OverpaymentGuard",
]
