"""
Overpayment Guard

Pure pre-check run by every payment entry path before a payment record is
even constructed.
"""

from ..models import GuardResult
from ..money import TOLERANCE, format_inr, parse_amount, round2, to_money


class OverpaymentGuard:
    """Rejects non-positive payments and payments above the outstanding balance."""

    def check(self, payment_amount, balance_amount, demand_label: str | None = None) -> GuardResult:
        label = f" for demand {demand_label}" if demand_label else ""
        parsed = parse_amount(payment_amount)
        if parsed is None or round2(parsed) <= 0:
            return GuardResult(
                is_valid=False,
                error_code="INVALID_AMOUNT",
                error=f"Payment amount must be greater than zero, got: {payment_amount!r}",
                details={"attempted_amount": to_money(parsed) if parsed is not None else payment_amount},
            )

        amount = round2(parsed)
        balance = round2(balance_amount)

        if amount > balance:
            excess = round2(amount - balance)
            return GuardResult(
                is_valid=False,
                error_code="OVERPAYMENT",
                error=(
                    f"Payment amount ({format_inr(amount)}) exceeds demand balance "
                    f"({format_inr(balance)}){label}"
                ),
                details={
                    "attempted_amount": to_money(amount),
                    "balance_amount": to_money(balance),
                    "excess_amount": to_money(excess),
                },
            )

        warning = None
        if abs(amount - balance) < TOLERANCE:
            warning = f"Payment of {format_inr(amount)} fully settles the outstanding balance{label}"

        return GuardResult(
            is_valid=True,
            warning=warning,
            details={"attempted_amount": to_money(amount), "balance_amount": to_money(balance)},
        )
