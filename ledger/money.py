"""
Money helpers for the ledger core.

Every monetary value is a Decimal rounded to 2 places with ROUND_HALF_UP.
Floats are converted through str() so binary drift (0.1 + 0.2) never leaks
into a persisted figure.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

TWO_PLACES = Decimal("0.01")
ZERO = Decimal("0.00")
TOLERANCE = Decimal("0.01")
HUNDRED = Decimal("100")


def round2(value) -> Decimal:
    """Round to 2 decimal places using half-up rounding.

    Returns 0.00 for NaN, infinities, None and anything non-numeric.
    """
    if isinstance(value, bool) or value is None:
        return ZERO
    if isinstance(value, Decimal):
        amount = value
    else:
        try:
            amount = Decimal(str(value).strip())
        except (InvalidOperation, ValueError, TypeError):
            return ZERO
    if not amount.is_finite():
        return ZERO
    return amount.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def parse_amount(value) -> Decimal | None:
    """Parse user input into a Decimal, or None when it is not a finite number."""
    if isinstance(value, bool) or value is None:
        return None
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except (InvalidOperation, ValueError, TypeError):
        return None
    return amount if amount.is_finite() else None


def within_tolerance(left, right) -> bool:
    return abs(round2(left) - round2(right)) < TOLERANCE


def to_money(value) -> float:
    """Convert Decimal to float with 2 decimal places."""
    return float(round2(value))


def format_inr(value) -> str:
    """Format an amount for human-readable messages."""
    return f"₹{round2(value):,.2f}"
