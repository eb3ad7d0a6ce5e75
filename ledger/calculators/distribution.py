"""
Payment Distribution Fold

Sequential greedy allocation of one payment over a demand's items:
property tax is always cleared before water tax, then item id ascending.
The walk is a fold over the ordered items with an explicit accumulator, so
the reconciled totals can be read straight off the final accumulator value.
"""

from dataclasses import dataclass, field, replace
from decimal import Decimal
from functools import reduce

from ..models import ItemDistribution, ItemSnapshot, ItemStatus, TaxType
from ..money import ZERO, round2

TAX_TYPE_ORDER = {TaxType.PROPERTY: 0, TaxType.WATER: 1}

HALF_PAYMENT_LOW = Decimal("0.49")
HALF_PAYMENT_HIGH = Decimal("0.51")


def order_items(items: list[ItemSnapshot]) -> list[ItemSnapshot]:
    """PROPERTY before WATER, then by item id."""
    return sorted(items, key=lambda item: (TAX_TYPE_ORDER.get(TaxType(item.tax_type), len(TAX_TYPE_ORDER)), item.item_id))


def classify_item(applied: Decimal, outstanding: Decimal) -> ItemStatus:
    """
    Status of an item after ``applied`` lands on an ``outstanding`` balance.

    A payment covering roughly half of what was owed (49%-51%) is reported as
    partially paid; any other short payment is still pending.
    """
    if outstanding <= 0:
        return ItemStatus.ALREADY_PAID
    if applied >= outstanding:
        return ItemStatus.FULLY_PAID
    if outstanding * HALF_PAYMENT_LOW <= applied <= outstanding * HALF_PAYMENT_HIGH:
        return ItemStatus.PARTIALLY_PAID
    return ItemStatus.PENDING


@dataclass(frozen=True)
class Allocation:
    """Accumulator threaded through the fold."""

    remaining: Decimal
    entries: tuple = ()
    paid_by_item: dict = field(default_factory=dict)

    @property
    def applied_total(self) -> Decimal:
        return round2(sum((entry.payment_applied for entry in self.entries), ZERO))

    def applied_for(self, tax_type: TaxType) -> Decimal:
        return round2(sum((e.payment_applied for e in self.entries if e.tax_type is tax_type), ZERO))


def _allocate(acc: Allocation, item: ItemSnapshot) -> Allocation:
    if acc.remaining <= 0:
        return acc

    previous_paid = round2(item.paid_amount)
    outstanding = item.balance
    tax_type = TaxType(item.tax_type)

    if outstanding <= 0:
        entry = ItemDistribution(
            item_id=item.item_id,
            tax_type=tax_type,
            previous_paid=previous_paid,
            payment_applied=ZERO,
            new_paid=previous_paid,
            item_balance=ZERO,
            status=ItemStatus.ALREADY_PAID,
        )
        return replace(acc, entries=acc.entries + (entry,))

    applied = min(acc.remaining, outstanding)
    new_paid = round2(previous_paid + applied)
    entry = ItemDistribution(
        item_id=item.item_id,
        tax_type=tax_type,
        previous_paid=previous_paid,
        payment_applied=applied,
        new_paid=new_paid,
        item_balance=round2(outstanding - applied),
        status=classify_item(applied, outstanding),
    )
    return Allocation(
        remaining=round2(acc.remaining - applied),
        entries=acc.entries + (entry,),
        paid_by_item={**acc.paid_by_item, item.item_id: new_paid},
    )


def allocate_payment(items: list[ItemSnapshot], amount) -> Allocation:
    """Fold ``amount`` over ``items`` in allocation order.

    Does not check for overpayment; callers reject that before allocating.
    """
    return reduce(_allocate, order_items(items), Allocation(remaining=round2(amount)))


def apply_allocation(items: list[ItemSnapshot], allocation: Allocation) -> list[ItemSnapshot]:
    """Item snapshots as they look once ``allocation`` has been persisted."""
    return [
        replace(item, paid_amount=allocation.paid_by_item.get(item.item_id, round2(item.paid_amount)))
        for item in items
    ]
