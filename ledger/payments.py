"""
Payment Distribution Engine

Applies a payment to a locked demand: directly for demands without items,
otherwise by folding it over the demand's items. The same reconciliation
math backs the read-only summary and the integrity check.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal

from .calculators import OverpaymentGuard, allocate_payment, apply_allocation, order_items
from .db import Demand
from .errors import OverpaymentError, ValidationError
from .models import (
    DemandStatus,
    DistributionResult,
    DistributionSummary,
    IntegrityReport,
    ItemSnapshot,
    ServiceType,
    TaxBreakdown,
    TaxType,
)
from .money import TOLERANCE, ZERO, format_inr, round2, within_tolerance

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Reconciliation:
    """Demand figures implied by its items."""

    item_total: Decimal
    item_paid: Decimal
    adjustment_offset: Decimal

    @property
    def expected_balance(self) -> Decimal:
        return round2(self.item_total - self.item_paid - self.adjustment_offset)


def adjustment_offset(demand) -> Decimal:
    """How far adjustments have moved the payable figure below the total."""
    if demand.final_amount is None:
        return ZERO
    return round2(round2(demand.total_amount) - round2(demand.effective_payable))


def reconcile(demand, items: list[ItemSnapshot]) -> Reconciliation:
    return Reconciliation(
        item_total=round2(sum((round2(item.total_amount) for item in items), ZERO)),
        item_paid=round2(sum((round2(item.paid_amount) for item in items), ZERO)),
        adjustment_offset=adjustment_offset(demand),
    )


def snapshot_items(demand) -> list[ItemSnapshot]:
    return order_items(
        [
            ItemSnapshot(
                item_id=item.id,
                tax_type=TaxType(item.tax_type),
                total_amount=round2(item.total_amount),
                paid_amount=round2(item.paid_amount),
                description=item.description,
            )
            for item in demand.items
        ]
    )


class PaymentDistributor:
    """Distribution, summary and integrity check over one session."""

    def __init__(self, session, guard: OverpaymentGuard | None = None):
        self.session = session
        self.guard = guard or OverpaymentGuard()

    def distribute(self, demand: Demand, amount) -> DistributionResult:
        """
        Apply ``amount`` to ``demand``, which the caller has already locked.

        Raises OverpaymentError (or ValidationError for non-positive amounts)
        before anything is mutated.
        """
        guard = self.guard.check(amount, demand.balance_amount, demand.demand_number)
        if not guard.is_valid:
            if guard.error_code == "OVERPAYMENT":
                raise OverpaymentError(guard.error, details=guard.details)
            raise ValidationError(guard.error, code=guard.error_code, details=guard.details)
        amount = round2(amount)

        items = snapshot_items(demand)
        if not items:
            return self._distribute_direct(demand, amount)
        return self._distribute_items(demand, items, amount)

    def _distribute_direct(self, demand: Demand, amount: Decimal) -> DistributionResult:
        new_paid = round2(round2(demand.paid_amount) + amount)
        new_balance = round2(demand.effective_payable - new_paid)

        demand.paid_amount = new_paid
        demand.balance_amount = new_balance
        demand.status = DemandStatus.for_amounts(new_paid, new_balance)
        self.session.flush()

        logger.info("Payment %s applied directly to demand %s", format_inr(amount), demand.demand_number)
        return DistributionResult(
            demand_id=demand.id,
            payment_amount=amount,
            remaining_payment=ZERO,
            demand_paid=new_paid,
            demand_balance=new_balance,
            demand_status=demand.status,
            direct_demand_payment=True,
            service_type=ServiceType(demand.service_type),
        )

    def _distribute_items(self, demand: Demand, items: list[ItemSnapshot], amount: Decimal) -> DistributionResult:
        allocation = allocate_payment(items, amount)

        rows = {item.id: item for item in demand.items}
        for item_id, new_paid in allocation.paid_by_item.items():
            rows[item_id].paid_amount = new_paid

        totals = reconcile(demand, apply_allocation(items, allocation))
        demand.paid_amount = totals.item_paid
        demand.balance_amount = totals.expected_balance
        demand.status = DemandStatus.for_amounts(totals.item_paid, totals.expected_balance)
        self.session.flush()

        logger.info(
            "Payment %s distributed over %d item(s) of demand %s; balance now %s",
            format_inr(amount),
            len([e for e in allocation.entries if e.payment_applied > 0]),
            demand.demand_number,
            format_inr(demand.balance_amount),
        )
        return DistributionResult(
            demand_id=demand.id,
            payment_amount=amount,
            remaining_payment=allocation.remaining,
            demand_paid=demand.paid_amount,
            demand_balance=demand.balance_amount,
            demand_status=demand.status,
            items=list(allocation.entries),
            total_items=len(items),
            service_type=ServiceType(demand.service_type),
            property_tax_paid=allocation.applied_for(TaxType.PROPERTY),
            water_tax_paid=allocation.applied_for(TaxType.WATER),
        )

    # -------------------------------------------------------------------------
    # READ-ONLY
    # -------------------------------------------------------------------------

    def summarize(self, demand: Demand) -> DistributionSummary:
        items = snapshot_items(demand)
        summary = DistributionSummary(
            demand_id=demand.id,
            demand_number=demand.demand_number,
            total_amount=round2(demand.total_amount),
            effective_payable=round2(demand.effective_payable),
            adjustment_offset=adjustment_offset(demand),
            paid_amount=round2(demand.paid_amount),
            balance_amount=round2(demand.balance_amount),
            status=DemandStatus(demand.status),
            items=items,
        )
        if not items:
            summary.no_items = True
            summary.checks = {"total_matches": True, "paid_matches": True, "balance_matches": True}
            return summary

        for tax_type in TaxType:
            of_type = [item for item in items if item.tax_type is tax_type]
            summary.breakdown[tax_type] = TaxBreakdown(
                total_amount=round2(sum((i.total_amount for i in of_type), ZERO)),
                paid_amount=round2(sum((i.paid_amount for i in of_type), ZERO)),
                balance_amount=round2(sum((i.balance for i in of_type), ZERO)),
            )

        totals = reconcile(demand, items)
        summary.checks = {
            "total_matches": within_tolerance(totals.item_total, demand.total_amount),
            "paid_matches": within_tolerance(totals.item_paid, demand.paid_amount),
            "balance_matches": within_tolerance(totals.expected_balance, demand.balance_amount),
        }
        return summary

    def check_integrity(self, demand: Demand) -> IntegrityReport:
        summary = self.summarize(demand)
        issues = []

        if summary.no_items:
            if round2(demand.balance_amount) < -TOLERANCE:
                issues.append(f"Demand balance is negative: {format_inr(demand.balance_amount)}")
            if round2(demand.paid_amount) > round2(demand.effective_payable) + TOLERANCE:
                issues.append(
                    f"Demand paid {format_inr(demand.paid_amount)} exceeds payable "
                    f"{format_inr(demand.effective_payable)}"
                )
            return IntegrityReport(demand_id=demand.id, is_valid=not issues, issues=issues, summary=summary)

        totals = reconcile(demand, summary.items)
        if not summary.checks["total_matches"]:
            issues.append(
                f"Item totals {format_inr(totals.item_total)} do not match demand total "
                f"{format_inr(demand.total_amount)}"
            )
        if not summary.checks["paid_matches"]:
            issues.append(
                f"Item paid {format_inr(totals.item_paid)} does not match demand paid "
                f"{format_inr(demand.paid_amount)}"
            )
        if not summary.checks["balance_matches"]:
            issues.append(
                f"Item balance {format_inr(totals.expected_balance)} does not match demand balance "
                f"{format_inr(demand.balance_amount)}"
            )
        for item in summary.items:
            if item.paid_amount < 0:
                issues.append(f"Item {item.item_id} has a negative paid amount: {format_inr(item.paid_amount)}")
            if item.balance < -TOLERANCE:
                issues.append(
                    f"Item {item.item_id} ({item.tax_type.value}) is overpaid by {format_inr(-item.balance)}"
                )

        return IntegrityReport(demand_id=demand.id, is_valid=not issues, issues=issues, summary=summary)
