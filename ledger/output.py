"""
Output Builder

Turns ledger results into JSON-ready dictionaries for the API layer.
"""

from .models import (
    AdjustmentKind,
    AdjustmentOutcome,
    AdjustmentSummary,
    DemandSnapshot,
    DistributionResult,
    DistributionSummary,
    FinalAmountBreakdown,
    GuardResult,
    IntegrityReport,
    PaymentOutcome,
)
from .money import format_inr as _fmt
from .money import to_money


def _iso(value):
    return value.isoformat() if value is not None else None


class OutputBuilder:
    """Builds API response bodies."""

    def adjustment(self, row, kind: AdjustmentKind, demand_number: str | None = None) -> dict:
        body = {
            "id": row.id,
            "kind": kind.value,
            "module_type": row.module_type.value,
            "entity_id": row.entity_id,
            "demand_id": row.demand_id,
            "type": row.adjustment_type.value,
            "value": to_money(row.value),
            "amount": to_money(row.amount),
            "reason": row.reason,
            "document_url": row.document_url,
            "approved_by": row.approved_by,
            "status": row.status.value,
            "created_at": _iso(row.created_at),
            "revoked_at": _iso(row.revoked_at),
            "revoked_by": row.revoked_by,
            "revoke_reason": row.revoke_reason,
        }
        if demand_number is not None:
            body["demand_number"] = demand_number
        return body

    def demand(self, snapshot: DemandSnapshot) -> dict:
        return {
            "id": snapshot.id,
            "demand_number": snapshot.demand_number,
            "total_amount": to_money(snapshot.total_amount),
            "penalty_waived": to_money(snapshot.penalty_waived),
            "final_amount": to_money(snapshot.final_amount) if snapshot.final_amount is not None else None,
            "paid_amount": to_money(snapshot.paid_amount),
            "balance_amount": to_money(snapshot.balance_amount),
            "status": snapshot.status.value,
        }

    def adjustment_outcome(self, outcome: AdjustmentOutcome) -> dict:
        key = "discount" if outcome.kind is AdjustmentKind.DISCOUNT else "waiver"
        body = {
            key: self.adjustment(outcome.adjustment, outcome.kind),
            "demand": self.demand(outcome.demand),
        }
        if outcome.breakdown is not None:
            body["calculation"] = self.final_amount(outcome.breakdown)
        return body

    def final_amount(self, breakdown: FinalAmountBreakdown) -> dict:
        """Each figure with a description of how it was reached."""
        original = breakdown.original_amount
        return {
            "original_amount": {
                "value": to_money(original),
                "description": "Tax principal: total minus penalty and interest",
            },
            "penalty_amount": {
                "value": to_money(breakdown.penalty_amount),
                "description": "Penalty plus interest",
            },
            "discount_amount": {
                "value": to_money(breakdown.discount_amount),
                "description": f"Discount on original amount of {_fmt(original)}",
            },
            "waiver_amount": {
                "value": to_money(breakdown.waiver_amount),
                "description": f"Waived from penalty of {_fmt(breakdown.penalty_amount)}",
            },
            "remaining_penalty": {
                "value": to_money(breakdown.remaining_penalty),
                "description": (
                    f"penalty ({_fmt(breakdown.penalty_amount)}) - waiver ({_fmt(breakdown.waiver_amount)}) "
                    f"= {_fmt(breakdown.remaining_penalty)}"
                ),
            },
            "final_amount": {
                "value": to_money(breakdown.final_amount),
                "description": (
                    f"original ({_fmt(original)}) - discount ({_fmt(breakdown.discount_amount)}) "
                    f"+ remaining penalty ({_fmt(breakdown.remaining_penalty)}) = {_fmt(breakdown.final_amount)}"
                ),
            },
        }

    def adjustment_summary(self, summary: AdjustmentSummary) -> dict:
        return {
            "total_active": summary.total_active,
            "total_amount_fy": to_money(summary.total_amount_fy),
            "active_demands": summary.active_demands,
            "this_month": summary.this_month,
            "by_module": dict(summary.by_module),
        }

    def history(self, rows, kind: AdjustmentKind) -> list[dict]:
        return [self.adjustment(row, kind, demand_number) for row, demand_number in rows]

    def distribution(self, result: DistributionResult) -> dict:
        return {
            "demand_id": result.demand_id,
            "payment_amount": to_money(result.payment_amount),
            "remaining_payment": to_money(result.remaining_payment),
            "demand_paid": to_money(result.demand_paid),
            "demand_balance": to_money(result.demand_balance),
            "demand_status": result.demand_status.value,
            "direct_demand_payment": result.direct_demand_payment,
            "items": [
                {
                    "item_id": item.item_id,
                    "tax_type": item.tax_type.value,
                    "previous_paid": to_money(item.previous_paid),
                    "payment_applied": to_money(item.payment_applied),
                    "new_paid": to_money(item.new_paid),
                    "item_balance": to_money(item.item_balance),
                    "status": item.status.value,
                }
                for item in result.items
            ],
            "summary": {
                "total_items": result.total_items,
                "items_updated": result.items_updated,
                "items_fully_paid": result.items_fully_paid,
                "property_tax_paid": to_money(result.property_tax_paid),
                "water_tax_paid": to_money(result.water_tax_paid),
            },
        }

    def distribution_summary(self, summary: DistributionSummary) -> dict:
        return {
            "demand_id": summary.demand_id,
            "demand_number": summary.demand_number,
            "total_amount": to_money(summary.total_amount),
            "effective_payable": to_money(summary.effective_payable),
            "adjustment_offset": to_money(summary.adjustment_offset),
            "paid_amount": to_money(summary.paid_amount),
            "balance_amount": to_money(summary.balance_amount),
            "status": summary.status.value,
            "no_items": summary.no_items,
            "items": [
                {
                    "id": item.item_id,
                    "tax_type": item.tax_type.value,
                    "description": item.description,
                    "total_amount": to_money(item.total_amount),
                    "paid_amount": to_money(item.paid_amount),
                    "balance_amount": to_money(item.balance),
                    "is_fully_paid": item.balance <= 0,
                }
                for item in summary.items
            ],
            "breakdown": {
                tax_type.value: {
                    "total_amount": to_money(totals.total_amount),
                    "paid_amount": to_money(totals.paid_amount),
                    "balance_amount": to_money(totals.balance_amount),
                }
                for tax_type, totals in summary.breakdown.items()
            },
            "validation": dict(summary.checks),
            "is_valid": summary.is_valid,
        }

    def integrity(self, report: IntegrityReport) -> dict:
        return {"demand_id": report.demand_id, "is_valid": report.is_valid, "issues": list(report.issues)}

    def guard(self, result: GuardResult) -> dict:
        body = {"is_valid": result.is_valid, "details": dict(result.details)}
        if result.error_code:
            body["error_code"] = result.error_code
            body["error"] = result.error
        if result.warning:
            body["warning"] = result.warning
        return body

    def payment(self, outcome: PaymentOutcome) -> dict:
        payment = outcome.payment
        body = {
            "payment": {
                "id": payment.id,
                "payment_number": payment.payment_number,
                "receipt_number": payment.receipt_number,
                "demand_id": payment.demand_id,
                "amount": to_money(payment.amount),
                "channel": payment.channel.value,
                "payment_mode": payment.payment_mode,
                "status": payment.status.value,
                "gateway_order_id": payment.gateway_order_id,
                "transaction_id": payment.transaction_id,
                "created_at": _iso(payment.created_at),
            },
        }
        if outcome.guard.warning:
            body["warning"] = outcome.guard.warning
        if outcome.distribution is not None:
            body["distribution"] = self.distribution(outcome.distribution)
        if outcome.integrity is not None:
            body["integrity"] = self.integrity(outcome.integrity)
        return body
