"""
Adjustment Ledger

Applies and revokes discounts and penalty waivers. Every operation runs in
one transaction holding a row lock on the demand; a failed precondition
leaves nothing behind.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timezone
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from .audit import DatabaseAuditSink
from .calculators import (
    DiscountCalculator,
    PenaltyWaiverCalculator,
    calculate_final_amount,
    original_amount,
    penalty_pool,
)
from .db import Demand, PenaltyWaiver, TaxDiscount, transaction
from .errors import ConflictError, NotFoundError, ValidationError
from .models import (
    AdjustmentKind,
    AdjustmentOutcome,
    AdjustmentRequest,
    AdjustmentStatus,
    AdjustmentSummary,
    AdjustmentType,
    AuditAction,
    AuditEntry,
    DemandSnapshot,
    DemandStatus,
    FinalAmountBreakdown,
    ModuleType,
)
from .money import ZERO, format_inr, round2, to_money
from .ownership import EntityResolver, check_module_compatibility
from .validators import InputValidator

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_LIMIT = 50
MAX_HISTORY_LIMIT = 200


@dataclass(frozen=True)
class AdjustmentPolicy:
    """What differs between the two adjustment kinds."""

    kind: AdjustmentKind
    model: type
    calculator: object
    entity_type: str


POLICIES = {
    AdjustmentKind.DISCOUNT: AdjustmentPolicy(
        kind=AdjustmentKind.DISCOUNT,
        model=TaxDiscount,
        calculator=DiscountCalculator(),
        entity_type="TaxDiscount",
    ),
    AdjustmentKind.PENALTY_WAIVER: AdjustmentPolicy(
        kind=AdjustmentKind.PENALTY_WAIVER,
        model=PenaltyWaiver,
        calculator=PenaltyWaiverCalculator(),
        entity_type="PenaltyWaiver",
    ),
}


def financial_year_bounds(today: date) -> tuple[datetime, datetime]:
    """Indian financial year (1 April - 31 March) containing ``today``, as a half-open range."""
    start_year = today.year if today.month >= 4 else today.year - 1
    start = datetime(start_year, 4, 1, tzinfo=timezone.utc)
    end = datetime(start_year + 1, 4, 1, tzinfo=timezone.utc)
    return start, end


def month_bounds(today: date) -> tuple[datetime, datetime]:
    start = datetime.combine(today.replace(day=1), time.min, tzinfo=timezone.utc)
    if today.month == 12:
        end = datetime(today.year + 1, 1, 1, tzinfo=timezone.utc)
    else:
        end = datetime(today.year, today.month + 1, 1, tzinfo=timezone.utc)
    return start, end


def lock_demand(session, demand_id: int) -> Demand:
    """Load ``demand_id`` with a row lock held until the transaction ends."""
    demand = session.execute(
        select(Demand).where(Demand.id == demand_id).with_for_update()
    ).scalar_one_or_none()
    if demand is None:
        raise NotFoundError(f"Demand {demand_id} not found", code="DEMAND_NOT_FOUND")
    return demand


def active_adjustment(session, kind: AdjustmentKind, demand_id: int):
    model = POLICIES[kind].model
    return session.execute(
        select(model).where(model.demand_id == demand_id, model.status == AdjustmentStatus.ACTIVE)
    ).scalar_one_or_none()


def settle_demand(demand: Demand, final_amount: Decimal | None) -> None:
    """Set the payable figure and re-derive balance and status from it."""
    demand.final_amount = final_amount
    demand.balance_amount = round2(demand.effective_payable - demand.paid_amount)
    demand.status = DemandStatus.for_amounts(demand.paid_amount, demand.balance_amount)


class AdjustmentLedger:
    """
    Discount and penalty-waiver operations.

    Preconditions are checked in this order, all under the demand lock:
    1. Request fields
    2. Demand exists
    3. Module/service compatibility
    4. Entity ownership
    5. Demand not settled
    6. Something to adjust (original amount / penalty pool)
    7. No ACTIVE adjustment of the same kind
    8. Percentage range
    9. Calculator result is positive
    10. Final amount not below what is already paid
    """

    def __init__(self, session_factory, validator=None, resolver=None, history_limit_max: int = MAX_HISTORY_LIMIT):
        self.session_factory = session_factory
        self.validator = validator or InputValidator()
        self.resolver = resolver or EntityResolver()
        self.history_limit_max = history_limit_max

    # -------------------------------------------------------------------------
    # APPLY
    # -------------------------------------------------------------------------

    def apply_discount(self, data: dict, actor_id: int | None = None) -> AdjustmentOutcome:
        return self.apply(AdjustmentKind.DISCOUNT, data, actor_id)

    def apply_penalty_waiver(self, data: dict, actor_id: int | None = None) -> AdjustmentOutcome:
        return self.apply(AdjustmentKind.PENALTY_WAIVER, data, actor_id)

    def apply(self, kind: AdjustmentKind, data: dict, actor_id: int | None = None) -> AdjustmentOutcome:
        policy = POLICIES[kind]

        # Step 1: Parse and validate the request
        request = AdjustmentRequest.from_dict(data, kind, approved_by=actor_id)
        self.validator.validate(request)
        module_type = ModuleType(request.module_type)

        with transaction(self.session_factory) as session:
            # Step 2: Lock the demand
            demand = lock_demand(session, request.demand_id)

            # Step 3-4: Module and ownership
            check_module_compatibility(demand, module_type)
            self.resolver.verify(demand, module_type, request.entity_id)

            # Step 5-6: Demand state
            base = self._check_adjustable(kind, demand)

            # Step 7: One ACTIVE adjustment per kind
            existing = active_adjustment(session, kind, demand.id)
            if existing is not None:
                raise ConflictError(
                    f"Demand {demand.demand_number} already has an active {kind.label.lower()} "
                    f"of {format_inr(existing.amount)}; revoke it first",
                    code="ACTIVE_ADJUSTMENT_EXISTS",
                    details={"adjustment_id": existing.id},
                )

            # Step 8-9: Amount
            self.validator.validate_percentage(request)
            calculation = policy.calculator.calculate(base, request.adjustment_type, request.value)
            if not calculation.ok:
                raise ValidationError(calculation.error, code=calculation.error_code)
            if calculation.amount <= 0:
                raise ValidationError(
                    f"{kind.label} amount must be greater than zero, got {format_inr(calculation.amount)}",
                    code="ZeroOrNegativeAmount",
                )

            before = DemandSnapshot.from_demand(demand)
            breakdown = self._recompute(session, kind, demand, calculation.amount)
            if breakdown.final_amount < round2(demand.paid_amount):
                raise ConflictError(
                    f"{kind.label} would bring demand {demand.demand_number} to {format_inr(breakdown.final_amount)}, "
                    f"below the {format_inr(demand.paid_amount)} already paid",
                    code="ADJUSTMENT_EXCEEDS_BALANCE",
                    details={
                        "final_amount": to_money(breakdown.final_amount),
                        "paid_amount": to_money(demand.paid_amount),
                    },
                )
            if kind is AdjustmentKind.PENALTY_WAIVER:
                demand.penalty_waived = breakdown.waiver_amount
            settle_demand(demand, breakdown.final_amount)

            adjustment = policy.model(
                module_type=module_type,
                entity_id=request.entity_id,
                demand_id=demand.id,
                adjustment_type=AdjustmentType(request.adjustment_type),
                value=round2(request.value),
                amount=calculation.amount,
                reason=request.reason,
                document_url=request.document_url,
                approved_by=actor_id,
                status=AdjustmentStatus.ACTIVE,
            )
            session.add(adjustment)
            self._flush(session, kind, demand)

            after = DemandSnapshot.from_demand(demand)
            DatabaseAuditSink(session).record(
                AuditEntry(
                    action=AuditAction.CREATE,
                    entity_type=policy.entity_type,
                    entity_id=adjustment.id,
                    description=(
                        f"{kind.label} of {format_inr(calculation.amount)} applied to demand "
                        f"{demand.demand_number}"
                    ),
                    previous_data=before.as_audit_dict(),
                    new_data=after.as_audit_dict(),
                    metadata={
                        "demand_id": demand.id,
                        "module_type": module_type.value,
                        "entity_id": request.entity_id,
                        "type": request.adjustment_type,
                        "value": to_money(request.value),
                        "amount": to_money(calculation.amount),
                        "reason": request.reason,
                        "document_url": request.document_url,
                    },
                    actor_id=actor_id,
                )
            )

        logger.info(
            "%s %s applied to demand %s: final=%s balance=%s",
            kind.label,
            format_inr(calculation.amount),
            after.demand_number,
            after.final_amount,
            after.balance_amount,
        )
        return AdjustmentOutcome(kind=kind, adjustment=adjustment, demand=after, breakdown=breakdown)

    def _check_adjustable(self, kind: AdjustmentKind, demand: Demand) -> Decimal:
        """Return the base the calculator works on, or raise when there is nothing to adjust."""
        if kind is AdjustmentKind.DISCOUNT:
            if round2(demand.balance_amount) <= 0:
                raise ConflictError(
                    f"Demand {demand.demand_number} is fully settled; nothing left to discount",
                    code="DEMAND_SETTLED",
                )
            base = original_amount(demand)
            if base <= 0:
                raise ConflictError(
                    f"Demand {demand.demand_number} has no original amount to discount",
                    code="NO_ORIGINAL_AMOUNT",
                )
            return base

        settled = round2(demand.paid_amount) >= round2(demand.effective_payable)
        if settled or round2(demand.balance_amount) <= 0:
            raise ConflictError(
                f"Demand {demand.demand_number} is fully paid; penalty cannot be waived",
                code="DEMAND_SETTLED",
            )
        base = penalty_pool(demand)
        if base <= 0:
            raise ConflictError(
                f"Demand {demand.demand_number} has no penalty or interest to waive",
                code="NO_PENALTY",
            )
        return base

    def _recompute(self, session, kind: AdjustmentKind, demand: Demand, amount: Decimal) -> FinalAmountBreakdown:
        """Final amount with ``amount`` for this kind and the other kind's ACTIVE amount."""
        if kind is AdjustmentKind.DISCOUNT:
            waiver = active_adjustment(session, AdjustmentKind.PENALTY_WAIVER, demand.id)
            return calculate_final_amount(demand, amount, waiver.amount if waiver is not None else ZERO)
        discount = active_adjustment(session, AdjustmentKind.DISCOUNT, demand.id)
        return calculate_final_amount(demand, discount.amount if discount is not None else ZERO, amount)

    @staticmethod
    def _flush(session, kind: AdjustmentKind, demand: Demand) -> None:
        try:
            session.flush()
        except IntegrityError as exc:
            raise ConflictError(
                f"Demand {demand.demand_number} already has an active {kind.label.lower()}; revoke it first",
                code="ACTIVE_ADJUSTMENT_EXISTS",
            ) from exc

    # -------------------------------------------------------------------------
    # REVOKE
    # -------------------------------------------------------------------------

    def revoke_discount(self, adjustment_id: int, actor_id: int | None = None, reason: str | None = None):
        return self.revoke(AdjustmentKind.DISCOUNT, adjustment_id, actor_id, reason)

    def revoke_penalty_waiver(self, adjustment_id: int, actor_id: int | None = None, reason: str | None = None):
        return self.revoke(AdjustmentKind.PENALTY_WAIVER, adjustment_id, actor_id, reason)

    def revoke(
        self, kind: AdjustmentKind, adjustment_id: int, actor_id: int | None = None, reason: str | None = None
    ) -> AdjustmentOutcome:
        """
        Revoke an ACTIVE adjustment and recompute the demand from whatever
        adjustment of the other kind is still active. With nothing left
        active the demand falls back to its total amount.
        """
        policy = POLICIES[kind]

        with transaction(self.session_factory) as session:
            adjustment = session.get(policy.model, adjustment_id)
            if adjustment is None:
                raise NotFoundError(f"{kind.label} {adjustment_id} not found", code="ADJUSTMENT_NOT_FOUND")

            demand = lock_demand(session, adjustment.demand_id)
            session.refresh(adjustment)
            if adjustment.status is not AdjustmentStatus.ACTIVE:
                raise ConflictError(
                    f"{kind.label} {adjustment_id} is not active (status: {adjustment.status.value})",
                    code="NOT_ACTIVE",
                )

            before = DemandSnapshot.from_demand(demand)
            adjustment.status = AdjustmentStatus.REVOKED
            adjustment.revoked_at = datetime.now(timezone.utc)
            adjustment.revoked_by = actor_id
            adjustment.revoke_reason = (reason or "").strip() or None

            breakdown = None
            if kind is AdjustmentKind.PENALTY_WAIVER:
                demand.penalty_waived = ZERO
                other = active_adjustment(session, AdjustmentKind.DISCOUNT, demand.id)
                if other is not None:
                    breakdown = calculate_final_amount(demand, other.amount, ZERO)
            else:
                other = active_adjustment(session, AdjustmentKind.PENALTY_WAIVER, demand.id)
                if other is not None:
                    breakdown = calculate_final_amount(demand, ZERO, other.amount)
            settle_demand(demand, breakdown.final_amount if breakdown is not None else None)
            session.flush()

            after = DemandSnapshot.from_demand(demand)
            DatabaseAuditSink(session).record(
                AuditEntry(
                    action=AuditAction.REVOKE,
                    entity_type=policy.entity_type,
                    entity_id=adjustment.id,
                    description=(
                        f"{kind.label} of {format_inr(adjustment.amount)} revoked on demand {demand.demand_number}"
                    ),
                    previous_data=before.as_audit_dict(),
                    new_data=after.as_audit_dict(),
                    metadata={"demand_id": demand.id, "reason": adjustment.revoke_reason},
                    actor_id=actor_id,
                )
            )

        logger.info("%s %s revoked on demand %s", kind.label, adjustment_id, after.demand_number)
        return AdjustmentOutcome(kind=kind, adjustment=adjustment, demand=after, breakdown=breakdown)

    # -------------------------------------------------------------------------
    # REPORTING
    # -------------------------------------------------------------------------

    def summary(self, kind: AdjustmentKind, today: date | None = None) -> AdjustmentSummary:
        """Counts and totals over ACTIVE adjustments of ``kind``."""
        model = POLICIES[kind].model
        today = today or date.today()
        fy_start, fy_end = financial_year_bounds(today)
        month_start, month_end = month_bounds(today)
        active = model.status == AdjustmentStatus.ACTIVE

        with transaction(self.session_factory) as session:
            total_active = session.scalar(select(func.count(model.id)).where(active))
            total_amount_fy = session.scalar(
                select(func.coalesce(func.sum(model.amount), 0)).where(
                    active, model.created_at >= fy_start, model.created_at < fy_end
                )
            )
            active_demands = session.scalar(select(func.count(func.distinct(model.demand_id))).where(active))
            this_month = session.scalar(
                select(func.count(model.id)).where(
                    active, model.created_at >= month_start, model.created_at < month_end
                )
            )
            rows = session.execute(
                select(model.module_type, func.count(model.id)).where(active).group_by(model.module_type)
            ).all()

        by_module = {module.value: 0 for module in ModuleType}
        if kind is AdjustmentKind.PENALTY_WAIVER:
            by_module.pop(ModuleType.UNIFIED.value)
        for module_type, count in rows:
            by_module[ModuleType(module_type).value] = count

        return AdjustmentSummary(
            total_active=total_active or 0,
            total_amount_fy=round2(total_amount_fy),
            active_demands=active_demands or 0,
            this_month=this_month or 0,
            by_module=by_module,
        )

    def history(self, kind: AdjustmentKind, limit=None) -> list[tuple]:
        """Newest adjustments of ``kind`` first, each paired with its demand number."""
        model = POLICIES[kind].model
        limit = self.clamp_limit(limit)

        with transaction(self.session_factory) as session:
            rows = session.execute(
                select(model, Demand.demand_number)
                .join(Demand, model.demand_id == Demand.id)
                .order_by(model.created_at.desc(), model.id.desc())
                .limit(limit)
            ).all()
        return [(row[0], row[1]) for row in rows]

    def clamp_limit(self, limit) -> int:
        try:
            value = int(limit)
        except (TypeError, ValueError):
            return DEFAULT_HISTORY_LIMIT
        if value <= 0:
            return DEFAULT_HISTORY_LIMIT
        return min(value, self.history_limit_max)
