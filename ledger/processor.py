"""
Payment Processor - Main Orchestrator

Coordinates every payment entry path through the same pipeline:
1. Overpayment guard (rejections are audited on their own)
2. Payment record
3. Distribution over the locked demand
4. Audit entry
5. Post-commit integrity check (fail open)
"""

import logging
import uuid
from datetime import datetime, timezone

from sqlalchemy import select

from .adjustments import lock_demand
from .audit import DatabaseAuditSink
from .calculators import OverpaymentGuard
from .db import Demand, Payment, transaction
from .errors import ConflictError, GatewayNotConfiguredError, NotFoundError, OverpaymentError, ValidationError
from .models import (
    AuditAction,
    AuditEntry,
    DemandSnapshot,
    DistributionResult,
    DistributionSummary,
    GuardResult,
    IntegrityReport,
    PaymentChannel,
    PaymentOutcome,
    PaymentStatus,
)
from .money import format_inr, parse_amount, round2, to_money
from .payments import PaymentDistributor

logger = logging.getLogger(__name__)

OFFLINE_CHANNELS = (PaymentChannel.COUNTER, PaymentChannel.FIELD)


def generate_payment_number() -> str:
    return f"PAY-{uuid.uuid4().hex}"


def generate_receipt_number(now: datetime | None = None) -> str:
    year = (now or datetime.now(timezone.utc)).year
    return f"RCP-{year}-{uuid.uuid4().hex}"


class PaymentProcessor:
    """Entry point for payment operations on demands."""

    def __init__(self, session_factory, verifier=None, guard: OverpaymentGuard | None = None):
        self.session_factory = session_factory
        self.verifier = verifier
        self.guard = guard or OverpaymentGuard()

    # -------------------------------------------------------------------------
    # CORE OPERATIONS
    # -------------------------------------------------------------------------

    def distribute_payment(self, demand_id: int, amount) -> DistributionResult:
        """Apply ``amount`` to a demand without creating a payment record."""
        with transaction(self.session_factory) as session:
            demand = lock_demand(session, demand_id)
            result = PaymentDistributor(session, self.guard).distribute(demand, amount)
        self.validate_distribution_integrity(demand_id)
        return result

    def get_distribution_summary(self, demand_id: int) -> DistributionSummary:
        with transaction(self.session_factory) as session:
            return PaymentDistributor(session, self.guard).summarize(self._get_demand(session, demand_id))

    def validate_distribution_integrity(
        self, demand_id: int, payment_id: int | None = None, actor_id: int | None = None
    ) -> IntegrityReport:
        """
        Re-check item sums against the demand. Mismatches are logged and
        recorded as an INTEGRITY_WARNING audit entry; nothing is rolled back.
        """
        with transaction(self.session_factory) as session:
            report = PaymentDistributor(session, self.guard).check_integrity(self._get_demand(session, demand_id))
            if not report.is_valid:
                logger.warning("Integrity issues on demand %s: %s", demand_id, "; ".join(report.issues))
                DatabaseAuditSink(session).record(
                    AuditEntry(
                        action=AuditAction.INTEGRITY_WARNING,
                        entity_type="Demand",
                        entity_id=demand_id,
                        description=f"Payment distribution integrity check failed for demand {demand_id}",
                        metadata={"issues": report.issues, "payment_id": payment_id},
                        actor_id=actor_id,
                    )
                )
        return report

    def check_payment(self, demand_id: int, amount) -> GuardResult:
        """Run the overpayment guard against a demand's current balance without recording anything."""
        with transaction(self.session_factory) as session:
            demand = self._get_demand(session, demand_id)
            return self.guard.check(amount, demand.balance_amount, demand.demand_number)

    # -------------------------------------------------------------------------
    # ENTRY PATHS
    # -------------------------------------------------------------------------

    def record_counter_payment(
        self,
        demand_id: int,
        amount,
        channel: PaymentChannel = PaymentChannel.COUNTER,
        payment_mode: str = "cash",
        actor_id: int | None = None,
        transaction_id: str | None = None,
        remarks: str | None = None,
    ) -> PaymentOutcome:
        """Cashier or field-collector payment: recorded as completed and distributed immediately."""
        channel = PaymentChannel(channel)
        if channel not in OFFLINE_CHANNELS:
            raise ValidationError(f"Channel {channel.value} cannot record an offline payment", code="INVALID_FIELD")

        try:
            with transaction(self.session_factory) as session:
                demand = lock_demand(session, demand_id)
                guard = self._enforce_guard(demand, amount)
                before = DemandSnapshot.from_demand(demand)

                payment = Payment(
                    payment_number=generate_payment_number(),
                    receipt_number=generate_receipt_number(),
                    demand_id=demand.id,
                    amount=round2(amount),
                    channel=channel,
                    payment_mode=(payment_mode or "cash").lower(),
                    status=PaymentStatus.COMPLETED,
                    transaction_id=transaction_id,
                    received_by=actor_id,
                    remarks=remarks,
                )
                session.add(payment)
                session.flush()

                distribution = PaymentDistributor(session, self.guard).distribute(demand, amount)
                self._audit_payment(session, payment, demand, before, distribution, actor_id)
        except (OverpaymentError, ValidationError) as exc:
            self._audit_rejection(exc, demand_id, amount, channel, actor_id)
            raise

        logger.info(
            "%s payment %s of %s recorded against demand %s",
            channel.value,
            payment.payment_number,
            format_inr(payment.amount),
            demand_id,
        )
        integrity = self.validate_distribution_integrity(demand_id, payment.id, actor_id)
        return PaymentOutcome(payment=payment, distribution=distribution, integrity=integrity, guard=guard)

    def initiate_online_payment(
        self, demand_id: int, amount, gateway_order_id: str, actor_id: int | None = None
    ) -> PaymentOutcome:
        """Create a pending online payment for an order already opened with the gateway."""
        if not gateway_order_id:
            raise ValidationError("gateway_order_id is required", code="MISSING_FIELDS",
                                  details={"missing": ["gateway_order_id"]})
        try:
            with transaction(self.session_factory) as session:
                demand = lock_demand(session, demand_id)
                guard = self._enforce_guard(demand, amount)
                payment = Payment(
                    payment_number=generate_payment_number(),
                    demand_id=demand.id,
                    amount=round2(amount),
                    channel=PaymentChannel.ONLINE,
                    payment_mode="online",
                    status=PaymentStatus.PENDING,
                    gateway_order_id=str(gateway_order_id),
                    received_by=actor_id,
                )
                session.add(payment)
                session.flush()
        except (OverpaymentError, ValidationError) as exc:
            self._audit_rejection(exc, demand_id, amount, PaymentChannel.ONLINE, actor_id)
            raise

        logger.info("Online payment %s initiated for demand %s", payment.payment_number, demand_id)
        return PaymentOutcome(payment=payment, distribution=None, integrity=None, guard=guard)

    def verify_online_payment(
        self, payment_id: int, gateway_payment_id: str, signature: str, actor_id: int | None = None
    ) -> PaymentOutcome:
        """
        Confirm a gateway payment. A bad signature marks the payment failed
        (and that is committed) before the error is raised.
        """
        if self.verifier is None:
            raise GatewayNotConfiguredError("Payment gateway is not configured")

        rejection = None
        with transaction(self.session_factory) as session:
            payment = session.get(Payment, payment_id)
            if payment is None:
                raise NotFoundError(f"Payment {payment_id} not found", code="PAYMENT_NOT_FOUND")
            demand = lock_demand(session, payment.demand_id)
            session.refresh(payment)
            if payment.status is not PaymentStatus.PENDING:
                raise ConflictError(
                    f"Payment {payment.payment_number} is not pending (status: {payment.status.value})",
                    code="PAYMENT_NOT_PENDING",
                )

            payment.gateway_payment_id = gateway_payment_id
            payment.gateway_signature = signature
            audit = DatabaseAuditSink(session)

            if not self.verifier.verify(payment.gateway_order_id, gateway_payment_id, signature):
                payment.status = PaymentStatus.FAILED
                rejection = ConflictError("Payment signature verification failed", code="SIGNATURE_INVALID")
            else:
                guard = self.guard.check(payment.amount, demand.balance_amount, demand.demand_number)
                if not guard.is_valid:
                    payment.status = PaymentStatus.FAILED
                    rejection = OverpaymentError(guard.error, code=guard.error_code, details=guard.details)

            if rejection is not None:
                audit.record(
                    AuditEntry(
                        action=AuditAction.REJECT,
                        entity_type="Payment",
                        entity_id=payment.id,
                        description=f"Online payment {payment.payment_number} rejected: {rejection.message}",
                        metadata={
                            "demand_id": demand.id,
                            "code": rejection.code,
                            "attempted_amount": to_money(payment.amount),
                            "balance_amount": to_money(demand.balance_amount),
                            "gateway_order_id": payment.gateway_order_id,
                        },
                        actor_id=actor_id,
                    )
                )
            else:
                before = DemandSnapshot.from_demand(demand)
                payment.status = PaymentStatus.COMPLETED
                payment.transaction_id = gateway_payment_id
                payment.receipt_number = generate_receipt_number()
                distribution = PaymentDistributor(session, self.guard).distribute(demand, payment.amount)
                self._audit_payment(session, payment, demand, before, distribution, actor_id)

        if rejection is not None:
            logger.warning("Online payment %s rejected: %s", payment_id, rejection.message)
            raise rejection

        logger.info("Online payment %s verified for demand %s", payment.payment_number, payment.demand_id)
        integrity = self.validate_distribution_integrity(payment.demand_id, payment.id, actor_id)
        return PaymentOutcome(payment=payment, distribution=distribution, integrity=integrity, guard=guard)

    # -------------------------------------------------------------------------
    # HELPERS
    # -------------------------------------------------------------------------

    @staticmethod
    def _get_demand(session, demand_id: int) -> Demand:
        demand = session.execute(select(Demand).where(Demand.id == demand_id)).scalar_one_or_none()
        if demand is None:
            raise NotFoundError(f"Demand {demand_id} not found", code="DEMAND_NOT_FOUND")
        return demand

    def _enforce_guard(self, demand: Demand, amount) -> GuardResult:
        guard = self.guard.check(amount, demand.balance_amount, demand.demand_number)
        if guard.is_valid:
            if guard.warning:
                logger.info(guard.warning)
            return guard
        if guard.error_code == "OVERPAYMENT":
            raise OverpaymentError(guard.error, details=guard.details)
        raise ValidationError(guard.error, code=guard.error_code, details=guard.details)

    @staticmethod
    def _audit_payment(session, payment, demand, before, distribution, actor_id) -> None:
        action = AuditAction.COLLECT if payment.channel is PaymentChannel.FIELD else AuditAction.PAY
        DatabaseAuditSink(session).record(
            AuditEntry(
                action=action,
                entity_type="Payment",
                entity_id=payment.id,
                description=(
                    f"Payment {payment.payment_number} of {format_inr(payment.amount)} applied to demand "
                    f"{demand.demand_number}"
                ),
                previous_data=before.as_audit_dict(),
                new_data=DemandSnapshot.from_demand(demand).as_audit_dict(),
                metadata={
                    "demand_id": demand.id,
                    "channel": payment.channel.value,
                    "payment_mode": payment.payment_mode,
                    "receipt_number": payment.receipt_number,
                    "direct_demand_payment": distribution.direct_demand_payment,
                    "property_tax_paid": to_money(distribution.property_tax_paid),
                    "water_tax_paid": to_money(distribution.water_tax_paid),
                },
                actor_id=actor_id,
            )
        )

    def _audit_rejection(self, exc, demand_id: int, amount, channel: PaymentChannel, actor_id) -> None:
        """Record a guard rejection in its own transaction so it survives the rollback."""
        if exc.code not in ("OVERPAYMENT", "INVALID_AMOUNT"):
            return
        logger.warning("%s payment rejected for demand %s: %s", channel.value, demand_id, exc.message)
        parsed = parse_amount(amount)
        with transaction(self.session_factory) as session:
            DatabaseAuditSink(session).record(
                AuditEntry(
                    action=AuditAction.REJECT,
                    entity_type="Demand",
                    entity_id=demand_id,
                    description=f"{channel.value} payment rejected: {exc.message}",
                    metadata={
                        "code": exc.code,
                        "channel": channel.value,
                        "attempted_amount": to_money(parsed) if parsed is not None else str(amount),
                        "balance_amount": exc.details.get("balance_amount"),
                        "excess_amount": exc.details.get("excess_amount"),
                    },
                    actor_id=actor_id,
                )
            )
