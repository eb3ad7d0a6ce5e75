"""
Domain Models for the Municipal Ledger Core

Enumerations shared by the persistence layer, plus dataclasses for requests
and results that flow between calculators, the ledger and the API layer.
All monetary values use Decimal for precision.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum

from .errors import ValidationError
from .money import ZERO, parse_amount, round2, to_money

# =============================================================================
# ENUMERATIONS
# =============================================================================


class ServiceType(str, Enum):
    HOUSE_TAX = "HOUSE_TAX"
    WATER_TAX = "WATER_TAX"
    SHOP_TAX = "SHOP_TAX"
    D2DC = "D2DC"


class DemandStatus(str, Enum):
    PENDING = "pending"
    PARTIALLY_PAID = "partially_paid"
    PAID = "paid"

    @classmethod
    def for_amounts(cls, paid_amount, balance_amount) -> "DemandStatus":
        """paid once nothing is owed, partially_paid once anything is paid."""
        if round2(balance_amount) <= 0:
            return cls.PAID
        if round2(paid_amount) > 0:
            return cls.PARTIALLY_PAID
        return cls.PENDING


class TaxType(str, Enum):
    PROPERTY = "PROPERTY"
    WATER = "WATER"


class ModuleType(str, Enum):
    PROPERTY = "PROPERTY"
    WATER = "WATER"
    SHOP = "SHOP"
    D2DC = "D2DC"
    UNIFIED = "UNIFIED"


class AdjustmentType(str, Enum):
    PERCENTAGE = "PERCENTAGE"
    FIXED = "FIXED"


class AdjustmentStatus(str, Enum):
    ACTIVE = "ACTIVE"
    REVOKED = "REVOKED"


class AdjustmentKind(str, Enum):
    DISCOUNT = "DISCOUNT"
    PENALTY_WAIVER = "PENALTY_WAIVER"

    @property
    def field_prefix(self) -> str:
        """Prefix used by request payloads (discount_type, waiver_value, ...)."""
        return "discount" if self is AdjustmentKind.DISCOUNT else "waiver"

    @property
    def label(self) -> str:
        return "Discount" if self is AdjustmentKind.DISCOUNT else "Penalty waiver"


class ItemStatus(str, Enum):
    ALREADY_PAID = "already_paid"
    FULLY_PAID = "fully_paid"
    PARTIALLY_PAID = "partially_paid"
    PENDING = "pending"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class PaymentChannel(str, Enum):
    COUNTER = "COUNTER"
    ONLINE = "ONLINE"
    FIELD = "FIELD"


class AuditAction(str, Enum):
    """Closed set of audit action types accepted by the audit store."""

    CREATE = "CREATE"
    UPDATE = "UPDATE"
    REVOKE = "REVOKE"
    PAY = "PAY"
    COLLECT = "COLLECT"
    REJECT = "REJECT"
    APPROVE = "APPROVE"
    INTEGRITY_WARNING = "INTEGRITY_WARNING"


# =============================================================================
# INPUT MODELS
# =============================================================================


def _require_int(data: dict, key: str) -> int:
    try:
        return int(str(data[key]).strip())
    except (TypeError, ValueError):
        raise ValidationError(f"{key} must be an integer, got: {data[key]!r}", code="INVALID_FIELD")


@dataclass
class AdjustmentRequest:
    """A request to apply a discount or a penalty waiver to one demand."""

    kind: AdjustmentKind
    module_type: str
    entity_id: int
    demand_id: int
    adjustment_type: str
    value: Decimal | None
    reason: str
    document_url: str
    approved_by: int | None = None

    @classmethod
    def from_dict(cls, data: dict, kind: AdjustmentKind, approved_by: int | None = None) -> "AdjustmentRequest":
        """Build a request from an API payload.

        Accepts both the kind-specific keys (discount_type, waiver_value) and
        the generic ones (type, value).
        """
        prefix = kind.field_prefix
        payload = dict(data or {})
        payload.setdefault("type", payload.get(f"{prefix}_type"))
        payload.setdefault("value", payload.get(f"{prefix}_value"))

        required = ["module_type", "entity_id", "demand_id", "type", "value", "reason", "document_url"]
        missing = [key for key in required if payload.get(key) is None or str(payload[key]).strip() == ""]
        if missing:
            raise ValidationError(
                f"{', '.join(missing)} required to apply a {kind.label.lower()}",
                code="MISSING_FIELDS",
                details={"missing": missing},
            )

        return cls(
            kind=kind,
            module_type=str(payload["module_type"]).strip().upper(),
            entity_id=_require_int(payload, "entity_id"),
            demand_id=_require_int(payload, "demand_id"),
            adjustment_type=str(payload["type"]).strip().upper(),
            value=parse_amount(payload["value"]),
            reason=str(payload["reason"]).strip(),
            document_url=str(payload["document_url"]).strip(),
            approved_by=approved_by,
        )


@dataclass
class ItemSnapshot:
    """Monetary state of one demand item at a point in time."""

    item_id: int
    tax_type: TaxType
    total_amount: Decimal
    paid_amount: Decimal
    description: str | None = None

    @property
    def balance(self) -> Decimal:
        return round2(self.total_amount - self.paid_amount)


# =============================================================================
# OUTPUT / RESULT MODELS
# =============================================================================


@dataclass
class AdjustmentCalculation:
    """Result of a discount or waiver calculation."""

    amount: Decimal = ZERO
    remaining: Decimal | None = None
    error_code: str | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error_code is None


@dataclass
class FinalAmountBreakdown:
    """Components of the authoritative payable figure."""

    original_amount: Decimal
    penalty_amount: Decimal
    discount_amount: Decimal
    waiver_amount: Decimal
    remaining_penalty: Decimal
    final_amount: Decimal


@dataclass
class GuardResult:
    """Outcome of the overpayment pre-check."""

    is_valid: bool
    error_code: str | None = None
    error: str | None = None
    warning: str | None = None
    details: dict = field(default_factory=dict)


@dataclass
class ItemDistribution:
    """How much of a payment landed on one demand item."""

    item_id: int
    tax_type: TaxType
    previous_paid: Decimal
    payment_applied: Decimal
    new_paid: Decimal
    item_balance: Decimal
    status: ItemStatus


@dataclass
class DistributionResult:
    """Outcome of distributing one payment over a demand."""

    demand_id: int
    payment_amount: Decimal
    remaining_payment: Decimal
    demand_paid: Decimal
    demand_balance: Decimal
    demand_status: DemandStatus
    items: list[ItemDistribution] = field(default_factory=list)
    total_items: int = 0
    direct_demand_payment: bool = False
    service_type: ServiceType | None = None
    property_tax_paid: Decimal = ZERO
    water_tax_paid: Decimal = ZERO

    @property
    def items_updated(self) -> int:
        return sum(1 for item in self.items if item.payment_applied > 0)

    @property
    def items_fully_paid(self) -> int:
        return sum(1 for item in self.items if item.status is ItemStatus.FULLY_PAID)


@dataclass
class TaxBreakdown:
    """Totals for all items of one tax type."""

    total_amount: Decimal = ZERO
    paid_amount: Decimal = ZERO
    balance_amount: Decimal = ZERO


@dataclass
class DistributionSummary:
    """Read-only projection of a demand's item-level breakdown."""

    demand_id: int
    demand_number: str
    total_amount: Decimal
    effective_payable: Decimal
    adjustment_offset: Decimal
    paid_amount: Decimal
    balance_amount: Decimal
    status: DemandStatus
    items: list[ItemSnapshot] = field(default_factory=list)
    breakdown: dict[TaxType, TaxBreakdown] = field(default_factory=dict)
    checks: dict[str, bool] = field(default_factory=dict)
    no_items: bool = False

    @property
    def is_valid(self) -> bool:
        return all(self.checks.values())


@dataclass
class IntegrityReport:
    """Result of re-checking item sums against demand totals."""

    demand_id: int
    is_valid: bool
    issues: list[str] = field(default_factory=list)
    summary: DistributionSummary | None = None


@dataclass
class DemandSnapshot:
    """Key monetary fields of a demand, used for audit diffs and responses."""

    id: int
    demand_number: str
    total_amount: Decimal
    penalty_waived: Decimal
    final_amount: Decimal | None
    paid_amount: Decimal
    balance_amount: Decimal
    status: DemandStatus

    @classmethod
    def from_demand(cls, demand) -> "DemandSnapshot":
        return cls(
            id=demand.id,
            demand_number=demand.demand_number,
            total_amount=round2(demand.total_amount),
            penalty_waived=round2(demand.penalty_waived),
            final_amount=round2(demand.final_amount) if demand.final_amount is not None else None,
            paid_amount=round2(demand.paid_amount),
            balance_amount=round2(demand.balance_amount),
            status=DemandStatus(demand.status),
        )

    def as_audit_dict(self) -> dict:
        return {
            "total_amount": to_money(self.total_amount),
            "penalty_waived": to_money(self.penalty_waived),
            "final_amount": to_money(self.final_amount) if self.final_amount is not None else None,
            "paid_amount": to_money(self.paid_amount),
            "balance_amount": to_money(self.balance_amount),
            "status": self.status.value,
        }


@dataclass
class AdjustmentOutcome:
    """Created (or revoked) adjustment plus the demand it changed."""

    kind: AdjustmentKind
    adjustment: object
    demand: DemandSnapshot
    breakdown: FinalAmountBreakdown | None = None


@dataclass
class AdjustmentSummary:
    """Counts and totals over ACTIVE adjustments of one kind."""

    total_active: int
    total_amount_fy: Decimal
    active_demands: int
    this_month: int
    by_module: dict[str, int]


@dataclass
class AuditEntry:
    """One record handed to the audit sink."""

    action: AuditAction
    entity_type: str
    entity_id: int | None
    description: str
    previous_data: dict | None = None
    new_data: dict | None = None
    metadata: dict = field(default_factory=dict)
    actor_id: int | None = None


@dataclass
class PaymentOutcome:
    """Persisted payment plus how it was distributed and audited."""

    payment: object
    distribution: DistributionResult | None
    integrity: IntegrityReport | None
    guard: GuardResult
