"""
Persistence layer: SQLAlchemy models, engine/session factory and the
transaction scope every mutating ledger operation runs in.
"""

import json
import logging
from contextlib import contextmanager
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Iterator, Optional

from sqlalchemy import (
    JSON,
    Date,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    create_engine,
    event,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, relationship, sessionmaker
from sqlalchemy.pool import StaticPool

from .models import (
    AdjustmentStatus,
    AdjustmentType,
    AuditAction,
    DemandStatus,
    ModuleType,
    PaymentChannel,
    PaymentStatus,
    ServiceType,
    TaxType,
)
from .money import ZERO

logger = logging.getLogger(__name__)

UNIFIED_MARKER = "UNIFIED_DEMAND"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _money_column(**kwargs):
    return mapped_column(Numeric(12, 2, asdecimal=True), **kwargs)


class Base(DeclarativeBase):
    """Base class for all ledger tables."""


class Demand(Base):
    """One billing obligation for a tax module in one financial year."""

    __tablename__ = "demands"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    demand_number: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    property_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    assessment_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    water_tax_assessment_id: Mapped[int | None] = mapped_column(
        ForeignKey("water_tax_assessments.id"), nullable=True
    )
    shop_tax_assessment_id: Mapped[int | None] = mapped_column(ForeignKey("shop_tax_assessments.id"), nullable=True)
    service_type: Mapped[ServiceType] = mapped_column(SQLEnum(ServiceType), nullable=False)
    financial_year: Mapped[str] = mapped_column(String(10), nullable=False, default="")
    base_amount: Mapped[Decimal] = _money_column(nullable=False, default=ZERO)
    arrears_amount: Mapped[Decimal] = _money_column(nullable=False, default=ZERO)
    penalty_amount: Mapped[Decimal] = _money_column(nullable=False, default=ZERO)
    interest_amount: Mapped[Decimal] = _money_column(nullable=False, default=ZERO)
    total_amount: Mapped[Decimal] = _money_column(nullable=False)
    penalty_waived: Mapped[Decimal] = _money_column(nullable=False, default=ZERO)
    final_amount: Mapped[Decimal | None] = _money_column(nullable=True)
    paid_amount: Mapped[Decimal] = _money_column(nullable=False, default=ZERO)
    balance_amount: Mapped[Decimal] = _money_column(nullable=False)
    status: Mapped[DemandStatus] = mapped_column(
        SQLEnum(DemandStatus, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=DemandStatus.PENDING,
    )
    due_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    remarks: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False
    )

    items: Mapped[list["DemandItem"]] = relationship(back_populates="demand", order_by="DemandItem.id")
    water_tax_assessment: Mapped[Optional["WaterTaxAssessment"]] = relationship()
    shop_tax_assessment: Mapped[Optional["ShopTaxAssessment"]] = relationship()

    @property
    def effective_payable(self) -> Decimal:
        return self.final_amount if self.final_amount is not None else self.total_amount

    @property
    def is_unified(self) -> bool:
        """Unified demands are marked in remarks, either as plain text or as a JSON object."""
        if not self.remarks:
            return False
        try:
            parsed = json.loads(self.remarks)
        except ValueError:
            return UNIFIED_MARKER in self.remarks
        if isinstance(parsed, dict):
            return parsed.get("type") == UNIFIED_MARKER
        return UNIFIED_MARKER in str(parsed)

    def __repr__(self) -> str:
        return f"<Demand(id={self.id}, number={self.demand_number}, balance={self.balance_amount})>"


class DemandItem(Base):
    """One tax-type component of a unified demand."""

    __tablename__ = "tax_demand_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    demand_id: Mapped[int] = mapped_column(ForeignKey("demands.id"), nullable=False, index=True)
    tax_type: Mapped[TaxType] = mapped_column(SQLEnum(TaxType), nullable=False)
    reference_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    total_amount: Mapped[Decimal] = _money_column(nullable=False)
    paid_amount: Mapped[Decimal] = _money_column(nullable=False, default=ZERO)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    demand: Mapped[Demand] = relationship(back_populates="items")


class WaterTaxAssessment(Base):
    __tablename__ = "water_tax_assessments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    water_connection_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)


class ShopTaxAssessment(Base):
    __tablename__ = "shop_tax_assessments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    shop_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)


class _AdjustmentColumns:
    """Columns shared by discounts and penalty waivers."""

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    module_type: Mapped[ModuleType] = mapped_column(SQLEnum(ModuleType), nullable=False)
    entity_id: Mapped[int] = mapped_column(Integer, nullable=False)
    adjustment_type: Mapped[AdjustmentType] = mapped_column(SQLEnum(AdjustmentType), nullable=False)
    value: Mapped[Decimal] = _money_column(nullable=False)
    amount: Mapped[Decimal] = _money_column(nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    document_url: Mapped[str] = mapped_column(Text, nullable=False)
    approved_by: Mapped[int | None] = mapped_column(Integer, nullable=True)
    status: Mapped[AdjustmentStatus] = mapped_column(
        SQLEnum(AdjustmentStatus), nullable=False, default=AdjustmentStatus.ACTIVE
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)
    revoked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    revoked_by: Mapped[int | None] = mapped_column(Integer, nullable=True)
    revoke_reason: Mapped[str | None] = mapped_column(Text, nullable=True)


class TaxDiscount(_AdjustmentColumns, Base):
    __tablename__ = "tax_discounts"
    __table_args__ = (
        Index(
            "uq_tax_discounts_active_demand",
            "demand_id",
            unique=True,
            postgresql_where=text("status = 'ACTIVE'"),
            sqlite_where=text("status = 'ACTIVE'"),
        ),
    )

    demand_id: Mapped[int] = mapped_column(ForeignKey("demands.id"), nullable=False, index=True)
    demand: Mapped[Demand] = relationship()


class PenaltyWaiver(_AdjustmentColumns, Base):
    __tablename__ = "penalty_waivers"
    __table_args__ = (
        Index(
            "uq_penalty_waivers_active_demand",
            "demand_id",
            unique=True,
            postgresql_where=text("status = 'ACTIVE'"),
            sqlite_where=text("status = 'ACTIVE'"),
        ),
    )

    demand_id: Mapped[int] = mapped_column(ForeignKey("demands.id"), nullable=False, index=True)
    demand: Mapped[Demand] = relationship()


class Payment(Base):
    """A payment row created by one of the payment entry channels."""

    __tablename__ = "payments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    payment_number: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    demand_id: Mapped[int] = mapped_column(ForeignKey("demands.id"), nullable=False, index=True)
    amount: Mapped[Decimal] = _money_column(nullable=False)
    channel: Mapped[PaymentChannel] = mapped_column(SQLEnum(PaymentChannel), nullable=False)
    payment_mode: Mapped[str] = mapped_column(String(30), nullable=False, default="cash")
    status: Mapped[PaymentStatus] = mapped_column(
        SQLEnum(PaymentStatus, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=PaymentStatus.PENDING,
    )
    receipt_number: Mapped[str | None] = mapped_column(String(64), unique=True, nullable=True)
    transaction_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    gateway_order_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    gateway_payment_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    gateway_signature: Mapped[str | None] = mapped_column(String(256), nullable=True)
    received_by: Mapped[int | None] = mapped_column(Integer, nullable=True)
    remarks: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)

    demand: Mapped[Demand] = relationship()


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    action_type: Mapped[AuditAction] = mapped_column(SQLEnum(AuditAction), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    previous_data: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    new_data: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    extra: Mapped[dict | None] = mapped_column("metadata", JSON, nullable=True)
    actor_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)


# =============================================================================
# ENGINE / SESSIONS
# =============================================================================


def create_session_factory(database_url: str, echo: bool = False) -> sessionmaker:
    """Create an engine for ``database_url`` and return a session factory bound to it.

    In-memory SQLite shares one connection so every session sees the same data.
    SQLite ignores ``FOR UPDATE``, so its transactions open with BEGIN IMMEDIATE
    instead: a second writer waits for the first to commit before it reads.
    """
    kwargs = {"echo": echo}
    if database_url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
    else:
        kwargs["pool_pre_ping"] = True

    engine = create_engine(database_url, **kwargs)
    if engine.dialect.name == "sqlite":
        _begin_immediate(engine)
    return sessionmaker(bind=engine, expire_on_commit=False, autoflush=False)


def _begin_immediate(engine) -> None:
    @event.listens_for(engine, "connect")
    def _disable_driver_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def init_db(session_factory: sessionmaker) -> None:
    """Create all ledger tables that do not exist yet."""
    Base.metadata.create_all(session_factory.kw["bind"])


@contextmanager
def transaction(session_factory: sessionmaker) -> Iterator[Session]:
    """
    Scoped transaction: commits when the block completes, rolls back on any
    exception (including early exits via raise), always closes the session.
    """
    session = session_factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
