"""
Shared fixtures: an in-memory database per test plus demand factories.
"""

import itertools
from decimal import Decimal

import pytest
from sqlalchemy import select

from ledger.db import (
    AuditLog,
    Demand,
    DemandItem,
    ShopTaxAssessment,
    WaterTaxAssessment,
    create_session_factory,
    init_db,
    transaction,
)
from ledger.models import DemandStatus, ServiceType, TaxType
from ledger.money import round2


@pytest.fixture
def session_factory():
    factory = create_session_factory("sqlite://")
    init_db(factory)
    yield factory
    factory.kw["bind"].dispose()


@pytest.fixture
def make_demand(session_factory):
    """
    Create a demand and return it (detached).

    ``items`` is a list of (tax_type, total, paid) tuples; their totals and
    paid amounts override ``total`` and ``paid``.
    """
    numbers = itertools.count(1)

    def factory(
        total="1000",
        penalty="0",
        interest="0",
        paid="0",
        service_type=ServiceType.HOUSE_TAX,
        property_id=1,
        remarks=None,
        items=None,
        water_connection_id=None,
        shop_id=None,
        final_amount=None,
        penalty_waived="0",
    ):
        with transaction(session_factory) as session:
            if items:
                total = sum(Decimal(str(item[1])) for item in items)
                paid = sum(Decimal(str(item[2])) for item in items)
            total = round2(total)
            paid = round2(paid)
            final = round2(final_amount) if final_amount is not None else None
            balance = round2((final if final is not None else total) - paid)

            demand = Demand(
                demand_number=f"DEM-TEST-{next(numbers):04d}",
                property_id=property_id,
                service_type=service_type,
                financial_year="2025-26",
                base_amount=round2(total - round2(penalty) - round2(interest)),
                penalty_amount=round2(penalty),
                interest_amount=round2(interest),
                total_amount=total,
                penalty_waived=round2(penalty_waived),
                final_amount=final,
                paid_amount=paid,
                balance_amount=balance,
                status=DemandStatus.for_amounts(paid, balance),
                remarks=remarks,
            )
            if water_connection_id is not None:
                demand.water_tax_assessment = WaterTaxAssessment(water_connection_id=water_connection_id)
            if shop_id is not None:
                demand.shop_tax_assessment = ShopTaxAssessment(shop_id=shop_id)
            session.add(demand)
            session.flush()

            for tax_type, item_total, item_paid in items or []:
                session.add(
                    DemandItem(
                        demand_id=demand.id,
                        tax_type=TaxType(tax_type),
                        total_amount=round2(item_total),
                        paid_amount=round2(item_paid),
                        description=f"{TaxType(tax_type).value.title()} tax",
                    )
                )
        return demand

    return factory


@pytest.fixture
def unified_demand(make_demand):
    """PROPERTY 600 + WATER 400, nothing paid."""
    return make_demand(
        remarks='{"type": "UNIFIED_DEMAND"}',
        items=[(TaxType.PROPERTY, "600", "0"), (TaxType.WATER, "400", "0")],
    )


@pytest.fixture
def fetch(session_factory):
    """Reload a row by primary key."""

    def _fetch(model, pk):
        with transaction(session_factory) as session:
            return session.get(model, pk)

    return _fetch


@pytest.fixture
def fetch_items(session_factory):
    def _fetch_items(demand_id):
        with transaction(session_factory) as session:
            return session.execute(
                select(DemandItem).where(DemandItem.demand_id == demand_id).order_by(DemandItem.id)
            ).scalars().all()

    return _fetch_items


@pytest.fixture
def audit_rows(session_factory):
    def _audit_rows():
        with transaction(session_factory) as session:
            return session.execute(select(AuditLog).order_by(AuditLog.id)).scalars().all()

    return _audit_rows
