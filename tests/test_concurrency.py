"""
Concurrent operations on the same demand against a file-backed SQLite database.

Each worker thread gets its own connection; the demand lock must make the
second writer see the first writer's committed balance.
"""

import threading
import time
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from ledger.adjustments import AdjustmentLedger
from ledger.calculators import OverpaymentGuard
from ledger.db import Demand, Payment, TaxDiscount, create_session_factory, init_db, transaction
from ledger.errors import LedgerError
from ledger.models import AdjustmentStatus, ServiceType
from ledger.processor import PaymentProcessor


class SlowGuard(OverpaymentGuard):
    """Holds the demand a little longer after each check so the workers overlap."""

    def check(self, payment_amount, balance_amount, demand_label=None):
        result = super().check(payment_amount, balance_amount, demand_label)
        time.sleep(0.2)
        return result


@pytest.fixture
def session_factory(tmp_path):
    factory = create_session_factory(f"sqlite:///{tmp_path / 'ledger.db'}")
    init_db(factory)
    yield factory
    factory.kw["bind"].dispose()


def run_together(*calls):
    """Start every call at once and return 'ok' or the error code for each."""
    barrier = threading.Barrier(len(calls))
    results = [None] * len(calls)

    def worker(index, call):
        barrier.wait()
        try:
            call()
            results[index] = "ok"
        except LedgerError as e:
            results[index] = e.code

    threads = [threading.Thread(target=worker, args=(i, call)) for i, call in enumerate(calls)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)
    return results


class TestConcurrentPayments:
    """Two counter payments for the full balance: only one is collected."""

    def test_second_payment_sees_first(self, session_factory, make_demand, fetch):
        demand = make_demand(total="100", service_type=ServiceType.SHOP_TAX, shop_id=1)
        processor = PaymentProcessor(session_factory, guard=SlowGuard())

        results = run_together(
            lambda: processor.record_counter_payment(demand.id, "100"),
            lambda: processor.record_counter_payment(demand.id, "100"),
        )

        assert sorted(results) == ["OVERPAYMENT", "ok"]
        stored = fetch(Demand, demand.id)
        assert stored.paid_amount == Decimal("100.00")
        assert stored.balance_amount == Decimal("0.00")
        with transaction(session_factory) as session:
            collected = session.execute(select(func.sum(Payment.amount))).scalar_one()
        assert collected == Decimal("100.00")

    def test_partial_payments_both_applied(self, session_factory, make_demand, fetch):
        demand = make_demand(total="100", service_type=ServiceType.SHOP_TAX, shop_id=1)
        processor = PaymentProcessor(session_factory, guard=SlowGuard())

        results = run_together(
            lambda: processor.record_counter_payment(demand.id, "40"),
            lambda: processor.record_counter_payment(demand.id, "35"),
        )

        assert results == ["ok", "ok"]
        stored = fetch(Demand, demand.id)
        assert stored.paid_amount == Decimal("75.00")
        assert stored.balance_amount == Decimal("25.00")


class TestConcurrentAdjustments:
    """Two discounts racing for the same demand: one stays ACTIVE."""

    def test_one_active_discount(self, session_factory, make_demand, fetch):
        demand = make_demand(total="1000", penalty="100")
        ledger = AdjustmentLedger(session_factory)

        def discount(value):
            return lambda: ledger.apply_discount({
                "module_type": "PROPERTY", "entity_id": 1, "demand_id": demand.id,
                "discount_type": "FIXED", "discount_value": value, "reason": "r", "document_url": "u",
            })

        results = run_together(discount(100), discount(200))

        assert sorted(results) == ["ACTIVE_ADJUSTMENT_EXISTS", "ok"]
        with transaction(session_factory) as session:
            active = session.execute(
                select(TaxDiscount).where(TaxDiscount.status == AdjustmentStatus.ACTIVE)
            ).scalars().all()
        assert len(active) == 1
        assert fetch(Demand, demand.id).final_amount == Decimal("1000.00") - active[0].amount
