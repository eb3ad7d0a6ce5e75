"""
Tests for the Flask API
"""

import pytest

from ledger import Settings
from ledger.gateway import SignatureVerifier
from ledger.models import ServiceType, TaxType
from main import create_app

SECRET = "api-test-secret"


@pytest.fixture
def client(session_factory):
    settings = Settings(database_url="sqlite://", gateway_key_secret=SECRET, history_limit_max=200)
    app = create_app(settings, session_factory=session_factory)
    app.config["TESTING"] = True
    return app.test_client()


def discount_body(demand, **overrides):
    body = {
        "module_type": "PROPERTY",
        "entity_id": demand.property_id,
        "demand_id": demand.id,
        "discount_type": "PERCENTAGE",
        "discount_value": 10,
        "reason": "Rebate",
        "document_url": "https://docs.example.org/r.pdf",
    }
    body.update(overrides)
    return body


class TestInfoEndpoints:
    """Service info and health endpoints."""

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.get_json()["status"] == "healthy"

    def test_api_info(self, client):
        body = client.get("/api").get_json()
        assert body["status"] == "ok"
        assert "discounts" in body["endpoints"]


class TestAdjustmentEndpoints:
    """Discount and penalty-waiver routes."""

    def test_apply_discount(self, client, make_demand):
        demand = make_demand(total="1000", penalty="100")
        response = client.post("/discounts", json=discount_body(demand), headers={"X-Actor-Id": "7"})

        assert response.status_code == 201
        body = response.get_json()
        assert body["status"] == "success"
        assert body["discount"]["amount"] == 90.0
        assert body["discount"]["approved_by"] == 7
        assert body["demand"]["final_amount"] == 910.0
        assert body["calculation"]["final_amount"]["value"] == 910.0

    def test_validation_error_shape(self, client, make_demand):
        demand = make_demand()
        response = client.post("/discounts", json=discount_body(demand, discount_value=150))

        assert response.status_code == 400
        body = response.get_json()
        assert body == {
            "error": body["error"],
            "code": "PercentageOutOfRange",
            "status": "failed",
            "details": {},
        }

    def test_missing_body(self, client):
        response = client.post("/discounts", data="not json", content_type="text/plain")
        assert response.status_code == 400
        assert response.get_json()["code"] == "MISSING_FIELDS"

    def test_unknown_demand_is_404(self, client, make_demand):
        demand = make_demand()
        response = client.post("/discounts", json=discount_body(demand, demand_id=999))
        assert response.status_code == 404
        assert response.get_json()["code"] == "DEMAND_NOT_FOUND"

    def test_bad_actor_header(self, client, make_demand):
        demand = make_demand()
        response = client.post("/discounts", json=discount_body(demand), headers={"X-Actor-Id": "admin"})
        assert response.status_code == 400
        assert response.get_json()["code"] == "INVALID_FIELD"

    def test_waiver_revoke_summary_history(self, client, make_demand):
        demand = make_demand(total="1000", penalty="100")
        created = client.post("/penalty-waivers", json={
            "module_type": "PROPERTY", "entity_id": 1, "demand_id": demand.id,
            "waiver_type": "FIXED", "waiver_value": 50, "reason": "r", "document_url": "u",
        })
        assert created.status_code == 201
        waiver_id = created.get_json()["waiver"]["id"]
        assert created.get_json()["demand"]["penalty_waived"] == 50.0

        summary = client.get("/penalty-waivers/summary").get_json()["summary"]
        assert summary["total_active"] == 1
        assert summary["total_amount_fy"] == 50.0

        history = client.get("/penalty-waivers/history?limit=5").get_json()["history"]
        assert history[0]["demand_number"] == demand.demand_number

        revoked = client.post(f"/penalty-waivers/{waiver_id}/revoke", json={"reason": "wrong demand"})
        assert revoked.status_code == 200
        assert revoked.get_json()["waiver"]["status"] == "REVOKED"
        assert revoked.get_json()["demand"]["final_amount"] is None

        again = client.post(f"/penalty-waivers/{waiver_id}/revoke")
        assert again.status_code == 400
        assert again.get_json()["code"] == "NOT_ACTIVE"


class TestPaymentEndpoints:
    """Counter, online and overpayment-check routes."""

    def test_counter_payment(self, client, unified_demand):
        response = client.post("/payments", json={"demand_id": unified_demand.id, "amount": 700})
        assert response.status_code == 201
        body = response.get_json()
        assert body["payment"]["status"] == "completed"
        assert body["distribution"]["summary"]["property_tax_paid"] == 600.0
        assert [i["status"] for i in body["distribution"]["items"]] == ["fully_paid", "pending"]
        assert body["integrity"]["is_valid"] is True

    def test_overpayment(self, client, make_demand):
        demand = make_demand(total="500", paid="500", service_type=ServiceType.SHOP_TAX)
        response = client.post("/payments", json={"demand_id": demand.id, "amount": 1, "channel": "field"})
        assert response.status_code == 400
        body = response.get_json()
        assert body["code"] == "OVERPAYMENT"
        assert body["details"]["excess_amount"] == 1.0

    def test_invalid_channel(self, client, make_demand):
        demand = make_demand()
        response = client.post("/payments", json={"demand_id": demand.id, "amount": 1, "channel": "POST"})
        assert response.get_json()["code"] == "INVALID_FIELD"

    def test_online_flow(self, client, make_demand):
        demand = make_demand(total="500", service_type=ServiceType.SHOP_TAX)
        created = client.post("/payments/online", json={
            "demand_id": demand.id, "amount": "500", "gateway_order_id": "order_9",
        })
        assert created.status_code == 201
        assert created.get_json()["warning"]
        payment_id = created.get_json()["payment"]["id"]

        signature = SignatureVerifier(SECRET).sign("order_9", "pay_9")
        verified = client.post(f"/payments/{payment_id}/verify", json={
            "gateway_payment_id": "pay_9", "signature": signature,
        })
        assert verified.status_code == 200
        body = verified.get_json()
        assert body["payment"]["status"] == "completed"
        assert body["distribution"]["direct_demand_payment"] is True
        assert body["distribution"]["demand_status"] == "paid"

    def test_verify_bad_signature(self, client, make_demand):
        demand = make_demand(total="500", service_type=ServiceType.SHOP_TAX)
        payment_id = client.post("/payments/online", json={
            "demand_id": demand.id, "amount": "100", "gateway_order_id": "order_1",
        }).get_json()["payment"]["id"]

        response = client.post(f"/payments/{payment_id}/verify", json={"gateway_payment_id": "p", "signature": "x"})
        assert response.status_code == 400
        assert response.get_json()["code"] == "SIGNATURE_INVALID"

    def test_gateway_not_configured(self, session_factory):
        app = create_app(Settings(database_url="sqlite://"), session_factory=session_factory)
        response = app.test_client().post("/payments/1/verify", json={"gateway_payment_id": "p", "signature": "s"})
        assert response.status_code == 503
        assert response.get_json()["code"] == "GATEWAY_NOT_CONFIGURED"

    def test_overpayment_check(self, client, make_demand):
        demand = make_demand(total="500")
        body = client.post("/overpayment-check", json={"demand_id": demand.id, "amount": 500}).get_json()
        assert body["is_valid"] is True
        assert "fully settles" in body["warning"]


class TestDemandEndpoints:
    """Distribution summary and integrity routes."""

    def test_distribution_summary(self, client, make_demand):
        demand = make_demand(
            remarks="UNIFIED_DEMAND", items=[(TaxType.PROPERTY, "600", "100"), (TaxType.WATER, "400", "0")]
        )
        body = client.get(f"/demands/{demand.id}/distribution").get_json()["summary"]
        assert body["breakdown"]["PROPERTY"]["balance_amount"] == 500.0
        assert body["breakdown"]["WATER"]["total_amount"] == 400.0
        assert body["is_valid"] is True

    def test_integrity(self, client, unified_demand):
        body = client.get(f"/demands/{unified_demand.id}/integrity").get_json()
        assert body == {"status": "success", "demand_id": unified_demand.id, "is_valid": True, "issues": []}

    def test_unknown_demand(self, client):
        response = client.get("/demands/404/integrity")
        assert response.status_code == 404
