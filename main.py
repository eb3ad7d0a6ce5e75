from functools import wraps
import logging

from flask import Flask, jsonify, request
from flask_cors import CORS

from ledger import AdjustmentKind, AdjustmentLedger, LedgerError, OutputBuilder, PaymentProcessor, Settings
from ledger.db import create_session_factory, init_db
from ledger.errors import ValidationError
from ledger.gateway import SignatureVerifier
from ledger.models import PaymentChannel

logger = logging.getLogger(__name__)

KIND_ROUTES = {
    "discounts": AdjustmentKind.DISCOUNT,
    "penalty-waivers": AdjustmentKind.PENALTY_WAIVER,
}


def _actor_id():
    """Acting user as forwarded by the authenticating proxy."""
    raw = request.headers.get("X-Actor-Id")
    try:
        return int(raw) if raw else None
    except ValueError:
        raise ValidationError(f"X-Actor-Id must be an integer, got: {raw!r}", code="INVALID_FIELD")


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if not data or not isinstance(data, dict):
        raise ValidationError("No input data provided", code="MISSING_FIELDS")
    return data


def _require(data: dict, *keys):
    missing = [key for key in keys if data.get(key) in (None, "")]
    if missing:
        raise ValidationError(
            f"{', '.join(missing)} required", code="MISSING_FIELDS", details={"missing": missing}
        )


def handle_errors(view):
    """Map ledger errors onto JSON responses with their HTTP status."""

    @wraps(view)
    def wrapper(*args, **kwargs):
        try:
            return view(*args, **kwargs)
        except LedgerError as e:
            logger.warning(f"{view.__name__} rejected [{e.code}]: {e.message}")
            body = e.to_dict()
            body["status"] = "failed"
            return jsonify(body), e.http_status
        except Exception:
            logger.error(f"{view.__name__} failed", exc_info=True)
            return jsonify({
                "error": "Internal server error",
                "code": "INTERNAL_ERROR",
                "status": "failed",
                "details": {},
            }), 500

    return wrapper


def create_app(settings: Settings | None = None, session_factory=None) -> Flask:
    settings = settings or Settings.from_env()
    logging.basicConfig(level=settings.log_level)

    if session_factory is None:
        session_factory = create_session_factory(settings.database_url)
        init_db(session_factory)

    verifier = SignatureVerifier(settings.gateway_key_secret) if settings.gateway_key_secret else None
    ledger = AdjustmentLedger(session_factory, history_limit_max=settings.history_limit_max)
    processor = PaymentProcessor(session_factory, verifier=verifier)
    output = OutputBuilder()

    app = Flask(__name__)
    CORS(app)
    app.config["LEDGER_SETTINGS"] = settings

    @app.route("/api", methods=["GET"])
    def api_info():
        """API information endpoint"""
        return jsonify({
            "status": "ok",
            "message": "Municipal Ledger API",
            "version": "1.0",
            "endpoints": {
                "discounts": "/discounts [POST], /discounts/summary [GET], /discounts/history [GET], "
                             "/discounts/<id>/revoke [POST]",
                "penalty_waivers": "/penalty-waivers [POST], /penalty-waivers/summary [GET], "
                                   "/penalty-waivers/history [GET], /penalty-waivers/<id>/revoke [POST]",
                "payments": "/payments [POST], /payments/online [POST], /payments/<id>/verify [POST]",
                "demands": "/demands/<id>/distribution [GET], /demands/<id>/integrity [GET]",
                "overpayment_check": "/overpayment-check [POST]",
                "health": "/health [GET]",
            },
        }), 200

    @app.route("/health", methods=["GET"])
    def health():
        """Health check for monitoring"""
        return jsonify({"status": "healthy", "environment": settings.environment}), 200

    # -------------------------------------------------------------------------
    # Adjustments
    # -------------------------------------------------------------------------

    @app.route("/<any(discounts, 'penalty-waivers'):resource>", methods=["POST"])
    @handle_errors
    def apply_adjustment(resource):
        kind = KIND_ROUTES[resource]
        data = _json_body()
        logger.info(f"Applying {kind.label.lower()} to demand {data.get('demand_id')}")
        outcome = ledger.apply(kind, data, _actor_id())
        return jsonify({"status": "success", **output.adjustment_outcome(outcome)}), 201

    @app.route("/<any(discounts, 'penalty-waivers'):resource>/<int:adjustment_id>/revoke", methods=["POST"])
    @handle_errors
    def revoke_adjustment(resource, adjustment_id):
        kind = KIND_ROUTES[resource]
        data = request.get_json(silent=True) or {}
        outcome = ledger.revoke(kind, adjustment_id, _actor_id(), data.get("reason"))
        return jsonify({"status": "success", **output.adjustment_outcome(outcome)}), 200

    @app.route("/<any(discounts, 'penalty-waivers'):resource>/summary", methods=["GET"])
    @handle_errors
    def adjustment_summary(resource):
        summary = ledger.summary(KIND_ROUTES[resource])
        return jsonify({"status": "success", "summary": output.adjustment_summary(summary)}), 200

    @app.route("/<any(discounts, 'penalty-waivers'):resource>/history", methods=["GET"])
    @handle_errors
    def adjustment_history(resource):
        kind = KIND_ROUTES[resource]
        rows = ledger.history(kind, request.args.get("limit"))
        return jsonify({"status": "success", "history": output.history(rows, kind)}), 200

    # -------------------------------------------------------------------------
    # Payments
    # -------------------------------------------------------------------------

    @app.route("/payments", methods=["POST"])
    @handle_errors
    def record_payment():
        data = _json_body()
        _require(data, "demand_id", "amount")
        channel = str(data.get("channel") or PaymentChannel.COUNTER.value).upper()
        if channel not in PaymentChannel.__members__:
            raise ValidationError(f"Invalid channel: {channel}", code="INVALID_FIELD")
        outcome = processor.record_counter_payment(
            demand_id=_int_field(data, "demand_id"),
            amount=data["amount"],
            channel=PaymentChannel(channel),
            payment_mode=data.get("payment_mode") or "cash",
            actor_id=_actor_id(),
            transaction_id=data.get("transaction_id"),
            remarks=data.get("remarks"),
        )
        return jsonify({"status": "success", **output.payment(outcome)}), 201

    @app.route("/payments/online", methods=["POST"])
    @handle_errors
    def initiate_online_payment():
        data = _json_body()
        _require(data, "demand_id", "amount", "gateway_order_id")
        outcome = processor.initiate_online_payment(
            demand_id=_int_field(data, "demand_id"),
            amount=data["amount"],
            gateway_order_id=data["gateway_order_id"],
            actor_id=_actor_id(),
        )
        return jsonify({"status": "success", **output.payment(outcome)}), 201

    @app.route("/payments/<int:payment_id>/verify", methods=["POST"])
    @handle_errors
    def verify_online_payment(payment_id):
        data = _json_body()
        _require(data, "gateway_payment_id", "signature")
        outcome = processor.verify_online_payment(
            payment_id, data["gateway_payment_id"], data["signature"], actor_id=_actor_id()
        )
        return jsonify({"status": "success", **output.payment(outcome)}), 200

    @app.route("/overpayment-check", methods=["POST"])
    @handle_errors
    def overpayment_check():
        data = _json_body()
        _require(data, "demand_id", "amount")
        result = processor.check_payment(_int_field(data, "demand_id"), data["amount"])
        return jsonify({"status": "success", **output.guard(result)}), 200

    # -------------------------------------------------------------------------
    # Demands
    # -------------------------------------------------------------------------

    @app.route("/demands/<int:demand_id>/distribution", methods=["GET"])
    @handle_errors
    def distribution_summary(demand_id):
        summary = processor.get_distribution_summary(demand_id)
        return jsonify({"status": "success", "summary": output.distribution_summary(summary)}), 200

    @app.route("/demands/<int:demand_id>/integrity", methods=["GET"])
    @handle_errors
    def distribution_integrity(demand_id):
        report = processor.validate_distribution_integrity(demand_id, actor_id=_actor_id())
        return jsonify({"status": "success", **output.integrity(report)}), 200

    return app


def _int_field(data: dict, key: str) -> int:
    try:
        return int(str(data[key]).strip())
    except (TypeError, ValueError):
        raise ValidationError(f"{key} must be an integer, got: {data[key]!r}", code="INVALID_FIELD")


if __name__ == "__main__":
    settings = Settings.from_env()
    app = create_app(settings)
    app.run(host="0.0.0.0", port=settings.port, debug=False)
