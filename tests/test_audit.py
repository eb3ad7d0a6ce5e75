"""
Unit Tests for audit sinks and action labels
"""

import logging

import pytest

from ledger.audit import DatabaseAuditSink, coerce_action, sanitize
from ledger.db import transaction
from ledger.models import AuditAction, AuditEntry


class TestCoerceAction:
    """Action names, including legacy labels."""

    def test_enum_member_passes_through(self):
        assert coerce_action(AuditAction.PAY) is AuditAction.PAY

    @pytest.mark.parametrize("label,expected", [
        ("create", AuditAction.CREATE),
        ("PAYMENT_COLLECTED", AuditAction.COLLECT),
        (" overpayment_blocked ", AuditAction.REJECT),
        ("DISCOUNT_REVOKED", AuditAction.REVOKE),
        ("INTEGRITY_CHECK_FAILED", AuditAction.INTEGRITY_WARNING),
    ])
    def test_legacy_labels(self, label, expected):
        assert coerce_action(label) is expected

    @pytest.mark.parametrize("label", ["PAYMENT_SOMETHING", "DISCOUNT", "", None])
    def test_unknown_label_raises(self, label):
        with pytest.raises(ValueError):
            coerce_action(label)


class TestSanitize:
    """Redaction of sensitive metadata keys."""

    def test_redacts_sensitive_keys(self):
        assert sanitize({"signature": "abc", "amount": 5}) == {"signature": "[REDACTED]", "amount": 5}

    def test_none_passes_through(self):
        assert sanitize(None) is None


class TestSinks:
    """Database audit sink."""

    def test_database_sink_adds_row(self, session_factory, audit_rows):
        with transaction(session_factory) as session:
            DatabaseAuditSink(session).record(
                AuditEntry(
                    action=AuditAction.UPDATE,
                    entity_type="Demand",
                    entity_id=3,
                    description="changed",
                    previous_data={"balance_amount": 10.0},
                    new_data={"balance_amount": 5.0},
                    metadata={"token": "x", "demand_id": 3},
                    actor_id=11,
                )
            )
        rows = audit_rows()
        assert len(rows) == 1
        row = rows[0]
        assert row.action_type is AuditAction.UPDATE
        assert row.previous_data == {"balance_amount": 10.0}
        assert row.extra == {"token": "[REDACTED]", "demand_id": 3}
        assert row.actor_id == 11

    def test_rolled_back_entry_is_not_stored(self, session_factory, audit_rows):
        with pytest.raises(RuntimeError):
            with transaction(session_factory) as session:
                DatabaseAuditSink(session).record(
                    AuditEntry(action=AuditAction.CREATE, entity_type="Demand", entity_id=1, description="x")
                )
                raise RuntimeError("boom")
        assert audit_rows() == []

    def test_recorded_entry_is_logged(self, session_factory, caplog):
        with caplog.at_level(logging.DEBUG, logger="ledger.audit"):
            with transaction(session_factory) as session:
                DatabaseAuditSink(session).record(
                    AuditEntry(action="PAYMENT", entity_type="Payment", entity_id=4, description="paid")
                )
        assert "audit PAY Payment#4: paid" in caplog.text
