"""
Audit sinks.

Call sites hand the sink an ``AuditEntry`` built from the closed
``AuditAction`` set. Labels arriving from outside (older clients, imports)
go through ``coerce_action``, an explicit table; an unknown label is an error.
"""

import logging

from .db import AuditLog
from .models import AuditAction, AuditEntry

logger = logging.getLogger(__name__)

LEGACY_ACTION_LABELS: dict[str, AuditAction] = {
    "CREATE": AuditAction.CREATE,
    "UPDATE": AuditAction.UPDATE,
    "REVOKE": AuditAction.REVOKE,
    "PAY": AuditAction.PAY,
    "COLLECT": AuditAction.COLLECT,
    "REJECT": AuditAction.REJECT,
    "APPROVE": AuditAction.APPROVE,
    "INTEGRITY_WARNING": AuditAction.INTEGRITY_WARNING,
    "DISCOUNT_APPLIED": AuditAction.CREATE,
    "PENALTY_WAIVER_APPLIED": AuditAction.CREATE,
    "DISCOUNT_REVOKED": AuditAction.REVOKE,
    "PENALTY_WAIVER_REVOKED": AuditAction.REVOKE,
    "PAYMENT": AuditAction.PAY,
    "PAYMENT_COLLECTED": AuditAction.COLLECT,
    "FIELD_COLLECTION": AuditAction.COLLECT,
    "OVERPAYMENT_BLOCKED": AuditAction.REJECT,
    "PAYMENT_REJECTED": AuditAction.REJECT,
    "INTEGRITY_CHECK_FAILED": AuditAction.INTEGRITY_WARNING,
}

SENSITIVE_FIELDS = ("password", "token", "secret", "key", "authorization", "signature")


def coerce_action(label) -> AuditAction:
    """Translate an external action label into an AuditAction.

    Raises ValueError for labels that are not in the mapping table.
    """
    if isinstance(label, AuditAction):
        return label
    normalized = str(label or "").strip().upper()
    try:
        return LEGACY_ACTION_LABELS[normalized]
    except KeyError:
        raise ValueError(f"Unknown audit action label: {label!r}") from None


def sanitize(data: dict | None) -> dict | None:
    if not data:
        return data
    return {key: "[REDACTED]" if key.lower() in SENSITIVE_FIELDS else value for key, value in data.items()}


class DatabaseAuditSink:
    """Adds audit rows to the caller's session so they commit with the change they describe."""

    def __init__(self, session):
        self.session = session

    def record(self, entry: AuditEntry) -> AuditLog:
        row = AuditLog(
            action_type=coerce_action(entry.action),
            entity_type=entry.entity_type,
            entity_id=entry.entity_id,
            previous_data=sanitize(entry.previous_data),
            new_data=sanitize(entry.new_data),
            description=entry.description,
            extra=sanitize(entry.metadata) or None,
            actor_id=entry.actor_id,
        )
        self.session.add(row)
        logger.debug(
            "audit %s %s#%s: %s", row.action_type.value, entry.entity_type, entry.entity_id, entry.description
        )
        return row

