"""
Error taxonomy for the ledger core.

Every rejection carries a machine-readable code plus a message with the
relevant amounts. All of them are raised before anything is committed.
"""


class LedgerError(Exception):
    """Base class for ledger rejections."""

    http_status = 400
    default_code = "LEDGER_ERROR"

    def __init__(self, message: str, code: str | None = None, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}

    def to_dict(self) -> dict:
        return {
            "error": self.message,
            "code": self.code,
            "details": self.details,
        }


class ValidationError(LedgerError, ValueError):
    """Malformed or missing input. Never persisted."""

    default_code = "VALIDATION_ERROR"


class NotFoundError(LedgerError):
    """Referenced demand, adjustment or payment does not exist."""

    http_status = 404
    default_code = "NOT_FOUND"


class ConflictError(LedgerError):
    """Business-rule violation against the current ledger state."""

    default_code = "CONFLICT"


class OverpaymentError(ConflictError):
    """Payment exceeds the demand's outstanding balance."""

    default_code = "OVERPAYMENT"


class GatewayNotConfiguredError(LedgerError):
    http_status = 503
    default_code = "GATEWAY_NOT_CONFIGURED"
