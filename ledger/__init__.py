"""
Municipal Ledger Core

Demand adjustments (discounts, penalty waivers) and payment distribution
for municipal tax demands.
"""

from .adjustments import AdjustmentLedger
from .config import Settings
from .errors import ConflictError, LedgerError, NotFoundError, OverpaymentError, ValidationError
from .models import AdjustmentKind, DistributionResult, IntegrityReport
from .output import OutputBuilder
from .processor import PaymentProcessor

__all__ = [
    "AdjustmentLedger",
    "PaymentProcessor",
    "OutputBuilder",
    "Settings",
    "AdjustmentKind",
    "DistributionResult",
    "IntegrityReport",
    "LedgerError",
    "ValidationError",
    "NotFoundError",
    "ConflictError",
    "OverpaymentError",
]

__version__ = "1.0.0"
