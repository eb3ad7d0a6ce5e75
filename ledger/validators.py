"""
Input Validation for adjustment requests

Validates request data before any demand is read or locked.
Raises ValidationError with clear messages for any constraint violations.
"""

from .errors import ValidationError
from .models import AdjustmentKind, AdjustmentRequest, AdjustmentType, ModuleType
from .money import HUNDRED

ALLOWED_MODULES = {
    AdjustmentKind.DISCOUNT: frozenset(
        {ModuleType.PROPERTY, ModuleType.WATER, ModuleType.SHOP, ModuleType.D2DC, ModuleType.UNIFIED}
    ),
    # Waivers are never granted on unified demands.
    AdjustmentKind.PENALTY_WAIVER: frozenset(
        {ModuleType.PROPERTY, ModuleType.WATER, ModuleType.SHOP, ModuleType.D2DC}
    ),
}


class InputValidator:
    """Validates adjustment requests according to business rules."""

    def validate(self, request: AdjustmentRequest) -> None:
        """
        Run all field-level validations. Raises ValidationError if any check fails.
        """
        self._validate_module(request)
        self._validate_type(request)
        self._validate_value(request)
        self._validate_proof(request)

    def _validate_module(self, request: AdjustmentRequest) -> None:
        allowed = ALLOWED_MODULES[request.kind]
        if request.module_type not in {module.value for module in allowed}:
            raise ValidationError(
                f"Invalid module_type for {request.kind.label.lower()}: {request.module_type}. "
                f"Must be one of {', '.join(sorted(m.value for m in allowed))}",
                code="INVALID_FIELD",
                details={"field": "module_type"},
            )

    def _validate_type(self, request: AdjustmentRequest) -> None:
        if request.adjustment_type not in {t.value for t in AdjustmentType}:
            raise ValidationError(
                f"Invalid type: {request.adjustment_type}. Must be 'PERCENTAGE' or 'FIXED'",
                code="INVALID_FIELD",
                details={"field": "type"},
            )

    def _validate_value(self, request: AdjustmentRequest) -> None:
        if request.value is None:
            raise ValidationError("value must be a number", code="INVALID_FIELD", details={"field": "value"})
        if request.value < 0:
            raise ValidationError(
                f"value cannot be negative, got: {request.value}",
                code="INVALID_FIELD",
                details={"field": "value"},
            )

    def _validate_proof(self, request: AdjustmentRequest) -> None:
        if not request.reason:
            raise ValidationError("reason cannot be empty", code="MISSING_FIELDS", details={"missing": ["reason"]})
        if not request.document_url:
            raise ValidationError(
                "A supporting document is required", code="MISSING_FIELDS", details={"missing": ["document_url"]}
            )

    def validate_percentage(self, request: AdjustmentRequest) -> None:
        """PERCENTAGE adjustments must stay within 0-100."""
        if request.adjustment_type != AdjustmentType.PERCENTAGE.value:
            return
        if not (0 <= request.value <= HUNDRED):
            raise ValidationError(
                f"Percentage must be between 0 and 100, got: {request.value}",
                code="PercentageOutOfRange",
            )
