"""
Module/service compatibility and entity ownership checks.

An adjustment names a tax module and the entity it is granted for. Before it
touches a demand, the demand must belong to that module and, through its
assessment chain, to that entity.
"""

from dataclasses import dataclass

from .errors import ConflictError
from .models import ModuleType, ServiceType

MODULE_SERVICE_MAP: dict[ModuleType, frozenset[ServiceType]] = {
    ModuleType.PROPERTY: frozenset({ServiceType.HOUSE_TAX}),
    ModuleType.WATER: frozenset({ServiceType.WATER_TAX}),
    ModuleType.SHOP: frozenset({ServiceType.SHOP_TAX}),
    ModuleType.D2DC: frozenset({ServiceType.D2DC, ServiceType.HOUSE_TAX}),
    ModuleType.UNIFIED: frozenset({ServiceType.HOUSE_TAX, ServiceType.WATER_TAX}),
}


def check_module_compatibility(demand, module_type: ModuleType) -> None:
    """Raise ConflictError when ``demand`` cannot be adjusted under ``module_type``."""
    service_type = ServiceType(demand.service_type)
    module_type = ModuleType(module_type)

    if module_type is ModuleType.UNIFIED:
        if not demand.is_unified:
            raise ConflictError(
                f"Demand {demand.demand_number} is not a unified tax demand",
                code="NOT_UNIFIED_DEMAND",
            )
        if service_type not in MODULE_SERVICE_MAP[module_type]:
            raise ConflictError(
                f"Demand service type {service_type.value} is incompatible with a unified adjustment",
                code="MODULE_MISMATCH",
            )
        return

    if service_type not in MODULE_SERVICE_MAP[module_type]:
        raise ConflictError(
            f"Demand {demand.demand_number} ({service_type.value}) does not match tax module {module_type.value}",
            code="MODULE_MISMATCH",
            details={"service_type": service_type.value, "module_type": module_type.value},
        )


# =============================================================================
# ENTITY RESOLUTION
# =============================================================================


@dataclass(frozen=True)
class PropertyOwnerStrategy:
    """Property-backed modules are owned by the demand's property."""

    modules: frozenset = frozenset({ModuleType.PROPERTY, ModuleType.D2DC, ModuleType.UNIFIED})
    entity_label: str = "property"

    def resolve(self, demand) -> int | None:
        return demand.property_id


@dataclass(frozen=True)
class WaterConnectionStrategy:
    """Water demands resolve through their water tax assessment to a connection."""

    modules: frozenset = frozenset({ModuleType.WATER})
    entity_label: str = "water connection"

    def resolve(self, demand) -> int | None:
        assessment = demand.water_tax_assessment
        return assessment.water_connection_id if assessment is not None else None


@dataclass(frozen=True)
class ShopStrategy:
    """Shop demands resolve through their shop tax assessment to a shop."""

    modules: frozenset = frozenset({ModuleType.SHOP})
    entity_label: str = "shop"

    def resolve(self, demand) -> int | None:
        assessment = demand.shop_tax_assessment
        return assessment.shop_id if assessment is not None else None


DEFAULT_STRATEGIES = (PropertyOwnerStrategy(), WaterConnectionStrategy(), ShopStrategy())


class EntityResolver:
    """Evaluates ownership strategies in order; the first one handling the module wins."""

    def __init__(self, strategies=DEFAULT_STRATEGIES):
        self.strategies = tuple(strategies)

    def strategy_for(self, module_type: ModuleType):
        module_type = ModuleType(module_type)
        for strategy in self.strategies:
            if module_type in strategy.modules:
                return strategy
        raise ConflictError(f"No ownership rule for module {module_type.value}", code="MODULE_MISMATCH")

    def resolve(self, demand, module_type: ModuleType) -> int | None:
        return self.strategy_for(module_type).resolve(demand)

    def verify(self, demand, module_type: ModuleType, entity_id: int) -> None:
        strategy = self.strategy_for(module_type)
        owner_id = strategy.resolve(demand)
        if owner_id is None or owner_id != entity_id:
            raise ConflictError(
                f"Demand {demand.demand_number} does not belong to the selected {strategy.entity_label}",
                code="ENTITY_MISMATCH",
                details={"entity_id": entity_id, "resolved_entity_id": owner_id},
            )
