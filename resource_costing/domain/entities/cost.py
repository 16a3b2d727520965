"""
Cost Entities - Cost elements carried by resources and the cost objects that
finally receive allocated cost.
"""
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Optional

from ...modules.money import to_decimal


class ResourceCostElementType(Enum):
    """Behaviour of a cost element with respect to volume."""
    FIXED = "fixed"
    VARIABLE = "variable"


class CostObjectType(Enum):
    """Kind of terminal cost object."""
    COST_CENTER = "cost_center"
    PRODUCT = "product"
    SERVICE = "service"


@dataclass(frozen=True)
class ResourceCostElement:
    """
    A specific cost amount tied to a resource.

    Amounts are currency neutral. Negative amounts are accepted by the
    constructor and rejected by the graph builder so that every problem in
    the input is reported together.
    """

    id: str
    resource_id: str
    element_type: ResourceCostElementType = ResourceCostElementType.FIXED
    amount: Decimal = Decimal("0")

    def __post_init__(self):
        object.__setattr__(self, "amount", to_decimal(self.amount))


@dataclass(frozen=True)
class ResourceCostCenter:
    """Terminal cost object: a sink of the allocation graph."""

    id: str
    name: str = ""
    object_type: CostObjectType = CostObjectType.COST_CENTER
    accumulated_cost: Optional[Decimal] = None

    def __post_init__(self):
        if self.accumulated_cost is not None:
            object.__setattr__(self, "accumulated_cost", to_decimal(self.accumulated_cost))
