"""
Costing Input - The complete, immutable description handed to a costing run.
"""
from dataclasses import dataclass
from decimal import Decimal
from typing import Tuple

from .capacity import ResourceCapacity
from .cost import ResourceCostCenter, ResourceCostElement
from .pool import CostFlowEdge, ResourceCostDriver, ResourcePool
from .resource import Resource, ResourceOutputMeasure, ResourceOwner


@dataclass(frozen=True)
class CostingInput:
    """
    Entity lists and cost-flow edges for one costing run.

    Lists are stored as tuples so that one input can be shared by
    concurrent runs.
    """

    resources: Tuple[Resource, ...] = ()
    pools: Tuple[ResourcePool, ...] = ()
    drivers: Tuple[ResourceCostDriver, ...] = ()
    capacities: Tuple[ResourceCapacity, ...] = ()
    cost_elements: Tuple[ResourceCostElement, ...] = ()
    cost_centers: Tuple[ResourceCostCenter, ...] = ()
    edges: Tuple[CostFlowEdge, ...] = ()
    output_measures: Tuple[ResourceOutputMeasure, ...] = ()
    owners: Tuple[ResourceOwner, ...] = ()

    def __post_init__(self):
        for name in (
            "resources", "pools", "drivers", "capacities", "cost_elements",
            "cost_centers", "edges", "output_measures", "owners",
        ):
            object.__setattr__(self, name, tuple(getattr(self, name)))

    def total_input_cost(self) -> Decimal:
        """Sum of all cost element amounts."""
        return sum((e.amount for e in self.cost_elements), Decimal("0"))
