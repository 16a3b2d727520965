"""
Pool Entities - Resource pools, their drivers and the cost-flow edges between them.

Funds flow: Cost Element -> Resource -> Pool -> (Pool ...) -> Cost Object
"""
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, FrozenSet, Optional

from ...modules.money import to_decimal


@dataclass(frozen=True)
class ResourceCostDriver:
    """
    The measurable cause of consumption of a pool's output.

    Attributes:
        id: Stable identifier
        name: Display name (e.g. 'Machine hours')
        unit: Unit of measure shared with the pool capacities
        total_volume: Total driver volume available
        consumer_volumes: Volume consumed per consumer id (pool or cost object)
    """

    id: str
    name: str = ""
    unit: str = ""
    total_volume: Decimal = Decimal("0")
    consumer_volumes: Dict[str, Decimal] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "total_volume", to_decimal(self.total_volume))
        object.__setattr__(
            self,
            "consumer_volumes",
            {str(k): to_decimal(v) for k, v in self.consumer_volumes.items()},
        )

    def consumed_volume(self) -> Decimal:
        """Sum of per-consumer volumes."""
        return sum(self.consumer_volumes.values(), Decimal("0"))

    def residual_volume(self) -> Decimal:
        """Driver volume not claimed by any consumer."""
        return self.total_volume - self.consumed_volume()


@dataclass(frozen=True)
class ResourcePool:
    """
    Aggregation of resources sharing one driver and one cost rate.

    accumulated_cost is derived: None on input, filled in on the
    costed copies returned by a run.
    """

    id: str
    name: str = ""
    driver_id: str = ""
    resource_ids: FrozenSet[str] = field(default_factory=frozenset)
    accumulated_cost: Optional[Decimal] = None

    def __post_init__(self):
        object.__setattr__(self, "resource_ids", frozenset(self.resource_ids))
        if self.accumulated_cost is not None:
            object.__setattr__(self, "accumulated_cost", to_decimal(self.accumulated_cost))


@dataclass(frozen=True)
class CostFlowEdge:
    """
    Declared flow of cost from a pool to a consumer.

    The consumer is either another pool or a terminal cost object. When
    volume is None, the source pool's driver volume for the target is used.
    """

    id: str
    source_id: str
    target_id: str
    volume: Optional[Decimal] = None

    def __post_init__(self):
        if self.volume is not None:
            object.__setattr__(self, "volume", to_decimal(self.volume))
