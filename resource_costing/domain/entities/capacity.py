"""
Capacity Entities - Capacity figures for pools and the derived idle portion.
"""
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from ...modules.money import to_decimal


class ResourceCapacityType(Enum):
    """Capacity tiers, from the most to the least generous."""
    THEORETICAL = "theoretical"
    PRACTICAL = "practical"
    NORMAL = "normal"
    ACTUAL = "actual"


# Tiers that must be ordered ACTUAL <= PRACTICAL <= THEORETICAL
ORDERED_TIERS = (
    ResourceCapacityType.ACTUAL,
    ResourceCapacityType.PRACTICAL,
    ResourceCapacityType.THEORETICAL,
)


@dataclass(frozen=True)
class ResourceCapacity:
    """Capacity of a pool, in the unit of the pool's driver."""

    id: str
    pool_id: str
    capacity_type: ResourceCapacityType = ResourceCapacityType.PRACTICAL
    quantity: Decimal = Decimal("0")

    def __post_init__(self):
        object.__setattr__(self, "quantity", to_decimal(self.quantity))


@dataclass(frozen=True)
class IdleCapacity:
    """
    Unused capacity of a pool and its cost.

    Attributes:
        id: Derived identifier ('idle:<pool id>')
        pool_id: Owning pool
        capacity_type: Basis the idle quantity was measured against
        quantity: basis quantity - actual usage, never negative
        cost_amount: quantity x pool rate
        redistributed: True when the cost was absorbed by the pool's
            consumers instead of being charged to the idle sink
    """

    id: str
    pool_id: str
    capacity_type: ResourceCapacityType
    quantity: Decimal
    cost_amount: Decimal
    redistributed: bool = False

    @property
    def sink_cost(self) -> Decimal:
        """Cost charged to the idle-cost sink."""
        return Decimal("0") if self.redistributed else self.cost_amount

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            'id': self.id,
            'pool_id': self.pool_id,
            'capacity_type': self.capacity_type.value,
            'quantity': str(self.quantity),
            'cost_amount': str(self.cost_amount),
            'redistributed': self.redistributed,
        }
