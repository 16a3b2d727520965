"""
Resource Entities - Elementary cost-bearing units and their annotations.

Implements:
- Immutable value semantics
- Resource classification (direct, indirect, shared; committed, flexible)
- Read-only owner and output annotations
"""
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Optional

from ...modules.money import to_decimal


class ResourceType(Enum):
    """How a resource relates to the cost objects it serves."""
    DIRECT = "direct"
    INDIRECT = "indirect"
    SHARED = "shared"


class ResourceAdaptabilityType(Enum):
    """Whether resource cost can be adjusted in the short term."""
    COMMITTED = "committed"
    FLEXIBLE = "flexible"


@dataclass(frozen=True)
class ResourceOwner:
    """Accountable party for a resource. Never carries cost."""
    id: str
    name: str = ""


@dataclass(frozen=True)
class Resource:
    """
    Elementary cost-bearing unit (labor, equipment, material class).

    Attributes:
        id: Stable identifier
        name: Display name
        pool_id: The single pool the resource belongs to
        resource_type: Direct, indirect or shared
        adaptability: Committed or flexible
        owner_id: Optional accountable owner
    """

    id: str
    name: str = ""
    pool_id: str = ""
    resource_type: ResourceType = ResourceType.DIRECT
    adaptability: ResourceAdaptabilityType = ResourceAdaptabilityType.FLEXIBLE
    owner_id: Optional[str] = None


@dataclass(frozen=True)
class ResourceOutputMeasure:
    """
    Quantified output of a resource or pool.

    The subject may be a resource id or a pool id. When a pool has an
    output measure the result reports its cost per output unit.
    """

    id: str
    subject_id: str
    value: Decimal = Decimal("0")
    unit: str = ""

    def __post_init__(self):
        object.__setattr__(self, "value", to_decimal(self.value))
