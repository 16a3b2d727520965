"""
Domain Entities - Immutable value definitions of the costing model.
"""

from .resource import Resource, ResourceType, ResourceAdaptabilityType, ResourceOwner, ResourceOutputMeasure
from .pool import ResourcePool, ResourceCostDriver, CostFlowEdge
from .capacity import ResourceCapacity, ResourceCapacityType, IdleCapacity
from .cost import ResourceCostElement, ResourceCostElementType, ResourceCostCenter, CostObjectType
from .costing_input import CostingInput
from .run_configuration import RunConfiguration, AllocationMethod, IdlePolicy
from .result import (
    CostAllocationResult,
    PoolCostSummary,
    EdgeAllocation,
    CapacityOverrunWarning,
    ReconciliationReport,
    PoolDiscrepancy,
)

__all__ = [
    'Resource', 'ResourceType', 'ResourceAdaptabilityType', 'ResourceOwner', 'ResourceOutputMeasure',
    'ResourcePool', 'ResourceCostDriver', 'CostFlowEdge',
    'ResourceCapacity', 'ResourceCapacityType', 'IdleCapacity',
    'ResourceCostElement', 'ResourceCostElementType', 'ResourceCostCenter', 'CostObjectType',
    'CostingInput',
    'RunConfiguration', 'AllocationMethod', 'IdlePolicy',
    'CostAllocationResult', 'PoolCostSummary', 'EdgeAllocation',
    'CapacityOverrunWarning', 'ReconciliationReport', 'PoolDiscrepancy',
]
