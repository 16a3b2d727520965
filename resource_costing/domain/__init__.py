"""
Domain Layer - Core costing entities and services.

This module contains:
- entities/: Immutable domain objects (Resource, ResourcePool, ResourceCapacity, ...)
- services/: Domain services (AllocationGraphBuilder, AllocationSolver, CostingEngine)
"""

from .entities import (
    CostingInput,
    RunConfiguration,
    AllocationMethod,
    IdlePolicy,
    CostAllocationResult,
)
from .services import CostingEngine

__all__ = [
    'CostingInput',
    'RunConfiguration', 'AllocationMethod', 'IdlePolicy',
    'CostAllocationResult',
    'CostingEngine',
]
