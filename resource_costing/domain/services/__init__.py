"""
Domain Services - Graph validation, rates, capacity, allocation and reconciliation.
"""

from .graph_builder import AllocationGraph, AllocationGraphBuilder, PoolComponent
from .rate_calculator import DriverRateCalculator
from .capacity_resolver import CapacityProfile, CapacityResolver
from .allocation_solver import AllocationSolver, SolverOutcome, step_down_order
from .reconciliation_validator import ReconciliationValidator
from .costing_engine import CostingEngine

__all__ = [
    'AllocationGraph',
    'AllocationGraphBuilder',
    'PoolComponent',
    'DriverRateCalculator',
    'CapacityProfile',
    'CapacityResolver',
    'AllocationSolver',
    'SolverOutcome',
    'step_down_order',
    'ReconciliationValidator',
    'CostingEngine',
]
