"""
Cost Allocation Result - Output of a completed costing run.

All amounts are kept at full Decimal precision. Rounding is applied only
by the serialization helpers (to_dict, to_dataframes) using the run's
rounding settings.
"""
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Optional, Tuple

import pandas as pd

from ...modules.money import quantize_amount, round_preserving_total
from ..exceptions import ReconciliationMismatchError
from .capacity import IdleCapacity, ResourceCapacityType
from .cost import ResourceCostCenter
from .pool import ResourcePool
from .run_configuration import RunConfiguration

ZERO = Decimal("0")


@dataclass(frozen=True)
class CapacityOverrunWarning:
    """Actual usage exceeded the configured capacity basis of a pool."""

    pool_id: str
    capacity_type: ResourceCapacityType
    basis_quantity: Decimal
    actual_usage: Decimal
    code: str = "CAPACITY_OVERRUN"

    @property
    def excess(self) -> Decimal:
        return self.actual_usage - self.basis_quantity

    @property
    def message(self) -> str:
        return (
            f"Pool '{self.pool_id}' used {self.actual_usage} against a "
            f"{self.capacity_type.value} capacity of {self.basis_quantity}; "
            f"idle quantity clamped to zero"
        )

    def to_dict(self) -> dict:
        return {
            'code': self.code,
            'pool_id': self.pool_id,
            'capacity_type': self.capacity_type.value,
            'basis_quantity': str(self.basis_quantity),
            'actual_usage': str(self.actual_usage),
            'excess': str(self.excess),
            'message': self.message,
        }


@dataclass(frozen=True)
class EdgeAllocation:
    """Cost carried by one cost-flow edge."""

    edge_id: str
    source_id: str
    target_id: str
    target_is_pool: bool
    volume: Decimal
    amount: Decimal


@dataclass(frozen=True)
class PoolCostSummary:
    """
    Costing figures for one pool.

    Balances:
        fully_loaded_cost = direct_cost + received_cost
        direct_cost = committed_cost + flexible_cost = fixed_cost + variable_cost
        fully_loaded_cost = idle_cost_charged + allocated_out + unallocated
    """

    pool_id: str
    direct_cost: Decimal
    committed_cost: Decimal
    flexible_cost: Decimal
    fixed_cost: Decimal
    variable_cost: Decimal
    received_cost: Decimal
    fully_loaded_cost: Decimal
    capacity_basis: ResourceCapacityType
    basis_quantity: Decimal
    actual_usage: Decimal
    rate: Decimal
    consumption_rate: Optional[Decimal]
    idle_quantity: Decimal
    idle_cost: Decimal
    idle_cost_charged: Decimal
    allocated_out: Decimal
    unallocated: Decimal
    residual_driver_volume: Decimal
    cost_per_output_unit: Optional[Decimal] = None


@dataclass(frozen=True)
class PoolDiscrepancy:
    """A pool whose cost does not balance."""

    pool_id: str
    inflow_imbalance: Decimal
    outflow_imbalance: Decimal
    edge_ids: Tuple[str, ...] = ()

    @property
    def magnitude(self) -> Decimal:
        return abs(self.inflow_imbalance) + abs(self.outflow_imbalance)


@dataclass(frozen=True)
class ReconciliationReport:
    """
    Outcome of the conservation check.

    discrepancy = input_total - (allocated_total + idle_total + unallocated_total)
    """

    passed: bool
    tolerance: Decimal
    input_total: Decimal
    allocated_total: Decimal
    idle_total: Decimal
    unallocated_total: Decimal
    discrepancy: Decimal
    pool_discrepancies: Tuple[PoolDiscrepancy, ...] = ()
    negative_cost_objects: Tuple[str, ...] = ()

    @property
    def status(self) -> str:
        return "passed" if self.passed else "failed"

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            'status': self.status,
            'passed': self.passed,
            'tolerance': str(self.tolerance),
            'input_total': str(self.input_total),
            'allocated_total': str(self.allocated_total),
            'idle_total': str(self.idle_total),
            'unallocated_total': str(self.unallocated_total),
            'discrepancy': str(self.discrepancy),
            'pool_discrepancies': [
                {
                    'pool_id': d.pool_id,
                    'inflow_imbalance': str(d.inflow_imbalance),
                    'outflow_imbalance': str(d.outflow_imbalance),
                    'edge_ids': list(d.edge_ids),
                }
                for d in self.pool_discrepancies
            ],
            'negative_cost_objects': list(self.negative_cost_objects),
        }


@dataclass(frozen=True)
class CostAllocationResult:
    """
    Fully reconciled cost breakdown of a costing run.

    Attributes:
        config: Configuration the run used
        pools: Per-pool figures keyed by pool id (ascending)
        costed_pools: Input pools with accumulated_cost filled in
        cost_centers: Cost objects with accumulated_cost filled in
        idle_capacities: Idle capacity per pool
        edge_allocations: Cost carried by every honored edge
        cost_object_totals: Allocated cost per terminal cost object
        warnings: Capacity overrun warnings
        reconciliation: Conservation check outcome
        sequence: Pool order used by step-down (empty for other methods)
    """

    config: RunConfiguration
    pools: Dict[str, PoolCostSummary]
    costed_pools: Tuple[ResourcePool, ...]
    cost_centers: Tuple[ResourceCostCenter, ...]
    idle_capacities: Tuple[IdleCapacity, ...]
    edge_allocations: Tuple[EdgeAllocation, ...]
    cost_object_totals: Dict[str, Decimal]
    warnings: Tuple[CapacityOverrunWarning, ...]
    reconciliation: ReconciliationReport
    sequence: Tuple[str, ...] = ()

    @property
    def is_valid(self) -> bool:
        """False when the totals do not reconcile; do not consume downstream."""
        return self.reconciliation.passed

    def raise_for_status(self) -> 'CostAllocationResult':
        """Raise ReconciliationMismatchError if the result is invalid."""
        if not self.is_valid:
            raise ReconciliationMismatchError(
                self.reconciliation.discrepancy,
                self.reconciliation.tolerance,
                details=self.reconciliation.to_dict(),
            )
        return self

    def total_allocated(self) -> Decimal:
        """Cost that reached terminal cost objects."""
        return sum(self.cost_object_totals.values(), ZERO)

    def total_idle_cost(self) -> Decimal:
        """Idle cost charged to the sink."""
        return sum((p.idle_cost_charged for p in self.pools.values()), ZERO)

    def total_unallocated(self) -> Decimal:
        """Cost left on pools without consumers."""
        return sum((p.unallocated for p in self.pools.values()), ZERO)

    def idle_for(self, pool_id: str) -> Optional[IdleCapacity]:
        """Idle capacity of a pool."""
        for idle in self.idle_capacities:
            if idle.pool_id == pool_id:
                return idle
        return None

    # =========================================================================
    # Serialization
    # =========================================================================

    def _round(self, value: Optional[Decimal]) -> Optional[Decimal]:
        if value is None:
            return None
        return quantize_amount(
            value, self.config.rounding_places, self.config.decimal_rounding
        )

    def rounded_cost_object_totals(self) -> Dict[str, Decimal]:
        """
        Cost object totals rounded so that they add up to the rounded
        total allocated (Largest Remainder Method).
        """
        return round_preserving_total(
            self.cost_object_totals,
            self.config.rounding_places,
            self.config.decimal_rounding,
        )

    def to_dict(self) -> dict:
        """
        Convert to dictionary for serialization.

        Amounts are rounded to the configured places and emitted as strings
        so that no binary float enters downstream consumers.
        """
        r = self._round
        return {
            'valid': self.is_valid,
            'config': self.config.to_dict(),
            'sequence': list(self.sequence),
            'pools': [
                {
                    'pool_id': p.pool_id,
                    'direct_cost': str(r(p.direct_cost)),
                    'committed_cost': str(r(p.committed_cost)),
                    'flexible_cost': str(r(p.flexible_cost)),
                    'fixed_cost': str(r(p.fixed_cost)),
                    'variable_cost': str(r(p.variable_cost)),
                    'received_cost': str(r(p.received_cost)),
                    'fully_loaded_cost': str(r(p.fully_loaded_cost)),
                    'capacity_basis': p.capacity_basis.value,
                    'basis_quantity': str(p.basis_quantity),
                    'actual_usage': str(p.actual_usage),
                    'rate': str(r(p.rate)),
                    'consumption_rate': (
                        str(r(p.consumption_rate)) if p.consumption_rate is not None else None
                    ),
                    'idle_quantity': str(p.idle_quantity),
                    'idle_cost': str(r(p.idle_cost)),
                    'allocated_out': str(r(p.allocated_out)),
                    'unallocated': str(r(p.unallocated)),
                    'residual_driver_volume': str(p.residual_driver_volume),
                    'cost_per_output_unit': (
                        str(r(p.cost_per_output_unit))
                        if p.cost_per_output_unit is not None else None
                    ),
                }
                for p in self.pools.values()
            ],
            'cost_objects': {
                k: str(v) for k, v in self.rounded_cost_object_totals().items()
            },
            'idle_capacities': [
                {**i.to_dict(), 'cost_amount': str(r(i.cost_amount))}
                for i in self.idle_capacities
            ],
            'warnings': [w.to_dict() for w in self.warnings],
            'totals': {
                'allocated': str(r(self.total_allocated())),
                'idle': str(r(self.total_idle_cost())),
                'unallocated': str(r(self.total_unallocated())),
                'input': str(r(self.reconciliation.input_total)),
            },
            'reconciliation': self.reconciliation.to_dict(),
        }

    def to_dataframes(self) -> Dict[str, pd.DataFrame]:
        """
        Tabular view of the result.

        Returns:
            Dict with 'pools', 'cost_objects' and 'edges' DataFrames
        """
        r = self._round
        pools_df = pd.DataFrame([
            {
                'pool_id': p.pool_id,
                'direct_cost': r(p.direct_cost),
                'fixed_cost': r(p.fixed_cost),
                'variable_cost': r(p.variable_cost),
                'received_cost': r(p.received_cost),
                'fully_loaded_cost': r(p.fully_loaded_cost),
                'capacity_basis': p.capacity_basis.value,
                'basis_quantity': p.basis_quantity,
                'rate': r(p.rate),
                'idle_quantity': p.idle_quantity,
                'idle_cost': r(p.idle_cost),
                'allocated_out': r(p.allocated_out),
                'unallocated': r(p.unallocated),
                'residual_driver_volume': p.residual_driver_volume,
            }
            for p in self.pools.values()
        ])

        centers = {c.id: c for c in self.cost_centers}
        cost_objects_df = pd.DataFrame([
            {
                'cost_object_id': key,
                'name': centers[key].name if key in centers else '',
                'object_type': centers[key].object_type.value if key in centers else '',
                'allocated_cost': amount,
            }
            for key, amount in self.rounded_cost_object_totals().items()
        ])

        edges_df = pd.DataFrame([
            {
                'edge_id': e.edge_id,
                'source_id': e.source_id,
                'target_id': e.target_id,
                'target_is_pool': e.target_is_pool,
                'volume': e.volume,
                'amount': r(e.amount),
            }
            for e in self.edge_allocations
        ])

        return {
            'pools': pools_df,
            'cost_objects': cost_objects_df,
            'edges': edges_df,
        }
