"""
Driver Rate Calculator - Per-unit cost rates of pools.

rate = fully loaded pool cost / capacity basis quantity

The capacity basis is the run's configured capacity tier, or a per-pool
override. A zero basis is a configuration error, never a silent zero rate.
"""
from decimal import Decimal, localcontext
from typing import Dict, Mapping, Optional
import logging

from ...modules.money import WORKING_PRECISION
from ..entities.capacity import ResourceCapacityType
from ..entities.run_configuration import RunConfiguration
from ..exceptions import ValidationError, Violation, ZeroCapacityError
from .graph_builder import AllocationGraph

logger = logging.getLogger(__name__)


class DriverRateCalculator:
    """Resolves capacity bases and computes driver rates."""

    def __init__(self, config: RunConfiguration):
        self.config = config

    def basis_types(self, graph: AllocationGraph) -> Dict[str, ResourceCapacityType]:
        """Capacity tier used for each pool."""
        return {pool_id: self.config.capacity_basis_for(pool_id) for pool_id in graph.pool_ids}

    def basis_quantities(self, graph: AllocationGraph) -> Dict[str, Decimal]:
        """
        Capacity basis quantity per pool.

        Raises:
            ZeroCapacityError: naming every pool whose basis quantity is zero
            ValidationError: when a pool has no capacity of its basis type
        """
        types = self.basis_types(graph)
        quantities: Dict[str, Decimal] = {}
        zero_pools = {}
        missing = []

        for pool_id in graph.pool_ids:
            basis = types[pool_id]
            quantity = graph.capacities.get(pool_id, {}).get(basis)
            if quantity is None:
                missing.append(Violation(
                    "MISSING_CAPACITY", pool_id,
                    f"pool has no {basis.value} capacity for the configured basis",
                ))
                continue
            if quantity == 0:
                zero_pools[pool_id] = basis.value
            quantities[pool_id] = quantity

        if missing:
            raise ValidationError(missing)

        if zero_pools:
            logger.error(f"Zero capacity basis for pools: {', '.join(zero_pools)}")
            raise ZeroCapacityError(list(zero_pools), zero_pools)

        return quantities

    def rates(
        self,
        loaded_costs: Mapping[str, Decimal],
        basis: Mapping[str, Decimal],
    ) -> Dict[str, Decimal]:
        """
        Driver rate per pool.

        Args:
            loaded_costs: Fully loaded cost per pool id
            basis: Capacity basis quantity per pool id

        Raises:
            ZeroCapacityError: when a basis quantity is zero
        """
        zero_pools = [pool_id for pool_id in loaded_costs if basis[pool_id] == 0]
        if zero_pools:
            raise ZeroCapacityError(zero_pools)

        with localcontext() as ctx:
            ctx.prec = WORKING_PRECISION
            return {
                pool_id: cost / basis[pool_id]
                for pool_id, cost in loaded_costs.items()
            }

    @staticmethod
    def consumption_rate(allocated_out: Decimal, consumed_volume: Decimal) -> Optional[Decimal]:
        """Cost charged per consumed driver unit; None when nothing was consumed."""
        if consumed_volume == 0:
            return None
        with localcontext() as ctx:
            ctx.prec = WORKING_PRECISION
            return allocated_out / consumed_volume
