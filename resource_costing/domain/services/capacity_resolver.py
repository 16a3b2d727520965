"""
Capacity & Idle Cost Resolver - Splits pool capacity cost into used and idle.

    idle quantity = max(0, basis quantity - actual usage)
    idle cost     = idle quantity x pool rate

Actual usage is the pool's ACTUAL capacity record when one exists, else the
total volume its consumers declared on cost-flow edges. Usage above the
basis is clamped to zero idle and reported as a CapacityOverrun warning.
"""
from dataclasses import dataclass
from decimal import Decimal, localcontext
from typing import Collection, Dict, List, Mapping, Tuple
import logging

from ...modules.money import WORKING_PRECISION
from ..entities.capacity import IdleCapacity, ResourceCapacityType
from ..entities.result import CapacityOverrunWarning
from ..entities.run_configuration import IdlePolicy, RunConfiguration
from .graph_builder import AllocationGraph

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
ONE = Decimal("1")


@dataclass(frozen=True)
class CapacityProfile:
    """Used and idle capacity of one pool."""
    pool_id: str
    capacity_type: ResourceCapacityType
    basis_quantity: Decimal
    actual_usage: Decimal
    idle_quantity: Decimal
    idle_fraction: Decimal

    @property
    def overrun(self) -> bool:
        return self.actual_usage > self.basis_quantity


class CapacityResolver:
    """Computes capacity profiles, allocable fractions and idle capacity."""

    def __init__(self, config: RunConfiguration):
        self.config = config

    def profiles(
        self,
        graph: AllocationGraph,
        basis: Mapping[str, Decimal],
    ) -> Tuple[Dict[str, CapacityProfile], List[CapacityOverrunWarning]]:
        """
        Capacity profile of every pool.

        Args:
            graph: Validated allocation graph
            basis: Non-zero capacity basis quantity per pool id

        Returns:
            (profiles by pool id, capacity overrun warnings)
        """
        profiles: Dict[str, CapacityProfile] = {}
        warnings: List[CapacityOverrunWarning] = []

        for i, pool_id in enumerate(graph.pool_ids):
            capacity_type = self.config.capacity_basis_for(pool_id)
            basis_quantity = basis[pool_id]
            tiers = graph.capacities.get(pool_id, {})
            actual = tiers.get(ResourceCapacityType.ACTUAL)
            if actual is None:
                actual = graph.outgoing_volume(i)

            idle_quantity = basis_quantity - actual
            if idle_quantity < 0:
                warning = CapacityOverrunWarning(
                    pool_id=pool_id,
                    capacity_type=capacity_type,
                    basis_quantity=basis_quantity,
                    actual_usage=actual,
                )
                logger.warning(warning.message)
                warnings.append(warning)
                idle_quantity = ZERO

            with localcontext() as ctx:
                ctx.prec = WORKING_PRECISION
                idle_fraction = idle_quantity / basis_quantity

            profiles[pool_id] = CapacityProfile(
                pool_id=pool_id,
                capacity_type=capacity_type,
                basis_quantity=basis_quantity,
                actual_usage=actual,
                idle_quantity=idle_quantity,
                idle_fraction=idle_fraction,
            )

        idle_pools = sum(1 for p in profiles.values() if p.idle_quantity > 0)
        logger.info(f"Resolved capacity for {len(profiles)} pools, {idle_pools} with idle capacity")
        return profiles, warnings

    def allocable_fraction(self, profile: CapacityProfile, has_consumers: bool) -> Decimal:
        """
        Share of a pool's cost that flows on to its consumers.

        SINK: the idle share stays behind in the idle-cost sink.
        REDISTRIBUTE: consumers absorb the idle share in proportion to the
        volume they consumed; a pool without consumers cannot pass it on
        and keeps it in the sink.
        """
        policy = self.config.idle_policy
        if policy is IdlePolicy.SINK:
            return ONE - profile.idle_fraction
        elif policy is IdlePolicy.REDISTRIBUTE:
            return ONE if has_consumers else ONE - profile.idle_fraction
        raise ValueError(f"Unhandled idle policy: {policy}")

    def idle_capacities(
        self,
        profiles: Mapping[str, CapacityProfile],
        rates: Mapping[str, Decimal],
        redistributed: Collection[str] = (),
    ) -> List[IdleCapacity]:
        """
        Idle capacity and its cost for every pool.

        Args:
            profiles: Capacity profiles by pool id
            rates: Driver rate by pool id
            redistributed: Pools whose idle cost was absorbed by consumers
        """
        idle = []
        with localcontext() as ctx:
            ctx.prec = WORKING_PRECISION
            for pool_id, profile in profiles.items():
                idle.append(IdleCapacity(
                    id=f"idle:{pool_id}",
                    pool_id=pool_id,
                    capacity_type=profile.capacity_type,
                    quantity=profile.idle_quantity,
                    cost_amount=profile.idle_quantity * rates[pool_id],
                    redistributed=pool_id in redistributed and profile.idle_quantity > 0,
                ))
        return idle
