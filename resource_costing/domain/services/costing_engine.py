"""
Costing Engine - Orchestrates one costing run end to end.

Stages:
    1. Build and validate the allocation graph
    2. Resolve capacity bases (zero capacity is rejected here)
    3. Resolve used and idle capacity per pool
    4. Allocate pool cost with the configured method
    5. Compute driver rates and idle capacity cost
    6. Reconcile allocated cost against input cost

Every run works on its own immutable input and configuration; nothing is
shared between runs, so an engine may be used from several threads.
"""
from dataclasses import replace
from decimal import Decimal, localcontext
from threading import Event
from typing import Dict, Optional
import logging
import time

from ...modules.money import WORKING_PRECISION
from ..entities.costing_input import CostingInput
from ..entities.result import CostAllocationResult, EdgeAllocation, PoolCostSummary
from ..entities.run_configuration import RunConfiguration
from ..exceptions import CostingRunCancelled
from .allocation_solver import AllocationSolver, SolverOutcome
from .capacity_resolver import CapacityProfile, CapacityResolver
from .graph_builder import AllocationGraph, AllocationGraphBuilder
from .rate_calculator import DriverRateCalculator
from .reconciliation_validator import ReconciliationValidator

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


class CostingEngine:
    """
    Runs the costing pipeline for one configuration.

    Usage:
        engine = CostingEngine(RunConfiguration(allocation_method=AllocationMethod.STEP_DOWN))
        result = engine.run(costing_input)
        result.raise_for_status()
    """

    def __init__(self, config: Optional[RunConfiguration] = None):
        self.config = config or RunConfiguration()
        self.builder = AllocationGraphBuilder()
        self.rate_calculator = DriverRateCalculator(self.config)
        self.capacity_resolver = CapacityResolver(self.config)
        self.solver = AllocationSolver(self.config, self.capacity_resolver)
        self.validator = ReconciliationValidator(self.config.tolerance)

    def run(
        self,
        costing_input: CostingInput,
        cancel_event: Optional[Event] = None,
    ) -> CostAllocationResult:
        """
        Cost every pool and terminal cost object of the input.

        Args:
            costing_input: Entities and edges of the run
            cancel_event: Aborts the whole run when set; no partial result
                is returned

        Returns:
            CostAllocationResult; check is_valid before consuming it

        Raises:
            ValidationError: the input graph is malformed
            ZeroCapacityError: a pool's capacity basis is zero
            NonConvergentError: the reciprocal solve failed
            CostingRunCancelled: cancel_event was set
        """
        started = time.monotonic()
        config = self.config
        logger.info(
            f"Starting costing run: method={config.allocation_method.value}, "
            f"basis={config.capacity_basis.value}, idle_policy={config.idle_policy.value}"
        )

        self._check_cancel(cancel_event, "graph build")
        graph = self.builder.build(costing_input, config)

        self._check_cancel(cancel_event, "capacity resolution")
        basis = self.rate_calculator.basis_quantities(graph)
        profiles, warnings = self.capacity_resolver.profiles(graph, basis)

        self._check_cancel(cancel_event, "allocation")
        outcome = self.solver.solve(graph, profiles, cancel_event)

        self._check_cancel(cancel_event, "rate calculation")
        rates = self.rate_calculator.rates(outcome.loaded_costs, basis)
        idle_capacities = self.capacity_resolver.idle_capacities(
            profiles, rates, outcome.redistributed
        )

        cost_object_totals = self._cost_object_totals(graph, outcome)

        self._check_cancel(cancel_event, "reconciliation")
        report = self.validator.validate(graph, outcome, cost_object_totals)

        summaries = self._pool_summaries(graph, outcome, profiles, rates)
        idle_by_pool = {i.pool_id: i for i in idle_capacities}
        summaries = {
            pool_id: replace(summary, idle_cost=idle_by_pool[pool_id].cost_amount)
            for pool_id, summary in summaries.items()
        }

        result = CostAllocationResult(
            config=config,
            pools=summaries,
            costed_pools=tuple(
                replace(graph.pools[pool_id], accumulated_cost=outcome.loaded_costs[pool_id])
                for pool_id in graph.pool_ids
            ),
            cost_centers=tuple(
                replace(graph.cost_centers[key], accumulated_cost=cost_object_totals[key])
                for key in sorted(graph.cost_centers)
            ),
            idle_capacities=tuple(idle_capacities),
            edge_allocations=self._edge_allocations(graph, outcome),
            cost_object_totals=cost_object_totals,
            warnings=tuple(warnings),
            reconciliation=report,
            sequence=outcome.sequence,
        )

        elapsed = time.monotonic() - started
        logger.info(
            f"Costing run finished in {elapsed:.3f}s: {graph.size} pools, "
            f"{len(cost_object_totals)} cost objects, reconciliation {report.status}"
        )
        return result

    # =========================================================================
    # Result assembly
    # =========================================================================

    @staticmethod
    def _cost_object_totals(graph: AllocationGraph, outcome: SolverOutcome) -> Dict[str, Decimal]:
        """Allocated cost per terminal cost object, ascending id."""
        totals = {key: ZERO for key in graph.cost_centers}
        with localcontext() as ctx:
            ctx.prec = WORKING_PRECISION
            for edge in graph.terminal_edges:
                totals[edge.target_id] += outcome.edge_amounts.get(edge.edge_id, ZERO)
        return {key: totals[key] for key in sorted(totals)}

    @staticmethod
    def _edge_allocations(graph: AllocationGraph, outcome: SolverOutcome):
        allocations = []
        for edge in graph.pool_edges:
            if edge.edge_id in outcome.edge_amounts:
                allocations.append(EdgeAllocation(
                    edge_id=edge.edge_id,
                    source_id=graph.pool_ids[edge.source],
                    target_id=graph.pool_ids[edge.target],
                    target_is_pool=True,
                    volume=edge.volume,
                    amount=outcome.edge_amounts[edge.edge_id],
                ))
        for edge in graph.terminal_edges:
            if edge.edge_id in outcome.edge_amounts:
                allocations.append(EdgeAllocation(
                    edge_id=edge.edge_id,
                    source_id=graph.pool_ids[edge.source],
                    target_id=edge.target_id,
                    target_is_pool=False,
                    volume=edge.volume,
                    amount=outcome.edge_amounts[edge.edge_id],
                ))
        allocations.sort(key=lambda a: a.edge_id)
        return tuple(allocations)

    def _pool_summaries(
        self,
        graph: AllocationGraph,
        outcome: SolverOutcome,
        profiles: Dict[str, CapacityProfile],
        rates: Dict[str, Decimal],
    ) -> Dict[str, PoolCostSummary]:
        summaries = {}
        with localcontext() as ctx:
            ctx.prec = WORKING_PRECISION
            for i, pool_id in enumerate(graph.pool_ids):
                profile = profiles[pool_id]
                loaded = outcome.loaded_costs[pool_id]
                output = graph.output_measures.get(pool_id)
                summaries[pool_id] = PoolCostSummary(
                    pool_id=pool_id,
                    direct_cost=graph.direct_costs[i],
                    committed_cost=graph.committed_costs[i],
                    flexible_cost=graph.flexible_costs[i],
                    fixed_cost=graph.fixed_costs[i],
                    variable_cost=graph.variable_costs[i],
                    received_cost=outcome.received[pool_id],
                    fully_loaded_cost=loaded,
                    capacity_basis=profile.capacity_type,
                    basis_quantity=profile.basis_quantity,
                    actual_usage=profile.actual_usage,
                    rate=rates[pool_id],
                    consumption_rate=DriverRateCalculator.consumption_rate(
                        outcome.allocated_out[pool_id], outcome.honored_volume[pool_id]
                    ),
                    idle_quantity=profile.idle_quantity,
                    idle_cost=ZERO,
                    idle_cost_charged=outcome.idle_charged[pool_id],
                    allocated_out=outcome.allocated_out[pool_id],
                    unallocated=outcome.unallocated[pool_id],
                    residual_driver_volume=graph.drivers[graph.pools[pool_id].driver_id].residual_volume(),
                    cost_per_output_unit=loaded / output if output else None,
                )
        return summaries

    @staticmethod
    def _check_cancel(cancel_event: Optional[Event], stage: str) -> None:
        if cancel_event is not None and cancel_event.is_set():
            logger.warning(f"Costing run cancelled before {stage}")
            raise CostingRunCancelled(stage)
