"""
Reconciliation Validator - Conservation check of a completed allocation.

Invariants:
- Σ terminal allocations + Σ idle cost + Σ unallocated residual
  = Σ input cost element amounts
- Per pool: fully loaded = direct + received
- Per pool: fully loaded = idle + Σ honored edge amounts + residual
- Every terminal cost object total >= 0

A failed check never raises here: the report is attached to the result,
which is then flagged invalid for downstream consumption.
"""
from collections import defaultdict
from decimal import Decimal, localcontext
from typing import Dict, List, Mapping
import logging

from ...modules.money import WORKING_PRECISION
from ..entities.result import PoolDiscrepancy, ReconciliationReport
from .allocation_solver import SolverOutcome
from .graph_builder import AllocationGraph

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


class ReconciliationValidator:
    """
    Verifies that allocated cost balances with input cost.

    Args:
        tolerance: Absolute tolerance absorbing arithmetic drift
        max_reported: Number of pools listed in a failing report
    """

    def __init__(self, tolerance: Decimal, max_reported: int = 5):
        self.tolerance = tolerance
        self.max_reported = max_reported

    def validate(
        self,
        graph: AllocationGraph,
        outcome: SolverOutcome,
        cost_object_totals: Mapping[str, Decimal],
    ) -> ReconciliationReport:
        """
        Check conservation of cost for one run.

        Args:
            graph: The allocation graph the run used
            outcome: Pool-level solver outcome
            cost_object_totals: Allocated cost per terminal cost object

        Returns:
            ReconciliationReport, passed or failed
        """
        input_total = graph.total_input_cost
        with localcontext() as ctx:
            ctx.prec = WORKING_PRECISION
            allocated_total = sum(cost_object_totals.values(), ZERO)
            idle_total = sum(outcome.idle_charged.values(), ZERO)
            unallocated_total = sum(outcome.unallocated.values(), ZERO)
            discrepancy = input_total - (allocated_total + idle_total + unallocated_total)
            pool_discrepancies = self._pool_discrepancies(graph, outcome)

        significant = [d for d in pool_discrepancies if d.magnitude > self.tolerance]
        negative = tuple(sorted(k for k, v in cost_object_totals.items() if v < 0))

        passed = abs(discrepancy) <= self.tolerance and not significant and not negative

        if passed:
            reported = significant
        else:
            # Largest contributors first, even if each is individually small
            reported = [d for d in pool_discrepancies if d.magnitude > 0]
        reported = reported[:self.max_reported]

        report = ReconciliationReport(
            passed=passed,
            tolerance=self.tolerance,
            input_total=input_total,
            allocated_total=allocated_total,
            idle_total=idle_total,
            unallocated_total=unallocated_total,
            discrepancy=discrepancy,
            pool_discrepancies=tuple(reported),
            negative_cost_objects=negative,
        )

        if passed:
            logger.info(
                f"Reconciliation passed: input {input_total:.2f} = allocated {allocated_total:.2f} "
                f"+ idle {idle_total:.2f} + unallocated {unallocated_total:.2f}"
            )
        else:
            logger.warning(
                f"Reconciliation failed: discrepancy {discrepancy} exceeds tolerance "
                f"{self.tolerance}; largest contributors: "
                f"{', '.join(d.pool_id for d in reported) or 'none'}"
            )
        return report

    def _pool_discrepancies(
        self,
        graph: AllocationGraph,
        outcome: SolverOutcome,
    ) -> List[PoolDiscrepancy]:
        """Per-pool imbalances, largest first."""
        outgoing: Dict[str, List[str]] = defaultdict(list)
        for edge in graph.pool_edges:
            outgoing[graph.pool_ids[edge.source]].append(edge.edge_id)
        for edge in graph.terminal_edges:
            outgoing[graph.pool_ids[edge.source]].append(edge.edge_id)

        discrepancies = []
        for i, pool_id in enumerate(graph.pool_ids):
            loaded = outcome.loaded_costs[pool_id]
            edge_ids = outgoing.get(pool_id, [])
            carried = sum((outcome.edge_amounts.get(e, ZERO) for e in edge_ids), ZERO)

            inflow = loaded - (graph.direct_costs[i] + outcome.received[pool_id])
            outflow = loaded - (
                outcome.idle_charged[pool_id] + carried + outcome.unallocated[pool_id]
            )
            discrepancies.append(PoolDiscrepancy(
                pool_id=pool_id,
                inflow_imbalance=inflow,
                outflow_imbalance=outflow,
                edge_ids=tuple(e for e in edge_ids if e in outcome.edge_amounts),
            ))

        discrepancies.sort(key=lambda d: (-d.magnitude, d.pool_id))
        return discrepancies
