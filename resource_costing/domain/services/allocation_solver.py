"""
Allocation Solver - Propagates pool cost to terminal cost objects.

Methods:
- DIRECT: pool -> pool edges are ignored; every pool sends its own direct
  cost straight to its terminal cost objects.
- STEP_DOWN: pools are closed one at a time in sequence; a closed pool
  distributes to terminal objects and to pools not yet closed, and accepts
  nothing afterwards.
- RECIPROCAL: cyclic components are solved simultaneously (x = c + A x);
  components are processed in topological order.

Within a pool, cost is split as

    fully loaded = idle charged + allocable
    allocable    -> honored edges in proportion to edge volume

and becomes an unallocated residual when no honored edge consumes volume.
"""
from collections import defaultdict
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from decimal import Decimal, localcontext
from threading import Event
from typing import Dict, FrozenSet, List, Optional, Sequence, Set, Tuple
import logging
import time

from ...modules.money import WORKING_PRECISION
from ..entities.run_configuration import AllocationMethod, IdlePolicy, RunConfiguration
from ..exceptions import CostingRunCancelled
from .capacity_resolver import CapacityProfile, CapacityResolver
from .graph_builder import AllocationGraph, PoolComponent, PoolEdge, TerminalEdge
from .reciprocal import solve_by_elimination, solve_by_relaxation

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


@dataclass(frozen=True)
class SolverOutcome:
    """
    Pool-level outcome of an allocation.

    Attributes:
        loaded_costs: Fully loaded cost per pool id
        received: Cost received from other pools per pool id
        edge_amounts: Cost carried per honored edge id
        idle_charged: Idle cost left in the sink per pool id
        allocated_out: Cost passed on to consumers per pool id
        unallocated: Allocable cost without consumers per pool id
        honored_volume: Volume of the honored edges per pool id
        redistributed: Pools whose idle cost was absorbed by consumers
        sequence: Closing order under step-down
        iterations: Relaxation iterations per solved cyclic component
    """
    loaded_costs: Dict[str, Decimal]
    received: Dict[str, Decimal]
    edge_amounts: Dict[str, Decimal]
    idle_charged: Dict[str, Decimal]
    allocated_out: Dict[str, Decimal]
    unallocated: Dict[str, Decimal]
    honored_volume: Dict[str, Decimal]
    redistributed: FrozenSet[str]
    sequence: Tuple[str, ...] = ()
    iterations: Tuple[int, ...] = ()


class _Ledger:
    """Mutable working state of one solve. Never shared between runs."""

    def __init__(self, graph: AllocationGraph):
        n = graph.size
        self.loaded: List[Optional[Decimal]] = [None] * n
        self.received: List[Decimal] = [ZERO] * n
        self.idle_charged: List[Decimal] = [ZERO] * n
        self.allocated_out: List[Decimal] = [ZERO] * n
        self.unallocated: List[Decimal] = [ZERO] * n
        self.honored_volume: List[Decimal] = [ZERO] * n
        self.edge_amounts: Dict[str, Decimal] = {}
        self.redistributed: Set[str] = set()


class AllocationSolver:
    """
    Runs one allocation method over a validated graph.

    Stateless between calls: each solve builds its own ledger, so one
    solver may serve concurrent runs.
    """

    def __init__(self, config: RunConfiguration, capacity_resolver: Optional[CapacityResolver] = None):
        self.config = config
        self.capacity_resolver = capacity_resolver or CapacityResolver(config)

    def solve(
        self,
        graph: AllocationGraph,
        profiles: Dict[str, CapacityProfile],
        cancel_event: Optional[Event] = None,
    ) -> SolverOutcome:
        """
        Allocate every pool's cost.

        Args:
            graph: Validated allocation graph
            profiles: Capacity profile per pool id
            cancel_event: Aborts the run when set

        Raises:
            NonConvergentError: reciprocal solve failed
            CostingRunCancelled: cancel_event was set
        """
        method = self.config.allocation_method
        ledger = _Ledger(graph)
        sequence: Tuple[str, ...] = ()
        iterations: Tuple[int, ...] = ()

        with localcontext() as ctx:
            ctx.prec = WORKING_PRECISION
            if method is AllocationMethod.DIRECT:
                self._solve_direct(graph, profiles, ledger, cancel_event)
            elif method is AllocationMethod.STEP_DOWN:
                sequence = self._solve_step_down(graph, profiles, ledger, cancel_event)
            elif method is AllocationMethod.RECIPROCAL:
                iterations = self._solve_reciprocal(graph, profiles, ledger, cancel_event)
            else:
                raise ValueError(f"Unhandled allocation method: {method}")

        ids = graph.pool_ids
        outcome = SolverOutcome(
            loaded_costs={ids[i]: ledger.loaded[i] for i in range(graph.size)},
            received={ids[i]: ledger.received[i] for i in range(graph.size)},
            edge_amounts=dict(ledger.edge_amounts),
            idle_charged={ids[i]: ledger.idle_charged[i] for i in range(graph.size)},
            allocated_out={ids[i]: ledger.allocated_out[i] for i in range(graph.size)},
            unallocated={ids[i]: ledger.unallocated[i] for i in range(graph.size)},
            honored_volume={ids[i]: ledger.honored_volume[i] for i in range(graph.size)},
            redistributed=frozenset(ledger.redistributed),
            sequence=sequence,
            iterations=iterations,
        )
        logger.info(
            f"{method.value} allocation complete: "
            f"{sum(outcome.allocated_out.values(), ZERO):.2f} passed on, "
            f"{sum(outcome.idle_charged.values(), ZERO):.2f} idle, "
            f"{sum(outcome.unallocated.values(), ZERO):.2f} unallocated"
        )
        return outcome

    # =========================================================================
    # Shared distribution step
    # =========================================================================

    def _allocable_fraction(self, graph, profiles, i: int, honored_volume: Decimal) -> Decimal:
        profile = profiles[graph.pool_ids[i]]
        return self.capacity_resolver.allocable_fraction(profile, honored_volume > 0)

    def _distribute(
        self,
        graph: AllocationGraph,
        profiles: Dict[str, CapacityProfile],
        ledger: _Ledger,
        i: int,
        loaded: Decimal,
        pool_edges: Sequence[PoolEdge],
        terminal_edges: Sequence[TerminalEdge],
    ) -> None:
        """Split a pool's loaded cost over idle, its honored edges and residual."""
        pool_id = graph.pool_ids[i]
        edges: List = list(pool_edges) + list(terminal_edges)
        volume = sum((e.volume for e in edges), ZERO)

        fraction = self._allocable_fraction(graph, profiles, i, volume)
        allocable = loaded * fraction
        idle = loaded - allocable

        ledger.loaded[i] = loaded
        ledger.idle_charged[i] = idle
        ledger.honored_volume[i] = volume
        if (self.config.idle_policy is IdlePolicy.REDISTRIBUTE and volume > 0
                and profiles[pool_id].idle_quantity > 0):
            ledger.redistributed.add(pool_id)

        if volume == 0:
            ledger.unallocated[i] = allocable
            for edge in edges:
                ledger.edge_amounts[edge.edge_id] = ZERO
            return

        remaining = allocable
        positive = [e for e in edges if e.volume > 0]
        for edge in edges:
            if edge.volume == 0:
                amount = ZERO
            elif edge is positive[-1]:
                # Last consumer takes the remainder so the split is exact
                amount = remaining
            else:
                amount = allocable * edge.volume / volume
                remaining -= amount
            ledger.edge_amounts[edge.edge_id] = amount
            if isinstance(edge, PoolEdge):
                ledger.received[edge.target] += amount

        ledger.allocated_out[i] = allocable

    # =========================================================================
    # Direct
    # =========================================================================

    def _solve_direct(self, graph, profiles, ledger: _Ledger, cancel_event) -> None:
        if graph.pool_edges:
            logger.info(f"Direct method ignores {len(graph.pool_edges)} pool-to-pool edge(s)")
        for i in range(graph.size):
            _check_cancel(cancel_event, "direct allocation")
            self._distribute(
                graph, profiles, ledger, i,
                graph.direct_costs[i],
                pool_edges=(),
                terminal_edges=graph.terminal_edges_from(i),
            )

    # =========================================================================
    # Step-down
    # =========================================================================

    def _solve_step_down(self, graph, profiles, ledger: _Ledger, cancel_event) -> Tuple[str, ...]:
        order = step_down_order(graph, self.config.step_down_sequence)
        closed: Set[int] = set()

        for i in order:
            _check_cancel(cancel_event, "step-down allocation")
            loaded = graph.direct_costs[i] + ledger.received[i]
            open_edges = [e for e in graph.pool_edges_from(i) if e.target not in closed]
            self._distribute(
                graph, profiles, ledger, i, loaded,
                pool_edges=open_edges,
                terminal_edges=graph.terminal_edges_from(i),
            )
            closed.add(i)

        sequence = tuple(graph.pool_ids[i] for i in order)
        logger.info(f"Step-down sequence: {' -> '.join(sequence)}")
        return sequence

    # =========================================================================
    # Reciprocal
    # =========================================================================

    def _solve_reciprocal(self, graph, profiles, ledger: _Ledger, cancel_event) -> Tuple[int, ...]:
        deadline = None
        if self.config.time_budget_seconds is not None:
            deadline = time.monotonic() + self.config.time_budget_seconds

        by_level: Dict[int, List[PoolComponent]] = defaultdict(list)
        for component in graph.components:
            by_level[component.level].append(component)

        iterations: List[int] = []
        for level in sorted(by_level):
            _check_cancel(cancel_event, "reciprocal allocation")
            components = by_level[level]
            cyclic = [c for c in components if c.cyclic]

            # Inflows from earlier levels are final, so components of one
            # level can be solved independently
            jobs = [
                (component, [graph.direct_costs[i] + ledger.received[i] for i in component.members])
                for component in cyclic
            ]
            if self.config.max_workers > 1 and len(jobs) > 1:
                with ThreadPoolExecutor(max_workers=self.config.max_workers) as executor:
                    solved = list(executor.map(
                        lambda job: self._solve_component(graph, profiles, job[0], job[1],
                                                          deadline, cancel_event),
                        jobs,
                    ))
            else:
                solved = [
                    self._solve_component(graph, profiles, component, constants, deadline, cancel_event)
                    for component, constants in jobs
                ]

            loaded_by_pool: Dict[int, Decimal] = {}
            for (component, _), (values, used) in zip(jobs, solved):
                iterations.append(used)
                for i, value in zip(component.members, values):
                    loaded_by_pool[i] = value

            for component in components:
                for i in component.members:
                    loaded = loaded_by_pool.get(i)
                    if loaded is None:
                        loaded = graph.direct_costs[i] + ledger.received[i]
                    self._distribute(
                        graph, profiles, ledger, i, loaded,
                        pool_edges=graph.pool_edges_from(i),
                        terminal_edges=graph.terminal_edges_from(i),
                    )

        return tuple(iterations)

    def _solve_component(
        self,
        graph: AllocationGraph,
        profiles: Dict[str, CapacityProfile],
        component: PoolComponent,
        constants: List[Decimal],
        deadline: Optional[float],
        cancel_event: Optional[Event],
    ) -> Tuple[List[Decimal], int]:
        """
        Fully loaded costs of one cyclic component.

        Returns:
            (costs in member order, relaxation iterations; 0 for elimination)
        """
        _check_cancel(cancel_event, "reciprocal allocation")
        members = component.members
        position = {i: k for k, i in enumerate(members)}
        pool_ids = [graph.pool_ids[i] for i in members]
        size = len(members)

        with localcontext() as ctx:
            ctx.prec = WORKING_PRECISION
            matrix = [[ZERO] * size for _ in range(size)]
            for s, j in enumerate(members):
                volume = graph.outgoing_volume(j)
                if volume == 0:
                    continue
                fraction = self._allocable_fraction(graph, profiles, j, volume)
                for edge in graph.pool_edges_from(j):
                    r = position.get(edge.target)
                    if r is not None:
                        matrix[r][s] += fraction * edge.volume / volume

            if size <= self.config.direct_solve_max_pools:
                values = solve_by_elimination(matrix, constants, pool_ids)
                used = 0
            else:
                values, used = solve_by_relaxation(
                    matrix,
                    constants,
                    pool_ids,
                    max_iterations=self.config.max_iterations,
                    tolerance=self.config.convergence_tolerance,
                    deadline=deadline,
                    cancel_event=cancel_event,
                )

        logger.debug(f"Solved cyclic component [{', '.join(pool_ids)}]")
        return values, used


def step_down_order(graph: AllocationGraph, preferred: Sequence[str] = ()) -> List[int]:
    """
    Closing order of pools under step-down.

    Pools named in `preferred` come first, in that order. The rest follow
    by repeatedly taking the remaining pool with the fewest inbound edges
    from other remaining pools (zero unless the pools form a cycle), ties
    broken by ascending pool id.
    """
    order: List[int] = []
    remaining = set(range(graph.size))
    for pool_id in preferred:
        i = graph.index_of(pool_id)
        if i in remaining:
            order.append(i)
            remaining.discard(i)

    while remaining:
        inbound = {j: 0 for j in remaining}
        for edge in graph.pool_edges:
            if edge.source in remaining and edge.target in remaining:
                inbound[edge.target] += 1
        chosen = min(remaining, key=lambda j: (inbound[j], j))
        order.append(chosen)
        remaining.discard(chosen)

    return order


def _check_cancel(cancel_event: Optional[Event], stage: str) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise CostingRunCancelled(stage)
