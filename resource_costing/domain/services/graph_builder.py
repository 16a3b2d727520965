"""
Allocation Graph Builder - Validates a costing input and assembles the
directed cost-flow graph.

Validation is exhaustive: every violation is collected and raised together
in one ValidationError before any computation starts.

Pools are addressed by integer index (ascending pool id). Cycles among
pools are legal; the builder groups pools into strongly connected
components, in topological order, and tags the cyclic ones for the
reciprocal method.
"""
from collections import defaultdict
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Sequence, Tuple
import logging

from ..entities.capacity import ORDERED_TIERS, ResourceCapacityType
from ..entities.cost import ResourceCostCenter, ResourceCostElementType
from ..entities.costing_input import CostingInput
from ..entities.pool import ResourceCostDriver, ResourcePool
from ..entities.resource import ResourceAdaptabilityType
from ..entities.run_configuration import RunConfiguration
from ..exceptions import ValidationError, Violation

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


@dataclass(frozen=True)
class PoolEdge:
    """Cost-flow edge between two pools, by pool index."""
    edge_id: str
    source: int
    target: int
    volume: Decimal


@dataclass(frozen=True)
class TerminalEdge:
    """Cost-flow edge from a pool into a terminal cost object."""
    edge_id: str
    source: int
    target_id: str
    volume: Decimal


@dataclass(frozen=True)
class PoolComponent:
    """
    Strongly connected component of the pool graph.

    Attributes:
        members: Pool indices, ascending
        cyclic: True when the members mutually consume each other's output
        level: Longest upstream chain of components; components sharing a
            level have no edges between them
    """
    members: Tuple[int, ...]
    cyclic: bool
    level: int


@dataclass(frozen=True)
class AllocationGraph:
    """
    Validated, index-based allocation graph.

    Attributes:
        pool_ids: Pool ids in index order (ascending id)
        pools: Pool entities by id
        drivers: Driver entities by id
        capacities: Capacity quantity per pool id and capacity type
        cost_centers: Terminal cost objects by id
        pool_edges: Pool -> pool edges
        terminal_edges: Pool -> cost object edges
        direct_costs: Sum of member cost elements, by pool index
        committed_costs: Direct cost of committed resources, by pool index
        flexible_costs: Direct cost of flexible resources, by pool index
        fixed_costs: Direct cost of fixed cost elements, by pool index
        variable_costs: Direct cost of variable cost elements, by pool index
        components: Strongly connected components in topological order
        output_measures: Output measure value per pool id
        total_input_cost: Sum of all cost element amounts
    """

    pool_ids: Tuple[str, ...]
    pools: Dict[str, ResourcePool]
    drivers: Dict[str, ResourceCostDriver]
    capacities: Dict[str, Dict[ResourceCapacityType, Decimal]]
    cost_centers: Dict[str, ResourceCostCenter]
    pool_edges: Tuple[PoolEdge, ...]
    terminal_edges: Tuple[TerminalEdge, ...]
    direct_costs: Tuple[Decimal, ...]
    committed_costs: Tuple[Decimal, ...]
    flexible_costs: Tuple[Decimal, ...]
    fixed_costs: Tuple[Decimal, ...]
    variable_costs: Tuple[Decimal, ...]
    components: Tuple[PoolComponent, ...]
    output_measures: Dict[str, Decimal] = field(default_factory=dict)
    total_input_cost: Decimal = ZERO

    @property
    def size(self) -> int:
        return len(self.pool_ids)

    def index_of(self, pool_id: str) -> int:
        return self.pool_ids.index(pool_id)

    def pool_edges_from(self, source: int) -> List[PoolEdge]:
        return [e for e in self.pool_edges if e.source == source]

    def terminal_edges_from(self, source: int) -> List[TerminalEdge]:
        return [e for e in self.terminal_edges if e.source == source]

    def outgoing_volume(self, source: int) -> Decimal:
        """Total declared volume consumed from a pool, all edges."""
        pool_volume = sum((e.volume for e in self.pool_edges if e.source == source), ZERO)
        terminal_volume = sum((e.volume for e in self.terminal_edges if e.source == source), ZERO)
        return pool_volume + terminal_volume

    def cyclic_components(self) -> List[PoolComponent]:
        """Components the reciprocal method must solve simultaneously."""
        return [c for c in self.components if c.cyclic]


class AllocationGraphBuilder:
    """
    Builds an AllocationGraph from a CostingInput.

    Stateless: one builder may serve any number of concurrent runs.
    """

    def build(
        self,
        costing_input: CostingInput,
        config: Optional[RunConfiguration] = None,
    ) -> AllocationGraph:
        """
        Validate the input and assemble the graph.

        Args:
            costing_input: Entities and edges of the run
            config: When given, capacity bases and the step-down sequence
                are validated against the input too

        Returns:
            Validated AllocationGraph

        Raises:
            ValidationError: listing every violation found
        """
        violations: List[Violation] = []

        resources = self._index(costing_input.resources, "resource", violations)
        pools = self._index(costing_input.pools, "pool", violations)
        drivers = self._index(costing_input.drivers, "driver", violations)
        owners = self._index(costing_input.owners, "owner", violations)
        cost_centers = self._index(costing_input.cost_centers, "cost object", violations)
        self._index(costing_input.capacities, "capacity", violations)
        self._index(costing_input.cost_elements, "cost element", violations)
        self._index(costing_input.edges, "edge", violations)
        self._index(costing_input.output_measures, "output measure", violations)

        for shared_id in sorted(set(pools) & set(cost_centers)):
            violations.append(Violation(
                "ID_COLLISION", shared_id,
                "id is used by both a pool and a cost object",
            ))

        self._check_resources(resources, pools, owners, violations)
        self._check_pools(resources, pools, drivers, violations)
        self._check_cost_elements(costing_input, resources, violations)
        self._check_drivers(drivers, pools, cost_centers, violations)
        capacities = self._check_capacities(costing_input, pools, violations)
        self._check_output_measures(costing_input, resources, pools, violations)
        resolved_edges = self._check_edges(costing_input, pools, drivers, cost_centers, violations)

        if config is not None:
            self._check_configuration(config, pools, capacities, violations)

        if violations:
            logger.warning(f"Input graph rejected with {len(violations)} violation(s)")
            raise ValidationError(violations)

        graph = self._assemble(costing_input, resources, pools, drivers, cost_centers,
                               capacities, resolved_edges)
        logger.info(
            f"Built allocation graph: {graph.size} pools, {len(graph.pool_edges)} pool edges, "
            f"{len(graph.terminal_edges)} terminal edges, "
            f"{len(graph.cyclic_components())} cyclic component(s)"
        )
        return graph

    # =========================================================================
    # Validation
    # =========================================================================

    @staticmethod
    def _index(entities: Iterable, kind: str, violations: List[Violation]) -> Dict:
        """Index entities by id, reporting duplicates."""
        indexed = {}
        for entity in entities:
            if not entity.id:
                violations.append(Violation("MISSING_ID", kind, f"{kind} without an id"))
                continue
            if entity.id in indexed:
                violations.append(Violation("DUPLICATE_ID", entity.id, f"duplicate {kind} id"))
                continue
            indexed[entity.id] = entity
        return indexed

    @staticmethod
    def _check_resources(resources, pools, owners, violations: List[Violation]) -> None:
        for resource in resources.values():
            if resource.pool_id not in pools:
                violations.append(Violation(
                    "UNKNOWN_POOL", resource.id,
                    f"resource references unknown pool '{resource.pool_id}'",
                ))
            if resource.owner_id is not None and resource.owner_id not in owners:
                violations.append(Violation(
                    "UNKNOWN_OWNER", resource.id,
                    f"resource references unknown owner '{resource.owner_id}'",
                ))

    @staticmethod
    def _check_pools(resources, pools, drivers, violations: List[Violation]) -> None:
        claimed: Dict[str, List[str]] = defaultdict(list)

        for pool in pools.values():
            if pool.driver_id not in drivers:
                violations.append(Violation(
                    "UNKNOWN_DRIVER", pool.id,
                    f"pool references unknown driver '{pool.driver_id}'",
                ))

            for resource_id in sorted(pool.resource_ids):
                claimed[resource_id].append(pool.id)
                resource = resources.get(resource_id)
                if resource is None:
                    violations.append(Violation(
                        "UNKNOWN_RESOURCE", pool.id,
                        f"pool lists unknown resource '{resource_id}'",
                    ))
                elif resource.pool_id != pool.id:
                    violations.append(Violation(
                        "MEMBERSHIP_MISMATCH", pool.id,
                        f"pool lists resource '{resource_id}' which belongs to "
                        f"pool '{resource.pool_id}'",
                    ))

            members = [r for r in resources.values() if r.pool_id == pool.id]
            if not members and not pool.resource_ids:
                violations.append(Violation(
                    "EMPTY_POOL", pool.id, "pool has no member resources",
                ))

        for resource_id, pool_ids in sorted(claimed.items()):
            if len(pool_ids) > 1:
                violations.append(Violation(
                    "MULTIPLE_POOLS", resource_id,
                    f"resource is listed by several pools: {', '.join(pool_ids)}",
                ))

    @staticmethod
    def _check_cost_elements(costing_input, resources, violations: List[Violation]) -> None:
        for element in costing_input.cost_elements:
            if element.resource_id not in resources:
                violations.append(Violation(
                    "UNKNOWN_RESOURCE", element.id,
                    f"cost element references unknown resource '{element.resource_id}'",
                ))
            if element.amount < 0:
                violations.append(Violation(
                    "NEGATIVE_AMOUNT", element.id,
                    f"cost element amount {element.amount} is negative",
                ))

    @staticmethod
    def _check_drivers(drivers, pools, cost_centers, violations: List[Violation]) -> None:
        for driver in drivers.values():
            if driver.total_volume < 0:
                violations.append(Violation(
                    "NEGATIVE_VOLUME", driver.id,
                    f"driver total volume {driver.total_volume} is negative",
                ))
            for consumer_id, volume in sorted(driver.consumer_volumes.items()):
                if volume < 0:
                    violations.append(Violation(
                        "NEGATIVE_VOLUME", driver.id,
                        f"volume {volume} for consumer '{consumer_id}' is negative",
                    ))
                if consumer_id not in pools and consumer_id not in cost_centers:
                    violations.append(Violation(
                        "UNKNOWN_CONSUMER", driver.id,
                        f"driver lists unknown consumer '{consumer_id}'",
                    ))
            if driver.consumed_volume() > driver.total_volume:
                violations.append(Violation(
                    "DRIVER_OVERALLOCATED", driver.id,
                    f"consumer volumes sum to {driver.consumed_volume()}, "
                    f"more than total volume {driver.total_volume}",
                ))

    @staticmethod
    def _check_capacities(
        costing_input, pools, violations: List[Violation]
    ) -> Dict[str, Dict[ResourceCapacityType, Decimal]]:
        capacities: Dict[str, Dict[ResourceCapacityType, Decimal]] = defaultdict(dict)

        for capacity in costing_input.capacities:
            if capacity.pool_id not in pools:
                violations.append(Violation(
                    "UNKNOWN_POOL", capacity.id,
                    f"capacity references unknown pool '{capacity.pool_id}'",
                ))
                continue
            if capacity.quantity < 0:
                violations.append(Violation(
                    "NEGATIVE_CAPACITY", capacity.id,
                    f"capacity quantity {capacity.quantity} is negative",
                ))
            tiers = capacities[capacity.pool_id]
            if capacity.capacity_type in tiers:
                violations.append(Violation(
                    "DUPLICATE_CAPACITY", capacity.id,
                    f"pool '{capacity.pool_id}' already has a "
                    f"{capacity.capacity_type.value} capacity",
                ))
                continue
            tiers[capacity.capacity_type] = capacity.quantity

        for pool_id, tiers in sorted(capacities.items()):
            # Only enforced when every ordered tier is present
            if all(t in tiers for t in ORDERED_TIERS):
                quantities = [tiers[t] for t in ORDERED_TIERS]
                if not quantities[0] <= quantities[1] <= quantities[2]:
                    violations.append(Violation(
                        "CAPACITY_TIER_ORDER", pool_id,
                        "capacities must satisfy actual <= practical <= theoretical "
                        f"(got {quantities[0]}, {quantities[1]}, {quantities[2]})",
                    ))

        return dict(capacities)

    @staticmethod
    def _check_output_measures(costing_input, resources, pools, violations: List[Violation]) -> None:
        for measure in costing_input.output_measures:
            if measure.subject_id not in resources and measure.subject_id not in pools:
                violations.append(Violation(
                    "UNKNOWN_SUBJECT", measure.id,
                    f"output measure references unknown resource or pool '{measure.subject_id}'",
                ))
            if measure.value < 0:
                violations.append(Violation(
                    "NEGATIVE_OUTPUT", measure.id,
                    f"output measure value {measure.value} is negative",
                ))

    @staticmethod
    def _check_edges(
        costing_input, pools, drivers, cost_centers, violations: List[Violation]
    ) -> List[Tuple[str, str, str, Decimal]]:
        """Validate edges and resolve their volumes."""
        resolved: List[Tuple[str, str, str, Decimal]] = []
        outgoing: Dict[str, Decimal] = defaultdict(lambda: ZERO)

        for edge in costing_input.edges:
            ok = True
            if edge.source_id in cost_centers:
                violations.append(Violation(
                    "TERMINAL_SOURCE", edge.id,
                    f"cost object '{edge.source_id}' is a sink and cannot be an edge source",
                ))
                ok = False
            elif edge.source_id not in pools:
                violations.append(Violation(
                    "UNKNOWN_SOURCE", edge.id,
                    f"edge source '{edge.source_id}' is not a known pool",
                ))
                ok = False

            if edge.target_id not in pools and edge.target_id not in cost_centers:
                violations.append(Violation(
                    "UNKNOWN_TARGET", edge.id,
                    f"edge target '{edge.target_id}' is neither a pool nor a cost object",
                ))
                ok = False

            if edge.source_id == edge.target_id:
                violations.append(Violation(
                    "SELF_LOOP", edge.id,
                    f"pool '{edge.source_id}' cannot consume its own output",
                ))
                ok = False

            volume = edge.volume
            if volume is None and edge.source_id in pools:
                driver = drivers.get(pools[edge.source_id].driver_id)
                if driver is not None:
                    volume = driver.consumer_volumes.get(edge.target_id)
            if volume is None:
                violations.append(Violation(
                    "MISSING_VOLUME", edge.id,
                    "edge has no volume and the source driver lists none for its target",
                ))
                ok = False
            elif volume < 0:
                violations.append(Violation(
                    "NEGATIVE_VOLUME", edge.id, f"edge volume {volume} is negative",
                ))
                ok = False

            if ok:
                outgoing[edge.source_id] += volume
                resolved.append((edge.id, edge.source_id, edge.target_id, volume))

        for pool_id, volume in sorted(outgoing.items()):
            driver = drivers.get(pools[pool_id].driver_id)
            if driver is not None and volume > driver.total_volume:
                violations.append(Violation(
                    "OVERALLOCATED_SHARES", pool_id,
                    f"outgoing edge volumes sum to {volume}, more than driver "
                    f"'{driver.id}' total volume {driver.total_volume}",
                ))

        return resolved

    @staticmethod
    def _check_configuration(config: RunConfiguration, pools, capacities, violations) -> None:
        for pool_id in sorted(config.capacity_basis_overrides):
            if pool_id not in pools:
                violations.append(Violation(
                    "UNKNOWN_POOL", pool_id,
                    "capacity basis override names an unknown pool",
                ))

        for pool_id in sorted(pools):
            basis = config.capacity_basis_for(pool_id)
            if basis not in capacities.get(pool_id, {}):
                violations.append(Violation(
                    "MISSING_CAPACITY", pool_id,
                    f"pool has no {basis.value} capacity for the configured basis",
                ))

        seen = set()
        for pool_id in config.step_down_sequence:
            if pool_id not in pools:
                violations.append(Violation(
                    "UNKNOWN_POOL", pool_id, "step-down sequence names an unknown pool",
                ))
            elif pool_id in seen:
                violations.append(Violation(
                    "DUPLICATE_SEQUENCE", pool_id, "pool appears twice in the step-down sequence",
                ))
            seen.add(pool_id)

    # =========================================================================
    # Assembly
    # =========================================================================

    def _assemble(
        self,
        costing_input: CostingInput,
        resources,
        pools,
        drivers,
        cost_centers,
        capacities,
        resolved_edges,
    ) -> AllocationGraph:
        pool_ids = tuple(sorted(pools))
        position = {pool_id: i for i, pool_id in enumerate(pool_ids)}

        direct = [ZERO] * len(pool_ids)
        committed = [ZERO] * len(pool_ids)
        flexible = [ZERO] * len(pool_ids)
        fixed = [ZERO] * len(pool_ids)
        variable = [ZERO] * len(pool_ids)
        for element in costing_input.cost_elements:
            resource = resources[element.resource_id]
            i = position[resource.pool_id]
            direct[i] += element.amount
            if resource.adaptability is ResourceAdaptabilityType.COMMITTED:
                committed[i] += element.amount
            elif resource.adaptability is ResourceAdaptabilityType.FLEXIBLE:
                flexible[i] += element.amount
            else:
                raise ValueError(f"Unhandled adaptability type: {resource.adaptability}")
            if element.element_type is ResourceCostElementType.FIXED:
                fixed[i] += element.amount
            elif element.element_type is ResourceCostElementType.VARIABLE:
                variable[i] += element.amount
            else:
                raise ValueError(f"Unhandled cost element type: {element.element_type}")

        pool_edges: List[PoolEdge] = []
        terminal_edges: List[TerminalEdge] = []
        for edge_id, source_id, target_id, volume in resolved_edges:
            if target_id in position:
                pool_edges.append(PoolEdge(edge_id, position[source_id], position[target_id], volume))
            else:
                terminal_edges.append(TerminalEdge(edge_id, position[source_id], target_id, volume))

        adjacency: List[List[int]] = [[] for _ in pool_ids]
        for edge in pool_edges:
            if edge.target not in adjacency[edge.source]:
                adjacency[edge.source].append(edge.target)
        for neighbours in adjacency:
            neighbours.sort()

        components = _topological_components(adjacency)

        output_measures: Dict[str, Decimal] = {}
        for measure in costing_input.output_measures:
            if measure.subject_id in pools:
                output_measures[measure.subject_id] = (
                    output_measures.get(measure.subject_id, ZERO) + measure.value
                )

        return AllocationGraph(
            pool_ids=pool_ids,
            pools=dict(pools),
            drivers=dict(drivers),
            capacities={k: dict(v) for k, v in capacities.items()},
            cost_centers=dict(cost_centers),
            pool_edges=tuple(pool_edges),
            terminal_edges=tuple(terminal_edges),
            direct_costs=tuple(direct),
            committed_costs=tuple(committed),
            flexible_costs=tuple(flexible),
            fixed_costs=tuple(fixed),
            variable_costs=tuple(variable),
            components=components,
            output_measures=output_measures,
            total_input_cost=costing_input.total_input_cost(),
        )


def strongly_connected_components(adjacency: Sequence[Sequence[int]]) -> List[Tuple[int, ...]]:
    """
    Tarjan's algorithm, iterative so that deep graphs cannot exhaust the stack.

    Returns:
        Components (member indices ascending) in topological order:
        every edge goes from an earlier component to a later one or stays
        inside a component.
    """
    n = len(adjacency)
    index_of = [-1] * n
    low = [0] * n
    on_stack = [False] * n
    stack: List[int] = []
    components: List[Tuple[int, ...]] = []
    counter = 0

    for root in range(n):
        if index_of[root] != -1:
            continue
        work = [(root, 0)]
        while work:
            node, child = work[-1]
            if index_of[node] == -1:
                index_of[node] = low[node] = counter
                counter += 1
                stack.append(node)
                on_stack[node] = True

            neighbours = adjacency[node]
            if child < len(neighbours):
                work[-1] = (node, child + 1)
                nxt = neighbours[child]
                if index_of[nxt] == -1:
                    work.append((nxt, 0))
                elif on_stack[nxt]:
                    low[node] = min(low[node], index_of[nxt])
                continue

            work.pop()
            if work:
                parent = work[-1][0]
                low[parent] = min(low[parent], low[node])
            if low[node] == index_of[node]:
                members = []
                while True:
                    member = stack.pop()
                    on_stack[member] = False
                    members.append(member)
                    if member == node:
                        break
                components.append(tuple(sorted(members)))

    # Tarjan emits sinks first
    components.reverse()
    return components


def _topological_components(adjacency: Sequence[Sequence[int]]) -> Tuple[PoolComponent, ...]:
    """Tag components as cyclic and assign topological levels."""
    raw = strongly_connected_components(adjacency)
    component_of = {}
    for c, members in enumerate(raw):
        for member in members:
            component_of[member] = c

    levels = [0] * len(raw)
    for c, members in enumerate(raw):
        for member in members:
            for target in adjacency[member]:
                d = component_of[target]
                if d != c:
                    levels[d] = max(levels[d], levels[c] + 1)

    return tuple(
        PoolComponent(
            members=members,
            cyclic=len(members) > 1 or members[0] in adjacency[members[0]],
            level=levels[c],
        )
        for c, members in enumerate(raw)
    )
