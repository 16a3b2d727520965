"""
Shared fixtures for the costing tests.

make_input builds a CostingInput from a compact description:

    make_input(
        pools={"A": 1000, "B": 500},                   # direct cost per pool
        edges=[("A", "B", 20), ("A", "P1", 80)],       # source, target, volume
        capacity={"A": 100},                           # practical capacity
    )

Every pool gets one committed resource carrying one fixed cost element
and its own driver. Targets that are not pools become cost objects.
Practical capacity defaults to the pool's outgoing volume (no idle).
"""
from collections import defaultdict
from decimal import Decimal
import sys
from pathlib import Path

import pytest

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from resource_costing.domain.entities import (
    CostFlowEdge,
    CostingInput,
    Resource,
    ResourceAdaptabilityType,
    ResourceCapacity,
    ResourceCapacityType,
    ResourceCostCenter,
    ResourceCostDriver,
    ResourceCostElement,
    ResourcePool,
    ResourceType,
)

SCENARIO_DIR = Path(__file__).parent.parent / "scenarios"


def _make_input(pools, edges, capacity=None, actual=None, theoretical=None, cost_centers=None):
    capacity = capacity or {}
    actual = actual or {}
    theoretical = theoretical or {}

    outgoing = defaultdict(lambda: Decimal("0"))
    consumers = defaultdict(dict)
    for source, target, volume in edges:
        outgoing[source] += Decimal(str(volume))
        consumers[source][target] = Decimal(str(volume))

    centers = cost_centers
    if centers is None:
        centers = sorted({target for _, target, _ in edges if target not in pools})

    resources, pool_entities, drivers, capacities, elements = [], [], [], [], []
    for pool_id, cost in pools.items():
        practical = Decimal(str(capacity.get(pool_id, outgoing[pool_id] or 1)))
        resources.append(Resource(
            id=f"{pool_id}-res",
            pool_id=pool_id,
            resource_type=ResourceType.INDIRECT,
            adaptability=ResourceAdaptabilityType.COMMITTED,
        ))
        pool_entities.append(ResourcePool(
            id=pool_id,
            name=f"Pool {pool_id}",
            driver_id=f"{pool_id}-driver",
            resource_ids=frozenset({f"{pool_id}-res"}),
        ))
        drivers.append(ResourceCostDriver(
            id=f"{pool_id}-driver",
            unit="hours",
            total_volume=max(practical, outgoing[pool_id]),
            consumer_volumes=consumers[pool_id],
        ))
        capacities.append(ResourceCapacity(
            id=f"{pool_id}-practical",
            pool_id=pool_id,
            capacity_type=ResourceCapacityType.PRACTICAL,
            quantity=practical,
        ))
        if pool_id in actual:
            capacities.append(ResourceCapacity(
                id=f"{pool_id}-actual",
                pool_id=pool_id,
                capacity_type=ResourceCapacityType.ACTUAL,
                quantity=actual[pool_id],
            ))
        if pool_id in theoretical:
            capacities.append(ResourceCapacity(
                id=f"{pool_id}-theoretical",
                pool_id=pool_id,
                capacity_type=ResourceCapacityType.THEORETICAL,
                quantity=theoretical[pool_id],
            ))
        elements.append(ResourceCostElement(
            id=f"{pool_id}-cost",
            resource_id=f"{pool_id}-res",
            amount=Decimal(str(cost)),
        ))

    return CostingInput(
        resources=resources,
        pools=pool_entities,
        drivers=drivers,
        capacities=capacities,
        cost_elements=elements,
        cost_centers=[ResourceCostCenter(id=c, name=c) for c in centers],
        edges=[
            CostFlowEdge(id=f"{s}->{t}", source_id=s, target_id=t, volume=v)
            for s, t, v in edges
        ],
    )


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def make_input():
    """Factory for compact costing inputs."""
    return _make_input


@pytest.fixture
def two_pool_input():
    """
    A and B serve each other and two products.

    A = 1000 + 0.1 B, B = 500 + 0.2 A  ->  A = 7500/7, B = 5000/7
    """
    return _make_input(
        pools={"A": 1000, "B": 500},
        edges=[
            ("A", "B", 20), ("A", "P1", 50), ("A", "P2", 30),
            ("B", "A", 20), ("B", "P1", 80), ("B", "P2", 100),
        ],
    )


@pytest.fixture
def idle_input():
    """One pool with practical capacity 400 hours, 300 actually used."""
    return _make_input(
        pools={"M": 8000},
        edges=[("M", "W", 300)],
        capacity={"M": 400},
    )


@pytest.fixture
def chain_input():
    """Acyclic chain: S1 -> S2 -> P, S1 -> P."""
    return _make_input(
        pools={"S1": 600, "S2": 400},
        edges=[("S1", "S2", 50), ("S1", "P", 50), ("S2", "P", 100)],
    )


@pytest.fixture
def scenario_dir():
    return SCENARIO_DIR
