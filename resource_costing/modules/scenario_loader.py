"""
Scenario Loader - Reads costing scenarios from YAML documents.

A scenario document lists the entities of one costing run:

    resources, pools, drivers, capacities, cost_elements,
    cost_centers, edges, output_measures, owners

plus an optional `run` block overriding the configured run defaults.
Shape errors are reported through the same ValidationError the graph
builder raises, one Violation per offending field.
"""
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union
import logging

import pydantic
import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..config import CostingConfig, get_config
from ..domain.entities import (
    CostFlowEdge,
    CostingInput,
    CostObjectType,
    Resource,
    ResourceAdaptabilityType,
    ResourceCapacity,
    ResourceCapacityType,
    ResourceCostCenter,
    ResourceCostDriver,
    ResourceCostElement,
    ResourceCostElementType,
    ResourceOutputMeasure,
    ResourceOwner,
    ResourcePool,
    ResourceType,
    RunConfiguration,
)
from ..domain.entities.run_configuration import parse_enum
from ..domain.exceptions import ConfigurationError, ValidationError, Violation
from .money import parse_amount, to_decimal

logger = logging.getLogger(__name__)


def _quantity(value: Any) -> Decimal:
    try:
        return to_decimal(value)
    except (TypeError, ValueError) as e:
        raise ValueError(str(e))


def _enum(enum_cls, value: Any, setting: str):
    try:
        return parse_enum(enum_cls, value, setting)
    except ConfigurationError as e:
        raise ValueError(e.message)


# =============================================================================
# Pydantic Models
# =============================================================================

class _Document(BaseModel):
    model_config = ConfigDict(extra="forbid")


class OwnerModel(_Document):
    """Accountable owner of resources."""
    id: str = Field(..., min_length=1)
    name: str = ""


class ResourceModel(_Document):
    """Cost-bearing resource."""
    id: str = Field(..., min_length=1)
    name: str = ""
    pool_id: str = Field(..., min_length=1, description="Pool the resource belongs to")
    resource_type: ResourceType = ResourceType.DIRECT
    adaptability: ResourceAdaptabilityType = ResourceAdaptabilityType.FLEXIBLE
    owner_id: Optional[str] = None

    @field_validator("resource_type", mode="before")
    @classmethod
    def _resource_type(cls, v):
        return _enum(ResourceType, v, "resource type")

    @field_validator("adaptability", mode="before")
    @classmethod
    def _adaptability(cls, v):
        return _enum(ResourceAdaptabilityType, v, "adaptability type")


class PoolModel(_Document):
    """Resource pool; resource_ids may be omitted when resources name the pool."""
    id: str = Field(..., min_length=1)
    name: str = ""
    driver_id: str = Field(..., min_length=1)
    resource_ids: List[str] = Field(default_factory=list)


class DriverModel(_Document):
    """Cost driver with its consumer volumes."""
    id: str = Field(..., min_length=1)
    name: str = ""
    unit: str = ""
    total_volume: Decimal
    consumer_volumes: Dict[str, Decimal] = Field(default_factory=dict)

    @field_validator("total_volume", mode="before")
    @classmethod
    def _total_volume(cls, v):
        return _quantity(v)

    @field_validator("consumer_volumes", mode="before")
    @classmethod
    def _consumer_volumes(cls, v):
        if v is None:
            return {}
        if not isinstance(v, dict):
            raise ValueError("consumer_volumes must be a mapping of consumer id to volume")
        return {str(k): _quantity(q) for k, q in v.items()}


class CapacityModel(_Document):
    """Capacity of one tier of a pool; id defaults to 'capacity:<pool>:<tier>'."""
    id: Optional[str] = None
    pool_id: str = Field(..., min_length=1)
    capacity_type: ResourceCapacityType = ResourceCapacityType.PRACTICAL
    quantity: Decimal

    @field_validator("capacity_type", mode="before")
    @classmethod
    def _capacity_type(cls, v):
        return _enum(ResourceCapacityType, v, "capacity type")

    @field_validator("quantity", mode="before")
    @classmethod
    def _capacity_quantity(cls, v):
        return _quantity(v)


class CostElementModel(_Document):
    """Cost element; amounts accept currency text such as '$1,200.00'."""
    id: str = Field(..., min_length=1)
    resource_id: str = Field(..., min_length=1)
    element_type: ResourceCostElementType = ResourceCostElementType.FIXED
    amount: Decimal

    @field_validator("element_type", mode="before")
    @classmethod
    def _element_type(cls, v):
        return _enum(ResourceCostElementType, v, "cost element type")

    @field_validator("amount", mode="before")
    @classmethod
    def _amount(cls, v):
        try:
            return parse_amount(v)
        except (TypeError, ValueError) as e:
            raise ValueError(str(e))


class CostCenterModel(_Document):
    """Terminal cost object."""
    id: str = Field(..., min_length=1)
    name: str = ""
    object_type: CostObjectType = CostObjectType.COST_CENTER

    @field_validator("object_type", mode="before")
    @classmethod
    def _object_type(cls, v):
        return _enum(CostObjectType, v, "cost object type")


class EdgeModel(_Document):
    """Cost-flow edge; id defaults to '<source>-><target>'."""
    id: Optional[str] = None
    source_id: str = Field(..., min_length=1)
    target_id: str = Field(..., min_length=1)
    volume: Optional[Decimal] = None

    @field_validator("volume", mode="before")
    @classmethod
    def _volume(cls, v):
        return None if v is None else _quantity(v)


class OutputMeasureModel(_Document):
    """Output quantity of a resource or pool."""
    id: str = Field(..., min_length=1)
    subject_id: str = Field(..., min_length=1)
    value: Decimal
    unit: str = ""

    @field_validator("value", mode="before")
    @classmethod
    def _value(cls, v):
        return _quantity(v)


class ScenarioModel(_Document):
    """A complete scenario document."""
    name: str = ""
    description: str = ""
    owners: List[OwnerModel] = Field(default_factory=list)
    resources: List[ResourceModel] = Field(default_factory=list)
    pools: List[PoolModel] = Field(default_factory=list)
    drivers: List[DriverModel] = Field(default_factory=list)
    capacities: List[CapacityModel] = Field(default_factory=list)
    cost_elements: List[CostElementModel] = Field(default_factory=list)
    cost_centers: List[CostCenterModel] = Field(default_factory=list)
    edges: List[EdgeModel] = Field(default_factory=list)
    output_measures: List[OutputMeasureModel] = Field(default_factory=list)
    run: Dict[str, Any] = Field(default_factory=dict)

    @field_validator(
        "owners", "resources", "pools", "drivers", "capacities", "cost_elements",
        "cost_centers", "edges", "output_measures", "run",
        mode="before",
    )
    @classmethod
    def _empty_section(cls, v, info):
        # An empty YAML section parses as None
        if v is None:
            return {} if info.field_name == "run" else []
        return v

    def to_costing_input(self) -> CostingInput:
        """Convert the document to immutable domain entities."""
        return CostingInput(
            owners=[ResourceOwner(id=o.id, name=o.name) for o in self.owners],
            resources=[
                Resource(
                    id=r.id,
                    name=r.name,
                    pool_id=r.pool_id,
                    resource_type=r.resource_type,
                    adaptability=r.adaptability,
                    owner_id=r.owner_id,
                )
                for r in self.resources
            ],
            pools=[
                ResourcePool(
                    id=p.id,
                    name=p.name,
                    driver_id=p.driver_id,
                    resource_ids=frozenset(p.resource_ids),
                )
                for p in self.pools
            ],
            drivers=[
                ResourceCostDriver(
                    id=d.id,
                    name=d.name,
                    unit=d.unit,
                    total_volume=d.total_volume,
                    consumer_volumes=dict(d.consumer_volumes),
                )
                for d in self.drivers
            ],
            capacities=[
                ResourceCapacity(
                    id=c.id or f"capacity:{c.pool_id}:{c.capacity_type.value}",
                    pool_id=c.pool_id,
                    capacity_type=c.capacity_type,
                    quantity=c.quantity,
                )
                for c in self.capacities
            ],
            cost_elements=[
                ResourceCostElement(
                    id=e.id,
                    resource_id=e.resource_id,
                    element_type=e.element_type,
                    amount=e.amount,
                )
                for e in self.cost_elements
            ],
            cost_centers=[
                ResourceCostCenter(id=c.id, name=c.name, object_type=c.object_type)
                for c in self.cost_centers
            ],
            edges=[
                CostFlowEdge(
                    id=e.id or f"{e.source_id}->{e.target_id}",
                    source_id=e.source_id,
                    target_id=e.target_id,
                    volume=e.volume,
                )
                for e in self.edges
            ],
            output_measures=[
                ResourceOutputMeasure(id=m.id, subject_id=m.subject_id, value=m.value, unit=m.unit)
                for m in self.output_measures
            ],
        )


# =============================================================================
# Loading
# =============================================================================

def _violations_from(error: pydantic.ValidationError) -> List[Violation]:
    """One Violation per pydantic error, located by its document path."""
    violations = []
    for err in error.errors():
        location = ".".join(str(part) for part in err.get("loc", ())) or "scenario"
        violations.append(Violation("INVALID_FIELD", location, err.get("msg", "invalid value")))
    return violations


def parse_scenario(
    data: Any,
    config: Optional[CostingConfig] = None,
    **overrides: Any,
) -> Tuple[CostingInput, RunConfiguration]:
    """
    Parse a scenario mapping.

    Args:
        data: Parsed YAML document
        config: Source of run defaults (get_config() when omitted)
        **overrides: Run settings taking precedence over the document's
            `run` block; None values are ignored

    Returns:
        (CostingInput, RunConfiguration)

    Raises:
        ValidationError: the document does not have the scenario shape
        ConfigurationError: the run settings are invalid
    """
    if not isinstance(data, dict):
        raise ValidationError([
            Violation("INVALID_DOCUMENT", "scenario", "scenario must be a YAML mapping"),
        ])

    try:
        scenario = ScenarioModel.model_validate(data)
    except pydantic.ValidationError as e:
        violations = _violations_from(e)
        logger.warning(f"Scenario rejected with {len(violations)} invalid field(s)")
        raise ValidationError(violations)

    config = config or get_config()
    settings = dict(scenario.run)
    settings.update({k: v for k, v in overrides.items() if v is not None})
    run_config = config.run_configuration(**settings)

    costing_input = scenario.to_costing_input()
    logger.info(
        f"Loaded scenario '{scenario.name or 'unnamed'}': {len(costing_input.pools)} pools, "
        f"{len(costing_input.resources)} resources, {len(costing_input.edges)} edges"
    )
    return costing_input, run_config


def load_scenario(
    path: Union[str, Path],
    config: Optional[CostingConfig] = None,
    **overrides: Any,
) -> Tuple[CostingInput, RunConfiguration]:
    """
    Load a scenario from a YAML file.

    Raises:
        ConfigurationError: the file is missing or is not valid YAML
        ValidationError: the document does not have the scenario shape
    """
    path = Path(path)
    if not path.exists():
        raise ConfigurationError(f"Scenario file not found: {path}")

    try:
        with open(path, 'r') as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in scenario file: {e}")

    return parse_scenario(data, config, **overrides)
