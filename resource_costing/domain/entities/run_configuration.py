"""
Run Configuration - Explicit, immutable settings for one costing run.

Passed into every run instead of being read from ambient state, so that
concurrent runs with different settings cannot interfere.
"""
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple

from ...modules.money import rounding_mode, to_decimal
from ..exceptions import ConfigurationError
from .capacity import ResourceCapacityType


class AllocationMethod(Enum):
    """How pool cost is propagated to cost objects."""
    DIRECT = "direct"
    STEP_DOWN = "step_down"
    RECIPROCAL = "reciprocal"


class IdlePolicy(Enum):
    """What happens to the cost of idle capacity."""
    SINK = "sink"
    REDISTRIBUTE = "redistribute"


def parse_enum(enum_cls, value, setting: str):
    """Parse an enum member from its value or name, case-insensitively."""
    if isinstance(value, enum_cls):
        return value
    text = str(value).strip().lower().replace("-", "_")
    for member in enum_cls:
        if member.value == text or member.name.lower() == text:
            return member
    # StepDown / stepdown spellings
    compact = text.replace("_", "")
    for member in enum_cls:
        if member.value.replace("_", "") == compact:
            return member
    allowed = ", ".join(m.value for m in enum_cls)
    raise ConfigurationError(f"Invalid {setting} '{value}'. Expected one of: {allowed}")


@dataclass(frozen=True)
class RunConfiguration:
    """
    Settings for a costing run.

    Attributes:
        capacity_basis: Capacity tier used for driver rates
        allocation_method: Direct, step-down or reciprocal
        idle_policy: Charge idle cost to a sink or redistribute it
        tolerance: Absolute tolerance of the reconciliation check
        max_iterations: Iteration budget of fixed-point relaxation
        convergence_tolerance: Stop relaxation when no pool moves more than this
        direct_solve_max_pools: Largest cyclic component solved by elimination
        capacity_basis_overrides: Per-pool capacity tier
        step_down_sequence: Pools to close first under step-down
        time_budget_seconds: Wall-clock budget of the reciprocal solve
        max_workers: Threads for independent cyclic components (1 = serial)
        rounding_places: Decimal places of published amounts
        rounding_mode: Decimal rounding mode name of published amounts
    """

    capacity_basis: ResourceCapacityType = ResourceCapacityType.PRACTICAL
    allocation_method: AllocationMethod = AllocationMethod.RECIPROCAL
    idle_policy: IdlePolicy = IdlePolicy.SINK
    tolerance: Decimal = Decimal("0.01")
    max_iterations: int = 1000
    convergence_tolerance: Decimal = Decimal("1E-12")
    direct_solve_max_pools: int = 64
    capacity_basis_overrides: Mapping[str, ResourceCapacityType] = field(
        default_factory=dict, hash=False
    )
    step_down_sequence: Tuple[str, ...] = ()
    time_budget_seconds: Optional[float] = None
    max_workers: int = 1
    rounding_places: int = 2
    rounding_mode: str = "HALF_UP"

    def __post_init__(self):
        object.__setattr__(self, "tolerance", to_decimal(self.tolerance))
        object.__setattr__(self, "convergence_tolerance", to_decimal(self.convergence_tolerance))
        object.__setattr__(self, "step_down_sequence", tuple(self.step_down_sequence))
        object.__setattr__(
            self,
            "capacity_basis_overrides",
            MappingProxyType({
                str(pool_id): parse_enum(ResourceCapacityType, basis, "capacity basis")
                for pool_id, basis in dict(self.capacity_basis_overrides).items()
            }),
        )

        if self.tolerance < 0:
            raise ConfigurationError("tolerance must be non-negative")
        if self.convergence_tolerance <= 0:
            raise ConfigurationError("convergence_tolerance must be positive")
        if self.max_iterations < 1:
            raise ConfigurationError("max_iterations must be at least 1")
        if self.direct_solve_max_pools < 0:
            raise ConfigurationError("direct_solve_max_pools must be non-negative")
        if self.max_workers < 1:
            raise ConfigurationError("max_workers must be at least 1")
        if self.time_budget_seconds is not None and self.time_budget_seconds <= 0:
            raise ConfigurationError("time_budget_seconds must be positive")
        if self.rounding_places < 0:
            raise ConfigurationError("rounding_places must be non-negative")
        try:
            rounding_mode(self.rounding_mode)
        except ValueError as e:
            raise ConfigurationError(str(e))

    def capacity_basis_for(self, pool_id: str) -> ResourceCapacityType:
        """Capacity tier for a pool, honoring per-pool overrides."""
        return self.capacity_basis_overrides.get(pool_id, self.capacity_basis)

    @property
    def decimal_rounding(self) -> str:
        """Decimal module constant for rounding_mode."""
        return rounding_mode(self.rounding_mode)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'RunConfiguration':
        """
        Create a RunConfiguration from a plain mapping (e.g. parsed YAML).

        Enum settings accept values or names in any case ('StepDown',
        'step_down', 'STEP_DOWN'). Unknown keys are rejected.
        """
        known = set(cls.__dataclass_fields__)
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigurationError(f"Unknown run configuration keys: {', '.join(unknown)}")

        kwargs: Dict[str, Any] = dict(data)
        if "capacity_basis" in kwargs:
            kwargs["capacity_basis"] = parse_enum(
                ResourceCapacityType, kwargs["capacity_basis"], "capacity basis"
            )
        if "allocation_method" in kwargs:
            kwargs["allocation_method"] = parse_enum(
                AllocationMethod, kwargs["allocation_method"], "allocation method"
            )
        if "idle_policy" in kwargs:
            kwargs["idle_policy"] = parse_enum(IdlePolicy, kwargs["idle_policy"], "idle policy")
        if kwargs.get("capacity_basis_overrides") is None:
            kwargs.pop("capacity_basis_overrides", None)
        if kwargs.get("step_down_sequence") is None:
            kwargs.pop("step_down_sequence", None)

        try:
            return cls(**kwargs)
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid run configuration: {e}")

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            'capacity_basis': self.capacity_basis.value,
            'allocation_method': self.allocation_method.value,
            'idle_policy': self.idle_policy.value,
            'tolerance': str(self.tolerance),
            'max_iterations': self.max_iterations,
            'convergence_tolerance': str(self.convergence_tolerance),
            'direct_solve_max_pools': self.direct_solve_max_pools,
            'capacity_basis_overrides': {
                k: v.value for k, v in sorted(self.capacity_basis_overrides.items())
            },
            'step_down_sequence': list(self.step_down_sequence),
            'time_budget_seconds': self.time_budget_seconds,
            'max_workers': self.max_workers,
            'rounding_places': self.rounding_places,
            'rounding_mode': self.rounding_mode,
        }
