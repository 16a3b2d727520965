"""
Tests for the costing entities and the run configuration.
"""
import pytest
from dataclasses import FrozenInstanceError
from decimal import Decimal

from resource_costing.domain.entities import (
    AllocationMethod,
    CostFlowEdge,
    CostingInput,
    IdleCapacity,
    IdlePolicy,
    ResourceCapacityType,
    ResourceCostDriver,
    ResourceCostElement,
    ResourcePool,
    RunConfiguration,
)
from resource_costing.domain.exceptions import (
    ConfigurationError,
    NonConvergentError,
    ValidationError,
    Violation,
    ZeroCapacityError,
)


class TestEntities:
    """Tests for entity value semantics."""

    def test_entities_are_immutable(self):
        pool = ResourcePool(id="A", driver_id="d")
        with pytest.raises(FrozenInstanceError):
            pool.accumulated_cost = Decimal("1")

    def test_amounts_coerced_to_decimal(self):
        element = ResourceCostElement(id="e", resource_id="r", amount=0.1)
        assert element.amount == Decimal("0.1")
        edge = CostFlowEdge(id="x", source_id="A", target_id="B", volume="12.5")
        assert edge.volume == Decimal("12.5")

    def test_edge_volume_may_be_omitted(self):
        edge = CostFlowEdge(id="x", source_id="A", target_id="B")
        assert edge.volume is None

    def test_driver_volumes(self):
        driver = ResourceCostDriver(
            id="d", total_volume=100, consumer_volumes={"A": 30, "B": "20.5"},
        )
        assert driver.consumed_volume() == Decimal("50.5")
        assert driver.residual_volume() == Decimal("49.5")

    def test_pool_resource_ids_frozen(self):
        pool = ResourcePool(id="A", driver_id="d", resource_ids=["r1", "r2"])
        assert pool.resource_ids == frozenset({"r1", "r2"})

    def test_costing_input_total(self):
        costing_input = CostingInput(cost_elements=[
            ResourceCostElement(id="e1", resource_id="r", amount="100.10"),
            ResourceCostElement(id="e2", resource_id="r", amount="0.20"),
        ])
        assert isinstance(costing_input.cost_elements, tuple)
        assert costing_input.total_input_cost() == Decimal("100.30")

    def test_idle_sink_cost(self):
        idle = IdleCapacity(
            id="idle:A", pool_id="A", capacity_type=ResourceCapacityType.PRACTICAL,
            quantity=Decimal("10"), cost_amount=Decimal("200"),
        )
        assert idle.sink_cost == Decimal("200")
        absorbed = IdleCapacity(
            id="idle:A", pool_id="A", capacity_type=ResourceCapacityType.PRACTICAL,
            quantity=Decimal("10"), cost_amount=Decimal("200"), redistributed=True,
        )
        assert absorbed.sink_cost == Decimal("0")
        assert absorbed.to_dict()["redistributed"] is True


class TestRunConfiguration:
    """Tests for RunConfiguration."""

    def test_defaults(self):
        config = RunConfiguration()
        assert config.capacity_basis is ResourceCapacityType.PRACTICAL
        assert config.allocation_method is AllocationMethod.RECIPROCAL
        assert config.idle_policy is IdlePolicy.SINK
        assert config.tolerance == Decimal("0.01")
        assert config.max_workers == 1

    def test_from_dict_accepts_names_in_any_case(self):
        config = RunConfiguration.from_dict({
            "allocation_method": "StepDown",
            "capacity_basis": "THEORETICAL",
            "idle_policy": "Redistribute",
            "tolerance": "0.005",
        })
        assert config.allocation_method is AllocationMethod.STEP_DOWN
        assert config.capacity_basis is ResourceCapacityType.THEORETICAL
        assert config.idle_policy is IdlePolicy.REDISTRIBUTE
        assert config.tolerance == Decimal("0.005")

    def test_from_dict_rejects_unknown_keys(self):
        with pytest.raises(ConfigurationError, match="Unknown run configuration keys"):
            RunConfiguration.from_dict({"alloc_method": "direct"})

    def test_invalid_enum_value(self):
        with pytest.raises(ConfigurationError) as exc_info:
            RunConfiguration.from_dict({"allocation_method": "round_robin"})
        assert "direct" in str(exc_info.value)
        assert exc_info.value.code == "CONFIGURATION_ERROR"

    def test_invalid_numbers(self):
        with pytest.raises(ConfigurationError):
            RunConfiguration(tolerance=Decimal("-1"))
        with pytest.raises(ConfigurationError):
            RunConfiguration(max_workers=0)
        with pytest.raises(ConfigurationError):
            RunConfiguration(max_iterations=0)
        with pytest.raises(ConfigurationError):
            RunConfiguration(rounding_mode="SIDEWAYS")
        with pytest.raises(ConfigurationError):
            RunConfiguration.from_dict({"tolerance": "lots"})

    def test_capacity_basis_overrides(self):
        config = RunConfiguration(capacity_basis_overrides={"A": "theoretical"})
        assert config.capacity_basis_for("A") is ResourceCapacityType.THEORETICAL
        assert config.capacity_basis_for("B") is ResourceCapacityType.PRACTICAL

    def test_immutable(self):
        config = RunConfiguration()
        with pytest.raises(FrozenInstanceError):
            config.idle_policy = IdlePolicy.REDISTRIBUTE

    def test_overrides_are_read_only(self):
        overrides = {"A": "theoretical"}
        config = RunConfiguration(capacity_basis_overrides=overrides)
        overrides["A"] = "actual"
        assert config.capacity_basis_for("A") is ResourceCapacityType.THEORETICAL
        with pytest.raises(TypeError):
            config.capacity_basis_overrides["B"] = ResourceCapacityType.ACTUAL

    def test_hashable(self):
        first = RunConfiguration(capacity_basis_overrides={"A": "theoretical"})
        second = RunConfiguration(capacity_basis_overrides={"A": "theoretical"})
        assert first == second
        assert hash(first) == hash(second)
        assert len({first, second, RunConfiguration()}) == 2

    def test_to_dict_round_trip(self):
        config = RunConfiguration(
            allocation_method=AllocationMethod.DIRECT,
            step_down_sequence=["B", "A"],
        )
        restored = RunConfiguration.from_dict(config.to_dict())
        assert restored == config


class TestExceptions:
    """Tests for domain exception payloads."""

    def test_validation_error_lists_every_violation(self):
        error = ValidationError([
            Violation("UNKNOWN_POOL", "r1", "resource references unknown pool 'X'"),
            Violation("NEGATIVE_AMOUNT", "e1", "cost element amount -5 is negative"),
        ])
        assert error.codes() == ["UNKNOWN_POOL", "NEGATIVE_AMOUNT"]
        assert "2 violation(s)" in error.message
        assert "[UNKNOWN_POOL] r1" in error.message

    def test_zero_capacity_names_pools(self):
        error = ZeroCapacityError(["A", "C"], {"A": "practical"})
        assert error.pool_id == "A"
        assert error.code == "ZERO_CAPACITY"
        assert "'A' (practical)" in error.message
        assert "'C'" in error.message

    def test_non_convergent_reports_diagnostics(self):
        error = NonConvergentError(["A", "B"], "no fixed point", iterations=10,
                                   spectral_radius=1.0)
        assert error.pool_ids == ("A", "B")
        assert error.iterations == 10
        assert "spectral radius 1.000000" in error.message


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
