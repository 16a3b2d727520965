"""
Tests for the configuration loader.
"""
import pytest
import tempfile
from decimal import Decimal
from pathlib import Path

from resource_costing.config import CostingConfig, get_config, reload_config
from resource_costing.domain.entities import (
    AllocationMethod,
    IdlePolicy,
    ResourceCapacityType,
)
from resource_costing.domain.exceptions import ConfigurationError


def _write_config(text: str) -> Path:
    with tempfile.NamedTemporaryFile(mode='w', suffix='.yaml', delete=False) as f:
        f.write(text)
        return Path(f.name)


class TestCostingConfig:
    """Tests for CostingConfig class."""

    def test_load_default_config(self):
        """Test loading the default configuration file."""
        config = get_config()
        assert config.version == "1.0"
        assert config.run_defaults["allocation_method"] == "reciprocal"

    def test_solver_settings(self):
        config = get_config()
        assert config.solver["direct_solve_max_pools"] == 64
        assert config.max_workers == 1

    def test_rounding_and_logging(self):
        config = get_config()
        assert config.rounding == {"places": 2, "mode": "HALF_UP"}
        assert config.log_level == "INFO"
        assert "%(message)s" in config.log_format

    def test_reload_returns_fresh_instance(self):
        first = get_config()
        second = reload_config()
        assert first is not second
        assert second.version == first.version


class TestRunConfiguration:
    """Tests for building run configurations from the defaults."""

    def test_defaults(self):
        """Test the shipped defaults map onto a RunConfiguration."""
        run = get_config().run_configuration()
        assert run.capacity_basis is ResourceCapacityType.PRACTICAL
        assert run.allocation_method is AllocationMethod.RECIPROCAL
        assert run.idle_policy is IdlePolicy.SINK
        assert run.tolerance == Decimal("0.01")
        assert run.convergence_tolerance == Decimal("1E-12")
        assert run.time_budget_seconds is None
        assert run.rounding_places == 2

    def test_overrides(self):
        """Test overrides replace defaults and None values are ignored."""
        run = get_config().run_configuration(
            allocation_method="StepDown",
            idle_policy=None,
            max_workers=4,
        )
        assert run.allocation_method is AllocationMethod.STEP_DOWN
        assert run.idle_policy is IdlePolicy.SINK
        assert run.max_workers == 4

    def test_invalid_override(self):
        with pytest.raises(ConfigurationError) as exc_info:
            get_config().run_configuration(allocation_method="average")
        assert exc_info.value.code == "CONFIGURATION_ERROR"

    def test_unknown_override(self):
        with pytest.raises(ConfigurationError) as exc_info:
            get_config().run_configuration(speed="fast")
        assert "speed" in str(exc_info.value)

    def test_custom_file(self):
        """Test a config file with its own defaults."""
        temp_path = _write_config(
            "version: '2.0'\n"
            "run:\n"
            "  idle_policy: redistribute\n"
            "rounding:\n"
            "  places: 0\n"
            "  mode: HALF_EVEN\n"
        )
        try:
            config = CostingConfig(temp_path)
            run = config.run_configuration()
            assert config.version == "2.0"
            assert run.idle_policy is IdlePolicy.REDISTRIBUTE
            assert run.rounding_places == 0
            assert run.rounding_mode == "HALF_EVEN"
        finally:
            temp_path.unlink()


class TestConfigurationError:
    """Tests for configuration error handling."""

    def test_missing_file(self):
        """Test error on missing config file."""
        with pytest.raises(ConfigurationError) as exc_info:
            CostingConfig(Path("/nonexistent/path.yaml"))
        assert "not found" in str(exc_info.value)

    def test_invalid_yaml(self):
        """Test error on invalid YAML."""
        temp_path = _write_config("invalid: yaml: content: [")
        try:
            with pytest.raises(ConfigurationError) as exc_info:
                CostingConfig(temp_path)
            assert "Invalid YAML" in str(exc_info.value)
        finally:
            temp_path.unlink()

    def test_non_mapping(self):
        temp_path = _write_config("- just\n- a list\n")
        try:
            with pytest.raises(ConfigurationError):
                CostingConfig(temp_path)
        finally:
            temp_path.unlink()


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
