"""
Tests for the Scenario Loader and the command line interface.
"""
import io
import json
import logging

import pytest
import yaml
from click.testing import CliRunner
from decimal import Decimal

from cli import _configure_logging, cli
from resource_costing.config import CostingConfig
from resource_costing.domain.entities import (
    AllocationMethod,
    IdlePolicy,
    ResourceAdaptabilityType,
)
from resource_costing.domain.exceptions import ConfigurationError, ValidationError
from resource_costing.modules.scenario_loader import load_scenario, parse_scenario

MINIMAL = {
    "resources": [{"id": "r", "pool_id": "A", "adaptability": "committed"}],
    "pools": [{"id": "A", "driver_id": "d", "resource_ids": ["r"]}],
    "drivers": [{"id": "d", "total_volume": 10, "consumer_volumes": {"P": 10}}],
    "capacities": [{"pool_id": "A", "quantity": 10}],
    "cost_elements": [{"id": "c", "resource_id": "r", "amount": "$1,250.50"}],
    "cost_centers": [{"id": "P", "object_type": "product"}],
    "edges": [{"source_id": "A", "target_id": "P"}],
}


def _document(**changes):
    data = {key: [dict(item) for item in value] for key, value in MINIMAL.items()}
    data.update(changes)
    return data


class TestScenarioLoader:
    """Tests for reading scenario documents."""

    def test_load_two_pool_scenario(self, scenario_dir):
        costing_input, run_config = load_scenario(scenario_dir / "two_pool_reciprocal.yaml")
        assert {p.id for p in costing_input.pools} == {"maintenance", "it"}
        assert costing_input.total_input_cost() == Decimal("1500")
        assert run_config.allocation_method is AllocationMethod.RECIPROCAL

        edge_ids = {e.id for e in costing_input.edges}
        assert "maintenance->it" in edge_ids
        assert all(e.volume is None for e in costing_input.edges)

    def test_currency_text_amounts(self):
        costing_input, _ = parse_scenario(_document())
        assert costing_input.cost_elements[0].amount == Decimal("1250.50")
        assert costing_input.resources[0].adaptability is ResourceAdaptabilityType.COMMITTED

    def test_exponent_amount_from_yaml(self):
        """PyYAML reads 1e3 as text; it must still cost 1000."""
        data = _document()
        data["cost_elements"] = yaml.safe_load(
            "- {id: c, resource_id: r, amount: 1e3}"
        )
        costing_input, _ = parse_scenario(data)
        assert costing_input.cost_elements[0].amount == Decimal("1000")
        assert costing_input.total_input_cost() == Decimal("1000")

    def test_amount_with_stray_text_rejected(self):
        data = _document()
        data["cost_elements"][0]["amount"] = "12abc"
        with pytest.raises(ValidationError) as exc_info:
            parse_scenario(data)
        assert [v.subject_id for v in exc_info.value.violations] == ["cost_elements.0.amount"]

    def test_default_capacity_id(self):
        costing_input, _ = parse_scenario(_document())
        assert costing_input.capacities[0].id == "capacity:A:practical"

    def test_run_block_and_overrides(self):
        data = _document(run={"allocation_method": "step_down", "idle_policy": "redistribute"})
        _, run_config = parse_scenario(data, allocation_method="direct", idle_policy=None)
        assert run_config.allocation_method is AllocationMethod.DIRECT
        assert run_config.idle_policy is IdlePolicy.REDISTRIBUTE

    def test_empty_sections(self):
        data = _document(output_measures=None, run=None)
        costing_input, _ = parse_scenario(data)
        assert costing_input.output_measures == ()

    def test_invalid_fields_reported_together(self):
        data = _document()
        data["cost_elements"][0]["amount"] = "1.250.50"
        data["resources"][0]["adaptability"] = "sometimes"
        with pytest.raises(ValidationError) as exc_info:
            parse_scenario(data)
        violations = exc_info.value.violations
        assert {v.code for v in violations} == {"INVALID_FIELD"}
        locations = {v.subject_id for v in violations}
        assert "cost_elements.0.amount" in locations
        assert "resources.0.adaptability" in locations

    def test_unknown_key_rejected(self):
        data = _document()
        data["pools"][0]["colour"] = "blue"
        with pytest.raises(ValidationError) as exc_info:
            parse_scenario(data)
        assert exc_info.value.violations[0].subject_id == "pools.0.colour"

    def test_not_a_mapping(self):
        with pytest.raises(ValidationError) as exc_info:
            parse_scenario(["not", "a", "scenario"])
        assert exc_info.value.codes() == ["INVALID_DOCUMENT"]

    def test_invalid_run_setting(self):
        with pytest.raises(ConfigurationError):
            parse_scenario(_document(run={"idle_policy": "ignore"}))

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError) as exc_info:
            load_scenario(tmp_path / "missing.yaml")
        assert "not found" in str(exc_info.value)

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "broken.yaml"
        path.write_text("pools: [")
        with pytest.raises(ConfigurationError) as exc_info:
            load_scenario(path)
        assert "Invalid YAML" in str(exc_info.value)


class TestCli:
    """Tests for the validate and run commands."""

    def test_validate(self, scenario_dir):
        result = CliRunner().invoke(cli, ["validate", str(scenario_dir / "two_pool_reciprocal.yaml")])
        assert result.exit_code == 0
        assert "Scenario is valid" in result.output
        assert "[it, maintenance]" in result.output

    def test_validate_reports_violations(self, tmp_path):
        data = _document()
        data["edges"].append({"source_id": "A", "target_id": "A", "volume": 1})
        path = tmp_path / "bad.yaml"
        path.write_text(yaml.safe_dump(data))
        result = CliRunner().invoke(cli, ["validate", str(path)])
        assert result.exit_code == 1

    def test_run_json(self, scenario_dir):
        result = CliRunner().invoke(
            cli, ["run", str(scenario_dir / "two_pool_reciprocal.yaml"), "--json"],
        )
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["valid"] is True
        assert data["cost_objects"] == {"assembly": "821.43", "packaging": "678.57"}

    def test_run_step_down(self, scenario_dir):
        result = CliRunner().invoke(
            cli,
            ["run", str(scenario_dir / "two_pool_reciprocal.yaml"), "--method", "step_down", "--json"],
        )
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["sequence"] == ["it", "maintenance"]
        assert data["cost_objects"] == {"assembly": "856.25", "packaging": "643.75"}

    def test_run_idle_capacity_table(self, scenario_dir):
        result = CliRunner().invoke(cli, ["run", str(scenario_dir / "idle_capacity.yaml")])
        assert result.exit_code == 0
        assert "Reconciliation passed" in result.output
        assert "2,000.00" in result.output

    def test_run_redistribute(self, scenario_dir):
        result = CliRunner().invoke(
            cli,
            ["run", str(scenario_dir / "idle_capacity.yaml"), "--idle-policy", "redistribute", "--json"],
        )
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["cost_objects"] == {"widgets": "8000.00"}

    def test_configured_log_format_applied(self, tmp_path):
        config_path = tmp_path / "costing.yaml"
        config_path.write_text(
            "version: '1.0'\n"
            "logging:\n"
            "  level: WARNING\n"
            "  format: 'COSTING|%(levelname)s|%(message)s'\n"
        )
        stream = io.StringIO()
        handler = logging.StreamHandler(stream)
        root = logging.getLogger()
        previous_level = root.level
        root.addHandler(handler)
        try:
            _configure_logging(CostingConfig(config_path))
            assert root.level == logging.WARNING
            logging.getLogger("resource_costing").warning("capacity overrun")
        finally:
            root.removeHandler(handler)
            root.setLevel(previous_level)
        assert stream.getvalue() == "COSTING|WARNING|capacity overrun\n"

    def test_run_invalid_method(self, scenario_dir):
        result = CliRunner().invoke(
            cli, ["run", str(scenario_dir / "two_pool_reciprocal.yaml"), "--method", "average"],
        )
        assert result.exit_code != 0


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
