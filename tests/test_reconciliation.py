"""
Tests for the Reconciliation Validator.
"""
import pytest
from dataclasses import replace
from decimal import Decimal

from resource_costing.domain.entities import RunConfiguration
from resource_costing.domain.services import (
    AllocationGraphBuilder,
    AllocationSolver,
    CapacityResolver,
    DriverRateCalculator,
    ReconciliationValidator,
)


def _run(costing_input):
    config = RunConfiguration()
    graph = AllocationGraphBuilder().build(costing_input, config)
    basis = DriverRateCalculator(config).basis_quantities(graph)
    profiles, _ = CapacityResolver(config).profiles(graph, basis)
    outcome = AllocationSolver(config).solve(graph, profiles)
    totals = {key: Decimal("0") for key in graph.cost_centers}
    for edge in graph.terminal_edges:
        totals[edge.target_id] += outcome.edge_amounts[edge.edge_id]
    return graph, outcome, totals


class TestReconciliationValidator:
    """Tests for the conservation check."""

    def test_balanced_run_passes(self, two_pool_input):
        graph, outcome, totals = _run(two_pool_input)
        report = ReconciliationValidator(Decimal("0.01")).validate(graph, outcome, totals)
        assert report.passed
        assert report.status == "passed"
        assert report.input_total == Decimal("1500")
        assert abs(report.discrepancy) < Decimal("1E-20")
        assert report.pool_discrepancies == ()

    def test_idle_and_unallocated_count_toward_input(self, make_input):
        costing_input = make_input(
            pools={"A": 400, "B": 50},
            edges=[("A", "P", 30)],
            capacity={"A": 40, "B": 10},
            actual={"B": 10},
        )
        graph, outcome, totals = _run(costing_input)
        report = ReconciliationValidator(Decimal("0.01")).validate(graph, outcome, totals)
        assert report.passed
        assert report.allocated_total == Decimal("300")
        assert report.idle_total == Decimal("100")
        assert report.unallocated_total == Decimal("50")

    def test_tampered_totals_fail(self, two_pool_input):
        graph, outcome, totals = _run(two_pool_input)
        totals["P1"] += Decimal("5")
        report = ReconciliationValidator(Decimal("0.01")).validate(graph, outcome, totals)
        assert not report.passed
        assert abs(report.discrepancy + Decimal("5")) < Decimal("1E-20")

    def test_failing_pools_listed_largest_first(self, two_pool_input):
        graph, outcome, totals = _run(two_pool_input)
        edge_amounts = dict(outcome.edge_amounts)
        edge_amounts["B->P1"] -= Decimal("3")
        edge_amounts["A->P1"] -= Decimal("1")
        outcome = replace(outcome, edge_amounts=edge_amounts)
        report = ReconciliationValidator(Decimal("0.01")).validate(graph, outcome, totals)
        assert not report.passed
        assert [d.pool_id for d in report.pool_discrepancies] == ["B", "A"]
        assert "B->P1" in report.pool_discrepancies[0].edge_ids
        assert abs(report.pool_discrepancies[0].outflow_imbalance - Decimal("3")) < Decimal("1E-20")

    def test_negative_cost_object_fails(self, two_pool_input):
        graph, outcome, totals = _run(two_pool_input)
        totals["P1"], totals["P2"] = -totals["P1"], totals["P2"] + 2 * totals["P1"]
        report = ReconciliationValidator(Decimal("0.01")).validate(graph, outcome, totals)
        assert not report.passed
        assert report.negative_cost_objects == ("P1",)

    def test_report_serializes_amounts_as_strings(self, two_pool_input):
        graph, outcome, totals = _run(two_pool_input)
        data = ReconciliationValidator(Decimal("0.01")).validate(graph, outcome, totals).to_dict()
        assert data["status"] == "passed"
        assert data["input_total"] == "1500"
        assert data["tolerance"] == "0.01"


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
