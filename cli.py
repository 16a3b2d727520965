#!/usr/bin/env python3
"""
CLI for the Resource Costing Engine.

Usage:
    python cli.py validate scenarios/two_pool_reciprocal.yaml
    python cli.py run scenarios/two_pool_reciprocal.yaml --method step_down
    python cli.py run scenarios/two_pool_reciprocal.yaml --idle-policy redistribute --json

Commands:
    validate  Check a scenario and list every violation found
    run       Cost a scenario and print pool and cost object tables
"""
import json
import logging
import sys

import click
import pandas as pd

from resource_costing.config import get_config
from resource_costing.domain.exceptions import DomainError, ValidationError
from resource_costing.domain.services import AllocationGraphBuilder, CostingEngine
from resource_costing.modules.money import format_amount
from resource_costing.modules.scenario_loader import load_scenario

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

METHODS = ['direct', 'step_down', 'reciprocal']
BASES = ['theoretical', 'practical', 'normal', 'actual']
IDLE_POLICIES = ['sink', 'redistribute']


def _configure_logging(config, verbose: bool = False) -> None:
    """Apply the configured level and format to the root logger's handlers."""
    root = logging.getLogger()
    root.setLevel(logging.DEBUG if verbose else config.log_level)
    formatter = logging.Formatter(config.log_format)
    for handler in root.handlers:
        handler.setFormatter(formatter)


def _report_domain_error(error: DomainError) -> None:
    click.echo(click.style(f"{error.code}: ", fg='red', bold=True), err=True, nl=False)
    if isinstance(error, ValidationError):
        click.echo(f"{len(error.violations)} violation(s)", err=True)
        for violation in error.violations:
            click.echo(f"  - {violation}", err=True)
    else:
        click.echo(error.message, err=True)


@click.group()
@click.version_option(version='0.1.0')
@click.option('--config', 'config_path', default=None, type=click.Path(exists=True),
              help='Path to a costing configuration YAML file')
@click.option('-v', '--verbose', is_flag=True, help='Log solver details')
@click.pass_context
def cli(ctx, config_path: str, verbose: bool):
    """Resource Costing Engine CLI.

    Allocate resource cost through pools to cost objects, separating
    the cost of used capacity from the cost of idle capacity.
    """
    ctx.ensure_object(dict)
    config = get_config(config_path)
    _configure_logging(config, verbose)
    ctx.obj['config'] = config


@cli.command()
@click.argument('scenario', type=click.Path(exists=True))
@click.pass_context
def validate(ctx, scenario: str):
    """Validate a scenario without costing it."""
    try:
        costing_input, run_config = load_scenario(scenario, ctx.obj['config'])
        graph = AllocationGraphBuilder().build(costing_input, run_config)
    except DomainError as e:
        _report_domain_error(e)
        sys.exit(1)

    click.echo(click.style("Scenario is valid", fg='green', bold=True))
    click.echo(f"  Pools:          {graph.size:>6}")
    click.echo(f"  Pool edges:     {len(graph.pool_edges):>6}")
    click.echo(f"  Terminal edges: {len(graph.terminal_edges):>6}")
    click.echo(f"  Cost objects:   {len(graph.cost_centers):>6}")
    cyclic = graph.cyclic_components()
    click.echo(f"  Cyclic groups:  {len(cyclic):>6}")
    for component in cyclic:
        click.echo(f"    [{', '.join(graph.pool_ids[i] for i in component.members)}]")


@cli.command()
@click.argument('scenario', type=click.Path(exists=True))
@click.option('--method', type=click.Choice(METHODS, case_sensitive=False), default=None,
              help='Allocation method (overrides the scenario)')
@click.option('--basis', type=click.Choice(BASES, case_sensitive=False), default=None,
              help='Capacity basis for driver rates')
@click.option('--idle-policy', type=click.Choice(IDLE_POLICIES, case_sensitive=False), default=None,
              help='Treatment of idle capacity cost')
@click.option('--workers', type=int, default=None,
              help='Threads for independent cyclic components')
@click.option('--json', 'output_json', is_flag=True, help='Output as JSON')
@click.pass_context
def run(ctx, scenario: str, method: str, basis: str, idle_policy: str,
        workers: int, output_json: bool):
    """Cost a scenario and print the allocation."""
    try:
        costing_input, run_config = load_scenario(
            scenario,
            ctx.obj['config'],
            allocation_method=method,
            capacity_basis=basis,
            idle_policy=idle_policy,
            max_workers=workers,
        )
        result = CostingEngine(run_config).run(costing_input)
    except DomainError as e:
        _report_domain_error(e)
        sys.exit(1)

    if output_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
    else:
        places = run_config.rounding_places
        frames = result.to_dataframes()
        click.echo(click.style(
            f"Resource Costing - {run_config.allocation_method.value} allocation",
            fg='cyan', bold=True,
        ))
        if result.sequence:
            click.echo(f"Step-down sequence: {' -> '.join(result.sequence)}")

        with pd.option_context('display.max_rows', None, 'display.width', 160):
            click.echo("\nPools")
            click.echo(frames['pools'].to_string(index=False))
            click.echo("\nCost objects")
            click.echo(frames['cost_objects'].to_string(index=False))

        for warning in result.warnings:
            click.echo(click.style(f"Warning: {warning.message}", fg='yellow'))

        report = result.reconciliation
        click.echo(f"\n{'=' * 50}")
        click.echo(f"Input cost:       {format_amount(report.input_total, places):>20}")
        click.echo(f"Allocated:        {format_amount(report.allocated_total, places):>20}")
        click.echo(f"Idle (sink):      {format_amount(report.idle_total, places):>20}")
        click.echo(f"Unallocated:      {format_amount(report.unallocated_total, places):>20}")
        click.echo(f"{'=' * 50}")

    if not result.is_valid:
        click.echo(click.style(
            f"Reconciliation failed: discrepancy {result.reconciliation.discrepancy}",
            fg='red', bold=True,
        ), err=True)
        sys.exit(1)

    if not output_json:
        click.echo(click.style("Reconciliation passed", fg='green', bold=True))


if __name__ == '__main__':
    cli()
