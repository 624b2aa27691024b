"""
Workflow Engine CLI - Main entry point.

Provides commands for:
- Validating workflow files
- Printing execution order
- Listing connectors
- Running workflows
"""

from __future__ import annotations

import json
import sys
from typing import Optional, Tuple

import click

from workflow_engine.config import get_settings
from workflow_engine.connectors import ConnectorRegistry
from workflow_engine.engine import WorkflowEngine
from workflow_engine.errors import ValidationError, WorkflowEngineError
from workflow_engine.execution import ExecutionStatus
from workflow_engine.graph import CycleError, WorkflowGraph
from workflow_engine.models import Workflow, load_workflow
from workflow_engine.observability import setup_logging
from workflow_engine.store import InMemoryRecordStore
from workflow_engine.validator import WorkflowValidator

connectors_option = click.option(
    "--connectors", "-c", "modules",
    multiple=True,
    help="Module providing connectors (repeatable)",
)


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Enable verbose output")
@click.option("-q", "--quiet", is_flag=True, help="Suppress output")
@click.option("--log-format", type=click.Choice(["json", "text"]), default=None, help="Log format")
@click.pass_context
def cli(ctx: click.Context, verbose: bool, quiet: bool, log_format: Optional[str]):
    """Workflow Engine - validate and run connector DAGs."""
    ctx.ensure_object(dict)

    level = None
    if verbose:
        level = "DEBUG"
    elif quiet:
        level = "ERROR"
    setup_logging(level=level, fmt=log_format or "text")

    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet


def build_registry(modules: Tuple[str, ...]) -> ConnectorRegistry:
    """Registry filled from entry points and the given modules."""
    settings = get_settings()
    registry = ConnectorRegistry()
    registry.discover_entry_points(settings.connector_entry_point_group)
    for module in modules:
        registry.discover_module(module)
    return registry


def _load(workflow_file: str) -> Workflow:
    try:
        return load_workflow(workflow_file)
    except Exception as e:
        click.echo(f"Error: cannot load {workflow_file}: {e}", err=True)
        sys.exit(1)


def _registry_or_exit(modules: Tuple[str, ...]) -> ConnectorRegistry:
    try:
        return build_registry(modules)
    except ImportError as e:
        click.echo(f"Error: cannot import connectors: {e}", err=True)
        sys.exit(1)


def _print_validation(errors, warnings) -> None:
    for error in errors:
        click.echo(f"  ✗ {error}")
    for warning in warnings:
        click.echo(f"  ! {warning}")


@cli.command("validate")
@click.argument("workflow_file", type=click.Path(exists=True))
@connectors_option
@click.option("--json", "as_json", is_flag=True, help="Print the result as JSON")
def validate_cmd(workflow_file: str, modules: Tuple[str, ...], as_json: bool):
    """
    Validate a workflow file.

    WORKFLOW_FILE: Path to workflow YAML or JSON
    """
    workflow = _load(workflow_file)
    registry = _registry_or_exit(modules)
    result = WorkflowValidator(registry).validate(workflow)

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
    else:
        click.echo(f"Workflow: {workflow.name} ({workflow.id})")
        click.echo("Valid" if result.valid else "Invalid")
        _print_validation(result.errors, result.warnings)

    if not result.valid:
        sys.exit(1)


@cli.command("order")
@click.argument("workflow_file", type=click.Path(exists=True))
def order_cmd(workflow_file: str):
    """
    Print the execution order and levels of a workflow file.

    WORKFLOW_FILE: Path to workflow YAML or JSON
    """
    graph = WorkflowGraph(_load(workflow_file))
    try:
        order = graph.topological_order()
        levels = graph.levels()
    except CycleError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    click.echo("Order: " + " -> ".join(order))
    for depth, level in enumerate(levels):
        click.echo(f"  level {depth}: {', '.join(level)}")


@cli.command("connectors")
@connectors_option
def connectors_cmd(modules: Tuple[str, ...]):
    """List registered connectors."""
    registry = _registry_or_exit(modules)
    if not len(registry):
        click.echo("No connectors registered")
        return
    for connector in registry:
        line = f"{connector.node_type:<24} {connector.kind.value:<12}"
        if connector.description:
            line += f" {connector.description}"
        click.echo(line.rstrip())


@cli.command("run")
@click.argument("workflow_file", type=click.Path(exists=True))
@connectors_option
@click.option("--timeout", "-t", type=float, default=None, help="Seconds to wait for the run")
@click.option("--output", "-o", type=click.Path(), help="Write destination results to a JSON file")
@click.option("--logs/--no-logs", default=True, help="Print the execution log")
def run_cmd(
    workflow_file: str,
    modules: Tuple[str, ...],
    timeout: Optional[float],
    output: Optional[str],
    logs: bool,
):
    """
    Run a workflow file.

    WORKFLOW_FILE: Path to workflow YAML or JSON

    Examples:

        workflow-engine run ./pipeline.yaml -c mypack.connectors

        workflow-engine run ./pipeline.json -c mypack.connectors -o results.json
    """
    workflow = _load(workflow_file)
    registry = _registry_or_exit(modules)
    store = InMemoryRecordStore([workflow])
    engine = WorkflowEngine(store, registry)

    click.echo(f"Executing workflow: {workflow.name}")
    click.echo(f"Nodes: {len(workflow.nodes)}")

    try:
        execution = engine.execute(workflow.id, timeout=timeout)
    except ValidationError as e:
        click.echo("Invalid workflow:", err=True)
        _print_validation(e.errors, e.result.warnings if e.result else [])
        sys.exit(1)
    except (WorkflowEngineError, TimeoutError) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    if logs:
        for entry in execution.logs:
            click.echo(f"  [{entry.level.value:<5}] {entry.message}")

    click.echo(f"\nStatus: {execution.status.value}")
    if execution.duration_ms is not None:
        click.echo(f"Duration: {execution.duration_ms:.2f}ms")
    if execution.error_message:
        click.echo(f"Error: {execution.error_message}")

    if output:
        with open(output, "w") as f:
            json.dump(execution.results, f, indent=2)
        click.echo(f"\nResults saved to: {output}")

    if execution.status != ExecutionStatus.COMPLETED:
        sys.exit(1)


def main():
    """Main entry point."""
    cli(obj={})


if __name__ == "__main__":
    main()
