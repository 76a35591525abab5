"""Command line interface for running relayflow workers and runs."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Optional

import typer
from pydantic import ValidationError

from relayflow import (
    ActionDispatcher,
    StepExecutor,
    WorkflowInvoker,
    WorkflowRunCoordinator,
    default_registry,
    get_definition_store,
    get_repository,
    get_transport,
    load_config,
)
from relayflow.definitions import load_definition, validate_definition
from relayflow.errors import RelayflowError
from relayflow.sinks import get_completion_sink

app = typer.Typer(help="CLI for relayflow workflows")

# Command groups
worker_app = typer.Typer(help="Commands for running queue consumers")
workflow_app = typer.Typer(help="Commands for managing workflow definitions")
run_app = typer.Typer(help="Commands for inspecting workflow runs")

app.add_typer(worker_app, name="worker")
app.add_typer(workflow_app, name="workflow")
app.add_typer(run_app, name="run")


@app.callback()
def main(
    log_level: str = typer.Option("INFO", "--log-level", help="Python logging level"),
) -> None:
    """Relayflow CLI entry point."""
    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    logging.getLogger("aio_pika").setLevel(logging.WARNING)
    logging.getLogger("aiormq").setLevel(logging.WARNING)


def _build_coordinator(config, transport, repository) -> WorkflowRunCoordinator:
    registry = default_registry(config.handlers)
    dispatcher = ActionDispatcher(registry, default_timeout=config.execution.action_timeout)
    return WorkflowRunCoordinator(
        transport,
        definitions=get_definition_store(config=config),
        executor=StepExecutor(dispatcher),
        repository=repository,
        sink=get_completion_sink(config, transport),
        step_lease=config.execution.step_lease,
    )


def _parse_payload(payload: Optional[str]) -> dict:
    if not payload:
        return {}
    try:
        data = json.loads(payload)
    except json.JSONDecodeError as exc:
        typer.secho(f"Invalid JSON payload: {exc}", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    if not isinstance(data, dict):
        typer.secho("Payload must be a JSON object", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    return data


@worker_app.command("run")
def worker_run(lifespan: Optional[float] = None) -> None:
    """
    Run a coordinator that consumes the execution queue.

    Args:
        lifespan: Worker timeout in seconds (default: run indefinitely)

    Example:
        relayflow worker run
        relayflow worker run --lifespan 300
    """
    config = load_config()
    transport = get_transport(config=config)
    coordinator = _build_coordinator(config, transport, get_repository(config=config))
    typer.echo("Starting workflow coordinator")
    asyncio.run(coordinator.start(lifespan=lifespan))


@worker_app.command("invoker")
def worker_invoker(lifespan: Optional[float] = None) -> None:
    """Run a consumer that starts runs requested on the invoker queue."""
    config = load_config()
    invoker = WorkflowInvoker(
        get_transport(config=config),
        get_definition_store(config=config),
        repository=get_repository(config=config),
    )
    typer.echo("Starting workflow invoker")
    asyncio.run(invoker.start(lifespan=lifespan))


@workflow_app.command("invoke")
def workflow_invoke(
    workflow_id: str,
    payload: Optional[str] = typer.Option(None, help="JSON object passed to the entry step"),
    run_id: Optional[str] = typer.Option(None, help="Explicit run id"),
    wait: float = typer.Option(
        0.0, help="Also run a coordinator in this process for this many seconds"
    ),
) -> None:
    """
    Start a run of a workflow and print its run id.

    Example:
        relayflow workflow invoke meeting-prep --payload '{"email": "a@b.c"}'
        relayflow workflow invoke meeting-prep --wait 5
    """
    data = _parse_payload(payload)
    config = load_config()
    transport = get_transport(config=config)
    repository = get_repository(config=config)
    definitions = get_definition_store(config=config)
    invoker = WorkflowInvoker(transport, definitions, repository=repository)

    async def _invoke() -> str:
        new_run_id = await invoker.invoke(workflow_id, data, run_id=run_id)
        if wait > 0:
            coordinator = _build_coordinator(config, transport, repository)
            await coordinator.start(lifespan=wait)
        return new_run_id

    try:
        new_run_id = asyncio.run(_invoke())
    except RelayflowError as exc:
        typer.secho(str(exc), fg=typer.colors.RED)
        raise typer.Exit(code=1)
    typer.echo(f"Run id: {new_run_id}")


@workflow_app.command("validate")
def workflow_validate(path: Path) -> None:
    """
    Check a workflow definition file for graph and condition problems.

    Example:
        relayflow workflow validate ./workflows/meeting_prep.yaml
    """
    if not path.exists():
        typer.secho("Specified path does not exist", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    try:
        definition = load_definition(path)
    except ValidationError as exc:
        typer.secho(f"Invalid workflow definition: {exc}", fg=typer.colors.RED)
        raise typer.Exit(code=1)

    problems = validate_definition(definition)
    if problems:
        for problem in problems:
            typer.secho(f"- {problem}", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    typer.echo(f"Workflow {definition.id} is valid ({len(definition.nodes)} nodes)")


@run_app.command("list")
def run_list() -> None:
    """
    List all runs with their current status.

    Example:
        relayflow run list
        # Output: abc123-def456-789    meeting-prep    running
    """
    repo = get_repository()
    runs = asyncio.run(repo.list_runs())
    if not runs:
        typer.echo("No runs found")
        return
    for run in runs:
        typer.echo(f"{run.run_id}\t{run.workflow_id}\t{run.status}")


@run_app.command("show")
def run_show(run_id: str) -> None:
    """
    Show status, payload and step history of a run.

    Example:
        relayflow run show abc123-def456-789
        # Output: Run abc123-def456-789 (meeting-prep): failed
        #         Message: Step slack failed: rate_limited
        #         - trigger: success (2024-01-01 10:00 -> 10:00)
    """
    repo = get_repository()
    run = asyncio.run(repo.get_run(run_id))
    if run is None:
        typer.echo("Run not found")
        raise typer.Exit(code=1)
    typer.echo(f"Run {run.run_id} ({run.workflow_id}): {run.status}")
    if run.message:
        typer.echo(f"Message: {run.message}")
    if run.payload:
        typer.echo(f"Payload: {json.dumps(run.payload, default=str)}")
    for step in run.steps:
        typer.echo(
            f"- {step.step_id}: {step.status}"
            + (
                f" ({step.started_at} -> {step.completed_at})"
                if step.started_at or step.completed_at
                else ""
            )
        )


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    app()
