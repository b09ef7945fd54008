"""Command line interface for running and inspecting graphrun workflows."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Optional

import typer

from graphrun import GraphScheduler, RunResult, get_repository, load_config
from graphrun.cli_utils.loading import _load_registry, _parse_json_object
from graphrun.graph import validate_definition
from graphrun.persistence import ExecutionRepository
from graphrun.persistence.models import ExecutionStatus
from graphrun.utils.retry import run_with_retry
from graphrun.workflows import load_workflow_file

app = typer.Typer(help="CLI for graphrun workflows")

# Command groups
workflow_app = typer.Typer(help="Commands for validating and running workflows")
execution_app = typer.Typer(help="Commands for inspecting and resuming executions")

app.add_typer(workflow_app, name="workflow")
app.add_typer(execution_app, name="execution")


@app.callback()
def main(
    log_level: str = typer.Option("WARNING", help="Python logging level"),
) -> None:
    """graphrun CLI entry point."""
    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


async def _open_repository() -> ExecutionRepository:
    repository = get_repository()
    init_db = getattr(repository, "init_db", None)
    if init_db is not None:
        await init_db()
    return repository


def _echo_result(result: RunResult) -> None:
    typer.echo(f"Execution ID: {result.execution_id}")
    typer.echo(f"Status: {result.status.value if result.status else 'NOT STARTED'}")
    typer.echo(f"Checkpoints: {result.checkpoints_count}")
    if result.success:
        typer.echo(f"Output: {json.dumps(result.output, default=str)}")
    else:
        retry_hint = " (retryable)" if result.retryable else ""
        typer.secho(f"Error: {result.error}{retry_hint}", fg=typer.colors.RED)
        raise typer.Exit(code=1)


@workflow_app.command("validate")
def workflow_validate(path: Path) -> None:
    """
    Check a workflow definition file before running it.

    Reports orphan connections, duplicate node ids and missing entry nodes as
    errors; disconnected nodes and cycles as warnings.

    Example:
        graphrun workflow validate ./flows/onboarding.yaml
    """
    if not path.exists():
        typer.secho("Specified path does not exist", fg=typer.colors.RED)
        raise typer.Exit(code=1)

    try:
        definition = load_workflow_file(path)
    except (OSError, ValueError) as exc:
        typer.secho(f"Cannot load workflow: {exc}", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    config = load_config()
    validation = validate_definition(definition, config.execution.trigger_node_types)

    for warning in validation.warnings:
        typer.secho(f"warning: {warning}", fg=typer.colors.YELLOW)
    for error in validation.errors:
        typer.secho(f"error: {error}", fg=typer.colors.RED)
    if validation.cycle and config.execution.cycle_policy == "reject":
        typer.secho("error: cycles are rejected by configuration", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    if not validation.valid:
        raise typer.Exit(code=1)
    typer.echo(
        f"Workflow {definition.id} is valid "
        f"(entry nodes: {', '.join(validation.entry_node_ids) or 'none'})"
    )


@workflow_app.command("run")
def workflow_run(
    path: Path,
    executors: str = typer.Option(..., help="Executor registry as module:attribute"),
    input_json: Optional[str] = typer.Option(
        None, "--input", help="Initial context as a JSON object"
    ),
    user_id: str = typer.Option("cli", help="User the execution runs on behalf of"),
    retries: int = typer.Option(1, min=1, help="Attempts while failures are retryable"),
) -> None:
    """
    Run a workflow definition file to completion, pause or failure.

    Example:
        graphrun workflow run ./flows/onboarding.yaml --executors myapp.nodes:registry
        graphrun workflow run ./flow.json --executors myapp.nodes:registry --input '{"email": "a@b.c"}'
    """
    try:
        definition = load_workflow_file(path)
        registry = _load_registry(executors)
        initial_context = _parse_json_object(input_json, "--input")
    except (OSError, ValueError) as exc:
        typer.secho(str(exc), fg=typer.colors.RED)
        raise typer.Exit(code=1)

    async def _run() -> RunResult:
        scheduler = GraphScheduler(registry, repository=await _open_repository())
        return await run_with_retry(
            scheduler, definition, user_id, initial_context, max_attempts=retries
        )

    _echo_result(asyncio.run(_run()))


@execution_app.command("list")
def execution_list(
    workflow_id: Optional[str] = typer.Option(None, help="Only show this workflow"),
    status: Optional[ExecutionStatus] = typer.Option(None, help="Only show this status"),
) -> None:
    """
    List executions with their current status.

    Example:
        graphrun execution list
        # Output: 3f2a...    wf-onboarding    PAUSED    2/4
    """

    async def _list():
        repository = await _open_repository()
        return await repository.list_executions(workflow_id=workflow_id, status=status)

    records = asyncio.run(_list())
    if not records:
        typer.echo("No executions found")
        return
    for record in records:
        typer.echo(
            f"{record.id}\t{record.workflow_id}\t{record.status.value}\t"
            f"{record.current_step}/{record.total_steps}"
        )


@execution_app.command("show")
def execution_show(execution_id: str) -> None:
    """
    Show an execution's status, context and checkpoint history.

    Example:
        graphrun execution show 3f2a9c1e-...
        # Output: Execution 3f2a9c1e-...: PAUSED (step 2/4)
        #         1. step 1 fetch_profile
        #         2. step 2 wait_for_approval
    """

    async def _get():
        repository = await _open_repository()
        return await repository.get_execution(execution_id)

    record = asyncio.run(_get())
    if record is None:
        typer.echo("Execution not found")
        raise typer.Exit(code=1)

    typer.echo(
        f"Execution {record.id}: {record.status.value} "
        f"(step {record.current_step}/{record.total_steps})"
    )
    typer.echo(f"Workflow: {record.workflow_id}")
    if record.error:
        typer.echo(f"Error: {record.error}")
    typer.echo(f"Context: {json.dumps(record.context, default=str)}")
    for checkpoint in record.checkpoints:
        line = f"{checkpoint.sequence}. step {checkpoint.step_number} {checkpoint.node_name}"
        if checkpoint.branch:
            line += f" [{checkpoint.branch}]"
        if checkpoint.error:
            line += f" FAILED: {checkpoint.error}"
        typer.echo(line)


@execution_app.command("resume")
def execution_resume(
    execution_id: str,
    workflow: Path = typer.Option(..., help="Workflow definition file"),
    executors: str = typer.Option(..., help="Executor registry as module:attribute"),
    data: Optional[str] = typer.Option(
        None, help="External event payload merged into the context, as JSON"
    ),
) -> None:
    """
    Continue a paused or failed execution.

    Example:
        graphrun execution resume 3f2a9c1e-... --workflow ./flow.yaml \\
            --executors myapp.nodes:registry --data '{"approved": true}'
    """
    try:
        definition = load_workflow_file(workflow)
        registry = _load_registry(executors)
        updates = _parse_json_object(data, "--data")
    except (OSError, ValueError) as exc:
        typer.secho(str(exc), fg=typer.colors.RED)
        raise typer.Exit(code=1)

    async def _resume() -> RunResult:
        scheduler = GraphScheduler(registry, repository=await _open_repository())
        return await scheduler.resume(execution_id, updates, definition=definition)

    _echo_result(asyncio.run(_resume()))


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    app()
