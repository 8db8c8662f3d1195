"""Command line interface for stepflow."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Optional

import typer
import yaml
from pydantic import ValidationError

from .config import load_config
from .contracts import Workflow, WorkflowCreate, WorkflowRun
from .engine import Engine, build_engine
from .errors import StepflowError
from .logging_config import configure_logging

app = typer.Typer(help="CLI for stepflow workflows")

# Command groups
workflow_app = typer.Typer(help="Commands for managing workflows")
run_app = typer.Typer(help="Commands for inspecting and retrying runs")

app.add_typer(workflow_app, name="workflow")
app.add_typer(run_app, name="run")


@app.callback()
def main(
    log_level: Optional[str] = typer.Option(
        None, "--log-level", help="Override the configured log level"
    ),
) -> None:
    """stepflow CLI entry point."""
    config = load_config()
    configure_logging(log_level or config.log_level, config.log_format, force=False)


def _engine() -> Engine:
    return build_engine()


def _fail(message: str) -> None:
    typer.secho(message, fg=typer.colors.RED)
    raise typer.Exit(code=1)


def _echo_run(run: WorkflowRun) -> None:
    typer.echo(f"Run {run.id}: {run.status.value}")
    typer.echo(f"Workflow: {run.workflow_id}")
    typer.echo(f"Trigger: {run.trigger.type}:{run.trigger.value}")
    if run.retry_of:
        typer.echo(f"Retry of: {run.retry_of}")
    if run.error_message:
        typer.echo(f"Error: {run.error_message}")
    for index, step in enumerate(run.steps, start=1):
        line = f"- step {index}: {step.status.value}"
        if step.started_at or step.completed_at:
            line += f" ({step.started_at} -> {step.completed_at})"
        if step.error_message:
            line += f" error: {step.error_message}"
        typer.echo(line)


async def _run_and_wait(engine: Engine, started: Optional[WorkflowRun]) -> Optional[WorkflowRun]:
    if started is None:
        return None
    await engine.runs.wait_for_runs()
    return await engine.runs.get_run(started.id)


@workflow_app.command("create")
def workflow_create(definition: Path) -> None:
    """
    Create a workflow from a YAML or JSON definition file.

    Example:
        stepflow workflow create ./workflows/daily_report.yaml
    """
    if not definition.exists():
        _fail(f"File not found: {definition}")
    try:
        data = yaml.safe_load(definition.read_text(encoding="utf-8")) or {}
        payload = WorkflowCreate.model_validate(data)
        engine = _engine()
        created = asyncio.run(engine.workflows.create_workflow(payload))
    except (yaml.YAMLError, ValidationError, StepflowError) as exc:
        _fail(f"Could not create workflow: {exc}")
        return

    wf = created.workflow
    typer.echo(f"Created workflow {wf.id}: {wf.name}")
    typer.echo(f"Trigger: {wf.trigger.type}:{wf.trigger.value}")
    typer.echo(f"Steps: {len(wf.steps)}")
    typer.echo(f"Estimated execution time: {created.execution_estimate}")


@workflow_app.command("list")
def workflow_list() -> None:
    """List all workflows with their triggers, newest first."""
    engine = _engine()
    workflows = asyncio.run(engine.workflows.list_workflows())
    if not workflows:
        typer.echo("No workflows found")
        return
    for wf in workflows:
        typer.echo(f"{wf.id}\t{wf.name}\t{wf.trigger.type}:{wf.trigger.value}")


@workflow_app.command("show")
def workflow_show(workflow_id: str) -> None:
    """Show a workflow definition with its steps."""
    engine = _engine()
    try:
        wf: Workflow = asyncio.run(engine.workflows.get_workflow(workflow_id))
    except StepflowError:
        _fail("Workflow not found")
        return
    typer.echo(f"Workflow {wf.id}: {wf.name}")
    if wf.description:
        typer.echo(f"Description: {wf.description}")
    typer.echo(f"Trigger: {wf.trigger.type}:{wf.trigger.value}")
    for step in wf.steps:
        typer.echo(f"- {step.step_order}. {step.step_type} {json.dumps(step.step_config)}")
        if step.input_mapping:
            typer.echo(f"  inputs: {json.dumps(step.input_mapping)}")


@app.command("trigger")
def trigger(trigger_type: str, trigger_value: str) -> None:
    """
    Trigger the workflow registered for TYPE and VALUE and wait for the run.

    Example:
        stepflow trigger manual daily_report
    """
    engine = _engine()

    async def _trigger() -> Optional[WorkflowRun]:
        started = await engine.runs.trigger(trigger_type, trigger_value)
        return await _run_and_wait(engine, started)

    run = asyncio.run(_trigger())
    if run is None:
        _fail(f"No workflow found for trigger {trigger_type}:{trigger_value}")
        return
    _echo_run(run)


@run_app.command("list")
def run_list(workflow_id: str) -> None:
    """List runs of a workflow, most recent first."""
    engine = _engine()
    try:
        runs = asyncio.run(engine.runs.list_runs(workflow_id))
    except StepflowError as exc:
        _fail(str(exc))
        return
    if not runs:
        typer.echo("No runs found")
        return
    for run in runs:
        typer.echo(f"{run.id}\t{run.status.value}\t{run.started_at.isoformat()}")


@run_app.command("show")
def run_show(run_id: str) -> None:
    """Show a run with the status of each step."""
    engine = _engine()
    try:
        run = asyncio.run(engine.runs.get_run(run_id))
    except StepflowError:
        _fail("Run not found")
        return
    _echo_run(run)


@run_app.command("retry")
def run_retry(run_id: str) -> None:
    """Retry a failed run as a new run and wait for it."""
    engine = _engine()

    async def _retry() -> Optional[WorkflowRun]:
        started = await engine.runs.retry(run_id)
        return await _run_and_wait(engine, started)

    try:
        run = asyncio.run(_retry())
    except StepflowError as exc:
        _fail(str(exc))
        return
    _echo_run(run)


@app.command("serve")
def serve(
    host: Optional[str] = typer.Option(None, help="Bind address"),
    port: Optional[int] = typer.Option(None, help="Bind port"),
) -> None:
    """Serve the HTTP API with uvicorn."""
    import uvicorn

    from .api import create_app

    config = load_config()
    uvicorn.run(
        create_app(build_engine(config)),
        host=host or config.server.host,
        port=port or config.server.port,
        log_level=config.log_level.lower(),
    )


if __name__ == "__main__":
    app()
