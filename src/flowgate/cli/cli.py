"""Flowgate CLI - pipeline service and maintenance commands."""

import json
from dataclasses import replace
from typing import NoReturn, Optional

import typer
import uvicorn
from dotenv import load_dotenv

from flowgate import __version__
from flowgate.cli.db import app as db_app
from flowgate.core.config import ServiceConfig
from flowgate.core.database import fetch_questions
from flowgate.core.errors import FlowgateError
from flowgate.core.service import FlowgateService
from flowgate.core.substrate import LocalSubstrate, RunStatus
from flowgate.core.utils import setup_logging
from flowgate.core.workflow.cascade import cascade as run_cascade
from flowgate.core.workflow.questions import all_answered
from flowgate.core.workflow.rollup import rollup as run_rollup
from flowgate.core.workflow.sync import sync_ticket
from flowgate.core.workflow.taxonomy import Phase
from flowgate.core.workflow.types import RouteOutcome
from flowgate.webhooks.app import create_app

# Load environment variables
load_dotenv()

app = typer.Typer(
    invoke_without_command=True,
    no_args_is_help=True,
    help="Flowgate CLI - status-driven delivery pipeline",
)
app.add_typer(db_app, name="db")


def version_callback(value: bool):
    """Print version and exit."""
    if value:
        typer.echo(f"Flowgate CLI version {__version__}")
        raise typer.Exit()


def _fail(message: str) -> NoReturn:
    typer.echo(f"Error: {message}", err=True)
    raise typer.Exit(1)


def _load_config(log_level: Optional[str] = None) -> ServiceConfig:
    try:
        config = ServiceConfig.from_env()
        if log_level:
            config = replace(config, log_level=log_level)
    except ValueError as e:
        _fail(str(e))
    setup_logging(config.log_level, config.log_file)
    return config


@app.callback()
def main(
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        "-v",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
):
    """Flowgate CLI - status-driven delivery pipeline."""
    pass


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, help="Interface to bind (default: FLOWGATE_HOST)"),
    port: Optional[int] = typer.Option(None, help="Port to listen on (default: FLOWGATE_PORT)"),
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Console log level"),
):
    """Run the webhook server.

    Example:
        flowgate serve --port 8080
    """
    config = _load_config(log_level)
    service = FlowgateService(config)
    try:
        service.check_ready()
    except ValueError as e:
        _fail(str(e))

    uvicorn.run(
        create_app(service),
        host=host or config.host,
        port=port or config.port,
        log_level=config.log_level.lower(),
    )


@app.command()
def trigger(
    ticket: str = typer.Argument(..., help="Tracker id or identifier (e.g. ENG-12)"),
    project: Optional[str] = typer.Option(None, "--project", "-p", help="Project id"),
    wait: bool = typer.Option(True, "--wait/--no-wait", help="Wait for a started phase"),
):
    """Route a ticket on its current status, as if its status had just changed.

    Example:
        flowgate trigger ENG-12
    """
    config = _load_config()
    service = FlowgateService(config)
    try:
        result = service.router_for(project).handle_status_event(
            ticket, project_id=project, force=True
        )
    except (FlowgateError, ValueError) as e:
        _fail(str(e))

    typer.echo(f"{result.external_id}: {result.outcome.value}")
    if result.cascade is not None:
        typer.echo(
            f"Cascaded to {len(result.cascade.cascaded)} child(ren), "
            f"{len(result.cascade.failed)} failed, {len(result.cascade.skipped)} skipped"
        )
    if result.rollup is not None:
        typer.echo(result.rollup.reason or f"Parent moved to '{result.rollup.new_status}'")

    if result.outcome is not RouteOutcome.STARTED or not wait:
        return
    substrate = service.substrate
    if isinstance(substrate, LocalSubstrate) and result.run_id:
        handle = substrate.get_handle(result.run_id)
        if handle is not None:
            status = substrate.wait(handle)
            typer.echo(f"Run {handle.run_id} {status.value}")
            if status is RunStatus.FAILED:
                raise typer.Exit(1)


@app.command()
def run(
    phase: Phase = typer.Argument(..., help="Phase to execute"),
    ticket: str = typer.Argument(..., help="Tracker id or identifier"),
    project: Optional[str] = typer.Option(None, "--project", "-p", help="Project id"),
):
    """Execute one phase synchronously, regardless of the ticket's status.

    Example:
        flowgate run refinement ENG-12
    """
    config = _load_config()
    service = FlowgateService(config)
    try:
        output = service.run_phase(phase, ticket, project_id=project)
    except (FlowgateError, ValueError) as e:
        _fail(str(e))

    typer.echo(f"{phase.label} completed for {ticket}")
    if output.questions:
        typer.echo(f"{len(output.questions)} question(s) posted")


@app.command()
def sync(
    ticket: str = typer.Argument(..., help="Tracker id or identifier"),
    project: Optional[str] = typer.Option(None, "--project", "-p", help="Project id"),
):
    """Mirror a ticket from the tracker.

    Example:
        flowgate sync ENG-12
    """
    _load_config()
    try:
        result = sync_ticket(ticket, project_id=project)
    except (FlowgateError, ValueError) as e:
        _fail(str(e))

    changes = f" ({', '.join(result.changed_fields)})" if result.changed_fields else ""
    typer.echo(f"{result.identifier or result.external_id}: {result.action}{changes}")


@app.command()
def cascade(
    ticket: str = typer.Argument(..., help="Parent tracker id or identifier"),
    status: str = typer.Argument(..., help="Trigger status to propagate"),
    project: Optional[str] = typer.Option(None, "--project", "-p", help="Project id"),
):
    """Propagate a trigger status to every child of a ticket."""
    config = _load_config()
    service = FlowgateService(config)
    try:
        parent = sync_ticket(ticket, project_id=project).ticket
        result = run_cascade(
            parent.external_id,
            status,
            service.taxonomy(project),
            max_workers=config.cascade_workers,
        )
    except (FlowgateError, ValueError) as e:
        _fail(str(e))

    typer.echo(f"{result.children_count} child(ren)")
    for child in result.cascaded:
        outcome = "moved" if child.success else f"failed: {child.error}"
        typer.echo(f"  {child.external_id}: {outcome}")
    for skip in result.skipped:
        typer.echo(f"  {skip.external_id}: skipped ({skip.reason})")
    if result.failed:
        raise typer.Exit(1)


@app.command()
def rollup(
    ticket: str = typer.Argument(..., help="Child tracker id or identifier"),
    project: Optional[str] = typer.Option(None, "--project", "-p", help="Project id"),
):
    """Recompute the parent status of a ticket from its siblings."""
    config = _load_config()
    service = FlowgateService(config)
    try:
        child = sync_ticket(ticket, project_id=project).ticket
    except (FlowgateError, ValueError) as e:
        _fail(str(e))

    result = run_rollup(child.external_id, service.taxonomy(project))
    if result.updated:
        typer.echo(f"{result.parent_id}: '{result.previous_status}' -> '{result.new_status}'")
    else:
        typer.echo(f"Not updated: {result.reason}")


@app.command()
def questions(
    ticket: str = typer.Argument(..., help="Tracker id of the ticket"),
):
    """Show the clarification questions of a ticket and their answers."""
    _load_config()
    try:
        status = all_answered(ticket)
        items = fetch_questions(ticket)
    except ValueError as e:
        _fail(str(e))

    typer.echo(f"{status.answered}/{status.total} answered, {status.pending} pending")
    for item in items:
        marker = "x" if item.answered else " "
        typer.echo(f"[{marker}] {item.question}")
        if item.answered and item.answer:
            typer.echo(f"    -> {item.answer}")


@app.command()
def taxonomy(
    project: Optional[str] = typer.Option(None, "--project", "-p", help="Project id"),
    as_json: bool = typer.Option(False, "--json", help="Print the taxonomy as JSON"),
):
    """Show the status taxonomy in effect for a project."""
    config = _load_config()
    service = FlowgateService(config)
    try:
        current = service.taxonomy(project)
    except FlowgateError as e:
        _fail(str(e))

    if as_json:
        typer.echo(json.dumps(current.model_dump(), indent=2))
        return

    for rank, name in enumerate(current.rank_order):
        flags = []
        if current.is_trigger_status(name):
            flags.append("trigger")
        if current.is_cascade_status(name):
            flags.append("cascade")
        if current.is_rollup_status(name):
            flags.append("rollup")
        suffix = f"  [{', '.join(flags)}]" if flags else ""
        typer.echo(f"{rank:2d}  {name}{suffix}")


if __name__ == "__main__":
    app()
