"""
Pairlog CLI - command-line interface for the ingestion backend.

Minimal CLI providing essential commands for automation and server management.
"""

import json
import logging
from pathlib import Path
from typing import Any, Optional

import typer
from rich.console import Console
from rich.table import Table

from pairlog.logging_config import setup_logging

app = typer.Typer(
    name="pairlog",
    help="Pairlog - telemetry ingestion for pair-programming assistant sessions",
    no_args_is_help=True,
)

console = Console()


def _init_logging() -> None:
    # Fall back to console-only logging if the log directory is not writable
    try:
        setup_logging(context="cli")
    except PermissionError:
        logging.basicConfig(level=logging.INFO)


def load_events(path: Path) -> Any:
    """
    Read a batch file: either {"events": [...]} or a bare list of events.

    Raises:
        ValueError: If the file is not valid JSON
    """
    try:
        body = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ValueError(f"{path} is not valid JSON: {e}") from e
    if isinstance(body, dict) and "events" in body:
        return body["events"]
    return body


@app.command()
def ingest(
    path: Path = typer.Argument(..., help="JSON file with a batch of events"),
    dry_run: bool = typer.Option(
        False, "--dry-run", help="Validate events without storing them"
    ),
    show_warnings: bool = typer.Option(
        False, "--warnings", help="List warnings for accepted events"
    ),
) -> None:
    """
    Ingest a batch file of analytics events.

    Runs the file through the same pipeline as POST /api/analytics.
    """
    from pairlog.exceptions import (
        BatchIngestionError,
        BatchRejectedError,
        EventValidationError,
    )
    from pairlog.pipeline.coordinator import BatchCoordinator, validate_batch

    _init_logging()

    if not path.exists():
        console.print(f"[bold red]Error:[/bold red] Path not found: {path}")
        raise typer.Exit(1)

    try:
        events = load_events(path)
    except ValueError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)

    console.print(f"[bold blue]Ingesting events from:[/bold blue] {path}")
    console.print(f"  Dry run: {dry_run}")
    console.print()

    if dry_run:
        from pairlog.pipeline.normalizer import validate_event

        try:
            validate_batch(events)
        except BatchRejectedError as e:
            console.print(f"[bold red]Rejected:[/bold red] {e}")
            raise typer.Exit(1)

        invalid = 0
        for index, raw in enumerate(events):
            try:
                validate_event(raw)
            except EventValidationError as e:
                invalid += 1
                event_id = raw.get("event_id") if isinstance(raw, dict) else None
                console.print(f"  [red]✗[/red] events[{index}] ({event_id}): {e}")
        console.print()
        console.print(
            f"[bold]Summary:[/bold] {len(events) - invalid} valid, {invalid} invalid"
        )
        if invalid:
            raise typer.Exit(1)
        return

    from pairlog.db.connection import db_session

    try:
        with db_session() as session:
            result = BatchCoordinator(session, source_type="cli").ingest(events)
    except BatchRejectedError as e:
        console.print(f"[bold red]Rejected:[/bold red] {e}")
        raise typer.Exit(1)
    except BatchIngestionError as e:
        console.print(f"[bold red]Ingestion failed:[/bold red] {e}")
        raise typer.Exit(1)

    if result.errors:
        table = Table(title="Failed events")
        table.add_column("#", justify="right")
        table.add_column("Event ID")
        table.add_column("Type")
        table.add_column("Kind")
        table.add_column("Error")
        for outcome in result.errors:
            table.add_row(
                str(outcome.index),
                outcome.event_id or "-",
                outcome.event_type or "-",
                outcome.error_kind or "-",
                outcome.error or "",
            )
        console.print(table)

    if show_warnings:
        for outcome in result.outcomes:
            for warning in outcome.warnings:
                console.print(f"  [yellow]⚠[/yellow] {outcome.event_id}: {warning}")

    console.print()
    console.print("[bold]Summary:[/bold]")
    console.print(f"  Batch: {result.batch_id} ({result.status})")
    console.print(f"  Total: {result.total}")
    console.print(f"  Successful: {result.succeeded}")
    console.print(f"  Failed: {result.failed}")
    console.print(f"  Warnings: {result.warning_count}")
    console.print(f"  Time: {result.processing_time_ms}ms")

    if result.rolled_back:
        console.print("[bold red]Batch rolled back: too many failed events[/bold red]")
        raise typer.Exit(1)


@app.command("init-db")
def init_db() -> None:
    """Create all database tables that do not exist yet."""
    from pairlog.db.connection import init_db as create_tables

    _init_logging()
    create_tables()
    console.print("[green]✓ Database schema created[/green]")


@app.command()
def check() -> None:
    """Run the startup checks and report the result."""
    from pairlog.startup import StartupCheckError, run_all_startup_checks

    _init_logging()
    try:
        run_all_startup_checks(exit_on_failure=False)
    except StartupCheckError as e:
        console.print(f"[bold red]{e}[/bold red]")
        raise typer.Exit(1)
    console.print("[green]✓ All startup checks passed[/green]")


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, help="Host to bind to"),
    port: Optional[int] = typer.Option(None, help="Port to bind to"),
    reload: bool = typer.Option(False, help="Enable auto-reload"),
) -> None:
    """
    Start the FastAPI server.

    Runs the Pairlog ingestion API.
    """
    import uvicorn

    from pairlog.config import settings

    host = host or settings.api_host
    port = port or settings.api_port

    console.print("[bold green]Starting Pairlog API server...[/bold green]")
    console.print(f"  Host: {host}")
    console.print(f"  Port: {port}")
    console.print(f"  Reload: {reload or settings.api_reload}")
    console.print(f"\n  API docs: http://{host}:{port}/docs")

    uvicorn.run(
        "pairlog.api.app:app",
        host=host,
        port=port,
        reload=reload or settings.api_reload,
    )


if __name__ == "__main__":
    app()
