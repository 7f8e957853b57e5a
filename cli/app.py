from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

import typer

from cli.client import ApiClient
from cli.config import CLIConfig, load_config
from cli.render import render_record, render_summary


@dataclass
class CLIState:
    config: CLIConfig
    client: ApiClient


app = typer.Typer(
    help="Utilities for recording rainfall and reading the yearly rollups.",
    context_settings={"help_option_names": ["-h", "--help"]},
)


def _get_state(ctx: typer.Context) -> CLIState:
    state = ctx.obj
    if not isinstance(state, CLIState):
        raise typer.Exit(code=1, message="CLI state is uninitialized.")
    return state


@app.callback()
def main(
    ctx: typer.Context,
    base_url: Optional[str] = typer.Option(
        None,
        "--base-url",
        "-b",
        help="Rainfall API base URL (defaults to API_BASE_URL env or http://localhost:8000).",
    ),
    timeout: Optional[float] = typer.Option(
        None,
        "--timeout",
        help="Seconds to wait for each HTTP request.",
    ),
) -> None:
    """Entry point for the CLI."""
    config = load_config(base_url=base_url, request_timeout=timeout)
    client = ApiClient(config)
    ctx.obj = CLIState(config=config, client=client)
    ctx.call_on_close(client.close)


@app.command("add")
def add_command(
    ctx: typer.Context,
    amount: str = typer.Argument(..., help="Rainfall amount to record."),
    notes: Optional[str] = typer.Option(None, "--notes", "-n", help="Free-form notes."),
) -> None:
    """Record a new rainfall measurement."""
    state = _get_state(ctx)
    result = state.client.add_rainfall(amount, notes)
    typer.secho(result, fg=typer.colors.GREEN)


@app.command("summary")
def summary_command(
    ctx: typer.Context,
    year: int = typer.Argument(..., help="Calendar year to show."),
) -> None:
    """Show the total and monthly rainfall for a year."""
    state = _get_state(ctx)
    render_summary(state.client.get_summary(year))


@app.command("record")
def record_command(
    ctx: typer.Context,
    record_id: str = typer.Argument(..., help="Identifier returned by the add command."),
) -> None:
    """Show a single rainfall measurement."""
    state = _get_state(ctx)
    render_record(state.client.get_record(record_id))


@app.command("update")
def update_command(
    ctx: typer.Context,
    record_id: str = typer.Argument(..., help="Identifier of the measurement to change."),
    amount: Optional[float] = typer.Option(None, "--amount", help="New rainfall amount."),
    created_at: Optional[str] = typer.Option(
        None, "--created-at", help="New ISO-8601 measurement timestamp."
    ),
    notes: Optional[str] = typer.Option(None, "--notes", "-n", help="New notes."),
) -> None:
    """Change an existing rainfall measurement."""
    changes: Dict[str, Any] = {}
    if amount is not None:
        changes["amount"] = amount
    if created_at is not None:
        changes["created_at"] = created_at
    if notes is not None:
        changes["notes"] = notes
    if not changes:
        raise typer.BadParameter("Provide at least one of --amount, --created-at or --notes.")

    state = _get_state(ctx)
    render_record(state.client.update_record(record_id, changes))


@app.command("delete")
def delete_command(
    ctx: typer.Context,
    record_id: str = typer.Argument(..., help="Identifier of the measurement to delete."),
) -> None:
    """Delete a rainfall measurement."""
    state = _get_state(ctx)
    state.client.delete_record(record_id)
    typer.secho(f"Deleted record {record_id}.", fg=typer.colors.GREEN)
