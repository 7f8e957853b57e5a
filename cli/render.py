from __future__ import annotations

from typing import Any, Dict, Iterable

import typer

from models.records import MONTH_KEYS


def echo_heading(text: str) -> None:
    typer.secho(text, bold=True)


def echo_key_values(pairs: Iterable[tuple[str, Any]]) -> None:
    for key, value in pairs:
        typer.echo(f"{key}: {value}")


def render_summary(payload: Dict[str, Any]) -> None:
    echo_heading(f"Rainfall {payload.get('year')}")
    echo_key_values([("total", payload.get("total"))])

    monthly = payload.get("monthly") or {}
    typer.echo()
    echo_heading("Monthly")
    if not monthly:
        typer.echo("No monthly values recorded.")
        return
    ordered = [month for month in MONTH_KEYS if month in monthly]
    ordered.extend(sorted(set(monthly) - set(MONTH_KEYS)))
    for month in ordered:
        typer.echo(f"  - {month}: {monthly[month]}")


def render_record(payload: Dict[str, Any]) -> None:
    echo_heading("Rainfall Record")
    echo_key_values(
        [
            ("id", payload.get("id")),
            ("amount", payload.get("amount")),
            ("created_at", payload.get("created_at")),
            ("notes", payload.get("notes")),
        ]
    )
