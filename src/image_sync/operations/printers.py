"""
Human-readable output formatting.

Centralizes all CLI output formatting so commands stay thin. Tables go
through Rich; --json output goes through typer.echo so it stays pipeable.
"""
from __future__ import annotations

from typing import List

import typer
from rich.console import Console
from rich.table import Table

from ..models import SyncReport, SyncState

_console = Console()

_STATE_STYLES = {
    SyncState.DONE: "green",
    SyncState.FAILED: "red",
    SyncState.DIFFED: "yellow",
}


def print_report(report: SyncReport, verbose: bool = False, plan_only: bool = False) -> None:
    """
    Print the outcome of a sync or plan run.

    Args:
        report: Run outcome
        verbose: Also show source and destination tag lists
        plan_only: Label the tag column as planned rather than copied
    """
    table = Table(title="Sync plan" if plan_only else "Sync report")
    table.add_column("Image", style="cyan")
    table.add_column("State")
    table.add_column("Destination")
    if verbose:
        table.add_column("Source tags")
        table.add_column("Destination tags")
    table.add_column("Missing" if plan_only else "Copied", style="yellow")

    for plan in report.plans:
        style = _STATE_STYLES.get(plan.state, "white")
        row = [
            plan.image,
            f"[{style}]{plan.state.value}[/]",
            "present" if plan.destination_exists else "absent",
        ]
        if verbose:
            row += [_join(plan.source_tags), _join(plan.destination_tags)]
        row.append(_join(plan.missing_tags if plan_only else plan.copied_tags))
        table.add_row(*row)

    _console.print(table)

    for failure in report.failures:
        _console.print(
            f"[red]✗[/] {failure.image}: {failure.error_type} in {failure.state.value}: {failure.message}"
        )

    if not plan_only:
        _console.print(f"[bold]Copied:[/] {report.copied_count} tag(s)")


def print_report_json(report: SyncReport) -> None:
    """Print the run outcome as a JSON document."""
    typer.echo(report.model_dump_json(indent=2))


def print_tags(image: str, tags: List[str]) -> None:
    """Print one tag per line, newest first as the registry returned them."""
    if not tags:
        typer.echo(f"No tags for {image}", err=True)
        return
    for tag in tags:
        typer.echo(tag)


def _join(tags: List[str]) -> str:
    return ", ".join(tags) if tags else "-"
