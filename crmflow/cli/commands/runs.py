"""crmflow runs / run: Workflow run history."""

import asyncio
from typing import Optional

import typer
from rich import box
from rich.console import Console
from rich.table import Table

from crmflow.cli.commands.render import STATUS_COLOR, short

console = Console()


async def _runs(status: Optional[str], limit: int) -> list:
    from crmflow.db import database
    from crmflow.db.repository import Repository

    async with database.async_session() as session:
        return await Repository(session).list_runs(status=status, limit=limit)


async def _run(run_id: str) -> Optional[dict]:
    from crmflow.core.factory import build_dispatcher
    from crmflow.db import database

    async with database.async_session() as session:
        return await build_dispatcher(session).get_run_status(run_id)


def _colored(status: str) -> str:
    color = STATUS_COLOR.get(status, "white")
    return f"[{color}]{status}[/{color}]"


def runs_list(
    status: Optional[str] = typer.Option(None, "--status", "-s", help="running|completed|stopped|failed"),
    limit: int = typer.Option(20, "--limit", "-n"),
):
    """List recent workflow runs, newest first."""
    runs = asyncio.run(_runs(status, limit))
    if not runs:
        console.print("[dim]No runs found.[/dim]")
        return

    table = Table(box=box.ROUNDED, header_style="bold dim", title=f"[bold]{len(runs)} Runs[/bold]")
    table.add_column("Run", style="cyan")
    table.add_column("Status")
    table.add_column("Triggered by")
    table.add_column("Entity")
    table.add_column("Started", style="dim")
    table.add_column("Error", style="dim")
    for r in runs:
        entity = f"{r.entity_type}:{r.entity_id}" if r.entity_id else ""
        table.add_row(r.id, _colored(r.status.value), r.triggered_by, entity,
                      r.started_at.strftime("%Y-%m-%d %H:%M:%S"), short(r.error_message or "", 40))
    console.print(table)


def run_show(run_id: str = typer.Argument(..., help="Workflow run id")):
    """Show one run and its step logs in execution order."""
    status = asyncio.run(_run(run_id))
    if status is None:
        console.print(f"[red]Run not found: {run_id}[/red]")
        raise typer.Exit(1)

    run = status["run"]
    console.print(f"[bold]Run[/bold] [cyan]{run.id}[/cyan]  {_colored(run.status.value)}  "
                  f"[dim]triggered by {run.triggered_by}[/dim]")
    if run.error_message:
        console.print(f"[red]{run.error_message}[/red]")

    table = Table(box=box.SIMPLE, header_style="bold dim")
    table.add_column("#", justify="right")
    table.add_column("Step", style="cyan")
    table.add_column("Status")
    table.add_column("Output / error")
    for log in status["logs"]:
        detail = log.error_message if log.error_message else short(log.output if log.output is not None else "")
        table.add_row(str(log.step_order), log.step_name, _colored(log.status.value), detail)
    console.print(table)
