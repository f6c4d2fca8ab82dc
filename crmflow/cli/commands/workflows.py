"""crmflow workflows / trigger: Inspect and manually run workflows."""

import asyncio
from typing import Optional

import typer
from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from crmflow.cli.commands.render import STATUS_COLOR, parse_json_option, short

console = Console()


async def _list(active_only: bool) -> list:
    from crmflow.db import database
    from crmflow.db.repository import Repository

    async with database.async_session() as session:
        return await Repository(session).list_workflows(active_only=active_only)


async def _trigger(slug: str, context: dict):
    from crmflow.core.factory import build_dispatcher
    from crmflow.db import database

    async with database.async_session() as session:
        return await build_dispatcher(session).trigger_workflow(slug, context)


def workflows_list(
    active_only: bool = typer.Option(False, "--active", help="Only active workflows"),
    steps: bool = typer.Option(False, "--steps", help="Show each workflow's steps"),
):
    """List stored workflow definitions.

    Example:
        crmflow workflows --steps
    """
    definitions = asyncio.run(_list(active_only))
    if not definitions:
        console.print("[yellow]No workflows stored.[/yellow] [dim]Run [cyan]crmflow seed[/cyan] first.[/dim]")
        return

    table = Table(box=box.ROUNDED, header_style="bold dim", title=f"[bold]{len(definitions)} Workflows[/bold]")
    table.add_column("Slug", style="cyan")
    table.add_column("Trigger")
    table.add_column("Steps", justify="right")
    table.add_column("Active", width=8)
    table.add_column("Description", style="dim")
    for d in definitions:
        table.add_row(d.slug, d.trigger_event, str(len(d.steps)),
                      "yes" if d.is_active else "[dim]no[/dim]", short(d.description, 50))
    console.print(table)

    if steps:
        for d in definitions:
            step_table = Table(box=box.SIMPLE, header_style="bold dim", title=d.slug)
            step_table.add_column("#", justify="right")
            step_table.add_column("Name", style="cyan")
            step_table.add_column("Type")
            step_table.add_column("Output")
            step_table.add_column("On error", style="dim")
            for s in d.ordered_steps():
                step_table.add_row(str(s.step_order), s.name, s.action_type.value,
                                   s.output_variable or "", s.on_error.value)
            console.print(step_table)


def trigger_workflow(
    slug: str = typer.Argument(..., help="Workflow slug"),
    context: Optional[str] = typer.Option(None, "--context", "-c", help="Initial context as a JSON object"),
):
    """Run one workflow now, outside of any event.

    Example:
        crmflow trigger contact_agent --context '{"event": {"entity_id": "c-1"}}'
    """
    from crmflow.exceptions import WorkflowNotFound

    try:
        seed = parse_json_option(context, "--context")
    except typer.BadParameter as exc:
        console.print(f"[red]Error:[/red] {exc}")
        raise typer.Exit(2)

    try:
        outcome = asyncio.run(_trigger(slug, seed))
    except WorkflowNotFound as exc:
        console.print(f"[red]{exc.message}[/red]")
        raise typer.Exit(1)

    color = STATUS_COLOR.get(outcome.status.value, "white")
    lines = [
        f"[bold]Run:[/bold]    {outcome.run_id}",
        f"[bold]Status:[/bold] [{color}]{outcome.status.value}[/{color}]",
        f"[bold]Steps:[/bold]  {outcome.steps_executed}",
    ]
    if outcome.error:
        lines.append(f"[bold]Error:[/bold]  [red]{outcome.error}[/red]")
    if outcome.emitted_events:
        lines.append(f"[bold]Emitted:[/bold] {', '.join(outcome.emitted_events)}")
    console.print(Panel("\n".join(lines), title=f"[cyan]{slug}[/cyan]", expand=False))
    if not outcome.success:
        raise typer.Exit(1)
