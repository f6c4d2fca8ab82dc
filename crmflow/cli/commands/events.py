"""crmflow process / dispatch / emit / monitor: Event-side commands."""

import asyncio
from typing import Optional

import typer
from rich import box
from rich.console import Console
from rich.table import Table

from crmflow.cli.commands.render import STATUS_COLOR, parse_json_option

console = Console()


def _print_dispatch(result) -> None:
    if result.skipped or not result.results:
        console.print(f"[dim]{result.event_id}:[/dim] {result.message}")
        return
    table = Table(box=box.SIMPLE, header_style="bold dim", title=f"Event {result.event_id}")
    table.add_column("Workflow", style="cyan")
    table.add_column("Run")
    table.add_column("Status")
    table.add_column("Steps", justify="right")
    table.add_column("Error", style="dim")
    for outcome in result.results:
        color = STATUS_COLOR.get(outcome.status.value, "white")
        table.add_row(
            outcome.workflow_slug or "",
            outcome.run_id or "[dim]-[/dim]",
            f"[{color}]{outcome.status.value}[/{color}]",
            str(outcome.steps_executed),
            outcome.error or "",
        )
    console.print(table)


async def _process(limit: int) -> list:
    from crmflow.core.factory import build_dispatcher
    from crmflow.db import database

    async with database.async_session() as session:
        return await build_dispatcher(session).process_pending(limit)


async def _dispatch(event_id: str):
    from crmflow.core.factory import build_dispatcher
    from crmflow.db import database

    async with database.async_session() as session:
        return await build_dispatcher(session).dispatch_by_id(event_id)


async def _emit(directive, process_now: bool):
    from crmflow.config import config
    from crmflow.core.factory import build_dispatcher
    from crmflow.db import database

    async with database.async_session() as session:
        dispatcher = build_dispatcher(session)
        event = await dispatcher.emit_event(directive, team_id=config.default_team_id, process_immediately=False)
        result = await dispatcher.dispatch(event) if process_now else None
        return event, result


def process_pending(
    limit: int = typer.Option(10, "--limit", "-n", help="Maximum events to dispatch"),
):
    """Dispatch the oldest unprocessed events.

    Example:
        crmflow process --limit 25
    """
    try:
        results = asyncio.run(_process(limit))
    except Exception as exc:
        console.print(f"[red]Error:[/red] {exc}")
        raise typer.Exit(1)
    if not results:
        console.print("[dim]No pending events.[/dim]")
        return
    for result in results:
        _print_dispatch(result)
    console.print(f"[bold]{len(results)}[/bold] event(s) processed.")


def dispatch_event(event_id: str = typer.Argument(..., help="Stored event id")):
    """Dispatch one stored event to its workflows."""
    from crmflow.exceptions import EventNotFound

    try:
        result = asyncio.run(_dispatch(event_id))
    except EventNotFound as exc:
        console.print(f"[red]{exc.message}[/red]")
        raise typer.Exit(1)
    _print_dispatch(result)


def emit_event(
    event_type: str = typer.Argument(..., help="Event type, e.g. contact.created"),
    entity_type: Optional[str] = typer.Option(None, "--entity-type"),
    entity_id: Optional[str] = typer.Option(None, "--entity-id"),
    payload: Optional[str] = typer.Option(None, "--payload", help="JSON object"),
    process_now: bool = typer.Option(False, "--process", help="Dispatch immediately instead of queueing"),
):
    """Write an event into the queue.

    Example:
        crmflow emit contact.created --entity-type contact --entity-id c-1 --payload '{"source": "form"}'
    """
    from crmflow.types import EmitDirective

    try:
        body = parse_json_option(payload, "--payload")
    except typer.BadParameter as exc:
        console.print(f"[red]Error:[/red] {exc}")
        raise typer.Exit(2)
    directive = EmitDirective(event_type=event_type, entity_type=entity_type, entity_id=entity_id, payload=body)

    event, result = asyncio.run(_emit(directive, process_now))
    console.print(f"[green]Emitted[/green] {event.type} [dim]({event.id})[/dim]")
    if result is not None:
        _print_dispatch(result)


async def _monitor(interval: float, batch_size: int) -> None:
    from crmflow.core.factory import build_dispatcher
    from crmflow.db import database
    from crmflow.triggers.monitor import EventMonitor

    async with database.async_session() as session:
        dispatcher = build_dispatcher(session)
        monitor = EventMonitor(dispatcher, dispatcher.repository, interval=interval, batch_size=batch_size)
        await monitor.start()
        try:
            while monitor.running:
                await asyncio.sleep(3600)
        finally:
            await monitor.stop()


def run_monitor(
    interval: float = typer.Option(5.0, "--interval", help="Seconds between polls"),
    batch_size: int = typer.Option(10, "--batch-size", help="Events per poll"),
):
    """Poll the event queue until Ctrl-C."""
    console.print(f"[bold]Monitoring events[/bold] [dim](every {interval}s, batch {batch_size}; Ctrl-C to stop)[/dim]")
    try:
        asyncio.run(_monitor(interval, batch_size))
    except KeyboardInterrupt:
        console.print("[dim]Stopped.[/dim]")
