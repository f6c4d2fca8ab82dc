"""crmflow init-db / seed: Create tables and load workflow definitions."""

import asyncio
from typing import Optional

import typer
from rich import box
from rich.console import Console
from rich.table import Table

console = Console()


async def _init() -> None:
    from crmflow.db import database
    await database.init_db()


async def _seed(path: Optional[str]) -> list:
    from crmflow.db import database
    from crmflow.db.repository import Repository
    from crmflow.db.seed import seed_workflows

    await database.init_db()
    async with database.async_session() as session:
        await seed_workflows(session, path)
        return await Repository(session).list_workflows()


def init_database():
    """Create every crmflow table (idempotent)."""
    try:
        asyncio.run(_init())
    except Exception as exc:
        console.print(f"[red]Error:[/red] {exc}")
        console.print("[dim]Check CRMFLOW_DATABASE_URL in .env[/dim]")
        raise typer.Exit(1)
    console.print("[bold green]Database ready.[/bold green]")


def seed_db(
    path: Optional[str] = typer.Option(None, "--file", "-f", help="workflows.yaml (default: ./workflows.yaml or bundled)"),
):
    """Upsert workflow definitions by slug.

    Example:
        crmflow seed
        crmflow seed --file my_workflows.yaml
    """
    try:
        definitions = asyncio.run(_seed(path))
    except Exception as exc:
        console.print(f"[red]Error:[/red] {exc}")
        raise typer.Exit(1)

    table = Table(
        box=box.ROUNDED,
        header_style="bold dim",
        title=f"[bold]{len(definitions)} Workflows[/bold]",
    )
    table.add_column("Slug", style="cyan")
    table.add_column("Trigger")
    table.add_column("Steps", justify="right")
    table.add_column("Active", width=8)
    for d in definitions:
        table.add_row(d.slug, d.trigger_event, str(len(d.steps)), "yes" if d.is_active else "[dim]no[/dim]")
    console.print("[bold green]Workflows seeded.[/bold green]")
    console.print(table)
