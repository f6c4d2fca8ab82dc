"""crmflow CLI: Typer application."""

import typer
from rich.console import Console

from crmflow.version import __version__

app = typer.Typer(
    name="crmflow",
    help="crmflow: event-driven CRM workflow engine.",
    no_args_is_help=True,
    invoke_without_command=True,
)
console = Console()


@app.callback()
def main(
    ctx: typer.Context,
    version: bool = typer.Option(False, "--version", "-v", is_eager=True, help="Show version"),
    log_level: str = typer.Option(None, "--log-level", help="Override CRMFLOW_LOG_LEVEL"),
):
    """crmflow CLI."""
    if version:
        console.print(f"crmflow v{__version__}")
        raise typer.Exit()
    from crmflow.callbacks.logging import configure_logging
    from crmflow.config import config
    configure_logging(log_level or config.log_level)
    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())


# ── Database ───────────────────────────────────────────────────────────────────
from crmflow.cli.commands import db  # noqa: E402

app.command(name="init-db", help="Create all tables")(db.init_database)
app.command(name="seed", help="Load workflow definitions from YAML")(db.seed_db)

# ── Events ─────────────────────────────────────────────────────────────────────
from crmflow.cli.commands import events  # noqa: E402

app.command(name="process", help="Dispatch the oldest unprocessed events")(events.process_pending)
app.command(name="dispatch", help="Dispatch one stored event by id")(events.dispatch_event)
app.command(name="emit", help="Write an event (optionally dispatch it now)")(events.emit_event)
app.command(name="monitor", help="Poll for unprocessed events until interrupted")(events.run_monitor)

# ── Workflows and runs ─────────────────────────────────────────────────────────
from crmflow.cli.commands import workflows, runs  # noqa: E402

app.command(name="workflows", help="List workflow definitions")(workflows.workflows_list)
app.command(name="trigger", help="Run one workflow by slug")(workflows.trigger_workflow)
app.command(name="runs", help="List recent workflow runs")(runs.runs_list)
app.command(name="run", help="Show one run with its step logs")(runs.run_show)

# ── Server ─────────────────────────────────────────────────────────────────────
from crmflow.cli.commands import serve  # noqa: E402

app.command(name="serve", help="Start the HTTP API")(serve.serve_api)


if __name__ == "__main__":
    app()
