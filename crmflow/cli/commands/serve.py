"""crmflow serve: Start the HTTP API with uvicorn."""

from typing import Optional

import typer
from rich.console import Console

console = Console()


def serve_api(
    host: Optional[str] = typer.Option(None, "--host", help="Bind address (default CRMFLOW_HOST)"),
    port: Optional[int] = typer.Option(None, "--port", "-p", help="Port (default CRMFLOW_PORT)"),
    reload: bool = typer.Option(False, "--reload", help="Auto-reload on code changes"),
):
    """Serve POST /process-event and the run/workflow endpoints.

    Example:
        crmflow serve --port 8080
    """
    import uvicorn

    from crmflow.config import config

    bind_host = host or config.host
    bind_port = port or config.port
    console.print(f"[bold]crmflow[/bold] API on [cyan]http://{bind_host}:{bind_port}[/cyan]")
    uvicorn.run("crmflow.api.main:app", host=bind_host, port=bind_port, reload=reload,
                log_level=config.log_level.lower())
