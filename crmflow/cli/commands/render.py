"""Shared rich formatting and option parsing for CLI commands."""

import json
from typing import Optional

import typer

STATUS_COLOR = {
    "running": "yellow",
    "completed": "green",
    "stopped": "cyan",
    "failed": "red",
    "skipped": "dim",
}


def parse_json_option(raw: Optional[str], option: str) -> dict:
    """Parse a JSON-object option value; empty means {}."""
    if not raw:
        return {}
    try:
        value = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise typer.BadParameter(f"{option} is not valid JSON: {exc.msg}")
    if not isinstance(value, dict):
        raise typer.BadParameter(f"{option} must be a JSON object")
    return value


def short(value, width: int = 60) -> str:
    text = value if isinstance(value, str) else json.dumps(value, default=str)
    return text if len(text) <= width else text[: width - 1] + "…"
