"""@tool decorator for registering functions as crmflow tools.

Usage:
    @tool(name="classify_email", description="Personal vs company email")
    async def classify_email(email: str = "", **kwargs) -> dict:
        ...

    @tool(uses_store=True)
    async def get_contact(repo, contact_id: str = "", **kwargs) -> dict:
        ...

The ToolDefinition's JSON-schema parameters come from the signature. Tools
flagged ``uses_store`` receive the Repository as their first argument when a
registry is bound to one (see ToolRegistry.load_registered).
"""

import inspect
from typing import Any, Callable

from crmflow.types import ToolDefinition

# name -> (definition, implementation); filled as modules are imported
_registered_tools: dict[str, tuple[ToolDefinition, Callable[..., Any]]] = {}

_JSON_TYPES = {str: "string", int: "integer", float: "number", bool: "boolean", list: "array", dict: "object"}
_BOUND_PARAMS = {"self", "repo"}
_VARIADIC = (inspect.Parameter.VAR_KEYWORD, inspect.Parameter.VAR_POSITIONAL)


def _parameter_schema(func: Callable[..., Any]) -> dict:
    """JSON schema for the keyword inputs a workflow may map onto *func*."""
    properties: dict[str, dict] = {}
    required: list[str] = []
    for pname, param in inspect.signature(func).parameters.items():
        if pname in _BOUND_PARAMS or param.kind in _VARIADIC:
            continue
        properties[pname] = {
            "type": _JSON_TYPES.get(param.annotation, "string"),
            "description": f"Parameter: {pname}",
        }
        if param.default is inspect.Parameter.empty:
            required.append(pname)
    return {"type": "object", "properties": properties, "required": required}


def tool(
    name: str = None,
    description: str = None,
    timeout_seconds: int = 30,
    uses_store: bool = False,
):
    """Register an async function as a crmflow tool.

    Args:
        name: Tool name (defaults to function name)
        description: Tool description (defaults to first docstring line)
        timeout_seconds: Per-call bound enforced by the Sandbox
        uses_store: Implementation takes a Repository as first positional argument
    """
    def decorator(func):
        definition = ToolDefinition(
            name=name or func.__name__,
            description=description or (func.__doc__ or "").strip().split("\n")[0],
            parameters=_parameter_schema(func),
            timeout_seconds=timeout_seconds,
            uses_store=uses_store,
        )
        _registered_tools[definition.name] = (definition, func)
        func._crmflow_tool = definition
        return func

    return decorator


def get_registered_tools() -> dict[str, tuple[ToolDefinition, Callable[..., Any]]]:
    """Snapshot of every @tool registration made so far."""
    return dict(_registered_tools)
