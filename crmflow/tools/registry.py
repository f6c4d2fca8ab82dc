"""Central registry of all available tools."""

import functools
import logging
from typing import Any, Callable, Optional

from crmflow.types import ToolDefinition
from crmflow.exceptions import ToolError
from crmflow.tools.sandbox import Sandbox

logger = logging.getLogger(__name__)


class ToolRegistry:
    """Central registry of all available tools."""

    def __init__(self, sandbox: Optional[Sandbox] = None, default_timeout: Optional[int] = None):
        self._tools: dict[str, ToolDefinition] = {}
        self._implementations: dict[str, Callable[..., Any]] = {}
        self._sandbox = sandbox or Sandbox()
        self._default_timeout = default_timeout

    def register(self, definition: ToolDefinition, implementation: Callable[..., Any]) -> None:
        """Register a tool with its definition and implementation function.

        Args:
            definition: Tool metadata and schema
            implementation: Callable that executes the tool
        """
        self._tools[definition.name] = definition
        self._implementations[definition.name] = implementation

    def load_registered(self, repository=None) -> int:
        """Register every @tool-decorated function collected so far.

        Tools flagged ``uses_store`` are bound to *repository*; they are
        skipped when no repository is given.

        Returns:
            Number of tools registered.
        """
        import crmflow.tools.builtin  # noqa: F401  registers @tool functions
        from crmflow.tools.plugin import get_registered_tools

        count = 0
        for name, (definition, fn) in get_registered_tools().items():
            if definition.uses_store:
                if repository is None:
                    continue
                fn = functools.partial(fn, repository)
            self.register(definition, fn)
            count += 1
        return count

    def has(self, name: str) -> bool:
        return name in self._tools

    def get(self, name: str) -> tuple[ToolDefinition, Callable[..., Any]]:
        """Get tool definition and implementation.

        Args:
            name: Tool name

        Returns:
            Tuple of (ToolDefinition, implementation callable)

        Raises:
            ToolError: if tool not found
        """
        if name not in self._tools:
            raise ToolError(f"Unknown tool: {name}", tool_name=name)
        return self._tools[name], self._implementations[name]

    def list_tools(self) -> list[ToolDefinition]:
        """List all registered tools."""
        return list(self._tools.values())

    async def invoke(self, name: str, params: dict) -> Any:
        """Run a tool inside the sandbox.

        Raises:
            ToolError: unknown tool, timeout, or any failure inside the tool
        """
        definition, fn = self.get(name)
        timeout = self._default_timeout or definition.timeout_seconds
        logger.info(f"[Tools] {name}({', '.join(sorted(params))})")
        return await self._sandbox.execute(fn, params, timeout=timeout)
