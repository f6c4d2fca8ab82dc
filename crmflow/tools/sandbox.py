"""Bounded execution for capability calls.

Every tool and enrichment call runs through here so that a hanging upstream
cannot stall a workflow run: one timeout, one error type, one timing log.
"""

import asyncio
import functools
import inspect
import logging
import time
from typing import Any, Callable

from crmflow.exceptions import ToolError, ToolTimeout

logger = logging.getLogger(__name__)


def _unwrap(fn: Callable[..., Any]) -> Callable[..., Any]:
    while isinstance(fn, functools.partial):
        fn = fn.func
    return fn


def _display_name(fn: Callable[..., Any]) -> str:
    return getattr(_unwrap(fn), "__name__", "unknown")


class Sandbox:
    """Runs one capability call under a timeout."""

    async def execute(self, tool_fn: Callable[..., Any], params: dict, timeout: float = 30) -> Any:
        """Call ``tool_fn(**params)`` and return its result.

        Coroutine functions are awaited; plain functions run in a worker
        thread so a blocking call does not hold up the event loop.

        Raises:
            ToolTimeout: the call did not finish within ``timeout``
            ToolError: any exception raised by the call
        """
        name = _display_name(tool_fn)
        is_async = inspect.iscoroutinefunction(_unwrap(tool_fn))

        started = time.monotonic()
        try:
            if is_async:
                pending = tool_fn(**params)
            else:
                pending = asyncio.to_thread(tool_fn, **params)
            return await asyncio.wait_for(pending, timeout=timeout)
        except asyncio.TimeoutError:
            raise ToolTimeout(f"Tool timed out after {timeout}s", tool_name=name)
        except ToolError:
            raise
        except Exception as exc:
            raise ToolError(str(exc), tool_name=name) from exc
        finally:
            logger.debug(f"[Sandbox] {name} finished in {time.monotonic() - started:.3f}s")
