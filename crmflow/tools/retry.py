"""Retry with exponential backoff for capability calls.

Sits above the ``{success, data, error}`` capability contract and is applied
by the enrichment registry only. The workflow engine itself never retries.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable

import httpx

from crmflow.exceptions import ToolTimeout

logger = logging.getLogger(__name__)

_RETRYABLE_STATUS = (429, 500, 502, 503, 504)
_TRANSIENT_ERRORS = (httpx.TransportError, asyncio.TimeoutError, ToolTimeout)


class RetryPolicy:
    """Re-run a call while it fails with a transient error.

    A call is retried when it raises a transport error or a timeout (including
    the Sandbox's ToolTimeout), or returns
    ``{"success": False, "retryable": True}``. Sleeps ``base_delay * 2**attempt``.
    """

    def __init__(self, max_retries: int = 0, base_delay: float = 1.0, sleep=asyncio.sleep):
        self.max_retries = max_retries
        self.base_delay = base_delay
        self._sleep = sleep

    async def run(self, call: Callable[[], Awaitable[Any]], name: str = "call") -> Any:
        max_tries = self.max_retries + 1
        attempt = 0
        while True:
            exhausted = attempt >= self.max_retries
            try:
                result = await call()
            except _TRANSIENT_ERRORS as exc:
                if exhausted:
                    raise
                logger.warning(f"[Retry] {name} attempt {attempt + 1}/{max_tries} failed: {exc}")
            else:
                if exhausted or not (isinstance(result, dict) and result.get("retryable")):
                    return result
                logger.warning(f"[Retry] {name} attempt {attempt + 1}/{max_tries}: {result.get('error')}")
            await self._sleep(self.base_delay * (2 ** attempt))
            attempt += 1


def is_retryable_status(status_code: int) -> bool:
    return status_code in _RETRYABLE_STATUS
