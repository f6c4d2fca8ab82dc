"""EventMonitor: asyncio loop that sweeps unprocessed events."""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional

from crmflow.config import config
from crmflow.types import DispatchResult, Event

logger = logging.getLogger(__name__)


class EventMonitor:
    """Polls the event store and dispatches events whose delay has passed.

    Events with a future ``payload.delay_until`` stay queued for a later
    poll, so one delayed event never blocks the loop.
    """

    def __init__(self, dispatcher, repository, interval: Optional[float] = None,
                 batch_size: Optional[int] = None) -> None:
        self._dispatcher = dispatcher
        self._repository = repository
        self._interval = interval if interval is not None else config.monitor_interval_seconds
        self._batch_size = batch_size or config.monitor_batch_size
        self._task: asyncio.Task | None = None
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the background polling loop."""
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._loop(), name="crmflow-event-monitor")
        logger.info(f"[Monitor] Started (every {self._interval}s, batch {self._batch_size})")

    async def stop(self) -> None:
        """Cancel the background polling loop and wait for it to exit."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("[Monitor] Stopped")

    @staticmethod
    def _is_ready(event: Event, now: datetime) -> bool:
        try:
            delay_until = event.delay_until
        except (TypeError, ValueError):
            return True
        return delay_until is None or delay_until <= now

    async def poll_once(self) -> list[DispatchResult]:
        """Fetch one batch and dispatch every ready event in it."""
        events = await self._repository.list_unprocessed_events(self._batch_size)
        now = datetime.now(timezone.utc)
        results = []
        for event in events:
            if not self._is_ready(event, now):
                logger.debug(f"[Monitor] {event.id} delayed until {event.delay_until}")
                continue
            try:
                results.append(await self._dispatcher.dispatch(event))
            except Exception:
                logger.exception(f"[Monitor] Dispatch of {event.id} failed")
        return results

    async def _loop(self) -> None:
        """Internal polling loop."""
        while self._running:
            try:
                await self.poll_once()
            except Exception:
                logger.exception("[Monitor] Poll failed")
            await asyncio.sleep(self._interval)
