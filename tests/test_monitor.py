"""EventMonitor: polling, delayed events, loop lifecycle."""

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

from crmflow.triggers import EventMonitor
from crmflow.types import DispatchResult, Event


def _dispatcher():
    dispatcher = AsyncMock()
    dispatcher.dispatch = AsyncMock(side_effect=lambda e: DispatchResult(event_id=e.id))
    return dispatcher


async def test_poll_dispatches_ready_events(repo):
    ready = await repo.create_event(Event(type="contact.created"))
    dispatcher = _dispatcher()
    monitor = EventMonitor(dispatcher, repo, interval=0.01, batch_size=5)

    results = await monitor.poll_once()

    assert [r.event_id for r in results] == [ready.id]


async def test_future_delay_stays_queued(repo):
    later = (datetime.now(timezone.utc) + timedelta(hours=1)).isoformat()
    await repo.create_event(Event(type="contact.created", payload={"delay_until": later}))
    now = await repo.create_event(Event(type="contact.created"))
    dispatcher = _dispatcher()

    results = await EventMonitor(dispatcher, repo, batch_size=5).poll_once()

    assert [r.event_id for r in results] == [now.id]


async def test_malformed_delay_counts_as_ready(repo):
    event = await repo.create_event(Event(type="x", payload={"delay_until": "soon"}))
    results = await EventMonitor(_dispatcher(), repo, batch_size=5).poll_once()
    assert [r.event_id for r in results] == [event.id]


async def test_dispatch_error_does_not_stop_the_batch(repo):
    first = await repo.create_event(Event(type="x"))
    second = await repo.create_event(Event(type="x"))
    dispatcher = AsyncMock()

    async def flaky(event):
        if event.id == first.id:
            raise RuntimeError("boom")
        return DispatchResult(event_id=event.id)

    dispatcher.dispatch = AsyncMock(side_effect=flaky)
    results = await EventMonitor(dispatcher, repo, batch_size=5).poll_once()
    assert [r.event_id for r in results] == [second.id]


async def test_start_and_stop(repo):
    dispatcher = _dispatcher()
    monitor = EventMonitor(dispatcher, repo, interval=0.01, batch_size=5)
    await repo.create_event(Event(type="x"))

    await monitor.start()
    assert monitor.running
    for _ in range(50):
        if dispatcher.dispatch.await_count:
            break
        await asyncio.sleep(0.01)
    await monitor.stop()

    assert not monitor.running
    assert dispatcher.dispatch.await_count >= 1
