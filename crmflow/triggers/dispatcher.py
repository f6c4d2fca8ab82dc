"""EventDispatcher: routes events to the workflows that trigger on them.

dispatch(event):
  1. already processed           → no-op (skipped=True)
  2. payload.delay_until ahead   → wait until it passes
  3. active workflows on type    → run each, sequentially, oldest first
  4. mark processed              → after all runs, whatever their outcome

Follow-up events emitted by steps are queued (written with source
"workflow" and left unprocessed) unless inline processing is switched on,
in which case they are dispatched immediately up to ``max_emit_depth``
nested levels.
"""

import asyncio
import contextvars
import logging
from datetime import datetime, timezone
from typing import Optional

from crmflow.config import config
from crmflow.core.engine import WorkflowEngine
from crmflow.exceptions import EventNotFound, WorkflowNotFound
from crmflow.types import DispatchResult, EmitDirective, Event, RunOutcome, RunStatus

logger = logging.getLogger(__name__)

# Nesting level of inline emitted-event dispatch, per task
_emit_depth: contextvars.ContextVar[int] = contextvars.ContextVar("_crmflow_emit_depth", default=0)


class EventDispatcher:
    """Entry point for events: matching, running, and marking processed."""

    def __init__(
        self,
        repository,
        tools,
        enrichment,
        llm,
        callbacks: list = None,
        sleep=asyncio.sleep,
        process_emitted_immediately: Optional[bool] = None,
        max_emit_depth: Optional[int] = None,
        run_timeout: Optional[float] = None,
    ):
        self.repository = repository
        self._sleep = sleep
        self.process_emitted_immediately = (
            config.process_emitted_immediately if process_emitted_immediately is None
            else process_emitted_immediately
        )
        self.max_emit_depth = config.max_emit_depth if max_emit_depth is None else max_emit_depth
        self.engine = WorkflowEngine(
            repository, tools, enrichment, llm,
            emitter=self.emit_event,
            callbacks=callbacks,
            run_timeout=run_timeout,
        )

    async def accept(self, event: Event) -> Event:
        """Return the stored copy of *event*, persisting it first if unknown."""
        stored = await self.repository.get_event(event.id)
        if stored is not None:
            return stored
        return await self.repository.create_event(event)

    async def dispatch(self, event: Event) -> DispatchResult:
        """Run every active workflow triggered by *event*. Never raises for run failures."""
        if event.processed:
            logger.info(f"[Dispatcher] Event {event.id} already processed")
            return DispatchResult(event_id=event.id, skipped=True, message="Event already processed")

        await self._wait_for_delay(event)

        workflows = await self.repository.list_active_workflows(event.type)
        if not workflows:
            logger.info(f"[Dispatcher] No workflows found for event: {event.type}")
            await self.repository.mark_event_processed(event.id)
            return DispatchResult(event_id=event.id, message="No matching workflows")

        logger.info(f"[Dispatcher] {event.type} ({event.entity_type}:{event.entity_id}) "
                    f"→ {len(workflows)} workflow(s)")
        results: list[RunOutcome] = []
        for definition in workflows:
            try:
                outcome = await self.engine.run(definition, event.context_seed(), triggered_by="event")
            except Exception as exc:
                # The engine failed before or after its own run boundary (e.g. the store)
                logger.exception(f"[Dispatcher] Workflow {definition.slug} crashed")
                outcome = RunOutcome(
                    success=False, workflow_slug=definition.slug, status=RunStatus.FAILED,
                    error=str(exc) or type(exc).__name__,
                )
            results.append(outcome)

        await self.repository.mark_event_processed(event.id)
        return DispatchResult(event_id=event.id, workflows_run=len(workflows), results=results)

    async def dispatch_by_id(self, event_id: str) -> DispatchResult:
        """Load an event from the store and dispatch it.

        Raises:
            EventNotFound: no event with this id
        """
        event = await self.repository.get_event(event_id)
        if event is None:
            raise EventNotFound(f"Event not found: {event_id}", event_id=event_id)
        return await self.dispatch(event)

    async def process_pending(self, limit: int = 10) -> list[DispatchResult]:
        """Dispatch the oldest unprocessed events (backlog sweep)."""
        events = await self.repository.list_unprocessed_events(limit)
        if events:
            logger.info(f"[Dispatcher] Processing {len(events)} pending event(s)")
        return [await self.dispatch(event) for event in events]

    async def trigger_workflow(self, slug: str, context: Optional[dict] = None) -> RunOutcome:
        """Run one workflow by slug, outside of any event.

        Raises:
            WorkflowNotFound: no workflow with this slug
        """
        definition = await self.repository.get_workflow_by_slug(slug)
        if definition is None:
            raise WorkflowNotFound(f"Workflow not found: {slug}", slug=slug)
        seed = dict(context or {})
        seed.setdefault("team_id", config.default_team_id)
        return await self.engine.run(definition, seed, triggered_by="manual")

    async def emit_event(
        self,
        directive: EmitDirective,
        team_id: Optional[str] = None,
        process_immediately: Optional[bool] = None,
    ) -> Event:
        """Write a follow-up event; optionally dispatch it right away."""
        event = await self.repository.create_event(Event(
            type=directive.event_type,
            entity_type=directive.entity_type,
            entity_id=directive.entity_id,
            payload=directive.payload,
            team_id=team_id,
            source="workflow",
        ))
        logger.info(f"[Dispatcher] Emitted: {event.type} for {event.entity_type}:{event.entity_id}")

        inline = self.process_emitted_immediately if process_immediately is None else process_immediately
        if not inline:
            return event
        depth = _emit_depth.get()
        if depth >= self.max_emit_depth:
            logger.warning(f"[Dispatcher] Emit depth {depth} reached; {event.type} left queued")
            return event
        token = _emit_depth.set(depth + 1)
        try:
            await self.dispatch(event)
        finally:
            _emit_depth.reset(token)
        return event

    async def get_run_status(self, run_id: str) -> Optional[dict]:
        """A run plus its step logs in execution order, or None."""
        run = await self.repository.get_run(run_id)
        if run is None:
            return None
        return {"run": run, "logs": await self.repository.list_run_logs(run_id)}

    async def _wait_for_delay(self, event: Event) -> None:
        try:
            delay_until = event.delay_until
        except (TypeError, ValueError):
            logger.warning(f"[Dispatcher] Ignoring malformed delay_until on {event.id}")
            return
        if delay_until is None:
            return
        wait = (delay_until - datetime.now(timezone.utc)).total_seconds()
        if wait > 0:
            logger.info(f"[Dispatcher] Waiting {wait:.0f}s for delay on {event.id}")
            await self._sleep(wait)
