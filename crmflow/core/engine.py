"""WorkflowEngine: runs one workflow definition against one execution context.

Linear state machine: running → completed | stopped | failed.

Per run:
  1. Persist a WorkflowRun (status=running)
  2. For each step in ascending step_order, until a step asks to stop:
       guard false        → log skipped, context untouched
       otherwise          → execute, log (always), then apply the result:
         success          → bind output, emit follow-up event, honour stop
         failure+continue → bind {error, message} marker, keep going
         failure          → record error, abort (status=failed)
  3. Update the run row exactly once with status, final_context, error

The whole loop runs under a wall-clock budget, and a catch-all at the run
boundary guarantees the row never stays at ``running``.
"""

import asyncio
import copy
import inspect
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional

from crmflow.config import config
from crmflow.llm.client import LLMClient
from crmflow.tools.enrichment import EnrichmentRegistry
from crmflow.tools.registry import ToolRegistry
from crmflow.types import (
    EmitDirective, Event, OnError, RunOutcome, RunStatus, StepResult, StepStatus,
    WorkflowDefinition, WorkflowRun, WorkflowRunLog, WorkflowStep,
)
from crmflow.workflows.conditions import evaluate_conditions
from crmflow.workflows.steps import build_step

logger = logging.getLogger(__name__)

Emitter = Callable[[EmitDirective, Optional[str]], Awaitable[Event]]

SKIP_REASON = "Run conditions not met"


class _RunState:
    """Mutable per-run bookkeeping. Never shared between runs."""

    def __init__(self, context: dict):
        self.context = context
        self.stop = False
        self.stop_reason: Optional[str] = None
        self.failed = False
        self.error: Optional[str] = None
        self.steps_executed = 0
        self.emitted: list[str] = []

    @property
    def status(self) -> RunStatus:
        if self.failed:
            return RunStatus.FAILED
        if self.stop:
            return RunStatus.STOPPED
        return RunStatus.COMPLETED


class WorkflowEngine:
    """Sequential interpreter for WorkflowDefinitions. Stateless between runs."""

    def __init__(
        self,
        repository,
        tools: ToolRegistry,
        enrichment: EnrichmentRegistry,
        llm: LLMClient,
        emitter: Optional[Emitter] = None,
        callbacks: list = None,
        run_timeout: Optional[float] = None,
    ):
        self.repository = repository
        self.tools = tools
        self.enrichment = enrichment
        self.llm = llm
        self.emitter = emitter or self._queue_event
        self.callbacks = callbacks or []
        self.run_timeout = run_timeout or config.workflow_run_timeout

    async def run(
        self,
        definition: WorkflowDefinition,
        context: Optional[dict] = None,
        triggered_by: str = "event",
    ) -> RunOutcome:
        """Execute *definition* against a private copy of *context*.

        Never raises for step-level problems; the outcome carries the status.
        """
        state = _RunState(copy.deepcopy(context or {}))
        event_ctx = state.context.get("event") or {}
        run = await self.repository.create_run(WorkflowRun(
            workflow_template_id=definition.id,
            team_id=state.context.get("team_id"),
            triggered_by=triggered_by,
            trigger_event_id=event_ctx.get("id"),
            entity_type=event_ctx.get("entity_type"),
            entity_id=event_ctx.get("entity_id"),
            context=state.context,
        ))
        logger.info(f"[Engine] Run {run.id} started: {definition.slug} ({len(definition.steps)} steps)")
        await self._fire_callbacks("run_started", {
            "run_id": run.id, "workflow": definition.slug, "steps": len(definition.steps),
        })

        try:
            await asyncio.wait_for(self._execute_steps(definition, run.id, state), timeout=self.run_timeout)
        except asyncio.TimeoutError:
            state.failed = True
            state.error = f"Workflow run timed out after {self.run_timeout}s"
            logger.error(f"[Engine] Run {run.id} {state.error}")
        except Exception as exc:
            logger.exception(f"[Engine] Run {run.id} crashed")
            state.failed = True
            state.error = str(exc) or type(exc).__name__

        status = state.status
        await self.repository.update_run(run.id, {
            "status": status,
            "completed_at": datetime.now(timezone.utc),
            "final_context": state.context,
            "error_message": state.error if state.failed else None,
        })
        logger.info(f"[Engine] Run {run.id} finished: status={status.value}")
        await self._fire_callbacks("run_finished", {
            "run_id": run.id, "workflow": definition.slug, "status": status.value,
            "steps_executed": state.steps_executed, "error": state.error,
        })
        return RunOutcome(
            success=status != RunStatus.FAILED,
            run_id=run.id,
            workflow_slug=definition.slug,
            status=status,
            steps_executed=state.steps_executed,
            error=state.error,
            context=state.context,
            emitted_events=state.emitted,
        )

    async def _execute_steps(self, definition: WorkflowDefinition, run_id: str, state: _RunState) -> None:
        for step_def in definition.ordered_steps():
            if state.stop:
                break

            if step_def.run_conditions and not evaluate_conditions(step_def.run_conditions, state.context):
                logger.debug(f"[Engine] Step {step_def.step_order} '{step_def.name}' skipped")
                await self._log(run_id, step_def, StepResult(
                    success=True, status=StepStatus.SKIPPED,
                    output={"skipped": True, "reason": SKIP_REASON},
                ))
                await self._fire_callbacks("step_skipped", {
                    "run_id": run_id, "step_order": step_def.step_order, "step": step_def.name,
                })
                continue

            step = build_step(step_def, self.tools, self.enrichment, self.llm)
            result = await step.unavailable_result()
            if result is None:
                result = await step.execute(state.context)
            if result.log_status != StepStatus.SKIPPED:
                state.steps_executed += 1
            await self._log(run_id, step_def, result)

            if result.success:
                await self._fire_callbacks("step_completed", {
                    "run_id": run_id, "step_order": step_def.step_order, "step": step_def.name,
                    "status": result.log_status.value,
                })
                self._apply_success(step_def, result, state)
                if result.emit_event is not None:
                    await self._emit(result.emit_event, state, run_id)
                continue

            await self._fire_callbacks("step_failed", {
                "run_id": run_id, "step_order": step_def.step_order, "step": step_def.name,
                "error": result.error, "on_error": step_def.on_error.value,
            })
            if step_def.on_error == OnError.CONTINUE:
                marker: dict[str, Any] = {"error": True, "message": result.error}
                if result.unavailable:
                    marker["unavailable"] = True
                state.context[step_def.output_variable or f"step_{step_def.step_order}_error"] = marker
                logger.info(f"[Engine] Step {step_def.step_order} failed, continuing: {result.error}")
                continue

            state.failed = True
            state.error = result.error or f"Step '{step_def.name}' failed"
            logger.warning(f"[Engine] Step {step_def.step_order} '{step_def.name}' failed: {state.error}")
            break

    @staticmethod
    def _apply_success(step_def: WorkflowStep, result: StepResult, state: _RunState) -> None:
        if step_def.output_variable and result.has_output:
            state.context[step_def.output_variable] = result.output
        if result.stop:
            state.stop = True
            state.stop_reason = result.stop_reason
            logger.info(f"[Engine] Stop requested by step {step_def.step_order}: {result.stop_reason}")

    async def _emit(self, directive: EmitDirective, state: _RunState, run_id: str) -> None:
        """Hand an emit directive to the dispatcher, defaulting the entity to the trigger's."""
        event_ctx = state.context.get("event") or {}
        directive = directive.model_copy(update={
            "entity_type": directive.entity_type or event_ctx.get("entity_type"),
            "entity_id": directive.entity_id or event_ctx.get("entity_id"),
        })
        emitted = await self.emitter(directive, state.context.get("team_id"))
        state.emitted.append(emitted.id)
        logger.info(f"[Engine] Emitted {directive.event_type} for {directive.entity_type}:{directive.entity_id}")
        await self._fire_callbacks("event_emitted", {
            "run_id": run_id, "event_id": emitted.id, "event_type": directive.event_type,
            "entity_id": directive.entity_id,
        })

    async def _queue_event(self, directive: EmitDirective, team_id: Optional[str]) -> Event:
        return await self.repository.create_event(Event(
            type=directive.event_type,
            entity_type=directive.entity_type,
            entity_id=directive.entity_id,
            payload=directive.payload,
            team_id=team_id,
            source="workflow",
        ))

    async def _log(self, run_id: str, step_def: WorkflowStep, result: StepResult) -> None:
        await self.repository.add_run_log(WorkflowRunLog(
            workflow_run_id=run_id,
            workflow_step_id=step_def.id,
            step_order=step_def.step_order,
            step_name=step_def.name,
            status=result.log_status,
            input=result.input,
            output=result.output,
            error_message=result.error,
            tokens_used=result.tokens_used,
        ))

    async def _fire_callbacks(self, event: str, data: dict) -> None:
        """Invoke all registered callbacks for a lifecycle event."""
        for cb in self.callbacks:
            try:
                outcome = cb(event, data)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception:
                logger.exception(f"[Engine] Callback error on '{event}'")
