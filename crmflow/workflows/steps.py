"""Step executors: one class per ``action_type``.

Each step turns a WorkflowStep definition plus the current context into a
StepResult. Steps never raise: capability failures come back as
``success=False`` so the engine can apply the step's error policy.

Before executing, the engine asks :meth:`Step.unavailable_result` whether
the step's capability is configured at all. A non-None answer replaces
execution:

  ai_prompt without an LLM key       → success, output {skipped, reason}, log status skipped
  tool_call on an unconfigured
  enrichment provider                → failure flagged ``unavailable``
"""

import copy
import logging
from typing import Any, Optional

from crmflow.exceptions import ExpressionError, LLMError
from crmflow.llm.client import LLMClient, extract_json
from crmflow.tools.enrichment import EnrichmentRegistry
from crmflow.tools.registry import ToolRegistry
from crmflow.types import ActionType, BranchAction, EmitDirective, StepResult, StepStatus, WorkflowStep
from crmflow.workflows.conditions import evaluate_expression
from crmflow.workflows.templates import resolve, resolve_object

logger = logging.getLogger(__name__)

EMIT_EVENT_TOOL = "emit_event"
DEFAULT_MAX_TOKENS = 1000


class Step:
    """Base class. Subclasses implement :meth:`execute`."""

    def __init__(self, definition: WorkflowStep, tools: ToolRegistry,
                 enrichment: EnrichmentRegistry, llm: LLMClient):
        self.definition = definition
        self.config = definition.action_config or {}
        self.tools = tools
        self.enrichment = enrichment
        self.llm = llm

    async def unavailable_result(self) -> Optional[StepResult]:
        return None

    async def execute(self, context: dict) -> StepResult:
        raise NotImplementedError


# ── tool_call ────────────────────────────────────────────────────────────────

class ToolCallStep(Step):
    """Invoke an enrichment provider, the ``emit_event`` pseudo-tool, or a registered tool."""

    @property
    def tool_name(self) -> str:
        return self.config.get("tool_name") or ""

    async def unavailable_result(self) -> Optional[StepResult]:
        name = self.tool_name
        if self.enrichment.has(name) and not await self.enrichment.is_available(name):
            return StepResult.fail(f"{name} is not configured", unavailable=True)
        return None

    async def execute(self, context: dict) -> StepResult:
        name = self.tool_name
        params = resolve_object(self.config.get("input_mapping") or {}, context)
        try:
            if name == EMIT_EVENT_TOOL:
                return self._emit(params)
            if self.enrichment.has(name):
                output = await self.enrichment.call(name, params)
            else:
                output = await self.tools.invoke(name, params)
        except Exception as exc:
            logger.warning(f"[Steps] {name} failed: {exc}")
            return StepResult.fail(str(exc), input=params)
        return StepResult(success=True, output=output, input=params)

    @staticmethod
    def _emit(params: dict) -> StepResult:
        event_type = params.get("event_type")
        if not event_type:
            return StepResult.fail("emit_event requires event_type", input=params)
        directive = EmitDirective(
            event_type=event_type,
            entity_type=params.get("entity_type") or None,
            entity_id=params.get("entity_id") or None,
            payload=params.get("payload") if isinstance(params.get("payload"), dict) else {},
        )
        return StepResult(
            success=True,
            output={"emitted": True, "event_type": event_type},
            emit_event=directive,
            input=params,
        )


# ── ai_prompt ────────────────────────────────────────────────────────────────

class PromptStep(Step):
    """Render a prompt and call the language model; optionally parse JSON out of the reply."""

    async def unavailable_result(self) -> Optional[StepResult]:
        if self.llm.is_available():
            return None
        logger.info(f"[Steps] '{self.definition.name}' skipped: no LLM API key")
        return StepResult(
            success=True,
            output={"skipped": True, "reason": "No API key"},
            status=StepStatus.SKIPPED,
            unavailable=True,
        )

    async def execute(self, context: dict) -> StepResult:
        prompt = resolve(self.config.get("prompt_template") or "", context)
        max_tokens = self.config.get("max_tokens") or DEFAULT_MAX_TOKENS
        tier = self.config.get("model") or "default"
        try:
            reply = await self.llm.complete_prompt(prompt, max_tokens=max_tokens, model_tier=tier)
        except LLMError as exc:
            return StepResult.fail(str(exc), input={"prompt": prompt})

        text = reply["text"]
        output: Any = text
        if self.config.get("output_type") == "json":
            try:
                output = extract_json(text)
            except ValueError as exc:
                return StepResult.fail(
                    f"Failed to parse AI response as JSON: {exc}",
                    input={"prompt": prompt},
                    output=text,
                    tokens_used=reply.get("tokens_used"),
                    model_used=reply.get("model"),
                )
        return StepResult(
            success=True,
            output=output,
            input={"prompt": prompt},
            tokens_used=reply.get("tokens_used"),
            model_used=reply.get("model"),
        )


# ── condition_check / branch ─────────────────────────────────────────────────

async def apply_branch_action(raw: Optional[dict], context: dict, tools: ToolRegistry,
                              extra_input: Optional[dict] = None) -> StepResult:
    """Carry out one branch-action descriptor.

    The descriptor is resolved against the context, normalised into a
    BranchAction, then applied: tool first, then emit, then stop.
    """
    if not raw:
        return StepResult(success=True, output=None, input=extra_input)
    descriptor = {k: v for k, v in raw.items() if k != "condition"}
    action = BranchAction.parse(resolve_object(descriptor, context))
    if action is None:
        return StepResult(success=True, output=None, input=extra_input)

    output: dict[str, Any] = {}
    if action.tool_name:
        try:
            output = {
                "action": action.tool_name,
                "result": await tools.invoke(action.tool_name, action.tool_input),
            }
        except Exception as exc:
            logger.warning(f"[Steps] branch action {action.tool_name} failed: {exc}")
            return StepResult.fail(str(exc), input=extra_input)

    result = StepResult(success=True, output=output, input=extra_input)
    if action.emit is not None:
        if not action.emit.event_type:
            return StepResult.fail("emit_event requires event_type", input=extra_input)
        result.emit_event = action.emit
    if action.stop:
        result.stop = True
        result.stop_reason = action.reason
    return result


class ConditionStep(Step):
    """Evaluate one expression and apply ``on_true`` or ``on_false``."""

    async def execute(self, context: dict) -> StepResult:
        expression = self.config.get("condition") or ""
        try:
            matched = evaluate_expression(expression, context)
        except ExpressionError as exc:
            logger.warning(f"[Steps] Condition evaluation failed: {exc}, defaulting to false")
            matched = False
        branch = self.config.get("on_true") if matched else self.config.get("on_false")
        return await apply_branch_action(
            copy.deepcopy(branch), context, self.tools,
            extra_input={"condition": resolve(expression, context), "result": matched},
        )


class BranchStep(Step):
    """First branch whose condition holds wins; evaluation errors skip the branch."""

    async def execute(self, context: dict) -> StepResult:
        for index, branch in enumerate(self.config.get("branches") or []):
            try:
                matched = evaluate_expression(branch.get("condition") or "", context)
            except ExpressionError as exc:
                logger.debug(f"[Steps] branch {index} skipped: {exc}")
                continue
            if matched:
                return await apply_branch_action(
                    copy.deepcopy(branch), context, self.tools, extra_input={"branch": index},
                )
        return StepResult(success=True, output={"no_match": True})


_STEP_TYPES: dict[ActionType, type[Step]] = {
    ActionType.TOOL_CALL: ToolCallStep,
    ActionType.AI_PROMPT: PromptStep,
    ActionType.CONDITION_CHECK: ConditionStep,
    ActionType.BRANCH: BranchStep,
}


def build_step(definition: WorkflowStep, tools: ToolRegistry,
               enrichment: EnrichmentRegistry, llm: LLMClient) -> Step:
    return _STEP_TYPES[definition.action_type](definition, tools, enrichment, llm)
