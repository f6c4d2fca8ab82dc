"""All shared types, enums, and type aliases. Everything imports from here."""

from enum import Enum
from typing import Any, Optional
from datetime import datetime, timezone
from pydantic import BaseModel, Field
import uuid


# ── Enums ──────────────────────────────────────────────────────────────

class ActionType(str, Enum):
    TOOL_CALL = "tool_call"
    AI_PROMPT = "ai_prompt"
    CONDITION_CHECK = "condition_check"
    BRANCH = "branch"

class OnError(str, Enum):
    CONTINUE = "continue"
    STOP = "stop"

class RunStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    STOPPED = "stopped"     # a step requested stop, not an error
    FAILED = "failed"

class StepStatus(str, Enum):
    COMPLETED = "completed"
    SKIPPED = "skipped"     # guard false, or capability unavailable
    FAILED = "failed"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 string (``Z`` suffix allowed) or datetime into an aware datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# ── Events ─────────────────────────────────────────────────────────────

class Event(BaseModel):
    """A record-level happening that may trigger workflows."""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    type: str
    entity_type: Optional[str] = None
    entity_id: Optional[str] = None
    payload: dict[str, Any] = Field(default_factory=dict)
    team_id: Optional[str] = None
    source: Optional[str] = None
    processed: bool = False
    processed_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=_utcnow)

    @property
    def delay_until(self) -> Optional[datetime]:
        """``payload.delay_until`` as an aware datetime, or None."""
        return parse_timestamp(self.payload.get("delay_until"))

    def context_seed(self) -> dict[str, Any]:
        """Initial execution context for a run triggered by this event."""
        return {
            "event": {
                "id": self.id,
                "type": self.type,
                "entity_type": self.entity_type,
                "entity_id": self.entity_id,
                "payload": self.payload,
            },
            "team_id": self.team_id,
        }


class EmitDirective(BaseModel):
    """A step's request to enqueue a follow-up event."""
    event_type: str
    entity_type: Optional[str] = None
    entity_id: Optional[str] = None
    payload: dict[str, Any] = Field(default_factory=dict)


# ── Workflow definitions ───────────────────────────────────────────────

class Condition(BaseModel):
    """One run-guard entry. ``field`` is a template expression."""
    field: str
    operator: str
    value: Any = None


class WorkflowStep(BaseModel):
    id: Optional[str] = None
    step_order: int                     # 1-based; defines execution order
    name: str
    description: str = ""
    action_type: ActionType
    action_config: dict[str, Any] = Field(default_factory=dict)
    run_conditions: list[Condition] = Field(default_factory=list)
    output_variable: Optional[str] = None
    on_error: OnError = OnError.STOP


class WorkflowDefinition(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    slug: str
    name: str
    description: str = ""
    category: Optional[str] = None
    trigger_event: str
    is_active: bool = True
    version: int = 1
    steps: list[WorkflowStep] = Field(default_factory=list)

    def ordered_steps(self) -> list[WorkflowStep]:
        return sorted(self.steps, key=lambda s: s.step_order)


_BRANCH_KEYS = {"action", "then", "finally", "event_type", "payload", "reason", "condition",
                "entity_type", "entity_id"}
# keys that never reach a branch tool; "reason" is shared with the tool input
_TOOL_EXCLUDED_KEYS = _BRANCH_KEYS - {"reason"}


class BranchAction(BaseModel):
    """Canonical form of an ``on_true``/``on_false``/branch descriptor.

    Stored configuration uses either an ``action`` key or the older ``then``
    key (plus ``finally``). Both shapes normalise into this one model.
    """
    stop: bool = False
    reason: Optional[str] = None
    emit: Optional[EmitDirective] = None
    tool_name: Optional[str] = None
    tool_input: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def parse(cls, raw: Optional[dict]) -> Optional["BranchAction"]:
        """Normalise a raw descriptor. None means "no descriptor"."""
        if not raw:
            return None
        action = raw.get("action")
        then = raw.get("then")

        if action == "stop":
            return cls(stop=True, reason=raw.get("reason"))

        result = cls(reason=raw.get("reason"))
        if action == "emit_event" or then == "emit_event":
            result.emit = EmitDirective(
                event_type=raw.get("event_type") or "",
                entity_type=raw.get("entity_type"),
                entity_id=raw.get("entity_id"),
                payload=raw.get("payload") or {},
            )
        if action and action not in ("continue", "emit_event"):
            # Any other action names a tool; the remaining keys are its input
            result.tool_name = action
            result.tool_input = {k: v for k, v in raw.items() if k not in _TOOL_EXCLUDED_KEYS}
        if then == "stop" or raw.get("finally") == "stop":
            result.stop = True
        return result


# ── Execution records ──────────────────────────────────────────────────

class StepResult(BaseModel):
    """Outcome of one step invocation. Folded into the context and the run log."""
    success: bool
    output: Any = None
    error: Optional[str] = None
    stop: bool = False
    stop_reason: Optional[str] = None
    emit_event: Optional[EmitDirective] = None
    input: Any = None
    status: Optional[StepStatus] = None
    unavailable: bool = False           # capability not configured; step did not really run
    tokens_used: Optional[int] = None
    model_used: Optional[str] = None

    @property
    def has_output(self) -> bool:
        return "output" in self.model_fields_set

    @property
    def log_status(self) -> StepStatus:
        if not self.success:
            return StepStatus.FAILED
        return self.status or StepStatus.COMPLETED

    @classmethod
    def fail(cls, error: str, **kwargs) -> "StepResult":
        return cls(success=False, error=error, **kwargs)


class WorkflowRun(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    workflow_template_id: str
    team_id: Optional[str] = None
    triggered_by: str = "manual"
    trigger_event_id: Optional[str] = None
    entity_type: Optional[str] = None
    entity_id: Optional[str] = None
    status: RunStatus = RunStatus.RUNNING
    started_at: datetime = Field(default_factory=_utcnow)
    completed_at: Optional[datetime] = None
    context: dict[str, Any] = Field(default_factory=dict)
    final_context: Optional[dict[str, Any]] = None
    error_message: Optional[str] = None


class WorkflowRunLog(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    workflow_run_id: str
    workflow_step_id: Optional[str] = None
    step_order: int
    step_name: str
    status: StepStatus
    input: Any = None
    output: Any = None
    error_message: Optional[str] = None
    tokens_used: Optional[int] = None
    executed_at: datetime = Field(default_factory=_utcnow)


class RunOutcome(BaseModel):
    """What a caller gets back from one workflow run."""
    success: bool
    run_id: Optional[str] = None
    workflow_slug: Optional[str] = None
    status: RunStatus
    steps_executed: int = 0
    error: Optional[str] = None
    context: dict[str, Any] = Field(default_factory=dict)
    emitted_events: list[str] = Field(default_factory=list)


class DispatchResult(BaseModel):
    success: bool = True
    event_id: Optional[str] = None
    workflows_run: int = 0
    results: list[RunOutcome] = Field(default_factory=list)
    message: Optional[str] = None
    skipped: bool = False               # already processed


class ToolDefinition(BaseModel):
    """Registration record for a callable capability."""
    name: str                           # unique identifier
    description: str
    parameters: dict[str, Any] = Field(default_factory=dict)  # JSON Schema for params
    timeout_seconds: int = 30
    uses_store: bool = False            # implementation takes a Repository as first argument
