"""crmflow: event-driven CRM workflow engine.

Usage:
    from crmflow.core.factory import build_dispatcher

    async with async_session() as session:
        dispatcher = build_dispatcher(session)
        result = await dispatcher.dispatch_by_id(event_id)
"""

from crmflow.types import (
    Event, EmitDirective, Condition, WorkflowStep, WorkflowDefinition,
    StepResult, WorkflowRun, WorkflowRunLog, RunOutcome, DispatchResult,
    ActionType, OnError, RunStatus, StepStatus,
)
from crmflow.exceptions import (
    CrmflowError, ToolError, CapabilityUnavailable, LLMError, WorkflowError,
    WorkflowNotFound, WorkflowValidationError, ExpressionError, TriggerError,
    InvalidTriggerPayload, EventNotFound,
)
from crmflow.version import __version__

__all__ = [
    "Event", "EmitDirective", "Condition", "WorkflowStep", "WorkflowDefinition",
    "StepResult", "WorkflowRun", "WorkflowRunLog", "RunOutcome", "DispatchResult",
    "ActionType", "OnError", "RunStatus", "StepStatus",
    "CrmflowError", "ToolError", "CapabilityUnavailable", "LLMError", "WorkflowError",
    "WorkflowNotFound", "WorkflowValidationError", "ExpressionError", "TriggerError",
    "InvalidTriggerPayload", "EventNotFound",
    "__version__",
]
