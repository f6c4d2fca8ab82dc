"""Typed exception hierarchy. Every error crmflow can raise."""


class CrmflowError(Exception):
    """Base exception for all crmflow errors."""
    def __init__(self, message: str, details: dict = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ToolError(CrmflowError):
    """Tool execution failed."""
    def __init__(self, message: str, tool_name: str = "", **kwargs):
        super().__init__(message, **kwargs)
        self.tool_name = tool_name


class ToolTimeout(ToolError):
    """Tool call exceeded its timeout. Transient, so retry layers may re-run it."""
    pass


class CapabilityUnavailable(CrmflowError):
    """A capability has no credential configured and cannot run."""
    def __init__(self, message: str, capability: str = "", **kwargs):
        super().__init__(message, **kwargs)
        self.capability = capability


class LLMError(CrmflowError):
    """Language-model provider call failed or timed out."""
    pass


# ── Workflow ─────────────────────────────────────────────────────────────────


class WorkflowError(CrmflowError):
    """Base exception for all workflow-related errors."""
    pass


class WorkflowNotFound(WorkflowError):
    """No workflow definition with this slug exists."""
    def __init__(self, message: str, slug: str = "", **kwargs):
        super().__init__(message, **kwargs)
        self.slug = slug


class WorkflowValidationError(WorkflowError):
    """Workflow definition failed schema validation."""
    def __init__(self, message: str, violations: list = None, **kwargs):
        super().__init__(message, **kwargs)
        self.violations = violations or []


class ExpressionError(WorkflowError):
    """A condition expression could not be parsed or evaluated."""
    def __init__(self, message: str, expression: str = "", **kwargs):
        super().__init__(message, **kwargs)
        self.expression = expression


# ── Triggers ─────────────────────────────────────────────────────────────────


class TriggerError(CrmflowError):
    """Base exception for event intake and dispatch errors."""
    pass


class InvalidTriggerPayload(TriggerError):
    """Trigger body is neither an insert envelope nor a direct event object."""
    pass


class EventNotFound(TriggerError):
    """Event id does not exist in the store."""
    def __init__(self, message: str, event_id: str = "", **kwargs):
        super().__init__(message, **kwargs)
        self.event_id = event_id
