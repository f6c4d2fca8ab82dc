"""Pydantic models for YAML workflow validation.

These mirror crmflow/types.py structures but accept looser input
(e.g. action_type: "Tool_Call", missing step_order) and coerce it.
"""

from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator

from crmflow.types import ActionType, OnError


class ConditionYAML(BaseModel):
    field: str
    operator: str
    value: Any = None


class StepYAML(BaseModel):
    """Validated schema for one step entry."""

    name: str
    description: str = ""
    step_order: Optional[int] = None        # defaults to list position
    action_type: ActionType
    action_config: dict[str, Any] = Field(default_factory=dict)
    run_conditions: list[ConditionYAML] = Field(default_factory=list)
    output_variable: Optional[str] = None
    on_error: OnError = OnError.STOP

    @field_validator("action_type", "on_error", mode="before")
    @classmethod
    def lower(cls, v):
        if isinstance(v, str):
            return v.lower()
        return v


class WorkflowYAML(BaseModel):
    """Validated schema for one workflow entry in workflows.yaml."""

    slug: str
    name: str
    description: str = ""
    category: Optional[str] = None
    trigger_event: str
    is_active: bool = True
    version: int = 1
    steps: list[StepYAML] = Field(default_factory=list)


class WorkflowsConfig(BaseModel):
    """Root schema for workflows.yaml."""
    workflows: list[WorkflowYAML] = Field(default_factory=list)
