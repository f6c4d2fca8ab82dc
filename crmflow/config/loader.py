"""Read workflow definitions from YAML.

Lookup order for workflows.yaml: an explicit path, then the current working
directory, then the copy bundled with the package (config/defaults/).
"""

from pathlib import Path
from typing import Optional

import yaml
from pydantic import ValidationError

from crmflow.config.schema import StepYAML, WorkflowsConfig, WorkflowYAML
from crmflow.exceptions import WorkflowValidationError
from crmflow.types import Condition, WorkflowDefinition, WorkflowStep

WORKFLOWS_FILE = "workflows.yaml"
BUNDLED_WORKFLOWS = Path(__file__).parent / "defaults" / WORKFLOWS_FILE


def resolve_workflows_path(path: Optional[Path] = None) -> Path:
    """Pick the workflows.yaml to load. An explicit path must exist."""
    if path is not None:
        explicit = Path(path)
        if not explicit.exists():
            raise FileNotFoundError(f"Workflow file not found: {explicit}")
        return explicit

    for candidate in (Path.cwd() / WORKFLOWS_FILE, BUNDLED_WORKFLOWS):
        if candidate.exists():
            return candidate
    raise FileNotFoundError(
        f"No {WORKFLOWS_FILE} in {Path.cwd()} and no bundled copy; "
        "pass load_workflows_yaml(path=...)"
    )


def _to_step(step: StepYAML, position: int) -> WorkflowStep:
    return WorkflowStep(
        step_order=step.step_order or position,
        name=step.name,
        description=step.description,
        action_type=step.action_type,
        action_config=step.action_config,
        run_conditions=[Condition(**c.model_dump()) for c in step.run_conditions],
        output_variable=step.output_variable,
        on_error=step.on_error,
    )


def _to_definition(entry: WorkflowYAML) -> WorkflowDefinition:
    steps = [_to_step(step, position) for position, step in enumerate(entry.steps, start=1)]
    seen: set[int] = set()
    for step in steps:
        if step.step_order in seen:
            raise WorkflowValidationError(
                f"Workflow '{entry.slug}' has duplicate step_order values",
                violations=[f"duplicate step_order {step.step_order} in {entry.slug}"],
            )
        seen.add(step.step_order)
    return WorkflowDefinition(
        slug=entry.slug,
        name=entry.name,
        description=entry.description,
        category=entry.category,
        trigger_event=entry.trigger_event,
        is_active=entry.is_active,
        version=entry.version,
        steps=steps,
    )


def load_workflows_yaml(path: Optional[Path] = None) -> list[WorkflowDefinition]:
    """Parse workflows.yaml into validated WorkflowDefinitions.

    Steps without an explicit step_order are numbered by position (1..n).

    Raises:
        FileNotFoundError: explicit path missing, or nothing found at all
        WorkflowValidationError: content does not match the schema, or a
            workflow repeats a step_order
    """
    source = resolve_workflows_path(path)
    raw = yaml.safe_load(source.read_text()) or {"workflows": []}
    try:
        parsed = WorkflowsConfig.model_validate(raw)
    except ValidationError as exc:
        raise WorkflowValidationError(
            f"Invalid workflow file {source}",
            violations=[err["msg"] for err in exc.errors()],
        ) from exc
    return [_to_definition(entry) for entry in parsed.workflows]
