"""Workflow YAML loading and validation, plus database seeding."""

import pytest

from crmflow.config import CrmflowConfig, load_workflows_yaml
from crmflow.db.seed import seed_workflows
from crmflow.exceptions import WorkflowValidationError
from crmflow.types import ActionType, OnError


def test_bundled_workflows_load():
    definitions = {d.slug: d for d in load_workflows_yaml()}
    assert set(definitions) == {"intake_agent_v2", "sdr_agent_v2", "contact_agent"}
    assert definitions["intake_agent_v2"].trigger_event == "contact.created"
    assert definitions["sdr_agent_v2"].trigger_event == "intake.new_contact"
    assert definitions["contact_agent"].trigger_event == "sdr.complete"
    for definition in definitions.values():
        orders = [s.step_order for s in definition.steps]
        assert orders == sorted(orders)
        assert len(orders) == len(set(orders))


def test_explicit_file_with_loose_values(tmp_path):
    path = tmp_path / "workflows.yaml"
    path.write_text("""
workflows:
  - slug: tiny
    name: Tiny
    trigger_event: contact.created
    steps:
      - name: Classify
        action_type: Tool_Call
        on_error: CONTINUE
        action_config:
          tool_name: classify_email
      - name: Check
        action_type: condition_check
        run_conditions:
          - field: "{{email_type.is_personal}}"
            operator: equals
            value: false
""")
    [definition] = load_workflows_yaml(path)
    first, second = definition.steps
    assert first.step_order == 1 and second.step_order == 2
    assert first.action_type == ActionType.TOOL_CALL
    assert first.on_error == OnError.CONTINUE
    assert second.run_conditions[0].value is False


def test_missing_explicit_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_workflows_yaml(tmp_path / "nope.yaml")


def test_invalid_action_type(tmp_path):
    path = tmp_path / "workflows.yaml"
    path.write_text("""
workflows:
  - slug: bad
    name: Bad
    trigger_event: x
    steps:
      - name: Teleport
        action_type: teleport
""")
    with pytest.raises(WorkflowValidationError) as info:
        load_workflows_yaml(path)
    assert info.value.violations


def test_duplicate_step_order(tmp_path):
    path = tmp_path / "workflows.yaml"
    path.write_text("""
workflows:
  - slug: dup
    name: Dup
    trigger_event: x
    steps:
      - {name: A, step_order: 1, action_type: branch}
      - {name: B, step_order: 1, action_type: branch}
""")
    with pytest.raises(WorkflowValidationError, match="duplicate step_order"):
        load_workflows_yaml(path)


def test_settings_read_prefixed_env(monkeypatch):
    monkeypatch.setenv("CRMFLOW_MAX_EMIT_DEPTH", "2")
    monkeypatch.setenv("CRMFLOW_PROCESS_EMITTED_IMMEDIATELY", "true")
    settings = CrmflowConfig(_env_file=None)
    assert settings.max_emit_depth == 2
    assert settings.process_emitted_immediately is True


async def test_seed_is_idempotent(session, repo):
    first = await seed_workflows(session)
    second = await seed_workflows(session)
    assert first == second
    stored = await repo.list_workflows()
    assert sorted(w.slug for w in stored) == sorted(first)
    intake = await repo.get_workflow_by_slug("intake_agent_v2")
    bundled = next(d for d in load_workflows_yaml() if d.slug == "intake_agent_v2")
    assert len(intake.steps) == len(bundled.steps)
