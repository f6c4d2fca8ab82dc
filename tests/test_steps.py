"""Step executors: tool_call, ai_prompt, condition_check, branch."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from conftest import make_registry, make_step
from crmflow.exceptions import LLMError
from crmflow.types import StepStatus
from crmflow.workflows.steps import (
    BranchStep, ConditionStep, PromptStep, ToolCallStep, apply_branch_action, build_step,
)

CTX = {
    "event": {"id": "e1", "type": "contact.created", "entity_type": "contact", "entity_id": "C1",
              "payload": {"email": "a@corp.com"}},
    "team_id": "t1",
    "spam_check": {"is_spam": True, "confidence": 0.95},
    "email_type": {"is_personal": False},
}


@pytest.fixture
def calls():
    return []


@pytest.fixture
def registry(calls):
    async def classify_email(email: str = "", **kwargs):
        calls.append(("classify_email", {"email": email, **kwargs}))
        return {"is_personal": email.endswith("@gmail.com"), "domain": email.split("@")[-1]}

    async def delete_contact(contact_id: str = "", reason: str = "", **kwargs):
        calls.append(("delete_contact", {"contact_id": contact_id, "reason": reason, **kwargs}))
        return {"success": True, "contact_id": contact_id}

    async def explode(**kwargs):
        raise RuntimeError("upstream exploded")

    return make_registry(classify_email=classify_email, delete_contact=delete_contact, explode=explode)


@pytest.fixture
def no_providers():
    enrichment = MagicMock()
    enrichment.has.return_value = False
    return enrichment


# ── tool_call ─────────────────────────────────────────────────────────────────

class TestToolCallStep:

    async def test_resolves_input_and_invokes_tool(self, registry, no_providers, mock_llm, calls):
        step = make_step(1, "tool_call", {"tool_name": "classify_email",
                                          "input_mapping": {"email": "{{event.payload.email}}"}})
        result = await build_step(step, registry, no_providers, mock_llm).execute(CTX)
        assert result.success
        assert result.output == {"is_personal": False, "domain": "corp.com"}
        assert result.input == {"email": "a@corp.com"}
        assert calls == [("classify_email", {"email": "a@corp.com"})]

    async def test_unknown_tool_is_step_failure(self, registry, no_providers, mock_llm):
        step = make_step(1, "tool_call", {"tool_name": "nope"})
        result = await ToolCallStep(step, registry, no_providers, mock_llm).execute(CTX)
        assert not result.success
        assert "Unknown tool: nope" in result.error

    async def test_tool_exception_never_escapes(self, registry, no_providers, mock_llm):
        step = make_step(1, "tool_call", {"tool_name": "explode"})
        result = await ToolCallStep(step, registry, no_providers, mock_llm).execute(CTX)
        assert not result.success
        assert result.error == "upstream exploded"
        assert result.log_status == StepStatus.FAILED

    async def test_emit_event_pseudo_tool_returns_directive(self, registry, no_providers, mock_llm):
        step = make_step(1, "tool_call", {"tool_name": "emit_event", "input_mapping": {
            "event_type": "intake.new_contact",
            "payload": {"email": "{{event.payload.email}}"},
        }})
        result = await ToolCallStep(step, registry, no_providers, mock_llm).execute(CTX)
        assert result.success
        assert result.output == {"emitted": True, "event_type": "intake.new_contact"}
        assert result.emit_event.event_type == "intake.new_contact"
        assert result.emit_event.entity_id is None  # engine fills in the trigger's entity
        assert result.emit_event.payload == {"email": "a@corp.com"}

    async def test_emit_event_without_type_fails(self, registry, no_providers, mock_llm):
        step = make_step(1, "tool_call", {"tool_name": "emit_event", "input_mapping": {}})
        result = await ToolCallStep(step, registry, no_providers, mock_llm).execute(CTX)
        assert not result.success
        assert result.emit_event is None

    async def test_unconfigured_provider_is_unavailable(self, registry, enrichment, mock_llm):
        step = make_step(1, "tool_call", {"tool_name": "enrich_person_pdl"})
        result = await ToolCallStep(step, registry, enrichment, mock_llm).unavailable_result()
        assert result is not None
        assert not result.success
        assert result.unavailable
        assert result.error == "enrich_person_pdl is not configured"

    async def test_registered_tool_is_never_unavailable(self, registry, enrichment, mock_llm):
        step = make_step(1, "tool_call", {"tool_name": "classify_email"})
        assert await ToolCallStep(step, registry, enrichment, mock_llm).unavailable_result() is None

    async def test_configured_provider_goes_through_enrichment(self, registry, mock_llm):
        enrichment = MagicMock()
        enrichment.has.return_value = True
        enrichment.is_available = AsyncMock(return_value=True)
        enrichment.call = AsyncMock(return_value={"success": True, "data": {"work_email": "a@corp.com"}})
        step = make_step(1, "tool_call", {"tool_name": "enrich_person_pdl",
                                          "input_mapping": {"email": "{{event.payload.email}}"}})
        executor = ToolCallStep(step, registry, enrichment, mock_llm)
        assert await executor.unavailable_result() is None
        result = await executor.execute(CTX)
        assert result.output["data"]["work_email"] == "a@corp.com"
        enrichment.call.assert_awaited_once_with("enrich_person_pdl", {"email": "a@corp.com"})


# ── ai_prompt ─────────────────────────────────────────────────────────────────

class TestPromptStep:

    async def test_no_api_key_degrades_to_skipped_success(self, registry, no_providers, offline_llm):
        step = make_step(1, "ai_prompt", {"prompt_template": "hi"})
        result = await PromptStep(step, registry, no_providers, offline_llm).unavailable_result()
        assert result.success
        assert result.output == {"skipped": True, "reason": "No API key"}
        assert result.log_status == StepStatus.SKIPPED
        assert result.unavailable

    async def test_prompt_is_resolved_and_tier_passed(self, registry, no_providers, mock_llm):
        mock_llm.complete_prompt.return_value = {"text": "plain answer", "tokens_used": 7, "model": "m"}
        step = make_step(1, "ai_prompt", {"prompt_template": "Email: {{event.payload.email}}",
                                          "model": "haiku", "max_tokens": 200})
        result = await PromptStep(step, registry, no_providers, mock_llm).execute(CTX)
        mock_llm.complete_prompt.assert_awaited_once_with("Email: a@corp.com", max_tokens=200, model_tier="haiku")
        assert result.output == "plain answer"
        assert result.tokens_used == 7

    async def test_fenced_json_is_extracted(self, registry, no_providers, mock_llm):
        mock_llm.complete_prompt.return_value = {
            "text": 'Sure!\n```json\n{"is_spam": true, "confidence": 0.95}\n```', "tokens_used": 5, "model": "m",
        }
        step = make_step(1, "ai_prompt", {"prompt_template": "x", "output_type": "json"})
        result = await PromptStep(step, registry, no_providers, mock_llm).execute(CTX)
        assert result.success
        assert result.output == {"is_spam": True, "confidence": 0.95}

    async def test_raw_json_is_parsed(self, registry, no_providers, mock_llm):
        mock_llm.complete_prompt.return_value = {"text": ' {"score": 8} ', "tokens_used": 5, "model": "m"}
        step = make_step(1, "ai_prompt", {"prompt_template": "x", "output_type": "json"})
        result = await PromptStep(step, registry, no_providers, mock_llm).execute(CTX)
        assert result.output == {"score": 8}

    async def test_unparseable_json_is_step_failure(self, registry, no_providers, mock_llm):
        mock_llm.complete_prompt.return_value = {"text": "not json at all", "tokens_used": 5, "model": "m"}
        step = make_step(1, "ai_prompt", {"prompt_template": "x", "output_type": "json"})
        result = await PromptStep(step, registry, no_providers, mock_llm).execute(CTX)
        assert not result.success
        assert result.error.startswith("Failed to parse AI response as JSON")

    async def test_llm_error_is_step_failure(self, registry, no_providers, mock_llm):
        mock_llm.complete_prompt.side_effect = LLMError("LLM call timed out after 30s")
        step = make_step(1, "ai_prompt", {"prompt_template": "x"})
        result = await PromptStep(step, registry, no_providers, mock_llm).execute(CTX)
        assert not result.success
        assert "timed out" in result.error


# ── condition_check ───────────────────────────────────────────────────────────

class TestConditionStep:

    async def test_false_branch_emits(self, registry, no_providers, mock_llm):
        step = make_step(2, "condition_check", {
            "condition": "{{email_type.is_personal}} == true",
            "on_false": {"action": "emit_event", "event_type": "intake.new_lead"},
        })
        result = await ConditionStep(step, registry, no_providers, mock_llm).execute(CTX)
        assert result.success
        assert result.emit_event.event_type == "intake.new_lead"
        assert result.input == {"condition": "false == true", "result": False}
        assert not result.stop

    async def test_true_branch_tool_action_then_stop(self, registry, no_providers, mock_llm, calls):
        step = make_step(2, "condition_check", {
            "condition": "{{spam_check.is_spam}} == true && {{spam_check.confidence}} > 0.7",
            "on_true": {"action": "delete_contact", "contact_id": "{{event.entity_id}}",
                        "reason": "Spam detected", "finally": "stop"},
        })
        result = await ConditionStep(step, registry, no_providers, mock_llm).execute(CTX)
        assert result.success
        assert result.stop
        assert result.stop_reason == "Spam detected"
        assert calls == [("delete_contact", {"contact_id": "C1", "reason": "Spam detected"})]
        assert result.output["action"] == "delete_contact"

    async def test_legacy_then_shape(self, registry, no_providers, mock_llm):
        step = make_step(2, "condition_check", {
            "condition": "1 > 0",
            "on_true": {"then": "emit_event", "event_type": "x.y", "finally": "stop"},
        })
        result = await ConditionStep(step, registry, no_providers, mock_llm).execute(CTX)
        assert result.emit_event.event_type == "x.y"
        assert result.stop

    async def test_stop_reason_is_resolved(self, registry, no_providers, mock_llm):
        step = make_step(2, "condition_check", {
            "condition": "1 > 0",
            "on_true": {"action": "stop", "reason": "Existing contact {{event.entity_id}}"},
        })
        result = await ConditionStep(step, registry, no_providers, mock_llm).execute(CTX)
        assert result.stop
        assert result.stop_reason == "Existing contact C1"

    async def test_evaluation_error_defaults_to_false(self, registry, no_providers, mock_llm):
        step = make_step(2, "condition_check", {
            "condition": "undefined_thing > 3",
            "on_true": {"action": "stop"},
            "on_false": {"action": "continue"},
        })
        result = await ConditionStep(step, registry, no_providers, mock_llm).execute(CTX)
        assert result.success
        assert not result.stop
        assert result.input["result"] is False

    async def test_missing_branch_binds_none(self, registry, no_providers, mock_llm):
        step = make_step(2, "condition_check", {"condition": "1 > 0"})
        result = await ConditionStep(step, registry, no_providers, mock_llm).execute(CTX)
        assert result.success
        assert result.has_output
        assert result.output is None

    async def test_failing_branch_tool_fails_step(self, registry, no_providers, mock_llm):
        step = make_step(2, "condition_check", {"condition": "1 > 0", "on_true": {"action": "explode"}})
        result = await ConditionStep(step, registry, no_providers, mock_llm).execute(CTX)
        assert not result.success
        assert result.error == "upstream exploded"


# ── branch ────────────────────────────────────────────────────────────────────

class TestBranchStep:

    async def test_first_matching_branch_wins(self, registry, no_providers, mock_llm):
        step = make_step(3, "branch", {"branches": [
            {"condition": "{{spam_check.confidence}} > 0.99", "action": "emit_event", "event_type": "a"},
            {"condition": "{{spam_check.confidence}} > 0.9", "action": "emit_event", "event_type": "b"},
            {"condition": "1 > 0", "action": "emit_event", "event_type": "c"},
        ]})
        result = await BranchStep(step, registry, no_providers, mock_llm).execute(CTX)
        assert result.emit_event.event_type == "b"
        assert result.input == {"branch": 1}

    async def test_erroring_branch_is_skipped(self, registry, no_providers, mock_llm):
        step = make_step(3, "branch", {"branches": [
            {"condition": "nope.value > 1", "action": "stop"},
            {"condition": "1 > 0", "action": "emit_event", "event_type": "fallback"},
        ]})
        result = await BranchStep(step, registry, no_providers, mock_llm).execute(CTX)
        assert not result.stop
        assert result.emit_event.event_type == "fallback"

    async def test_no_match(self, registry, no_providers, mock_llm):
        step = make_step(3, "branch", {"branches": [{"condition": "1 > 2", "action": "stop"}]})
        result = await BranchStep(step, registry, no_providers, mock_llm).execute(CTX)
        assert result.success
        assert result.output == {"no_match": True}


class TestApplyBranchAction:

    async def test_none_descriptor(self, registry):
        result = await apply_branch_action(None, CTX, registry)
        assert result.success and result.output is None and not result.stop

    async def test_continue_is_noop(self, registry):
        result = await apply_branch_action({"action": "continue"}, CTX, registry)
        assert result.success and not result.stop and result.emit_event is None

    async def test_emit_entity_can_be_overridden(self, registry):
        result = await apply_branch_action(
            {"action": "emit_event", "event_type": "company.created", "entity_type": "company",
             "entity_id": "CO9", "payload": {"from": "{{event.entity_id}}"}},
            CTX, registry,
        )
        assert result.emit_event.entity_type == "company"
        assert result.emit_event.entity_id == "CO9"
        assert result.emit_event.payload == {"from": "C1"}
