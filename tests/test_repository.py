"""Repository: events, workflows, runs, integrations, team config, contacts."""

import pytest

from conftest import make_step, make_workflow
from crmflow.types import Event, RunStatus, StepStatus, WorkflowRun, WorkflowRunLog


async def test_event_roundtrip_and_processing(repo):
    event = await repo.create_event(Event(type="contact.created", entity_id="C1", payload={"a": 1}))
    assert not event.processed

    await repo.mark_event_processed(event.id)
    stored = await repo.get_event(event.id)
    assert stored.processed
    assert stored.processed_at is not None
    assert await repo.list_unprocessed_events() == []


async def test_unprocessed_events_oldest_first(repo):
    a = await repo.create_event(Event(type="a"))
    b = await repo.create_event(Event(type="b"))
    assert [e.id for e in await repo.list_unprocessed_events()] == [a.id, b.id]
    assert [e.id for e in await repo.list_unprocessed_events(limit=1)] == [a.id]


async def test_save_workflow_replaces_steps(repo):
    flow = make_workflow([make_step(1, "branch"), make_step(2, "branch")], slug="flow")
    await repo.save_workflow(flow)
    replaced = make_workflow([make_step(1, "condition_check", {"condition": "1 > 0"},
                                        guards=[{"field": "x", "operator": "is_empty"}])], slug="flow")
    saved = await repo.save_workflow(replaced)

    assert saved.id == flow.id
    assert len(saved.steps) == 1
    assert saved.steps[0].run_conditions[0].operator == "is_empty"
    assert saved.steps[0].id is not None
    assert len(await repo.list_workflows()) == 1


async def test_active_workflows_filter(repo):
    await repo.save_workflow(make_workflow([], slug="on"))
    await repo.save_workflow(make_workflow([], slug="off", is_active=False))
    await repo.save_workflow(make_workflow([], slug="elsewhere", trigger="x.y"))
    assert [w.slug for w in await repo.list_active_workflows("contact.created")] == ["on"]
    assert [w.slug for w in await repo.list_workflows(active_only=True)] == ["elsewhere", "on"]


async def test_run_lifecycle(repo):
    run = await repo.create_run(WorkflowRun(workflow_template_id="wf", context={"k": "v"}))
    assert run.status == RunStatus.RUNNING

    await repo.add_run_log(WorkflowRunLog(workflow_run_id=run.id, step_order=2, step_name="b",
                                          status=StepStatus.SKIPPED))
    await repo.add_run_log(WorkflowRunLog(workflow_run_id=run.id, step_order=1, step_name="a",
                                          status=StepStatus.COMPLETED, output={"x": 1}))
    updated = await repo.update_run(run.id, {"status": RunStatus.COMPLETED, "final_context": {"k": "w"}})

    assert updated.status == RunStatus.COMPLETED
    assert updated.final_context == {"k": "w"}
    assert [log.step_name for log in await repo.list_run_logs(run.id)] == ["a", "b"]
    assert [r.id for r in await repo.list_runs(status="completed")] == [run.id]
    assert await repo.list_runs(status="failed") == []


async def test_update_run_rejects_unknown_fields(repo):
    run = await repo.create_run(WorkflowRun(workflow_template_id="wf"))
    with pytest.raises(ValueError):
        await repo.update_run(run.id, {"workflow_template_id": "other"})


async def test_integration_team_row_wins(repo):
    await repo.save_integration("hunter", {"api_key": "global"})
    await repo.save_integration("hunter", {"api_key": "team"}, team_id="t1")
    await repo.save_integration("apollo", {"api_key": "off"}, is_enabled=False)

    assert await repo.get_integration_credentials("hunter", team_id="t1") == {"api_key": "team"}
    assert await repo.get_integration_credentials("hunter") == {"api_key": "global"}
    assert await repo.get_integration_credentials("apollo") is None


async def test_team_config_fallback(repo):
    await repo.set_team_config("icp", {"titles": ["CTO"]})
    assert await repo.get_team_config("icp", team_id="t9") == {"titles": ["CTO"]}
    await repo.set_team_config("icp", {"titles": ["CEO"]}, team_id="t9")
    assert await repo.get_team_config("icp", team_id="t9") == {"titles": ["CEO"]}
    assert await repo.get_team_config("missing") is None


async def test_contact_crud_and_search(repo):
    company = await repo.save_company({"name": "Corp", "domain": "corp.com"})
    contact = await repo.create_contact({"first_name": "Ann", "email": "Ann@Corp.com", "company_id": company["id"]})

    fetched = await repo.get_contact(contact["id"])
    assert fetched["company"]["domain"] == "corp.com"
    assert [c["id"] for c in await repo.find_contacts(email="ann@corp.com")] == [contact["id"]]
    assert [c["id"] for c in await repo.find_contacts(query="an")] == [contact["id"]]
    assert await repo.find_contacts(email="ann@corp.com", exclude_id=contact["id"]) == []

    updated = await repo.update_contact(contact["id"], {"title": "CTO"})
    assert updated["title"] == "CTO"
    assert await repo.delete_contact(contact["id"])
    assert await repo.get_contact(contact["id"]) is None
    assert not await repo.delete_contact(contact["id"])
