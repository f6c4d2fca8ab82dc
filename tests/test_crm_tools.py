"""Built-in CRM tools, invoked through the registry the way workflows call them."""

from datetime import datetime, timedelta, timezone

import pytest
from freezegun import freeze_time

from crmflow.exceptions import ToolError


@pytest.fixture
async def contact(repo):
    return await repo.create_contact({"first_name": "Ann", "last_name": "Lee", "email": "ann@corp.com"})


async def test_builtin_tools_registered(tools):
    names = {t.name for t in tools.list_tools()}
    assert {"get_contact", "update_contact", "classify_email", "delete_contact", "search_contacts",
            "merge_contact_data", "create_task", "send_notification", "get_icp"} <= names


async def test_classify_email(tools):
    assert (await tools.invoke("classify_email", {"email": "bob@gmail.com"}))["is_personal"] is True
    company = await tools.invoke("classify_email", {"email": "bob@Corp.io"})
    assert company["is_company"] is True
    assert company["domain"] == "corp.io"
    assert (await tools.invoke("classify_email", {}))["is_personal"] is True


async def test_extract_domain(tools):
    assert (await tools.invoke("extract_domain", {"email": "a@b.co"}))["domain"] == "b.co"
    assert (await tools.invoke("extract_domain", {"email": "nope"}))["domain"] is None


async def test_get_contact_missing_raises(tools):
    with pytest.raises(ToolError, match="Contact not found"):
        await tools.invoke("get_contact", {"contact_id": "missing"})


async def test_update_contact_drops_blanks_and_merges_custom(tools, repo, contact):
    await repo.update_contact(contact["id"], {"custom_fields": {"a": 1}})
    updated = await tools.invoke("update_contact", {
        "contact_id": contact["id"], "title": "CTO", "phone": "", "company_name": None,
        "custom_fields": {"b": 2},
    })
    assert updated["title"] == "CTO"
    assert updated["phone"] is None
    assert updated["custom_fields"] == {"a": 1, "b": 2}


async def test_update_contact_rejects_unknown_column(tools, contact):
    with pytest.raises(ToolError, match="Unknown contact field"):
        await tools.invoke("update_contact", {"contact_id": contact["id"], "favourite_colour": "teal"})


async def test_parse_intake_payload(tools, contact):
    result = await tools.invoke("parse_intake_payload", {"contact_id": contact["id"], "payload": {
        "Job Title": "VP Eng", "tech_stack": "python, go", "delay_until": "later", "Budget": "50k",
    }})
    assert result["parsed"] is True
    assert result["contact"]["title"] == "VP Eng"
    assert result["contact"]["tech_stack"] == ["python", "go"]
    assert result["contact"]["custom_fields"] == {"Budget": "50k"}


async def test_search_contacts(tools, contact):
    found = await tools.invoke("search_contacts", {"email": "ANN@corp.com"})
    assert found["count"] == 1
    assert found["id"] == contact["id"]
    assert (await tools.invoke("search_contacts", {"email": "ann@corp.com", "exclude_id": contact["id"]}))["id"] is None
    assert (await tools.invoke("search_contacts", {}))["count"] == 0


async def test_check_existing_contact_buckets(tools, repo, contact):
    with freeze_time("2026-03-02", real_asyncio=True):
        assert (await tools.invoke("check_existing_contact", {"email": "ann@corp.com"}))["contact_type"] == "new"
        last = datetime(2026, 3, 2, tzinfo=timezone.utc) - timedelta(days=60)
        await repo.update_contact(contact["id"], {"inbound_count": 1, "last_inbound_at": last})
        result = await tools.invoke("check_existing_contact", {"email": "ann@corp.com"})
    assert result["exists"] is True
    assert result["contact_type"] == "reengagement"
    assert (await tools.invoke("check_existing_contact", {"email": "who@x.com"})) == {"exists": False}


async def test_merge_contact_data(tools, repo, contact):
    duplicate = await repo.create_contact({"email": "ann@corp.com", "phone": "555"})
    result = await tools.invoke("merge_contact_data", {
        "existing_contact_id": contact["id"],
        "new_contact_id": duplicate["id"],
        "new_data": {"first_name": "Annie", "phone": "555", "message": "Call me",
                     "additional_fields": {"budget": "10k"}},
    })
    assert result["merged"] and result["duplicate_deleted"]
    merged = result["contact"]
    assert merged["first_name"] == "Ann"
    assert merged["phone"] == "555"
    assert merged["message"] == "Call me"
    assert merged["custom_fields"] == {"budget": "10k"}
    assert merged["inbound_count"] == 1
    assert await repo.get_contact(duplicate["id"]) is None


async def test_delete_contact(tools, repo, contact):
    result = await tools.invoke("delete_contact", {"contact_id": contact["id"], "reason": "Spam"})
    assert result == {"success": True, "contact_id": contact["id"], "reason": "Spam"}
    with pytest.raises(ToolError):
        await tools.invoke("delete_contact", {"contact_id": contact["id"]})


async def test_notes_and_brief(tools, repo, contact):
    await tools.invoke("add_contact_note", {"contact_id": contact["id"], "note": "Met at conf"})
    await tools.invoke("create_task", {"contact_id": contact["id"], "reason": "Follow up", "due_date": "today"})
    brief = await tools.invoke("get_contact_brief", {"contact_name": "Lee"})
    assert brief["contact"]["id"] == contact["id"]
    assert brief["interactions"][0]["content"] == "Met at conf"
    assert brief["open_tasks"][0]["reason"] == "Follow up"


async def test_upsert_company_matches_domain(tools):
    first = await tools.invoke("upsert_company", {"domain": "corp.com", "name": "Corp"})
    second = await tools.invoke("upsert_company", {"domain": "corp.com", "industry": "SaaS"})
    assert first["id"] == second["id"]
    assert second["name"] == "Corp"
    assert second["industry"] == "SaaS"
    assert second["enrichment_status"] == "complete"


async def test_icp_default_and_stored(tools, repo):
    assert (await tools.invoke("get_icp", {}))["titles"]
    await repo.set_team_config("icp", {"titles": ["Founder"]})
    assert await tools.invoke("get_icp", {}) == {"titles": ["Founder"]}
