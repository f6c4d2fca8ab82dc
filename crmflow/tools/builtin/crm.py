"""Built-in CRM tools: contacts, companies, notes, tasks, team config.

Every store-backed tool takes the Repository as its first argument (bound by
ToolRegistry.load_registered) and accepts ``**kwargs`` so that extra keys in
an input mapping are ignored rather than rejected.
"""

import logging
from datetime import date, datetime, timedelta, timezone
from typing import Any, Optional

from crmflow.config import config
from crmflow.tools.plugin import tool
from crmflow.types import parse_timestamp

logger = logging.getLogger(__name__)

PERSONAL_EMAIL_DOMAINS = frozenset({
    "gmail.com", "googlemail.com", "yahoo.com", "yahoo.co.uk", "hotmail.com", "outlook.com",
    "live.com", "msn.com", "icloud.com", "me.com", "mac.com", "aol.com", "protonmail.com",
    "proton.me", "mail.com", "email.com",
})

DEFAULT_ICP = {
    "titles": ["CEO", "CTO", "VP Engineering", "Head of Product"],
    "company_size": {"min": 50, "max": 500},
    "industries": ["Technology", "SaaS", "Software"],
    "signals": ["Recently funded", "Hiring", "New executive"],
}

DEFAULT_PRODUCT_CONTEXT = {
    "name": "Our Product",
    "description": "A headless CRM for modern sales teams",
    "value_props": ["AI-powered lead scoring", "Automated enrichment", "Natural language interface"],
}

# intake payload key -> contact column
INTAKE_FIELD_MAP = {
    "source": "source",
    "source_detail": "source_detail",
    "utm_source": "utm_source",
    "utm_medium": "utm_medium",
    "utm_campaign": "utm_campaign",
    "company": "company_name",
    "company_name": "company_name",
    "company_size": "company_size",
    "size": "company_size",
    "industry": "industry",
    "title": "title",
    "job_title": "title",
    "role": "title",
    "tech_stack": "tech_stack",
    "technologies": "tech_stack",
    "message": "message",
    "how_can_we_help": "message",
    "question": "message",
    "comments": "message",
    "phone": "phone",
    "linkedin": "linkedin_url",
    "linkedin_url": "linkedin_url",
}
_INTAKE_IGNORED = {"delay_until", "email_type", "pdl_enriched"}

# merge_contact_data fills these from the new submission when the existing value is blank
_MERGE_FIELDS = {
    "first_name": "first_name", "last_name": "last_name", "phone": "phone", "title": "title",
    "company": "company_name", "company_name": "company_name", "linkedin_url": "linkedin_url",
    "source": "source",
}


def _domain_of(email: str) -> Optional[str]:
    if "@" not in email:
        return None
    return email.split("@", 1)[1].strip().lower() or None


def _normalize_key(key: str) -> str:
    return "".join(ch if ch.isalnum() or ch == "_" else "_" for ch in key.lower())


async def _require_contact(repo, contact_id: str) -> dict:
    contact = await repo.get_contact(contact_id) if contact_id else None
    if contact is None:
        raise ValueError(f"Contact not found: {contact_id}")
    return contact


# ── Contacts ──

@tool(uses_store=True)
async def get_contact(repo, contact_id: str = "", **kwargs) -> dict:
    """Fetch a contact with its linked company."""
    return await _require_contact(repo, contact_id)


@tool(uses_store=True)
async def get_contact_brief(repo, contact_id: str = "", contact_name: str = "", **kwargs) -> dict:
    """Contact plus recent notes, open tasks and recent events."""
    if contact_id:
        contact = await _require_contact(repo, contact_id)
    elif contact_name:
        matches = await repo.find_contacts(query=contact_name, limit=1)
        if not matches:
            raise ValueError(f"Contact not found: {contact_name}")
        contact = await repo.get_contact(matches[0]["id"])
    else:
        raise ValueError("Must provide contact_id or contact_name")
    return {
        "contact": contact,
        "interactions": await repo.list_contact_notes(contact["id"]),
        "open_tasks": await repo.list_open_tasks(contact["id"]),
        "recent_signals": await repo.list_entity_events(contact["id"]),
    }


@tool(uses_store=True)
async def update_contact(repo, contact_id: str = "", **updates) -> dict:
    """Update contact fields. None and empty-string values are dropped.

    ``custom_fields`` is merged into the stored value rather than replacing it.
    With nothing left to write, the current contact is returned unchanged.
    """
    clean = {k: v for k, v in updates.items() if v is not None and v != ""}
    contact = await _require_contact(repo, contact_id)
    if not clean:
        return contact
    if isinstance(clean.get("custom_fields"), dict):
        clean["custom_fields"] = {**(contact.get("custom_fields") or {}), **clean["custom_fields"]}
    return await repo.update_contact(contact_id, clean)


@tool(uses_store=True)
async def parse_intake_payload(repo, contact_id: str = "", payload: dict = None, **kwargs) -> dict:
    """Map form-submission fields onto contact columns; the rest go to custom_fields."""
    if not payload or not isinstance(payload, dict):
        return {"parsed": False, "reason": "No payload"}

    updates: dict[str, Any] = {}
    custom: dict[str, Any] = {}
    for key, value in payload.items():
        if not value:
            continue
        normalized = _normalize_key(key)
        if normalized in INTAKE_FIELD_MAP:
            updates[INTAKE_FIELD_MAP[normalized]] = value
        elif normalized not in _INTAKE_IGNORED:
            custom[key] = value

    if isinstance(updates.get("tech_stack"), str):
        updates["tech_stack"] = [t.strip() for t in updates["tech_stack"].split(",")]

    if custom:
        existing = await _require_contact(repo, contact_id)
        updates["custom_fields"] = {**(existing.get("custom_fields") or {}), **custom}

    if not updates:
        return {"parsed": True, "fields_updated": 0}

    contact = await repo.update_contact(contact_id, updates)
    logger.info(f"[Tools] parse_intake_payload updated {len(updates)} fields")
    return {
        "parsed": True,
        "fields_updated": len(updates),
        "updated_fields": list(updates),
        "contact": contact,
    }


@tool(uses_store=True)
async def search_contacts(repo, email: str = "", query: str = "", limit: int = 10,
                          exact_match: bool = True, exclude_id: str = "", **kwargs) -> dict:
    """Find contacts by email (exact, case-insensitive) or by name/email substring.

    ``id`` carries the first match so workflows can reference it directly.
    """
    if email and not exact_match:
        query, email = email, ""
    if not email and not query:
        return {"contacts": [], "count": 0, "id": None}
    rows = await repo.find_contacts(
        email=email or None, query=query or None, limit=int(limit), exclude_id=exclude_id or None,
    )
    contacts = [{k: r.get(k) for k in ("id", "first_name", "last_name", "email")} for r in rows]
    return {"contacts": contacts, "count": len(contacts), "id": contacts[0]["id"] if contacts else None}


@tool(uses_store=True)
async def check_existing_contact(repo, email: str = "", **kwargs) -> dict:
    """Whether a contact with this email exists, and how recently they reached out."""
    if not email:
        return {"exists": False}
    rows = await repo.find_contacts(email=email, limit=1)
    if not rows:
        return {"exists": False}
    contact = rows[0]

    contact_type = "new"
    if contact.get("inbound_count"):
        last = parse_timestamp(contact.get("last_inbound_at"))
        days = (datetime.now(timezone.utc) - last).days if last else 999
        if days < 30:
            contact_type = "returning"
        elif days < 180:
            contact_type = "reengagement"
        else:
            contact_type = "dormant"

    return {
        "exists": True,
        "contact": contact,
        "contact_type": contact_type,
        "recent_interactions": await repo.list_contact_notes(contact["id"], limit=5),
    }


@tool(uses_store=True)
async def update_inbound_tracking(repo, contact_id: str = "", **kwargs) -> dict:
    """Count one more inbound touch on a contact."""
    contact = await _require_contact(repo, contact_id)
    count = (contact.get("inbound_count") or 0) + 1
    updated = await repo.update_contact(contact_id, {
        "inbound_count": count,
        "last_inbound_at": datetime.now(timezone.utc),
    })
    return {"inbound_count": count, "contact": updated}


@tool(uses_store=True)
async def merge_contact_data(repo, existing_contact_id: str = "", new_contact_id: str = "",
                             new_data: dict = None, **kwargs) -> dict:
    """Fold a duplicate submission into the existing contact and delete the duplicate.

    Blank fields on the existing contact are filled from *new_data*; the
    latest ``message`` always wins and ``additional_fields`` merge into
    custom_fields. The inbound counter is bumped.
    """
    existing = await _require_contact(repo, existing_contact_id)
    new_data = new_data if isinstance(new_data, dict) else {}

    updates: dict[str, Any] = {}
    for key, column in _MERGE_FIELDS.items():
        value = new_data.get(key)
        if value and not existing.get(column) and column not in updates:
            updates[column] = value
    if new_data.get("message"):
        updates["message"] = new_data["message"]
    extra = new_data.get("additional_fields")
    if isinstance(extra, dict) and extra:
        updates["custom_fields"] = {**(existing.get("custom_fields") or {}), **extra}
    updates["inbound_count"] = (existing.get("inbound_count") or 0) + 1
    updates["last_inbound_at"] = datetime.now(timezone.utc)

    contact = await repo.update_contact(existing_contact_id, updates)
    deleted = False
    if new_contact_id and new_contact_id != existing_contact_id:
        deleted = await repo.delete_contact(new_contact_id)
    logger.info(f"[Tools] merged into {existing_contact_id} (duplicate deleted: {deleted})")
    return {
        "merged": True,
        "contact": contact,
        "fields_updated": sorted(k for k in updates if k not in ("inbound_count", "last_inbound_at")),
        "duplicate_deleted": deleted,
    }


@tool(uses_store=True)
async def delete_contact(repo, contact_id: str = "", reason: str = "", **kwargs) -> dict:
    """Delete a contact (spam, duplicate)."""
    logger.info(f"[Tools] Deleting contact {contact_id}: {reason}")
    if not await repo.delete_contact(contact_id):
        raise ValueError(f"Contact not found: {contact_id}")
    return {"success": True, "contact_id": contact_id, "reason": reason}


@tool(uses_store=True)
async def add_contact_note(repo, contact_id: str = "", note: str = "", note_type: str = "Note", **kwargs) -> dict:
    """Attach a note to a contact."""
    await _require_contact(repo, contact_id)
    return await repo.add_contact_note(contact_id, note, note_type=note_type or "Note")


# ── Email helpers ──

@tool()
async def classify_email(email: str = "", **kwargs) -> dict:
    """Personal vs company email address."""
    if not email:
        return {"is_personal": True, "domain": None}
    domain = _domain_of(email)
    is_personal = domain in PERSONAL_EMAIL_DOMAINS
    return {"is_personal": is_personal, "is_company": not is_personal, "domain": domain, "email": email}


@tool()
async def extract_domain(email: str = "", **kwargs) -> dict:
    """Domain part of an email address."""
    if not email:
        return {"domain": None}
    return {"domain": _domain_of(email), "email": email}


# ── Companies ──

@tool(uses_store=True)
async def upsert_company(repo, domain: str = "", name: str = "", industry: str = "",
                         employee_count: str = "", enrichment_data: dict = None, **kwargs) -> dict:
    """Create or update a company, matched by domain."""
    data = {k: v for k, v in {
        "domain": domain, "name": name, "industry": industry,
        "employee_count": str(employee_count) if employee_count else "",
        "enrichment_data": enrichment_data,
    }.items() if v}
    data["enrichment_status"] = "complete"
    data["last_enriched_at"] = datetime.now(timezone.utc)

    existing = await repo.get_company_by_domain(domain) if domain else None
    if existing:
        return await repo.save_company(data, company_id=existing["id"])
    return await repo.save_company(data)


# ── Tasks ──

def _resolve_due_date(value: Any) -> Optional[str]:
    if not value:
        return None
    if value == "today":
        return date.today().isoformat()
    if value == "tomorrow":
        return (date.today() + timedelta(days=1)).isoformat()
    return str(value)


@tool(uses_store=True)
async def create_task(repo, contact_id: str = "", type: str = "follow_up", priority: int = 5,
                      reason: str = "", due_date: str = "", **kwargs) -> dict:
    """Create a follow-up task for a contact. Priority 1 is highest."""
    company_id = None
    if contact_id:
        contact = await _require_contact(repo, contact_id)
        company_id = contact.get("company_id")
    task = await repo.create_task({
        "team_id": config.default_team_id,
        "contact_id": contact_id or None,
        "company_id": company_id,
        "type": type,
        "priority": int(priority),
        "reason": reason,
        "due_date": _resolve_due_date(due_date),
    })
    return {"task": task, "message": f"Created task: {reason}"}


# ── Team config ──

@tool(uses_store=True)
async def get_icp(repo, **kwargs) -> dict:
    """The team's ideal customer profile."""
    value = await repo.get_team_config("icp", team_id=config.default_team_id)
    if value is None:
        logger.info("[Tools] No ICP found, using default")
        return dict(DEFAULT_ICP)
    return value


@tool(uses_store=True)
async def get_product_context(repo, **kwargs) -> dict:
    """What the team sells, for prompts that write outreach."""
    value = await repo.get_team_config("product_context", team_id=config.default_team_id)
    if value is None:
        logger.info("[Tools] No product context found, using default")
        return dict(DEFAULT_PRODUCT_CONTEXT)
    return value
