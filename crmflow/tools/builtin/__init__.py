"""Built-in tools package. Import to register all built-in tools."""

from crmflow.tools.builtin.crm import (
    get_contact, get_contact_brief, update_contact, parse_intake_payload, search_contacts,
    check_existing_contact, update_inbound_tracking, merge_contact_data, delete_contact,
    add_contact_note, classify_email, extract_domain, upsert_company, create_task,
    get_icp, get_product_context,
)
from crmflow.tools.builtin.notify import send_notification

__all__ = [
    "get_contact", "get_contact_brief", "update_contact", "parse_intake_payload", "search_contacts",
    "check_existing_contact", "update_inbound_tracking", "merge_contact_data", "delete_contact",
    "add_contact_note", "classify_email", "extract_domain", "upsert_company", "create_task",
    "get_icp", "get_product_context",
    "send_notification",
]
