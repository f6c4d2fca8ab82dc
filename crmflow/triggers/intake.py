"""Normalise trigger deliveries into Events.

Two shapes are accepted:

  {"type": "INSERT", "record": {...events row...}}     database insert hook
  {"id": ..., "event_type" | "type": ..., ...}         direct event object
"""

from __future__ import annotations

from typing import Any

from crmflow.exceptions import InvalidTriggerPayload
from crmflow.types import Event, parse_timestamp


def _record_to_event(record: dict[str, Any]) -> Event:
    event_type = record.get("event_type") or record.get("type")
    if not event_type:
        raise InvalidTriggerPayload("Invalid payload format: missing event_type")
    fields: dict[str, Any] = {
        "type": event_type,
        "entity_type": record.get("entity_type"),
        "entity_id": record.get("entity_id"),
        "payload": record.get("payload") or {},
        "team_id": record.get("team_id"),
        "source": record.get("source"),
        "processed": bool(record.get("processed")),
        "processed_at": parse_timestamp(record.get("processed_at")),
    }
    if record.get("id"):
        fields["id"] = str(record["id"])
    if record.get("created_at"):
        fields["created_at"] = parse_timestamp(record["created_at"])
    if not isinstance(fields["payload"], dict):
        raise InvalidTriggerPayload("Invalid payload format: payload must be an object")
    return Event(**fields)


def normalize_trigger_payload(body: Any) -> Event:
    """Turn a trigger body into an Event.

    Raises:
        InvalidTriggerPayload: body matches neither accepted shape
    """
    if not isinstance(body, dict):
        raise InvalidTriggerPayload("Invalid payload format")
    if body.get("type") == "INSERT" and isinstance(body.get("record"), dict):
        return _record_to_event(body["record"])
    if body.get("id") and (body.get("event_type") or body.get("type")):
        return _record_to_event(body)
    raise InvalidTriggerPayload("Invalid payload format")
