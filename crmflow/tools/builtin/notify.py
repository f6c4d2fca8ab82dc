"""Built-in notification tool: store a notification and post it to Slack."""

import logging

import httpx

from crmflow.config import config
from crmflow.tools.plugin import tool

logger = logging.getLogger(__name__)

_TEMPLATES = {
    "hot_lead": "🔥 Hot lead: {contact_name} ({title}) at {company} scored {score}/10. {summary}",
    "warm_lead": "Warm lead: {contact_name} at {company} scored {score}/10.",
    "returning_contact": "Returning contact: {contact_name} at {company} ({request_type}): {message}",
}


class _Blank(dict):
    def __missing__(self, key):
        return ""


def render_notification(template: str, data: dict, message: str = "") -> str:
    """Fill a named template with *data*. Unknown keys render empty."""
    if message:
        return message
    fmt = _TEMPLATES.get(template)
    if fmt is None:
        details = ", ".join(f"{k}: {v}" for k, v in data.items())
        return f"{template or 'notification'}: {details}"
    return fmt.format_map(_Blank({k: "" if v is None else v for k, v in data.items()})).strip()


async def _webhook_url(repo) -> str:
    stored = await repo.get_integration_credentials("slack", team_id=config.default_team_id)
    if stored and stored.get("webhook_url"):
        return stored["webhook_url"]
    return config.slack_webhook_url or ""


@tool(uses_store=True)
async def send_notification(repo, channel: str = "slack", template: str = "", message: str = "",
                            data: dict = None, **kwargs) -> dict:
    """Notify the sales team. Always stored; posted to Slack when a webhook is configured."""
    data = data if isinstance(data, dict) else {}
    text = render_notification(template, data, message)
    record = await repo.create_notification({
        "team_id": config.default_team_id,
        "channel": channel,
        "template": template or None,
        "message": text,
        "data": data,
    })

    delivered, error = False, None
    url = await _webhook_url(repo) if channel == "slack" else ""
    if url:
        try:
            async with httpx.AsyncClient(timeout=30) as c:
                r = await c.post(url, json={"text": text})
            delivered = r.status_code < 300
            if not delivered:
                error = f"Slack webhook error: {r.status_code}"
        except httpx.HTTPError as exc:
            error = str(exc) or type(exc).__name__
        await repo.update_notification(record["id"], {"delivered": delivered, "error": error})
        if error:
            logger.warning(f"[Tools] send_notification: {error}")

    return {
        "sent": True,
        "notification_id": record["id"],
        "channel": channel,
        "delivered": delivered,
        "error": error,
        "message": text,
    }
