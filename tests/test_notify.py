"""send_notification: always stored, posted to Slack when a webhook exists."""

import httpx
import respx

from crmflow.tools.builtin.notify import render_notification

HOOK = "https://hooks.slack.test/T000/B000"


def test_render_named_template():
    text = render_notification("warm_lead", {"contact_name": "Ann", "company": "Corp", "score": 7})
    assert text == "Warm lead: Ann at Corp scored 7/10."


def test_render_missing_keys_are_blank():
    assert render_notification("warm_lead", {}) == "Warm lead:  at  scored /10."


def test_explicit_message_wins():
    assert render_notification("hot_lead", {"score": 9}, message="Custom") == "Custom"


def test_unknown_template_lists_data():
    assert render_notification("odd", {"a": 1}) == "odd: a: 1"


async def test_stored_without_webhook(tools):
    result = await tools.invoke("send_notification", {"template": "warm_lead", "data": {"contact_name": "Ann"}})
    assert result["sent"] is True
    assert result["delivered"] is False
    assert result["error"] is None
    assert result["notification_id"]


@respx.mock
async def test_posts_to_stored_webhook(tools, repo):
    await repo.save_integration("slack", {"webhook_url": HOOK})
    route = respx.post(HOOK).mock(return_value=httpx.Response(200, text="ok"))

    result = await tools.invoke("send_notification", {"message": "Hello team"})

    assert route.called
    assert route.calls.last.request.read() in (b'{"text":"Hello team"}', b'{"text": "Hello team"}')
    assert result["delivered"] is True


@respx.mock
async def test_webhook_failure_is_reported_not_raised(tools, repo):
    await repo.save_integration("slack", {"webhook_url": HOOK})
    respx.post(HOOK).mock(return_value=httpx.Response(500))

    result = await tools.invoke("send_notification", {"message": "Hello"})

    assert result["sent"] is True
    assert result["delivered"] is False
    assert result["error"] == "Slack webhook error: 500"
