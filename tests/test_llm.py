"""LLMClient: tier routing, response shape, error normalisation, JSON extraction."""

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest

from crmflow.exceptions import LLMError
from crmflow.llm.client import LLMClient, extract_json


def _response(text, prompt_tokens=10, completion_tokens=5):
    return SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=text))],
        usage=SimpleNamespace(prompt_tokens=prompt_tokens, completion_tokens=completion_tokens),
    )


@pytest.fixture
def client():
    return LLMClient(model_default="test/big", model_haiku="test/small", api_key="sk-test", timeout=1)


def test_tier_resolution(client):
    assert client.resolve_model("haiku") == "test/small"
    assert client.resolve_model("sonnet") == "test/big"
    assert client.resolve_model(None) == "test/big"
    assert client.resolve_model("openai/gpt-4o-mini") == "openai/gpt-4o-mini"


def test_availability(monkeypatch):
    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
    monkeypatch.setattr("crmflow.llm.client.config.llm_api_key", None)
    assert LLMClient(api_key="k").is_available()
    assert not LLMClient().is_available()


async def test_complete_prompt(client, monkeypatch):
    acompletion = AsyncMock(return_value=_response("hello"))
    monkeypatch.setattr("crmflow.llm.client.litellm.acompletion", acompletion)

    result = await client.complete_prompt("Say hi", max_tokens=50, model_tier="haiku")

    assert result == {"text": "hello", "tokens_used": 15, "model": "test/small"}
    kwargs = acompletion.await_args.kwargs
    assert kwargs["model"] == "test/small"
    assert kwargs["max_tokens"] == 50
    assert kwargs["api_key"] == "sk-test"
    assert kwargs["messages"] == [{"role": "user", "content": "Say hi"}]


async def test_provider_error_is_llm_error(client, monkeypatch):
    monkeypatch.setattr("crmflow.llm.client.litellm.acompletion", AsyncMock(side_effect=RuntimeError("401")))
    with pytest.raises(LLMError, match="LLM call failed: 401"):
        await client.complete_prompt("x")


async def test_timeout_is_llm_error(monkeypatch):
    client = LLMClient(model_default="test/big", api_key="k", timeout=0.05)

    async def slow(**kwargs):
        await asyncio.sleep(5)

    monkeypatch.setattr("crmflow.llm.client.litellm.acompletion", slow)
    with pytest.raises(LLMError, match="timed out"):
        await client.complete_prompt("x")


@pytest.mark.parametrize("text,expected", [
    ('{"a": 1}', {"a": 1}),
    ('Here you go:\n```json\n{"a": [1, 2]}\n```\nThanks', {"a": [1, 2]}),
    ('```\n{"b": true}\n```', {"b": True}),
    ("  [1, 2]  ", [1, 2]),
])
def test_extract_json(text, expected):
    assert extract_json(text) == expected


def test_extract_json_rejects_prose():
    with pytest.raises(ValueError):
        extract_json("no json here")
