"""Thin wrapper around litellm for crmflow prompt steps.

litellm handles Anthropic, OpenAI, Ollama, and 100+ providers.
This wrapper adds: model tiers, availability check, error normalization,
usage extraction.

Model tiers
───────────
Workflow steps name a tier, not a provider model:

  model_tier="haiku"             → config.llm_model_haiku    (fast, cheap checks)
  model_tier="sonnet"/"default"  → config.llm_model_default  (extraction, analysis)

Anything else is passed through as an explicit litellm model string.
"""

import asyncio
import json
import os
import re
from typing import Any, Optional

import litellm
from crmflow.config import config
from crmflow.exceptions import LLMError

TIER_HAIKU = "haiku"
TIER_DEFAULT = "default"

_FENCED_JSON = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```")


def extract_json(text: str) -> Any:
    """Parse a JSON value out of model text.

    A fenced ```json block wins; otherwise the whole text is parsed.

    Raises:
        ValueError: if no JSON can be decoded
    """
    match = _FENCED_JSON.search(text or "")
    candidate = match.group(1) if match else (text or "").strip()
    return json.loads(candidate)


class LLMClient:
    """Thin wrapper around litellm for crmflow-specific usage."""

    def __init__(self, model_default: str = None, model_haiku: str = None, api_key: str = None,
                 timeout: int = None):
        self.model_default = model_default or config.llm_model_default
        self.model_haiku = model_haiku or config.llm_model_haiku
        self.api_key = api_key or config.llm_api_key
        self.timeout = timeout or config.llm_timeout_seconds
        litellm.drop_params = True  # ignore unsupported params per provider

    def is_available(self) -> bool:
        """True when a provider key is configured; prompt steps are skipped otherwise."""
        return bool(self.api_key or os.environ.get("ANTHROPIC_API_KEY"))

    def resolve_model(self, tier: Optional[str]) -> str:
        if tier == TIER_HAIKU:
            return self.model_haiku
        if not tier or tier in (TIER_DEFAULT, "sonnet"):
            return self.model_default
        return tier

    async def complete_prompt(self, prompt: str, max_tokens: int = 1000,
                              model_tier: str = TIER_DEFAULT) -> dict:
        """Send one user prompt via litellm.acompletion().

        Args:
            prompt:     Fully rendered prompt text
            max_tokens: Completion budget
            model_tier: "haiku", "sonnet"/"default", or an explicit model string

        Returns:
            {"text": str, "tokens_used": int, "model": str}

        Raises:
            LLMError: On any LLM provider error or timeout
        """
        model = self.resolve_model(model_tier)
        kwargs = {
            "model": model,
            "messages": [{"role": "user", "content": prompt}],
            "max_tokens": max_tokens,
        }
        if self.api_key:
            kwargs["api_key"] = self.api_key
        try:
            response = await asyncio.wait_for(litellm.acompletion(**kwargs), timeout=self.timeout)
        except asyncio.TimeoutError:
            raise LLMError(f"LLM call timed out after {self.timeout}s", details={"model": model})
        except Exception as e:
            raise LLMError(f"LLM call failed: {e}", details={"model": model})

        choice = response.choices[0]
        usage = getattr(response, "usage", None)
        tokens = 0
        if usage is not None:
            tokens = (usage.prompt_tokens or 0) + (usage.completion_tokens or 0)
        return {
            "text": choice.message.content or "",
            "tokens_used": tokens,
            "model": model,
        }
