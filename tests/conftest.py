"""Test fixtures: in-memory database, repository, registries, mock LLM, workflow builders.

All tests should use these fixtures for consistency.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from crmflow.config import CrmflowConfig
from crmflow.db.models import Base
from crmflow.db.repository import Repository
from crmflow.tools.enrichment import EnrichmentRegistry
from crmflow.tools.registry import ToolRegistry
from crmflow.types import ActionType, Condition, OnError, ToolDefinition, WorkflowDefinition, WorkflowStep


@pytest.fixture
def settings():
    """Configuration with no provider keys, independent of the environment and .env."""
    return CrmflowConfig(
        _env_file=None,
        llm_api_key=None,
        pdl_api_key=None,
        hunter_api_key=None,
        apollo_api_key=None,
        apify_api_key=None,
        perplexity_api_key=None,
        slack_webhook_url=None,
        enrichment_max_retries=0,
    )


@pytest_asyncio.fixture
async def session():
    """In-memory SQLite async session with schema created."""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with factory() as s:
        yield s
    await engine.dispose()


@pytest.fixture
def repo(session):
    return Repository(session)


@pytest.fixture
def tools(repo):
    """Every built-in tool, store-backed ones bound to the test repository."""
    registry = ToolRegistry()
    registry.load_registered(repo)
    return registry


@pytest.fixture
def enrichment(repo, settings):
    """Enrichment registry with no credentials anywhere: every provider unavailable."""
    return EnrichmentRegistry(repository=repo, settings=settings)


@pytest.fixture
def mock_llm():
    """LLM client double: available, replies with an empty JSON object."""
    llm = MagicMock()
    llm.is_available.return_value = True
    llm.complete_prompt = AsyncMock(return_value={"text": "{}", "tokens_used": 12, "model": "mock/model"})
    return llm


@pytest.fixture
def offline_llm():
    """LLM client double with no API key configured."""
    llm = MagicMock()
    llm.is_available.return_value = False
    llm.complete_prompt = AsyncMock(side_effect=AssertionError("must not be called"))
    return llm


# ── Builders ──

def make_step(order: int, action_type: str, config: dict = None, name: str = None,
              output: str = None, on_error: str = "stop", guards: list = None) -> WorkflowStep:
    return WorkflowStep(
        step_order=order,
        name=name or f"step {order}",
        action_type=ActionType(action_type),
        action_config=config or {},
        run_conditions=[Condition(**g) for g in (guards or [])],
        output_variable=output,
        on_error=OnError(on_error),
    )


def make_workflow(steps: list, slug: str = "test_flow", trigger: str = "contact.created",
                  is_active: bool = True) -> WorkflowDefinition:
    return WorkflowDefinition(
        slug=slug,
        name=slug.replace("_", " ").title(),
        trigger_event=trigger,
        is_active=is_active,
        steps=steps,
    )


def make_registry(**implementations) -> ToolRegistry:
    """ToolRegistry holding the given async functions under their keyword names."""
    registry = ToolRegistry()
    for name, fn in implementations.items():
        registry.register(ToolDefinition(name=name, description=name), fn)
    return registry
