"""Wire a dispatcher from one database session."""

from typing import Optional

from crmflow.callbacks.logging import LoggingCallback
from crmflow.db.repository import Repository
from crmflow.llm.client import LLMClient
from crmflow.tools.enrichment import EnrichmentRegistry
from crmflow.tools.registry import ToolRegistry
from crmflow.triggers.dispatcher import EventDispatcher


def build_dispatcher(
    session,
    team_id: Optional[str] = None,
    llm: Optional[LLMClient] = None,
    callbacks: Optional[list] = None,
    **kwargs,
) -> EventDispatcher:
    """Build an EventDispatcher whose tools, enrichment and runs share *session*.

    Extra keyword arguments go straight to EventDispatcher.
    """
    repository = Repository(session)
    tools = ToolRegistry()
    tools.load_registered(repository)
    return EventDispatcher(
        repository,
        tools,
        EnrichmentRegistry(repository=repository, team_id=team_id),
        llm or LLMClient(),
        callbacks=[LoggingCallback()] if callbacks is None else callbacks,
        **kwargs,
    )
