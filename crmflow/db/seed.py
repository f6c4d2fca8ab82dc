"""Seed the database with the bundled agent workflows.

Creates (or replaces, by slug):
- intake_agent_v2  (contact.created)
- sdr_agent_v2     (intake.new_contact)
- contact_agent    (sdr.complete)
"""

import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from crmflow.config import load_workflows_yaml
from crmflow.db.repository import Repository

logger = logging.getLogger(__name__)


async def seed_workflows(session: AsyncSession, path: Optional[str] = None) -> list[str]:
    """Load workflow definitions from YAML and upsert them.

    Idempotent: running it twice leaves one copy of each workflow.

    Args:
        session: Async database session
        path: Optional workflows.yaml; defaults to the bundled definitions

    Returns:
        Slugs of the saved workflows.
    """
    repo = Repository(session)
    saved = []
    for definition in load_workflows_yaml(path):
        await repo.save_workflow(definition)
        saved.append(definition.slug)
        logger.info(f"[Seed] {definition.slug} ({len(definition.steps)} steps) on {definition.trigger_event}")
    return saved
