"""Request-scoped dependencies."""

from fastapi import Request

from crmflow.config import config
from crmflow.core.factory import build_dispatcher


def _session_factory(request: Request):
    factory = getattr(request.app.state, "async_session", None)
    if factory is None:
        from crmflow.db.database import async_session
        factory = async_session
    return factory


async def get_dispatcher(request: Request):
    """One dispatcher per request, on its own session."""
    async with _session_factory(request)() as session:
        yield build_dispatcher(session, team_id=config.default_team_id)
