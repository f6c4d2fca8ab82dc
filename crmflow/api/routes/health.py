"""GET /health: database probe plus capability flags."""

import logging

from fastapi import APIRouter, Request
from sqlalchemy import text

from crmflow.api.deps import _session_factory
from crmflow.api.schemas import HealthResponse
from crmflow.llm.client import LLMClient
from crmflow.version import __version__

logger = logging.getLogger(__name__)
router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthResponse)
async def health_check(request: Request):
    """Database is required for "ok"; the LLM flag is informational."""
    services: dict[str, bool] = {"api": True, "database": False, "llm": LLMClient().is_available()}

    try:
        async with _session_factory(request)() as session:
            await session.execute(text("SELECT 1"))
        services["database"] = True
    except Exception as exc:
        logger.warning(f"[health] DB check failed: {exc}")

    overall = "ok" if services["database"] else "degraded"
    return HealthResponse(status=overall, version=__version__, services=services)
