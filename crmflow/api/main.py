"""FastAPI application factory with lifespan management."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from crmflow.callbacks.logging import configure_logging
from crmflow.config import config
from crmflow.version import __version__

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: startup and shutdown."""
    # ── Startup ──
    configure_logging(config.log_level)
    logger.info(f"crmflow v{__version__} starting...")

    # 1. Database
    from crmflow.db.database import init_db, async_session
    await init_db()
    app.state.async_session = async_session

    # 2. Bundled workflows (idempotent)
    if config.seed_on_startup:
        from crmflow.db.seed import seed_workflows
        async with async_session() as session:
            slugs = await seed_workflows(session)
        logger.info(f"Seeded {len(slugs)} workflow(s)")

    # 3. Background event monitor, on its own long-lived session
    monitor = None
    monitor_session = None
    if config.monitor_on_startup:
        from crmflow.core.factory import build_dispatcher
        from crmflow.triggers.monitor import EventMonitor
        monitor_session = async_session()
        dispatcher = build_dispatcher(monitor_session, team_id=config.default_team_id)
        monitor = EventMonitor(dispatcher, dispatcher.repository)
        await monitor.start()
    app.state.monitor = monitor

    logger.info(f"crmflow v{__version__} ready")

    yield

    # ── Shutdown ──
    logger.info("crmflow shutting down...")
    if monitor is not None:
        await monitor.stop()
    if monitor_session is not None:
        await monitor_session.close()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="crmflow",
        description="Event-driven CRM workflow engine.",
        version=__version__,
        lifespan=lifespan,
    )

    from crmflow.api.routes import events, health, runs, workflows
    app.include_router(health.router)
    app.include_router(events.router)
    app.include_router(workflows.router)
    app.include_router(runs.router)
    return app


app = create_app()
