"""FastAPI application factory.

Assembles the routers and owns the background ``JobScheduler`` through the
lifespan.  ``community_dispatch.main`` re-exports the app object.
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from community_dispatch.api.deps import get_push_client
from community_dispatch.api.routes.delinquency import router as delinquency_router
from community_dispatch.api.routes.devices import router as devices_router
from community_dispatch.api.routes.health import router as health_router
from community_dispatch.api.routes.notifications import router as notifications_router
from community_dispatch.api.routes.publications import router as publications_router
from community_dispatch.core.logging import setup_logging
from community_dispatch.core.settings import get_settings
from community_dispatch.db.session import dispose_engine, get_session_factory
from community_dispatch.jobs.scheduler import JobScheduler

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    settings = get_settings()
    scheduler = None
    if settings.scheduler_enabled:
        scheduler = JobScheduler(get_session_factory(), get_push_client(), settings=settings)
        scheduler.start()
    else:
        logger.info("Background scheduler disabled (SCHEDULER_ENABLED=false)")
    app.state.scheduler = scheduler
    yield
    if scheduler is not None:
        await scheduler.stop()
    await get_push_client().aclose()
    get_push_client.cache_clear()
    dispose_engine()


settings = get_settings()

app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    lifespan=lifespan,
)

app.include_router(health_router)
app.include_router(devices_router)
app.include_router(notifications_router)
app.include_router(publications_router)
app.include_router(delinquency_router)
