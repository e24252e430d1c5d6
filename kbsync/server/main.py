"""kbsync server entry point.

Serves the REST API at /api/v1 and a /health probe.  Lifespan configures
the Celery broker for kbsync.tasks and disposes the database
engine on shutdown.

Entry point:
    uvicorn kbsync.server.main:app --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI
from fastapi.responses import JSONResponse
from fastapi.routing import APIRoute

from kbsync.api.router import api_router
from kbsync.config import settings
from kbsync.db.session import engine
from kbsync.tasks import configure_celery

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Startup: configure Celery.  Shutdown: dispose the async engine."""
    logger.info("kbsync server starting up...")

    configure_celery(settings.redis_url)
    logger.info("Celery configured (scheduler tick every %d min).", settings.scheduler_tick_minutes)

    yield

    logger.info("kbsync server shutting down - disposing database engine...")
    await engine.dispose()
    logger.info("Database engine disposed.")


def custom_generate_unique_id(route: APIRoute) -> str:
    """Generate deterministic operation IDs for REST routes."""
    if route.tags:
        return f"{route.tags[0]}-{route.name}"
    return route.name


app = FastAPI(
    title="kbsync",
    description="Website knowledge synchronization and conflict resolution",
    version="0.1.0",
    lifespan=lifespan,
    generate_unique_id_function=custom_generate_unique_id,
)


@app.get("/health")
async def health() -> JSONResponse:
    """Simple health check endpoint for load balancers and readiness probes."""
    return JSONResponse({"status": "ok", "service": "kbsync"})


# REST API at /api/v1/ - mounted after /health
app.include_router(api_router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("kbsync.server.main:app", host="0.0.0.0", port=8000)
