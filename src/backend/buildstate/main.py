"""Buildstate FastAPI Application Entry Point."""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from buildstate import __version__
from buildstate.api import router as api_router
from buildstate.core.config import settings
from buildstate.core.deps import DbSession, engine
from buildstate.core.errors import register_exception_handlers
from buildstate.core.logging import configure_logging
from buildstate.services.recommendation_engine import get_rule_set

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler for startup/shutdown events."""
    configure_logging()
    logger.info("Starting application", app=settings.app_name, environment=settings.environment)

    # Fail fast on a broken rule asset
    get_rule_set()

    yield

    logger.info("Shutting down application", app=settings.app_name)
    await engine.dispose()


app = FastAPI(
    title=f"{settings.app_name} API",
    description="Property inspection lifecycle service",
    version=__version__,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

# Include API routes
app.include_router(api_router, prefix="/api/v1")

# Set up Prometheus metrics instrumentation
_instrumentator = None
if settings.metrics_enabled:
    from buildstate.core.metrics import setup_metrics, expose_metrics

    _instrumentator = setup_metrics(app)
    expose_metrics(app, _instrumentator)


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint for Kubernetes probes."""
    return {"status": "healthy", "version": __version__}


@app.get("/health/ready")
async def readiness_check(db: DbSession) -> dict[str, str]:
    """Readiness probe - checks the database is reachable."""
    try:
        await db.execute(text("SELECT 1"))
    except Exception as e:
        logger.warning("Readiness check failed", error=str(e))
        return {"status": "unavailable", "database": "error"}
    return {"status": "ready", "database": "ok"}
