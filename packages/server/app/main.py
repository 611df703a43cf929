"""
Taskflow API Server

Entry point for the FastAPI application.
"""

from typing import Optional

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.config import Settings, get_settings
from app.core.database import async_session_factory, init_db
from app.core.engine import build_engine
from app.core.errors import register_error_handlers
from app.core.logging_config import configure_logging
from app.api.v1 import router as api_v1_router

log = structlog.get_logger()


def create_app(
    settings: Optional[Settings] = None,
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = settings or get_settings()
    configure_logging(settings.log_level, settings.log_format)

    app = FastAPI(
        title="Taskflow",
        description="Task dependency graph engine for collaborative projects.",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )
    session_factory = session_factory or async_session_factory
    app.state.dependency_engine = build_engine(session_factory, settings)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE"],
        allow_headers=["Content-Type", "Authorization", "X-Actor-Id"],
    )
    register_error_handlers(app)

    app.include_router(api_v1_router, prefix="/api/v1")

    @app.get("/health", tags=["System"])
    async def health_check():
        """Health check endpoint for liveness probes."""
        return {"status": "ok"}

    @app.on_event("startup")
    async def on_startup():
        log.info("Taskflow starting", cache_ttl=settings.flow_cache_ttl_seconds)
        if settings.create_schema_on_startup:
            await init_db(session_factory.kw["bind"])
            log.info("Database schema ensured")

    return app


app = create_app()
