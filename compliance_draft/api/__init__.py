"""
FastAPI application factory and API package.

Run with:
    uvicorn compliance_draft.api:app --reload --port 8000

Or via main.py:
    python -m compliance_draft --serve
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from compliance_draft.config import get_settings
from compliance_draft.api.routes import builder_router, health_router
from compliance_draft.core.session import BuilderSession

logger = logging.getLogger(__name__)


def create_app(session: Optional[BuilderSession] = None) -> FastAPI:
    """Application factory — create and configure the FastAPI instance.

    Pass ``session`` to serve an already-built session (tests do this);
    otherwise one is built from settings and hydrated on startup.
    """
    settings = get_settings()

    application = FastAPI(
        title="Compliance Form Builder API",
        description="Local draft editing with debounced autosave to the builder backend",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
    )

    # CORS: allow the frontend (adjust origins in production)
    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Register route groups (includes WebSocket at /api/builder/ws)
    application.include_router(health_router, tags=["Health"])
    application.include_router(builder_router, prefix="/api/builder", tags=["Builder"])

    application.state.session = session

    @application.on_event("startup")
    async def startup():
        logger.info(f"Starting {settings.app_name} API")
        if application.state.session is None:
            application.state.session = BuilderSession.from_settings(settings)
            await application.state.session.load()

    @application.on_event("shutdown")
    async def shutdown():
        if application.state.session is not None:
            await application.state.session.close()

    return application


# Module-level instance for `uvicorn compliance_draft.api:app`
app = create_app()
