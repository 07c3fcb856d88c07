"""FastAPI application factory."""

from __future__ import annotations

from fastapi import FastAPI

from job_escrow_service.config import get_settings
from job_escrow_service.core.exceptions import register_exception_handlers
from job_escrow_service.core.lifespan import lifespan
from job_escrow_service.core.middleware import RequestValidationMiddleware
from job_escrow_service.routers import contractors, events, health, jobs, proposals, settlement


def create_app() -> FastAPI:
    """
    Create and configure FastAPI application.

    Returns:
        Configured FastAPI instance with all routers registered.
    """
    settings = get_settings()

    app = FastAPI(
        title=f"{settings.service.name} Service",
        version=settings.service.version,
        lifespan=lifespan,
    )

    register_exception_handlers(app)

    app.include_router(health.router, tags=["Operations"])
    app.include_router(contractors.router, tags=["Contractors"])
    app.include_router(jobs.router, tags=["Jobs"])
    app.include_router(proposals.router, tags=["Proposals"])
    app.include_router(settlement.router, tags=["Settlement"])
    app.include_router(events.router, tags=["Events"])

    app.add_middleware(
        RequestValidationMiddleware,
        max_body_size=settings.request.max_body_size,
    )

    return app
