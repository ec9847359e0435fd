"""FastAPI application factory."""

from __future__ import annotations

from fastapi import FastAPI

from crewlink_service.config import get_settings
from crewlink_service.core.exceptions import register_exception_handlers
from crewlink_service.core.lifespan import lifespan
from crewlink_service.core.middleware import RequestValidationMiddleware
from crewlink_service.routers import (
    bids,
    bookings,
    conversations,
    health,
    jobs,
    notifications,
    payments,
    reviews,
)


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
    app.include_router(jobs.router, tags=["Jobs"])
    app.include_router(bids.router, tags=["Bids"])
    app.include_router(bookings.router, tags=["Bookings"])
    app.include_router(payments.router, tags=["Payments"])
    app.include_router(notifications.router, tags=["Notifications"])
    app.include_router(conversations.router, tags=["Conversations"])
    app.include_router(reviews.router, tags=["Reviews"])

    app.add_middleware(
        RequestValidationMiddleware,
        max_body_size=settings.request.max_body_size,
    )

    return app
