"""FastAPI application factory."""

from __future__ import annotations

from fastapi import FastAPI

from booking_service.config import get_settings
from booking_service.core.exceptions import register_exception_handlers
from booking_service.core.lifespan import lifespan
from booking_service.core.middleware import RequestValidationMiddleware, TraceIdMiddleware
from booking_service.routers import (
    bookings,
    execution,
    health,
    notifications,
    payments,
    realtime,
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
    app.include_router(bookings.router, tags=["Bookings"])
    app.include_router(payments.router, tags=["Payments"])
    app.include_router(execution.router, tags=["Execution"])
    app.include_router(reviews.router, tags=["Reviews"])
    app.include_router(notifications.router, tags=["Notifications"])
    app.include_router(realtime.router, tags=["Realtime"])

    app.add_middleware(
        RequestValidationMiddleware,
        max_body_size=settings.request.max_body_size,
    )
    app.add_middleware(TraceIdMiddleware)

    return app
