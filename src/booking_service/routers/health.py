"""Health check endpoint."""

from __future__ import annotations

from fastapi import APIRouter

from booking_service.core.state import get_app_state
from booking_service.schemas import HealthResponse
from booking_service.services.booking_state import BOOKING_STATUSES

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Check service health and return statistics."""
    state = get_app_state()
    total_bookings = 0
    bookings_by_status = dict.fromkeys(sorted(BOOKING_STATUSES), 0)
    if state.store is not None:
        total_bookings = state.store.count_bookings()
        bookings_by_status.update(state.store.count_bookings_by_status())
    active_connections = state.hub.active_connections if state.hub is not None else 0
    return HealthResponse(
        status="ok",
        uptime_seconds=state.uptime_seconds,
        started_at=state.started_at,
        total_bookings=total_bookings,
        bookings_by_status=bookings_by_status,
        active_connections=active_connections,
    )
