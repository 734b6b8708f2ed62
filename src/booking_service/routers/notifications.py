"""Notification inbox endpoints."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from fastapi import APIRouter, Request

from booking_service.core.state import get_app_state
from booking_service.routers.validation import authenticate

if TYPE_CHECKING:
    from booking_service.services.notification_projector import NotificationProjector

router = APIRouter()


def _projector() -> NotificationProjector:
    state = get_app_state()
    if state.notification_projector is None:
        msg = "NotificationProjector not initialized"
        raise RuntimeError(msg)
    return state.notification_projector


@router.get("/notifications")
async def list_notifications(request: Request) -> dict[str, Any]:
    """List the caller's notifications, newest first."""
    principal_id = await authenticate(request)
    return _projector().list_for_user(principal_id)


# MUST be registered before PUT /notifications/{notification_id}/read
@router.put("/notifications/read-all")
async def mark_all_read(request: Request) -> dict[str, Any]:
    """Mark every notification of the caller as read."""
    principal_id = await authenticate(request)
    return _projector().mark_all_read(principal_id)


@router.put("/notifications/{notification_id}/read")
async def mark_read(notification_id: str, request: Request) -> dict[str, Any]:
    """Mark one notification as read."""
    principal_id = await authenticate(request)
    return _projector().mark_read(notification_id, principal_id)
