"""Execution tracking endpoints."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from booking_service.core.state import get_app_state
from booking_service.routers.validation import authenticate, read_json_body

if TYPE_CHECKING:
    from booking_service.services.execution_tracker import ExecutionTracker

router = APIRouter()


def _tracker() -> ExecutionTracker:
    state = get_app_state()
    if state.execution_tracker is None:
        msg = "ExecutionTracker not initialized"
        raise RuntimeError(msg)
    return state.execution_tracker


@router.post("/execution", status_code=201)
async def create_execution(request: Request) -> JSONResponse:
    """Create the execution record of a paid booking."""
    data = await read_json_body(request)
    principal_id = await authenticate(request)
    execution = await _tracker().create_execution(principal_id, data)
    return JSONResponse(status_code=201, content=execution)


@router.get("/execution/{execution_id}")
async def get_execution(execution_id: str, request: Request) -> dict[str, Any]:
    """Return an execution record."""
    principal_id = await authenticate(request)
    return _tracker().get_execution(execution_id, principal_id)


@router.put("/execution/{execution_id}")
async def update_execution(execution_id: str, request: Request) -> dict[str, Any]:
    """Complete one execution flag."""
    data = await read_json_body(request)
    principal_id = await authenticate(request)
    return await _tracker().update_field(execution_id, principal_id, data.get("field"))


@router.get("/bookings/{booking_id}/execution")
async def get_booking_execution(booking_id: str, request: Request) -> dict[str, Any]:
    """Return the execution record of a booking."""
    principal_id = await authenticate(request)
    return _tracker().get_execution_for_booking(booking_id, principal_id)
