"""Booking negotiation endpoints."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from booking_service.core.state import get_app_state
from booking_service.routers.validation import (
    authenticate,
    parse_non_negative_int,
    read_json_body,
)

if TYPE_CHECKING:
    from booking_service.services.negotiation_engine import NegotiationEngine

router = APIRouter()


def _engine() -> NegotiationEngine:
    state = get_app_state()
    if state.negotiation_engine is None:
        msg = "NegotiationEngine not initialized"
        raise RuntimeError(msg)
    return state.negotiation_engine


# ---------------------------------------------------------------------------
# POST /bookings: request a booking
# ---------------------------------------------------------------------------


@router.post("/bookings", status_code=201)
async def create_booking(request: Request) -> JSONResponse:
    """Create a Pending booking on behalf of its client."""
    data = await read_json_body(request)
    principal_id = await authenticate(request)
    booking = await _engine().create_booking(principal_id, data)
    return JSONResponse(status_code=201, content=booking)


# ---------------------------------------------------------------------------
# GET /bookings: list the caller's bookings
# ---------------------------------------------------------------------------


@router.get("/bookings")
async def list_bookings(request: Request) -> dict[str, Any]:
    """List bookings where the caller is client or provider."""
    principal_id = await authenticate(request)
    status = request.query_params.get("status")
    limit = parse_non_negative_int(request.query_params.get("limit"), "limit", minimum=1)
    offset = parse_non_negative_int(request.query_params.get("offset"), "offset", minimum=0)
    return _engine().list_bookings(principal_id, status, limit, offset)


@router.get("/bookings/{booking_id}")
async def get_booking(booking_id: str, request: Request) -> dict[str, Any]:
    """Return one booking."""
    principal_id = await authenticate(request)
    return _engine().get_booking(booking_id, principal_id)


# ---------------------------------------------------------------------------
# Negotiation
# ---------------------------------------------------------------------------


@router.put("/bookings/{booking_id}/price")
async def propose_price(booking_id: str, request: Request) -> dict[str, Any]:
    """Counter-propose a price."""
    data = await read_json_body(request)
    principal_id = await authenticate(request)
    return await _engine().propose_price(booking_id, principal_id, data.get("price"))


@router.put("/bookings/{booking_id}/agree")
async def agree(booking_id: str, request: Request) -> dict[str, Any]:
    """Agree to the booking's current price."""
    data = await read_json_body(request)
    principal_id = await authenticate(request)
    return await _engine().agree(
        booking_id,
        principal_id,
        role_name=data.get("role"),
        expected_price=data.get("expected_price"),
    )


@router.put("/bookings/{booking_id}/cancel")
async def cancel_booking(booking_id: str, request: Request) -> dict[str, Any]:
    """Cancel a booking that has not been paid."""
    principal_id = await authenticate(request)
    return await _engine().cancel(booking_id, principal_id)


@router.get("/bookings/{booking_id}/agreement")
async def download_agreement(booking_id: str, request: Request) -> dict[str, Any]:
    """Return the URL of the signed agreement document."""
    principal_id = await authenticate(request)
    return await _engine().download_agreement(booking_id, principal_id)


@router.get("/bookings/{booking_id}/messages")
async def get_messages(booking_id: str, request: Request) -> dict[str, Any]:
    """Return the booking's chat log in append order."""
    principal_id = await authenticate(request)
    return _engine().get_chat_history(booking_id, principal_id)
