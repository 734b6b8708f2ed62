"""Checkout and payment-gateway callback endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from service_commons.exceptions import ValidationError

from booking_service.core.state import get_app_state
from booking_service.routers.validation import authenticate, read_json_body

router = APIRouter()


@router.post("/payments/callback")
async def payment_callback(request: Request) -> dict[str, Any]:
    """Apply a gateway-signed payment outcome."""
    data = await read_json_body(request)
    token = data.get("token")
    if not isinstance(token, str) or token == "":
        raise ValidationError("INVALID_JWS", "Missing or invalid token", {"field": "token"})

    state = get_app_state()
    if state.payment_coordinator is None:
        msg = "PaymentCoordinator not initialized"
        raise RuntimeError(msg)

    return await state.payment_coordinator.handle_callback(token)


@router.post("/payments/{booking_id}/checkout", status_code=201)
async def start_checkout(booking_id: str, request: Request) -> JSONResponse:
    """Open a checkout session for a Confirmed booking."""
    principal_id = await authenticate(request)

    state = get_app_state()
    if state.payment_coordinator is None:
        msg = "PaymentCoordinator not initialized"
        raise RuntimeError(msg)

    result = await state.payment_coordinator.start_checkout(booking_id, principal_id)
    return JSONResponse(status_code=201, content=result)


@router.get("/bookings/{booking_id}/payment")
async def get_payment(booking_id: str, request: Request) -> dict[str, Any]:
    """Return a booking's payment record."""
    principal_id = await authenticate(request)

    state = get_app_state()
    if state.payment_coordinator is None:
        msg = "PaymentCoordinator not initialized"
        raise RuntimeError(msg)

    return state.payment_coordinator.get_payment(booking_id, principal_id)
