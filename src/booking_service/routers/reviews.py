"""Review endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from booking_service.core.state import get_app_state
from booking_service.routers.validation import authenticate, read_json_body

router = APIRouter()


@router.post("/reviews", status_code=201)
async def create_review(request: Request) -> JSONResponse:
    """Review a completed booking."""
    data = await read_json_body(request)
    principal_id = await authenticate(request)

    state = get_app_state()
    if state.review_service is None:
        msg = "ReviewService not initialized"
        raise RuntimeError(msg)

    review = state.review_service.create_review(principal_id, data)
    return JSONResponse(status_code=201, content=review)


@router.get("/bookings/{booking_id}/review")
async def get_booking_review(booking_id: str) -> dict[str, Any]:
    """Return the review of a booking."""
    state = get_app_state()
    if state.review_service is None:
        msg = "ReviewService not initialized"
        raise RuntimeError(msg)
    return state.review_service.get_review_for_booking(booking_id)


@router.get("/providers/{provider_id}/reviews")
async def list_provider_reviews(provider_id: str) -> dict[str, Any]:
    """List a provider's reviews with the average rating."""
    state = get_app_state()
    if state.review_service is None:
        msg = "ReviewService not initialized"
        raise RuntimeError(msg)
    return state.review_service.list_provider_reviews(provider_id)
