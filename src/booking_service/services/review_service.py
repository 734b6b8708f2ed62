"""Client reviews of completed bookings."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from service_commons.exceptions import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    PreconditionError,
    ValidationError,
)

from booking_service.logging import get_logger
from booking_service.services.booking_state import COMPLETED
from booking_service.services.booking_store import DuplicateReviewError

if TYPE_CHECKING:
    from booking_service.services.booking_store import BookingStore

MIN_RATING = 1
MAX_RATING = 5


def _now_iso() -> str:
    return datetime.now(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")


class ReviewService:
    """One review per completed booking, written by its client."""

    def __init__(self, store: BookingStore, max_comment_length: int) -> None:
        self._store = store
        self._max_comment_length = max_comment_length
        self._logger = get_logger(__name__)

    def create_review(self, principal_id: str, data: dict[str, Any]) -> dict[str, Any]:
        """
        Record the client's rating of a completed booking.

        Raises:
            ValidationError, NotFoundError,
            ForbiddenError: CLIENT_ONLY,
            PreconditionError: REVIEW_NOT_ALLOWED before completion,
            ConflictError: REVIEW_EXISTS
        """
        booking_id = data.get("booking_id")
        if not isinstance(booking_id, str) or booking_id == "":
            raise ValidationError(
                "MISSING_FIELD", "Missing required field: booking_id", {"field": "booking_id"}
            )

        rating = data.get("rating")
        if (
            isinstance(rating, bool)
            or not isinstance(rating, int)
            or not MIN_RATING <= rating <= MAX_RATING
        ):
            raise ValidationError(
                "INVALID_RATING",
                f"rating must be an integer between {MIN_RATING} and {MAX_RATING}",
                {"field": "rating"},
            )

        comment = data.get("comment")
        if comment is not None:
            if not isinstance(comment, str):
                raise ValidationError(
                    "INVALID_PAYLOAD", "Field 'comment' must be a string", {"field": "comment"}
                )
            if len(comment) > self._max_comment_length:
                raise ValidationError(
                    "INVALID_PAYLOAD",
                    f"comment must be at most {self._max_comment_length} characters",
                    {"field": "comment"},
                )

        booking = self._store.get_booking(booking_id)
        if booking is None:
            raise NotFoundError("BOOKING_NOT_FOUND", "Booking not found")
        if booking["client_id"] != principal_id:
            raise ForbiddenError("CLIENT_ONLY", "Only the booking's client can review it")
        if booking["status"] != COMPLETED:
            raise PreconditionError(
                "REVIEW_NOT_ALLOWED",
                "Only completed bookings can be reviewed",
                {"status": booking["status"]},
            )

        review = {
            "review_id": f"rv-{uuid.uuid4()}",
            "booking_id": booking_id,
            "client_id": booking["client_id"],
            "provider_id": booking["provider_id"],
            "rating": rating,
            "comment": comment,
            "created_at": _now_iso(),
        }
        try:
            self._store.insert_review(review)
        except DuplicateReviewError as exc:
            raise ConflictError(
                "REVIEW_EXISTS", "This booking has already been reviewed"
            ) from exc

        self._logger.info(
            "Review recorded",
            extra={
                "booking_id": booking_id,
                "provider_id": booking["provider_id"],
                "rating": rating,
            },
        )
        return review

    def get_review_for_booking(self, booking_id: str) -> dict[str, Any]:
        """Return the review of a booking."""
        review = self._store.get_review_for_booking(booking_id)
        if review is None:
            raise NotFoundError("REVIEW_NOT_FOUND", "This booking has not been reviewed")
        return review

    def list_provider_reviews(self, provider_id: str) -> dict[str, Any]:
        """Return a provider's reviews with their average rating."""
        reviews = self._store.list_reviews_for_provider(provider_id)
        average = (
            round(sum(review["rating"] for review in reviews) / len(reviews), 2)
            if reviews
            else None
        )
        return {
            "provider_id": provider_id,
            "reviews": reviews,
            "review_count": len(reviews),
            "average_rating": average,
        }
