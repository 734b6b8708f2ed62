"""Pydantic request/response models for the API."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict


class HealthResponse(BaseModel):
    """Response model for GET /health."""

    model_config = ConfigDict(extra="forbid")
    status: Literal["ok"]
    uptime_seconds: float
    started_at: str
    total_bookings: int
    bookings_by_status: dict[str, int]
    active_connections: int


class ErrorResponse(BaseModel):
    """Standard error response model."""

    model_config = ConfigDict(extra="forbid")
    error: str
    message: str
    details: dict[str, object]


class BookingResponse(BaseModel):
    """Full booking detail response model."""

    model_config = ConfigDict(extra="forbid")
    booking_id: str
    client_id: str
    provider_id: str
    notes: str
    scheduled_date: str
    price: int | None
    status: str
    agreed_by_client: bool
    agreed_by_provider: bool
    last_proposed_by: str | None
    agreement_url: str | None
    created_at: str
    updated_at: str
    confirmed_at: str | None
    paid_at: str | None
    completed_at: str | None
    cancelled_at: str | None
    cancelled_by: str | None


class BookingListResponse(BaseModel):
    """Response model for GET /bookings."""

    model_config = ConfigDict(extra="forbid")
    bookings: list[BookingResponse]


class ChatMessageResponse(BaseModel):
    """One persisted chat message."""

    model_config = ConfigDict(extra="forbid")
    message_id: int
    booking_id: str
    sender_id: str
    sender_role: str
    message: str
    timestamp: str


class ChatHistoryResponse(BaseModel):
    """Response model for GET /bookings/{booking_id}/messages."""

    model_config = ConfigDict(extra="forbid")
    booking_id: str
    messages: list[ChatMessageResponse]


class AgreementResponse(BaseModel):
    """Response model for GET /bookings/{booking_id}/agreement."""

    model_config = ConfigDict(extra="forbid")
    booking_id: str
    document_url: str


class ExecutionResponse(BaseModel):
    """Execution record response model."""

    model_config = ConfigDict(extra="forbid")
    execution_id: str
    booking_id: str
    client_id: str
    provider_id: str
    payment_id: str
    credential_validated: Literal["pending", "completed"]
    provider_completed: Literal["pending", "completed"]
    client_completed: Literal["pending", "completed"]
    created_at: str
    updated_at: str
    review_eligible: bool


class PaymentResponse(BaseModel):
    """Payment record response model."""

    model_config = ConfigDict(extra="forbid")
    payment_id: str
    booking_id: str
    amount: int
    currency: str
    gateway_reference: str | None
    status: Literal["pending", "Paid"]
    created_at: str
    updated_at: str
    paid_at: str | None


class NotificationResponse(BaseModel):
    """Persisted notification response model."""

    model_config = ConfigDict(extra="forbid")
    notification_id: str
    user_id: str
    event: str
    type: Literal["booking", "payment", "warning", "message", "info"]
    title: str
    message: str
    booking_id: str | None
    created_at: str
    read: bool


class NotificationListResponse(BaseModel):
    """Response model for GET /notifications."""

    model_config = ConfigDict(extra="forbid")
    notifications: list[NotificationResponse]
    unread_count: int


class ReviewResponse(BaseModel):
    """Review response model."""

    model_config = ConfigDict(extra="forbid")
    review_id: str
    booking_id: str
    client_id: str
    provider_id: str
    rating: int
    comment: str | None
    created_at: str


class ProviderReviewsResponse(BaseModel):
    """Response model for GET /providers/{provider_id}/reviews."""

    model_config = ConfigDict(extra="forbid")
    provider_id: str
    reviews: list[ReviewResponse]
    review_count: int
    average_rating: float | None
