"""Turns booking domain events into per-recipient notifications."""

from __future__ import annotations

import sqlite3
import uuid
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from service_commons.exceptions import NotFoundError

from booking_service.logging import get_logger
from booking_service.services.booking_state import Role

if TYPE_CHECKING:
    from booking_service.services.booking_store import BookingStore
    from booking_service.services.realtime_hub import RealtimeHub

# Notification type tags
TYPE_BOOKING = "booking"
TYPE_PAYMENT = "payment"
TYPE_WARNING = "warning"
TYPE_MESSAGE = "message"
TYPE_INFO = "info"

_NOTES_PREVIEW_LENGTH = 30
_MESSAGE_PREVIEW_LENGTH = 60


def _now_iso() -> str:
    return datetime.now(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")


def format_amount(cents: int | None) -> str:
    """Render minor units as a dollar amount."""
    if cents is None:
        return "an unset price"
    return f"${cents // 100:,}.{cents % 100:02d}"


def _preview(text: str, length: int) -> str:
    if len(text) <= length:
        return text
    return f"{text[:length]}..."


class NotificationProjector:
    """
    Projects domain events onto recipients' private rooms.

    Each notification is persisted first and then pushed as
    {event: <name>, data: notification}. Neither step may undo the mutation
    that triggered it, so failures are logged here and swallowed.
    """

    def __init__(self, store: BookingStore, hub: RealtimeHub, max_notifications: int) -> None:
        self._store = store
        self._hub = hub
        self._max_notifications = max_notifications
        self._logger = get_logger(__name__)

    async def _deliver(
        self,
        user_id: str,
        event: str,
        notification_type: str,
        title: str,
        message: str,
        booking_id: str | None,
    ) -> dict[str, Any]:
        notification = {
            "notification_id": f"ntf-{uuid.uuid4()}",
            "user_id": user_id,
            "event": event,
            "type": notification_type,
            "title": title,
            "message": message,
            "booking_id": booking_id,
            "created_at": _now_iso(),
            "read": False,
        }

        try:
            self._store.insert_notification(notification)
        except sqlite3.Error as exc:
            self._logger.warning(
                "Notification persistence failed",
                extra={"user_id": user_id, "event": event, "error": str(exc)},
            )

        delivered = await self._hub.publish_to_user(user_id, event, notification)
        self._logger.info(
            "Notification delivered",
            extra={
                "user_id": user_id,
                "event": event,
                "booking_id": booking_id,
                "live_connections": delivered,
            },
        )
        return notification

    # ------------------------------------------------------------------
    # Negotiation events
    # ------------------------------------------------------------------

    async def booking_requested(self, booking: dict[str, Any]) -> dict[str, Any]:
        """Tell the provider about a new booking request."""
        notes = booking.get("notes") or ""
        message = "You have a new booking request."
        if notes:
            preview = _preview(notes, _NOTES_PREVIEW_LENGTH)
            message = f"You have a new booking request. Notes: {preview}"
        return await self._deliver(
            booking["provider_id"],
            "new_booking",
            TYPE_BOOKING,
            "New Booking Request",
            message,
            booking["booking_id"],
        )

    async def price_proposed(self, booking: dict[str, Any], proposer: Role) -> dict[str, Any]:
        """Tell the counterpart that the price changed."""
        return await self._deliver(
            proposer.counterpart_id(booking),
            "payment_agreed",
            TYPE_PAYMENT,
            "New Price Proposed",
            f"The {proposer.label} proposed a new price: {format_amount(booking['price'])}. "
            "Both parties need to agree again.",
            booking["booking_id"],
        )

    async def agreement_recorded(self, booking: dict[str, Any], role: Role) -> dict[str, Any]:
        """Tell the counterpart that one side accepted the current price."""
        return await self._deliver(
            role.counterpart_id(booking),
            "payment_agreed",
            TYPE_PAYMENT,
            "Price Agreed",
            f"The {role.label} has agreed to the price of {format_amount(booking['price'])}.",
            booking["booking_id"],
        )

    async def booking_confirmed(self, booking: dict[str, Any]) -> list[dict[str, Any]]:
        """Tell both parties that the booking is now binding."""
        delivered = []
        for role in Role:
            delivered.append(
                await self._deliver(
                    role.party_id(booking),
                    "new_booking",
                    TYPE_BOOKING,
                    "Booking Confirmed",
                    f"Your booking (ID: {booking['booking_id']}) is confirmed at "
                    f"{format_amount(booking['price'])}.",
                    booking["booking_id"],
                )
            )
        return delivered

    async def booking_cancelled(self, booking: dict[str, Any], by: Role) -> dict[str, Any]:
        """Tell the counterpart that the booking was cancelled."""
        return await self._deliver(
            by.counterpart_id(booking),
            "booking_cancelled",
            TYPE_BOOKING,
            "Booking Cancelled",
            f"Booking (ID: {booking['booking_id']}) has been cancelled by the {by.label}.",
            booking["booking_id"],
        )

    # ------------------------------------------------------------------
    # Payment and execution events
    # ------------------------------------------------------------------

    async def payment_recorded(
        self, booking: dict[str, Any], payment: dict[str, Any]
    ) -> list[dict[str, Any]]:
        """Tell both parties the payment went through."""
        delivered = []
        for role in Role:
            delivered.append(
                await self._deliver(
                    role.party_id(booking),
                    "payment_received",
                    TYPE_PAYMENT,
                    "Payment Received",
                    f"Payment of {format_amount(payment['amount'])} for booking "
                    f"(ID: {booking['booking_id']}) was received.",
                    booking["booking_id"],
                )
            )
        return delivered

    async def payment_failed(self, booking: dict[str, Any], reason: str | None) -> dict[str, Any]:
        """Warn the client that the payment attempt failed."""
        message = f"Payment for booking (ID: {booking['booking_id']}) failed."
        if reason:
            message = f"{message} Reason: {reason}"
        return await self._deliver(
            booking["client_id"],
            "payment_failed",
            TYPE_WARNING,
            "Payment Failed",
            message,
            booking["booking_id"],
        )

    async def provider_progress(self, booking: dict[str, Any], field_name: str) -> dict[str, Any]:
        """Tell the client about a provider-side execution step."""
        step = (
            "validated their credential"
            if field_name == "credential_validated"
            else "marked the task completed"
        )
        return await self._deliver(
            booking["client_id"],
            "execution_updated",
            TYPE_INFO,
            "Task Progress",
            f"The provider has {step} for booking (ID: {booking['booking_id']}).",
            booking["booking_id"],
        )

    async def execution_completed(self, booking: dict[str, Any]) -> dict[str, Any]:
        """Tell the provider the client confirmed completion."""
        return await self._deliver(
            booking["provider_id"],
            "execution_updated",
            TYPE_INFO,
            "Task Completed",
            f"The client confirmed completion of booking (ID: {booking['booking_id']}).",
            booking["booking_id"],
        )

    async def message_received(
        self, booking: dict[str, Any], sender: Role, chat_message: dict[str, Any]
    ) -> dict[str, Any]:
        """Tell the counterpart about a new chat message."""
        return await self._deliver(
            sender.counterpart_id(booking),
            "new_message",
            TYPE_MESSAGE,
            "New Message",
            _preview(chat_message["message"], _MESSAGE_PREVIEW_LENGTH),
            booking["booking_id"],
        )

    # ------------------------------------------------------------------
    # Recipient operations
    # ------------------------------------------------------------------

    def list_for_user(self, user_id: str) -> dict[str, Any]:
        """Most recent notifications of a user plus the unread count."""
        return {
            "notifications": self._store.list_notifications(user_id, self._max_notifications),
            "unread_count": self._store.count_unread_notifications(user_id),
        }

    def mark_read(self, notification_id: str, user_id: str) -> dict[str, Any]:
        """Mark one notification read; only its recipient may do so."""
        notification = self._store.mark_notification_read(notification_id, user_id)
        if notification is None:
            raise NotFoundError("NOTIFICATION_NOT_FOUND", "Notification not found")
        return notification

    def mark_all_read(self, user_id: str) -> dict[str, Any]:
        """Mark all of a user's notifications read."""
        return {"updated": self._store.mark_all_notifications_read(user_id)}
