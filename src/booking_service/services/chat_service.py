"""Booking rooms: joining with chat replay, private registration, and chat messages."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from service_commons.exceptions import (
    ForbiddenError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)

from booking_service.logging import get_logger
from booking_service.services.booking_state import Role
from booking_service.services.booking_store import RecordNotFoundError
from booking_service.services.realtime_hub import booking_room, user_room

if TYPE_CHECKING:
    from booking_service.services.booking_store import BookingStore
    from booking_service.services.notification_projector import NotificationProjector
    from booking_service.services.realtime_hub import RealtimeHub, Subscriber
    from booking_service.services.token_validator import TokenValidator


def _now_iso() -> str:
    return datetime.now(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")


def _require_id(value: object, field_name: str) -> str:
    if not isinstance(value, str) or value.strip() == "":
        raise ValidationError(
            "MISSING_FIELD", f"Missing required field: {field_name}", {"field": field_name}
        )
    return value.strip()


class ChatService:
    """
    Real-time operations on booking rooms and private rooms.

    Joining, replaying and appending for a booking all happen under that
    room's lock, so a joiner's replay and the live messages it receives
    afterwards neither overlap nor leave a gap.
    """

    def __init__(
        self,
        store: BookingStore,
        hub: RealtimeHub,
        token_validator: TokenValidator,
        projector: NotificationProjector,
        max_message_length: int,
    ) -> None:
        self._store = store
        self._hub = hub
        self._token_validator = token_validator
        self._projector = projector
        self._max_message_length = max_message_length
        self._logger = get_logger(__name__)

    def _load_booking(self, booking_id: str) -> dict[str, Any]:
        booking = self._store.get_booking(booking_id)
        if booking is None:
            raise NotFoundError(
                "BOOKING_NOT_FOUND", "Booking not found", {"booking_id": booking_id}
            )
        return booking

    async def join_room(
        self,
        subscriber: Subscriber,
        booking_id: object,
        role_name: object,
        token: object = None,
    ) -> list[dict[str, Any]]:
        """
        Join a booking room and replay its chat log to the joiner.

        Providers must present a token; a token, when present, must belong to
        the party playing the requested role. Re-joining replays again.

        Raises:
            ValidationError, NotFoundError, UnauthorizedError, ForbiddenError
        """
        booking_id = _require_id(booking_id, "booking_id")
        role = Role.parse(role_name)
        booking = self._load_booking(booking_id)

        if token is not None and not isinstance(token, str):
            raise ValidationError("INVALID_JWS", "token must be a string")
        if role is Role.PROVIDER and not token:
            raise UnauthorizedError("UNAUTHORIZED", "Providers must present a token to join")

        if token:
            user_id = await self._token_validator.authenticate(token)
            if user_id != role.party_id(booking):
                raise ForbiddenError(
                    "FORBIDDEN", f"Token does not belong to this booking's {role.label}"
                )
            subscriber.principals.add(user_id)

        room = booking_room(booking_id)
        async with self._hub.room_lock(room):
            self._hub.join(subscriber, room)
            history = self._store.get_messages(booking_id)
            await self._hub.send(subscriber, "load_messages", history)

        self._logger.info(
            "Joined booking room",
            extra={
                "booking_id": booking_id,
                "role": role.label,
                "connection_id": subscriber.connection_id,
                "replayed": len(history),
            },
        )
        return history

    def leave_room(self, subscriber: Subscriber, booking_id: object) -> None:
        """Leave a booking room."""
        self._hub.leave(subscriber, booking_room(_require_id(booking_id, "booking_id")))

    async def register(self, subscriber: Subscriber, user_id: object, token: object) -> str:
        """
        Join the caller's private room.

        Raises:
            UnauthorizedError: no token,
            ForbiddenError: the token belongs to someone else
        """
        user_id = _require_id(user_id, "user_id")
        if not isinstance(token, str) or token == "":
            raise UnauthorizedError("UNAUTHORIZED", "A token is required to register")

        authenticated = await self._token_validator.authenticate(token)
        if authenticated != user_id:
            raise ForbiddenError("FORBIDDEN", "Token does not belong to this user")

        subscriber.principals.add(user_id)
        self._hub.join(subscriber, user_room(user_id))
        self._logger.info(
            "Registered private room",
            extra={"user_id": user_id, "connection_id": subscriber.connection_id},
        )
        return user_id

    async def send_message(
        self,
        subscriber: Subscriber,
        booking_id: object,
        sender_id: object,
        sender_role: object,
        text: object,
    ) -> dict[str, Any]:
        """
        Append a message to the booking's chat log and fan it out to the room.

        The sender must have joined the room and be the booking's party for
        sender_role. A connection that authenticated may only speak as one of
        its authenticated users.

        Raises:
            ValidationError, NotFoundError, ForbiddenError
        """
        booking_id = _require_id(booking_id, "booking_id")
        sender_id = _require_id(sender_id, "sender_id")
        role = Role.parse(sender_role)
        if not isinstance(text, str) or text.strip() == "":
            raise ValidationError("INVALID_MESSAGE", "message must be a non-empty string")
        if len(text) > self._max_message_length:
            raise ValidationError(
                "INVALID_MESSAGE",
                f"message must be at most {self._max_message_length} characters",
            )

        booking = self._load_booking(booking_id)
        room = booking_room(booking_id)
        if not self._hub.is_member(subscriber, room):
            raise ForbiddenError("NOT_IN_ROOM", "Join the booking room before sending messages")
        if role.party_id(booking) != sender_id:
            raise ForbiddenError(
                "FORBIDDEN", f"Sender is not this booking's {role.label}"
            )
        if subscriber.principals and sender_id not in subscriber.principals:
            raise ForbiddenError("FORBIDDEN", "Connection is not authenticated as the sender")

        async with self._hub.room_lock(room):
            try:
                chat_message = self._store.append_message(
                    booking_id, sender_id, role.label, text, _now_iso()
                )
            except RecordNotFoundError as exc:
                raise NotFoundError("BOOKING_NOT_FOUND", "Booking not found") from exc
            delivered = await self._hub.fan_out(room, "receive_message", chat_message)

        self._logger.info(
            "Chat message sent",
            extra={
                "booking_id": booking_id,
                "message_id": chat_message["message_id"],
                "role": role.label,
                "delivered": delivered,
            },
        )
        await self._projector.message_received(booking, role, chat_message)
        return chat_message

    def disconnect(self, subscriber: Subscriber) -> None:
        """Forget a closed connection."""
        self._hub.disconnect(subscriber)
