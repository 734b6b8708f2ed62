"""Room-based publish/subscribe over live connections."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from booking_service.logging import get_logger
from booking_service.services.keyed_locks import KeyedLocks

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable
    from contextlib import AbstractAsyncContextManager

BOOKING_ROOM_PREFIX = "booking:"
USER_ROOM_PREFIX = "user:"


def booking_room(booking_id: str) -> str:
    """Room shared by every connection watching one booking."""
    return f"{BOOKING_ROOM_PREFIX}{booking_id}"


def user_room(user_id: str) -> str:
    """Private room of one user."""
    return f"{USER_ROOM_PREFIX}{user_id}"


@dataclass(eq=False)
class Subscriber:
    """One live connection. Compared by identity."""

    send: Callable[[dict[str, Any]], Awaitable[None]]
    connection_id: str = field(default_factory=lambda: f"conn-{uuid.uuid4()}")
    principals: set[str] = field(default_factory=set)


class RealtimeHub:
    """
    Tracks room membership per connection and fans events out to rooms.

    Frames are {"event": name, "data": payload}. A send that fails drops the
    connection from every room; the failure is logged and never raised, since
    persisted state remains the source of truth and clients recover on rejoin.

    Callers that need ordered delivery for a room (chat appends, replays)
    hold room_lock(room) around their write and fan_out().
    """

    def __init__(self) -> None:
        self._rooms: dict[str, set[Subscriber]] = {}
        self._memberships: dict[Subscriber, set[str]] = {}
        self._room_locks = KeyedLocks()

    @property
    def active_connections(self) -> int:
        """Number of connected subscribers."""
        return len(self._memberships)

    def connect(self, send: Callable[[dict[str, Any]], Awaitable[None]]) -> Subscriber:
        """Register a new connection."""
        subscriber = Subscriber(send=send)
        self._memberships[subscriber] = set()
        get_logger(__name__).debug(
            "Connection opened", extra={"connection_id": subscriber.connection_id}
        )
        return subscriber

    def disconnect(self, subscriber: Subscriber) -> None:
        """Remove a connection from every room. Safe to call twice."""
        rooms = self._memberships.pop(subscriber, None)
        if rooms is None:
            return
        for room in rooms:
            members = self._rooms.get(room)
            if members is None:
                continue
            members.discard(subscriber)
            if not members:
                del self._rooms[room]
        get_logger(__name__).debug(
            "Connection closed",
            extra={"connection_id": subscriber.connection_id, "rooms": sorted(rooms)},
        )

    def join(self, subscriber: Subscriber, room: str) -> None:
        """Add a connection to a room. Joining twice is harmless."""
        if subscriber not in self._memberships:
            self._memberships[subscriber] = set()
        self._memberships[subscriber].add(room)
        self._rooms.setdefault(room, set()).add(subscriber)

    def leave(self, subscriber: Subscriber, room: str) -> None:
        """Remove a connection from one room."""
        rooms = self._memberships.get(subscriber)
        if rooms is not None:
            rooms.discard(room)
        members = self._rooms.get(room)
        if members is not None:
            members.discard(subscriber)
            if not members:
                del self._rooms[room]

    def is_member(self, subscriber: Subscriber, room: str) -> bool:
        """Whether the connection currently belongs to the room."""
        return room in self._memberships.get(subscriber, set())

    def room_size(self, room: str) -> int:
        """Number of connections in a room."""
        return len(self._rooms.get(room, ()))

    def room_lock(self, room: str) -> AbstractAsyncContextManager[None]:
        """Lock serializing ordered writes and deliveries for one room."""
        return self._room_locks.hold(room)

    async def send(self, subscriber: Subscriber, event: str, data: Any) -> bool:
        """Deliver one frame to one connection; False if the connection was dropped."""
        try:
            await subscriber.send({"event": event, "data": data})
        except Exception as exc:
            get_logger(__name__).warning(
                "Real-time delivery failed, dropping connection",
                extra={
                    "connection_id": subscriber.connection_id,
                    "event": event,
                    "error": str(exc),
                },
            )
            self.disconnect(subscriber)
            return False
        return True

    async def fan_out(self, room: str, event: str, data: Any) -> int:
        """Deliver a frame to every member of a room; returns how many received it."""
        delivered = 0
        for subscriber in list(self._rooms.get(room, ())):
            if await self.send(subscriber, event, data):
                delivered += 1
        return delivered

    async def publish(self, room: str, event: str, data: Any) -> int:
        """Fan a frame out to a room under its ordering lock."""
        async with self.room_lock(room):
            return await self.fan_out(room, event, data)

    async def publish_booking_update(self, booking: dict[str, Any]) -> int:
        """Push the committed state of a booking to its room."""
        return await self.publish(booking_room(booking["booking_id"]), "booking_updated", booking)

    async def publish_execution_update(self, execution: dict[str, Any]) -> int:
        """Push the committed state of an execution record to its booking's room."""
        return await self.publish(
            booking_room(execution["booking_id"]), "execution_updated", execution
        )

    async def publish_to_user(self, user_id: str, event: str, data: Any) -> int:
        """Push a frame to a user's private room only."""
        return await self.publish(user_room(user_id), event, data)
