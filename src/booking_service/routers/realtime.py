"""WebSocket endpoint for booking rooms and private notification rooms."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from service_commons.exceptions import ServiceError, ValidationError

from booking_service.core.state import get_app_state
from booking_service.logging import get_logger

if TYPE_CHECKING:
    from booking_service.services.chat_service import ChatService
    from booking_service.services.realtime_hub import RealtimeHub, Subscriber

router = APIRouter()
logger = get_logger(__name__)


def _decode_frame(message: dict[str, Any]) -> Any:
    """Parse a text or binary frame as JSON; ValueError if it is neither UTF-8 nor JSON."""
    text = message.get("text")
    if text is None:
        raw = message.get("bytes") or b""
        text = raw.decode("utf-8")
    return json.loads(text)


async def _dispatch(
    chat: ChatService,
    hub: RealtimeHub,
    subscriber: Subscriber,
    frame: Any,
) -> None:
    if not isinstance(frame, dict) or not isinstance(frame.get("event"), str):
        raise ValidationError("INVALID_FRAME", "Frames must be objects with an 'event' name")
    data = frame.get("data")
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValidationError("INVALID_FRAME", "Frame data must be an object")

    event = frame["event"]
    if event == "join_room":
        await chat.join_room(
            subscriber, data.get("booking_id"), data.get("role"), data.get("token")
        )
    elif event == "leave_room":
        chat.leave_room(subscriber, data.get("booking_id"))
        await hub.send(subscriber, "left_room", {"booking_id": data.get("booking_id")})
    elif event == "register":
        user_id = await chat.register(subscriber, data.get("user_id"), data.get("token"))
        await hub.send(subscriber, "registered", {"user_id": user_id})
    elif event == "send_message":
        await chat.send_message(
            subscriber,
            data.get("booking_id"),
            data.get("sender_id"),
            data.get("sender_role"),
            data.get("message"),
        )
    else:
        raise ValidationError("UNKNOWN_EVENT", f"Unknown event: {event}", {"event": event})


@router.websocket("/ws")
async def realtime_socket(websocket: WebSocket) -> None:
    """Serve one real-time connection until the peer disconnects."""
    state = get_app_state()
    if state.hub is None or state.chat_service is None:
        msg = "Realtime services not initialized"
        raise RuntimeError(msg)
    hub = state.hub
    chat = state.chat_service

    await websocket.accept()
    subscriber = hub.connect(websocket.send_json)
    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(message.get("code", 1000))
            try:
                frame = _decode_frame(message)
            except ValueError:
                await hub.send(
                    subscriber,
                    "error",
                    {"error": "INVALID_JSON", "message": "Frame is not valid JSON"},
                )
                continue

            try:
                await _dispatch(chat, hub, subscriber, frame)
            except ServiceError as exc:
                await hub.send(subscriber, "error", {"error": exc.error, "message": exc.message})
    except WebSocketDisconnect:
        logger.info("WebSocket disconnected", extra={"connection_id": subscriber.connection_id})
    finally:
        chat.disconnect(subscriber)
