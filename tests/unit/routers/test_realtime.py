"""WebSocket endpoint tests: booking rooms, chat replay and private rooms."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from booking_service.app import create_app
from booking_service.config import clear_settings_cache
from booking_service.core.state import get_app_state, reset_app_state
from tests.helpers import CLIENT_ID, PROVIDER_ID, STRANGER_ID, config_yaml, verifying_identity_mock
from tests.unit.routers.conftest import auth, token_for

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path


@pytest.fixture
def ws_client(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[TestClient]:
    """Synchronous client whose lifespan runs on the TestClient portal loop."""
    config_path = tmp_path / "config.yaml"
    config_path.write_text(config_yaml(str(tmp_path / "test.db")))
    monkeypatch.setenv("CONFIG_PATH", str(config_path))
    clear_settings_cache()
    reset_app_state()

    with TestClient(create_app()) as test_client:
        state = get_app_state()
        state.identity_client = verifying_identity_mock()
        for name in ("payment_gateway_client", "document_renderer_client", "object_storage_client"):
            mock_client = AsyncMock()
            mock_client.close = AsyncMock()
            setattr(state, name, mock_client)
        state.document_renderer_client.render_agreement = AsyncMock(return_value=b"%PDF-1.4")
        state.object_storage_client.put_object = AsyncMock(
            side_effect=lambda path, content, content_type: f"https://files.test/{path}"
        )
        yield test_client

    reset_app_state()
    clear_settings_cache()


def _create_booking(ws_client: TestClient) -> str:
    response = ws_client.post(
        "/bookings",
        json={
            "client_id": CLIENT_ID,
            "provider_id": PROVIDER_ID,
            "scheduled_date": "2026-02-01T09:00:00Z",
            "price": 12000,
        },
        headers=auth(CLIENT_ID),
    )
    assert response.status_code == 201
    booking_id: str = response.json()["booking_id"]
    return booking_id


def _emit(websocket: Any, event: str, **data: Any) -> None:
    websocket.send_json({"event": event, "data": data})


@pytest.mark.unit
def test_join_replays_history_and_broadcasts_messages(ws_client):
    """Joiners get the chat log; messages fan out to the whole room in order."""
    booking_id = _create_booking(ws_client)

    with ws_client.websocket_connect("/ws") as client_ws:
        _emit(client_ws, "join_room", booking_id=booking_id, role="client")
        assert client_ws.receive_json() == {"event": "load_messages", "data": []}

        _emit(
            client_ws,
            "send_message",
            booking_id=booking_id,
            sender_id=CLIENT_ID,
            sender_role="client",
            message="Is Tuesday fine?",
        )
        echoed = client_ws.receive_json()
        assert echoed["event"] == "receive_message"
        assert echoed["data"]["message"] == "Is Tuesday fine?"
        assert echoed["data"]["sender_role"] == "client"

        with ws_client.websocket_connect("/ws") as provider_ws:
            _emit(
                provider_ws,
                "join_room",
                booking_id=booking_id,
                role="provider",
                token=token_for(PROVIDER_ID),
            )
            replay = provider_ws.receive_json()
            assert replay["event"] == "load_messages"
            assert [m["message"] for m in replay["data"]] == ["Is Tuesday fine?"]

            _emit(
                provider_ws,
                "send_message",
                booking_id=booking_id,
                sender_id=PROVIDER_ID,
                sender_role="provider",
                message="Tuesday works",
            )
            assert provider_ws.receive_json()["data"]["message"] == "Tuesday works"
            assert client_ws.receive_json()["data"]["message"] == "Tuesday works"

    history = ws_client.get(f"/bookings/{booking_id}/messages", headers=auth(PROVIDER_ID)).json()
    assert [m["message"] for m in history["messages"]] == ["Is Tuesday fine?", "Tuesday works"]


@pytest.mark.unit
def test_room_members_receive_booking_updates(ws_client):
    """HTTP negotiation steps are pushed to the booking room."""
    booking_id = _create_booking(ws_client)

    with ws_client.websocket_connect("/ws") as websocket:
        _emit(websocket, "join_room", booking_id=booking_id, role="client")
        websocket.receive_json()

        ws_client.put(
            f"/bookings/{booking_id}/price", json={"price": 9900}, headers=auth(PROVIDER_ID)
        )
        update = websocket.receive_json()
        assert update["event"] == "booking_updated"
        assert update["data"]["status"] == "Negotiating"
        assert update["data"]["price"] == 9900

        assert ws_client.get("/health").json()["active_connections"] == 1


@pytest.mark.unit
def test_register_delivers_private_notifications(ws_client):
    """A registered connection receives its user's notifications live."""
    with ws_client.websocket_connect("/ws") as websocket:
        _emit(websocket, "register", user_id=PROVIDER_ID, token=token_for(PROVIDER_ID))
        assert websocket.receive_json() == {"event": "registered", "data": {"user_id": PROVIDER_ID}}

        booking_id = _create_booking(ws_client)
        frame = websocket.receive_json()
        assert frame["event"] == "new_booking"
        assert frame["data"]["user_id"] == PROVIDER_ID
        assert frame["data"]["booking_id"] == booking_id


@pytest.mark.unit
def test_provider_join_requires_matching_token(ws_client):
    """Providers must authenticate as the booking's provider."""
    booking_id = _create_booking(ws_client)

    with ws_client.websocket_connect("/ws") as websocket:
        _emit(websocket, "join_room", booking_id=booking_id, role="provider")
        assert websocket.receive_json()["data"]["error"] == "UNAUTHORIZED"

        _emit(
            websocket,
            "join_room",
            booking_id=booking_id,
            role="provider",
            token=token_for(STRANGER_ID),
        )
        assert websocket.receive_json()["data"]["error"] == "FORBIDDEN"

        _emit(websocket, "register", user_id=CLIENT_ID, token=token_for(STRANGER_ID))
        assert websocket.receive_json()["data"]["error"] == "FORBIDDEN"


@pytest.mark.unit
def test_send_requires_room_membership(ws_client):
    """Messages from outside the room, or as the wrong party, are refused."""
    booking_id = _create_booking(ws_client)

    with ws_client.websocket_connect("/ws") as websocket:
        message = {
            "booking_id": booking_id,
            "sender_id": CLIENT_ID,
            "sender_role": "client",
            "message": "hello",
        }
        _emit(websocket, "send_message", **message)
        assert websocket.receive_json()["data"]["error"] == "NOT_IN_ROOM"

        _emit(websocket, "join_room", booking_id=booking_id, role="client")
        websocket.receive_json()
        _emit(websocket, "send_message", **{**message, "sender_id": STRANGER_ID})
        assert websocket.receive_json()["data"]["error"] == "FORBIDDEN"

        _emit(websocket, "send_message", **{**message, "message": "   "})
        assert websocket.receive_json()["data"]["error"] == "INVALID_MESSAGE"

        _emit(websocket, "leave_room", booking_id=booking_id)
        left = websocket.receive_json()
        assert left == {"event": "left_room", "data": {"booking_id": booking_id}}
        _emit(websocket, "send_message", **message)
        assert websocket.receive_json()["data"]["error"] == "NOT_IN_ROOM"


@pytest.mark.unit
def test_malformed_frames_keep_the_connection_open(ws_client):
    """Bad frames are answered with error events."""
    with ws_client.websocket_connect("/ws") as websocket:
        websocket.send_text("{not json")
        assert websocket.receive_json()["data"]["error"] == "INVALID_JSON"

        websocket.send_json(["join_room"])
        assert websocket.receive_json()["data"]["error"] == "INVALID_FRAME"

        websocket.send_json({"event": "join_room", "data": "bk-1"})
        assert websocket.receive_json()["data"]["error"] == "INVALID_FRAME"

        _emit(websocket, "dance")
        assert websocket.receive_json()["data"]["error"] == "UNKNOWN_EVENT"

        websocket.send_bytes(b'{"event": "dance"}')
        assert websocket.receive_json()["data"]["error"] == "UNKNOWN_EVENT"

        websocket.send_bytes(b"\xff\xfe not utf-8")
        assert websocket.receive_json()["data"]["error"] == "INVALID_JSON"

        websocket.send_bytes(b"{not json")
        assert websocket.receive_json()["data"]["error"] == "INVALID_JSON"

        _emit(websocket, "join_room", booking_id="bk-missing", role="client")
        assert websocket.receive_json()["data"]["error"] == "BOOKING_NOT_FOUND"


@pytest.mark.unit
def test_replay_is_complete_on_every_reconnect(ws_client):
    """Each fresh join replays the whole log in send order."""
    booking_id = _create_booking(ws_client)
    sent = [f"message {index}" for index in range(4)]

    with ws_client.websocket_connect("/ws") as websocket:
        _emit(websocket, "join_room", booking_id=booking_id, role="client")
        websocket.receive_json()
        for text in sent:
            _emit(
                websocket,
                "send_message",
                booking_id=booking_id,
                sender_id=CLIENT_ID,
                sender_role="client",
                message=text,
            )
            assert websocket.receive_json()["data"]["message"] == text

    for _ in range(3):
        with ws_client.websocket_connect("/ws") as websocket:
            _emit(websocket, "join_room", booking_id=booking_id, role="client")
            replay = websocket.receive_json()
            assert replay["event"] == "load_messages"
            assert [m["message"] for m in replay["data"]] == sent
            message_ids = [m["message_id"] for m in replay["data"]]
            assert message_ids == sorted(message_ids)
