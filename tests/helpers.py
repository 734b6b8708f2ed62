"""Shared test helpers for JWS authentication and in-memory service wiring."""

from __future__ import annotations

import base64
import json
from typing import Any
from unittest.mock import AsyncMock

from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey
from joserfc import jws
from joserfc.jwk import OKPKey

CLIENT_ID = "u-client"
PROVIDER_ID = "u-provider"
STRANGER_ID = "u-stranger"
GATEWAY_ID = "a-payment-gateway"


def make_jws_token(
    private_key: Ed25519PrivateKey,
    agent_id: str,
    payload: dict[str, Any],
) -> str:
    """Create a real JWS compact token signed by the given key."""
    raw_private = private_key.private_bytes_raw()
    raw_public = private_key.public_key().public_bytes_raw()
    jwk_dict = {
        "kty": "OKP",
        "crv": "Ed25519",
        "d": base64.urlsafe_b64encode(raw_private).rstrip(b"=").decode(),
        "x": base64.urlsafe_b64encode(raw_public).rstrip(b"=").decode(),
    }
    key = OKPKey.import_key(jwk_dict)
    protected = {"alg": "EdDSA", "kid": agent_id}
    payload_bytes = json.dumps(payload, separators=(",", ":"), sort_keys=True).encode()
    return jws.serialize_compact(protected, payload_bytes, key, algorithms=["EdDSA"])


def make_fake_jws(payload: dict[str, Any], kid: str = "u-test-user") -> str:
    """Build a structurally valid but unsigned JWS (for format-only tests)."""
    header = (
        base64.urlsafe_b64encode(json.dumps({"alg": "EdDSA", "kid": kid}).encode())
        .rstrip(b"=")
        .decode()
    )
    body = base64.urlsafe_b64encode(json.dumps(payload).encode()).rstrip(b"=").decode()
    signature = base64.urlsafe_b64encode(b"fake-signature").rstrip(b"=").decode()
    return f"{header}.{body}.{signature}"


def extract_kid(token: str) -> str:
    """Extract the kid (user id) from a JWS compact token header."""
    header_b64 = token.split(".", maxsplit=1)[0]
    padded = header_b64 + "=" * (4 - len(header_b64) % 4)
    header = json.loads(base64.urlsafe_b64decode(padded))
    return header.get("kid", "unknown")


def extract_payload(token: str) -> dict[str, Any]:
    """Extract the payload from a JWS compact token."""
    payload_b64 = token.split(".")[1]
    padded = payload_b64 + "=" * (4 - len(payload_b64) % 4)
    return json.loads(base64.urlsafe_b64decode(padded))


def verifying_identity_mock() -> AsyncMock:
    """Identity client mock that accepts any structurally valid token as its kid."""
    identity = AsyncMock()
    identity.close = AsyncMock()
    identity.verify_jws = AsyncMock(
        side_effect=lambda token: {
            "valid": True,
            "agent_id": extract_kid(token),
            "payload": extract_payload(token),
        }
    )
    return identity


def booking_row(
    booking_id: str = "bk-1",
    *,
    client_id: str = CLIENT_ID,
    provider_id: str = PROVIDER_ID,
    status: str = "Pending",
    price: int | None = 12000,
    created_at: str = "2026-01-01T10:00:00.000000Z",
    **overrides: Any,
) -> dict[str, Any]:
    """A complete booking row ready for BookingStore.insert_booking."""
    row: dict[str, Any] = {
        "booking_id": booking_id,
        "client_id": client_id,
        "provider_id": provider_id,
        "notes": "Fix the kitchen sink",
        "scheduled_date": "2026-02-01T09:00:00Z",
        "price": price,
        "status": status,
        "agreed_by_client": False,
        "agreed_by_provider": False,
        "last_proposed_by": None,
        "agreement_url": None,
        "created_at": created_at,
        "updated_at": created_at,
        "confirmed_at": None,
        "paid_at": None,
        "completed_at": None,
        "cancelled_at": None,
        "cancelled_by": None,
    }
    row.update(overrides)
    return row


class RecordingSocket:
    """Stand-in for a WebSocket send callable that records every frame."""

    def __init__(self, *, fail: bool = False) -> None:
        self.frames: list[dict[str, Any]] = []
        self.fail = fail

    async def __call__(self, frame: dict[str, Any]) -> None:
        if self.fail:
            msg = "socket closed"
            raise ConnectionError(msg)
        self.frames.append(frame)

    def events(self) -> list[str]:
        """Event names in delivery order."""
        return [frame["event"] for frame in self.frames]

    def of(self, event: str) -> list[Any]:
        """Payloads of every frame with the given event name."""
        return [frame["data"] for frame in self.frames if frame["event"] == event]


async def create_pending_booking(
    services: dict[str, Any], price: int | None = 12000
) -> dict[str, Any]:
    """Request a booking as the client through the negotiation engine."""
    data: dict[str, Any] = {
        "client_id": CLIENT_ID,
        "provider_id": PROVIDER_ID,
        "scheduled_date": "2026-02-01T09:00:00Z",
        "notes": "Fix the kitchen sink",
    }
    if price is not None:
        data["price"] = price
    return await services["engine"].create_booking(CLIENT_ID, data)


async def create_confirmed_booking(services: dict[str, Any], price: int = 12000) -> dict[str, Any]:
    """Create a booking and have both parties agree to its price."""
    booking = await create_pending_booking(services, price=price)
    await services["engine"].agree(booking["booking_id"], CLIENT_ID)
    return await services["engine"].agree(booking["booking_id"], PROVIDER_ID)


async def create_paid_booking(
    services: dict[str, Any], price: int = 12000
) -> tuple[dict[str, Any], dict[str, Any], dict[str, Any]]:
    """Confirm a booking, record its payment and activate execution."""
    booking = await create_confirmed_booking(services, price=price)
    booking, payment = await services["engine"].record_payment(
        booking["booking_id"], price, "ref-paid", "usd"
    )
    execution = await services["tracker"].activate(booking, payment)
    return booking, payment, execution


def config_yaml(db_path: str, *, max_body_size: int = 1048576) -> str:
    """A complete service configuration pointing at the given database."""
    return f"""\
service:
  name: "booking"
  version: "0.1.0"
server:
  host: "0.0.0.0"
  port: 8010
  log_level: "info"
logging:
  level: "WARNING"
  directory: "data/logs"
database:
  path: "{db_path}"
identity:
  base_url: "http://localhost:8001"
  verify_jws_path: "/agents/verify-jws"
  timeout_seconds: 10
payment_gateway:
  base_url: "http://localhost:8020"
  checkout_path: "/checkout/sessions"
  agent_id: "{GATEWAY_ID}"
  currency: "usd"
  timeout_seconds: 10
document_renderer:
  base_url: "http://localhost:8030"
  render_path: "/documents/agreements"
  timeout_seconds: 10
object_storage:
  base_url: "http://localhost:8040"
  agreement_prefix: "agreements"
  timeout_seconds: 10
request:
  max_body_size: {max_body_size}
limits:
  max_notes_length: 2000
  max_message_length: 4000
  max_comment_length: 2000
  max_notifications: 100
"""
