"""Router test fixtures with mocked Identity, payment gateway, renderer and storage."""

from __future__ import annotations

import os
from typing import TYPE_CHECKING, Any
from unittest.mock import AsyncMock

import pytest
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey
from httpx import ASGITransport, AsyncClient

from booking_service.app import create_app
from booking_service.config import clear_settings_cache
from booking_service.core.lifespan import lifespan
from booking_service.core.state import get_app_state, reset_app_state
from tests.helpers import (
    CLIENT_ID,
    GATEWAY_ID,
    PROVIDER_ID,
    config_yaml,
    make_jws_token,
    verifying_identity_mock,
)

if TYPE_CHECKING:
    from collections.abc import AsyncIterator
    from pathlib import Path

_SIGNING_KEY = Ed25519PrivateKey.generate()


# ---------------------------------------------------------------------------
# Token helpers
# ---------------------------------------------------------------------------
def token_for(user_id: str, payload: dict[str, Any] | None = None) -> str:
    """A real JWS signed for the given user (kid)."""
    return make_jws_token(_SIGNING_KEY, user_id, payload or {"action": "authenticate"})


def auth(user_id: str) -> dict[str, str]:
    """Authorization header for the given user."""
    return {"Authorization": f"Bearer {token_for(user_id)}"}


def gateway_callback(
    booking_id: str,
    *,
    action: str = "payment_succeeded",
    amount: int = 12000,
    reference: str = "ref-1",
) -> dict[str, str]:
    """Body of a gateway-signed payment callback."""
    payload = {
        "action": action,
        "booking_id": booking_id,
        "amount": amount,
        "gateway_reference": reference,
    }
    return {"token": token_for(GATEWAY_ID, payload)}


# ---------------------------------------------------------------------------
# App + client fixtures
# ---------------------------------------------------------------------------
@pytest.fixture
async def app(tmp_path: Path) -> AsyncIterator[Any]:
    """Create a test app with temp database and mocked collaborators."""
    config_path = tmp_path / "config.yaml"
    config_path.write_text(config_yaml(str(tmp_path / "test.db")))

    old_config = os.environ.get("CONFIG_PATH")
    os.environ["CONFIG_PATH"] = str(config_path)

    clear_settings_cache()
    reset_app_state()

    test_app = create_app()
    async with lifespan(test_app):
        state = get_app_state()

        # Identity: any well-formed token verifies as its kid
        state.identity_client = verifying_identity_mock()

        mock_gateway = AsyncMock()
        mock_gateway.close = AsyncMock()
        mock_gateway.create_checkout = AsyncMock(
            return_value={"checkout_url": "https://pay.test/session/1", "reference": "ref-1"}
        )
        state.payment_gateway_client = mock_gateway

        mock_renderer = AsyncMock()
        mock_renderer.close = AsyncMock()
        mock_renderer.render_agreement = AsyncMock(return_value=b"%PDF-1.4 agreement")
        state.document_renderer_client = mock_renderer

        mock_storage = AsyncMock()
        mock_storage.close = AsyncMock()
        mock_storage.put_object = AsyncMock(
            side_effect=lambda path, content, content_type: f"https://files.test/{path}"
        )
        state.object_storage_client = mock_storage

        yield test_app

    reset_app_state()
    clear_settings_cache()
    if old_config is None:
        os.environ.pop("CONFIG_PATH", None)
    else:
        os.environ["CONFIG_PATH"] = old_config


@pytest.fixture
async def client(app: Any) -> AsyncIterator[AsyncClient]:
    """Create an async HTTP client for the test app."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


# ---------------------------------------------------------------------------
# Mock override fixtures
# ---------------------------------------------------------------------------
@pytest.fixture
def mock_identity_unavailable(_app: Any) -> None:
    """Configure the Identity mock to simulate service unavailability."""
    state = get_app_state()
    state.identity_client.verify_jws = AsyncMock(
        side_effect=ConnectionError("Identity service unreachable")
    )


@pytest.fixture
def mock_gateway_unavailable(_app: Any) -> None:
    """Configure the payment gateway mock to simulate unavailability."""
    state = get_app_state()
    state.payment_gateway_client.create_checkout = AsyncMock(
        side_effect=ConnectionError("Payment gateway unreachable")
    )


# ---------------------------------------------------------------------------
# Booking lifecycle helper functions
# ---------------------------------------------------------------------------
async def create_booking(
    client: AsyncClient,
    *,
    client_id: str = CLIENT_ID,
    provider_id: str = PROVIDER_ID,
    price: int | None = 12000,
    notes: str = "Fix the kitchen sink",
) -> Any:
    """Request a booking via POST /bookings and return the response."""
    body: dict[str, Any] = {
        "client_id": client_id,
        "provider_id": provider_id,
        "scheduled_date": "2026-02-01T09:00:00Z",
        "notes": notes,
    }
    if price is not None:
        body["price"] = price
    return await client.post("/bookings", json=body, headers=auth(client_id))


async def setup_confirmed_booking(client: AsyncClient, *, price: int = 12000) -> str:
    """Create a booking and have both parties agree. Returns the booking_id."""
    response = await create_booking(client, price=price)
    booking_id = response.json()["booking_id"]
    await client.put(f"/bookings/{booking_id}/agree", json={}, headers=auth(CLIENT_ID))
    await client.put(f"/bookings/{booking_id}/agree", json={}, headers=auth(PROVIDER_ID))
    return booking_id


async def setup_paid_booking(client: AsyncClient) -> tuple[str, dict[str, Any]]:
    """Confirm a booking and deliver a successful gateway callback.

    Returns (booking_id, callback response body).
    """
    booking_id = await setup_confirmed_booking(client)
    await client.post(f"/payments/{booking_id}/checkout", headers=auth(CLIENT_ID))
    response = await client.post("/payments/callback", json=gateway_callback(booking_id))
    return booking_id, response.json()
