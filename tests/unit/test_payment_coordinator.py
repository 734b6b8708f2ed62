"""Unit tests for PaymentCoordinator."""

from __future__ import annotations

from typing import Any
from unittest.mock import AsyncMock

import pytest
from service_commons.exceptions import ServiceError

from booking_service.services.realtime_hub import booking_room, user_room
from tests.helpers import (
    CLIENT_ID,
    GATEWAY_ID,
    PROVIDER_ID,
    STRANGER_ID,
    RecordingSocket,
    create_confirmed_booking,
    create_pending_booking,
    make_fake_jws,
)


def _callback(booking_id: str, *, action: str = "payment_succeeded", **fields: Any) -> str:
    payload = {
        "action": action,
        "booking_id": booking_id,
        "gateway_reference": "ref-1",
        "amount": 12000,
        **fields,
    }
    return make_fake_jws(payload, kid=GATEWAY_ID)


@pytest.mark.unit
async def test_checkout_creates_pending_payment(services: dict[str, Any]) -> None:
    """Checkout records a pending payment and returns the gateway URL."""
    booking = await create_confirmed_booking(services)

    result = await services["payments"].start_checkout(booking["booking_id"], CLIENT_ID)

    assert result["status"] == "pending"
    assert result["amount"] == 12000
    assert result["currency"] == "usd"
    assert result["gateway_reference"] == "ref-1"
    assert result["checkout_url"] == "https://pay.test/session/1"
    services["gateway"].create_checkout.assert_awaited_once_with(
        booking_id=booking["booking_id"],
        amount=12000,
        currency="usd",
        description=f"Booking {booking['booking_id']}",
    )


@pytest.mark.unit
async def test_checkout_rules(services: dict[str, Any]) -> None:
    """Only the client of a Confirmed booking can check out."""
    payments = services["payments"]
    pending = await create_pending_booking(services)

    with pytest.raises(ServiceError) as not_confirmed:
        await payments.start_checkout(pending["booking_id"], CLIENT_ID)
    assert not_confirmed.value.error == "INVALID_STATUS"
    await services["engine"].cancel(pending["booking_id"], CLIENT_ID)

    booking = await create_confirmed_booking(services)
    with pytest.raises(ServiceError) as provider:
        await payments.start_checkout(booking["booking_id"], PROVIDER_ID)
    assert provider.value.error == "CLIENT_ONLY"

    with pytest.raises(ServiceError) as stranger:
        await payments.start_checkout(booking["booking_id"], STRANGER_ID)
    assert stranger.value.error == "FORBIDDEN"

    services["gateway"].create_checkout = AsyncMock(side_effect=ConnectionError("down"))
    with pytest.raises(ServiceError) as outage:
        await payments.start_checkout(booking["booking_id"], CLIENT_ID)
    assert outage.value.error == "PAYMENT_GATEWAY_UNAVAILABLE"
    assert outage.value.status_code == 502
    assert services["store"].get_payment_for_booking(booking["booking_id"]) is None


@pytest.mark.unit
async def test_successful_callback_pays_and_starts_execution(services: dict[str, Any]) -> None:
    """A signed success marks the booking Paid and opens the execution record."""
    booking = await create_confirmed_booking(services)
    booking_id = booking["booking_id"]
    checkout = await services["payments"].start_checkout(booking_id, CLIENT_ID)
    hub = services["hub"]
    room = RecordingSocket()
    hub.join(hub.connect(room), booking_room(booking_id))
    provider_inbox = RecordingSocket()
    hub.join(hub.connect(provider_inbox), user_room(PROVIDER_ID))

    result = await services["payments"].handle_callback(_callback(booking_id))

    assert result["booking"]["status"] == "Paid"
    assert result["payment"]["status"] == "Paid"
    assert result["payment"]["payment_id"] == checkout["payment_id"]
    assert result["execution"]["payment_id"] == checkout["payment_id"]
    assert room.events() == ["booking_updated", "execution_updated"]
    assert provider_inbox.events() == ["payment_received"]


@pytest.mark.unit
async def test_duplicate_callback_is_idempotent(services: dict[str, Any]) -> None:
    """Replaying the same success returns the stored state."""
    booking = await create_confirmed_booking(services)
    first = await services["payments"].handle_callback(_callback(booking["booking_id"]))

    replay = await services["payments"].handle_callback(_callback(booking["booking_id"]))

    assert replay["payment"] == first["payment"]
    assert replay["execution"]["execution_id"] == first["execution"]["execution_id"]

    with pytest.raises(ServiceError) as other_reference:
        await services["payments"].handle_callback(
            _callback(booking["booking_id"], gateway_reference="ref-2")
        )
    assert other_reference.value.error == "INVALID_STATUS"


@pytest.mark.unit
async def test_failed_callback_warns_client(services: dict[str, Any]) -> None:
    """A failed payment leaves the booking Confirmed and warns the client."""
    booking = await create_confirmed_booking(services)
    hub = services["hub"]
    client_inbox = RecordingSocket()
    hub.join(hub.connect(client_inbox), user_room(CLIENT_ID))

    result = await services["payments"].handle_callback(
        _callback(booking["booking_id"], action="payment_failed", reason="card declined")
    )

    assert result["booking"]["status"] == "Confirmed"
    assert result["execution"] is None
    assert client_inbox.events() == ["payment_failed"]


@pytest.mark.unit
async def test_callback_validation(services: dict[str, Any]) -> None:
    """Callbacks must come from the gateway and carry a matching amount."""
    payments = services["payments"]
    booking = await create_confirmed_booking(services)
    booking_id = booking["booking_id"]

    forged = make_fake_jws(
        {"action": "payment_succeeded", "booking_id": booking_id}, kid=CLIENT_ID
    )
    with pytest.raises(ServiceError) as not_gateway:
        await payments.handle_callback(forged)
    assert not_gateway.value.status_code == 403

    with pytest.raises(ServiceError) as wrong_action:
        await payments.handle_callback(_callback(booking_id, action="refund"))
    assert wrong_action.value.error == "INVALID_PAYLOAD"

    with pytest.raises(ServiceError) as no_reference:
        await payments.handle_callback(_callback(booking_id, gateway_reference=""))
    assert no_reference.value.error == "INVALID_PAYLOAD"

    with pytest.raises(ServiceError) as wrong_amount:
        await payments.handle_callback(_callback(booking_id, amount=100))
    assert wrong_amount.value.error == "AMOUNT_MISMATCH"

    with pytest.raises(ServiceError) as unknown:
        await payments.handle_callback(_callback("bk-missing"))
    assert unknown.value.error == "BOOKING_NOT_FOUND"

    assert services["store"].get_booking(booking_id)["status"] == "Confirmed"


@pytest.mark.unit
async def test_get_payment(services: dict[str, Any]) -> None:
    """Parties read the payment record once one exists."""
    booking = await create_confirmed_booking(services)
    booking_id = booking["booking_id"]

    with pytest.raises(ServiceError) as missing:
        services["payments"].get_payment(booking_id, CLIENT_ID)
    assert missing.value.error == "PAYMENT_NOT_FOUND"

    await services["payments"].start_checkout(booking_id, CLIENT_ID)
    assert services["payments"].get_payment(booking_id, PROVIDER_ID)["status"] == "pending"
