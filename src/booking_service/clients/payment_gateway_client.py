"""Async HTTP client for the payment gateway."""

from __future__ import annotations

from typing import Any

from booking_service.clients.base import CollaboratorClient


class PaymentGatewayClient(CollaboratorClient):
    """Opens hosted checkout sessions; the gateway reports the outcome through a signed callback."""

    service_label = "Payment gateway"
    unavailable_error = "PAYMENT_GATEWAY_UNAVAILABLE"

    def __init__(self, base_url: str, checkout_path: str, timeout_seconds: int) -> None:
        super().__init__(base_url=base_url, timeout_seconds=timeout_seconds)
        self._checkout_path = checkout_path

    async def create_checkout(
        self,
        booking_id: str,
        amount: int,
        currency: str,
        description: str,
    ) -> dict[str, Any]:
        """
        Open a checkout session for a booking.

        Returns:
            dict with keys: checkout_url (str), reference (str)

        Raises:
            ServiceError: PAYMENT_GATEWAY_UNAVAILABLE (502) on transport, status or shape errors
        """
        response = await self._request(
            "POST",
            self._checkout_path,
            json={
                "booking_id": booking_id,
                "amount": amount,
                "currency": currency,
                "description": description,
            },
        )
        if response.status_code not in (200, 201):
            raise self._unexpected_status(response, "checkout")

        session = self._json_object(response, "checkout")
        checkout_url = session.get("checkout_url")
        reference = session.get("reference")
        if not isinstance(checkout_url, str) or not isinstance(reference, str):
            raise self._unavailable("Payment gateway returned an incomplete checkout session")
        return {"checkout_url": checkout_url, "reference": reference}
