"""Checkout sessions and payment-gateway callbacks."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from service_commons.exceptions import (
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    ServiceError,
    ValidationError,
)

from booking_service.logging import get_logger
from booking_service.services.booking_state import (
    CONFIRMED,
    PAYMENT_PAID,
    PAYMENT_PENDING,
    Role,
)

if TYPE_CHECKING:
    from booking_service.clients.payment_gateway_client import PaymentGatewayClient
    from booking_service.services.booking_store import BookingStore
    from booking_service.services.execution_tracker import ExecutionTracker
    from booking_service.services.negotiation_engine import NegotiationEngine
    from booking_service.services.notification_projector import NotificationProjector
    from booking_service.services.token_validator import TokenValidator

PAYMENT_SUCCEEDED = "payment_succeeded"
PAYMENT_FAILED = "payment_failed"


def _now_iso() -> str:
    return datetime.now(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")


class PaymentCoordinator:
    """
    Bridges the payment gateway and the booking workflow.

    A successful callback records the payment through the negotiation engine
    and then activates the execution tracker. Replays of an already recorded
    success are answered with the stored state.
    """

    def __init__(
        self,
        store: BookingStore,
        engine: NegotiationEngine,
        tracker: ExecutionTracker,
        projector: NotificationProjector,
        gateway_client: PaymentGatewayClient,
        token_validator: TokenValidator,
        gateway_agent_id: str,
        currency: str,
    ) -> None:
        self._store = store
        self._engine = engine
        self._tracker = tracker
        self._projector = projector
        self._gateway_client = gateway_client
        self._token_validator = token_validator
        self._gateway_agent_id = gateway_agent_id
        self._currency = currency
        self._logger = get_logger(__name__)

    def _load_booking(self, booking_id: str) -> dict[str, Any]:
        booking = self._store.get_booking(booking_id)
        if booking is None:
            raise NotFoundError(
                "BOOKING_NOT_FOUND", "Booking not found", {"booking_id": booking_id}
            )
        return booking

    async def start_checkout(self, booking_id: str, principal_id: str) -> dict[str, Any]:
        """
        Open a gateway checkout for a Confirmed booking and record it as pending.

        Raises:
            NotFoundError, ForbiddenError (CLIENT_ONLY), InvalidStateError,
            ServiceError: PAYMENT_GATEWAY_UNAVAILABLE (502)
        """
        booking = self._load_booking(booking_id)
        role = self._engine.require_party(booking, principal_id)
        if role is not Role.CLIENT:
            raise ForbiddenError("CLIENT_ONLY", "Only the client can pay for a booking")
        if booking["status"] != CONFIRMED:
            raise InvalidStateError(
                "INVALID_STATUS",
                f"Checkout requires a Confirmed booking; booking is {booking['status']}",
                {"status": booking["status"]},
            )

        try:
            session = await self._gateway_client.create_checkout(
                booking_id=booking_id,
                amount=booking["price"],
                currency=self._currency,
                description=f"Booking {booking_id}",
            )
        except ServiceError:
            raise
        except Exception as exc:
            raise ServiceError(
                "PAYMENT_GATEWAY_UNAVAILABLE",
                "Payment gateway checkout failed",
                502,
                {},
            ) from exc

        now = _now_iso()
        payment = self._store.upsert_pending_payment(
            {
                "payment_id": f"pay-{uuid.uuid4()}",
                "booking_id": booking_id,
                "amount": booking["price"],
                "currency": self._currency,
                "gateway_reference": session["reference"],
                "status": PAYMENT_PENDING,
                "created_at": now,
                "updated_at": now,
                "paid_at": None,
            }
        )
        self._logger.info(
            "Checkout started",
            extra={
                "booking_id": booking_id,
                "payment_id": payment["payment_id"],
                "gateway_reference": session["reference"],
            },
        )
        return {**payment, "checkout_url": session["checkout_url"]}

    async def handle_callback(self, token: str) -> dict[str, Any]:
        """
        Apply a signed gateway outcome.

        Raises:
            ServiceError: token errors from TokenValidator,
            ForbiddenError: signer is not the gateway,
            ValidationError: missing fields or AMOUNT_MISMATCH,
            InvalidStateError, NotFoundError
        """
        payload = await self._token_validator.validate_signed_action(
            token, (PAYMENT_SUCCEEDED, PAYMENT_FAILED)
        )
        if payload["_signer_id"] != self._gateway_agent_id:
            raise ForbiddenError("FORBIDDEN", "Callback was not signed by the payment gateway")

        booking_id = payload.get("booking_id")
        if not isinstance(booking_id, str) or booking_id == "":
            raise ValidationError(
                "INVALID_PAYLOAD", "Callback must include booking_id", {"field": "booking_id"}
            )
        booking = self._load_booking(booking_id)

        if payload["action"] == PAYMENT_FAILED:
            reason = payload.get("reason")
            self._logger.warning(
                "Payment failed",
                extra={"booking_id": booking_id, "reason": reason},
            )
            await self._projector.payment_failed(
                booking, reason if isinstance(reason, str) else None
            )
            return {
                "booking": booking,
                "payment": self._store.get_payment_for_booking(booking_id),
                "execution": None,
            }

        reference = payload.get("gateway_reference")
        amount = payload.get("amount")
        if not isinstance(reference, str) or reference == "":
            raise ValidationError(
                "INVALID_PAYLOAD",
                "Callback must include gateway_reference",
                {"field": "gateway_reference"},
            )
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise ValidationError(
                "INVALID_PAYLOAD", "amount must be a positive integer", {"field": "amount"}
            )

        existing = self._store.get_payment_for_booking(booking_id)
        if (
            existing is not None
            and existing["status"] == PAYMENT_PAID
            and existing["gateway_reference"] == reference
        ):
            self._logger.info(
                "Duplicate payment callback ignored",
                extra={"booking_id": booking_id, "gateway_reference": reference},
            )
            return {
                "booking": booking,
                "payment": existing,
                "execution": self._store.get_execution_for_booking(booking_id),
            }

        booking, payment = await self._engine.record_payment(
            booking_id, amount, reference, self._currency
        )
        execution = await self._tracker.activate(booking, payment)
        return {"booking": booking, "payment": payment, "execution": execution}

    def get_payment(self, booking_id: str, principal_id: str) -> dict[str, Any]:
        """Return a booking's payment record to one of its parties."""
        booking = self._load_booking(booking_id)
        self._engine.require_party(booking, principal_id)
        payment = self._store.get_payment_for_booking(booking_id)
        if payment is None:
            raise NotFoundError("PAYMENT_NOT_FOUND", "No payment exists for this booking")
        return payment
