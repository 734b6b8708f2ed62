"""Booking state machine: creation, counter-proposals, dual agreement, cancellation, payment."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from service_commons.exceptions import (
    ConflictError,
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    PreconditionError,
    ValidationError,
)

from booking_service.logging import get_logger
from booking_service.services.booking_state import (
    AGREED_STATUSES,
    AUDIT_BOOKING_ASSIGNED,
    AUDIT_BOOKING_CREATED,
    AUDIT_CANCELLED,
    AUDIT_CANCELLED_NOTIFIED,
    AUDIT_CONFIRMED,
    AUDIT_PAID,
    AUDIT_PRICE_AGREED,
    AUDIT_PRICE_UPDATED,
    BOOKING_STATUSES,
    CONFIRMED,
    NEGOTIABLE_STATUSES,
    NON_CANCELLABLE_STATUSES,
    PAYMENT_PAID,
    PENDING,
    Role,
    audit_entry,
    with_derived_status,
)
from booking_service.services.booking_store import (
    DuplicatePendingBookingError,
    RecordNotFoundError,
)

if TYPE_CHECKING:
    from collections.abc import Callable

    from booking_service.services.agreement_archiver import AgreementArchiver
    from booking_service.services.booking_store import BookingStore
    from booking_service.services.keyed_locks import KeyedLocks
    from booking_service.services.notification_projector import NotificationProjector
    from booking_service.services.realtime_hub import RealtimeHub


def _now_iso() -> str:
    return datetime.now(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")


def _require_price(value: object, field_name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValidationError(
            "INVALID_PRICE",
            f"{field_name} must be a positive integer amount in cents",
            {"field": field_name},
        )
    return value


def _require_text(data: dict[str, Any], field_name: str) -> str:
    value = data.get(field_name)
    if value is None or (isinstance(value, str) and value.strip() == ""):
        raise ValidationError(
            "MISSING_FIELD",
            f"Missing required field: {field_name}",
            {"field": field_name},
        )
    if not isinstance(value, str):
        raise ValidationError(
            "INVALID_PAYLOAD",
            f"Field '{field_name}' must be a string",
            {"field": field_name},
        )
    return value.strip()


def _require_iso_datetime(value: str, field_name: str) -> str:
    try:
        datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError as exc:
        raise ValidationError(
            "INVALID_PAYLOAD",
            f"Field '{field_name}' must be an ISO 8601 date or datetime",
            {"field": field_name},
        ) from exc
    return value


class NegotiationEngine:
    """
    Owns the booking state machine.

    Every write is a read-modify-write inside one store transaction; status is
    recomputed from the row's facts on each write. Operations on the same
    booking hold its lock across the commit and the broadcast that follows,
    so room members observe updates in commit order and never see a state
    that was rolled back.
    """

    def __init__(
        self,
        store: BookingStore,
        hub: RealtimeHub,
        projector: NotificationProjector,
        archiver: AgreementArchiver,
        booking_locks: KeyedLocks,
        max_notes_length: int,
    ) -> None:
        self._store = store
        self._hub = hub
        self._projector = projector
        self._archiver = archiver
        self._booking_locks = booking_locks
        self._max_notes_length = max_notes_length
        self._logger = get_logger(__name__)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _load(self, booking_id: str) -> dict[str, Any]:
        booking = self._store.get_booking(booking_id)
        if booking is None:
            raise NotFoundError(
                "BOOKING_NOT_FOUND", "Booking not found", {"booking_id": booking_id}
            )
        return booking

    @staticmethod
    def require_party(booking: dict[str, Any], user_id: str) -> Role:
        """Role of the user in the booking; strangers are refused."""
        role = Role.of(booking, user_id)
        if role is None:
            raise ForbiddenError("FORBIDDEN", "Only the booking's client or provider may do this")
        return role

    def _commit(
        self,
        booking_id: str,
        mutator: Callable[[dict[str, Any]], dict[str, Any]],
        audit: Callable[[dict[str, Any]], list[dict[str, Any]]],
    ) -> dict[str, Any]:
        try:
            return self._store.update_booking_atomically(booking_id, mutator, audit)
        except RecordNotFoundError as exc:
            raise NotFoundError(
                "BOOKING_NOT_FOUND", "Booking not found", {"booking_id": booking_id}
            ) from exc

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_booking(self, booking_id: str, principal_id: str) -> dict[str, Any]:
        """Return a booking to one of its parties."""
        booking = self._load(booking_id)
        self.require_party(booking, principal_id)
        return booking

    def list_bookings(
        self,
        principal_id: str,
        status: str | None,
        limit: int | None,
        offset: int | None,
    ) -> dict[str, Any]:
        """List the principal's bookings, as client or provider."""
        if status is not None and status not in BOOKING_STATUSES:
            raise ValidationError(
                "INVALID_PAYLOAD",
                f"status must be one of {sorted(BOOKING_STATUSES)}",
                {"field": "status"},
            )
        bookings = self._store.list_bookings(principal_id, status, limit, offset)
        return {"bookings": bookings}

    def get_chat_history(self, booking_id: str, principal_id: str) -> dict[str, Any]:
        """Return a booking's chat log to one of its parties."""
        booking = self._load(booking_id)
        self.require_party(booking, principal_id)
        return {"booking_id": booking_id, "messages": self._store.get_messages(booking_id)}

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    async def create_booking(self, principal_id: str, data: dict[str, Any]) -> dict[str, Any]:
        """
        Create a Pending booking requested by its client.

        Raises:
            ValidationError: missing parties or schedule, bad price or notes
            ForbiddenError: the caller is not the client named in the request
            ConflictError: BOOKING_ALREADY_PENDING for the same client/provider pair
        """
        client_id = _require_text(data, "client_id")
        provider_id = _require_text(data, "provider_id")
        scheduled_date = _require_iso_datetime(
            _require_text(data, "scheduled_date"), "scheduled_date"
        )

        notes = data.get("notes")
        if notes is None:
            notes = ""
        if not isinstance(notes, str):
            raise ValidationError(
                "INVALID_PAYLOAD", "Field 'notes' must be a string", {"field": "notes"}
            )
        if len(notes) > self._max_notes_length:
            raise ValidationError(
                "INVALID_PAYLOAD",
                f"notes must be at most {self._max_notes_length} characters",
                {"field": "notes"},
            )

        price = data.get("price")
        if price is not None:
            price = _require_price(price, "price")

        if client_id == provider_id:
            raise ValidationError(
                "INVALID_PARTIES", "Client and provider must be different users"
            )
        if client_id != principal_id:
            raise ForbiddenError("FORBIDDEN", "Bookings can only be requested by their client")

        now = _now_iso()
        booking_data: dict[str, Any] = {
            "booking_id": f"bk-{uuid.uuid4()}",
            "client_id": client_id,
            "provider_id": provider_id,
            "notes": notes,
            "scheduled_date": scheduled_date,
            "price": price,
            "status": PENDING,
            "agreed_by_client": False,
            "agreed_by_provider": False,
            "last_proposed_by": None,
            "agreement_url": None,
            "created_at": now,
            "updated_at": now,
            "confirmed_at": None,
            "paid_at": None,
            "completed_at": None,
            "cancelled_at": None,
            "cancelled_by": None,
        }

        try:
            booking = self._store.insert_booking(
                booking_data,
                [
                    audit_entry(
                        client_id,
                        AUDIT_BOOKING_CREATED,
                        booking_data["booking_id"],
                        now,
                        provider_id=provider_id,
                        price=price,
                        scheduled_date=scheduled_date,
                    ),
                    audit_entry(
                        provider_id,
                        AUDIT_BOOKING_ASSIGNED,
                        booking_data["booking_id"],
                        now,
                        client_id=client_id,
                        price=price,
                        scheduled_date=scheduled_date,
                    ),
                ],
            )
        except DuplicatePendingBookingError as exc:
            raise ConflictError(
                "BOOKING_ALREADY_PENDING",
                "A pending booking with this provider already exists",
                {"booking_id": exc.booking_id},
            ) from exc

        self._logger.info(
            "Booking created",
            extra={
                "booking_id": booking["booking_id"],
                "client_id": client_id,
                "provider_id": provider_id,
            },
        )
        await self._projector.booking_requested(booking)
        return booking

    # ------------------------------------------------------------------
    # Negotiation
    # ------------------------------------------------------------------

    async def propose_price(
        self, booking_id: str, principal_id: str, raw_price: object
    ) -> dict[str, Any]:
        """
        Counter-propose a price; clears both agreement flags.

        Raises:
            NotFoundError, ForbiddenError, ValidationError,
            InvalidStateError: booking is past negotiation
        """
        price = _require_price(raw_price, "price")

        def mutate(row: dict[str, Any]) -> dict[str, Any]:
            role = self.require_party(row, principal_id)
            if row["status"] not in NEGOTIABLE_STATUSES:
                raise InvalidStateError(
                    "INVALID_STATUS",
                    f"Cannot propose a price while the booking is {row['status']}",
                    {"status": row["status"]},
                )
            return with_derived_status(
                row,
                {
                    "price": price,
                    "agreed_by_client": False,
                    "agreed_by_provider": False,
                    "last_proposed_by": role.label,
                    "updated_at": _now_iso(),
                },
            )

        def audit(row: dict[str, Any]) -> list[dict[str, Any]]:
            return [
                audit_entry(
                    principal_id,
                    AUDIT_PRICE_UPDATED,
                    booking_id,
                    row["updated_at"],
                    price=price,
                    role=row["last_proposed_by"],
                )
            ]

        async with self._booking_locks.hold(booking_id):
            booking = self._commit(booking_id, mutate, audit)
            proposer = self.require_party(booking, principal_id)
            self._logger.info(
                "Price proposed",
                extra={"booking_id": booking_id, "price": price, "role": proposer.label},
            )
            await self._hub.publish_booking_update(booking)
            await self._projector.price_proposed(booking, proposer)
        return booking

    async def agree(
        self,
        booking_id: str,
        principal_id: str,
        role_name: object | None = None,
        expected_price: object | None = None,
    ) -> dict[str, Any]:
        """
        Record the principal's agreement to the current price.

        Setting the second flag confirms the booking in the same transaction;
        the agreement document is archived after the commit. Re-agreeing is a
        no-op. expected_price binds the agreement to the price the caller saw.

        Raises:
            NotFoundError, ForbiddenError (stranger or ROLE_MISMATCH),
            InvalidStateError (INVALID_STATUS, PRICE_CHANGED),
            PreconditionError (PRICE_NOT_SET)
        """
        requested_role = Role.parse(role_name) if role_name is not None else None
        seen_price = (
            _require_price(expected_price, "expected_price")
            if expected_price is not None
            else None
        )
        changed = False

        def mutate(row: dict[str, Any]) -> dict[str, Any]:
            nonlocal changed
            role = self.require_party(row, principal_id)
            if requested_role is not None and requested_role is not role:
                raise ForbiddenError(
                    "ROLE_MISMATCH",
                    f"Caller is the booking's {role.label}, not its {requested_role.label}",
                )
            if seen_price is not None and row["price"] != seen_price:
                raise InvalidStateError(
                    "PRICE_CHANGED",
                    "The price changed before the agreement was recorded",
                    {"price": row["price"], "expected_price": seen_price},
                )
            if role.has_agreed(row) and row["status"] in AGREED_STATUSES:
                return {}
            if row["status"] not in NEGOTIABLE_STATUSES:
                raise InvalidStateError(
                    "INVALID_STATUS",
                    f"Cannot agree while the booking is {row['status']}",
                    {"status": row["status"]},
                )
            if row["price"] is None:
                raise PreconditionError("PRICE_NOT_SET", "A price must be proposed before agreeing")

            now = _now_iso()
            updates: dict[str, Any] = {role.agreement_field: True, "updated_at": now}
            if role.counterpart.has_agreed(row):
                updates["confirmed_at"] = now
            changed = True
            return with_derived_status(row, updates)

        def audit(row: dict[str, Any]) -> list[dict[str, Any]]:
            if not changed:
                return []
            role = self.require_party(row, principal_id)
            entries = [
                audit_entry(
                    principal_id,
                    AUDIT_PRICE_AGREED,
                    booking_id,
                    row["updated_at"],
                    role=role.label,
                    price=row["price"],
                )
            ]
            if row["status"] == CONFIRMED:
                entries.extend(
                    audit_entry(
                        party.party_id(row),
                        AUDIT_CONFIRMED,
                        booking_id,
                        row["confirmed_at"],
                        role=party.label,
                    )
                    for party in Role
                )
            return entries

        async with self._booking_locks.hold(booking_id):
            booking = self._commit(booking_id, mutate, audit)
            if not changed:
                return booking

            role = self.require_party(booking, principal_id)
            confirmed = booking["status"] == CONFIRMED
            self._logger.info(
                "Agreement recorded",
                extra={"booking_id": booking_id, "role": role.label, "confirmed": confirmed},
            )

            if confirmed:
                archived_url = await self._archiver.try_archive(booking, principal_id)
                if archived_url is not None:
                    booking = {**booking, "agreement_url": archived_url}

            await self._hub.publish_booking_update(booking)
            if confirmed:
                await self._projector.booking_confirmed(booking)
            else:
                await self._projector.agreement_recorded(booking, role)
        return booking

    async def download_agreement(self, booking_id: str, principal_id: str) -> dict[str, Any]:
        """
        Return the archived agreement URL, producing it on first request.

        Raises:
            PreconditionError: AGREEMENT_NOT_SIGNED until both parties agreed
        """
        booking = self._load(booking_id)
        self.require_party(booking, principal_id)
        if not (booking["agreed_by_client"] and booking["agreed_by_provider"]):
            raise PreconditionError(
                "AGREEMENT_NOT_SIGNED",
                "Both parties must agree before the agreement can be downloaded",
            )

        if booking["agreement_url"] is None:
            async with self._booking_locks.hold(booking_id):
                booking = self._load(booking_id)
                url = await self._archiver.archive(booking, principal_id)
        else:
            url = booking["agreement_url"]

        return {"booking_id": booking_id, "document_url": url}

    async def cancel(self, booking_id: str, principal_id: str) -> dict[str, Any]:
        """
        Cancel a booking that is not yet paid.

        Raises:
            NotFoundError, ForbiddenError (not a party), InvalidStateError
        """

        def mutate(row: dict[str, Any]) -> dict[str, Any]:
            role = self.require_party(row, principal_id)
            if row["status"] in NON_CANCELLABLE_STATUSES:
                raise InvalidStateError(
                    "INVALID_STATUS",
                    f"Cannot cancel a booking that is {row['status']}",
                    {"status": row["status"]},
                )
            now = _now_iso()
            return with_derived_status(
                row,
                {"cancelled_at": now, "cancelled_by": role.label, "updated_at": now},
            )

        def audit(row: dict[str, Any]) -> list[dict[str, Any]]:
            role = self.require_party(row, principal_id)
            return [
                audit_entry(
                    principal_id,
                    AUDIT_CANCELLED,
                    booking_id,
                    row["cancelled_at"],
                    role=role.label,
                ),
                audit_entry(
                    role.counterpart_id(row),
                    AUDIT_CANCELLED_NOTIFIED,
                    booking_id,
                    row["cancelled_at"],
                    role=role.counterpart.label,
                ),
            ]

        async with self._booking_locks.hold(booking_id):
            booking = self._commit(booking_id, mutate, audit)
            role = self.require_party(booking, principal_id)
            self._logger.info(
                "Booking cancelled", extra={"booking_id": booking_id, "role": role.label}
            )
            await self._hub.publish_booking_update(booking)
            await self._projector.booking_cancelled(booking, role)
        return booking

    # ------------------------------------------------------------------
    # Payment
    # ------------------------------------------------------------------

    async def record_payment(
        self,
        booking_id: str,
        amount: int,
        gateway_reference: str,
        currency: str,
    ) -> tuple[dict[str, Any], dict[str, Any]]:
        """
        Mark a Confirmed booking Paid together with its successful payment record.

        Raises:
            NotFoundError,
            InvalidStateError: booking is not Confirmed,
            ValidationError: AMOUNT_MISMATCH against the agreed price
        """
        now = _now_iso()

        def mutate(row: dict[str, Any]) -> dict[str, Any]:
            if row["status"] != CONFIRMED:
                raise InvalidStateError(
                    "INVALID_STATUS",
                    f"Cannot record a payment while the booking is {row['status']}",
                    {"status": row["status"]},
                )
            if row["price"] != amount:
                raise ValidationError(
                    "AMOUNT_MISMATCH",
                    "Payment amount does not match the agreed price",
                    {"price": row["price"], "amount": amount},
                )
            return with_derived_status(row, {"paid_at": now, "updated_at": now})

        payment_data = {
            "payment_id": f"pay-{uuid.uuid4()}",
            "booking_id": booking_id,
            "amount": amount,
            "currency": currency,
            "gateway_reference": gateway_reference,
            "status": PAYMENT_PAID,
            "created_at": now,
            "updated_at": now,
            "paid_at": now,
        }

        def audit(row: dict[str, Any]) -> list[dict[str, Any]]:
            return [
                audit_entry(
                    row["client_id"],
                    AUDIT_PAID,
                    booking_id,
                    now,
                    amount=amount,
                    gateway_reference=gateway_reference,
                )
            ]

        async with self._booking_locks.hold(booking_id):
            try:
                booking, payment = self._store.record_payment(
                    booking_id, mutate, payment_data, audit
                )
            except RecordNotFoundError as exc:
                raise NotFoundError(
                    "BOOKING_NOT_FOUND", "Booking not found", {"booking_id": booking_id}
                ) from exc

            self._logger.info(
                "Payment recorded",
                extra={
                    "booking_id": booking_id,
                    "payment_id": payment["payment_id"],
                    "amount": amount,
                    "gateway_reference": gateway_reference,
                },
            )
            await self._hub.publish_booking_update(booking)
            await self._projector.payment_recorded(booking, payment)
        return booking, payment
