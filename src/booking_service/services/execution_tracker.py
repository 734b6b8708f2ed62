"""Post-payment execution record: credential check and dual completion."""

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
    FLAG_COMPLETED,
    FLAG_PENDING,
    PAID,
    PAYMENT_PAID,
    Role,
    with_derived_status,
)
from booking_service.services.booking_store import DuplicateExecutionError, RecordNotFoundError

if TYPE_CHECKING:
    from collections.abc import Callable

    from booking_service.services.booking_store import BookingStore
    from booking_service.services.keyed_locks import KeyedLocks
    from booking_service.services.notification_projector import NotificationProjector
    from booking_service.services.realtime_hub import RealtimeHub

CREDENTIAL_VALIDATED = "credential_validated"
PROVIDER_COMPLETED = "provider_completed"
CLIENT_COMPLETED = "client_completed"
PROVIDER_FIELDS: tuple[str, ...] = (CREDENTIAL_VALIDATED, PROVIDER_COMPLETED)
EXECUTION_FIELDS: tuple[str, ...] = (*PROVIDER_FIELDS, CLIENT_COMPLETED)


def _now_iso() -> str:
    return datetime.now(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")


def execution_to_response(execution: dict[str, Any]) -> dict[str, Any]:
    """Execution record plus whether the booking may now be reviewed."""
    return {**execution, "review_eligible": execution[CLIENT_COMPLETED] == FLAG_COMPLETED}


class ExecutionTracker:
    """
    Three one-directional flags per paid booking.

    The client's confirmation is gated on both provider-side flags and
    completes the booking in the same transaction. Re-setting a completed
    flag is a no-op.
    """

    def __init__(
        self,
        store: BookingStore,
        hub: RealtimeHub,
        projector: NotificationProjector,
        booking_locks: KeyedLocks,
    ) -> None:
        self._store = store
        self._hub = hub
        self._projector = projector
        self._booking_locks = booking_locks
        self._logger = get_logger(__name__)

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    async def activate(self, booking: dict[str, Any], payment: dict[str, Any]) -> dict[str, Any]:
        """
        Create the execution record of a freshly paid booking.

        Raises:
            ConflictError: EXECUTION_EXISTS (status 400) if one already exists
        """
        now = _now_iso()
        execution_data = {
            "execution_id": f"ex-{uuid.uuid4()}",
            "booking_id": booking["booking_id"],
            "client_id": booking["client_id"],
            "provider_id": booking["provider_id"],
            "payment_id": payment["payment_id"],
            CREDENTIAL_VALIDATED: FLAG_PENDING,
            PROVIDER_COMPLETED: FLAG_PENDING,
            CLIENT_COMPLETED: FLAG_PENDING,
            "created_at": now,
            "updated_at": now,
        }

        async with self._booking_locks.hold(booking["booking_id"]):
            try:
                execution = self._store.insert_execution(execution_data)
            except DuplicateExecutionError as exc:
                raise ConflictError(
                    "EXECUTION_EXISTS",
                    "An execution record already exists for this booking",
                    {"booking_id": booking["booking_id"]},
                    status_code=400,
                ) from exc

            response = execution_to_response(execution)
            self._logger.info(
                "Execution activated",
                extra={
                    "execution_id": execution["execution_id"],
                    "booking_id": booking["booking_id"],
                },
            )
            await self._hub.publish_execution_update(response)
        return response

    async def create_execution(self, principal_id: str, data: dict[str, Any]) -> dict[str, Any]:
        """
        Create the execution record for a paid booking on request of a party.

        Raises:
            ValidationError: missing ids, or ids not matching the booking/payment
            NotFoundError, ForbiddenError,
            ConflictError: EXECUTION_EXISTS (400),
            InvalidStateError: booking not Paid,
            PreconditionError: PAYMENT_NOT_RECORDED
        """
        fields: dict[str, str] = {}
        for name in ("booking_id", "client_id", "provider_id", "payment_id"):
            value = data.get(name)
            if not isinstance(value, str) or value == "":
                raise ValidationError(
                    "MISSING_FIELD", f"Missing required field: {name}", {"field": name}
                )
            fields[name] = value

        booking = self._store.get_booking(fields["booking_id"])
        if booking is None:
            raise NotFoundError("BOOKING_NOT_FOUND", "Booking not found")
        if Role.of(booking, principal_id) is None:
            raise ForbiddenError("FORBIDDEN", "Only the booking's client or provider may do this")
        if (
            booking["client_id"] != fields["client_id"]
            or booking["provider_id"] != fields["provider_id"]
        ):
            raise ValidationError(
                "PARTY_MISMATCH", "client_id and provider_id must match the booking"
            )
        if self._store.get_execution_for_booking(booking["booking_id"]) is not None:
            raise ConflictError(
                "EXECUTION_EXISTS",
                "An execution record already exists for this booking",
                {"booking_id": booking["booking_id"]},
                status_code=400,
            )
        if booking["status"] != PAID:
            raise InvalidStateError(
                "INVALID_STATUS",
                f"Execution starts after payment; booking is {booking['status']}",
                {"status": booking["status"]},
            )

        payment = self._store.get_payment_for_booking(booking["booking_id"])
        if payment is None or payment["status"] != PAYMENT_PAID:
            raise PreconditionError(
                "PAYMENT_NOT_RECORDED", "No successful payment is recorded for this booking"
            )
        if payment["payment_id"] != fields["payment_id"]:
            raise ValidationError("PAYMENT_MISMATCH", "payment_id does not match the booking")

        return await self.activate(booking, payment)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_execution(self, execution_id: str, principal_id: str) -> dict[str, Any]:
        """Return an execution record to one of the booking's parties."""
        execution = self._store.get_execution(execution_id)
        if execution is None:
            raise NotFoundError("EXECUTION_NOT_FOUND", "Execution record not found")
        if principal_id not in (execution["client_id"], execution["provider_id"]):
            raise ForbiddenError("FORBIDDEN", "Only the booking's client or provider may do this")
        return execution_to_response(execution)

    def get_execution_for_booking(self, booking_id: str, principal_id: str) -> dict[str, Any]:
        """Return the execution record of a booking to one of its parties."""
        booking = self._store.get_booking(booking_id)
        if booking is None:
            raise NotFoundError("BOOKING_NOT_FOUND", "Booking not found")
        if Role.of(booking, principal_id) is None:
            raise ForbiddenError("FORBIDDEN", "Only the booking's client or provider may do this")
        execution = self._store.get_execution_for_booking(booking_id)
        if execution is None:
            raise NotFoundError("EXECUTION_NOT_FOUND", "Execution record not found")
        return execution_to_response(execution)

    # ------------------------------------------------------------------
    # Flag transitions
    # ------------------------------------------------------------------

    def _commit(
        self,
        execution_id: str,
        mutator: Callable[
            [dict[str, Any], dict[str, Any]], tuple[dict[str, Any], dict[str, Any]]
        ],
    ) -> tuple[dict[str, Any], dict[str, Any]]:
        try:
            return self._store.update_execution_atomically(execution_id, mutator)
        except RecordNotFoundError as exc:
            raise NotFoundError("EXECUTION_NOT_FOUND", "Execution record not found") from exc

    def _booking_id_of(self, execution_id: str) -> str:
        execution = self._store.get_execution(execution_id)
        if execution is None:
            raise NotFoundError("EXECUTION_NOT_FOUND", "Execution record not found")
        booking_id: str = execution["booking_id"]
        return booking_id

    async def update_field(
        self, execution_id: str, principal_id: str, field_name: object
    ) -> dict[str, Any]:
        """Dispatch a flag update by field name."""
        if field_name in PROVIDER_FIELDS:
            return await self.set_provider_flag(execution_id, principal_id, str(field_name))
        if field_name == CLIENT_COMPLETED:
            return await self.confirm_client_completion(execution_id, principal_id)
        raise ValidationError(
            "INVALID_FIELD",
            f"field must be one of {list(EXECUTION_FIELDS)}",
            {"field": None if field_name is None else str(field_name)},
        )

    async def set_provider_flag(
        self, execution_id: str, principal_id: str, field_name: str
    ) -> dict[str, Any]:
        """
        Complete a provider-side flag.

        Raises:
            ForbiddenError: PROVIDER_ONLY,
            PreconditionError: CREDENTIAL_NOT_VALIDATED before provider_completed
        """
        if field_name not in PROVIDER_FIELDS:
            raise ValidationError(
                "INVALID_FIELD", f"field must be one of {list(PROVIDER_FIELDS)}"
            )
        changed = False

        def mutate(
            execution: dict[str, Any], _booking: dict[str, Any]
        ) -> tuple[dict[str, Any], dict[str, Any]]:
            nonlocal changed
            if principal_id != execution["provider_id"]:
                raise ForbiddenError("PROVIDER_ONLY", "Only the provider may update this flag")
            if execution[field_name] == FLAG_COMPLETED:
                return {}, {}
            if (
                field_name == PROVIDER_COMPLETED
                and execution[CREDENTIAL_VALIDATED] != FLAG_COMPLETED
            ):
                raise PreconditionError(
                    "CREDENTIAL_NOT_VALIDATED",
                    "The credential must be validated before the task can be completed",
                )
            changed = True
            return {field_name: FLAG_COMPLETED, "updated_at": _now_iso()}, {}

        async with self._booking_locks.hold(self._booking_id_of(execution_id)):
            execution, booking = self._commit(execution_id, mutate)
            response = execution_to_response(execution)
            if changed:
                self._logger.info(
                    "Execution flag completed",
                    extra={"execution_id": execution_id, "field": field_name},
                )
                await self._hub.publish_execution_update(response)
                await self._projector.provider_progress(booking, field_name)
        return response

    async def confirm_client_completion(
        self, execution_id: str, principal_id: str
    ) -> dict[str, Any]:
        """
        Complete the client's flag and the booking.

        Raises:
            ForbiddenError: CLIENT_ONLY,
            PreconditionError: PROVIDER_STEPS_INCOMPLETE
        """
        changed = False

        def mutate(
            execution: dict[str, Any], booking: dict[str, Any]
        ) -> tuple[dict[str, Any], dict[str, Any]]:
            nonlocal changed
            if principal_id != execution["client_id"]:
                raise ForbiddenError("CLIENT_ONLY", "Only the client may confirm completion")
            if execution[CLIENT_COMPLETED] == FLAG_COMPLETED:
                return {}, {}
            pending = [name for name in PROVIDER_FIELDS if execution[name] != FLAG_COMPLETED]
            if pending:
                raise PreconditionError(
                    "PROVIDER_STEPS_INCOMPLETE",
                    "The provider must validate the credential and complete the task first",
                    {"pending": pending},
                )
            if booking["status"] != PAID:
                raise InvalidStateError(
                    "INVALID_STATUS",
                    f"Cannot complete a booking that is {booking['status']}",
                    {"status": booking["status"]},
                )
            now = _now_iso()
            changed = True
            return (
                {CLIENT_COMPLETED: FLAG_COMPLETED, "updated_at": now},
                with_derived_status(booking, {"completed_at": now, "updated_at": now}),
            )

        async with self._booking_locks.hold(self._booking_id_of(execution_id)):
            execution, booking = self._commit(execution_id, mutate)
            response = execution_to_response(execution)
            if changed:
                self._logger.info(
                    "Booking completed",
                    extra={"execution_id": execution_id, "booking_id": booking["booking_id"]},
                )
                await self._hub.publish_execution_update(response)
                await self._hub.publish_booking_update(booking)
                await self._projector.execution_completed(booking)
        return response
