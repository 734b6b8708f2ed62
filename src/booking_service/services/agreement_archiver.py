"""Rendering and archiving of signed booking agreements."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from service_commons.exceptions import NotFoundError, ServiceError

from booking_service.logging import get_logger
from booking_service.services.booking_state import AUDIT_AGREEMENT_GENERATED, audit_entry
from booking_service.services.booking_store import RecordNotFoundError
from booking_service.services.notification_projector import format_amount

if TYPE_CHECKING:
    from booking_service.clients.document_renderer_client import DocumentRendererClient
    from booking_service.clients.object_storage_client import ObjectStorageClient
    from booking_service.services.booking_store import BookingStore

AGREEMENT_CONTENT_TYPE = "application/pdf"


def _now_iso() -> str:
    return datetime.now(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")


_AGREEMENT_TERMS: tuple[str, ...] = (
    "The provider agrees to deliver the service described in the notes on the scheduled date.",
    "The client agrees to pay the agreed price before the service starts.",
    "Either party may cancel before payment. Paid bookings cannot be cancelled.",
    "Completion requires confirmation by both the provider and the client.",
)


class AgreementArchiver:
    """
    Renders a dual-signed booking into a document and stores it once.

    The stored URL is written with a set-once update, so concurrent
    archivers converge on the first URL that was committed.
    """

    def __init__(
        self,
        store: BookingStore,
        renderer_client: DocumentRendererClient,
        storage_client: ObjectStorageClient,
        agreement_prefix: str,
    ) -> None:
        self._store = store
        self._renderer_client = renderer_client
        self._storage_client = storage_client
        self._agreement_prefix = agreement_prefix.strip("/")
        self._logger = get_logger(__name__)

    def object_path(self, booking_id: str) -> str:
        """Storage path of a booking's agreement."""
        return f"{self._agreement_prefix}/agreement_booking_{booking_id}.pdf"

    @staticmethod
    def agreement_fields(booking: dict[str, Any]) -> dict[str, Any]:
        """Fields handed to the document renderer."""
        return {
            "title": "Service Agreement",
            "booking_id": booking["booking_id"],
            "client_id": booking["client_id"],
            "provider_id": booking["provider_id"],
            "notes": booking["notes"],
            "scheduled_date": booking["scheduled_date"],
            "price": booking["price"],
            "price_display": format_amount(booking["price"]),
            "agreed_at": booking["confirmed_at"],
            "terms": list(_AGREEMENT_TERMS),
        }

    async def archive(self, booking: dict[str, Any], actor_id: str | None = None) -> str:
        """
        Return the agreement URL, rendering and uploading it on first use.

        The first stored URL is audited against actor_id.

        Raises:
            ServiceError: DOCUMENT_RENDERER_UNAVAILABLE or OBJECT_STORAGE_UNAVAILABLE (502)
        """
        if booking.get("agreement_url"):
            existing: str = booking["agreement_url"]
            return existing

        booking_id = booking["booking_id"]
        try:
            document = await self._renderer_client.render_agreement(
                self.agreement_fields(booking)
            )
        except ServiceError:
            raise
        except Exception as exc:
            raise ServiceError(
                "DOCUMENT_RENDERER_UNAVAILABLE",
                "Agreement rendering failed",
                502,
                {},
            ) from exc

        try:
            url = await self._storage_client.put_object(
                self.object_path(booking_id), document, AGREEMENT_CONTENT_TYPE
            )
        except ServiceError:
            raise
        except Exception as exc:
            raise ServiceError(
                "OBJECT_STORAGE_UNAVAILABLE",
                "Agreement upload failed",
                502,
                {},
            ) from exc

        try:
            stored = self._store.set_agreement_url(
                booking_id,
                url,
                [
                    audit_entry(
                        actor_id, AUDIT_AGREEMENT_GENERATED, booking_id, _now_iso(), url=url
                    )
                ],
            )
        except RecordNotFoundError as exc:
            raise NotFoundError("BOOKING_NOT_FOUND", "Booking not found") from exc

        self._logger.info(
            "Agreement archived",
            extra={"booking_id": booking_id, "agreement_url": stored},
        )
        return stored

    async def try_archive(
        self, booking: dict[str, Any], actor_id: str | None = None
    ) -> str | None:
        """Archive after a commit; failures are logged and retried lazily on download."""
        try:
            return await self.archive(booking, actor_id)
        except ServiceError as exc:
            self._logger.warning(
                "Agreement archiving deferred",
                extra={"booking_id": booking["booking_id"], "error": exc.error},
            )
            return None
