"""Application state management."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from booking_service.clients.document_renderer_client import DocumentRendererClient
    from booking_service.clients.identity_client import IdentityClient
    from booking_service.clients.object_storage_client import ObjectStorageClient
    from booking_service.clients.payment_gateway_client import PaymentGatewayClient
    from booking_service.services.agreement_archiver import AgreementArchiver
    from booking_service.services.booking_store import BookingStore
    from booking_service.services.chat_service import ChatService
    from booking_service.services.execution_tracker import ExecutionTracker
    from booking_service.services.negotiation_engine import NegotiationEngine
    from booking_service.services.notification_projector import NotificationProjector
    from booking_service.services.payment_coordinator import PaymentCoordinator
    from booking_service.services.realtime_hub import RealtimeHub
    from booking_service.services.review_service import ReviewService
    from booking_service.services.token_validator import TokenValidator

# Client field -> (service field, private attribute) that holds a reference to it
_CLIENT_REFERENCES: dict[str, tuple[str, str]] = {
    "identity_client": ("token_validator", "_identity_client"),
    "payment_gateway_client": ("payment_coordinator", "_gateway_client"),
    "document_renderer_client": ("agreement_archiver", "_renderer_client"),
    "object_storage_client": ("agreement_archiver", "_storage_client"),
}


@dataclass
class AppState:
    """Runtime application state."""

    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    store: BookingStore | None = None
    hub: RealtimeHub | None = None
    negotiation_engine: NegotiationEngine | None = None
    execution_tracker: ExecutionTracker | None = None
    chat_service: ChatService | None = None
    notification_projector: NotificationProjector | None = None
    agreement_archiver: AgreementArchiver | None = None
    payment_coordinator: PaymentCoordinator | None = None
    review_service: ReviewService | None = None
    token_validator: TokenValidator | None = None
    identity_client: IdentityClient | None = None
    payment_gateway_client: PaymentGatewayClient | None = None
    document_renderer_client: DocumentRendererClient | None = None
    object_storage_client: ObjectStorageClient | None = None

    def __setattr__(self, name: str, value: Any) -> None:
        """Keep service references to collaborator clients in sync with AppState fields."""
        super().__setattr__(name, value)
        if value is None:
            return

        reference = _CLIENT_REFERENCES.get(name)
        if reference is not None:
            service = self.__dict__.get(reference[0])
            if service is not None:
                setattr(service, reference[1], value)
            return

        for client_name, (service_name, attribute) in _CLIENT_REFERENCES.items():
            client = self.__dict__.get(client_name)
            if service_name == name and client is not None:
                setattr(value, attribute, client)

    @property
    def uptime_seconds(self) -> float:
        """Calculate uptime in seconds."""
        return (datetime.now(UTC) - self.start_time).total_seconds()

    @property
    def started_at(self) -> str:
        """ISO format start time."""
        return self.start_time.isoformat(timespec="seconds").replace("+00:00", "Z")


# Global application state container
_state_container: dict[str, AppState | None] = {"app_state": None}


def get_app_state() -> AppState:
    """Get the current application state."""
    app_state = _state_container["app_state"]
    if app_state is None:
        msg = "Application state not initialized"
        raise RuntimeError(msg)
    return app_state


def init_app_state() -> AppState:
    """Initialize application state. Called during startup."""
    app_state = AppState()
    _state_container["app_state"] = app_state
    return app_state


def reset_app_state() -> None:
    """Reset application state. Used in testing."""
    _state_container["app_state"] = None
