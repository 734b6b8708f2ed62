"""Application lifecycle management."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from booking_service.clients.document_renderer_client import DocumentRendererClient
from booking_service.clients.identity_client import IdentityClient
from booking_service.clients.object_storage_client import ObjectStorageClient
from booking_service.clients.payment_gateway_client import PaymentGatewayClient
from booking_service.config import get_settings
from booking_service.core.state import init_app_state
from booking_service.logging import get_logger, setup_logging
from booking_service.services.agreement_archiver import AgreementArchiver
from booking_service.services.booking_store import BookingStore
from booking_service.services.chat_service import ChatService
from booking_service.services.execution_tracker import ExecutionTracker
from booking_service.services.keyed_locks import KeyedLocks
from booking_service.services.negotiation_engine import NegotiationEngine
from booking_service.services.notification_projector import NotificationProjector
from booking_service.services.payment_coordinator import PaymentCoordinator
from booking_service.services.realtime_hub import RealtimeHub
from booking_service.services.review_service import ReviewService
from booking_service.services.token_validator import TokenValidator

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from fastapi import FastAPI


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    """Manage application lifecycle."""
    # === STARTUP ===
    settings = get_settings()

    setup_logging(settings.logging.level, settings.service.name, settings.logging.directory)
    logger = get_logger(__name__)

    state = init_app_state()

    # Collaborator clients (HTTP)
    identity_client = IdentityClient(
        base_url=settings.identity.base_url,
        verify_jws_path=settings.identity.verify_jws_path,
        timeout_seconds=settings.identity.timeout_seconds,
    )
    payment_gateway_client = PaymentGatewayClient(
        base_url=settings.payment_gateway.base_url,
        checkout_path=settings.payment_gateway.checkout_path,
        timeout_seconds=settings.payment_gateway.timeout_seconds,
    )
    document_renderer_client = DocumentRendererClient(
        base_url=settings.document_renderer.base_url,
        render_path=settings.document_renderer.render_path,
        timeout_seconds=settings.document_renderer.timeout_seconds,
    )
    object_storage_client = ObjectStorageClient(
        base_url=settings.object_storage.base_url,
        timeout_seconds=settings.object_storage.timeout_seconds,
    )

    # Persistence and real-time fabric
    store = BookingStore(db_path=settings.database.path)
    hub = RealtimeHub()
    booking_locks = KeyedLocks()

    # Business services
    token_validator = TokenValidator(identity_client=identity_client)
    projector = NotificationProjector(
        store=store,
        hub=hub,
        max_notifications=settings.limits.max_notifications,
    )
    archiver = AgreementArchiver(
        store=store,
        renderer_client=document_renderer_client,
        storage_client=object_storage_client,
        agreement_prefix=settings.object_storage.agreement_prefix,
    )
    engine = NegotiationEngine(
        store=store,
        hub=hub,
        projector=projector,
        archiver=archiver,
        booking_locks=booking_locks,
        max_notes_length=settings.limits.max_notes_length,
    )
    tracker = ExecutionTracker(
        store=store,
        hub=hub,
        projector=projector,
        booking_locks=booking_locks,
    )
    payment_coordinator = PaymentCoordinator(
        store=store,
        engine=engine,
        tracker=tracker,
        projector=projector,
        gateway_client=payment_gateway_client,
        token_validator=token_validator,
        gateway_agent_id=settings.payment_gateway.agent_id,
        currency=settings.payment_gateway.currency,
    )
    chat_service = ChatService(
        store=store,
        hub=hub,
        token_validator=token_validator,
        projector=projector,
        max_message_length=settings.limits.max_message_length,
    )
    review_service = ReviewService(
        store=store,
        max_comment_length=settings.limits.max_comment_length,
    )

    state.store = store
    state.hub = hub
    state.token_validator = token_validator
    state.notification_projector = projector
    state.agreement_archiver = archiver
    state.negotiation_engine = engine
    state.execution_tracker = tracker
    state.payment_coordinator = payment_coordinator
    state.chat_service = chat_service
    state.review_service = review_service
    state.identity_client = identity_client
    state.payment_gateway_client = payment_gateway_client
    state.document_renderer_client = document_renderer_client
    state.object_storage_client = object_storage_client

    logger.info(
        "Service starting",
        extra={
            "service": settings.service.name,
            "version": settings.service.version,
            "port": settings.server.port,
            "db_path": settings.database.path,
            "identity_base_url": settings.identity.base_url,
            "payment_gateway_base_url": settings.payment_gateway.base_url,
            "document_renderer_base_url": settings.document_renderer.base_url,
            "object_storage_base_url": settings.object_storage.base_url,
        },
    )

    yield  # Application runs here

    # === SHUTDOWN ===
    logger.info("Service shutting down", extra={"uptime_seconds": state.uptime_seconds})

    store.close()

    # Close HTTP clients (closes httpx async clients)
    await identity_client.close()
    await payment_gateway_client.close()
    await document_renderer_client.close()
    await object_storage_client.close()
