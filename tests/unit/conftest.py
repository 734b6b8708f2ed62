"""Unit test fixtures: caches are cleared between tests."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any
from unittest.mock import AsyncMock

import pytest

from booking_service.config import clear_settings_cache
from booking_service.core.state import reset_app_state
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
from tests.helpers import GATEWAY_ID, verifying_identity_mock

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path


@pytest.fixture(autouse=True)
def _clear_caches():
    """Clear settings cache and app state between tests."""
    clear_settings_cache()
    reset_app_state()
    yield
    clear_settings_cache()
    reset_app_state()


@pytest.fixture
def store(tmp_path: Path) -> Iterator[BookingStore]:
    """A fresh SQLite-backed store."""
    booking_store = BookingStore(db_path=str(tmp_path / "booking.db"))
    yield booking_store
    booking_store.close()


@pytest.fixture
def services(store: BookingStore) -> dict[str, Any]:
    """All business services wired together over one store, with mocked collaborators."""
    hub = RealtimeHub()
    booking_locks = KeyedLocks()
    identity = verifying_identity_mock()

    renderer = AsyncMock()
    renderer.render_agreement = AsyncMock(return_value=b"%PDF-1.4 agreement")
    storage = AsyncMock()
    storage.put_object = AsyncMock(
        side_effect=lambda path, content, content_type: f"https://files.test/{path}"
    )
    gateway = AsyncMock()
    gateway.create_checkout = AsyncMock(
        return_value={"checkout_url": "https://pay.test/session/1", "reference": "ref-1"}
    )

    token_validator = TokenValidator(identity_client=identity)
    projector = NotificationProjector(store=store, hub=hub, max_notifications=100)
    archiver = AgreementArchiver(
        store=store,
        renderer_client=renderer,
        storage_client=storage,
        agreement_prefix="agreements",
    )
    engine = NegotiationEngine(
        store=store,
        hub=hub,
        projector=projector,
        archiver=archiver,
        booking_locks=booking_locks,
        max_notes_length=200,
    )
    tracker = ExecutionTracker(
        store=store, hub=hub, projector=projector, booking_locks=booking_locks
    )
    return {
        "store": store,
        "hub": hub,
        "identity": identity,
        "renderer": renderer,
        "storage": storage,
        "gateway": gateway,
        "token_validator": token_validator,
        "projector": projector,
        "archiver": archiver,
        "engine": engine,
        "tracker": tracker,
        "chat": ChatService(
            store=store,
            hub=hub,
            token_validator=token_validator,
            projector=projector,
            max_message_length=50,
        ),
        "payments": PaymentCoordinator(
            store=store,
            engine=engine,
            tracker=tracker,
            projector=projector,
            gateway_client=gateway,
            token_validator=token_validator,
            gateway_agent_id=GATEWAY_ID,
            currency="usd",
        ),
        "reviews": ReviewService(store=store, max_comment_length=100),
    }
