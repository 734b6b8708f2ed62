"""Architecture test fixtures."""

from __future__ import annotations

from pathlib import Path

import pytest
from pytestarch import EvaluableArchitecture, LayeredArchitecture, get_evaluable_architecture

# Resolve paths relative to this file:
#   tests/architecture/conftest.py -> tests/ -> project root
_TESTS_DIR = Path(__file__).resolve().parent.parent
_PROJECT_ROOT = _TESTS_DIR.parent
_BOOKING_PKG = _PROJECT_ROOT / "src" / "booking_service"
_REPORTS_DIR = _PROJECT_ROOT / "reports" / "architecture"


@pytest.fixture(scope="session")
def evaluable() -> EvaluableArchitecture:
    """Build the evaluable architecture graph for booking_service.

    Uses the booking_service package as both root and module path
    so module names are clean (e.g. 'booking_service.routers.bookings').
    """
    return get_evaluable_architecture(str(_BOOKING_PKG), str(_BOOKING_PKG))


@pytest.fixture(scope="session")
def layered_arch() -> LayeredArchitecture:
    """Define the service's layered architecture.

    Layers (top to bottom):
        routers   - HTTP and WebSocket handlers (thin wrappers)
        core      - App state, lifespan, middleware, exceptions
        services  - Booking workflow (no FastAPI imports)
        clients   - HTTP clients for collaborator services
    """
    return (
        LayeredArchitecture()
        .layer("routers")
        .containing_modules(["booking_service.routers"])
        .layer("core")
        .containing_modules(["booking_service.core"])
        .layer("services")
        .containing_modules(["booking_service.services"])
        .layer("clients")
        .containing_modules(["booking_service.clients"])
    )


@pytest.fixture(scope="session")
def reports_dir() -> Path:
    """Ensure the architecture reports directory exists and return its path."""
    _REPORTS_DIR.mkdir(parents=True, exist_ok=True)
    return _REPORTS_DIR
