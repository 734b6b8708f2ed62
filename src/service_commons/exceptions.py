"""
Application error taxonomy and handler registration.

Every failure leaves a service as the envelope
{"error": CODE, "message": text, "details": {...}}.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, ClassVar, cast

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from fastapi import FastAPI, Request
    from fastapi.responses import JSONResponse
    from starlette.types import ExceptionHandler


class ServiceError(Exception):
    """Base application error carrying a stable code and an HTTP status."""

    def __init__(
        self,
        error: str,
        message: str,
        status_code: int,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.error = error
        self.message = message
        self.status_code = status_code
        self.details = details if details is not None else {}


class _CategorizedError(ServiceError):
    default_status_code: ClassVar[int] = 400

    def __init__(
        self,
        error: str,
        message: str,
        details: dict[str, Any] | None = None,
        *,
        status_code: int | None = None,
    ) -> None:
        super().__init__(
            error=error,
            message=message,
            status_code=self.default_status_code if status_code is None else status_code,
            details=details,
        )


class ValidationError(_CategorizedError):
    """Missing or malformed input the caller can correct."""

    default_status_code = 400


class UnauthorizedError(_CategorizedError):
    """No usable credentials were presented."""

    default_status_code = 401


class ForbiddenError(_CategorizedError):
    """The authenticated principal may not perform the operation."""

    default_status_code = 403


class NotFoundError(_CategorizedError):
    """The addressed record does not exist."""

    default_status_code = 404


class InvalidStateError(_CategorizedError):
    """The operation is not legal in the record's current state."""

    default_status_code = 409


class PreconditionError(_CategorizedError):
    """An ordering requirement has not been met yet."""

    default_status_code = 400


class ConflictError(_CategorizedError):
    """The operation would create a duplicate."""

    default_status_code = 409


def register_exception_handlers(
    app: FastAPI,
    service_error_cls: type[ServiceError],
    service_error_handler: Callable[[Request, Any], Awaitable[JSONResponse]],
    unhandled_exception_handler: Callable[[Request, Exception], Awaitable[JSONResponse]],
) -> None:
    """Attach the service error handler and the catch-all 500 handler to an app."""
    app.add_exception_handler(service_error_cls, cast("ExceptionHandler", service_error_handler))
    app.add_exception_handler(Exception, cast("ExceptionHandler", unhandled_exception_handler))
