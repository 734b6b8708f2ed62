"""ASGI middleware for request validation and trace ids."""

from __future__ import annotations

import re
import uuid
from typing import TYPE_CHECKING, Any, cast

from fastapi.responses import JSONResponse
from service_commons.logging import reset_trace_id, set_trace_id

if TYPE_CHECKING:
    from starlette.types import ASGIApp, Message, Receive, Scope, Send


TRACE_HEADER = b"x-request-id"
_MAX_TRACE_ID_LENGTH = 128

_JSON_VALIDATION_ENDPOINTS: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("POST", re.compile(r"^/bookings$")),
    ("PUT", re.compile(r"^/bookings/[^/]+/price$")),
    ("PUT", re.compile(r"^/bookings/[^/]+/agree$")),
    ("PUT", re.compile(r"^/bookings/[^/]+/cancel$")),
    ("POST", re.compile(r"^/execution$")),
    ("PUT", re.compile(r"^/execution/[^/]+$")),
    ("POST", re.compile(r"^/payments/[^/]+/checkout$")),
    ("POST", re.compile(r"^/payments/callback$")),
    ("POST", re.compile(r"^/reviews$")),
)


def _error_response(status_code: int, error: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": error, "message": message, "details": {}},
    )


class RequestValidationMiddleware:
    """
    ASGI middleware that validates Content-Type and body size.

    Runs before FastAPI routes. Returns 415 for a non-JSON body on the
    mutating endpoints and 413 for oversized bodies. A request without a
    Content-Type and without a body passes through; the router decides
    whether an empty body is acceptable.
    """

    def __init__(self, app: ASGIApp, max_body_size: int) -> None:
        self.app = app
        self.max_body_size = max_body_size

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        method = cast("str", scope.get("method", "GET"))
        path = cast("str", scope.get("path", ""))
        expects_json = any(
            candidate_method == method and pattern.match(path) is not None
            for candidate_method, pattern in _JSON_VALIDATION_ENDPOINTS
        )

        # Unknown endpoint/method combos should be handled by router as 404/405.
        if not expects_json:
            await self.app(scope, receive, send)
            return

        raw_headers = cast("list[tuple[bytes, bytes]]", scope.get("headers", []))
        headers: dict[bytes, bytes] = dict(raw_headers)
        content_type = headers.get(b"content-type", b"").decode().lower()
        content_length = headers.get(b"content-length", b"").decode()

        if content_type == "" and content_length in ("", "0"):
            await self.app(scope, receive, send)
            return

        if not content_type.startswith("application/json"):
            response = _error_response(
                415, "UNSUPPORTED_MEDIA_TYPE", "Content-Type must be application/json"
            )
            await response(scope, receive, send)
            return

        # Read and buffer body, checking size
        body_parts: list[bytes] = []
        body_size = 0

        while True:
            message = cast("dict[str, Any]", await receive())
            chunk = cast("bytes", message.get("body", b""))
            body_parts.append(chunk)
            body_size += len(chunk)

            if body_size > self.max_body_size:
                response = _error_response(
                    413, "PAYLOAD_TOO_LARGE", "Request body exceeds maximum allowed size"
                )
                await response(scope, receive, send)
                return

            if not message.get("more_body", False):
                break

        # Replay buffered body for downstream app
        full_body = b"".join(body_parts)
        body_sent = False

        async def buffered_receive() -> dict[str, Any]:
            nonlocal body_sent
            if not body_sent:
                body_sent = True
                return {"type": "http.request", "body": full_body, "more_body": False}
            return {"type": "http.disconnect"}

        await self.app(scope, buffered_receive, send)


class TraceIdMiddleware:
    """
    Binds a trace id to every HTTP request and WebSocket session.

    The id comes from the X-Request-ID header or is generated, is visible
    to every log record emitted while handling the request, and is echoed
    back in the X-Request-ID response header.
    """

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] not in ("http", "websocket"):
            await self.app(scope, receive, send)
            return

        raw_headers = cast("list[tuple[bytes, bytes]]", scope.get("headers", []))
        incoming = dict(raw_headers).get(TRACE_HEADER, b"").decode("latin-1").strip()
        trace_id = incoming[:_MAX_TRACE_ID_LENGTH] if incoming else uuid.uuid4().hex

        async def send_with_trace(message: Message) -> None:
            if message["type"] == "http.response.start":
                response_headers = list(message.get("headers", []))
                response_headers.append((TRACE_HEADER, trace_id.encode("latin-1")))
                message["headers"] = response_headers
            await send(message)

        token = set_trace_id(trace_id)
        try:
            await self.app(scope, receive, send_with_trace)
        finally:
            reset_trace_id(token)
