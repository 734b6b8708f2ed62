"""Shared request validation helpers for booking routers."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

from service_commons.exceptions import UnauthorizedError, ValidationError

from booking_service.core.state import get_app_state

if TYPE_CHECKING:
    from fastapi import Request


def parse_json_body(raw_body: bytes) -> dict[str, Any]:
    """Parse JSON body, raising ValidationError on failure."""
    try:
        data = json.loads(raw_body)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise ValidationError("INVALID_JSON", "Request body is not valid JSON") from exc

    if not isinstance(data, dict):
        raise ValidationError("INVALID_JSON", "Request body must be a JSON object")

    return data


async def read_json_body(request: Request) -> dict[str, Any]:
    """Parse the request body; an empty body reads as {}."""
    body = await request.body()
    return {} if body == b"" else parse_json_body(body)


def extract_bearer_token(authorization: str | None) -> str:
    """Extract the JWS token from an Authorization header."""
    if authorization is None:
        raise UnauthorizedError("UNAUTHORIZED", "Missing Authorization header")

    if not authorization.startswith("Bearer "):
        raise ValidationError("INVALID_JWS", "Authorization header must use Bearer scheme")

    token = authorization[len("Bearer ") :].strip()
    if not token:
        raise ValidationError("INVALID_JWS", "Bearer token must not be empty")

    return token


async def authenticate(request: Request) -> str:
    """Resolve the calling principal's user id from the bearer token."""
    token = extract_bearer_token(request.headers.get("authorization"))
    state = get_app_state()
    if state.token_validator is None:
        msg = "TokenValidator not initialized"
        raise RuntimeError(msg)
    return await state.token_validator.authenticate(token)


def parse_non_negative_int(raw: str | None, name: str, *, minimum: int) -> int | None:
    """Parse an optional integer query parameter with a lower bound."""
    if raw is None:
        return None
    try:
        value = int(raw)
    except ValueError as exc:
        raise ValidationError("INVALID_PAYLOAD", f"{name} must be an integer") from exc
    if value < minimum:
        raise ValidationError("INVALID_PAYLOAD", f"{name} must be >= {minimum}")
    return value
