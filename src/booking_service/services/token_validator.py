"""Bearer token and signed-callback validation through the Identity service."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, cast

from service_commons.exceptions import ServiceError, UnauthorizedError, ValidationError

if TYPE_CHECKING:
    from booking_service.clients.identity_client import IdentityClient


class TokenValidator:
    """Resolves JWS tokens to the verified signer id."""

    def __init__(self, identity_client: IdentityClient) -> None:
        self._identity_client = identity_client

    async def _verify(self, token: str | None) -> tuple[str, dict[str, Any]]:
        """
        Verify a compact JWS and return (signer_id, payload).

        Error precedence:
        - UNAUTHORIZED: no token at all
        - INVALID_JWS: token is not three dot-separated parts, or no signer
        - IDENTITY_SERVICE_UNAVAILABLE: Identity service unreachable
        - FORBIDDEN: signature rejected
        """
        if token is None or token == "":
            raise UnauthorizedError("UNAUTHORIZED", "Authentication token is required")

        if len(token.split(".")) != 3:
            raise ValidationError(
                "INVALID_JWS",
                "Token must be in JWS compact serialization format (header.payload.signature)",
            )

        try:
            result = await self._identity_client.verify_jws(token)
        except ServiceError:
            raise
        except Exception as exc:
            raise ServiceError(
                "IDENTITY_SERVICE_UNAVAILABLE",
                "Cannot connect to Identity service",
                502,
                {},
            ) from exc

        agent_id = result.get("agent_id") if isinstance(result, dict) else None
        if not isinstance(agent_id, str) or len(agent_id) < 1:
            raise ValidationError("INVALID_JWS", "Token signer is missing")

        payload = result.get("payload")
        if not isinstance(payload, dict):
            payload = {}
        return agent_id, cast("dict[str, Any]", payload)

    async def authenticate(self, token: str | None) -> str:
        """Return the user id behind a bearer token."""
        user_id, _payload = await self._verify(token)
        return user_id

    async def validate_signed_action(
        self,
        token: str | None,
        expected_action: str | tuple[str, ...],
    ) -> dict[str, Any]:
        """
        Verify a signed action token (gateway callbacks).

        Returns the payload with "_signer_id" added.

        Raises:
            ServiceError: as _verify, plus INVALID_PAYLOAD for a missing or unexpected action
        """
        signer_id, payload = await self._verify(token)

        if "action" not in payload:
            raise ValidationError("INVALID_PAYLOAD", "JWS payload must include an 'action' field")

        allowed_actions = (
            {expected_action} if isinstance(expected_action, str) else set(expected_action)
        )
        action = payload["action"]
        if not isinstance(action, str) or action not in allowed_actions:
            expected_actions_text = ", ".join(sorted(allowed_actions))
            raise ValidationError(
                "INVALID_PAYLOAD",
                f"Expected action in [{expected_actions_text}], got '{action}'",
            )

        payload["_signer_id"] = signer_id
        return payload
