"""Async HTTP client for the Identity service."""

from __future__ import annotations

from typing import Any

from service_commons.exceptions import ForbiddenError

from booking_service.clients.base import CollaboratorClient


class IdentityClient(CollaboratorClient):
    """
    Client for Identity service JWS verification.

    The booking service never holds public keys; every bearer token and
    gateway callback is verified by POSTing it to the Identity service.
    """

    service_label = "Identity service"
    unavailable_error = "IDENTITY_SERVICE_UNAVAILABLE"

    def __init__(self, base_url: str, verify_jws_path: str, timeout_seconds: int) -> None:
        super().__init__(base_url=base_url, timeout_seconds=timeout_seconds)
        self._verify_jws_path = verify_jws_path

    async def verify_jws(self, token: str) -> dict[str, Any]:
        """
        Verify a JWS compact token.

        Returns:
            dict with keys: valid (bool), agent_id (str), payload (dict)

        Raises:
            ServiceError: FORBIDDEN (403) if the signature is rejected
            ServiceError: IDENTITY_SERVICE_UNAVAILABLE (502) on transport or status errors
        """
        response = await self._request("POST", self._verify_jws_path, json={"token": token})
        if response.status_code != 200:
            raise self._unexpected_status(response, "verify-jws")

        result = self._json_object(response, "verify-jws")
        if not result.get("valid", False):
            raise ForbiddenError("FORBIDDEN", "JWS signature verification failed")
        return result
