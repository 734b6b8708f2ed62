"""Shared plumbing for collaborator HTTP clients."""

from __future__ import annotations

from typing import Any

import httpx
from service_commons.exceptions import ServiceError

from booking_service.logging import get_logger


class CollaboratorClient:
    """
    Base for async clients of external services.

    Transport failures and unexpected statuses become a 502 ServiceError
    carrying the subclass's unavailable error code.
    """

    service_label = "Collaborator"
    unavailable_error = "COLLABORATOR_UNAVAILABLE"

    def __init__(self, base_url: str, timeout_seconds: int) -> None:
        self._base_url = base_url
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=httpx.Timeout(timeout_seconds),
        )

    def _unavailable(self, message: str) -> ServiceError:
        return ServiceError(
            error=self.unavailable_error,
            message=message,
            status_code=502,
            details={},
        )

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        logger = get_logger(__name__)

        try:
            return await self._client.request(method, path, **kwargs)
        except (httpx.ConnectError, httpx.TimeoutException) as exc:
            logger.warning(
                f"{self.service_label} connection failed",
                extra={"error": str(exc), "base_url": self._base_url, "path": path},
            )
            raise self._unavailable(f"Cannot connect to {self.service_label}") from exc
        except httpx.HTTPError as exc:
            logger.warning(
                f"{self.service_label} HTTP error",
                extra={"error": str(exc), "base_url": self._base_url, "path": path},
            )
            raise self._unavailable(f"{self.service_label} request failed") from exc

    def _unexpected_status(self, response: httpx.Response, operation: str) -> ServiceError:
        get_logger(__name__).warning(
            f"{self.service_label} unexpected status on {operation}",
            extra={"status_code": response.status_code, "base_url": self._base_url},
        )
        return self._unavailable(f"{self.service_label} returned unexpected status")

    def _json_object(self, response: httpx.Response, operation: str) -> dict[str, Any]:
        try:
            body = response.json()
        except ValueError as exc:
            raise self._unavailable(f"{self.service_label} returned invalid JSON") from exc
        if not isinstance(body, dict):
            raise self._unexpected_status(response, operation)
        return body

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()
