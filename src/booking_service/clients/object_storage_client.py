"""Async HTTP client for object storage."""

from __future__ import annotations

from booking_service.clients.base import CollaboratorClient


class ObjectStorageClient(CollaboratorClient):
    """Stores objects by path and hands back their public URL."""

    service_label = "Object storage"
    unavailable_error = "OBJECT_STORAGE_UNAVAILABLE"

    async def put_object(self, path: str, content: bytes, content_type: str) -> str:
        """Upload content to path and return its public URL."""
        response = await self._request(
            "PUT",
            f"/{path.lstrip('/')}",
            content=content,
            headers={"Content-Type": content_type},
        )
        if response.status_code not in (200, 201):
            raise self._unexpected_status(response, "put")

        body = self._json_object(response, "put")
        url = body.get("url")
        if not isinstance(url, str) or not url:
            raise self._unavailable("Object storage response is missing the object URL")
        return url
