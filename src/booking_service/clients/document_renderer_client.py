"""Async HTTP client for the agreement document renderer."""

from __future__ import annotations

from typing import Any

from booking_service.clients.base import CollaboratorClient


class DocumentRendererClient(CollaboratorClient):
    """Turns booking fields into a rendered agreement document."""

    service_label = "Document renderer"
    unavailable_error = "DOCUMENT_RENDERER_UNAVAILABLE"

    def __init__(self, base_url: str, render_path: str, timeout_seconds: int) -> None:
        super().__init__(base_url=base_url, timeout_seconds=timeout_seconds)
        self._render_path = render_path

    async def render_agreement(self, fields: dict[str, Any]) -> bytes:
        """Render an agreement and return the document bytes."""
        response = await self._request("POST", self._render_path, json=fields)
        if response.status_code != 200:
            raise self._unexpected_status(response, "render")
        if len(response.content) == 0:
            raise self._unavailable("Document renderer returned an empty document")
        return response.content
