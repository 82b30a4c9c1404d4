"""Async HTTP client for the notes/folders backend.

Every call carries the caller's bearer token. Non-2xx responses and
transport failures surface as BackendError.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from notesgit.core.errors import BackendError

logger = logging.getLogger(__name__)


class NotesBackendClient:
    """Thin wrapper over the backend's REST endpoints.

    Attributes:
        base_url: Backend base URL, e.g. ``http://localhost:5000``.

    Example:
        >>> client = NotesBackendClient("http://localhost:5000")
        >>> note = await client.create_note("Pasta", "", token, folder_id=3)
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the client.

        Args:
            base_url: Backend base URL.
            timeout: Per-request timeout in seconds.
            transport: Optional httpx transport (used to stub the backend).
        """
        if not base_url:
            raise ValueError("Backend base URL is not configured")
        self.base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            transport=transport,
        )

    async def aclose(self):
        await self._client.aclose()

    async def __aenter__(self) -> "NotesBackendClient":
        return self

    async def __aexit__(self, *exc_info):
        await self.aclose()

    async def request(
        self,
        method: str,
        path: str,
        token: Optional[str],
        body: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Send one request and decode the JSON response.

        Args:
            method: HTTP method.
            path: Endpoint path starting with ``/api/``.
            token: Bearer token of the acting user.
            body: Optional JSON body.

        Returns:
            Decoded JSON response (empty dict for an empty body).

        Raises:
            BackendError: On transport failure or non-2xx status.
        """
        headers = {"Content-Type": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"

        try:
            res = await self._client.request(method, path, headers=headers, json=body)
        except httpx.HTTPError as e:
            raise BackendError(f"{method} {path} failed: {e}", path=path) from e

        if res.is_error:
            raise BackendError.from_status(res.status_code, res.text, path=path)

        logger.debug("Backend call succeeded", extra={"method": method, "path": path})
        if not res.content:
            return {}
        return res.json()

    # Notes
    async def get_notes(self, token: Optional[str]) -> Dict[str, Any]:
        return await self.request("GET", "/api/notes/", token)

    async def get_note_names(self, token: Optional[str]) -> Dict[str, Any]:
        return await self.request("GET", "/api/notes/names", token)

    async def get_note(self, note_id: int, token: Optional[str]) -> Dict[str, Any]:
        return await self.request("GET", f"/api/notes/{note_id}/", token)

    async def create_note(
        self,
        title: str,
        content: str,
        token: Optional[str],
        folder_id: Optional[int] = None,
    ) -> Dict[str, Any]:
        body: Dict[str, Any] = {"title": title, "content": content}
        # Omitting folderId leaves the note unfiled
        if folder_id is not None:
            body["folderId"] = folder_id
        return await self.request("POST", "/api/notes/", token, body)

    async def update_note(
        self,
        note_id: int,
        updates: Dict[str, Any],
        token: Optional[str],
    ) -> Dict[str, Any]:
        return await self.request("PUT", f"/api/notes/{note_id}/", token, updates)

    async def delete_note(self, note_id: int, token: Optional[str]) -> Dict[str, Any]:
        return await self.request("DELETE", f"/api/notes/{note_id}/", token)

    # Folders
    async def get_folders(self, token: Optional[str]) -> Dict[str, Any]:
        return await self.request("GET", "/api/folders/", token)

    async def get_folder(self, folder_id: int, token: Optional[str]) -> Dict[str, Any]:
        return await self.request("GET", f"/api/folders/{folder_id}/", token)

    async def create_folder(self, title: str, token: Optional[str]) -> Dict[str, Any]:
        return await self.request("POST", "/api/folders/", token, {"title": title})

    async def update_folder(
        self,
        folder_id: int,
        updates: Dict[str, Any],
        token: Optional[str],
    ) -> Dict[str, Any]:
        return await self.request("PUT", f"/api/folders/{folder_id}/", token, updates)

    async def delete_folder(self, folder_id: int, token: Optional[str]) -> Dict[str, Any]:
        return await self.request("DELETE", f"/api/folders/{folder_id}/", token)

    # Tags
    async def get_tags(self, token: Optional[str]) -> Dict[str, Any]:
        return await self.request("GET", "/api/tags/", token)
