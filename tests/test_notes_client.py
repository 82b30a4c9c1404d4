"""Tests for the notes backend client."""

import httpx
import pytest

from notesgit.backend.notes_client import NotesBackendClient
from notesgit.core.errors import BackendError

from conftest import BACKEND_URL, TOKEN


class TestNotesBackendClient:
    """Tests for NotesBackendClient against the in-memory backend."""

    @pytest.mark.asyncio
    async def test_create_note_sends_bearer_token(self, backend, store):
        """Every call carries the caller's token."""
        response = await backend.create_note("Pasta", "boil water", TOKEN)

        assert response["data"]["note"]["title"] == "Pasta"
        assert store.requests == [("POST", "/api/notes/")]

    @pytest.mark.asyncio
    async def test_create_note_omits_missing_folder(self, backend, store):
        """Notes without a folder are created unfiled."""
        response = await backend.create_note("Pasta", "", TOKEN)

        assert response["data"]["note"]["folderId"] is None

    @pytest.mark.asyncio
    async def test_update_and_get_note(self, backend, store):
        """Partial updates only touch the given fields."""
        note = store.add_note("A", "body")

        await backend.update_note(note["id"], {"title": "B"}, TOKEN)
        fetched = await backend.get_note(note["id"], TOKEN)

        assert fetched["data"]["note"] == {"id": note["id"], "title": "B", "content": "body", "folderId": None}

    @pytest.mark.asyncio
    async def test_folder_endpoints(self, backend, store):
        """Folders can be created, renamed, listed and deleted."""
        created = await backend.create_folder("Recipes", TOKEN)
        folder_id = created["data"]["folder"]["id"]

        await backend.update_folder(folder_id, {"title": "Food"}, TOKEN)
        listed = await backend.get_folders(TOKEN)
        assert listed["data"]["folders"] == [{"id": folder_id, "title": "Food"}]

        await backend.delete_folder(folder_id, TOKEN)
        assert store.folders == {}

    @pytest.mark.asyncio
    async def test_read_endpoints(self, backend, store):
        """Note names and tags are fetched from their own routes."""
        store.add_note("A")

        names = await backend.get_note_names(TOKEN)
        tags = await backend.get_tags(TOKEN)

        assert names["data"]["notes"][0]["title"] == "A"
        assert tags["data"]["tags"][0]["name"] == "food"

    @pytest.mark.asyncio
    async def test_error_status_raises_backend_error(self, backend):
        """Non-2xx responses carry status and body."""
        with pytest.raises(BackendError) as exc_info:
            await backend.get_note(999, TOKEN)

        assert exc_info.value.status_code == 404
        assert "not found" in exc_info.value.body
        assert exc_info.value.path == "/api/notes/999/"

    @pytest.mark.asyncio
    async def test_missing_token_is_rejected_by_backend(self, backend):
        """Without a token no Authorization header is sent."""
        with pytest.raises(BackendError) as exc_info:
            await backend.get_notes(None)

        assert exc_info.value.status_code == 401

    @pytest.mark.asyncio
    async def test_transport_error_raises_backend_error(self):
        """Connection failures are wrapped without a status code."""
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = NotesBackendClient(BACKEND_URL, transport=httpx.MockTransport(refuse))

        with pytest.raises(BackendError) as exc_info:
            await client.get_notes(TOKEN)

        assert exc_info.value.status_code is None
        await client.aclose()

    @pytest.mark.asyncio
    async def test_empty_body_decodes_to_empty_dict(self):
        """204-style responses decode to an empty dict."""
        client = NotesBackendClient(
            BACKEND_URL,
            transport=httpx.MockTransport(lambda request: httpx.Response(204)),
        )

        assert await client.request("DELETE", "/api/notes/1/", TOKEN) == {}
        await client.aclose()

    def test_base_url_is_required(self):
        """An empty base URL is a configuration error."""
        with pytest.raises(ValueError):
            NotesBackendClient("")
