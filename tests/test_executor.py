"""Tests for the capability executor."""

import asyncio
import threading
from unittest.mock import MagicMock

import pytest

from notesgit.capabilities.executor import (
    LEDGER_WRITE_FAILED,
    SNAPSHOT_CAPTURE_FAILED,
    AuthContext,
    CapabilityExecutor,
    LedgerContext,
)
from notesgit.capabilities.registry import CapabilityRegistry, CapabilitySpec, build_notes_registry
from notesgit.core.errors import BackendError, CatalogError, InvalidCapabilityArguments, UnknownCapability


class TestExecute:
    """Tests for CapabilityExecutor.execute."""

    @pytest.mark.asyncio
    async def test_read_capability_returns_result_without_recording(self, executor, ledger, auth, store):
        """Reads are executed but never logged."""
        store.add_note("A")
        ledger.create_request("req-1", 7)

        outcome = await executor.execute("get-notes", {}, auth, LedgerContext("req-1", 7))

        assert outcome.result["data"]["notes"][0]["title"] == "A"
        assert outcome.recorded is False
        assert ledger.get_by_id("req-1", 7).actions == []

    @pytest.mark.asyncio
    async def test_create_note_is_recorded_with_inverse(self, executor, ledger, auth, store):
        """A create is logged with a DELETE inverse for the new id."""
        ledger.create_request("req-1", 7)

        outcome = await executor.execute("create-note", {"title": "Pasta"}, auth, LedgerContext("req-1", 7))

        note_id = outcome.result["data"]["note"]["id"]
        assert outcome.recorded is True
        assert outcome.degraded == []
        action = ledger.get_by_id("req-1", 7).actions[0]
        assert action.capability == "create-note"
        assert action.args == {"title": "Pasta"}
        assert action.inverse_operations[0].endpoint == f"/api/notes/{note_id}/"

    @pytest.mark.asyncio
    async def test_update_captures_before_snapshot(self, executor, ledger, auth, store):
        """The pre-update state is read first and used for the inverse."""
        note = store.add_note("A", "body")
        ledger.create_request("req-1", 7)

        await executor.execute("update-note", {"noteId": note["id"], "title": "B"}, auth, LedgerContext("req-1", 7))

        assert store.requests[:2] == [("GET", f"/api/notes/{note['id']}/"), ("PUT", f"/api/notes/{note['id']}/")]
        action = ledger.get_by_id("req-1", 7).actions[0]
        assert action.entity_snapshots[0].before["title"] == "A"
        assert action.inverse_operations[0].payload == {"title": "A", "content": "body", "folderId": None}

    @pytest.mark.asyncio
    async def test_without_ledger_context_nothing_is_recorded(self, executor, auth, store):
        """Calls outside a request are not undoable and skip the snapshot read."""
        note = store.add_note("A")

        outcome = await executor.execute("update-note", {"noteId": note["id"], "title": "B"}, auth)

        assert outcome.recorded is False
        assert store.requests == [("PUT", f"/api/notes/{note['id']}/")]

    @pytest.mark.asyncio
    async def test_delete_is_recorded_as_degraded(self, executor, ledger, auth, store):
        """Deletes are logged but flagged as not reversible."""
        note = store.add_note("A")
        ledger.create_request("req-1", 7)

        outcome = await executor.execute("delete-note", {"noteId": note["id"]}, auth, LedgerContext("req-1", 7))

        assert outcome.recorded is True
        assert outcome.degraded == ["delete-note is not reversible"]
        assert not ledger.get_by_id("req-1", 7).actions[0].is_reversible()

    @pytest.mark.asyncio
    async def test_snapshot_failure_degrades_but_executes(self, executor, ledger, auth, store):
        """A failed pre-state read does not block the update."""
        note = store.add_note("A")
        store.fail("GET", f"/api/notes/{note['id']}/")
        ledger.create_request("req-1", 7)

        outcome = await executor.execute("update-note", {"noteId": note["id"], "title": "B"}, auth, LedgerContext("req-1", 7))

        assert store.notes[note["id"]]["title"] == "B"
        assert outcome.degraded[0].startswith(f"{SNAPSHOT_CAPTURE_FAILED}: ")
        action = ledger.get_by_id("req-1", 7).actions[0]
        assert action.inverse_operations == []

    @pytest.mark.asyncio
    async def test_missing_record_degrades_but_executes(self, executor, auth, store):
        """Logging to a record that does not exist is reported as a degradation."""
        outcome = await executor.execute("create-folder", {"title": "Recipes"}, auth, LedgerContext("ghost", 7))

        assert len(store.folders) == 1
        assert outcome.recorded is False
        assert outcome.degraded == [f"{LEDGER_WRITE_FAILED}: action record not found"]

    @pytest.mark.asyncio
    async def test_ledger_exception_degrades_but_executes(self, backend, auth, store):
        """Ledger errors are swallowed into the outcome."""
        ledger = MagicMock()
        ledger.log_action.side_effect = RuntimeError("database is locked")
        executor = CapabilityExecutor(build_notes_registry(backend), ledger)

        outcome = await executor.execute("create-folder", {"title": "Recipes"}, auth, LedgerContext("req-1", 7))

        assert len(store.folders) == 1
        assert outcome.degraded == [f"{LEDGER_WRITE_FAILED}: database is locked"]

    @pytest.mark.asyncio
    async def test_ledger_write_does_not_block_event_loop(self, backend, auth, store):
        """Other coroutines keep running while the ledger write is in progress."""
        started = threading.Event()
        release = threading.Event()

        def slow_log_action(*args):
            started.set()
            if not release.wait(timeout=2):
                raise RuntimeError("event loop was blocked")
            return True

        ledger = MagicMock()
        ledger.log_action.side_effect = slow_log_action
        executor = CapabilityExecutor(build_notes_registry(backend), ledger)

        async def unblock():
            while not started.is_set():
                await asyncio.sleep(0.001)
            release.set()

        outcome, _ = await asyncio.gather(
            executor.execute("create-folder", {"title": "Recipes"}, auth, LedgerContext("req-1", 7)),
            unblock(),
        )

        assert outcome.recorded is True
        assert outcome.degraded == []

    @pytest.mark.asyncio
    async def test_backend_failure_propagates(self, executor, ledger, auth, store):
        """Capability errors surface and nothing is logged."""
        ledger.create_request("req-1", 7)

        with pytest.raises(BackendError):
            await executor.execute("delete-note", {"noteId": 404}, auth, LedgerContext("req-1", 7))

        assert ledger.get_by_id("req-1", 7).actions == []

    @pytest.mark.asyncio
    async def test_unknown_capability(self, executor, auth):
        """Unregistered names are rejected before any call."""
        with pytest.raises(UnknownCapability):
            await executor.execute("rename-everything", {}, auth)

    @pytest.mark.asyncio
    async def test_invalid_arguments(self, executor, auth, store):
        """Bad arguments are rejected before any call."""
        with pytest.raises(InvalidCapabilityArguments):
            await executor.execute("create-note", {"content": "no title"}, auth)

        assert store.requests == []

    @pytest.mark.asyncio
    async def test_token_is_injected(self, executor, store):
        """The auth context's token reaches the backend."""
        with pytest.raises(BackendError) as exc_info:
            await executor.execute("get-notes", {}, AuthContext(token="wrong"))

        assert exc_info.value.status_code == 401


class TestExecutorSetup:
    """Tests for executor construction."""

    def test_unimplemented_catalog_entry_fails_fast(self, ledger, catalog):
        """Every catalog capability needs an implementation."""
        registry = CapabilityRegistry()
        registry.register(CapabilitySpec("get-notes", MagicMock()))

        with pytest.raises(CatalogError, match="without implementation"):
            CapabilityExecutor(registry, ledger, catalog=catalog)

    def test_is_available(self, executor):
        """Registered capabilities are available."""
        assert executor.is_available("create-note")
        assert not executor.is_available("rename-everything")
