"""End-to-end scenarios: model-driven changes followed by a revert."""

import pytest

from notesgit.agents.orchestrator import OrchestrationLoop
from notesgit.agents.revert_engine import RevertEngine

from conftest import ScriptedChatModel, call, reply


@pytest.fixture
def run_and_revert(catalog, executor, ledger, backend, auth):
    """Run a scripted conversation, then revert its request."""
    async def _run(responses, message="do it"):
        loop = OrchestrationLoop(ScriptedChatModel(responses), catalog, executor, ledger)
        result = await loop.run(message, 7, auth)
        revert = await RevertEngine(ledger, backend).revert(result.request_id, 7, auth)
        return result, revert
    return _run


class TestUndoScenarios:
    """Scenarios combining the orchestration loop and the revert engine."""

    @pytest.mark.asyncio
    async def test_folder_and_note_are_undone_in_reverse_order(self, run_and_revert, store):
        """The note is deleted before its folder, leaving neither behind."""
        result, revert = await run_and_revert([
            call("create-folder", {"title": "Recipes"}, "c1"),
            call("create-note", {"title": "Pasta", "content": "boil", "folderId": 1}, "c2"),
            reply("Created Recipes with a Pasta note."),
        ])

        assert result.changed == ["folders", "notes"]
        assert revert.success is True
        assert revert.operations_reverted == 2
        assert store.notes == {}
        assert store.folders == {}
        deletes = [r for r in store.requests if r[0] == "DELETE"]
        assert deletes == [("DELETE", "/api/notes/2/"), ("DELETE", "/api/folders/1/")]

    @pytest.mark.asyncio
    async def test_chained_updates_restore_original_title(self, run_and_revert, store):
        """A to B to C, reverted, ends at A."""
        note = store.add_note("A", "body")

        _, revert = await run_and_revert([
            call("update-note", {"noteId": note["id"], "title": "B"}, "c1"),
            call("update-note", {"noteId": note["id"], "title": "C"}, "c2"),
            reply("Renamed twice."),
        ])

        assert revert.success is True
        assert store.notes[note["id"]]["title"] == "A"
        assert store.notes[note["id"]]["content"] == "body"

    @pytest.mark.asyncio
    async def test_reads_between_writes_are_not_undone(self, run_and_revert, store):
        """Only modifying calls are replayed on revert."""
        _, revert = await run_and_revert([
            call("get-folders", {}, "c1"),
            call("create-folder", {"title": "Recipes"}, "c2"),
            call("get-note-names", {}, "c3"),
            reply("Done."),
        ])

        assert revert.operations_reverted == 1
        assert store.folders == {}
