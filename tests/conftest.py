"""Shared fixtures: in-memory notes backend, scripted chat model, temp ledger."""

import json
import re
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

import httpx
import pytest
from langchain_core.messages import AIMessage

from notesgit.backend.notes_client import NotesBackendClient
from notesgit.capabilities.catalog import CapabilityCatalog
from notesgit.capabilities.executor import AuthContext, CapabilityExecutor
from notesgit.capabilities.registry import build_notes_registry
from notesgit.database.db_config import dispose_engines
from notesgit.database.repositories.action_record_repository import ActionRecordRepository
from notesgit.ledger.action_ledger import ActionLedger

TOKEN = "test-token"
BACKEND_URL = "http://notes.test"

_ENTITY_PATH = re.compile(r"^/api/(notes|folders)/(\d+)/$")


class InMemoryNotesBackend:
    """Minimal notes/folders REST backend served through httpx.MockTransport.

    Folders that still contain notes cannot be deleted, so tests can
    observe the order in which inverse operations are replayed.
    """

    def __init__(self):
        self.notes: Dict[int, Dict[str, Any]] = {}
        self.folders: Dict[int, Dict[str, Any]] = {}
        self.tags: List[Dict[str, Any]] = [{"id": 1, "name": "food"}]
        self.requests: List[tuple] = []
        self.failures: Dict[tuple, int] = {}
        self._next_id = 1

    def _new_id(self) -> int:
        entity_id = self._next_id
        self._next_id += 1
        return entity_id

    def add_note(self, title: str, content: str = "", folder_id: Optional[int] = None) -> Dict[str, Any]:
        note = {"id": self._new_id(), "title": title, "content": content, "folderId": folder_id}
        self.notes[note["id"]] = note
        return note

    def add_folder(self, title: str) -> Dict[str, Any]:
        folder = {"id": self._new_id(), "title": title}
        self.folders[folder["id"]] = folder
        return folder

    def fail(self, method: str, path: str, status_code: int = 500):
        self.failures[(method, path)] = status_code

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def handle(self, request: httpx.Request) -> httpx.Response:
        method = request.method
        path = request.url.path
        self.requests.append((method, path))

        if request.headers.get("Authorization") != f"Bearer {TOKEN}":
            return httpx.Response(401, json={"success": False, "message": "Unauthorized"})
        if (method, path) in self.failures:
            return httpx.Response(self.failures[(method, path)], json={"success": False, "message": "boom"})

        body = json.loads(request.content) if request.content else {}

        if path == "/api/notes/names" and method == "GET":
            names = [{"id": n["id"], "title": n["title"]} for n in self.notes.values()]
            return httpx.Response(200, json={"success": True, "data": {"notes": names}})
        if path == "/api/notes/":
            if method == "GET":
                return httpx.Response(200, json={"success": True, "data": {"notes": list(self.notes.values())}})
            if method == "POST":
                note = self.add_note(body["title"], body.get("content", ""), body.get("folderId"))
                return httpx.Response(201, json={"success": True, "data": {"note": note}})
        if path == "/api/folders/":
            if method == "GET":
                return httpx.Response(200, json={"success": True, "data": {"folders": list(self.folders.values())}})
            if method == "POST":
                folder = self.add_folder(body["title"])
                return httpx.Response(201, json={"success": True, "data": {"folder": folder}})
        if path == "/api/tags/" and method == "GET":
            return httpx.Response(200, json={"success": True, "data": {"tags": self.tags}})

        match = _ENTITY_PATH.match(path)
        if match:
            collection, entity_id = match.group(1), int(match.group(2))
            store = self.notes if collection == "notes" else self.folders
            key = "note" if collection == "notes" else "folder"
            entity = store.get(entity_id)
            if entity is None:
                return httpx.Response(404, json={"success": False, "message": f"{key} not found"})
            if method == "GET":
                return httpx.Response(200, json={"success": True, "data": {key: entity}})
            if method == "PUT":
                entity.update(body)
                return httpx.Response(200, json={"success": True, "data": {key: entity}})
            if method == "DELETE":
                if collection == "folders" and any(n["folderId"] == entity_id for n in self.notes.values()):
                    return httpx.Response(409, json={"success": False, "message": "Folder is not empty"})
                del store[entity_id]
                return httpx.Response(200, json={"success": True, "message": f"{key} deleted"})

        return httpx.Response(404, json={"success": False, "message": "Route not found"})


class ScriptedChatModel:
    """Chat model double replaying a fixed list of responses."""

    def __init__(self, responses: List[AIMessage]):
        self.responses = list(responses)
        self.calls: List[list] = []
        self.bound_tools: Optional[list] = None

    def bind_tools(self, tools, **kwargs):
        self.bound_tools = tools
        return self

    async def ainvoke(self, messages, config=None, **kwargs):
        self.calls.append(list(messages))
        if not self.responses:
            raise AssertionError("ScriptedChatModel ran out of responses")
        return self.responses.pop(0)


def call(name: str, args: Optional[Dict[str, Any]] = None, call_id: Optional[str] = None) -> AIMessage:
    """Model response requesting one capability call."""
    return AIMessage(
        content="",
        tool_calls=[{"name": name, "args": args or {}, "id": call_id or f"call_{name}"}],
    )


def reply(text: str) -> AIMessage:
    """Model response with final text and no capability calls."""
    return AIMessage(content=text)


class FakeClock:
    """Controllable replacement for datetime.now."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2026, 1, 1, 12, 0, 0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float):
        self.now += timedelta(seconds=seconds)


@pytest.fixture(autouse=True)
def _dispose_engines():
    yield
    dispose_engines()


@pytest.fixture
def store():
    """In-memory notes backend state."""
    return InMemoryNotesBackend()


@pytest.fixture
def backend(store):
    """Backend client talking to the in-memory store."""
    return NotesBackendClient(BACKEND_URL, transport=store.transport())


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def repository(tmp_path, clock):
    """Action record repository on a temporary SQLite file."""
    return ActionRecordRepository(
        db_path=str(tmp_path / "ledger.db"),
        ttl_seconds=1800,
        clock=clock,
    )


@pytest.fixture
def ledger(repository):
    return ActionLedger(repository)


@pytest.fixture
def catalog():
    return CapabilityCatalog()


@pytest.fixture
def executor(backend, ledger, catalog):
    return CapabilityExecutor(build_notes_registry(backend), ledger, catalog=catalog)


@pytest.fixture
def auth():
    return AuthContext(token=TOKEN)
