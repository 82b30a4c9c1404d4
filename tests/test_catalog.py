"""Tests for the capability catalog."""

import json

import pytest

from notesgit.capabilities.catalog import CapabilityCatalog
from notesgit.capabilities.registry import build_notes_registry
from notesgit.core.errors import CatalogError


def _write_catalog(tmp_path, capabilities):
    path = tmp_path / "capabilities.json"
    path.write_text(json.dumps({"capabilities": capabilities}), encoding="utf-8")
    return path


class TestPackagedCatalog:
    """Tests against the shipped capabilities.json."""

    def test_declares_all_capabilities(self, catalog):
        """Every note, folder and tag capability is declared."""
        assert catalog.names() == [
            "get-notes", "get-note-names", "get-folders", "get-tags",
            "create-note", "update-note", "delete-note",
            "create-folder", "update-folder", "delete-folder",
        ]

    def test_required_parameters(self, catalog):
        """Required keys match what the argument models need."""
        assert catalog.get("create-note").parameters.required == ("title",)
        assert catalog.get("update-note").parameters.required == ("noteId",)
        assert catalog.get("missing") is None

    def test_completion_format(self, catalog):
        """Descriptors convert to OpenAI function tools."""
        tools = catalog.to_completion_format()
        create_note = next(t for t in tools if t["function"]["name"] == "create-note")

        assert create_note["type"] == "function"
        params = create_note["function"]["parameters"]
        assert params["type"] == "object"
        assert params["properties"]["folderId"]["type"] == "number"
        assert params["required"] == ["title"]

    def test_every_capability_is_implemented(self, catalog, backend):
        """The notes registry covers the whole catalog."""
        catalog.validate_implementations(build_notes_registry(backend).names())


class TestCatalogLoading:
    """Tests for malformed definitions."""

    def test_unknown_type_maps_to_string(self, tmp_path):
        """Parameter types outside the type map fall back to string."""
        path = _write_catalog(tmp_path, [{
            "name": "tag-note",
            "description": "Tag a note",
            "parameters": {"properties": {"when": {"type": "date"}}, "required": []},
        }])

        tool = CapabilityCatalog(path).to_completion_format()[0]

        assert tool["function"]["parameters"]["properties"]["when"]["type"] == "string"

    def test_missing_file(self, tmp_path):
        """A missing definition file is a catalog error."""
        with pytest.raises(CatalogError):
            CapabilityCatalog(tmp_path / "nope.json").load()

    def test_invalid_json(self, tmp_path):
        """Unparseable JSON is a catalog error."""
        path = tmp_path / "capabilities.json"
        path.write_text("{not json", encoding="utf-8")

        with pytest.raises(CatalogError):
            CapabilityCatalog(path).load()

    def test_duplicate_names(self, tmp_path):
        """Capability names must be unique."""
        entry = {"name": "get-notes", "description": "x"}
        path = _write_catalog(tmp_path, [entry, entry])

        with pytest.raises(CatalogError, match="Duplicate"):
            CapabilityCatalog(path).load()

    def test_required_key_must_be_declared(self, tmp_path):
        """Required parameters must appear in properties."""
        path = _write_catalog(tmp_path, [{
            "name": "create-note",
            "description": "x",
            "parameters": {"properties": {}, "required": ["title"]},
        }])

        with pytest.raises(CatalogError, match="undeclared"):
            CapabilityCatalog(path).load()

    def test_unimplemented_capability_fails_fast(self, tmp_path):
        """Declared capabilities without an implementation are rejected."""
        path = _write_catalog(tmp_path, [{"name": "archive-note", "description": "x"}])

        with pytest.raises(CatalogError, match="without implementation"):
            CapabilityCatalog(path).validate_implementations(["get-notes"])

    def test_definition_is_cached(self, tmp_path):
        """The file is read once."""
        path = _write_catalog(tmp_path, [{"name": "get-notes", "description": "x"}])
        catalog = CapabilityCatalog(path)
        catalog.load()
        path.write_text("{broken", encoding="utf-8")

        assert catalog.names() == ["get-notes"]
