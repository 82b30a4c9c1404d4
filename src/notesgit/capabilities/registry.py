"""Registry binding capability names to their backend implementations."""

from typing import Any, Awaitable, Callable, Dict, List, Optional
from dataclasses import dataclass

from notesgit.backend.notes_client import NotesBackendClient
from notesgit.capabilities.arguments import (
    CapabilityArguments,
    CreateFolderArgs,
    CreateNoteArgs,
    DeleteFolderArgs,
    DeleteNoteArgs,
    UpdateFolderArgs,
    UpdateNoteArgs,
)
from notesgit.core.rollback_protocol import UPDATE_CAPABILITIES, is_modifying_capability


Forward = Callable[[CapabilityArguments, Optional[str]], Awaitable[Any]]
CaptureBefore = Callable[[CapabilityArguments, Optional[str]], Awaitable[Optional[Dict[str, Any]]]]


@dataclass
class CapabilitySpec:
    """Implementation of one capability.

    Attributes:
        name: Capability name, as declared in the catalog
        forward: Coroutine performing the call with validated args and a token
        capture_before: Optional coroutine reading the entity state an update
            is about to overwrite
    """
    name: str
    forward: Forward
    capture_before: Optional[CaptureBefore] = None

    @property
    def modifying(self) -> bool:
        return is_modifying_capability(self.name)

    @property
    def is_update(self) -> bool:
        return self.name in UPDATE_CAPABILITIES


class CapabilityRegistry:
    """Registry of capability implementations."""

    def __init__(self):
        self._capabilities: Dict[str, CapabilitySpec] = {}

    def register(self, spec: CapabilitySpec):
        """Register an implementation, replacing any previous one.

        Args:
            spec: Capability specification
        """
        self._capabilities[spec.name] = spec

    def get(self, name: str) -> Optional[CapabilitySpec]:
        """Get a capability implementation by name.

        Args:
            name: Capability name

        Returns:
            Capability specification or None if not registered
        """
        return self._capabilities.get(name)

    def names(self) -> List[str]:
        return list(self._capabilities.keys())


def _data_entity(response: Dict[str, Any], key: str) -> Optional[Dict[str, Any]]:
    data = response.get("data") if isinstance(response, dict) else None
    if isinstance(data, dict) and isinstance(data.get(key), dict):
        return data[key]
    return None


def build_notes_registry(backend: NotesBackendClient) -> CapabilityRegistry:
    """Create a registry wired to the notes backend.

    Args:
        backend: Client for the notes backend

    Returns:
        Registry holding every capability in the packaged catalog
    """
    registry = CapabilityRegistry()

    async def get_notes(args, token):
        return await backend.get_notes(token)

    async def get_note_names(args, token):
        return await backend.get_note_names(token)

    async def get_folders(args, token):
        return await backend.get_folders(token)

    async def get_tags(args, token):
        return await backend.get_tags(token)

    async def create_note(args: CreateNoteArgs, token):
        return await backend.create_note(args.title, args.content, token, folder_id=args.folder_id)

    async def update_note(args: UpdateNoteArgs, token):
        return await backend.update_note(args.note_id, args.updates(), token)

    async def read_note(args: UpdateNoteArgs, token):
        return _data_entity(await backend.get_note(args.note_id, token), "note")

    async def delete_note(args: DeleteNoteArgs, token):
        return await backend.delete_note(args.note_id, token)

    async def create_folder(args: CreateFolderArgs, token):
        return await backend.create_folder(args.title, token)

    async def update_folder(args: UpdateFolderArgs, token):
        return await backend.update_folder(args.folder_id, {"title": args.title}, token)

    async def read_folder(args: UpdateFolderArgs, token):
        return _data_entity(await backend.get_folder(args.folder_id, token), "folder")

    async def delete_folder(args: DeleteFolderArgs, token):
        return await backend.delete_folder(args.folder_id, token)

    for spec in (
        CapabilitySpec("get-notes", get_notes),
        CapabilitySpec("get-note-names", get_note_names),
        CapabilitySpec("get-folders", get_folders),
        CapabilitySpec("get-tags", get_tags),
        CapabilitySpec("create-note", create_note),
        CapabilitySpec("update-note", update_note, capture_before=read_note),
        CapabilitySpec("delete-note", delete_note),
        CapabilitySpec("create-folder", create_folder),
        CapabilitySpec("update-folder", update_folder, capture_before=read_folder),
        CapabilitySpec("delete-folder", delete_folder),
    ):
        registry.register(spec)

    return registry
