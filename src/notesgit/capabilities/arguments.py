"""Validated argument models, one per capability.

Arguments arriving from the completion service are untyped JSON. They are
checked here, at the executor boundary, so that implementations and the
action ledger only ever see well-formed values. Field aliases keep the wire
names (``noteId``, ``folderId``) the catalog advertises.
"""

from typing import Any, ClassVar, Dict, Mapping, Optional, Type

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from notesgit.core.errors import InvalidCapabilityArguments, UnknownCapability


class CapabilityArguments(BaseModel):
    """Base class for capability arguments."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    capability: ClassVar[str] = ""

    def to_wire(self) -> Dict[str, Any]:
        """Dump the explicitly given arguments under their wire names."""
        return self.model_dump(by_alias=True, exclude_unset=True)


class NoArguments(CapabilityArguments):
    pass


class GetNotesArgs(NoArguments):
    capability: ClassVar[str] = "get-notes"


class GetNoteNamesArgs(NoArguments):
    capability: ClassVar[str] = "get-note-names"


class GetFoldersArgs(NoArguments):
    capability: ClassVar[str] = "get-folders"


class GetTagsArgs(NoArguments):
    capability: ClassVar[str] = "get-tags"


class CreateNoteArgs(CapabilityArguments):
    capability: ClassVar[str] = "create-note"

    title: str = Field(min_length=1)
    content: str = ""
    folder_id: Optional[int] = Field(default=None, alias="folderId")


class UpdateNoteArgs(CapabilityArguments):
    capability: ClassVar[str] = "update-note"

    note_id: int = Field(alias="noteId")
    title: Optional[str] = None
    content: Optional[str] = None
    folder_id: Optional[int] = Field(default=None, alias="folderId")

    def updates(self) -> Dict[str, Any]:
        """Fields to send to the backend; unset fields stay untouched."""
        wire = self.to_wire()
        wire.pop("noteId", None)
        return wire


class DeleteNoteArgs(CapabilityArguments):
    capability: ClassVar[str] = "delete-note"

    note_id: int = Field(alias="noteId")


class CreateFolderArgs(CapabilityArguments):
    capability: ClassVar[str] = "create-folder"

    title: str = Field(min_length=1)


class UpdateFolderArgs(CapabilityArguments):
    capability: ClassVar[str] = "update-folder"

    folder_id: int = Field(alias="folderId")
    title: str = Field(min_length=1)


class DeleteFolderArgs(CapabilityArguments):
    capability: ClassVar[str] = "delete-folder"

    folder_id: int = Field(alias="folderId")


ARGUMENT_MODELS: Dict[str, Type[CapabilityArguments]] = {
    model.capability: model
    for model in (
        GetNotesArgs,
        GetNoteNamesArgs,
        GetFoldersArgs,
        GetTagsArgs,
        CreateNoteArgs,
        UpdateNoteArgs,
        DeleteNoteArgs,
        CreateFolderArgs,
        UpdateFolderArgs,
        DeleteFolderArgs,
    )
}


def parse_arguments(name: str, args: Optional[Mapping[str, Any]]) -> CapabilityArguments:
    """Validate raw arguments for a capability.

    Args:
        name: Capability name
        args: Raw arguments from the completion service

    Returns:
        The validated argument model

    Raises:
        UnknownCapability: If no argument model exists for the name
        InvalidCapabilityArguments: If validation fails
    """
    model = ARGUMENT_MODELS.get(name)
    if model is None:
        raise UnknownCapability(name)
    try:
        return model.model_validate(dict(args or {}))
    except ValidationError as e:
        raise InvalidCapabilityArguments(name, e.errors(include_url=False)) from e
