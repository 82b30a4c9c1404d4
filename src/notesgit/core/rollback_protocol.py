"""Rollback protocol for capability invocations against the notes backend.

Every modifying capability leaves behind an ExecutedAction describing what
it did (entity snapshots) and how to undo it (inverse operations). Inverses
are plain HTTP descriptions so that replaying them needs no per-endpoint
undo code.
"""

from typing import Dict, Any, Optional, List, Callable, Tuple
from dataclasses import dataclass, field


# Capabilities that mutate notes or folders, mapped to the entity kind
# reported back to the client as "changed".
MODIFYING_CAPABILITIES: Dict[str, str] = {
    'create-note': 'notes',
    'update-note': 'notes',
    'delete-note': 'notes',
    'create-folder': 'folders',
    'update-folder': 'folders',
    'delete-folder': 'folders',
}

# Capabilities whose inverse needs the entity state read before execution
UPDATE_CAPABILITIES = {'update-note', 'update-folder'}

NOTE_RESTORE_FIELDS = ('title', 'content', 'folderId')
FOLDER_RESTORE_FIELDS = ('title',)


def is_modifying_capability(name: str) -> bool:
    """Check if a capability creates, updates or deletes a note or folder."""
    return name in MODIFYING_CAPABILITIES


def changed_entity_kind(name: str) -> Optional[str]:
    """Get the entity kind a capability may have mutated, if any."""
    return MODIFYING_CAPABILITIES.get(name)


@dataclass
class EntitySnapshot:
    """State of one entity around a capability call.

    A missing ``before`` means the entity was created; a missing ``after``
    means it was deleted.
    """
    entity_type: str
    entity_id: int
    before: Optional[Dict[str, Any]] = None
    after: Optional[Dict[str, Any]] = None

    def to_dict(self) -> dict:
        return {
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "before": self.before,
            "after": self.after,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "EntitySnapshot":
        return cls(
            entity_type=data["entity_type"],
            entity_id=data["entity_id"],
            before=data.get("before"),
            after=data.get("after"),
        )


@dataclass
class InverseOperation:
    """HTTP request that returns an entity to its pre-action state."""
    operation_type: str
    endpoint: str
    method: str
    payload: Optional[Dict[str, Any]] = None
    entity_id: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "operation_type": self.operation_type,
            "endpoint": self.endpoint,
            "method": self.method,
            "payload": self.payload,
            "entity_id": self.entity_id,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "InverseOperation":
        return cls(
            operation_type=data["operation_type"],
            endpoint=data["endpoint"],
            method=data["method"],
            payload=data.get("payload"),
            entity_id=data.get("entity_id"),
        )


@dataclass
class ExecutedAction:
    """Record of one modifying capability invocation.

    Attributes:
        capability: Name of the capability that ran
        args: Validated arguments the capability was called with
        result: Raw backend response
        entity_snapshots: Entities touched by the call
        inverse_operations: Requests that undo the call, in apply order
        degraded: Reasons the undo information is incomplete
    """
    capability: str
    args: Dict[str, Any]
    result: Any
    entity_snapshots: List[EntitySnapshot] = field(default_factory=list)
    inverse_operations: List[InverseOperation] = field(default_factory=list)
    degraded: List[str] = field(default_factory=list)

    def is_reversible(self) -> bool:
        return len(self.inverse_operations) > 0

    def to_dict(self) -> dict:
        return {
            "capability": self.capability,
            "args": self.args,
            "result": self.result,
            "entity_snapshots": [s.to_dict() for s in self.entity_snapshots],
            "inverse_operations": [op.to_dict() for op in self.inverse_operations],
            "degraded": list(self.degraded),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ExecutedAction":
        return cls(
            capability=data["capability"],
            args=data.get("args", {}),
            result=data.get("result"),
            entity_snapshots=[
                EntitySnapshot.from_dict(s) for s in data.get("entity_snapshots", [])
            ],
            inverse_operations=[
                InverseOperation.from_dict(op) for op in data.get("inverse_operations", [])
            ],
            degraded=list(data.get("degraded", [])),
        )


@dataclass
class InverseInvocationResult:
    """Result of replaying one inverse operation."""
    action_index: int
    operation: Optional[InverseOperation]
    reversed_successfully: bool
    error_message: Optional[str] = None


@dataclass
class Inversion:
    """Snapshots, inverses and degradations synthesized for one call."""
    entity_snapshots: List[EntitySnapshot] = field(default_factory=list)
    inverse_operations: List[InverseOperation] = field(default_factory=list)
    degraded: List[str] = field(default_factory=list)


InversionRule = Callable[[Dict[str, Any], Any, Optional[Dict[str, Any]]], Inversion]


def _entity_from_result(result: Any, key: str) -> Optional[Dict[str, Any]]:
    """Pull ``data.<key>`` out of a backend response."""
    if not isinstance(result, dict):
        return None
    data = result.get("data")
    if not isinstance(data, dict):
        return None
    entity = data.get(key)
    return entity if isinstance(entity, dict) else None


def _restore_payload(before: Dict[str, Any], fields: Tuple[str, ...]) -> Dict[str, Any]:
    return {name: before[name] for name in fields if name in before}


def _invert_create(entity_type: str, key: str, collection: str) -> InversionRule:
    def rule(args, result, before):
        inversion = Inversion()
        created = _entity_from_result(result, key)
        if not created or created.get("id") is None:
            inversion.degraded.append(
                f"create-{key} returned no {key} id; nothing to delete on revert"
            )
            return inversion
        entity_id = created["id"]
        inversion.entity_snapshots.append(
            EntitySnapshot(entity_type=entity_type, entity_id=entity_id, after=created)
        )
        inversion.inverse_operations.append(
            InverseOperation(
                operation_type="delete",
                endpoint=f"/api/{collection}/{entity_id}/",
                method="DELETE",
                entity_id=entity_id,
            )
        )
        return inversion
    return rule


def _invert_update(entity_type: str, key: str, collection: str, id_arg: str,
                   fields: Tuple[str, ...]) -> InversionRule:
    def rule(args, result, before):
        inversion = Inversion()
        entity_id = args.get(id_arg)
        if entity_id is None:
            return inversion
        if not before:
            inversion.degraded.append(
                f"No before snapshot for {key} {entity_id}; update cannot be reverted"
            )
            return inversion
        inversion.entity_snapshots.append(
            EntitySnapshot(
                entity_type=entity_type,
                entity_id=entity_id,
                before=before,
                after=_entity_from_result(result, key),
            )
        )
        inversion.inverse_operations.append(
            InverseOperation(
                operation_type="update",
                endpoint=f"/api/{collection}/{entity_id}/",
                method="PUT",
                payload=_restore_payload(before, fields),
                entity_id=entity_id,
            )
        )
        return inversion
    return rule


def _invert_delete(entity_type: str, key: str, id_arg: str) -> InversionRule:
    # Deleted entities are not restored; the snapshot records what went away.
    def rule(args, result, before):
        inversion = Inversion()
        entity_id = args.get(id_arg)
        if entity_id is not None:
            inversion.entity_snapshots.append(
                EntitySnapshot(entity_type=entity_type, entity_id=entity_id, before=before)
            )
        inversion.degraded.append(f"delete-{key} is not reversible")
        return inversion
    return rule


INVERSION_RULES: Dict[str, InversionRule] = {
    'create-note': _invert_create('note', 'note', 'notes'),
    'update-note': _invert_update('note', 'note', 'notes', 'noteId', NOTE_RESTORE_FIELDS),
    'delete-note': _invert_delete('note', 'note', 'noteId'),
    'create-folder': _invert_create('folder', 'folder', 'folders'),
    'update-folder': _invert_update('folder', 'folder', 'folders', 'folderId', FOLDER_RESTORE_FIELDS),
    'delete-folder': _invert_delete('folder', 'folder', 'folderId'),
}


def build_inversion(
    capability: str,
    args: Dict[str, Any],
    result: Any,
    before: Optional[Dict[str, Any]] = None
) -> Inversion:
    """Synthesize snapshots and inverse operations for a capability call.

    Args:
        capability: Name of the capability that ran
        args: Arguments it was called with
        result: Raw backend response
        before: Entity state captured before the call, if any

    Returns:
        Inversion for the call; empty for non-modifying capabilities
    """
    rule = INVERSION_RULES.get(capability)
    if rule is None:
        return Inversion()
    return rule(args, result, before)


def flatten_inverse_operations(
    actions: List[ExecutedAction]
) -> List[Tuple[int, InverseOperation]]:
    """Collect every inverse operation in undo order.

    Later actions may build on entities created by earlier ones, so the
    flattened sequence is reversed: last operation of the last action first.

    Args:
        actions: Executed actions in call order

    Returns:
        List of (action index, operation) pairs, most recent first
    """
    flattened = []
    for index, action in enumerate(actions):
        for operation in action.inverse_operations:
            flattened.append((index, operation))
    flattened.reverse()
    return flattened
