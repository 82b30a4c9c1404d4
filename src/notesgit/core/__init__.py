"""Core components and protocols for the undo engine."""

from .rollback_protocol import (
    EntitySnapshot,
    InverseOperation,
    ExecutedAction,
    InverseInvocationResult,
    Inversion,
    MODIFYING_CAPABILITIES,
    build_inversion,
    flatten_inverse_operations,
    is_modifying_capability,
    changed_entity_kind,
)

__all__ = [
    'EntitySnapshot',
    'InverseOperation',
    'ExecutedAction',
    'InverseInvocationResult',
    'Inversion',
    'MODIFYING_CAPABILITIES',
    'build_inversion',
    'flatten_inverse_operations',
    'is_modifying_capability',
    'changed_entity_kind',
]
