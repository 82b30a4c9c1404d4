"""Capability executor: runs one capability and records how to undo it."""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from notesgit.capabilities.arguments import parse_arguments
from notesgit.capabilities.catalog import CapabilityCatalog
from notesgit.capabilities.registry import CapabilityRegistry
from notesgit.core.errors import UnknownCapability
from notesgit.core.rollback_protocol import ExecutedAction, build_inversion
from notesgit.ledger.action_ledger import ActionLedger

logger = logging.getLogger(__name__)

SNAPSHOT_CAPTURE_FAILED = "SnapshotCaptureFailed"
LEDGER_WRITE_FAILED = "LedgerWriteFailed"


@dataclass(frozen=True)
class AuthContext:
    """Credentials of the acting user, injected into every backend call."""
    token: Optional[str] = None


@dataclass(frozen=True)
class LedgerContext:
    """Identifies the action record a capability call is logged to."""
    request_id: str
    user_id: int


@dataclass
class ExecutionOutcome:
    """Result of one capability call.

    Attributes:
        capability: Name of the capability that ran.
        result: Raw backend response.
        recorded: Whether an ExecutedAction was written to the ledger.
        degraded: Best-effort failures that did not stop the call, each
            prefixed with its kind (e.g. ``LedgerWriteFailed: ...``).
    """
    capability: str
    result: Any
    recorded: bool = False
    degraded: List[str] = field(default_factory=list)


class CapabilityExecutor:
    """Invokes capabilities by name against the backend.

    For modifying capabilities called with a ledger context, the executor
    captures the pre-state of updated entities, synthesizes inverse
    operations and appends an ExecutedAction to the ledger. Bookkeeping
    failures never fail the capability call; they are reported on the
    returned outcome instead.
    """

    def __init__(
        self,
        registry: CapabilityRegistry,
        ledger: ActionLedger,
        catalog: Optional[CapabilityCatalog] = None,
    ):
        """Initialize the executor.

        Args:
            registry: Capability implementations.
            ledger: Action ledger modifying calls are logged to.
            catalog: Optional catalog; when given, every declared capability
                must have an implementation.

        Raises:
            CatalogError: If the catalog declares an unimplemented capability.
        """
        self.registry = registry
        self.ledger = ledger
        if catalog is not None:
            catalog.validate_implementations(registry.names())

    def is_available(self, name: str) -> bool:
        return self.registry.get(name) is not None

    async def execute(
        self,
        name: str,
        args: Optional[Mapping[str, Any]],
        auth: AuthContext,
        ledger_context: Optional[LedgerContext] = None,
    ) -> ExecutionOutcome:
        """Execute a capability.

        Args:
            name: Capability name.
            args: Raw arguments from the completion service.
            auth: Credentials injected into the backend call.
            ledger_context: Record to log modifying calls to. Without it the
                call is not undoable.

        Returns:
            ExecutionOutcome with the raw result and any degradations.

        Raises:
            UnknownCapability: If the capability is not registered.
            InvalidCapabilityArguments: If the arguments do not validate.
            BackendError: If the backend call itself fails.
        """
        spec = self.registry.get(name)
        if spec is None:
            logger.warning("Unknown capability requested: %s", name)
            raise UnknownCapability(name)

        arguments = parse_arguments(name, args)
        wire_args = arguments.to_wire()
        outcome = ExecutionOutcome(capability=name, result=None)
        track = spec.modifying and ledger_context is not None

        before: Optional[Dict[str, Any]] = None
        if track and spec.is_update and spec.capture_before is not None:
            try:
                before = await spec.capture_before(arguments, auth.token)
            except Exception as e:
                logger.warning(
                    "Failed to capture before snapshot for %s", name,
                    extra={"capability": name, "error": str(e)},
                )
                outcome.degraded.append(f"{SNAPSHOT_CAPTURE_FAILED}: {e}")

        logger.debug("Executing capability: %s", name, extra={"capability": name})
        try:
            outcome.result = await spec.forward(arguments, auth.token)
        except Exception:
            logger.error("Capability execution failed: %s", name, exc_info=True)
            raise

        if track:
            await self._record(name, wire_args, outcome, before, ledger_context)

        logger.debug("Capability executed successfully: %s", name, extra={"capability": name})
        return outcome

    async def _record(
        self,
        name: str,
        wire_args: Dict[str, Any],
        outcome: ExecutionOutcome,
        before: Optional[Dict[str, Any]],
        ledger_context: LedgerContext,
    ):
        """Synthesize the inverse of a call and append it to the ledger."""
        try:
            inversion = build_inversion(name, wire_args, outcome.result, before)
            outcome.degraded.extend(inversion.degraded)
            action = ExecutedAction(
                capability=name,
                args=wire_args,
                result=outcome.result,
                entity_snapshots=inversion.entity_snapshots,
                inverse_operations=inversion.inverse_operations,
                degraded=list(outcome.degraded),
            )
            outcome.recorded = await asyncio.to_thread(
                self.ledger.log_action, ledger_context.request_id, ledger_context.user_id, action
            )
            if not outcome.recorded:
                outcome.degraded.append(f"{LEDGER_WRITE_FAILED}: action record not found")
        except Exception as e:
            logger.warning(
                "Failed to log action to history",
                extra={"capability": name, "request_id": ledger_context.request_id, "error": str(e)},
            )
            outcome.degraded.append(f"{LEDGER_WRITE_FAILED}: {e}")
