"""Revert engine: undo every side effect of one request.

Inverse operations recorded in the action ledger are replayed most recent
first through a single generic backend call, so no endpoint needs its own
undo code. Failures are collected rather than short-circuited.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from notesgit.actions.action_record import ActionRecord, ActionStatus
from notesgit.backend.notes_client import NotesBackendClient
from notesgit.capabilities.executor import AuthContext
from notesgit.core.errors import (
    RevertAlreadyDone,
    RevertInProgress,
    RevertNotAllowed,
    RevertNotFound,
)
from notesgit.core.rollback_protocol import (
    InverseInvocationResult,
    InverseOperation,
    flatten_inverse_operations,
)
from notesgit.ledger.action_ledger import ActionLedger

logger = logging.getLogger(__name__)

NOT_FOUND_STATUS = "NotFound"


class RevertOutcome(str, Enum):
    SUCCESS = "success"
    PARTIAL_FAILURE = "partial_failure"
    TOTAL_FAILURE = "total_failure"


@dataclass
class RevertResult:
    """Summary of a revert sweep.

    Attributes:
        success: True only if every inverse ran and the record is Reverted.
        message: Human-readable summary.
        operations_reverted: Number of inverse operations that have succeeded,
            counting those applied by earlier sweeps of the same request.
        errors: One message per failed or missing inverse.
        outcome: Classification of the sweep.
        results: Per-operation results, in execution order.
    """
    success: bool
    message: str
    operations_reverted: int = 0
    errors: List[str] = field(default_factory=list)
    outcome: RevertOutcome = RevertOutcome.TOTAL_FAILURE
    results: List[InverseInvocationResult] = field(default_factory=list)


@dataclass
class RequestStatus:
    """Read-only view of a request for polling clients."""
    status: str
    message: str
    action_count: Optional[int] = None
    reverted_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"status": self.status, "message": self.message}
        if self.action_count is not None:
            data["actionCount"] = self.action_count
        if self.reverted_at is not None:
            data["revertedAt"] = self.reverted_at.isoformat()
        return data


class RevertEngine:
    """Replays inverse operations to undo a request.

    Example:
        >>> engine = RevertEngine(ledger, backend)
        >>> result = await engine.revert(request_id, user_id=7, auth=AuthContext(token))
        >>> result.operations_reverted
        2
    """

    def __init__(self, ledger: ActionLedger, backend: NotesBackendClient):
        """Initialize the engine.

        Args:
            ledger: Ledger holding the action records.
            backend: Client the inverse operations are sent through.
        """
        self.ledger = ledger
        self.backend = backend

    async def _execute_inverse(
        self,
        action_index: int,
        operation: InverseOperation,
        token: Optional[str],
    ) -> InverseInvocationResult:
        """Execute a single inverse operation.

        Args:
            action_index: Index of the action the operation undoes.
            operation: The inverse operation.
            token: Bearer token of the acting user.

        Returns:
            Result of the operation; exceptions are captured, not raised.
        """
        if not token:
            return InverseInvocationResult(
                action_index, operation, False, "No authentication token provided"
            )
        try:
            await self.backend.request(operation.method, operation.endpoint, token, operation.payload)
            return InverseInvocationResult(action_index, operation, True)
        except Exception as e:
            return InverseInvocationResult(action_index, operation, False, str(e))


    def _check_revertable(self, record: Optional[ActionRecord], request_id: str) -> ActionRecord:
        if record is None:
            raise RevertNotFound(request_id)
        if record.status is ActionStatus.REVERTED:
            raise RevertAlreadyDone(request_id)
        if record.status is ActionStatus.FAILED:
            raise RevertNotAllowed(request_id)
        if record.running:
            raise RevertInProgress(request_id)
        return record

    async def _load(self, request_id: str, user_id: int) -> Optional[ActionRecord]:
        return await asyncio.to_thread(self.ledger.get_by_id, request_id, user_id)

    async def _claim_record(self, request_id: str, user_id: int) -> ActionRecord:
        """Take the record for one sweep, or raise why it cannot be reverted.

        The claim is a conditional update in the ledger, so of two
        overlapping reverts only one replays inverses. The record is read
        again after the claim to see inverses applied by earlier sweeps.
        """
        self._check_revertable(await self._load(request_id, user_id), request_id)

        if not await asyncio.to_thread(self.ledger.claim_revert, request_id, user_id):
            self._check_revertable(await self._load(request_id, user_id), request_id)
            raise RevertInProgress(request_id)

        record = await self._load(request_id, user_id)
        if record is None:
            raise RevertNotFound(request_id)
        return record

    async def revert(self, request_id: str, user_id: int, auth: AuthContext) -> RevertResult:
        """Revert all actions from a specific request.

        Executes inverse operations in reverse order. Every operation is
        attempted even if earlier ones fail. Operations that succeeded in an
        earlier sweep of the same request are not sent again.

        Args:
            request_id: Request to revert.
            user_id: Owner of the request.
            auth: Credentials for the inverse calls.

        Returns:
            RevertResult describing what could and could not be undone.

        Raises:
            RevertNotFound: No live record for the request.
            RevertAlreadyDone: The request was already reverted.
            RevertNotAllowed: The request's run failed.
            RevertInProgress: The request's run or another revert has not finished.
        """
        logger.info("Starting revert operation", extra={"request_id": request_id, "user_id": user_id})

        try:
            record = await self._claim_record(request_id, user_id)
        except (RevertNotFound, RevertAlreadyDone, RevertNotAllowed, RevertInProgress) as e:
            logger.warning("Revert rejected: %s", e.message, extra={"request_id": request_id, "user_id": user_id})
            raise

        reverted = False
        try:
            result = await self._revert_record(record, auth)
            reverted = result.success
            return result
        finally:
            if not reverted:
                await asyncio.to_thread(self.ledger.release_revert, request_id, user_id)

    async def revert_latest(self, user_id: int, auth: AuthContext) -> RevertResult:
        """Revert the newest Completed request of a user.

        Raises:
            RevertNotFound: The user has no revertable request.
            RevertInProgress: The newest request is still running.
        """
        record = await asyncio.to_thread(self.ledger.get_latest, user_id)
        if record is None:
            raise RevertNotFound("latest")
        return await self.revert(record.request_id, user_id, auth)

    async def _remember_applied(self, record: ActionRecord, positions: List[int]):
        try:
            await asyncio.to_thread(
                self.ledger.record_applied_inverses, record.request_id, record.user_id, positions
            )
        except Exception as e:
            logger.warning(
                "Failed to store applied inverse operations; a retry may send them again",
                extra={"request_id": record.request_id, "error": str(e)},
            )

    async def _revert_record(self, record: ActionRecord, auth: AuthContext) -> RevertResult:
        request_id = record.request_id
        user_id = record.user_id

        errors: List[str] = []
        for index, action in enumerate(record.actions):
            if not action.is_reversible():
                errors.append(f"Action {index}: {action.capability} cannot be reverted")

        operations = flatten_inverse_operations(record.actions)
        already_applied = set(record.applied_inverses)
        logger.debug(
            "Executing inverse operations",
            extra={"request_id": request_id, "user_id": user_id, "operation_count": len(operations),
                   "already_applied": len(already_applied)},
        )

        results: List[InverseInvocationResult] = []
        applied: List[int] = []
        success_count = 0
        for position, (action_index, operation) in enumerate(operations):
            if position in already_applied:
                success_count += 1
                continue
            result = await self._execute_inverse(action_index, operation, auth.token)
            results.append(result)
            if result.reversed_successfully:
                success_count += 1
                applied.append(position)
                logger.debug(
                    "Inverse operation executed successfully",
                    extra={"request_id": request_id, "action_index": action_index,
                           "operation_type": operation.operation_type},
                )
            else:
                errors.append(f"Action {action_index}: {result.error_message or 'Unknown error'}")
                logger.warning(
                    "Inverse operation failed",
                    extra={"request_id": request_id, "action_index": action_index,
                           "error": result.error_message},
                )

        if not errors and success_count > 0:
            await asyncio.to_thread(self.ledger.mark_reverted, request_id, user_id)
            logger.info(
                "Revert operation completed successfully",
                extra={"request_id": request_id, "user_id": user_id, "operations_reverted": success_count},
            )
            return RevertResult(
                success=True,
                message=f"Successfully reverted {success_count} action(s)",
                operations_reverted=success_count,
                outcome=RevertOutcome.SUCCESS,
                results=results,
            )

        if applied:
            await self._remember_applied(record, applied)

        if success_count > 0:
            logger.warning(
                "Revert operation partially completed",
                extra={"request_id": request_id, "user_id": user_id,
                       "success_count": success_count, "failure_count": len(errors)},
            )
            return RevertResult(
                success=False,
                message=f"Partially reverted: {success_count} action(s) succeeded, {len(errors)} failed",
                operations_reverted=success_count,
                errors=errors,
                outcome=RevertOutcome.PARTIAL_FAILURE,
                results=results,
            )

        logger.error(
            "Revert operation failed completely",
            extra={"request_id": request_id, "user_id": user_id, "error_count": len(errors)},
        )
        return RevertResult(
            success=False,
            message="Failed to revert any actions" if operations else "No revertable actions recorded",
            operations_reverted=0,
            errors=errors,
            outcome=RevertOutcome.TOTAL_FAILURE,
            results=results,
        )

    def get_status(self, request_id: str, user_id: int) -> RequestStatus:
        """Get the status of a request for polling clients.

        Args:
            request_id: Request identifier.
            user_id: Owner of the request.

        Returns:
            RequestStatus; ``NotFound`` when missing or expired.
        """
        record = self.ledger.get_by_id(request_id, user_id)
        if record is None:
            return RequestStatus(status=NOT_FOUND_STATUS, message="Request not found")

        return RequestStatus(
            status=record.status.value.capitalize(),
            message=f"Request status: {record.status.value}",
            action_count=record.action_count,
            reverted_at=record.reverted_at,
        )
