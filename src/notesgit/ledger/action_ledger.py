"""Action ledger: durable per-request history of modifying actions."""

import asyncio
import logging
from typing import List, Optional

from notesgit.actions.action_record import ActionRecord, ActionStatus
from notesgit.core.rollback_protocol import ExecutedAction
from notesgit.database.repositories.action_record_repository import ActionRecordRepository

logger = logging.getLogger(__name__)


class ActionLedger:
    """Service over the action record repository.

    Owns the record lifecycle: a record is created empty and running when a
    request starts, grows by one ExecutedAction per modifying capability
    call, and is later moved to a terminal status at most once. Records
    expire a fixed time after creation regardless of status.

    Methods are blocking database calls. Coroutines call them through
    ``asyncio.to_thread`` so the event loop keeps serving other runs.

    Example:
        >>> ledger = ActionLedger(ActionRecordRepository(db_path="ledger.db"))
        >>> ledger.create_request("req-1", user_id=7)
        >>> ledger.log_action("req-1", 7, action)
        True
    """

    def __init__(self, repository: Optional[ActionRecordRepository] = None):
        """Initialize the ledger.

        Args:
            repository: Record repository. If None, creates default.
        """
        self.repository = repository or ActionRecordRepository()
        self._sweeper: Optional[asyncio.Task] = None

    def create_request(self, request_id: str, user_id: int) -> ActionRecord:
        """Create an empty, running record for a new request.

        Args:
            request_id: Unique request identifier.
            user_id: User issuing the request.

        Returns:
            The created ActionRecord.
        """
        self.purge_expired()
        record = self.repository.create(
            ActionRecord(
                request_id=request_id,
                user_id=user_id,
                status=ActionStatus.COMPLETED,
                running=True,
            )
        )
        logger.debug("Created action record", extra={"request_id": request_id, "user_id": user_id})
        return record

    def log_action(self, request_id: str, user_id: int, action: ExecutedAction) -> bool:
        """Append an executed action to a request's record.

        A missing record is not an error: it is logged and reported as
        False so callers can flag the action as unrecorded.

        Args:
            request_id: Request identifier.
            user_id: Owner of the record.
            action: The executed action.

        Returns:
            True if the action was stored, False if the record is missing.
        """
        count = self.repository.append_action(request_id, user_id, action)
        if count is None:
            logger.warning(
                "Action record not found",
                extra={"request_id": request_id, "user_id": user_id, "capability": action.capability},
            )
            return False

        logger.debug(
            "Logged action to history",
            extra={
                "request_id": request_id,
                "user_id": user_id,
                "capability": action.capability,
                "action_count": count,
            },
        )
        return True

    def get_latest(self, user_id: int) -> Optional[ActionRecord]:
        """Get the newest Completed record of a user, if any."""
        return self.repository.get_latest(user_id, ActionStatus.COMPLETED)

    def get_by_id(self, request_id: str, user_id: int) -> Optional[ActionRecord]:
        """Get a record by request ID; None when missing or expired."""
        return self.repository.get(request_id, user_id)

    def mark_reverted(self, request_id: str, user_id: int) -> bool:
        """Move a Completed record to Reverted.

        Returns:
            True if the status changed.
        """
        changed = self.repository.transition_status(request_id, user_id, ActionStatus.REVERTED)
        if changed:
            logger.info("Marked action history as reverted", extra={"request_id": request_id, "user_id": user_id})
        else:
            logger.warning(
                "Action history not reverted; record missing or already terminal",
                extra={"request_id": request_id, "user_id": user_id},
            )
        return changed

    def mark_failed(self, request_id: str, user_id: int, message: str) -> bool:
        """Move a Completed record to Failed.

        Returns:
            True if the status changed.
        """
        changed = self.repository.transition_status(
            request_id, user_id, ActionStatus.FAILED, error_message=message
        )
        logger.warning(
            "Marked action history as failed",
            extra={"request_id": request_id, "user_id": user_id, "error_message": message, "changed": changed},
        )
        return changed

    def mark_finished(self, request_id: str, user_id: int) -> bool:
        """Clear the running flag once the owning run has returned."""
        return self.repository.set_running(request_id, user_id, False)

    def claim_revert(self, request_id: str, user_id: int) -> bool:
        """Take a Completed, idle record for one revert sweep.

        Returns:
            True if the caller owns the sweep and must release it.
        """
        claimed = self.repository.claim(request_id, user_id)
        if not claimed:
            logger.info("Revert claim lost", extra={"request_id": request_id, "user_id": user_id})
        return claimed

    def release_revert(self, request_id: str, user_id: int) -> bool:
        """Give back a claim after a sweep that left the record Completed."""
        return self.repository.set_running(request_id, user_id, False)

    def record_applied_inverses(self, request_id: str, user_id: int, positions: List[int]) -> bool:
        """Remember which undo-sequence positions were replayed successfully."""
        if not positions:
            return True
        return self.repository.add_applied_inverses(request_id, user_id, positions)

    def purge_expired(self) -> int:
        """Delete records past their retention window.

        Returns:
            Number of records deleted.
        """
        deleted = self.repository.delete_expired()
        if deleted:
            logger.debug("Purged expired action records", extra={"deleted": deleted})
        return deleted

    def start_sweeper(self, interval_seconds: float = 60.0) -> asyncio.Task:
        """Start a background task that purges expired records periodically.

        Must be called from a running event loop.
        """
        if self._sweeper and not self._sweeper.done():
            return self._sweeper

        async def _sweep():
            while True:
                await asyncio.sleep(interval_seconds)
                try:
                    await asyncio.to_thread(self.purge_expired)
                except Exception:
                    logger.exception("Expired action record sweep failed")

        self._sweeper = asyncio.get_running_loop().create_task(_sweep())
        return self._sweeper

    async def stop_sweeper(self):
        """Cancel the background sweep task, if running."""
        if self._sweeper is None:
            return
        self._sweeper.cancel()
        try:
            await self._sweeper
        except asyncio.CancelledError:
            pass
        self._sweeper = None
