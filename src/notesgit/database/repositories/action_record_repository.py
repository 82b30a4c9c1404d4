"""Repository for action ledger database operations.

Handles CRUD operations for action records, including TTL-based expiry.
"""

from datetime import datetime, timedelta
from typing import Callable, List, Optional

from sqlalchemy import delete, select, update

from notesgit.actions.action_record import ActionRecord, ActionStatus
from notesgit.core.rollback_protocol import ExecutedAction
from notesgit.database.db_config import get_database_path, get_db_connection, init_db
from notesgit.database.models import ActionHistory


class ActionRecordRepository:
    """Repository for ActionRecord CRUD operations.

    Records older than ``ttl_seconds`` are treated as absent by every read
    and are physically removed by ``delete_expired``.

    Attributes:
        db_path: Database path or SQLAlchemy URL.
        ttl: Retention window measured from record creation.

    Example:
        >>> repo = ActionRecordRepository(db_path="/tmp/ledger.db")
        >>> repo.create(ActionRecord(request_id="abc", user_id=1))
        >>> repo.get("abc", 1).status
        <ActionStatus.COMPLETED: 'completed'>
    """

    def __init__(
        self,
        db_path: Optional[str] = None,
        ttl_seconds: int = 1800,
        clock: Callable[[], datetime] = datetime.now,
    ):
        """Initialize the repository and make sure the table exists.

        Args:
            db_path: Database path or URL. If None, uses configured default.
            ttl_seconds: Retention window for records.
            clock: Source of the current time.
        """
        self.db_path = db_path or get_database_path()
        self.ttl = timedelta(seconds=ttl_seconds)
        self._clock = clock
        init_db(self.db_path)

    def _cutoff(self) -> datetime:
        return self._clock() - self.ttl

    def create(self, record: ActionRecord) -> ActionRecord:
        """Insert a new action record.

        Args:
            record: ActionRecord to insert.

        Returns:
            The record with id and created_at populated.
        """
        now = self._clock()
        if not record.created_at:
            record.created_at = now

        row = ActionHistory(
            request_id=record.request_id,
            user_id=record.user_id,
            status=record.status.value,
            actions=[action.to_dict() for action in record.actions],
            running=record.running,
            applied_inverses=list(record.applied_inverses),
            error_message=record.error_message,
            created_at=record.created_at,
            updated_at=now,
            reverted_at=record.reverted_at,
        )
        with get_db_connection(self.db_path) as session:
            session.add(row)
            session.flush()
            record.id = row.id

        return record

    def get(self, request_id: str, user_id: int) -> Optional[ActionRecord]:
        """Get a live record by request ID.

        Args:
            request_id: Request identifier.
            user_id: Owner of the record.

        Returns:
            ActionRecord if found and not expired, None otherwise.
        """
        with get_db_connection(self.db_path) as session:
            row = session.scalars(
                select(ActionHistory).where(
                    ActionHistory.request_id == request_id,
                    ActionHistory.user_id == user_id,
                    ActionHistory.created_at > self._cutoff(),
                )
            ).first()
            return self._row_to_record(row) if row else None

    def get_latest(self, user_id: int, status: ActionStatus = ActionStatus.COMPLETED) -> Optional[ActionRecord]:
        """Get the newest live record of a user with the given status.

        Args:
            user_id: Owner of the records.
            status: Status to filter on.

        Returns:
            Newest matching ActionRecord, or None.
        """
        with get_db_connection(self.db_path) as session:
            row = session.scalars(
                select(ActionHistory)
                .where(
                    ActionHistory.user_id == user_id,
                    ActionHistory.status == status.value,
                    ActionHistory.created_at > self._cutoff(),
                )
                .order_by(ActionHistory.created_at.desc(), ActionHistory.id.desc())
            ).first()
            return self._row_to_record(row) if row else None

    def append_action(self, request_id: str, user_id: int, action: ExecutedAction) -> Optional[int]:
        """Append one executed action to a record.

        Args:
            request_id: Request identifier.
            user_id: Owner of the record.
            action: Action to append.

        Returns:
            The new action count, or None if the record does not exist.
        """
        with get_db_connection(self.db_path) as session:
            row = session.scalars(
                select(ActionHistory)
                .where(
                    ActionHistory.request_id == request_id,
                    ActionHistory.user_id == user_id,
                    ActionHistory.created_at > self._cutoff(),
                )
                .with_for_update()
            ).first()
            if row is None:
                return None

            # Reassign so the JSON column is flagged dirty
            row.actions = list(row.actions or []) + [action.to_dict()]
            row.updated_at = self._clock()
            return len(row.actions)

    def transition_status(
        self,
        request_id: str,
        user_id: int,
        status: ActionStatus,
        error_message: Optional[str] = None,
    ) -> bool:
        """Move a Completed record to a terminal status.

        The update only applies while the record is still Completed, so a
        terminal status is never overwritten.

        Args:
            request_id: Request identifier.
            user_id: Owner of the record.
            status: Terminal status to set.
            error_message: Failure reason, for FAILED.

        Returns:
            True if the record was updated, False otherwise.
        """
        if not status.is_terminal:
            raise ValueError(f"{status} is not a terminal status")

        now = self._clock()
        values = {"status": status.value, "updated_at": now, "running": False}
        if status is ActionStatus.REVERTED:
            values["reverted_at"] = now
        if status is ActionStatus.FAILED:
            values["error_message"] = error_message

        with get_db_connection(self.db_path) as session:
            result = session.execute(
                update(ActionHistory)
                .where(
                    ActionHistory.request_id == request_id,
                    ActionHistory.user_id == user_id,
                    ActionHistory.status == ActionStatus.COMPLETED.value,
                    ActionHistory.created_at > self._cutoff(),
                )
                .values(**values)
            )
            return result.rowcount > 0

    def set_running(self, request_id: str, user_id: int, running: bool) -> bool:
        """Set or clear the in-progress flag of a record.

        Returns:
            True if the record was updated, False otherwise.
        """
        with get_db_connection(self.db_path) as session:
            result = session.execute(
                update(ActionHistory)
                .where(
                    ActionHistory.request_id == request_id,
                    ActionHistory.user_id == user_id,
                )
                .values(running=running, updated_at=self._clock())
            )
            return result.rowcount > 0

    def claim(self, request_id: str, user_id: int) -> bool:
        """Atomically take a Completed, idle record for a revert sweep.

        Sets the running flag only if the record is live, Completed and not
        running, so at most one caller wins the claim.

        Returns:
            True if this call claimed the record, False otherwise.
        """
        with get_db_connection(self.db_path) as session:
            result = session.execute(
                update(ActionHistory)
                .where(
                    ActionHistory.request_id == request_id,
                    ActionHistory.user_id == user_id,
                    ActionHistory.status == ActionStatus.COMPLETED.value,
                    ActionHistory.running.is_(False),
                    ActionHistory.created_at > self._cutoff(),
                )
                .values(running=True, updated_at=self._clock())
            )
            return result.rowcount > 0

    def add_applied_inverses(self, request_id: str, user_id: int, positions: List[int]) -> bool:
        """Merge undo-sequence positions into the record's applied set.

        Args:
            request_id: Request identifier.
            user_id: Owner of the record.
            positions: Positions that were replayed successfully.

        Returns:
            True if the record was updated, False if it does not exist.
        """
        with get_db_connection(self.db_path) as session:
            row = session.scalars(
                select(ActionHistory)
                .where(
                    ActionHistory.request_id == request_id,
                    ActionHistory.user_id == user_id,
                )
                .with_for_update()
            ).first()
            if row is None:
                return False

            row.applied_inverses = sorted(set(row.applied_inverses or []) | set(positions))
            row.updated_at = self._clock()
            return True

    def delete_expired(self) -> int:
        """Delete every record older than the retention window.

        Returns:
            Number of records deleted.
        """
        with get_db_connection(self.db_path) as session:
            result = session.execute(
                delete(ActionHistory).where(ActionHistory.created_at <= self._cutoff())
            )
            return result.rowcount

    def count(self, user_id: Optional[int] = None) -> int:
        """Count stored records, expired or not (for diagnostics and tests)."""
        with get_db_connection(self.db_path) as session:
            query = select(ActionHistory.id)
            if user_id is not None:
                query = query.where(ActionHistory.user_id == user_id)
            return len(session.scalars(query).all())

    def _row_to_record(self, row: ActionHistory) -> ActionRecord:
        """Convert an ORM row to an ActionRecord.

        Args:
            row: ActionHistory row.

        Returns:
            ActionRecord object.
        """
        return ActionRecord(
            id=row.id,
            request_id=row.request_id,
            user_id=row.user_id,
            created_at=row.created_at,
            actions=[ExecutedAction.from_dict(a) for a in (row.actions or [])],
            status=ActionStatus(row.status),
            running=bool(row.running),
            applied_inverses=list(row.applied_inverses or []),
            error_message=row.error_message,
            reverted_at=row.reverted_at,
        )
