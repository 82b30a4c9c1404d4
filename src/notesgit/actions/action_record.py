"""Action record model for the undo ledger.

One ActionRecord holds every modifying action a single request performed,
together with the inverse operations needed to undo them.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, List

from notesgit.core.rollback_protocol import ExecutedAction


class ActionStatus(str, Enum):
    """Lifecycle of an action record.

    COMPLETED is the only non-terminal state; a record moves to REVERTED or
    FAILED at most once.
    """
    COMPLETED = "completed"
    REVERTED = "reverted"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not ActionStatus.COMPLETED


@dataclass
class ActionRecord:
    """Ledger entry for one orchestration run.

    Attributes:
        request_id: Opaque unique token identifying the request.
        user_id: ID of the user who issued the request.
        created_at: When the record was created; anchors the retention TTL.
        actions: Executed modifying actions, in call order.
        status: Current lifecycle status.
        running: Whether the owning run or a revert sweep is in progress.
        applied_inverses: Undo-sequence positions already replayed.
        error_message: Reason the run failed, if it did.
        reverted_at: When the record was reverted, if it was.
        id: Database identifier.

    Example:
        >>> record = ActionRecord(request_id="3f2a...", user_id=7)
        >>> record.action_count
        0
    """

    request_id: str = ""
    user_id: int = 0
    created_at: Optional[datetime] = None
    actions: List[ExecutedAction] = field(default_factory=list)
    status: ActionStatus = ActionStatus.COMPLETED
    running: bool = False
    applied_inverses: List[int] = field(default_factory=list)
    error_message: Optional[str] = None
    reverted_at: Optional[datetime] = None
    id: Optional[int] = None

    @property
    def action_count(self) -> int:
        return len(self.actions)

    def is_revertable(self) -> bool:
        """Check if the record can currently be reverted."""
        return self.status is ActionStatus.COMPLETED and not self.running

