"""SQLAlchemy ORM models for the action ledger."""

from datetime import datetime
from typing import Any, List, Optional

from sqlalchemy import JSON, Boolean, DateTime, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class ActionHistory(Base):
    """One row per orchestration run.

    ``actions`` holds the serialized ExecutedAction list. ``applied_inverses``
    lists positions in the undo sequence that already ran, so a retried
    revert does not send them again. ``running`` is set while the owning run
    or a revert sweep is in progress. ``created_at`` is the retention
    anchor; rows older than the TTL are swept.
    """
    __tablename__ = "action_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    request_id: Mapped[str] = mapped_column(String(64), nullable=False)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="completed")
    actions: Mapped[List[Any]] = mapped_column(JSON, nullable=False, default=list)
    running: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    applied_inverses: Mapped[List[int]] = mapped_column(JSON, nullable=False, default=list)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    reverted_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    __table_args__ = (
        UniqueConstraint("user_id", "request_id", name="uq_action_history_user_request"),
        Index("idx_action_history_created", "created_at"),
        Index("idx_action_history_user_status", "user_id", "status"),
    )
