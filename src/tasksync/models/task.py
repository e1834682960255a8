# src/tasksync/models/task.py
"""SQLAlchemy model for locally owned task records."""

from datetime import datetime

from sqlalchemy import VARCHAR, Boolean, DateTime, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from tasksync.db.session import Base
from tasksync.db.time import utcnow

# Local mutation-tracking states. Only the sync engine moves a record out of
# "pending"; CRUD handlers may only reset it to "pending".
SYNC_STATUS_PENDING = "pending"
SYNC_STATUS_IN_PROGRESS = "in-progress"
SYNC_STATUS_ERROR = "error"
SYNC_STATUS_SYNCED = "synced"
SYNC_STATUS_FAILED = "failed"

SYNC_STATUSES = (
    SYNC_STATUS_PENDING,
    SYNC_STATUS_IN_PROGRESS,
    SYNC_STATUS_ERROR,
    SYNC_STATUS_SYNCED,
    SYNC_STATUS_FAILED,
)


class Task(Base):
    """A task record mutated locally and mirrored to the remote authority."""

    __tablename__ = "tasks"

    # Client-assigned UUID; the remote echoes it back as ``client_id``.
    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    completed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    # Soft delete; read APIs never return deleted rows.
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    sync_status: Mapped[str] = mapped_column(
        VARCHAR(20), default=SYNC_STATUS_PENDING, nullable=False, index=True
    )
    server_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_synced_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
