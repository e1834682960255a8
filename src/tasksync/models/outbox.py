# src/tasksync/models/outbox.py
"""SQLAlchemy model for the durable outbox of un-synced mutations."""

from datetime import datetime

from sqlalchemy import VARCHAR, DateTime, Index, Integer, SmallInteger, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from tasksync.db.session import Base
from tasksync.db.time import utcnow

OPERATION_CREATE = "create"
OPERATION_UPDATE = "update"
OPERATION_DELETE = "delete"
OPERATIONS = (OPERATION_CREATE, OPERATION_UPDATE, OPERATION_DELETE)

# Entry states. Only "queued" entries are dispatched; the other two are
# terminal and stay in the table until someone requeues them.
OUTBOX_STATE_QUEUED = "queued"
OUTBOX_STATE_DEAD = "dead"  # retries exhausted
OUTBOX_STATE_QUARANTINED = "quarantined"  # payload could not be decoded


class OutboxEntry(Base):
    """One recorded local intent waiting to reach the remote authority."""

    __tablename__ = "outbox"
    __table_args__ = (Index("ix_outbox_dispatch_order", "state", "created_at", "id"),)

    # Monotonic id doubles as the insertion-order tie breaker for created_at.
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    # Not a cascading foreign key: the entry outlives whatever happens to the record.
    record_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    operation: Mapped[str] = mapped_column(VARCHAR(10), nullable=False)
    payload: Mapped[str] = mapped_column(Text, nullable=False)  # JSON snapshot
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    retry_count: Mapped[int] = mapped_column(SmallInteger, default=0, nullable=False)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    state: Mapped[str] = mapped_column(
        VARCHAR(20), default=OUTBOX_STATE_QUEUED, nullable=False
    )
