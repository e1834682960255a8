"""Sync-engine view of the ``tasks`` table.

The engine touches only the sync bookkeeping columns and the allow-listed
syncable fields; everything else belongs to the task handlers.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from datetime import datetime
from typing import Any

from sqlalchemy.orm import Session

from tasksync.models import Task
from tasksync.models.task import SYNC_STATUSES

logger = logging.getLogger(__name__)


class RecordStore:
    """Bulk and single-row status updates on task records."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def set_status(self, record_ids: Iterable[str], status: str) -> int:
        """Set ``sync_status`` on every listed record in one statement."""
        if status not in SYNC_STATUSES:
            raise ValueError(f"Unknown sync status: {status!r}")

        ids = list(dict.fromkeys(record_ids))
        if not ids:
            return 0

        updated = (
            self.db.query(Task)
            .filter(Task.id.in_(ids))
            .update({Task.sync_status: status})
        )
        self.db.commit()
        return updated

    def get_status(self, record_id: str) -> str | None:
        """Return a record's current ``sync_status`` or None if it is missing."""
        row = self.db.query(Task.sync_status).filter(Task.id == record_id).first()
        return row[0] if row else None

    def get(self, record_id: str) -> Task | None:
        """Return a record regardless of its soft-delete flag."""
        return self.db.get(Task, record_id)

    def apply(
        self,
        record_id: str,
        *,
        status: str,
        fields: Mapping[str, Any] | None = None,
        synced_at: datetime | None = None,
    ) -> bool:
        """Write a status plus optional field values onto a record.

        Returns False if the record no longer exists.
        """
        values: dict[Any, Any] = {Task.sync_status: status}
        if synced_at is not None:
            values[Task.last_synced_at] = synced_at
        for name, value in (fields or {}).items():
            values[getattr(Task, name)] = value

        updated = (
            self.db.query(Task)
            .filter(Task.id == record_id)
            .update(values)
        )
        self.db.commit()
        if not updated:
            logger.warning("Task %s vanished before it could be marked %s", record_id, status)
        return bool(updated)
