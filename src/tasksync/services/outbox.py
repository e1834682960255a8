"""Durable outbox of local mutations waiting to reach the remote authority.

Entries are appended by the task mutation handlers and drained, rewritten
or deleted only by the sync engine. Entries are never merged: two updates
to the same record are replayed in order as two entries.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Mapping
from datetime import date, datetime
from typing import Any

from sqlalchemy import func
from sqlalchemy.orm import Session

from tasksync.db.time import utcnow
from tasksync.models import OutboxEntry, Task
from tasksync.models.outbox import (
    OPERATIONS,
    OUTBOX_STATE_DEAD,
    OUTBOX_STATE_QUARANTINED,
    OUTBOX_STATE_QUEUED,
)
from tasksync.models.task import SYNC_STATUS_PENDING

logger = logging.getLogger(__name__)


class PayloadDecodeError(ValueError):
    """Raised when an outbox entry's payload is not a JSON object."""


def _json_fallback(obj: Any) -> Any:
    if isinstance(obj, datetime | date):
        return obj.isoformat()
    raise TypeError(f"Object of type {obj.__class__.__name__} is not JSON serializable")


def encode_payload(payload: Mapping[str, Any]) -> str:
    """Serialize a payload snapshot for storage."""
    return json.dumps(dict(payload), default=_json_fallback)


def decode_payload(entry: OutboxEntry) -> dict[str, Any]:
    """Deserialize an entry's payload.

    Raises:
        PayloadDecodeError: If the stored text is not valid JSON or is not an object.
    """
    try:
        data = json.loads(entry.payload)
    except (TypeError, ValueError) as exc:
        raise PayloadDecodeError(f"Failed to parse payload of outbox entry {entry.id}: {exc}") from exc
    if not isinstance(data, dict):
        raise PayloadDecodeError(
            f"Payload of outbox entry {entry.id} is {type(data).__name__}, expected an object"
        )
    return data


class OutboxQueue:
    """Session-bound access to the ``outbox`` table."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def enqueue(
        self, record_id: str, operation: str, payload: Mapping[str, Any]
    ) -> OutboxEntry:
        """Append a new intent for ``record_id``.

        The entry is flushed but not committed so the caller can commit it
        together with the record mutation that produced it.
        """
        if operation not in OPERATIONS:
            raise ValueError(f"Unsupported outbox operation: {operation!r}")

        entry = OutboxEntry(
            record_id=record_id,
            operation=operation,
            payload=encode_payload(payload),
            created_at=utcnow(),
            retry_count=0,
            state=OUTBOX_STATE_QUEUED,
        )
        self.db.add(entry)
        self.db.flush()
        logger.debug("Queued %s for task %s as outbox entry %s", operation, record_id, entry.id)
        return entry

    def load_dispatchable(self) -> list[OutboxEntry]:
        """Return every queued entry in dispatch (FIFO) order."""
        return (
            self.db.query(OutboxEntry)
            .filter(OutboxEntry.state == OUTBOX_STATE_QUEUED)
            .order_by(OutboxEntry.created_at.asc(), OutboxEntry.id.asc())
            .all()
        )

    def remove(self, entry: OutboxEntry) -> None:
        """Delete an entry once its intent has been reconciled."""
        self.db.delete(entry)
        self.db.commit()

    def record_failure(self, entry: OutboxEntry, message: str) -> int:
        """Count one more failed attempt and keep the entry in place."""
        entry.retry_count += 1
        entry.error_message = message
        self.db.commit()
        return entry.retry_count

    def mark_dead(self, entry: OutboxEntry) -> None:
        """Stop retrying an entry whose attempts are exhausted."""
        entry.state = OUTBOX_STATE_DEAD
        self.db.commit()

    def quarantine(self, entry: OutboxEntry, message: str) -> None:
        """Park an entry whose payload cannot be decoded."""
        entry.state = OUTBOX_STATE_QUARANTINED
        entry.error_message = message
        self.db.commit()

    def requeue(self, entry_id: int) -> OutboxEntry | None:
        """Put a dead or quarantined entry back in the queue.

        The entry keeps its original position, its attempt counter restarts
        at zero and the owning record goes back to ``pending`` unless another
        of its entries is still parked. Returns None if the entry does not
        exist or is already queued.
        """
        entry = self.db.get(OutboxEntry, entry_id)
        if entry is None or entry.state == OUTBOX_STATE_QUEUED:
            return None

        entry.state = OUTBOX_STATE_QUEUED
        entry.retry_count = 0
        entry.error_message = None
        self.db.flush()
        # The record stays failed while another of its entries is still parked.
        if not self.parked_record_ids([entry.record_id]):
            self.db.query(Task).filter(Task.id == entry.record_id).update(
                {Task.sync_status: SYNC_STATUS_PENDING}
            )
        self.db.commit()
        logger.info("Requeued outbox entry %s for task %s", entry.id, entry.record_id)
        return entry

    def entries_for(self, record_id: str) -> list[OutboxEntry]:
        """Return every entry for a record, whatever its state, oldest first."""
        return (
            self.db.query(OutboxEntry)
            .filter(OutboxEntry.record_id == record_id)
            .order_by(OutboxEntry.created_at.asc(), OutboxEntry.id.asc())
            .all()
        )

    def parked_record_ids(self, record_ids: Iterable[str]) -> set[str]:
        """Return which of ``record_ids`` have a dead or quarantined entry."""
        ids = list(dict.fromkeys(record_ids))
        if not ids:
            return set()
        rows = (
            self.db.query(OutboxEntry.record_id)
            .filter(
                OutboxEntry.record_id.in_(ids),
                OutboxEntry.state.in_((OUTBOX_STATE_DEAD, OUTBOX_STATE_QUARANTINED)),
            )
            .distinct()
            .all()
        )
        return {row[0] for row in rows}

    def count_pending(self) -> int:
        """Number of entries still eligible for dispatch."""
        return (
            self.db.query(func.count(OutboxEntry.id))
            .filter(OutboxEntry.state == OUTBOX_STATE_QUEUED)
            .scalar()
            or 0
        )

    def count_dead(self) -> int:
        """Number of entries parked for manual intervention."""
        return (
            self.db.query(func.count(OutboxEntry.id))
            .filter(OutboxEntry.state.in_((OUTBOX_STATE_DEAD, OUTBOX_STATE_QUARANTINED)))
            .scalar()
            or 0
        )
