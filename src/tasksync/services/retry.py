"""Bounded retry accounting for outbox entries.

There is no backoff: a failed entry stays where it is in the queue and is
picked up again by the next cycle. After ``max_retries`` failed attempts
the next failure parks the entry as dead and quarantines its record.
"""

from __future__ import annotations

import logging

from tasksync.models import OutboxEntry
from tasksync.models.task import SYNC_STATUS_ERROR, SYNC_STATUS_FAILED
from tasksync.services.outbox import OutboxQueue
from tasksync.services.records import RecordStore
from tasksync.services.results import SyncResult

logger = logging.getLogger(__name__)


class RetryPolicy:
    """Apply one failed attempt to an outbox entry and its record."""

    def __init__(self, records: RecordStore, outbox: OutboxQueue, max_retries: int) -> None:
        self.records = records
        self.outbox = outbox
        self.max_retries = max_retries

    def is_exhausted(self, attempts: int) -> bool:
        """Return True once ``attempts`` failures exceed the retry ceiling."""
        return attempts > self.max_retries

    def handle_failure(self, entry: OutboxEntry, message: str, result: SyncResult) -> None:
        """Count the failure and move the entry to retry-wait or dead."""
        message = message or "Unknown error"
        attempts = self.outbox.record_failure(entry, message)
        logger.error(
            "Sync failed for task %s (attempt %d/%d): %s",
            entry.record_id,
            attempts,
            self.max_retries,
            message,
        )

        if self.is_exhausted(attempts):
            logger.error("Max retries exceeded for task %s; marking failed", entry.record_id)
            self.records.set_status([entry.record_id], SYNC_STATUS_FAILED)
            self.outbox.mark_dead(entry)
            result.failed_items += 1
            result.add_error(entry.record_id, entry.operation, f"Permanent failure: {message}")
            return

        # A record already quarantined by an older dead entry stays quarantined.
        if self.records.get_status(entry.record_id) != SYNC_STATUS_FAILED:
            self.records.set_status([entry.record_id], SYNC_STATUS_ERROR)
        result.add_error(
            entry.record_id,
            entry.operation,
            f"Temp failure (attempt {attempts}): {message}",
        )
