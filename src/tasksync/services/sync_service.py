"""Outbox dispatcher: drains queued mutations to the remote authority.

One call to :meth:`SyncDispatcher.sync` is one cycle:

1. Load every queued outbox entry in FIFO order and decode its payload.
   Entries whose payload cannot be decoded are quarantined and reported.
2. Split the work into fixed-size batches without reordering.
3. For each batch, hold back entries whose task already has a dead or
   quarantined entry, mark the remaining tasks ``in-progress``, submit the
   batch and reconcile every item against the server's answer.
4. Fold everything into a :class:`SyncResult`.

A failing batch never stops the cycle and ``sync()`` never raises.

Cycles must not overlap. Two concurrent cycles could double count
retries on the same entries, so callers are expected to serialize them
(see ``tasksync.api.v1.endpoints.sync``). A crash between marking a batch
``in-progress`` and reconciling it is safe: the entries are still queued
and the next cycle sends them again.
"""

from __future__ import annotations

import logging
from collections import defaultdict, deque
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from tasksync.db.time import utcnow
from tasksync.models import OutboxEntry
from tasksync.models.task import SYNC_STATUS_FAILED, SYNC_STATUS_IN_PROGRESS
from tasksync.schemas.sync import BatchSyncRequest, BatchSyncResponse, OutboxItemOut
from tasksync.services.outbox import OutboxQueue, PayloadDecodeError, decode_payload
from tasksync.services.reconciler import Reconciler, ResolutionStrategy
from tasksync.services.records import RecordStore
from tasksync.services.remote import RemoteClient, RemoteError
from tasksync.services.results import SyncIssue, SyncResult
from tasksync.services.retry import RetryPolicy
from tasksync.services.sync_config import SyncConfig, load_sync_config
from tasksync.utils.checksum import batch_checksum

# Configure logger for this module
logger = logging.getLogger(__name__)

MISSING_RESPONSE_ITEM = "No response item received"
HELD_BACK = "Held back: an earlier change for this task is dead or quarantined"


@dataclass(frozen=True, eq=False)
class PreparedItem:
    """An outbox entry together with its decoded payload."""

    entry: OutboxEntry
    data: dict[str, Any]

    @property
    def id(self) -> int:
        return self.entry.id

    @property
    def record_id(self) -> str:
        return self.entry.record_id

    @property
    def operation(self) -> str:
        return self.entry.operation

    def to_wire(self) -> OutboxItemOut:
        return OutboxItemOut(
            id=self.entry.id,
            record_id=self.entry.record_id,
            operation=self.entry.operation,
            data=self.data,
            created_at=self.entry.created_at,
            retry_count=self.entry.retry_count,
            error_message=self.entry.error_message,
        )


def partition(items: Sequence[PreparedItem], size: int) -> list[list[PreparedItem]]:
    """Split ``items`` into consecutive batches of at most ``size``."""
    return [list(items[start:start + size]) for start in range(0, len(items), size)]


class SyncDispatcher:
    """Drain the outbox in batches and reconcile the outcomes."""

    def __init__(
        self,
        db: Session,
        remote: RemoteClient,
        config: SyncConfig,
        *,
        strategy: ResolutionStrategy | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        """Wire the dispatcher to a session and a remote.

        Args:
            db: Session used for every queue and record write in the cycle.
            remote: Client for the remote ``/batch`` and ``/health`` endpoints.
            config: Batch size and retry ceiling for this dispatcher.
            strategy: Conflict resolution strategy; server authoritative by default.
            clock: Source of ``now`` for ``last_synced_at`` stamps.
        """
        self.db = db
        self.remote = remote
        self.config = config
        self.clock = clock
        self.outbox = OutboxQueue(db)
        self.records = RecordStore(db)
        self.retry_policy = RetryPolicy(self.records, self.outbox, config.max_retries)
        self.reconciler = Reconciler(
            self.records,
            self.outbox,
            self.retry_policy,
            strategy=strategy,
            clock=clock,
        )

    async def check_connectivity(self) -> bool:
        """Probe the remote's health endpoint."""
        return await self.remote.check_health()

    async def sync(self) -> SyncResult:
        """Run one full cycle over the outbox and return the aggregate result."""
        result = SyncResult()

        try:
            work = self._load_work(result)
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.error("Sync process error while loading the outbox: %s", exc, exc_info=True)
            result.success = False
            result.add_error("general", "sync", f"Failed to load outbox: {exc}")
            return result.finalize()

        batches = partition(work, self.config.batch_size)
        for number, batch in enumerate(batches, start=1):
            logger.info("Processing sync batch %d of %d", number, len(batches))
            if not await self._dispatch_batch(batch, result):
                result.success = False

        result.finalize()
        logger.info(
            "Sync completed. Synced: %d, Failed: %d",
            result.synced_items,
            result.failed_items,
        )
        return result

    def _load_work(self, result: SyncResult) -> list[PreparedItem]:
        work: list[PreparedItem] = []
        for entry in self.outbox.load_dispatchable():
            try:
                work.append(PreparedItem(entry=entry, data=decode_payload(entry)))
            except PayloadDecodeError as exc:
                self._quarantine(entry, str(exc), result)
        return work

    def _quarantine(self, entry: OutboxEntry, message: str, result: SyncResult) -> SyncIssue:
        logger.error("Quarantining outbox entry %s for task %s: %s", entry.id, entry.record_id, message)
        self.outbox.quarantine(entry, message)
        self.records.set_status([entry.record_id], SYNC_STATUS_FAILED)
        result.failed_items += 1
        return result.add_error(entry.record_id, entry.operation, f"Corrupt payload: {message}")

    def _hold_back(self, items: list[PreparedItem], result: SyncResult) -> None:
        # Later changes for a parked record wait, still queued, until the
        # parked entry is requeued; the record stays failed meanwhile.
        self.records.set_status((item.record_id for item in items), SYNC_STATUS_FAILED)
        for item in items:
            logger.warning("Holding back outbox entry %s for task %s", item.id, item.record_id)
            result.add_error(item.record_id, item.operation, HELD_BACK)

    async def _dispatch_batch(self, batch: list[PreparedItem], result: SyncResult) -> bool:
        """Send and reconcile one batch. Returns False on a batch-level failure."""
        try:
            parked = self.outbox.parked_record_ids(item.record_id for item in batch)
            if parked:
                self._hold_back([item for item in batch if item.record_id in parked], result)
                batch = [item for item in batch if item.record_id not in parked]
            if not batch:
                return True
            self.records.set_status((item.record_id for item in batch), SYNC_STATUS_IN_PROGRESS)
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.error("Could not mark batch in-progress: %s", exc, exc_info=True)
            result.add_error("general", "sync", f"Batch skipped: {exc}")
            return False

        request = BatchSyncRequest(
            items=[item.to_wire() for item in batch],
            client_timestamp=self.clock(),
            checksum=batch_checksum(batch),
        )

        try:
            response = await self.remote.send_batch(request)
        except RemoteError as exc:
            logger.error("Batch sync failed: %s", exc)
            self._fail_all(batch, str(exc), result)
            return False

        try:
            self._reconcile_batch(batch, response, result)
        except SQLAlchemyError as exc:
            # Unreconciled entries are still queued and go out again next cycle.
            self.db.rollback()
            logger.error("Storage error while reconciling batch: %s", exc, exc_info=True)
            result.add_error("general", "sync", f"Batch reconciliation aborted: {exc}")
            return False
        return True

    def _fail_all(self, batch: list[PreparedItem], message: str, result: SyncResult) -> None:
        for item in batch:
            try:
                self.retry_policy.handle_failure(item.entry, message, result)
            except SQLAlchemyError as exc:
                self.db.rollback()
                logger.error(
                    "Could not record failure for outbox entry %s: %s", item.id, exc, exc_info=True
                )

    def _reconcile_batch(
        self, batch: list[PreparedItem], response: BatchSyncResponse, result: SyncResult
    ) -> None:
        # Several entries for the same task may share a batch; answers for one
        # client_id are matched to them oldest first.
        waiting: dict[str, deque[PreparedItem]] = defaultdict(deque)
        for item in batch:
            waiting[item.record_id].append(item)

        for outcome in response.processed_items:
            candidates = waiting.get(outcome.client_id)
            if not candidates:
                logger.warning("Ignoring response item for unknown client_id %s", outcome.client_id)
                continue
            item = candidates.popleft()
            if self.outbox.parked_record_ids([item.record_id]):
                # An earlier entry in this batch was parked after the send.
                self._hold_back([item], result)
                continue
            self.reconciler.reconcile(item.entry, outcome, result)

        unanswered = {id(item) for candidates in waiting.values() for item in candidates}
        for item in batch:
            if id(item) in unanswered:
                self.retry_policy.handle_failure(item.entry, MISSING_RESPONSE_ITEM, result)


def build_dispatcher(
    db: Session,
    remote: RemoteClient | None = None,
    config: SyncConfig | None = None,
) -> SyncDispatcher:
    """Create a dispatcher from global settings unless overrides are given."""
    config = config or load_sync_config()
    return SyncDispatcher(db, remote or RemoteClient(config), config)
