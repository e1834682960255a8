"""Apply remote outcomes to the local record store and outbox.

The client never decides a conflict on its own by default: the remote
authority resolves it (last write wins, server side) and this module only
applies the resolution it sends back. A local last-write-wins strategy is
available behind the same interface for deployments that need it.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from datetime import datetime
from typing import Any, Protocol

from tasksync.db.time import as_utc, utcnow
from tasksync.models import OutboxEntry, Task
from tasksync.models.task import SYNC_STATUS_SYNCED
from tasksync.schemas.sync import ProcessedItem
from tasksync.services.outbox import OutboxQueue
from tasksync.services.records import RecordStore
from tasksync.services.results import SyncResult
from tasksync.services.retry import RetryPolicy

logger = logging.getLogger(__name__)

OUTCOME_SUCCESS = "success"
OUTCOME_CONFLICT = "conflict"
OUTCOME_ERROR = "error"

CONFLICT_ADVISORY = "Conflict resolved (LWW)"


def _as_text(value: Any) -> str:
    if not isinstance(value, str):
        raise TypeError(f"expected a string, got {type(value).__name__}")
    return value


def _as_optional_text(value: Any) -> str | None:
    return None if value is None else _as_text(value)


def _as_flag(value: Any) -> bool:
    # SQLite-backed peers send 0/1 for booleans.
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    raise TypeError(f"expected a boolean, got {value!r}")


def _as_timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        return as_utc(value)
    if isinstance(value, str):
        return as_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))
    raise TypeError(f"expected an ISO timestamp, got {type(value).__name__}")


# The only columns a remote resolution may write back, with the coercion
# applied to each. Anything else in ``resolved_data`` is dropped.
SYNCABLE_FIELDS: Mapping[str, Callable[[Any], Any]] = {
    "title": _as_text,
    "description": _as_optional_text,
    "completed": _as_flag,
    "is_deleted": _as_flag,
    "updated_at": _as_timestamp,
    "server_id": _as_text,
}


def merge_resolved_fields(
    resolved_data: Mapping[str, Any] | None, now: datetime
) -> dict[str, Any]:
    """Filter and coerce a resolved payload down to the syncable fields.

    ``updated_at`` is always present in the result: the resolved value if it
    parses, otherwise ``now``.
    """
    fields: dict[str, Any] = {}
    for name, value in (resolved_data or {}).items():
        coerce = SYNCABLE_FIELDS.get(name)
        if coerce is None:
            continue
        try:
            fields[name] = coerce(value)
        except (TypeError, ValueError) as exc:
            logger.warning("Ignoring resolved field %s=%r: %s", name, value, exc)

    fields.setdefault("updated_at", now)
    return fields


def resolve_server_id(outcome: ProcessedItem) -> str | None:
    """Pick the server id from the outcome, falling back to the resolved payload."""
    if outcome.server_id:
        return outcome.server_id
    resolved = outcome.resolved_data or {}
    for key in ("server_id", "id"):
        candidate = resolved.get(key)
        if isinstance(candidate, str) and candidate:
            return candidate
    return None


class ResolutionStrategy(Protocol):
    """Decide which field values land on the record for a reconciled outcome."""

    def resolve(
        self, record: Task | None, outcome: ProcessedItem, now: datetime
    ) -> dict[str, Any]: ...


class ServerAuthoritativeResolution:
    """Take the remote's resolved payload as final."""

    def resolve(
        self, record: Task | None, outcome: ProcessedItem, now: datetime
    ) -> dict[str, Any]:
        fields = merge_resolved_fields(outcome.resolved_data, now)
        server_id = resolve_server_id(outcome)
        if server_id:
            fields["server_id"] = server_id
        return fields


class LocalLastWriteWinsResolution:
    """Keep whichever side has the later ``updated_at``; local wins ties."""

    def resolve(
        self, record: Task | None, outcome: ProcessedItem, now: datetime
    ) -> dict[str, Any]:
        remote_fields = merge_resolved_fields(outcome.resolved_data, now)
        server_id = resolve_server_id(outcome)

        remote_is_newer = record is None or (
            "updated_at" in (outcome.resolved_data or {})
            and remote_fields["updated_at"] > as_utc(record.updated_at)
        )
        fields = remote_fields if remote_is_newer else {}
        if server_id:
            fields["server_id"] = server_id
        return fields


class Reconciler:
    """Turn one ``(entry, outcome)`` pair into record and queue mutations."""

    def __init__(
        self,
        records: RecordStore,
        outbox: OutboxQueue,
        retry_policy: RetryPolicy,
        strategy: ResolutionStrategy | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.records = records
        self.outbox = outbox
        self.retry_policy = retry_policy
        self.strategy = strategy or ServerAuthoritativeResolution()
        self.clock = clock

    def reconcile(self, entry: OutboxEntry, outcome: ProcessedItem, result: SyncResult) -> None:
        """Apply a server-reported outcome for ``entry``."""
        record_id, operation = entry.record_id, entry.operation
        if outcome.status == OUTCOME_SUCCESS:
            self.apply_resolution(entry, outcome)
            result.synced_items += 1
        elif outcome.status == OUTCOME_CONFLICT:
            logger.warning("Conflict resolved for task %s", record_id)
            self.apply_resolution(entry, outcome)
            result.synced_items += 1
            result.add_error(record_id, operation, CONFLICT_ADVISORY)
        else:
            self.retry_policy.handle_failure(
                entry, outcome.error or "Unknown server error", result
            )

    def apply_resolution(self, entry: OutboxEntry, outcome: ProcessedItem) -> None:
        """Mark the record synced with the resolved fields and drop the entry."""
        now = self.clock()
        record = self.records.get(entry.record_id)
        fields = self.strategy.resolve(record, outcome, now)
        self.records.apply(
            entry.record_id,
            status=SYNC_STATUS_SYNCED,
            fields=fields,
            synced_at=now,
        )
        logger.debug("Reconciled outbox entry %s for task %s", entry.id, entry.record_id)
        self.outbox.remove(entry)
