"""Aggregate outcome of one sync cycle."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from tasksync.db.time import utcnow


@dataclass(frozen=True)
class SyncIssue:
    """One logged problem or advisory raised during a cycle."""

    record_id: str
    operation: str
    message: str
    timestamp: datetime = field(default_factory=utcnow)


@dataclass
class SyncResult:
    """Running tally for one ``sync()`` run.

    ``errors`` mixes temporary failures, permanent failures and conflict
    advisories in the order they happened. Advisories do not affect
    ``success``.
    """

    success: bool = True
    synced_items: int = 0
    failed_items: int = 0
    errors: list[SyncIssue] = field(default_factory=list)

    def add_error(self, record_id: str, operation: str, message: str) -> SyncIssue:
        """Append an entry to the error log and return it."""
        issue = SyncIssue(record_id=record_id, operation=operation, message=message)
        self.errors.append(issue)
        return issue

    def finalize(self) -> SyncResult:
        """Fold the permanent-failure count into ``success``."""
        if self.failed_items > 0:
            self.success = False
        return self
