"""Task CRUD that records every mutation in the outbox.

Each mutation writes the task with ``sync_status = pending`` and appends
one outbox entry in the same commit, so the queue always describes every
change that has not yet reached the remote.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Mapping
from typing import Any

from sqlalchemy.orm import Session

from tasksync.db.time import utcnow
from tasksync.models import Task
from tasksync.models.outbox import OPERATION_CREATE, OPERATION_DELETE, OPERATION_UPDATE
from tasksync.models.task import SYNC_STATUS_ERROR, SYNC_STATUS_PENDING
from tasksync.services.outbox import OutboxQueue

logger = logging.getLogger(__name__)

DEFAULT_TITLE = "Untitled Task"
EDITABLE_FIELDS = ("title", "description", "completed")


def snapshot(task: Task) -> dict[str, Any]:
    """Return the full syncable state of a task as a payload."""
    return {
        "id": task.id,
        "title": task.title,
        "description": task.description,
        "completed": task.completed,
        "created_at": task.created_at,
        "updated_at": task.updated_at,
        "is_deleted": task.is_deleted,
        "sync_status": task.sync_status,
        "server_id": task.server_id,
        "last_synced_at": task.last_synced_at,
    }


class TaskService:
    """Local task mutations plus read helpers."""

    def __init__(self, db: Session) -> None:
        self.db = db
        self.outbox = OutboxQueue(db)

    def create_task(self, title: str | None, description: str | None = None) -> Task:
        """Create a task locally and queue it for synchronization."""
        now = utcnow()
        task = Task(
            id=str(uuid.uuid4()),
            title=title or DEFAULT_TITLE,
            description=description or None,
            completed=False,
            created_at=now,
            updated_at=now,
            is_deleted=False,
            sync_status=SYNC_STATUS_PENDING,
        )
        self.db.add(task)
        self.db.flush()
        self.outbox.enqueue(task.id, OPERATION_CREATE, snapshot(task))
        self.db.commit()
        logger.info("Created task %s", task.id)
        return task

    def update_task(self, task_id: str, changes: Mapping[str, Any]) -> Task | None:
        """Apply a partial update and queue it.

        Unknown keys are ignored. Returns None if the task does not exist or
        has been deleted.
        """
        task = self.get_task(task_id)
        if task is None:
            logger.info("Update failed: task %s not found or deleted", task_id)
            return None

        updates = {key: value for key, value in changes.items() if key in EDITABLE_FIELDS}
        for key, value in updates.items():
            setattr(task, key, value)
        task.updated_at = utcnow()
        task.sync_status = SYNC_STATUS_PENDING

        self.outbox.enqueue(task.id, OPERATION_UPDATE, {**updates, "updated_at": task.updated_at})
        self.db.commit()
        logger.info("Updated task %s", task.id)
        return task

    def delete_task(self, task_id: str) -> bool:
        """Soft delete a task and queue the deletion."""
        task = self.get_task(task_id)
        if task is None:
            logger.info("Delete failed: task %s not found or already deleted", task_id)
            return False

        task.is_deleted = True
        task.updated_at = utcnow()
        task.sync_status = SYNC_STATUS_PENDING

        self.outbox.enqueue(task.id, OPERATION_DELETE, {"id": task.id})
        self.db.commit()
        logger.info("Soft deleted task %s", task.id)
        return True

    def get_task(self, task_id: str) -> Task | None:
        """Return a single non-deleted task."""
        return (
            self.db.query(Task)
            .filter(Task.id == task_id, Task.is_deleted.is_(False))
            .first()
        )

    def list_tasks(self) -> list[Task]:
        """Return all non-deleted tasks, newest first."""
        return (
            self.db.query(Task)
            .filter(Task.is_deleted.is_(False))
            .order_by(Task.created_at.desc())
            .all()
        )

    def tasks_needing_sync(self) -> list[Task]:
        """Return tasks still waiting on the remote or needing another attempt."""
        return (
            self.db.query(Task)
            .filter(Task.sync_status.in_((SYNC_STATUS_PENDING, SYNC_STATUS_ERROR)))
            .all()
        )
