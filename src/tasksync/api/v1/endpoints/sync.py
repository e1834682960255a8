"""Sync trigger and status endpoints.

``POST /sync`` is the only place a cycle is started from the API. Cycles
are serialized per process: a trigger that arrives while a cycle is
running is refused with 409 rather than queued behind it.
"""

from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, HTTPException, status
from sqlalchemy import func

from tasksync.api.v1.dependencies import DispatcherDep, SessionDep
from tasksync.models import Task
from tasksync.models.task import SYNC_STATUS_SYNCED
from tasksync.schemas.sync import SyncResultResponse, SyncStatusResponse
from tasksync.services.outbox import OutboxQueue

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sync", tags=["sync"])

# One in-flight cycle per process.
_sync_cycle_lock = asyncio.Lock()


@router.post("", response_model=SyncResultResponse)
async def trigger_sync(dispatcher: DispatcherDep) -> SyncResultResponse:
    """Run one sync cycle if the remote is reachable.

    Returns:
        The aggregate result of the cycle.

    Raises:
        HTTPException: 503 when offline, 409 when a cycle is already running.
    """
    if _sync_cycle_lock.locked():
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="A sync cycle is already in progress.",
        )

    async with _sync_cycle_lock:
        if not await dispatcher.check_connectivity():
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="Cannot sync while offline.",
            )
        result = await dispatcher.sync()

    return SyncResultResponse.model_validate(result)


@router.get("/status", response_model=SyncStatusResponse)
async def sync_status(db: SessionDep, dispatcher: DispatcherDep) -> SyncStatusResponse:
    """Report queue depth, the last successful sync and reachability."""
    queue = OutboxQueue(db)
    pending = queue.count_pending()
    last_sync = (
        db.query(func.max(Task.last_synced_at))
        .filter(Task.sync_status == SYNC_STATUS_SYNCED)
        .scalar()
    )
    return SyncStatusResponse(
        pending_sync_count=pending,
        dead_count=queue.count_dead(),
        last_sync_timestamp=last_sync,
        is_online=await dispatcher.check_connectivity(),
        sync_queue_size=pending,
    )


@router.post("/requeue/{entry_id}", status_code=status.HTTP_202_ACCEPTED)
async def requeue_entry(entry_id: int, db: SessionDep) -> dict[str, object]:
    """Put a dead or quarantined outbox entry back into the queue."""
    entry = OutboxQueue(db).requeue(entry_id)
    if entry is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No dead or quarantined outbox entry with that id",
        )
    return {"id": entry.id, "record_id": entry.record_id, "state": entry.state}
