# src/tasksync/schemas/sync.py
"""Schemas for the batch sync wire contract and the sync API responses."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class OutboxItemOut(BaseModel):
    """One outbox entry as submitted to the remote ``/batch`` endpoint."""

    id: int
    record_id: str
    operation: str
    data: dict[str, Any]
    created_at: datetime
    retry_count: int
    error_message: str | None = None


class BatchSyncRequest(BaseModel):
    """Body of ``POST /batch``."""

    items: list[OutboxItemOut]
    client_timestamp: datetime
    checksum: str


class ProcessedItem(BaseModel):
    """Server-reported outcome for one submitted item."""

    client_id: str
    server_id: str | None = None
    # Kept as a plain string: unknown outcomes are handled as per-item errors
    # rather than failing the whole batch.
    status: str
    resolved_data: dict[str, Any] | None = None
    error: str | None = None

    model_config = ConfigDict(extra="ignore")


class BatchSyncResponse(BaseModel):
    """Body returned by ``POST /batch``."""

    processed_items: list[ProcessedItem]

    model_config = ConfigDict(extra="ignore")


class SyncErrorOut(BaseModel):
    """One entry of the sync error log."""

    record_id: str
    operation: str
    message: str
    timestamp: datetime

    model_config = ConfigDict(from_attributes=True)


class SyncResultResponse(BaseModel):
    """Aggregate outcome of one sync cycle."""

    success: bool
    synced_items: int
    failed_items: int
    errors: list[SyncErrorOut] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)


class SyncStatusResponse(BaseModel):
    """Local synchronization status snapshot."""

    pending_sync_count: int
    dead_count: int
    last_sync_timestamp: datetime | None
    is_online: bool
    sync_queue_size: int
