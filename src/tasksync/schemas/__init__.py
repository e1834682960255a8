# src/tasksync/schemas/__init__.py
"""Pydantic schemas for the tasksync API and wire contract."""

from .sync import (
    BatchSyncRequest,
    BatchSyncResponse,
    OutboxItemOut,
    ProcessedItem,
    SyncErrorOut,
    SyncResultResponse,
    SyncStatusResponse,
)
from .task import TaskCreate, TaskResponse, TaskUpdate

__all__ = [
    "BatchSyncRequest", "BatchSyncResponse", "OutboxItemOut", "ProcessedItem",
    "SyncErrorOut", "SyncResultResponse", "SyncStatusResponse",
    "TaskCreate", "TaskResponse", "TaskUpdate",
]
