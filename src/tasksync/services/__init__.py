# src/tasksync/services/__init__.py
"""Business logic services for the tasksync application."""

from .outbox import OutboxQueue
from .reconciler import Reconciler
from .records import RecordStore
from .remote import RemoteClient
from .results import SyncIssue, SyncResult
from .retry import RetryPolicy
from .sync_config import SyncConfig
from .sync_service import SyncDispatcher
from .task_service import TaskService

__all__ = [
    "OutboxQueue",
    "Reconciler",
    "RecordStore",
    "RemoteClient",
    "RetryPolicy",
    "SyncConfig",
    "SyncDispatcher",
    "SyncIssue",
    "SyncResult",
    "TaskService",
]
