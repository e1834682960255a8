# src/tasksync/api/v1/endpoints/__init__.py
"""API endpoint modules for version 1."""

from .sync import router as sync_router
from .tasks import router as tasks_router

__all__ = ["sync_router", "tasks_router"]
