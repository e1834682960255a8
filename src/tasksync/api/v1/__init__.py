# src/tasksync/api/v1/__init__.py
"""Version 1 API endpoints."""

from .endpoints import sync_router, tasks_router

__all__ = ["sync_router", "tasks_router"]
