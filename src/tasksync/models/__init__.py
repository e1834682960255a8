# src/tasksync/models/__init__.py
"""SQLAlchemy models for the tasksync application."""

from .outbox import OutboxEntry
from .task import Task

__all__ = ["OutboxEntry", "Task"]
