"""Shared API dependencies."""

from typing import Annotated

from fastapi import Depends
from sqlalchemy.orm import Session

from tasksync.db.session import get_db
from tasksync.services.remote import RemoteClient, get_remote_client
from tasksync.services.sync_service import SyncDispatcher, build_dispatcher
from tasksync.services.task_service import TaskService

# Type alias for database session dependency
SessionDep = Annotated[Session, Depends(get_db)]


def get_task_service(db: SessionDep) -> TaskService:
    """Return a task service bound to the request session."""
    return TaskService(db)


def get_remote_client_dep() -> RemoteClient:
    """Return the shared remote client."""
    return get_remote_client()


RemoteDep = Annotated[RemoteClient, Depends(get_remote_client_dep)]


def get_sync_dispatcher(db: SessionDep, remote: RemoteDep) -> SyncDispatcher:
    """Return a dispatcher bound to the request session."""
    return build_dispatcher(db, remote, remote.config)


TaskServiceDep = Annotated[TaskService, Depends(get_task_service)]
DispatcherDep = Annotated[SyncDispatcher, Depends(get_sync_dispatcher)]
