"""Task CRUD endpoints.

Every mutation is recorded in the outbox by ``TaskService``; these handlers
only validate input and translate missing tasks into 404s.
"""

from fastapi import APIRouter, HTTPException, Response, status

from tasksync.api.v1.dependencies import TaskServiceDep
from tasksync.models import Task
from tasksync.schemas.task import TaskCreate, TaskResponse, TaskUpdate

router = APIRouter(prefix="/tasks", tags=["tasks"])

TASK_NOT_FOUND = "Task not found"


def _found(task: Task | None) -> Task:
    if task is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=TASK_NOT_FOUND)
    return task


@router.get("", response_model=list[TaskResponse])
async def list_tasks(tasks: TaskServiceDep) -> list[Task]:
    """Return all non-deleted tasks, newest first."""
    return tasks.list_tasks()


@router.get("/{task_id}", response_model=TaskResponse)
async def get_task(task_id: str, tasks: TaskServiceDep) -> Task:
    """Return one task."""
    return _found(tasks.get_task(task_id))


@router.post("", response_model=TaskResponse, status_code=status.HTTP_201_CREATED)
async def create_task(payload: TaskCreate, tasks: TaskServiceDep) -> Task:
    """Create a task and queue it for synchronization."""
    return tasks.create_task(payload.title, payload.description)


@router.put("/{task_id}", response_model=TaskResponse)
async def update_task(task_id: str, payload: TaskUpdate, tasks: TaskServiceDep) -> Task:
    """Apply a partial update and queue it for synchronization."""
    changes = payload.changes()
    if not changes:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="At least one field (title, description, completed) must be provided for update",
        )
    return _found(tasks.update_task(task_id, changes))


@router.delete("/{task_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_task(task_id: str, tasks: TaskServiceDep) -> Response:
    """Soft delete a task and queue the deletion."""
    if not tasks.delete_task(task_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=TASK_NOT_FOUND)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
