# src/tasksync/schemas/task.py
"""Task-related Pydantic schemas."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

DESCRIPTION_MAX_LENGTH = 500


def _clip_description(value: str | None) -> str | None:
    if value is None:
        return None
    return value[:DESCRIPTION_MAX_LENGTH]


class TaskCreate(BaseModel):
    """Schema for creating a new task."""

    title: str = Field(..., description="Task title; surrounding whitespace is trimmed")
    description: str | None = Field(None, description="Free text, truncated to 500 characters")

    model_config = ConfigDict(strict=True)

    @field_validator("title")
    @classmethod
    def _title_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Title is required and must be a non-empty string")
        return value

    @field_validator("description")
    @classmethod
    def _truncate_description(cls, value: str | None) -> str | None:
        return _clip_description(value)


class TaskUpdate(BaseModel):
    """Schema for a partial task update; at least one field is required."""

    title: str | None = None
    description: str | None = None
    completed: bool | None = None

    model_config = ConfigDict(strict=True)

    @field_validator("title")
    @classmethod
    def _title_not_blank(cls, value: str | None) -> str | None:
        if value is None:
            return None
        value = value.strip()
        if not value:
            raise ValueError("Title must be a non-empty string if provided")
        return value

    @field_validator("description")
    @classmethod
    def _truncate_description(cls, value: str | None) -> str | None:
        return _clip_description(value)

    def changes(self) -> dict[str, object]:
        """Return only the fields the caller actually sent."""
        return self.model_dump(exclude_unset=True, exclude_none=True)


class TaskResponse(BaseModel):
    """Schema for task information returned by the API."""

    id: str
    title: str
    description: str | None
    completed: bool
    created_at: datetime
    updated_at: datetime
    is_deleted: bool
    sync_status: str
    server_id: str | None = None
    last_synced_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)
