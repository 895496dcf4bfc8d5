from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class TaskStatus(str, Enum):
    TODO = "todo"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class TaskPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class UserRef(BaseModel):
    """Populated user reference (the `name email` projection)."""

    id: str
    name: str
    email: str


class TaskRecord(BaseModel):
    """Task as returned by the persistence layer after a successful write."""

    model_config = ConfigDict(extra="allow")

    id: str
    title: str
    description: str | None = None
    status: TaskStatus = TaskStatus.TODO
    priority: TaskPriority = TaskPriority.MEDIUM
    due_date: datetime | None = None
    tags: list[str] = Field(default_factory=list)
    created_by: UserRef
    assigned_to: UserRef | None = None
    is_deleted: bool = False
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def assignee_id(self) -> str | None:
        return self.assigned_to.id if self.assigned_to else None

    def to_event(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


class CommentRecord(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str
    task_id: str
    user: UserRef
    content: str
    created_at: datetime | None = None

    def to_event(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


class FileRecord(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str
    task_id: str
    original_name: str
    mime_type: str
    size: int
    uploaded_by: str
    created_at: datetime | None = None

    def to_event(self) -> dict[str, Any]:
        return self.model_dump(mode="json")
