from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel, Field


class ClientEvent(str, Enum):
    """Events sent by clients over the socket."""

    JOIN_TASK = "join-task"
    LEAVE_TASK = "leave-task"


class ServerEvent(str, Enum):
    """Events pushed to clients."""

    TASK_CREATED = "task:created"
    TASK_UPDATED = "task:updated"
    TASK_DELETED = "task:deleted"
    COMMENT_ADDED = "comment:added"
    COMMENT_DELETED = "comment:deleted"
    FILE_UPLOADED = "file:uploaded"
    FILE_DELETED = "file:deleted"


def user_room(user_id: str) -> str:
    return f"user:{user_id}"


def task_room(task_id: str) -> str:
    return f"task:{task_id}"


class SocketSession(BaseModel):
    """Ephemeral per-connection state, never persisted."""

    sid: str
    user_id: str
    email: str | None = None
    rooms: set[str] = Field(default_factory=set)
    connected_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
