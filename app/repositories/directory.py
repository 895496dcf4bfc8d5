"""
Read-only user/task lookups consumed by the realtime and notification layers.

Writes, analytics and file storage belong to the request-handling layer; the
pipeline only needs to resolve identities and re-check task state.
"""

from typing import Protocol

from app.db.helpers import fetch_one
from app.models.domain.task_domain import TaskRecord, UserRef


class UserDirectory(Protocol):
    async def get_user(self, user_id: str) -> UserRef | None: ...

    async def user_exists(self, user_id: str) -> bool: ...


class TaskDirectory(Protocol):
    async def get_task(self, task_id: str) -> TaskRecord | None: ...


_TASK_QUERY = """
    SELECT t.id, t.title, t.description, t.status, t.priority, t.due_date, t.tags,
           t.is_deleted, t.created_at, t.updated_at,
           c.id AS creator_id, c.name AS creator_name, c.email AS creator_email,
           a.id AS assignee_id, a.name AS assignee_name, a.email AS assignee_email
    FROM tasks t
    JOIN users c ON c.id = t.created_by
    LEFT JOIN users a ON a.id = t.assigned_to
    WHERE t.id = %s AND t.is_deleted = false
"""


class PostgresUserDirectory:
    async def get_user(self, user_id: str) -> UserRef | None:
        row = await fetch_one("SELECT id, name, email FROM users WHERE id = %s", (user_id,))
        if not row:
            return None
        return UserRef(id=str(row["id"]), name=row["name"], email=row["email"])

    async def user_exists(self, user_id: str) -> bool:
        row = await fetch_one("SELECT 1 AS found FROM users WHERE id = %s", (user_id,))
        return row is not None


class PostgresTaskDirectory:
    async def get_task(self, task_id: str) -> TaskRecord | None:
        row = await fetch_one(_TASK_QUERY, (task_id,))
        if not row:
            return None

        assignee = None
        if row["assignee_id"] is not None:
            assignee = UserRef(
                id=str(row["assignee_id"]), name=row["assignee_name"], email=row["assignee_email"]
            )

        return TaskRecord(
            id=str(row["id"]),
            title=row["title"],
            description=row["description"],
            status=row["status"],
            priority=row["priority"],
            due_date=row["due_date"],
            tags=row["tags"] or [],
            is_deleted=row["is_deleted"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            created_by=UserRef(
                id=str(row["creator_id"]), name=row["creator_name"], email=row["creator_email"]
            ),
            assigned_to=assignee,
        )
