from datetime import UTC, datetime
from unittest.mock import AsyncMock

import pytest

from app.db.helpers import DatabaseError, fetch_one
from app.models.domain.task_domain import TaskStatus
from app.repositories.directory import PostgresTaskDirectory, PostgresUserDirectory


@pytest.mark.asyncio
async def test_get_user_maps_row(monkeypatch):
    monkeypatch.setattr(
        "app.repositories.directory.fetch_one",
        AsyncMock(return_value={"id": 7, "name": "Bob", "email": "bob@example.com"}),
    )

    user = await PostgresUserDirectory().get_user("7")

    assert user.id == "7"
    assert user.email == "bob@example.com"


@pytest.mark.asyncio
async def test_user_exists_false_when_no_row(monkeypatch):
    monkeypatch.setattr("app.repositories.directory.fetch_one", AsyncMock(return_value=None))

    assert await PostgresUserDirectory().user_exists("ghost") is False


@pytest.mark.asyncio
async def test_get_task_maps_creator_and_assignee(monkeypatch):
    now = datetime.now(UTC)
    row = {
        "id": "task-1",
        "title": "Ship release",
        "description": None,
        "status": "in_progress",
        "priority": "high",
        "due_date": now,
        "tags": None,
        "is_deleted": False,
        "created_at": now,
        "updated_at": now,
        "creator_id": "user-a",
        "creator_name": "Alice",
        "creator_email": "alice@example.com",
        "assignee_id": "user-b",
        "assignee_name": "Bob",
        "assignee_email": "bob@example.com",
    }
    monkeypatch.setattr("app.repositories.directory.fetch_one", AsyncMock(return_value=row))

    task = await PostgresTaskDirectory().get_task("task-1")

    assert task.status == TaskStatus.IN_PROGRESS
    assert task.created_by.name == "Alice"
    assert task.assignee_id == "user-b"
    assert task.tags == []


@pytest.mark.asyncio
async def test_unassigned_task(monkeypatch):
    row = {
        "id": "task-2",
        "title": "Triage",
        "description": "",
        "status": "todo",
        "priority": "low",
        "due_date": None,
        "tags": ["ops"],
        "is_deleted": False,
        "created_at": None,
        "updated_at": None,
        "creator_id": "user-a",
        "creator_name": "Alice",
        "creator_email": "alice@example.com",
        "assignee_id": None,
        "assignee_name": None,
        "assignee_email": None,
    }
    monkeypatch.setattr("app.repositories.directory.fetch_one", AsyncMock(return_value=row))

    task = await PostgresTaskDirectory().get_task("task-2")

    assert task.assigned_to is None


@pytest.mark.asyncio
async def test_fetch_without_pool_raises_database_error():
    with pytest.raises(DatabaseError) as exc:
        await fetch_one("SELECT 1")

    assert exc.value.recoverable is False
