"""
Notification job models shared by the queue, the worker and the email service.
"""

from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class JobKind(str, Enum):
    EMAIL = "email"
    TASK_REMINDER = "task_reminder"


class JobState(str, Enum):
    WAITING = "waiting"
    DELAYED = "delayed"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


class DeliveryOutcome(str, Enum):
    """What happened to a notification at the moment it was requested."""

    QUEUED = "queued"
    SENT_DIRECT = "sent_direct"
    DROPPED = "dropped"


class JobPolicy(BaseModel):
    """Retry/backoff policy shared by every notification queue."""

    max_attempts: int = 3
    backoff_base_seconds: float = 2.0
    remove_on_complete: bool = True
    remove_on_fail: bool = False
    # Longest an attempt may run before its claim counts as abandoned
    lease_seconds: float = 120.0

    def backoff_delay(self, attempts_made: int) -> float:
        """Exponential backoff: base, 2*base, 4*base, ..."""
        return self.backoff_base_seconds * (2 ** max(attempts_made - 1, 0))


class EmailJobData(BaseModel):
    to: str
    subject: str
    html: str
    text: str | None = None


class TaskReminderJobData(BaseModel):
    task_id: str
    user_id: str
    task_title: str
    due_date: datetime


class NotificationJob(BaseModel):
    id: str
    queue: str
    kind: JobKind
    payload: dict[str, Any]
    attempts: int = 0
    max_attempts: int = 3
    state: JobState = JobState.WAITING
    run_at: float = 0.0
    last_error: str | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    finished_at: datetime | None = None

    @property
    def exhausted(self) -> bool:
        return self.attempts >= self.max_attempts

    def email_data(self) -> EmailJobData:
        return EmailJobData.model_validate(self.payload)

    def reminder_data(self) -> TaskReminderJobData:
        return TaskReminderJobData.model_validate(self.payload)
