"""
Notification workers.

Each worker drains one queue, one job at a time: claim -> handle -> complete,
or on a handler exception hand the failure back to the queue, which applies
the retry/backoff policy and retains the job once attempts are exhausted.
"""

import asyncio
from collections.abc import Awaitable, Callable
from contextlib import suppress
from datetime import UTC, datetime
from typing import Any

from app.config import settings
from app.db.pool import db_pool
from app.infrastructure.observability.logging import bind_log_context, clear_log_context, get_logger
from app.models.domain.notification_domain import NotificationJob
from app.models.domain.task_domain import TaskStatus
from app.repositories.directory import (
    PostgresTaskDirectory,
    PostgresUserDirectory,
    TaskDirectory,
    UserDirectory,
)
from app.services import email_templates
from app.services.infrastructure.redis_client import FastRedisClient
from app.services.mail_transport import SmtpMailTransport
from app.services.notification_queue import (
    NotificationQueue,
    NotificationQueueError,
    NotificationQueues,
)

logger = get_logger(__name__)

JobHandler = Callable[[NotificationJob], Awaitable[dict[str, Any]]]

ERROR_BACKOFF_SECONDS = 5.0


def _as_utc(value: datetime) -> datetime:
    return value.replace(tzinfo=UTC) if value.tzinfo is None else value.astimezone(UTC)


class EmailJobHandler:
    def __init__(self, transport: SmtpMailTransport):
        self.transport = transport

    async def __call__(self, job: NotificationJob) -> dict[str, Any]:
        data = job.email_data()
        # MailTransportError propagates so the queue retries
        await self.transport.send(data.to, data.subject, data.html, data.text)
        return {"success": True, "to": data.to}


class TaskReminderJobHandler:
    """Sends a deadline reminder unless the task or user no longer qualifies."""

    def __init__(self, tasks: TaskDirectory, users: UserDirectory, transport: SmtpMailTransport):
        self.tasks = tasks
        self.users = users
        self.transport = transport

    async def __call__(self, job: NotificationJob) -> dict[str, Any]:
        data = job.reminder_data()

        task = await self.tasks.get_task(data.task_id)
        if not task or task.is_deleted or task.status == TaskStatus.COMPLETED:
            logger.info("Task not found or already completed, skipping reminder", task_id=data.task_id)
            return {"success": False, "reason": "Task not found or completed"}

        # A reassignment or reschedule queues a fresh reminder; this one is superseded
        if not task.assigned_to or task.assigned_to.id != data.user_id:
            logger.info("Task reassigned, skipping reminder", task_id=task.id, user_id=data.user_id)
            return {"success": False, "reason": "Task reassigned"}
        if task.due_date is None or _as_utc(task.due_date) != _as_utc(data.due_date):
            logger.info("Task rescheduled, skipping reminder", task_id=task.id)
            return {"success": False, "reason": "Task rescheduled"}

        user = await self.users.get_user(data.user_id)
        if not user:
            logger.info("User not found, skipping reminder", user_id=data.user_id)
            return {"success": False, "reason": "User not found"}

        rendered = email_templates.deadline_reminder(user.name, task.title, task.id, task.due_date)
        await self.transport.send(user.email, rendered.subject, rendered.html, rendered.text)
        return {"success": True, "user_id": user.id, "task_id": task.id}


class NotificationWorker:
    def __init__(
        self,
        queue: NotificationQueue,
        handler: JobHandler,
        poll_interval: float | None = None,
    ):
        self.queue = queue
        self.handler = handler
        self.poll_interval = (
            settings.QUEUE_POLL_INTERVAL_SECONDS if poll_interval is None else poll_interval
        )
        self._task: asyncio.Task | None = None
        self._stopping = False

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> bool:
        """
        Process at most one job.

        Returns:
            True if a job was taken from the queue, False if none was runnable
        """
        job = await self.queue.claim_next()
        if job is None:
            return False

        bind_log_context(queue=self.queue.name, job_id=job.id, attempt=job.attempts)
        try:
            result = await self.handler(job)
        except Exception as e:
            await self.queue.fail(job, f"{type(e).__name__}: {e}")
        else:
            await self.queue.complete(job)
            logger.debug("Job result", result=result)
        finally:
            clear_log_context("queue", "job_id", "attempt")
        return True

    async def run_forever(self) -> None:
        logger.info("Notification worker started", queue=self.queue.name)
        try:
            await self.queue.requeue_stalled()
        except NotificationQueueError as e:
            logger.error("Could not requeue stalled jobs", queue=self.queue.name, error=str(e))

        while not self._stopping:
            try:
                processed = await self.run_once()
            except NotificationQueueError as e:
                logger.error("Queue unavailable, worker backing off", queue=self.queue.name, error=str(e))
                await asyncio.sleep(ERROR_BACKOFF_SECONDS)
                continue
            except Exception as e:
                logger.error(
                    "Error in notification worker", queue=self.queue.name, error=str(e), error_type=type(e).__name__
                )
                await asyncio.sleep(ERROR_BACKOFF_SECONDS)
                continue

            if not processed:
                await asyncio.sleep(self.poll_interval)

        logger.info("Notification worker stopped", queue=self.queue.name)

    def start(self) -> None:
        if self.running:
            return
        self._stopping = False
        self._task = asyncio.create_task(self.run_forever(), name=f"worker:{self.queue.name}")

    async def stop(self) -> None:
        self._stopping = True
        if self._task is None:
            return
        self._task.cancel()
        with suppress(asyncio.CancelledError):
            await self._task
        self._task = None


def start_notification_workers(
    queues: NotificationQueues,
    transport: SmtpMailTransport,
    tasks: TaskDirectory | None = None,
    users: UserDirectory | None = None,
) -> list[NotificationWorker]:
    """Start the workers that can run; missing infrastructure is silent, not fatal."""
    if not queues.is_active():
        logger.info("Notification queues not available, workers not started")
        return []

    if not transport.configured:
        logger.info("SMTP not configured, workers not started")
        return []

    workers = [NotificationWorker(queues.email, EmailJobHandler(transport))]

    if tasks is not None and users is not None:
        workers.append(
            NotificationWorker(queues.task_reminders, TaskReminderJobHandler(tasks, users, transport))
        )
    else:
        logger.info("Persistence lookups unavailable, task reminder worker not started")

    for worker in workers:
        worker.start()
    return workers


async def _run_standalone(with_reminders: bool) -> None:
    queues = NotificationQueues(FastRedisClient(settings.REDIS_URL, name="queue"))
    await queues.initialize()

    tasks = users = None
    if with_reminders:
        await db_pool.initialize()
        if db_pool.initialized:
            tasks, users = PostgresTaskDirectory(), PostgresUserDirectory()

    transport = SmtpMailTransport()
    workers = start_notification_workers(queues, transport, tasks, users)
    selected = [w for w in workers if (w.queue is queues.task_reminders) == with_reminders]
    for worker in workers:
        if worker not in selected:
            await worker.stop()

    if not selected:
        logger.warning("Nothing to run, exiting", reminders=with_reminders)
        await queues.close()
        return

    try:
        await asyncio.gather(*(w._task for w in selected))
    finally:
        for worker in selected:
            await worker.stop()
        await queues.close()
        await db_pool.close()


async def run_email_worker() -> None:
    await _run_standalone(with_reminders=False)


async def run_task_reminder_worker() -> None:
    await _run_standalone(with_reminders=True)
