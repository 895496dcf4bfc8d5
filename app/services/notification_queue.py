"""
Redis-backed notification job queues.

Each named queue keeps its jobs under `queue:<name>:`:
    job:<id>    JSON job document
    id          id counter
    scheduled   sorted set of job ids scored by the time they become runnable
    active      sorted set of job ids with an attempt in flight, scored by the
                time their claim lease expires
    failed      sorted set of exhausted job ids scored by failure time

A job is claimed by removing it from `scheduled` (ZREM is atomic, so only one
worker can win the claim), which keeps at most one attempt in flight per job.
A claim that outlives its lease is treated as abandoned by a dead worker and
returned to `scheduled` by `requeue_stalled`; live claims are left alone.
Completed jobs are purged, exhausted jobs are retained for inspection.

Public enqueue operations never raise: an unavailable store is reported as
`False` so notifications stay best-effort.
"""

import time
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from app.config import settings
from app.infrastructure.observability.logging import get_logger
from app.models.domain.notification_domain import (
    EmailJobData,
    JobKind,
    JobPolicy,
    JobState,
    NotificationJob,
    TaskReminderJobData,
)
from app.services.infrastructure.redis_client import FastRedisClient

logger = get_logger(__name__)

EMAIL_QUEUE = "email"
TASK_REMINDER_QUEUE = "task-reminders"


class NotificationQueueError(Exception):
    """Raised when the queue store cannot complete an operation."""

    def __init__(self, message: str, operation: str | None = None, recoverable: bool = True):
        super().__init__(message)
        self.operation = operation
        self.recoverable = recoverable


def default_policy() -> JobPolicy:
    return JobPolicy(
        max_attempts=settings.QUEUE_MAX_ATTEMPTS,
        backoff_base_seconds=settings.QUEUE_BACKOFF_BASE_SECONDS,
        lease_seconds=settings.QUEUE_LEASE_SECONDS,
    )


class NotificationQueue:
    """A single durable, retryable job queue."""

    def __init__(
        self,
        name: str,
        redis_client: FastRedisClient,
        policy: JobPolicy | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.name = name
        self.policy = policy or default_policy()
        self._redis = redis_client
        self._clock = clock
        self._prefix = f"queue:{name}"

    # Keys
    def _job_key(self, job_id: str) -> str:
        return f"{self._prefix}:job:{job_id}"

    @property
    def _id_key(self) -> str:
        return f"{self._prefix}:id"

    @property
    def _scheduled_key(self) -> str:
        return f"{self._prefix}:scheduled"

    @property
    def _active_key(self) -> str:
        return f"{self._prefix}:active"

    @property
    def _failed_key(self) -> str:
        return f"{self._prefix}:failed"

    def is_active(self) -> bool:
        return self._redis.enabled

    async def _client(self, operation: str):
        try:
            return await self._redis.connection()
        except Exception as e:
            raise NotificationQueueError(
                f"Queue '{self.name}' store unavailable: {e}", operation=operation
            ) from e

    def _save(self, pipe, job: NotificationJob) -> None:
        pipe.set(self._job_key(job.id), job.model_dump_json())

    async def enqueue(
        self, kind: JobKind, payload: dict[str, Any], delay_seconds: float | None = None
    ) -> bool:
        """Add a job; with a delay it only becomes runnable once the delay elapses."""
        if not self.is_active():
            logger.warning("Queue system not enabled, skipping job", queue=self.name, kind=kind.value)
            return False

        try:
            client = await self._client("enqueue")
            job_id = str(await client.incr(self._id_key))
            now = self._clock()
            delayed = bool(delay_seconds and delay_seconds > 0)
            job = NotificationJob(
                id=job_id,
                queue=self.name,
                kind=kind,
                payload=payload,
                max_attempts=self.policy.max_attempts,
                state=JobState.DELAYED if delayed else JobState.WAITING,
                run_at=now + delay_seconds if delayed else now,
            )

            async with client.pipeline(transaction=True) as pipe:
                self._save(pipe, job)
                pipe.zadd(self._scheduled_key, {job.id: job.run_at})
                await pipe.execute()

            logger.info(
                "Job enqueued",
                queue=self.name,
                job_id=job.id,
                kind=kind.value,
                delay_seconds=delay_seconds if delayed else 0,
            )
            return True

        except Exception as e:
            logger.error("Failed to add job", queue=self.name, kind=kind.value, error=str(e))
            return False

    async def enqueue_scheduled(
        self, kind: JobKind, payload: dict[str, Any], run_at: datetime
    ) -> bool:
        """Schedule a job for `run_at`; a time already passed discards the job."""
        if not self.is_active():
            logger.warning("Queue system not enabled, skipping scheduled job", queue=self.name)
            return False

        if run_at.tzinfo is None:
            run_at = run_at.replace(tzinfo=UTC)
        delay = run_at.timestamp() - self._clock()
        if delay <= 0:
            logger.warning(
                "Scheduled time has already passed, skipping job",
                queue=self.name,
                kind=kind.value,
                run_at=run_at.isoformat(),
            )
            return False

        return await self.enqueue(kind, payload, delay_seconds=delay)

    async def claim_next(self) -> NotificationJob | None:
        """
        Take ownership of the next runnable job, if any.

        Raises:
            NotificationQueueError: when the store is unreachable
        """
        client = await self._client("claim")
        try:
            now = self._clock()
            job_ids = await client.zrangebyscore(self._scheduled_key, "-inf", now, start=0, num=1)
            if not job_ids:
                return None

            job_id = str(job_ids[0])
            if not await client.zrem(self._scheduled_key, job_id):
                # Another worker won the claim
                return None

            await client.zadd(self._active_key, {job_id: now + self.policy.lease_seconds})
            raw = await client.get(self._job_key(job_id))
            if raw is None:
                logger.warning("Claimed job has no document, dropping", queue=self.name, job_id=job_id)
                await client.zrem(self._active_key, job_id)
                return None

            job = NotificationJob.model_validate_json(raw)
            job.state = JobState.ACTIVE
            job.attempts += 1

            await client.set(self._job_key(job.id), job.model_dump_json())
            return job

        except Exception as e:
            raise NotificationQueueError(f"Claim failed: {e}", operation="claim") from e

    async def complete(self, job: NotificationJob) -> None:
        client = await self._client("complete")
        job.state = JobState.COMPLETED
        job.finished_at = datetime.now(UTC)
        try:
            async with client.pipeline(transaction=True) as pipe:
                pipe.zrem(self._active_key, job.id)
                if self.policy.remove_on_complete:
                    pipe.delete(self._job_key(job.id))
                else:
                    self._save(pipe, job)
                await pipe.execute()
        except Exception as e:
            raise NotificationQueueError(f"Complete failed: {e}", operation="complete") from e

        logger.info("Job completed", queue=self.name, job_id=job.id, attempts=job.attempts)

    async def fail(self, job: NotificationJob, error: str) -> bool:
        """
        Record a failed attempt.

        Returns:
            True if the job was rescheduled, False if it is now terminally failed
        """
        client = await self._client("fail")
        job.last_error = error
        retry = not job.exhausted

        try:
            async with client.pipeline(transaction=True) as pipe:
                pipe.zrem(self._active_key, job.id)
                if retry:
                    delay = self.policy.backoff_delay(job.attempts)
                    job.state = JobState.DELAYED
                    job.run_at = self._clock() + delay
                    self._save(pipe, job)
                    pipe.zadd(self._scheduled_key, {job.id: job.run_at})
                else:
                    job.state = JobState.FAILED
                    job.finished_at = datetime.now(UTC)
                    if self.policy.remove_on_fail:
                        pipe.delete(self._job_key(job.id))
                    else:
                        self._save(pipe, job)
                        pipe.zadd(self._failed_key, {job.id: job.finished_at.timestamp()})
                await pipe.execute()
        except Exception as e:
            raise NotificationQueueError(f"Fail bookkeeping failed: {e}", operation="fail") from e

        if retry:
            logger.warning(
                "Job attempt failed, retrying",
                queue=self.name,
                job_id=job.id,
                attempts=job.attempts,
                max_attempts=job.max_attempts,
                retry_in_seconds=job.run_at - self._clock(),
                error=error,
            )
        else:
            logger.error(
                "Job failed permanently",
                queue=self.name,
                job_id=job.id,
                attempts=job.attempts,
                error=error,
            )
        return retry

    async def requeue_stalled(self) -> int:
        """Return jobs whose claim lease expired (worker died mid-attempt) to the schedule.

        Claims still inside their lease belong to a live worker and are kept.
        """
        client = await self._client("requeue_stalled")
        now = self._clock()
        expired = await client.zrangebyscore(self._active_key, "-inf", now)
        requeued = 0
        for job_id in expired:
            # Losing the ZREM means the owner finished or another worker requeued it
            if not await client.zrem(self._active_key, job_id):
                continue
            await client.zadd(self._scheduled_key, {str(job_id): now})
            requeued += 1

        if requeued:
            logger.warning("Requeued stalled jobs", queue=self.name, count=requeued)
        return requeued

    async def get_job(self, job_id: str) -> NotificationJob | None:
        client = await self._client("get_job")
        raw = await client.get(self._job_key(job_id))
        return NotificationJob.model_validate_json(raw) if raw else None

    async def failed_jobs(self, limit: int = 50) -> list[NotificationJob]:
        client = await self._client("failed_jobs")
        job_ids = await client.zrange(self._failed_key, 0, limit - 1)
        jobs = []
        for job_id in job_ids:
            job = await self.get_job(str(job_id))
            if job:
                jobs.append(job)
        return jobs

    async def counts(self) -> dict[str, int]:
        try:
            client = await self._client("counts")
            return {
                "scheduled": int(await client.zcard(self._scheduled_key)),
                "active": int(await client.zcard(self._active_key)),
                "failed": int(await client.zcard(self._failed_key)),
            }
        except Exception as e:
            logger.error("Failed to read queue counts", queue=self.name, error=str(e))
            return {}


class NotificationQueues:
    """The email and task-reminder queues over one Redis connection."""

    def __init__(
        self,
        redis_client: FastRedisClient,
        policy: JobPolicy | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self._redis = redis_client
        policy = policy or default_policy()
        self.email = NotificationQueue(EMAIL_QUEUE, redis_client, policy, clock)
        self.task_reminders = NotificationQueue(TASK_REMINDER_QUEUE, redis_client, policy, clock)

    async def initialize(self) -> None:
        """Enable the queues, or leave them disabled without failing startup."""
        try:
            await self._redis.initialize()
        except RuntimeError as e:
            logger.error("Failed to initialize queue system", error=str(e))
            return

        if self._redis.enabled:
            logger.info("Queue system initialized", queues=[EMAIL_QUEUE, TASK_REMINDER_QUEUE])
        else:
            logger.info("Redis URL not provided, queue system disabled")

    def is_active(self) -> bool:
        return self._redis.enabled

    async def ping(self) -> bool:
        if not self.is_active():
            return False
        return await self._redis.ping()

    async def add_email_job(self, data: EmailJobData, delay_seconds: float | None = None) -> bool:
        return await self.email.enqueue(JobKind.EMAIL, data.model_dump(mode="json"), delay_seconds)

    async def add_task_reminder_job(self, data: TaskReminderJobData, run_at: datetime) -> bool:
        return await self.task_reminders.enqueue_scheduled(
            JobKind.TASK_REMINDER, data.model_dump(mode="json"), run_at
        )

    async def counts(self) -> dict[str, dict[str, int]]:
        return {
            EMAIL_QUEUE: await self.email.counts(),
            TASK_REMINDER_QUEUE: await self.task_reminders.counts(),
        }

    async def close(self) -> None:
        await self._redis.close()
        logger.info("Queue system closed")
