"""
Side effects of task/comment/file mutations.

Called by the request layer after the authoritative write has succeeded.
For each mutation the dispatcher:

1. resolves who should be notified and hands those emails to the email
   service (queued, or sent inline when the queue is down),
2. invalidates the cache entries the mutation could have staled,
3. pushes the realtime event to the right room (or everyone).

Steps 2 and 3 run concurrently and independently; neither waits on the
other and a failure in one does not stop the other. None of these steps can
fail the mutation itself: every dependency reports failure as a value.
"""

import asyncio
from collections.abc import Awaitable, Iterable
from dataclasses import dataclass, field
from typing import Any

from app.infrastructure.observability.logging import get_logger
from app.models.domain.notification_domain import DeliveryOutcome
from app.models.domain.realtime_domain import ServerEvent
from app.models.domain.task_domain import CommentRecord, FileRecord, TaskRecord, UserRef
from app.services.cache_service import CacheKeys, CacheService
from app.services.email_service import EmailService
from app.services.realtime.session_registry import RealtimeSessionRegistry

logger = get_logger(__name__)

TASK_LIST_PATTERNS = (CacheKeys.ALL_TASK_LISTS, CacheKeys.ALL_ANALYTICS)


@dataclass
class NotificationRecord:
    kind: str
    recipient_id: str
    outcome: DeliveryOutcome


@dataclass
class DispatchReport:
    """What a single mutation triggered, for logging and assertions."""

    mutation: str
    notifications: list[NotificationRecord] = field(default_factory=list)
    invalidated: list[str] = field(default_factory=list)
    events: list[str] = field(default_factory=list)
    reminder_scheduled: bool = False

    def notified(self, kind: str | None = None) -> list[str]:
        return [n.recipient_id for n in self.notifications if kind is None or n.kind == kind]


class MutationEventDispatcher:
    def __init__(
        self,
        cache: CacheService,
        email_service: EmailService,
        realtime: RealtimeSessionRegistry,
    ):
        self.cache = cache
        self.email_service = email_service
        self.realtime = realtime

    # Tasks
    async def task_created(self, task: TaskRecord, actor: UserRef) -> DispatchReport:
        report = DispatchReport(mutation="task_created")

        assignee = task.assigned_to
        if assignee and assignee.id != actor.id:
            outcome = await self.email_service.send_task_assigned_email(assignee, task, actor.name)
            report.notifications.append(NotificationRecord("assigned", assignee.id, outcome))

        report.reminder_scheduled = await self.email_service.schedule_task_reminder(task)

        await self._run_side_effects(
            report,
            self._invalidate(report, keys=(), patterns=TASK_LIST_PATTERNS),
            self._broadcast(report, ServerEvent.TASK_CREATED, task.to_event()),
        )
        return self._finish(report, task_id=task.id, actor_id=actor.id)

    async def task_updated(
        self, previous: TaskRecord, task: TaskRecord, actor: UserRef
    ) -> DispatchReport:
        """`previous` must be captured before the update was applied."""
        report = DispatchReport(mutation="task_updated")

        new_assignee = task.assigned_to
        assignee_changed = task.assignee_id != previous.assignee_id

        if new_assignee and assignee_changed and new_assignee.id != actor.id:
            outcome = await self.email_service.send_task_assigned_email(new_assignee, task, actor.name)
            report.notifications.append(NotificationRecord("assigned", new_assignee.id, outcome))

        if task.status != previous.status:
            for recipient in self._status_recipients(task, actor):
                outcome = await self.email_service.send_task_status_changed_email(
                    recipient, task, actor.name
                )
                report.notifications.append(
                    NotificationRecord("status_changed", recipient.id, outcome)
                )

        if assignee_changed or task.due_date != previous.due_date:
            report.reminder_scheduled = await self.email_service.schedule_task_reminder(task)

        await self._run_side_effects(
            report,
            self._invalidate(report, keys=(CacheKeys.task(task.id),), patterns=TASK_LIST_PATTERNS),
            self._emit_to_task(report, task.id, [(ServerEvent.TASK_UPDATED, task.to_event())]),
        )
        return self._finish(report, task_id=task.id, actor_id=actor.id)

    async def task_deleted(self, task_id: str, actor: UserRef | None = None) -> DispatchReport:
        report = DispatchReport(mutation="task_deleted")
        await self._run_side_effects(
            report,
            self._invalidate(report, keys=(CacheKeys.task(task_id),), patterns=TASK_LIST_PATTERNS),
            self._broadcast(report, ServerEvent.TASK_DELETED, {"taskId": task_id}),
        )
        return self._finish(report, task_id=task_id, actor_id=actor.id if actor else None)

    @staticmethod
    def _status_recipients(task: TaskRecord, actor: UserRef) -> list[UserRef]:
        # Creator and assignee are notified independently, even when they are the same user
        recipients = []
        if task.created_by.id != actor.id:
            recipients.append(task.created_by)
        if task.assigned_to and task.assigned_to.id != actor.id:
            recipients.append(task.assigned_to)
        return recipients

    # Comments
    async def comment_added(
        self, task: TaskRecord, comment: CommentRecord, author: UserRef
    ) -> DispatchReport:
        report = DispatchReport(mutation="comment_added")

        recipients: dict[str, UserRef] = {}
        for user in (task.created_by, task.assigned_to):
            if user and user.id != author.id:
                recipients.setdefault(user.id, user)

        for recipient in recipients.values():
            outcome = await self.email_service.send_comment_notification_email(
                recipient, task, author.name, comment.content
            )
            report.notifications.append(NotificationRecord("comment", recipient.id, outcome))

        await self._run_side_effects(
            report,
            self._invalidate(report, keys=(CacheKeys.task_comments(task.id),), patterns=()),
            self._emit_to_task(report, task.id, [(ServerEvent.COMMENT_ADDED, comment.to_event())]),
        )
        return self._finish(report, task_id=task.id, actor_id=author.id)

    async def comment_deleted(self, task_id: str, comment_id: str) -> DispatchReport:
        report = DispatchReport(mutation="comment_deleted")
        await self._run_side_effects(
            report,
            self._invalidate(
                report,
                keys=(CacheKeys.comment(comment_id), CacheKeys.task_comments(task_id)),
                patterns=(),
            ),
            self._emit_to_task(
                report, task_id, [(ServerEvent.COMMENT_DELETED, {"commentId": comment_id})]
            ),
        )
        return self._finish(report, task_id=task_id)

    # Files
    async def files_uploaded(self, task_id: str, files: Iterable[FileRecord]) -> DispatchReport:
        report = DispatchReport(mutation="files_uploaded")
        events = [(ServerEvent.FILE_UPLOADED, f.to_event()) for f in files]
        await self._run_side_effects(
            report,
            self._invalidate(report, keys=(CacheKeys.task_files(task_id),), patterns=()),
            self._emit_to_task(report, task_id, events),
        )
        return self._finish(report, task_id=task_id)

    async def file_deleted(self, task_id: str, file_id: str) -> DispatchReport:
        report = DispatchReport(mutation="file_deleted")
        await self._run_side_effects(
            report,
            self._invalidate(report, keys=(CacheKeys.task_files(task_id),), patterns=()),
            self._emit_to_task(report, task_id, [(ServerEvent.FILE_DELETED, {"fileId": file_id})]),
        )
        return self._finish(report, task_id=task_id)

    # Side effects
    async def _run_side_effects(self, report: DispatchReport, *effects: Awaitable[None]) -> None:
        results = await asyncio.gather(*effects, return_exceptions=True)
        for result in results:
            if isinstance(result, BaseException):
                logger.error(
                    "Mutation side effect failed",
                    mutation=report.mutation,
                    error=str(result),
                    error_type=type(result).__name__,
                )

    async def _invalidate(
        self, report: DispatchReport, keys: Iterable[str], patterns: Iterable[str]
    ) -> None:
        for key in keys:
            if await self.cache.delete(key):
                report.invalidated.append(key)
            elif self.cache.is_active():
                logger.warning("Cache invalidation failed", key=key, mutation=report.mutation)

        for pattern in patterns:
            if await self.cache.delete_pattern(pattern):
                report.invalidated.append(pattern)
            elif self.cache.is_active():
                logger.warning("Cache invalidation failed", pattern=pattern, mutation=report.mutation)

    async def _broadcast(self, report: DispatchReport, event: ServerEvent, payload: Any) -> None:
        await self.realtime.broadcast(event, payload)
        report.events.append(event.value)

    async def _emit_to_task(
        self, report: DispatchReport, task_id: str, events: list[tuple[ServerEvent, Any]]
    ) -> None:
        # Sequential so clients in the room see events in issue order
        for event, payload in events:
            await self.realtime.emit_to_task(task_id, event, payload)
            report.events.append(event.value)

    def _finish(self, report: DispatchReport, **context: Any) -> DispatchReport:
        logger.info(
            "Mutation side effects dispatched",
            mutation=report.mutation,
            notifications=len(report.notifications),
            dropped=sum(1 for n in report.notifications if n.outcome == DeliveryOutcome.DROPPED),
            invalidated=report.invalidated,
            events=report.events,
            **context,
        )
        return report
