"""
Notification email service.

Renders notification emails and hands them to the email queue. When the queue
is unavailable the message is sent inline through the SMTP transport if one is
configured, otherwise it is dropped. None of these paths raise: notifications
never block or fail the mutation that triggered them.
"""

from datetime import UTC, timedelta

from app.config import settings
from app.infrastructure.observability.logging import get_logger
from app.models.domain.notification_domain import (
    DeliveryOutcome,
    EmailJobData,
    TaskReminderJobData,
)
from app.models.domain.task_domain import TaskRecord, TaskStatus, UserRef
from app.services import email_templates
from app.services.email_templates import RenderedEmail
from app.services.mail_transport import MailTransportError, SmtpMailTransport
from app.services.notification_queue import NotificationQueues

logger = get_logger(__name__)


class EmailService:
    def __init__(self, queues: NotificationQueues, transport: SmtpMailTransport):
        self.queues = queues
        self.transport = transport

    def is_active(self) -> bool:
        return self.queues.is_active() or self.transport.configured

    async def queue_email(
        self, to: str, rendered: RenderedEmail, delay_seconds: float | None = None
    ) -> DeliveryOutcome:
        """Queue an email for background delivery, falling back to a direct send."""
        job = EmailJobData(to=to, subject=rendered.subject, html=rendered.html, text=rendered.text)

        if await self.queues.add_email_job(job, delay_seconds):
            return DeliveryOutcome.QUEUED

        if not self.transport.configured:
            logger.warning("Email dropped, no queue or transport available", to=to)
            return DeliveryOutcome.DROPPED

        try:
            await self.transport.send(job.to, job.subject, job.html, job.text)
        except MailTransportError as e:
            logger.error("Direct email send failed", to=to, error=str(e))
            return DeliveryOutcome.DROPPED

        return DeliveryOutcome.SENT_DIRECT

    async def send_task_assigned_email(
        self, recipient: UserRef, task: TaskRecord, assigned_by: str
    ) -> DeliveryOutcome:
        rendered = email_templates.task_assigned(recipient.name, task.title, task.id, assigned_by)
        return await self.queue_email(recipient.email, rendered)

    async def send_task_status_changed_email(
        self, recipient: UserRef, task: TaskRecord, changed_by: str
    ) -> DeliveryOutcome:
        rendered = email_templates.task_status_changed(
            recipient.name, task.title, task.id, task.status.value, changed_by
        )
        return await self.queue_email(recipient.email, rendered)

    async def send_comment_notification_email(
        self, recipient: UserRef, task: TaskRecord, commenter_name: str, content: str
    ) -> DeliveryOutcome:
        rendered = email_templates.comment_added(
            recipient.name, task.title, task.id, commenter_name, content
        )
        return await self.queue_email(recipient.email, rendered)

    async def schedule_task_reminder(self, task: TaskRecord, lead_hours: int | None = None) -> bool:
        """Schedule a deadline reminder for the task's assignee ahead of its due date."""
        if not task.assigned_to or not task.due_date or task.status == TaskStatus.COMPLETED:
            return False

        lead = settings.TASK_REMINDER_LEAD_HOURS if lead_hours is None else lead_hours
        due_date = task.due_date if task.due_date.tzinfo else task.due_date.replace(tzinfo=UTC)
        data = TaskReminderJobData(
            task_id=task.id,
            user_id=task.assigned_to.id,
            task_title=task.title,
            due_date=due_date,
        )
        return await self.queues.add_task_reminder_job(data, due_date - timedelta(hours=lead))
