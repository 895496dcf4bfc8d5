from datetime import UTC, datetime, timedelta

import pytest

from app.models.domain.notification_domain import DeliveryOutcome
from app.models.domain.task_domain import TaskStatus
from app.services import email_templates
from app.services.email_service import EmailService
from app.services.notification_queue import NotificationQueues


@pytest.mark.asyncio
async def test_email_is_queued_when_queue_available(email_service, queues, mail_transport, make_task, bob):
    outcome = await email_service.send_task_assigned_email(bob, make_task(), "Alice")

    assert outcome == DeliveryOutcome.QUEUED
    assert mail_transport.sent == []
    job = await queues.email.claim_next()
    assert job.email_data().to == bob.email


@pytest.mark.asyncio
async def test_falls_back_to_direct_send_without_queue(
    disabled_redis_client, mail_transport, make_task, bob
):
    service = EmailService(NotificationQueues(disabled_redis_client), mail_transport)

    outcome = await service.send_task_status_changed_email(bob, make_task(), "Alice")

    assert outcome == DeliveryOutcome.SENT_DIRECT
    assert mail_transport.sent[0]["subject"] == "Task Status Updated: Ship release"


@pytest.mark.asyncio
async def test_direct_send_failure_is_dropped_not_raised(
    disabled_redis_client, mail_transport, make_task, bob
):
    mail_transport.always_fail = True
    service = EmailService(NotificationQueues(disabled_redis_client), mail_transport)

    outcome = await service.send_comment_notification_email(bob, make_task(), "Carol", "Hi")

    assert outcome == DeliveryOutcome.DROPPED


@pytest.mark.asyncio
async def test_dropped_without_any_delivery_path(disabled_redis_client, mail_transport, make_task, bob):
    mail_transport.configured = False
    service = EmailService(NotificationQueues(disabled_redis_client), mail_transport)

    assert service.is_active() is False
    assert await service.send_task_assigned_email(bob, make_task(), "Alice") == DeliveryOutcome.DROPPED


@pytest.mark.asyncio
async def test_queue_email_with_delay(email_service, queues, clock):
    rendered = email_templates.task_assigned("Bob", "Ship", "T1", "Alice")

    assert await email_service.queue_email("bob@example.com", rendered, delay_seconds=10) == (
        DeliveryOutcome.QUEUED
    )
    assert await queues.email.claim_next() is None
    clock.advance(10)
    assert await queues.email.claim_next() is not None


@pytest.mark.asyncio
async def test_reminder_scheduled_lead_hours_before_due(email_service, queues, clock, make_task, bob):
    due = datetime.fromtimestamp(clock.now, UTC) + timedelta(hours=30)

    assert await email_service.schedule_task_reminder(make_task(assigned_to=bob, due_date=due)) is True

    clock.advance(6 * 3600 - 1)
    assert await queues.task_reminders.claim_next() is None
    clock.advance(1)
    assert (await queues.task_reminders.claim_next()).reminder_data().task_id == "task-1"


@pytest.mark.asyncio
async def test_reminder_custom_lead(email_service, clock, make_task, bob):
    due = datetime.fromtimestamp(clock.now, UTC) + timedelta(hours=2)
    task = make_task(assigned_to=bob, due_date=due)

    assert await email_service.schedule_task_reminder(task) is False
    assert await email_service.schedule_task_reminder(task, lead_hours=1) is True


@pytest.mark.asyncio
async def test_reminder_requires_assignee_due_date_and_open_task(email_service, make_task, bob):
    due = datetime.now(UTC) + timedelta(days=5)

    assert await email_service.schedule_task_reminder(make_task(due_date=due)) is False
    assert await email_service.schedule_task_reminder(make_task(assigned_to=bob)) is False
    assert (
        await email_service.schedule_task_reminder(
            make_task(assigned_to=bob, due_date=due, status=TaskStatus.COMPLETED)
        )
        is False
    )


def test_templates_escape_user_content():
    rendered = email_templates.comment_added(
        "Bob", "<b>Ship</b>", "T1", "Carol", "<script>alert(1)</script>"
    )

    assert "<script>" not in rendered.html
    assert "&lt;script&gt;" in rendered.html
    assert "/tasks/T1" in rendered.html
    assert "<script>alert(1)</script>" in rendered.text


def test_deadline_reminder_subject():
    rendered = email_templates.deadline_reminder("Bob", "Ship", "T1", datetime(2026, 1, 2, tzinfo=UTC))

    assert rendered.subject == "⏰ Reminder: Ship is due soon"
