"""
HTML/plain-text bodies for notification emails.
"""

from dataclasses import dataclass
from datetime import datetime
from html import escape

from app.config import settings

_PRIMARY_GRADIENT = "linear-gradient(135deg, #667eea 0%, #764ba2 100%)"
_ALERT_GRADIENT = "linear-gradient(135deg, #ff6b6b 0%, #ee5a6f 100%)"

_STATUS_EMOJI = {
    "todo": "📝",
    "in_progress": "🔄",
    "completed": "✅",
}


@dataclass(frozen=True)
class RenderedEmail:
    subject: str
    html: str
    text: str


def _layout(title: str, body: str, task_id: str, header_gradient: str = _PRIMARY_GRADIENT) -> str:
    app_name = escape(settings.APP_NAME)
    link = escape(settings.task_url(task_id))
    return f"""<!DOCTYPE html>
<html>
<head>
  <style>
    body {{ font-family: Arial, sans-serif; line-height: 1.6; color: #333; }}
    .container {{ max-width: 600px; margin: 0 auto; padding: 20px; }}
    .header {{ background: {header_gradient}; color: white; padding: 30px; text-align: center; border-radius: 10px 10px 0 0; }}
    .content {{ background: #f9f9f9; padding: 30px; border-radius: 0 0 10px 10px; }}
    .box {{ background: white; border-left: 4px solid #667eea; padding: 15px; margin: 20px 0; border-radius: 5px; }}
    .deadline {{ background: #fff3cd; border-left-color: #ffc107; }}
    .button {{ display: inline-block; padding: 12px 30px; background: {_PRIMARY_GRADIENT}; color: white; text-decoration: none; border-radius: 5px; margin-top: 20px; }}
    .footer {{ text-align: center; margin-top: 20px; color: #666; font-size: 14px; }}
  </style>
</head>
<body>
  <div class="container">
    <div class="header"><h1>{title}</h1></div>
    <div class="content">
      {body}
      <a href="{link}" class="button">View Task</a>
    </div>
    <div class="footer"><p>This is an automated message from {app_name}</p></div>
  </div>
</body>
</html>"""


def task_assigned(to_name: str, task_title: str, task_id: str, assigned_by: str) -> RenderedEmail:
    body = (
        f"<p>Hi <strong>{escape(to_name)}</strong>,</p>"
        f"<p>You have been assigned a new task by <strong>{escape(assigned_by)}</strong>:</p>"
        f'<h2 style="color: #667eea;">{escape(task_title)}</h2>'
        "<p>Please review the task details and take necessary action.</p>"
    )
    return RenderedEmail(
        subject=f"New Task Assigned: {task_title}",
        html=_layout("🎯 New Task Assigned", body, task_id),
        text=(
            f"Hi {to_name}, You have been assigned a new task: {task_title}. "
            f"View it at {settings.task_url(task_id)}"
        ),
    )


def task_status_changed(
    to_name: str, task_title: str, task_id: str, new_status: str, changed_by: str
) -> RenderedEmail:
    label = new_status.replace("_", " ").upper()
    body = (
        f"<p>Hi <strong>{escape(to_name)}</strong>,</p>"
        f"<p><strong>{escape(changed_by)}</strong> updated the status of:</p>"
        f'<h2 style="color: #667eea;">{escape(task_title)}</h2>'
        f'<div class="box"><strong>New Status:</strong> {escape(label)}</div>'
    )
    emoji = _STATUS_EMOJI.get(new_status, "📋")
    return RenderedEmail(
        subject=f"Task Status Updated: {task_title}",
        html=_layout(f"{emoji} Task Status Updated", body, task_id),
        text=(
            f'Hi {to_name}, {changed_by} updated the status of task "{task_title}" '
            f"to {new_status}. View it at {settings.task_url(task_id)}"
        ),
    )


def comment_added(
    to_name: str, task_title: str, task_id: str, commenter_name: str, content: str
) -> RenderedEmail:
    body = (
        f"<p>Hi <strong>{escape(to_name)}</strong>,</p>"
        f"<p><strong>{escape(commenter_name)}</strong> commented on task: "
        f"<strong>{escape(task_title)}</strong></p>"
        f'<div class="box"><p>{escape(content)}</p></div>'
    )
    return RenderedEmail(
        subject=f"New comment on: {task_title}",
        html=_layout("💬 New Comment on Task", body, task_id),
        text=f'Hi {to_name}, {commenter_name} commented on task "{task_title}": {content}',
    )


def deadline_reminder(to_name: str, task_title: str, task_id: str, due_date: datetime) -> RenderedEmail:
    formatted = due_date.strftime("%A, %B %d, %Y")
    body = (
        f"<p>Hi <strong>{escape(to_name)}</strong>,</p>"
        "<p>This is a reminder that the following task is due soon:</p>"
        f'<h2 style="color: #667eea;">{escape(task_title)}</h2>'
        f'<div class="box deadline"><strong>Due Date:</strong> {formatted}</div>'
        "<p>Please ensure the task is completed on time.</p>"
    )
    return RenderedEmail(
        subject=f"⏰ Reminder: {task_title} is due soon",
        html=_layout("⏰ Task Deadline Reminder", body, task_id, header_gradient=_ALERT_GRADIENT),
        text=(
            f'Hi {to_name}, This is a reminder that task "{task_title}" is due on {formatted}. '
            f"View it at {settings.task_url(task_id)}"
        ),
    )
