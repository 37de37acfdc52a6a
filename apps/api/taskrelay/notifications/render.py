from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from urllib.parse import quote

from taskrelay.notifications.events import (
  AssignmentCreated,
  DueReminder,
  NotificationEvent,
  OverdueReminder,
  ReviewUpdated,
  StatusChanged,
)

STATUS_LABELS: dict[str, str] = {
  "sent": "Pending",
  "pending": "Pending",
  "received": "In progress",
  "in_progress": "In progress",
  "completed": "Completed",
  "archived": "Archived",
}

REVIEW_LABELS: dict[str, str] = {
  "pending": "Pending review",
  "accepted": "Accepted",
  "changes_requested": "Changes requested",
}


@dataclass(frozen=True)
class AssignmentContext:
  assignment_id: str
  task_id: str
  organization_id: str | None
  assignee_id: str
  status: str
  review_status: str
  review_note: str | None
  task_title: str
  due_at: datetime | None
  assignee_email: str | None
  assignee_name: str | None


@dataclass(frozen=True)
class RenderedMessage:
  subject: str
  body: str
  push_title: str
  push_body: str
  link: str | None = None


def status_label(status: str | None) -> str:
  s = str(status or "").strip()
  return STATUS_LABELS.get(s, s or "Unknown")


def review_label(review_status: str | None) -> str:
  s = str(review_status or "").strip()
  return REVIEW_LABELS.get(s, s or "Unknown")


def format_due(due_at: datetime | None) -> str:
  if due_at is None:
    return "No deadline"
  if due_at.tzinfo is None:
    due_at = due_at.replace(tzinfo=timezone.utc)
  return due_at.astimezone(timezone.utc).strftime("%Y-%m-%d %H:%M UTC")


def assignment_link(portal_base_url: str | None, assignment_id: str) -> str | None:
  base = (portal_base_url or "").strip().rstrip("/")
  if not base:
    return None
  return f"{base}/my-tasks?assignment={quote(assignment_id)}"


def event_line(event: NotificationEvent, ctx: AssignmentContext) -> str:
  if isinstance(event, AssignmentCreated):
    return "You have been assigned to this task"
  if isinstance(event, StatusChanged):
    return f"Task status is now: {status_label(event.new_status or ctx.status)}"
  if isinstance(event, ReviewUpdated):
    return f"Review status is now: {review_label(event.new_review_status or ctx.review_status)}"
  if isinstance(event, DueReminder):
    return f"The deadline for this task is approaching ({format_due(ctx.due_at)})"
  if isinstance(event, OverdueReminder):
    return f"This task is overdue (was due {format_due(ctx.due_at)})"
  return f"Event: {event.event_type}"


def render_message(event: NotificationEvent, ctx: AssignmentContext, *, portal_base_url: str | None = None) -> RenderedMessage:
  title = (ctx.task_title or "").strip() or "Task"
  line = event_line(event, ctx)
  link = assignment_link(portal_base_url, ctx.assignment_id)

  greeting = f"Hi {ctx.assignee_name}," if ctx.assignee_name else "Hi,"
  lines = [
    greeting,
    "",
    line,
    "",
    f"Task: {title}",
    f"Due: {format_due(ctx.due_at)}",
    f"Status: {status_label(ctx.status)}",
    f"Review: {review_label(ctx.review_status)}",
  ]
  if isinstance(event, ReviewUpdated) and ctx.review_note:
    lines.append(f"Reviewer note: {ctx.review_note}")
  if link:
    lines.extend(["", f"Open the task: {link}"])

  return RenderedMessage(
    subject=f"[Task] {title}",
    body="\n".join(lines),
    push_title=title,
    push_body=line,
    link=link,
  )
