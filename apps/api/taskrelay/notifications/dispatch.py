"""
Notification dispatch worker.

One call of ``process_notification_queue`` drains a bounded batch of
unprocessed queue rows, oldest first. For every row it resolves the
assignment context, renders the message, then tries email and push
independently. A row whose context resolves is always marked processed,
whatever the channels did; a row whose context cannot be resolved is left
unprocessed (its ``attempts`` counter goes up) so a later poll retries it,
until ``notification_max_attempts`` is reached.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from taskrelay.config import settings
from taskrelay.devices.service import list_device_tokens
from taskrelay.models import Profile, Task, TaskAssignment, TaskNotificationQueue
from taskrelay.notifications.events import event_from_row
from taskrelay.notifications.render import AssignmentContext, RenderedMessage, render_message
from taskrelay.notifications.service import (
  EmailTransport,
  PushTransport,
  email_transport_from_settings,
  is_push_token,
  push_messages_for,
  push_transport_from_settings,
)

log = structlog.get_logger()


@dataclass
class DispatchRunResult:
  processed: int = 0
  skipped: int = 0
  emailed: int = 0
  pushed: int = 0


@dataclass(frozen=True)
class QueuedNotification:
  id: str
  event_type: str
  payload: dict[str, Any]
  assignment_id: str | None
  attempts: int = 0


async def fetch_unprocessed_notifications(db: AsyncSession, *, limit: int) -> list[QueuedNotification]:
  res = await db.execute(
    select(
      TaskNotificationQueue.id,
      TaskNotificationQueue.event_type,
      TaskNotificationQueue.payload,
      TaskNotificationQueue.assignment_id,
      TaskNotificationQueue.attempts,
    )
    .where(
      TaskNotificationQueue.processed_at.is_(None),
      TaskNotificationQueue.attempts < max(1, int(settings.notification_max_attempts)),
    )
    .order_by(TaskNotificationQueue.created_at.asc())
    .limit(max(1, int(limit)))
  )
  return [
    QueuedNotification(
      id=r.id,
      event_type=r.event_type,
      payload=(r.payload if isinstance(r.payload, dict) else {}),
      assignment_id=r.assignment_id,
      attempts=int(r.attempts or 0),
    )
    for r in res.all()
  ]


async def fetch_assignment_context(db: AsyncSession, assignment_id: str | None) -> AssignmentContext | None:
  if not assignment_id:
    return None
  res = await db.execute(
    select(TaskAssignment, Task, Profile)
    .join(Task, Task.id == TaskAssignment.task_id)
    .outerjoin(Profile, Profile.id == TaskAssignment.assignee_id)
    .where(TaskAssignment.id == assignment_id)
  )
  row = res.first()
  if row is None:
    return None
  a, t, p = row
  return AssignmentContext(
    assignment_id=a.id,
    task_id=t.id,
    organization_id=t.organization_id,
    assignee_id=a.assignee_id,
    status=a.status,
    review_status=a.review_status,
    review_note=a.review_note,
    task_title=t.title,
    due_at=t.due_at,
    assignee_email=(p.email if p else None),
    assignee_name=(p.full_name if p else None),
  )


async def mark_notification_processed(db: AsyncSession, notification_id: str, *, now: datetime) -> bool:
  res = await db.execute(
    update(TaskNotificationQueue)
    .where(TaskNotificationQueue.id == notification_id, TaskNotificationQueue.processed_at.is_(None))
    .values(processed_at=now)
    .execution_options(synchronize_session=False)
  )
  await db.commit()
  return bool(res.rowcount)


async def _record_unresolved(db: AsyncSession, row: QueuedNotification, *, error: str) -> None:
  try:
    await db.execute(
      update(TaskNotificationQueue)
      .where(TaskNotificationQueue.id == row.id, TaskNotificationQueue.processed_at.is_(None))
      .values(attempts=TaskNotificationQueue.attempts + 1, last_error=error[:1000])
      .execution_options(synchronize_session=False)
    )
    await db.commit()
  except Exception:
    await db.rollback()
    log.exception("dispatch.attempt_record_failed", queue_id=row.id)
    return
  attempts = row.attempts + 1
  if attempts >= max(1, int(settings.notification_max_attempts)):
    # Past the ceiling the row is never fetched again.
    log.error("dispatch.row_abandoned", queue_id=row.id, event_type=row.event_type, attempts=attempts, last_error=error)


async def deliver_email(
  transport: EmailTransport | None,
  *,
  from_addr: str | None,
  ctx: AssignmentContext,
  msg: RenderedMessage,
  queue_id: str,
) -> bool:
  if not ctx.assignee_email:
    log.info("dispatch.email_skipped", queue_id=queue_id, reason="no_email")
    return False
  if transport is None or not from_addr:
    log.info("dispatch.email_skipped", queue_id=queue_id, reason="not_configured")
    return False
  try:
    await asyncio.wait_for(
      transport.send(from_addr=from_addr, to_addr=ctx.assignee_email, subject=msg.subject, content=msg.body),
      timeout=float(settings.http_timeout_seconds),
    )
  except asyncio.TimeoutError:
    log.warning("dispatch.email_timeout", queue_id=queue_id)
    return False
  except Exception as e:
    log.warning("dispatch.email_failed", queue_id=queue_id, error=str(e))
    return False
  return True


async def deliver_push(
  db: AsyncSession,
  transport: PushTransport | None,
  *,
  ctx: AssignmentContext,
  msg: RenderedMessage,
  event_type: str,
  queue_id: str,
) -> bool:
  if transport is None:
    return False
  try:
    rows = await list_device_tokens(db, ctx.assignee_id)
  except Exception as e:
    log.warning("dispatch.push_tokens_failed", queue_id=queue_id, error=str(e))
    return False

  tokens: list[str] = []
  for r in rows:
    tok = (r.token or "").strip()
    if is_push_token(tok) and tok not in tokens:
      tokens.append(tok)
  if not tokens:
    log.info("dispatch.push_skipped", queue_id=queue_id, reason="no_tokens", known=len(rows))
    return False

  data = {"assignmentId": ctx.assignment_id, "taskId": ctx.task_id, "eventType": event_type}
  if msg.link:
    data["url"] = msg.link
  messages = push_messages_for(tokens, title=msg.push_title, body=msg.push_body, data=data)
  try:
    await asyncio.wait_for(transport.send(messages), timeout=float(settings.http_timeout_seconds))
  except asyncio.TimeoutError:
    log.warning("dispatch.push_timeout", queue_id=queue_id, tokens=len(tokens))
    return False
  except Exception as e:
    log.warning("dispatch.push_failed", queue_id=queue_id, tokens=len(tokens), error=str(e))
    return False
  return True


async def dispatch_notification(
  db: AsyncSession,
  row: QueuedNotification,
  *,
  now: datetime,
  email_transport: EmailTransport | None,
  push_transport: PushTransport | None,
  email_from: str | None,
  result: DispatchRunResult,
) -> bool:
  """Handle one queue row. Returns True when the row was marked processed."""
  queue_id = row.id
  event_type = row.event_type
  assignment_id = row.assignment_id
  event = event_from_row(event_type, row.payload)

  try:
    ctx = await fetch_assignment_context(db, assignment_id)
  except Exception as e:
    await db.rollback()
    log.exception("dispatch.context_failed", queue_id=queue_id, assignment_id=assignment_id)
    await _record_unresolved(db, row, error=f"context lookup failed: {e}")
    return False
  if ctx is None:
    log.warning("dispatch.context_missing", queue_id=queue_id, assignment_id=assignment_id, event_type=event_type)
    await _record_unresolved(db, row, error="assignment context not found")
    return False

  msg = render_message(event, ctx, portal_base_url=settings.portal_base_url)

  if await deliver_email(email_transport, from_addr=email_from, ctx=ctx, msg=msg, queue_id=queue_id):
    result.emailed += 1
  if await deliver_push(db, push_transport, ctx=ctx, msg=msg, event_type=event.event_type, queue_id=queue_id):
    result.pushed += 1

  marked = await mark_notification_processed(db, queue_id, now=now)
  if not marked:
    log.info("dispatch.already_processed", queue_id=queue_id)
  return marked


async def process_notification_queue(
  db: AsyncSession,
  *,
  now: datetime | None = None,
  limit: int | None = None,
  email_transport: EmailTransport | None = None,
  push_transport: PushTransport | None = None,
  email_from: str | None = None,
) -> DispatchRunResult:
  """
  Drain one batch of the notification queue.

  Transports default to the ones configured in settings; email is skipped
  when SMTP is not configured. A failure reading the queue is logged and the
  run yields no work.
  """
  result = DispatchRunResult()
  batch_size = limit if limit is not None else settings.notification_batch_size
  email = email_transport if email_transport is not None else email_transport_from_settings(settings)
  push = push_transport if push_transport is not None else push_transport_from_settings(settings)
  sender = email_from or settings.smtp_from

  try:
    rows = await fetch_unprocessed_notifications(db, limit=batch_size)
  except Exception:
    await db.rollback()
    log.exception("dispatch.fetch_failed")
    return result

  for row in rows:
    queue_id = row.id
    try:
      done = await dispatch_notification(
        db,
        row,
        now=now or datetime.now(timezone.utc),
        email_transport=email,
        push_transport=push,
        email_from=sender,
        result=result,
      )
    except Exception:
      await db.rollback()
      log.exception("dispatch.row_failed", queue_id=queue_id)
      done = False
    if done:
      result.processed += 1
    else:
      result.skipped += 1

  log.info(
    "dispatch.run_finished",
    fetched=len(rows),
    processed=result.processed,
    skipped=result.skipped,
    emailed=result.emailed,
    pushed=result.pushed,
  )
  return result
