from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import structlog
from sqlalchemy import Select, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from taskrelay.assignments.state import COMPLETED, REVIEW_ACCEPTED
from taskrelay.config import settings
from taskrelay.models import Task, TaskAssignment
from taskrelay.notifications.emitter import queue_row_for
from taskrelay.notifications.events import DueReminder, OverdueReminder

log = structlog.get_logger()


@dataclass(frozen=True)
class ReminderCandidate:
  assignment_id: str
  task_id: str
  organization_id: str | None
  assignee_id: str


@dataclass(frozen=True)
class ReminderRunResult:
  due_queued: int
  overdue_queued: int


def _candidates_query(marker) -> Select:
  return (
    select(TaskAssignment.id, TaskAssignment.task_id, TaskAssignment.assignee_id, Task.organization_id)
    .join(Task, Task.id == TaskAssignment.task_id)
    .where(
      TaskAssignment.status != COMPLETED,
      TaskAssignment.review_status != REVIEW_ACCEPTED,
      Task.due_at.isnot(None),
      marker.is_(None),
    )
    .order_by(Task.due_at.asc(), TaskAssignment.created_at.asc())
  )


def _to_candidates(rows) -> list[ReminderCandidate]:
  return [
    ReminderCandidate(assignment_id=r.id, task_id=r.task_id, organization_id=r.organization_id, assignee_id=r.assignee_id)
    for r in rows
  ]


async def fetch_due_soon_assignments(db: AsyncSession, *, now: datetime, horizon: datetime) -> list[ReminderCandidate]:
  stmt = _candidates_query(TaskAssignment.due_reminder_sent_at).where(Task.due_at >= now, Task.due_at <= horizon)
  res = await db.execute(stmt)
  return _to_candidates(res.all())


async def fetch_overdue_assignments(db: AsyncSession, *, now: datetime) -> list[ReminderCandidate]:
  stmt = _candidates_query(TaskAssignment.overdue_reminder_sent_at).where(Task.due_at < now)
  res = await db.execute(stmt)
  return _to_candidates(res.all())


async def update_reminder_marker(db: AsyncSession, assignment_ids: list[str], marker, *, now: datetime) -> None:
  await db.execute(
    update(TaskAssignment)
    .where(TaskAssignment.id.in_(assignment_ids), marker.is_(None))
    .values({marker.key: now})
    .execution_options(synchronize_session=False)
  )
  await db.commit()


async def queue_reminders(db: AsyncSession, candidates: list[ReminderCandidate], *, overdue: bool, now: datetime) -> int:
  """
  Insert one queue row per candidate, then stamp the reminder marker.

  Returns the number of rows queued. A failed insert queues nothing. A failed
  marker update is logged only; the next run may then queue the same
  reminder again (at-least-once).
  """
  if not candidates:
    return 0
  kind = "overdue_reminder" if overdue else "due_reminder"
  marker = TaskAssignment.overdue_reminder_sent_at if overdue else TaskAssignment.due_reminder_sent_at

  try:
    for c in candidates:
      event = OverdueReminder(assignee_id=c.assignee_id) if overdue else DueReminder(assignee_id=c.assignee_id)
      db.add(queue_row_for(event, organization_id=c.organization_id, task_id=c.task_id, assignment_id=c.assignment_id))
    await db.commit()
  except Exception:
    await db.rollback()
    log.exception("reminder.queue_insert_failed", kind=kind, count=len(candidates))
    return 0

  ids = [c.assignment_id for c in candidates]
  try:
    await update_reminder_marker(db, ids, marker, now=now)
  except Exception:
    await db.rollback()
    log.exception("reminder.marker_update_failed", kind=kind, count=len(ids))

  log.info("reminder.queued", kind=kind, count=len(candidates))
  return len(candidates)


async def run_reminder_job(db: AsyncSession, *, now: datetime | None = None) -> ReminderRunResult:
  """
  Queue due-soon and overdue reminders that have not been sent yet.

  A failure reading one category is logged and yields zero for it; the other
  category still runs.
  """
  now = now or datetime.now(timezone.utc)
  horizon = now + timedelta(hours=max(1, int(settings.reminder_due_window_hours)))

  try:
    due_soon = await fetch_due_soon_assignments(db, now=now, horizon=horizon)
  except Exception:
    await db.rollback()
    log.exception("reminder.fetch_failed", kind="due_reminder")
    due_soon = []

  try:
    overdue = await fetch_overdue_assignments(db, now=now)
  except Exception:
    await db.rollback()
    log.exception("reminder.fetch_failed", kind="overdue_reminder")
    overdue = []

  due_queued = await queue_reminders(db, due_soon, overdue=False, now=now)
  overdue_queued = await queue_reminders(db, overdue, overdue=True, now=now)
  return ReminderRunResult(due_queued=due_queued, overdue_queued=overdue_queued)
