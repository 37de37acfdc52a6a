from __future__ import annotations

import asyncio
from typing import Any

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from taskrelay.db import SessionLocal
from taskrelay.models import TaskNotificationQueue
from taskrelay.notifications.events import NotificationEvent

log = structlog.get_logger()

# Strong references to in-flight emits; the event loop only keeps weak ones.
_pending_emits: set[asyncio.Task] = set()


def queue_row_for(
  event: NotificationEvent,
  *,
  organization_id: str | None,
  task_id: str | None,
  assignment_id: str | None,
) -> TaskNotificationQueue:
  return TaskNotificationQueue(
    organization_id=organization_id,
    task_id=task_id,
    assignment_id=assignment_id,
    event_type=event.event_type,
    payload=event.to_payload(),
  )


async def insert_notification(
  db: AsyncSession,
  event: NotificationEvent,
  *,
  organization_id: str | None = None,
  task_id: str | None = None,
  assignment_id: str | None = None,
) -> str:
  row = queue_row_for(event, organization_id=organization_id, task_id=task_id, assignment_id=assignment_id)
  db.add(row)
  await db.commit()
  return row.id


async def insert_raw_notification(
  db: AsyncSession,
  *,
  event_type: str,
  payload: dict[str, Any] | None = None,
  organization_id: str | None = None,
  task_id: str | None = None,
  assignment_id: str | None = None,
) -> str:
  """Insert a row exactly as received from the enqueue trigger."""
  row = TaskNotificationQueue(
    organization_id=organization_id,
    task_id=task_id,
    assignment_id=assignment_id,
    event_type=event_type,
    payload=dict(payload or {}),
  )
  db.add(row)
  await db.commit()
  return row.id


async def enqueue_notification(
  event: NotificationEvent,
  *,
  organization_id: str | None = None,
  task_id: str | None = None,
  assignment_id: str | None = None,
  session_factory: async_sessionmaker[AsyncSession] | None = None,
) -> str | None:
  """
  Insert one queue row in its own session.

  Best-effort: failures are logged and ``None`` is returned, so the caller's
  own (already committed) mutation is never affected.
  """
  factory = session_factory or SessionLocal
  try:
    async with factory() as db:
      row_id = await insert_notification(
        db,
        event,
        organization_id=organization_id,
        task_id=task_id,
        assignment_id=assignment_id,
      )
  except Exception:
    log.exception(
      "notification.enqueue_failed",
      event_type=event.event_type,
      task_id=task_id,
      assignment_id=assignment_id,
    )
    return None
  log.info("notification.enqueued", event_type=event.event_type, queue_id=row_id, assignment_id=assignment_id)
  return row_id


def _on_emit_done(task: asyncio.Task) -> None:
  _pending_emits.discard(task)
  if task.cancelled():
    log.warning("notification.emit_cancelled")
    return
  exc = task.exception()
  if exc is not None:
    log.error("notification.emit_crashed", error=str(exc), error_type=type(exc).__name__)


def emit(
  event: NotificationEvent | None,
  *,
  organization_id: str | None = None,
  task_id: str | None = None,
  assignment_id: str | None = None,
  session_factory: async_sessionmaker[AsyncSession] | None = None,
) -> asyncio.Task | None:
  """Schedule ``enqueue_notification`` without waiting for it."""
  if event is None:
    return None
  task = asyncio.create_task(
    enqueue_notification(
      event,
      organization_id=organization_id,
      task_id=task_id,
      assignment_id=assignment_id,
      session_factory=session_factory,
    )
  )
  _pending_emits.add(task)
  task.add_done_callback(_on_emit_done)
  return task


async def wait_for_pending_emits() -> None:
  while _pending_emits:
    batch = list(_pending_emits)
    await asyncio.gather(*batch, return_exceptions=True)
    _pending_emits.difference_update(batch)
