from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from taskrelay.deps import get_db, require_worker_secret
from taskrelay.notifications.dispatch import process_notification_queue
from taskrelay.notifications.emitter import insert_raw_notification
from taskrelay.reminders.service import run_reminder_job

log = structlog.get_logger()

router = APIRouter(prefix="/functions", tags=["workers"], dependencies=[Depends(require_worker_secret)])


def _opt_id(body: dict, key: str) -> str | None:
  v = body.get(key)
  if v is None:
    return None
  s = str(v).strip()
  return s or None


@router.post("/task-reminder")
async def task_reminder(db: AsyncSession = Depends(get_db)) -> dict:
  try:
    result = await run_reminder_job(db)
  except Exception:
    log.exception("reminder.job_failed")
    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Reminder job failed")
  return {"status": "ok", "dueQueued": result.due_queued, "overdueQueued": result.overdue_queued}


@router.post("/task-notifier")
async def task_notifier(request: Request, db: AsyncSession = Depends(get_db)) -> dict:
  try:
    body = await request.json()
  except Exception:
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON body")
  if not isinstance(body, dict):
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="JSON object body required")

  event_type = str(body.get("event_type") or "").strip()
  if not event_type:
    raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="event_type is required")
  payload = body.get("payload")
  if payload is not None and not isinstance(payload, dict):
    raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="payload must be an object")

  try:
    queue_id = await insert_raw_notification(
      db,
      event_type=event_type,
      payload=payload,
      organization_id=_opt_id(body, "organization_id"),
      task_id=_opt_id(body, "task_id"),
      assignment_id=_opt_id(body, "assignment_id"),
    )
  except Exception:
    await db.rollback()
    log.exception("notification.enqueue_failed", event_type=event_type)
    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to enqueue notification")
  log.info("notification.enqueued", event_type=event_type, queue_id=queue_id, source="trigger")
  return {"status": "queued"}


@router.post("/task-notifier/process")
async def task_notifier_process(db: AsyncSession = Depends(get_db)) -> dict:
  try:
    result = await process_notification_queue(db)
  except Exception:
    log.exception("dispatch.job_failed")
    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Notification dispatch failed")
  return {"status": "ok", "processed": result.processed, "skipped": result.skipped}
