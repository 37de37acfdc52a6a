from __future__ import annotations

import pytest
from sqlalchemy import select
from structlog.testing import capture_logs

from taskrelay.db import SessionLocal
from taskrelay.models import TaskNotificationQueue
from taskrelay.notifications.emitter import emit, enqueue_notification, wait_for_pending_emits
from taskrelay.notifications.events import AssignmentCreated, StatusChanged


class _BrokenSession:
  async def __aenter__(self):
    raise RuntimeError("database unavailable")

  async def __aexit__(self, *exc) -> bool:
    return False


def _broken_factory() -> _BrokenSession:
  return _BrokenSession()


async def _rows() -> list[TaskNotificationQueue]:
  async with SessionLocal() as db:
    res = await db.execute(select(TaskNotificationQueue))
    return list(res.scalars().all())


@pytest.mark.anyio
async def test_enqueue_writes_event_row() -> None:
  qid = await enqueue_notification(
    StatusChanged(assignee_id="u-1", old_status="sent", new_status="received"),
    organization_id="o-1",
    task_id="t-1",
    assignment_id="a-1",
  )
  [row] = await _rows()
  assert row.id == qid
  assert row.event_type == "status_changed"
  assert row.payload == {"assignee_id": "u-1", "old_status": "sent", "new_status": "received"}
  assert row.processed_at is None
  assert row.attempts == 0


@pytest.mark.anyio
async def test_enqueue_failure_is_logged_not_raised() -> None:
  with capture_logs() as logs:
    qid = await enqueue_notification(AssignmentCreated(assignee_id="u-1"), assignment_id="a-1", session_factory=_broken_factory)
  assert qid is None
  assert any(e["event"] == "notification.enqueue_failed" for e in logs)
  assert await _rows() == []


@pytest.mark.anyio
async def test_emit_runs_in_background() -> None:
  assert emit(None) is None
  task = emit(AssignmentCreated(assignee_id="u-1"), task_id="t-1", assignment_id="a-1")
  assert task is not None
  await wait_for_pending_emits()
  assert task.done()
  rows = await _rows()
  assert [r.event_type for r in rows] == ["assignment_created"]


@pytest.mark.anyio
async def test_emit_failure_leaves_caller_untouched() -> None:
  task = emit(AssignmentCreated(assignee_id="u-1"), session_factory=_broken_factory)
  await wait_for_pending_emits()
  assert task.result() is None
