from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from httpx import AsyncClient
from sqlalchemy import select
from structlog.testing import capture_logs

from taskrelay.db import SessionLocal
from taskrelay.models import TaskAssignment, TaskNotificationQueue
from taskrelay.reminders import service as reminders_module
from taskrelay.reminders.service import run_reminder_job

from conftest import create_assignment, seed_org

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


async def _queued() -> list[TaskNotificationQueue]:
  async with SessionLocal() as db:
    res = await db.execute(select(TaskNotificationQueue).order_by(TaskNotificationQueue.created_at.asc()))
    return list(res.scalars().all())


async def _assignment(assignment_id: str) -> TaskAssignment:
  async with SessionLocal() as db:
    return await db.get(TaskAssignment, assignment_id)


@pytest.mark.anyio
async def test_due_soon_reminder_is_queued_once() -> None:
  seed = await seed_org()
  task_id, assignment_id = await create_assignment(seed, due_at=NOW + timedelta(hours=5))

  async with SessionLocal() as db:
    first = await run_reminder_job(db, now=NOW)
  assert (first.due_queued, first.overdue_queued) == (1, 0)

  rows = await _queued()
  assert len(rows) == 1
  assert rows[0].event_type == "due_reminder"
  assert rows[0].assignment_id == assignment_id
  assert rows[0].task_id == task_id
  assert rows[0].organization_id == seed.org_id
  assert rows[0].payload == {"assignee_id": seed.member_id}
  assert (await _assignment(assignment_id)).due_reminder_sent_at is not None

  async with SessionLocal() as db:
    second = await run_reminder_job(db, now=NOW + timedelta(minutes=10))
  assert (second.due_queued, second.overdue_queued) == (0, 0)
  assert len(await _queued()) == 1


@pytest.mark.anyio
async def test_overdue_reminder_is_independent_of_due_marker() -> None:
  seed = await seed_org()
  _, assignment_id = await create_assignment(
    seed,
    due_at=NOW - timedelta(hours=1),
    status="received",
    due_reminder_sent_at=NOW - timedelta(hours=20),
  )

  async with SessionLocal() as db:
    result = await run_reminder_job(db, now=NOW)
  assert (result.due_queued, result.overdue_queued) == (0, 1)

  rows = await _queued()
  assert [r.event_type for r in rows] == ["overdue_reminder"]
  a = await _assignment(assignment_id)
  assert a.overdue_reminder_sent_at is not None

  async with SessionLocal() as db:
    again = await run_reminder_job(db, now=NOW + timedelta(hours=1))
  assert again.overdue_queued == 0


@pytest.mark.anyio
async def test_completed_accepted_and_undated_assignments_are_not_reminded() -> None:
  seed = await seed_org()
  await create_assignment(seed, title="done", due_at=NOW - timedelta(hours=2), status="completed", assignee_id=seed.member_id)
  await create_assignment(
    seed, title="accepted", due_at=NOW + timedelta(hours=2), status="received", review_status="accepted", assignee_id=seed.member_id
  )
  await create_assignment(seed, title="no deadline", due_at=None, assignee_id=seed.member_id)
  await create_assignment(seed, title="far away", due_at=NOW + timedelta(hours=30), assignee_id=seed.member_id)

  async with SessionLocal() as db:
    result = await run_reminder_job(db, now=NOW)
  assert (result.due_queued, result.overdue_queued) == (0, 0)
  assert await _queued() == []


@pytest.mark.anyio
async def test_archived_overdue_assignment_is_still_reminded() -> None:
  seed = await seed_org()
  _, assignment_id = await create_assignment(seed, due_at=NOW - timedelta(days=1), status="archived")

  async with SessionLocal() as db:
    result = await run_reminder_job(db, now=NOW)
  assert (result.due_queued, result.overdue_queued) == (0, 1)
  assert [r.assignment_id for r in await _queued()] == [assignment_id]
  assert (await _assignment(assignment_id)).overdue_reminder_sent_at is not None

@pytest.mark.anyio
async def test_due_and_overdue_in_one_run() -> None:
  seed = await seed_org()
  await create_assignment(seed, title="soon", due_at=NOW + timedelta(hours=23), assignee_id=seed.member_id)
  await create_assignment(seed, title="late", due_at=NOW - timedelta(days=2), assignee_id=seed.other_member_id)

  async with SessionLocal() as db:
    result = await run_reminder_job(db, now=NOW)
  assert (result.due_queued, result.overdue_queued) == (1, 1)
  assert sorted(r.event_type for r in await _queued()) == ["due_reminder", "overdue_reminder"]


@pytest.mark.anyio
async def test_reminder_endpoint_reports_counts(client: AsyncClient) -> None:
  seed = await seed_org()
  await create_assignment(seed, due_at=datetime.now(timezone.utc) + timedelta(hours=3))

  res = await client.post("/functions/task-reminder")
  assert res.status_code == 200, res.text
  assert res.json() == {"status": "ok", "dueQueued": 1, "overdueQueued": 0}

  res = await client.post("/functions/task-reminder")
  assert res.json() == {"status": "ok", "dueQueued": 0, "overdueQueued": 0}


@pytest.mark.anyio
async def test_due_soon_read_failure_does_not_block_overdue(monkeypatch) -> None:
  seed = await seed_org()
  await create_assignment(seed, title="soon", due_at=NOW + timedelta(hours=3), assignee_id=seed.member_id)
  _, late_id = await create_assignment(seed, title="late", due_at=NOW - timedelta(hours=3), assignee_id=seed.other_member_id)

  async def broken_fetch(db, *, now, horizon):
    raise RuntimeError("read timeout")

  monkeypatch.setattr(reminders_module, "fetch_due_soon_assignments", broken_fetch)
  with capture_logs() as logs:
    async with SessionLocal() as db:
      result = await run_reminder_job(db, now=NOW)

  assert (result.due_queued, result.overdue_queued) == (0, 1)
  assert [(r.event_type, r.assignment_id) for r in await _queued()] == [("overdue_reminder", late_id)]
  assert any(e["event"] == "reminder.fetch_failed" and e["kind"] == "due_reminder" for e in logs)


@pytest.mark.anyio
async def test_marker_update_failure_is_logged_and_count_kept(monkeypatch) -> None:
  seed = await seed_org()
  _, assignment_id = await create_assignment(seed, due_at=NOW + timedelta(hours=2))

  async def broken_marker(db, assignment_ids, marker, *, now):
    raise RuntimeError("marker write rejected")

  monkeypatch.setattr(reminders_module, "update_reminder_marker", broken_marker)
  with capture_logs() as logs:
    async with SessionLocal() as db:
      result = await run_reminder_job(db, now=NOW)

  assert (result.due_queued, result.overdue_queued) == (1, 0)
  assert [r.event_type for r in await _queued()] == ["due_reminder"]
  assert (await _assignment(assignment_id)).due_reminder_sent_at is None
  assert any(e["event"] == "reminder.marker_update_failed" for e in logs)
