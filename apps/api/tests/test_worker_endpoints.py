from __future__ import annotations

import pytest
from httpx import AsyncClient
from sqlalchemy import select

from taskrelay.config import settings
from taskrelay.db import SessionLocal
from taskrelay.models import TaskNotificationQueue
from taskrelay.routers import workers as workers_router


async def _rows() -> list[TaskNotificationQueue]:
  async with SessionLocal() as db:
    res = await db.execute(select(TaskNotificationQueue))
    return list(res.scalars().all())


@pytest.mark.anyio
@pytest.mark.parametrize("path", ["/functions/task-notifier", "/functions/task-reminder", "/functions/task-notifier/process"])
async def test_worker_endpoints_are_post_only(client: AsyncClient, path: str) -> None:
  res = await client.get(path)
  assert res.status_code == 405


@pytest.mark.anyio
async def test_notifier_rejects_malformed_json(client: AsyncClient) -> None:
  res = await client.post("/functions/task-notifier", content=b"{not json", headers={"Content-Type": "application/json"})
  assert res.status_code == 400

  res = await client.post("/functions/task-notifier", json=["a", "list"])
  assert res.status_code == 400


@pytest.mark.anyio
async def test_notifier_requires_event_type(client: AsyncClient) -> None:
  res = await client.post("/functions/task-notifier", json={"assignment_id": "a-1"})
  assert res.status_code == 422
  res = await client.post("/functions/task-notifier", json={"event_type": "   "})
  assert res.status_code == 422
  res = await client.post("/functions/task-notifier", json={"event_type": "status_changed", "payload": "nope"})
  assert res.status_code == 422
  assert await _rows() == []


@pytest.mark.anyio
async def test_notifier_queues_row(client: AsyncClient) -> None:
  res = await client.post(
    "/functions/task-notifier",
    json={
      "event_type": "review_updated",
      "organization_id": "o-1",
      "task_id": "t-1",
      "assignment_id": "a-1",
      "payload": {"assignee_id": "u-1", "new_review_status": "accepted"},
    },
  )
  assert res.status_code == 200, res.text
  assert res.json() == {"status": "queued"}

  [row] = await _rows()
  assert row.event_type == "review_updated"
  assert row.assignment_id == "a-1"
  assert row.payload == {"assignee_id": "u-1", "new_review_status": "accepted"}
  assert row.processed_at is None


@pytest.mark.anyio
async def test_notifier_insert_failure_is_generic_500(client: AsyncClient, monkeypatch) -> None:
  async def _boom(*args, **kwargs):
    raise RuntimeError("relation does not exist")

  monkeypatch.setattr(workers_router, "insert_raw_notification", _boom)
  res = await client.post("/functions/task-notifier", json={"event_type": "status_changed"})
  assert res.status_code == 500
  assert res.json() == {"detail": "Failed to enqueue notification"}


@pytest.mark.anyio
async def test_reminder_failure_is_generic_500(client: AsyncClient, monkeypatch) -> None:
  async def _boom(*args, **kwargs):
    raise RuntimeError("db exploded")

  monkeypatch.setattr(workers_router, "run_reminder_job", _boom)
  res = await client.post("/functions/task-reminder")
  assert res.status_code == 500
  assert res.json() == {"detail": "Reminder job failed"}


@pytest.mark.anyio
async def test_worker_secret_is_enforced_when_configured(client: AsyncClient, monkeypatch) -> None:
  monkeypatch.setattr(settings, "worker_secret", "s3cret")

  res = await client.post("/functions/task-reminder")
  assert res.status_code == 401
  res = await client.post("/functions/task-reminder", headers={"Authorization": "Bearer wrong"})
  assert res.status_code == 401
  res = await client.post("/functions/task-reminder", headers={"Authorization": "Bearer s3cret"})
  assert res.status_code == 200, res.text
