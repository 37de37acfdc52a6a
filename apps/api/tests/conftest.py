from __future__ import annotations

import asyncio
import os
import sys
import tempfile
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

import pytest
from fastapi import Depends, HTTPException, Request
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
  sys.path.insert(0, str(ROOT))

os.environ.setdefault("DATABASE_URL", f"sqlite+aiosqlite:///{Path(tempfile.gettempdir()) / 'taskrelay_test.db'}")

from taskrelay.config import settings
from taskrelay.db import SessionLocal, engine
from taskrelay.deps import get_current_user, get_db
from taskrelay.main import app
from taskrelay.models import (
  Base,
  Group,
  GroupMember,
  MemberTag,
  Organization,
  OrganizationMember,
  OrganizationTag,
  Profile,
  Task,
  TaskAssignment,
)
from taskrelay.notifications.emitter import wait_for_pending_emits


@pytest.fixture(scope="session")
def anyio_backend() -> str:
  return "asyncio"


async def _reset_db() -> None:
  async with engine.begin() as conn:
    await conn.run_sync(Base.metadata.create_all)
  async with SessionLocal() as db:
    for table in reversed(Base.metadata.sorted_tables):
      await db.execute(table.delete())
    await db.commit()
  await engine.dispose()


@pytest.fixture(autouse=True)
async def _clean_between_tests(anyio_backend) -> None:
  db_name = settings.database_url.rsplit("/", 1)[-1]
  if "test" not in db_name:
    raise RuntimeError(
      "Refusing to run destructive tests against non-test DB. "
      "Set DATABASE_URL to a *_test database (e.g. taskrelay_test)."
    )
  await _reset_db()
  yield
  await wait_for_pending_emits()
  await _reset_db()


async def _user_from_test_header(request: Request, db: AsyncSession = Depends(get_db)) -> Profile:
  uid = request.headers.get("x-test-user")
  if not uid:
    raise HTTPException(status_code=401, detail="Not authenticated")
  p = await db.get(Profile, uid)
  if not p:
    raise HTTPException(status_code=401, detail="User not found")
  return p


@pytest.fixture
async def client() -> AsyncClient:
  app.dependency_overrides[get_current_user] = _user_from_test_header
  transport = ASGITransport(app=app)
  try:
    async with AsyncClient(transport=transport, base_url="http://localhost") as c:
      yield c
  finally:
    app.dependency_overrides.pop(get_current_user, None)


def as_user(user_id: str) -> dict[str, str]:
  return {"X-Test-User": user_id}


@dataclass
class Seed:
  org_id: str
  group_id: str
  admin_id: str
  member_id: str
  other_member_id: str
  outsider_id: str
  tag_id: str


async def seed_org() -> Seed:
  """One organization, one group with an admin and two members, one tag."""
  async with SessionLocal() as db:
    admin = Profile(id="00000000-0000-0000-0000-00000000000a", email="admin@example.com", full_name="Ada Admin")
    member = Profile(id="00000000-0000-0000-0000-00000000000b", email="member@example.com", full_name="Mia Member")
    other = Profile(id="00000000-0000-0000-0000-00000000000c", email="other@example.com", full_name="Otto Other")
    outsider = Profile(id="00000000-0000-0000-0000-00000000000d", email="outsider@example.com", full_name=None)
    db.add_all([admin, member, other, outsider])

    org = Organization(name="Acme")
    db.add(org)
    await db.flush()
    group = Group(organization_id=org.id, name="Field team")
    tag = OrganizationTag(organization_id=org.id, name="forklift")
    db.add_all([group, tag])
    await db.flush()

    db.add_all(
      [
        OrganizationMember(organization_id=org.id, user_id=admin.id, role="member"),
        OrganizationMember(organization_id=org.id, user_id=member.id, role="member"),
        OrganizationMember(organization_id=org.id, user_id=other.id, role="member"),
        GroupMember(group_id=group.id, user_id=admin.id, role="admin"),
        GroupMember(group_id=group.id, user_id=member.id, role="member"),
        GroupMember(group_id=group.id, user_id=other.id, role="member"),
        MemberTag(organization_id=org.id, user_id=member.id, tag_id=tag.id),
      ]
    )
    await db.commit()
    return Seed(
      org_id=org.id,
      group_id=group.id,
      admin_id=admin.id,
      member_id=member.id,
      other_member_id=other.id,
      outsider_id=outsider.id,
      tag_id=tag.id,
    )


async def create_assignment(
  seed: Seed,
  *,
  title: str = "Inspect the loading dock",
  due_at: datetime | None = None,
  assignee_id: str | None = None,
  status: str = "sent",
  review_status: str = "pending",
  require_attachment: bool = False,
  **assignment_fields,
) -> tuple[str, str]:
  """Insert a task with a single assignment directly; returns (task_id, assignment_id)."""
  async with SessionLocal() as db:
    t = Task(
      organization_id=seed.org_id,
      group_id=seed.group_id,
      created_by=seed.admin_id,
      title=title,
      due_at=due_at,
      require_attachment=require_attachment,
    )
    db.add(t)
    await db.flush()
    a = TaskAssignment(
      task_id=t.id,
      assignee_id=assignee_id or seed.member_id,
      status=status,
      review_status=review_status,
      **assignment_fields,
    )
    db.add(a)
    await db.commit()
    return t.id, a.id


class FakeEmail:
  def __init__(self, *, fail: bool = False, delay: float = 0.0) -> None:
    self.fail = fail
    self.delay = delay
    self.sent: list[dict] = []

  async def send(self, *, from_addr: str, to_addr: str, subject: str, content: str) -> dict:
    if self.delay:
      await asyncio.sleep(self.delay)
    if self.fail:
      raise RuntimeError("smtp down")
    self.sent.append({"from": from_addr, "to": to_addr, "subject": subject, "content": content})
    return {"provider": "fake", "status": "sent"}


class FakePush:
  def __init__(self, *, fail: bool = False, delay: float = 0.0) -> None:
    self.fail = fail
    self.delay = delay
    self.batches: list[list[dict]] = []

  async def send(self, messages: list[dict]) -> dict:
    if self.delay:
      await asyncio.sleep(self.delay)
    if self.fail:
      raise RuntimeError("push gateway down")
    self.batches.append(messages)
    return {"provider": "fake", "status": "sent"}
