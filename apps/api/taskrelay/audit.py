"""Audit trail rows. Writers add to the caller's session; the caller commits."""

from __future__ import annotations

from typing import Any

from fastapi.encoders import jsonable_encoder
from sqlalchemy.ext.asyncio import AsyncSession

from taskrelay.models import AuditEvent, Task, TaskAssignment


def audit_event(
  *,
  event_type: str,
  entity_type: str,
  entity_id: str | None,
  actor_id: str | None = None,
  organization_id: str | None = None,
  task_id: str | None = None,
  assignment_id: str | None = None,
  payload: dict[str, Any] | None = None,
) -> AuditEvent:
  return AuditEvent(
    event_type=event_type,
    entity_type=entity_type,
    entity_id=entity_id,
    actor_id=actor_id,
    organization_id=organization_id,
    task_id=task_id,
    assignment_id=assignment_id,
    payload=jsonable_encoder(payload or {}),
  )


async def write_audit(db: AsyncSession, **fields: Any) -> AuditEvent:
  ev = audit_event(**fields)
  db.add(ev)
  return ev


async def audit_assignment(
  db: AsyncSession,
  a: TaskAssignment,
  t: Task,
  *,
  event_type: str,
  actor_id: str | None,
  payload: dict[str, Any] | None = None,
) -> AuditEvent:
  """Record an assignment event scoped to its task and organization."""
  return await write_audit(
    db,
    event_type=event_type,
    entity_type="TaskAssignment",
    entity_id=a.id,
    actor_id=actor_id,
    organization_id=t.organization_id,
    task_id=t.id,
    assignment_id=a.id,
    payload=payload,
  )
