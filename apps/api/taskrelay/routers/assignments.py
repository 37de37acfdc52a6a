from __future__ import annotations

from datetime import datetime, timezone

import structlog
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from taskrelay.assignments.state import COMPLETED, apply_changes, plan_review, plan_status_change
from taskrelay.audit import audit_assignment
from taskrelay.deps import get_current_user, get_db, require_group_role
from taskrelay.models import Group, Organization, Profile, Task, TaskAssignment, TaskAttachment
from taskrelay.notifications.emitter import emit
from taskrelay.schemas import AssignmentOut, AssignmentReviewIn, AssignmentStatusIn, MyAssignmentOut

log = structlog.get_logger()

router = APIRouter(tags=["assignments"])


def assignment_fields(a: TaskAssignment) -> dict:
  return {
    "id": a.id,
    "taskId": a.task_id,
    "assigneeId": a.assignee_id,
    "status": a.status,
    "completionNote": a.completion_note,
    "reviewStatus": a.review_status,
    "reviewNote": a.review_note,
    "reviewedAt": a.reviewed_at,
    "reviewedBy": a.reviewed_by,
    "receivedAt": a.received_at,
    "completedAt": a.completed_at,
    "createdAt": a.created_at,
    "updatedAt": a.updated_at,
  }


def assignment_out(a: TaskAssignment) -> AssignmentOut:
  return AssignmentOut(**assignment_fields(a))


async def _get_assignment_and_task(assignment_id: str, db: AsyncSession) -> tuple[TaskAssignment, Task]:
  res = await db.execute(
    select(TaskAssignment, Task).join(Task, Task.id == TaskAssignment.task_id).where(TaskAssignment.id == assignment_id)
  )
  row = res.first()
  if not row:
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Assignment not found")
  return row[0], row[1]


async def _has_attachment(task_id: str, user_id: str, db: AsyncSession) -> bool:
  res = await db.execute(
    select(func.count(TaskAttachment.id)).where(TaskAttachment.task_id == task_id, TaskAttachment.uploaded_by == user_id)
  )
  return int(res.scalar_one() or 0) > 0


@router.get("/me/assignments", response_model=list[MyAssignmentOut])
async def list_my_assignments(user: Profile = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> list[MyAssignmentOut]:
  res = await db.execute(
    select(TaskAssignment, Task, Group.name, Organization.name)
    .join(Task, Task.id == TaskAssignment.task_id)
    .outerjoin(Group, Group.id == Task.group_id)
    .outerjoin(Organization, Organization.id == Task.organization_id)
    .where(TaskAssignment.assignee_id == user.id)
    .order_by(TaskAssignment.created_at.desc())
  )
  out: list[MyAssignmentOut] = []
  for a, t, group_name, org_name in res.all():
    out.append(
      MyAssignmentOut(
        **assignment_fields(a),
        taskTitle=t.title,
        taskDescription=t.description,
        dueAt=t.due_at,
        requireAttachment=bool(t.require_attachment),
        groupId=t.group_id,
        groupName=group_name,
        organizationId=t.organization_id,
        organizationName=org_name,
      )
    )
  return out


@router.post("/assignments/{assignment_id}/status", response_model=AssignmentOut)
async def update_assignment_status(
  assignment_id: str,
  payload: AssignmentStatusIn,
  user: Profile = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> AssignmentOut:
  a, t = await _get_assignment_and_task(assignment_id, db)
  if a.assignee_id != user.id:
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Only the assignee can update this assignment")

  attachment_missing = False
  if t.require_attachment and payload.status == COMPLETED:
    attachment_missing = not await _has_attachment(t.id, user.id, db)

  result = plan_status_change(
    a,
    payload.status,
    now=datetime.now(timezone.utc),
    completion_note=payload.completionNote,
    update_note="completionNote" in payload.model_fields_set,
    attachment_required=attachment_missing,
  )
  if not result.changed:
    return assignment_out(a)

  before = {"status": a.status, "reviewStatus": a.review_status}
  apply_changes(a, result.changes)
  await audit_assignment(
    db,
    a,
    t,
    event_type="assignment.status_changed" if result.event else "assignment.note_updated",
    actor_id=user.id,
    payload={"before": before, "after": {"status": a.status, "reviewStatus": a.review_status}},
  )
  await db.commit()
  emit(result.event, organization_id=t.organization_id, task_id=t.id, assignment_id=a.id)
  return assignment_out(a)


@router.post("/assignments/{assignment_id}/review", response_model=AssignmentOut)
async def review_assignment(
  assignment_id: str,
  payload: AssignmentReviewIn,
  user: Profile = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> AssignmentOut:
  a, t = await _get_assignment_and_task(assignment_id, db)
  await require_group_role(t.group_id, "admin", user, db)

  result = plan_review(a, payload.status, reviewer_id=user.id, now=datetime.now(timezone.utc), note=payload.note)
  apply_changes(a, result.changes)
  await audit_assignment(
    db,
    a,
    t,
    event_type="assignment.reviewed",
    actor_id=user.id,
    payload={"reviewStatus": a.review_status, "note": a.review_note},
  )
  await db.commit()
  log.info("assignment.reviewed", assignment_id=a.id, review_status=a.review_status)
  emit(result.event, organization_id=t.organization_id, task_id=t.id, assignment_id=a.id)
  return assignment_out(a)
