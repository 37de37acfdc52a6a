from __future__ import annotations

from datetime import datetime, timezone

import structlog
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from taskrelay.audit import write_audit
from taskrelay.config import settings
from taskrelay.deps import get_current_user, get_db, require_group_role, require_org_role
from taskrelay.models import GroupMember, MemberTag, OrganizationTag, Profile, Task, TaskAssignment, TaskAttachment
from taskrelay.notifications.emitter import emit
from taskrelay.notifications.events import AssignmentCreated
from taskrelay.routers.assignments import assignment_fields, assignment_out
from taskrelay.schemas import (
  AttachmentIn,
  AttachmentOut,
  TaskAssignmentOut,
  TaskOut,
  TaskPublishIn,
  TaskPublishOut,
  TaskUpdateIn,
)

log = structlog.get_logger()

router = APIRouter(tags=["tasks"])


def _task_out(t: Task) -> TaskOut:
  return TaskOut(
    id=t.id,
    organizationId=t.organization_id,
    groupId=t.group_id,
    createdBy=t.created_by,
    title=t.title,
    description=t.description,
    dueAt=t.due_at,
    requireAttachment=bool(t.require_attachment),
    createdAt=t.created_at,
    updatedAt=t.updated_at,
  )


def _attachment_out(a: TaskAttachment) -> AttachmentOut:
  return AttachmentOut(
    id=a.id,
    taskId=a.task_id,
    organizationId=a.organization_id,
    uploadedBy=a.uploaded_by,
    fileName=a.file_name,
    filePath=a.file_path,
    contentType=a.content_type,
    sizeBytes=a.size_bytes,
    uploadedAt=a.uploaded_at,
  )


def _as_utc(dt: datetime | None) -> datetime | None:
  if dt is None or dt.tzinfo is not None:
    return dt
  return dt.replace(tzinfo=timezone.utc)


def _dedupe(ids: list[str]) -> list[str]:
  out: list[str] = []
  for raw in ids:
    s = str(raw or "").strip()
    if s and s not in out:
      out.append(s)
  return out


async def _get_task_or_404(task_id: str, db: AsyncSession) -> Task:
  res = await db.execute(select(Task).where(Task.id == task_id))
  t = res.scalar_one_or_none()
  if not t:
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Task not found")
  return t


async def _resolve_assignees(
  db: AsyncSession,
  *,
  group_id: str,
  organization_id: str,
  assignee_ids: list[str],
  tag_ids: list[str],
) -> list[str]:
  """
  Validate the requested assignees against the group and filter them by tags.

  With no explicit assignees every group member is a candidate. When tags are
  given only candidates carrying all of them (active tags of the group's
  organization) remain.
  """
  mres = await db.execute(select(GroupMember.user_id).where(GroupMember.group_id == group_id))
  members = list(mres.scalars().all())
  if assignee_ids:
    outsiders = [uid for uid in assignee_ids if uid not in members]
    if outsiders:
      raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Assignee is not a member of this group")
    candidates = assignee_ids
  else:
    candidates = members

  if not tag_ids or not candidates:
    return candidates

  tres = await db.execute(
    select(OrganizationTag.id).where(
      OrganizationTag.id.in_(tag_ids),
      OrganizationTag.organization_id == organization_id,
      OrganizationTag.is_active.is_(True),
    )
  )
  valid_tags = set(tres.scalars().all())
  if len(valid_tags) != len(tag_ids):
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid tagIds")

  cres = await db.execute(
    select(MemberTag.user_id)
    .where(
      MemberTag.organization_id == organization_id,
      MemberTag.user_id.in_(candidates),
      MemberTag.tag_id.in_(tag_ids),
    )
    .group_by(MemberTag.user_id)
    .having(func.count(func.distinct(MemberTag.tag_id)) == len(tag_ids))
  )
  tagged = set(cres.scalars().all())
  return [uid for uid in candidates if uid in tagged]


@router.post("/groups/{group_id}/tasks", response_model=TaskPublishOut)
async def publish_task(
  group_id: str,
  payload: TaskPublishIn,
  user: Profile = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> TaskPublishOut:
  g = await require_group_role(group_id, "admin", user, db)
  title = payload.title.strip()
  if not title:
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Title is required")

  assignee_ids = await _resolve_assignees(
    db,
    group_id=group_id,
    organization_id=g.organization_id,
    assignee_ids=_dedupe(payload.assigneeIds),
    tag_ids=_dedupe(payload.tagIds),
  )
  if not assignee_ids:
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No assignees selected")

  t = Task(
    organization_id=g.organization_id,
    group_id=group_id,
    created_by=user.id,
    title=title,
    description=(payload.description or "").strip() or None,
    due_at=payload.dueAt,
    require_attachment=payload.requireAttachment,
  )
  db.add(t)
  await db.flush()

  assignments = [TaskAssignment(task_id=t.id, assignee_id=uid) for uid in assignee_ids]
  db.add_all(assignments)
  await db.flush()

  await write_audit(
    db,
    event_type="task.published",
    entity_type="Task",
    entity_id=t.id,
    organization_id=t.organization_id,
    task_id=t.id,
    actor_id=user.id,
    payload={"title": t.title, "assignees": assignee_ids, "tagIds": payload.tagIds},
  )
  await db.commit()
  log.info("task.published", task_id=t.id, group_id=group_id, assignees=len(assignments))

  for a in assignments:
    emit(AssignmentCreated(assignee_id=a.assignee_id), organization_id=t.organization_id, task_id=t.id, assignment_id=a.id)
  return TaskPublishOut(task=_task_out(t), assignments=[assignment_out(a) for a in assignments])


@router.patch("/tasks/{task_id}", response_model=TaskOut)
async def update_task(task_id: str, payload: TaskUpdateIn, user: Profile = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> TaskOut:
  t = await _get_task_or_404(task_id, db)
  await require_group_role(t.group_id, "admin", user, db)

  fields_set = payload.model_fields_set
  old_due = t.due_at
  changed: dict = {}
  mapping = [
    ("title", "title"),
    ("description", "description"),
    ("due_at", "dueAt"),
    ("require_attachment", "requireAttachment"),
  ]
  for model_attr, field_name in mapping:
    if field_name in fields_set:
      val = getattr(payload, field_name)
      if field_name == "title" and (val is None or not str(val).strip()):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Title is required")
      if field_name == "requireAttachment" and val is None:
        continue
      setattr(t, model_attr, val)
      changed[field_name] = val

  # Reminder markers belong to the old deadline.
  due_changed = "dueAt" in fields_set and _as_utc(payload.dueAt) != _as_utc(old_due)
  if due_changed:
    await db.execute(
      update(TaskAssignment)
      .where(TaskAssignment.task_id == t.id)
      .values(due_reminder_sent_at=None, overdue_reminder_sent_at=None)
      .execution_options(synchronize_session=False)
    )

  await write_audit(
    db,
    event_type="task.updated",
    entity_type="Task",
    entity_id=t.id,
    organization_id=t.organization_id,
    task_id=t.id,
    actor_id=user.id,
    payload={"changed": list(changed.keys()), "fields": changed, "remindersReset": due_changed},
  )
  await db.commit()
  await db.refresh(t)
  return _task_out(t)


@router.get("/tasks/{task_id}/assignments", response_model=list[TaskAssignmentOut])
async def list_task_assignments(task_id: str, user: Profile = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> list[TaskAssignmentOut]:
  t = await _get_task_or_404(task_id, db)
  await require_group_role(t.group_id, "admin", user, db)
  res = await db.execute(
    select(TaskAssignment, Profile)
    .outerjoin(Profile, Profile.id == TaskAssignment.assignee_id)
    .where(TaskAssignment.task_id == task_id)
    .order_by(TaskAssignment.created_at.asc())
  )
  return [
    TaskAssignmentOut(**assignment_fields(a), assigneeName=(p.full_name if p else None), assigneeEmail=(p.email if p else None))
    for a, p in res.all()
  ]


@router.get("/tasks/{task_id}/attachments", response_model=list[AttachmentOut])
async def list_attachments(task_id: str, user: Profile = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> list[AttachmentOut]:
  t = await _get_task_or_404(task_id, db)
  await require_org_role(t.organization_id, "member", user, db)
  res = await db.execute(
    select(TaskAttachment).where(TaskAttachment.task_id == task_id).order_by(TaskAttachment.uploaded_at.asc())
  )
  return [_attachment_out(a) for a in res.scalars().all()]


def _content_type_allowed(content_type: str) -> bool:
  ct = content_type.split(";", 1)[0].strip().lower()
  if ct in settings.allowed_attachment_type_set():
    return True
  return any(ct.startswith(p) for p in settings.allowed_attachment_prefix_list())


@router.post("/tasks/{task_id}/attachments", response_model=AttachmentOut)
async def record_attachment(
  task_id: str,
  payload: AttachmentIn,
  user: Profile = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> AttachmentOut:
  t = await _get_task_or_404(task_id, db)
  await require_org_role(t.organization_id, "member", user, db)

  if not _content_type_allowed(payload.contentType):
    raise HTTPException(status_code=status.HTTP_415_UNSUPPORTED_MEDIA_TYPE, detail="Attachment type not allowed")
  if payload.sizeBytes > int(settings.max_attachment_bytes):
    raise HTTPException(status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE, detail="Attachment too large")

  a = TaskAttachment(
    task_id=t.id,
    organization_id=t.organization_id,
    uploaded_by=user.id,
    file_name=payload.fileName.strip(),
    file_path=payload.filePath.strip(),
    content_type=payload.contentType.strip(),
    size_bytes=payload.sizeBytes,
  )
  db.add(a)
  await db.flush()
  await write_audit(
    db,
    event_type="attachment.added",
    entity_type="TaskAttachment",
    entity_id=a.id,
    organization_id=t.organization_id,
    task_id=t.id,
    actor_id=user.id,
    payload={"fileName": a.file_name, "sizeBytes": a.size_bytes},
  )
  await db.commit()
  return _attachment_out(a)
