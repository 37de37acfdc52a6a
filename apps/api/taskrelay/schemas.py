from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, Field
from pydantic import field_validator


_DATE_ONLY_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def _parse_dt_utc(value: object) -> object:
  if value is None:
    return None
  if isinstance(value, datetime):
    dt = value
  elif isinstance(value, str):
    s = value.strip()
    if not s:
      return None
    if _DATE_ONLY_RE.fullmatch(s):
      dt = datetime.fromisoformat(s)
    else:
      dt = datetime.fromisoformat(s.replace("Z", "+00:00"))
  else:
    return value

  if dt.tzinfo is None:
    return dt.replace(tzinfo=timezone.utc)
  return dt.astimezone(timezone.utc)


AssignmentStatus = Literal["sent", "received", "completed", "archived"]
ReviewStatus = Literal["pending", "accepted", "changes_requested"]


class AssignmentOut(BaseModel):
  id: str
  taskId: str
  assigneeId: str
  status: AssignmentStatus
  completionNote: str | None = None
  reviewStatus: ReviewStatus
  reviewNote: str | None = None
  reviewedAt: datetime | None = None
  reviewedBy: str | None = None
  receivedAt: datetime | None = None
  completedAt: datetime | None = None
  createdAt: datetime
  updatedAt: datetime


class MyAssignmentOut(AssignmentOut):
  taskTitle: str
  taskDescription: str | None = None
  dueAt: datetime | None = None
  requireAttachment: bool = False
  groupId: str
  groupName: str | None = None
  organizationId: str
  organizationName: str | None = None


class TaskAssignmentOut(AssignmentOut):
  assigneeName: str | None = None
  assigneeEmail: str | None = None


class AssignmentStatusIn(BaseModel):
  status: AssignmentStatus
  # Omit to keep the stored note; send null or "" to clear it.
  completionNote: str | None = Field(default=None, max_length=5000)


class AssignmentReviewIn(BaseModel):
  status: Literal["accepted", "changes_requested"]
  note: str | None = Field(default=None, max_length=5000)


class TaskPublishIn(BaseModel):
  title: str = Field(min_length=1, max_length=300)
  description: str | None = None
  dueAt: datetime | None = None
  requireAttachment: bool = False
  assigneeIds: list[str] = Field(default_factory=list)
  # Only assignees carrying every one of these tags receive the task.
  tagIds: list[str] = Field(default_factory=list)

  @field_validator("dueAt", mode="before")
  @classmethod
  def _due_at_to_utc(cls, v: object) -> object:
    return _parse_dt_utc(v)


class TaskUpdateIn(BaseModel):
  title: str | None = Field(default=None, min_length=1, max_length=300)
  description: str | None = None
  dueAt: datetime | None = None
  requireAttachment: bool | None = None

  @field_validator("dueAt", mode="before")
  @classmethod
  def _due_at_to_utc(cls, v: object) -> object:
    return _parse_dt_utc(v)


class TaskOut(BaseModel):
  id: str
  organizationId: str
  groupId: str
  createdBy: str
  title: str
  description: str | None = None
  dueAt: datetime | None = None
  requireAttachment: bool
  createdAt: datetime
  updatedAt: datetime


class TaskPublishOut(BaseModel):
  task: TaskOut
  assignments: list[AssignmentOut]


class AttachmentIn(BaseModel):
  fileName: str = Field(min_length=1, max_length=255)
  filePath: str = Field(min_length=1, max_length=1024)
  contentType: str = Field(min_length=1, max_length=255)
  sizeBytes: int = Field(ge=0)


class AttachmentOut(BaseModel):
  id: str
  taskId: str
  organizationId: str
  uploadedBy: str
  fileName: str
  filePath: str
  contentType: str
  sizeBytes: int
  uploadedAt: datetime


class DeviceTokenIn(BaseModel):
  token: str = Field(min_length=1, max_length=512)
  platform: Literal["ios", "android", "web", "unknown"] | None = None
  deviceName: str | None = Field(default=None, max_length=200)


class DeviceTokenOut(BaseModel):
  token: str
  platform: str
  deviceName: str | None = None
  lastSeenAt: datetime
  createdAt: datetime
