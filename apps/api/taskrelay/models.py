from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utcnow() -> datetime:
  return datetime.now(timezone.utc)


def _uuid() -> str:
  return str(uuid.uuid4())


# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests).
JsonDict = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
  pass


class Profile(Base):
  __tablename__ = "profiles"

  # Same id as the identity provider's user.
  id: Mapped[str] = mapped_column(String(36), primary_key=True)
  email: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
  full_name: Mapped[str | None] = mapped_column(String, nullable=True)
  created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)


class Organization(Base):
  __tablename__ = "organizations"

  id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
  name: Mapped[str] = mapped_column(String, nullable=False)
  created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)


class OrganizationMember(Base):
  __tablename__ = "organization_members"
  __table_args__ = (UniqueConstraint("organization_id", "user_id", name="ux_org_member_org_user"),)

  id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
  organization_id: Mapped[str] = mapped_column(String(36), ForeignKey("organizations.id"), nullable=False, index=True)
  user_id: Mapped[str] = mapped_column(String(36), ForeignKey("profiles.id"), nullable=False, index=True)
  role: Mapped[str] = mapped_column(String, nullable=False, default="member")  # owner | admin | member
  created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)


class Group(Base):
  __tablename__ = "groups"

  id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
  organization_id: Mapped[str] = mapped_column(String(36), ForeignKey("organizations.id"), nullable=False, index=True)
  name: Mapped[str] = mapped_column(String, nullable=False)
  created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)


class GroupMember(Base):
  __tablename__ = "group_members"
  __table_args__ = (UniqueConstraint("group_id", "user_id", name="ux_group_member_group_user"),)

  id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
  group_id: Mapped[str] = mapped_column(String(36), ForeignKey("groups.id"), nullable=False, index=True)
  user_id: Mapped[str] = mapped_column(String(36), ForeignKey("profiles.id"), nullable=False, index=True)
  role: Mapped[str] = mapped_column(String, nullable=False, default="member")  # admin | member
  created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)


class OrganizationTag(Base):
  __tablename__ = "organization_tags"

  id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
  organization_id: Mapped[str] = mapped_column(String(36), ForeignKey("organizations.id"), nullable=False, index=True)
  name: Mapped[str] = mapped_column(String, nullable=False)
  is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
  created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)


class MemberTag(Base):
  __tablename__ = "member_tags"
  __table_args__ = (UniqueConstraint("user_id", "tag_id", name="ux_member_tag_user_tag"),)

  id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
  organization_id: Mapped[str] = mapped_column(String(36), ForeignKey("organizations.id"), nullable=False, index=True)
  user_id: Mapped[str] = mapped_column(String(36), ForeignKey("profiles.id"), nullable=False, index=True)
  tag_id: Mapped[str] = mapped_column(String(36), ForeignKey("organization_tags.id"), nullable=False, index=True)
  created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)


class Task(Base):
  __tablename__ = "tasks"

  id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
  organization_id: Mapped[str] = mapped_column(String(36), ForeignKey("organizations.id"), nullable=False, index=True)
  group_id: Mapped[str] = mapped_column(String(36), ForeignKey("groups.id"), nullable=False, index=True)
  created_by: Mapped[str] = mapped_column(String(36), ForeignKey("profiles.id"), nullable=False)
  title: Mapped[str] = mapped_column(String, nullable=False)
  description: Mapped[str | None] = mapped_column(Text, nullable=True)
  due_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True, index=True)
  require_attachment: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
  created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
  updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)


class TaskAssignment(Base):
  __tablename__ = "task_assignments"
  __table_args__ = (UniqueConstraint("task_id", "assignee_id", name="ux_task_assignment_task_assignee"),)

  id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
  task_id: Mapped[str] = mapped_column(String(36), ForeignKey("tasks.id"), nullable=False, index=True)
  assignee_id: Mapped[str] = mapped_column(String(36), ForeignKey("profiles.id"), nullable=False, index=True)
  status: Mapped[str] = mapped_column(String, nullable=False, default="sent")  # sent | received | completed | archived
  completion_note: Mapped[str | None] = mapped_column(Text, nullable=True)
  review_status: Mapped[str] = mapped_column(String, nullable=False, default="pending")  # pending | accepted | changes_requested
  review_note: Mapped[str | None] = mapped_column(Text, nullable=True)
  reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
  reviewed_by: Mapped[str | None] = mapped_column(String(36), ForeignKey("profiles.id"), nullable=True)
  received_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
  completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
  due_reminder_sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
  overdue_reminder_sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
  created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
  updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)


class TaskAttachment(Base):
  __tablename__ = "task_attachments"

  id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
  task_id: Mapped[str] = mapped_column(String(36), ForeignKey("tasks.id"), nullable=False, index=True)
  organization_id: Mapped[str] = mapped_column(String(36), ForeignKey("organizations.id"), nullable=False)
  uploaded_by: Mapped[str] = mapped_column(String(36), ForeignKey("profiles.id"), nullable=False, index=True)
  file_name: Mapped[str] = mapped_column(String, nullable=False)
  file_path: Mapped[str] = mapped_column(String, nullable=False)
  content_type: Mapped[str] = mapped_column(String, nullable=False)
  size_bytes: Mapped[int] = mapped_column(Integer, nullable=False)
  uploaded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)


class TaskNotificationQueue(Base):
  __tablename__ = "task_notification_queue"

  id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
  organization_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
  task_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
  assignment_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)
  event_type: Mapped[str] = mapped_column(String, nullable=False)
  payload: Mapped[dict[str, Any]] = mapped_column(JsonDict, nullable=False, default=dict)
  attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
  last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
  created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)
  processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True, index=True)


class UserDeviceToken(Base):
  __tablename__ = "user_device_tokens"
  __table_args__ = (UniqueConstraint("user_id", "token", name="ux_user_device_tokens_user_token"),)

  id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
  user_id: Mapped[str] = mapped_column(String(36), ForeignKey("profiles.id"), nullable=False, index=True)
  token: Mapped[str] = mapped_column(String, nullable=False)
  platform: Mapped[str] = mapped_column(String, nullable=False, default="unknown")  # ios | android | web | unknown
  device_name: Mapped[str | None] = mapped_column(String, nullable=True)
  last_seen_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
  created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)


class AuditEvent(Base):
  __tablename__ = "audit_events"

  id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
  organization_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)
  task_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
  assignment_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
  actor_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
  event_type: Mapped[str] = mapped_column(String, nullable=False)
  entity_type: Mapped[str] = mapped_column(String, nullable=False)
  entity_id: Mapped[str | None] = mapped_column(String, nullable=True)
  payload: Mapped[dict[str, Any]] = mapped_column(JsonDict, nullable=False, default=dict)
  created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
