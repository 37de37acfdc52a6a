"""init

Revision ID: 0001_init
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql


revision = "0001_init"
down_revision = None
branch_labels = None
depends_on = None


def _id() -> sa.Column:
  return sa.Column("id", sa.String(36), primary_key=True, nullable=False)


def _created_at() -> sa.Column:
  return sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()"))


def upgrade() -> None:
  op.create_table(
    "profiles",
    _id(),
    sa.Column("email", sa.String(), nullable=True),
    sa.Column("full_name", sa.String(), nullable=True),
    _created_at(),
  )
  op.create_index("ix_profiles_email", "profiles", ["email"])

  op.create_table(
    "organizations",
    _id(),
    sa.Column("name", sa.String(), nullable=False),
    _created_at(),
  )

  op.create_table(
    "organization_members",
    _id(),
    sa.Column("organization_id", sa.String(36), sa.ForeignKey("organizations.id"), nullable=False),
    sa.Column("user_id", sa.String(36), sa.ForeignKey("profiles.id"), nullable=False),
    sa.Column("role", sa.String(), nullable=False, server_default="member"),  # owner|admin|member
    _created_at(),
    sa.UniqueConstraint("organization_id", "user_id", name="ux_org_member_org_user"),
  )
  op.create_index("ix_organization_members_organization_id", "organization_members", ["organization_id"])
  op.create_index("ix_organization_members_user_id", "organization_members", ["user_id"])

  op.create_table(
    "groups",
    _id(),
    sa.Column("organization_id", sa.String(36), sa.ForeignKey("organizations.id"), nullable=False),
    sa.Column("name", sa.String(), nullable=False),
    _created_at(),
  )
  op.create_index("ix_groups_organization_id", "groups", ["organization_id"])

  op.create_table(
    "group_members",
    _id(),
    sa.Column("group_id", sa.String(36), sa.ForeignKey("groups.id"), nullable=False),
    sa.Column("user_id", sa.String(36), sa.ForeignKey("profiles.id"), nullable=False),
    sa.Column("role", sa.String(), nullable=False, server_default="member"),  # admin|member
    _created_at(),
    sa.UniqueConstraint("group_id", "user_id", name="ux_group_member_group_user"),
  )
  op.create_index("ix_group_members_group_id", "group_members", ["group_id"])
  op.create_index("ix_group_members_user_id", "group_members", ["user_id"])

  op.create_table(
    "organization_tags",
    _id(),
    sa.Column("organization_id", sa.String(36), sa.ForeignKey("organizations.id"), nullable=False),
    sa.Column("name", sa.String(), nullable=False),
    sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
    _created_at(),
  )
  op.create_index("ix_organization_tags_organization_id", "organization_tags", ["organization_id"])

  op.create_table(
    "member_tags",
    _id(),
    sa.Column("organization_id", sa.String(36), sa.ForeignKey("organizations.id"), nullable=False),
    sa.Column("user_id", sa.String(36), sa.ForeignKey("profiles.id"), nullable=False),
    sa.Column("tag_id", sa.String(36), sa.ForeignKey("organization_tags.id"), nullable=False),
    _created_at(),
    sa.UniqueConstraint("user_id", "tag_id", name="ux_member_tag_user_tag"),
  )
  op.create_index("ix_member_tags_organization_id", "member_tags", ["organization_id"])
  op.create_index("ix_member_tags_user_id", "member_tags", ["user_id"])
  op.create_index("ix_member_tags_tag_id", "member_tags", ["tag_id"])

  op.create_table(
    "tasks",
    _id(),
    sa.Column("organization_id", sa.String(36), sa.ForeignKey("organizations.id"), nullable=False),
    sa.Column("group_id", sa.String(36), sa.ForeignKey("groups.id"), nullable=False),
    sa.Column("created_by", sa.String(36), sa.ForeignKey("profiles.id"), nullable=False),
    sa.Column("title", sa.String(), nullable=False),
    sa.Column("description", sa.Text(), nullable=True),
    sa.Column("due_at", sa.DateTime(timezone=True), nullable=True),
    sa.Column("require_attachment", sa.Boolean(), nullable=False, server_default=sa.text("false")),
    _created_at(),
    sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
  )
  op.create_index("ix_tasks_organization_id", "tasks", ["organization_id"])
  op.create_index("ix_tasks_group_id", "tasks", ["group_id"])
  op.create_index("ix_tasks_due_at", "tasks", ["due_at"])

  op.create_table(
    "task_assignments",
    _id(),
    sa.Column("task_id", sa.String(36), sa.ForeignKey("tasks.id"), nullable=False),
    sa.Column("assignee_id", sa.String(36), sa.ForeignKey("profiles.id"), nullable=False),
    sa.Column("status", sa.String(), nullable=False, server_default="sent"),  # sent|received|completed|archived
    sa.Column("completion_note", sa.Text(), nullable=True),
    sa.Column("review_status", sa.String(), nullable=False, server_default="pending"),  # pending|accepted|changes_requested
    sa.Column("review_note", sa.Text(), nullable=True),
    sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
    sa.Column("reviewed_by", sa.String(36), sa.ForeignKey("profiles.id"), nullable=True),
    sa.Column("received_at", sa.DateTime(timezone=True), nullable=True),
    sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
    sa.Column("due_reminder_sent_at", sa.DateTime(timezone=True), nullable=True),
    sa.Column("overdue_reminder_sent_at", sa.DateTime(timezone=True), nullable=True),
    _created_at(),
    sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    sa.UniqueConstraint("task_id", "assignee_id", name="ux_task_assignment_task_assignee"),
  )
  op.create_index("ix_task_assignments_task_id", "task_assignments", ["task_id"])
  op.create_index("ix_task_assignments_assignee_id", "task_assignments", ["assignee_id"])

  op.create_table(
    "task_attachments",
    _id(),
    sa.Column("task_id", sa.String(36), sa.ForeignKey("tasks.id"), nullable=False),
    sa.Column("organization_id", sa.String(36), sa.ForeignKey("organizations.id"), nullable=False),
    sa.Column("uploaded_by", sa.String(36), sa.ForeignKey("profiles.id"), nullable=False),
    sa.Column("file_name", sa.String(), nullable=False),
    sa.Column("file_path", sa.String(), nullable=False),
    sa.Column("content_type", sa.String(), nullable=False),
    sa.Column("size_bytes", sa.Integer(), nullable=False),
    sa.Column("uploaded_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
  )
  op.create_index("ix_task_attachments_task_id", "task_attachments", ["task_id"])
  op.create_index("ix_task_attachments_uploaded_by", "task_attachments", ["uploaded_by"])

  op.create_table(
    "task_notification_queue",
    _id(),
    sa.Column("organization_id", sa.String(36), nullable=True),
    sa.Column("task_id", sa.String(36), nullable=True),
    sa.Column("assignment_id", sa.String(36), nullable=True),
    sa.Column("event_type", sa.String(), nullable=False),
    sa.Column("payload", postgresql.JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
    sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
    sa.Column("last_error", sa.Text(), nullable=True),
    _created_at(),
    sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
  )
  op.create_index("ix_task_notification_queue_assignment_id", "task_notification_queue", ["assignment_id"])
  op.create_index("ix_task_notification_queue_created_at", "task_notification_queue", ["created_at"])
  op.create_index("ix_task_notification_queue_processed_at", "task_notification_queue", ["processed_at"])

  op.create_table(
    "user_device_tokens",
    _id(),
    sa.Column("user_id", sa.String(36), sa.ForeignKey("profiles.id"), nullable=False),
    sa.Column("token", sa.String(), nullable=False),
    sa.Column("platform", sa.String(), nullable=False, server_default="unknown"),  # ios|android|web|unknown
    sa.Column("device_name", sa.String(), nullable=True),
    sa.Column("last_seen_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    _created_at(),
    sa.UniqueConstraint("user_id", "token", name="ux_user_device_tokens_user_token"),
  )
  op.create_index("ix_user_device_tokens_user_id", "user_device_tokens", ["user_id"])

  op.create_table(
    "audit_events",
    _id(),
    sa.Column("organization_id", sa.String(36), nullable=True),
    sa.Column("task_id", sa.String(36), nullable=True),
    sa.Column("assignment_id", sa.String(36), nullable=True),
    sa.Column("actor_id", sa.String(36), nullable=True),
    sa.Column("event_type", sa.String(), nullable=False),
    sa.Column("entity_type", sa.String(), nullable=False),
    sa.Column("entity_id", sa.String(), nullable=True),
    sa.Column("payload", postgresql.JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
    _created_at(),
  )
  op.create_index("ix_audit_events_organization_id", "audit_events", ["organization_id"])


def downgrade() -> None:
  op.drop_table("audit_events")
  op.drop_table("user_device_tokens")
  op.drop_table("task_notification_queue")
  op.drop_table("task_attachments")
  op.drop_table("task_assignments")
  op.drop_table("tasks")
  op.drop_table("member_tags")
  op.drop_table("organization_tags")
  op.drop_table("group_members")
  op.drop_table("groups")
  op.drop_table("organization_members")
  op.drop_table("organizations")
  op.drop_table("profiles")
