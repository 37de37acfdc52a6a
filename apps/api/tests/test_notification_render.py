from __future__ import annotations

from datetime import datetime, timezone

import pytest

from taskrelay.notifications.events import (
  AssignmentCreated,
  DueReminder,
  OverdueReminder,
  ReviewUpdated,
  StatusChanged,
  UnknownEvent,
  event_from_row,
)
from taskrelay.notifications.render import AssignmentContext, event_line, render_message, review_label, status_label


def _ctx(**overrides) -> AssignmentContext:
  base = dict(
    assignment_id="as-1",
    task_id="t-1",
    organization_id="o-1",
    assignee_id="u-1",
    status="sent",
    review_status="pending",
    review_note=None,
    task_title="Restock shelves",
    due_at=datetime(2026, 3, 2, 8, 0, tzinfo=timezone.utc),
    assignee_email="u1@example.com",
    assignee_name=None,
  )
  base.update(overrides)
  return AssignmentContext(**base)


@pytest.mark.parametrize(
  "raw,label",
  [
    ("sent", "Pending"),
    ("pending", "Pending"),
    ("received", "In progress"),
    ("in_progress", "In progress"),
    ("completed", "Completed"),
    ("archived", "Archived"),
    ("weird", "weird"),
    (None, "Unknown"),
  ],
)
def test_status_labels(raw, label) -> None:
  assert status_label(raw) == label


def test_review_labels() -> None:
  assert review_label("pending") == "Pending review"
  assert review_label("accepted") == "Accepted"
  assert review_label("changes_requested") == "Changes requested"


def test_event_lines() -> None:
  ctx = _ctx()
  assert event_line(AssignmentCreated(assignee_id="u-1"), ctx) == "You have been assigned to this task"
  assert event_line(StatusChanged("u-1", "received", "completed"), ctx) == "Task status is now: Completed"
  assert event_line(ReviewUpdated("u-1", "pending", "accepted"), ctx) == "Review status is now: Accepted"
  assert event_line(DueReminder("u-1"), ctx) == "The deadline for this task is approaching (2026-03-02 08:00 UTC)"
  assert event_line(OverdueReminder("u-1"), ctx) == "This task is overdue (was due 2026-03-02 08:00 UTC)"
  assert event_line(UnknownEvent("escalated"), ctx) == "Event: escalated"


def test_status_line_falls_back_to_current_status() -> None:
  ctx = _ctx(status="received")
  assert event_line(StatusChanged("u-1", None, None), ctx) == "Task status is now: In progress"


def test_render_includes_reviewer_note_and_link() -> None:
  ctx = _ctx(status="completed", review_status="changes_requested", review_note="Label the bins", assignee_name="Sam")
  msg = render_message(ReviewUpdated("u-1", "pending", "changes_requested"), ctx, portal_base_url="https://portal.example.com")
  assert msg.subject == "[Task] Restock shelves"
  assert msg.body.startswith("Hi Sam,")
  assert "Reviewer note: Label the bins" in msg.body
  assert "Review: Changes requested" in msg.body
  assert msg.link == "https://portal.example.com/my-tasks?assignment=as-1"
  assert msg.push_title == "Restock shelves"
  assert msg.push_body == "Review status is now: Changes requested"


def test_render_without_deadline_or_portal() -> None:
  msg = render_message(AssignmentCreated("u-1"), _ctx(due_at=None, task_title="  "))
  assert msg.subject == "[Task] Task"
  assert "Due: No deadline" in msg.body
  assert msg.link is None


def test_naive_due_dates_are_treated_as_utc() -> None:
  ctx = _ctx(due_at=datetime(2026, 3, 2, 8, 0))
  assert event_line(DueReminder("u-1"), ctx).endswith("(2026-03-02 08:00 UTC)")


def test_event_from_row_is_tolerant() -> None:
  assert event_from_row("status_changed", {"assignee_id": " u-1 ", "new_status": "completed"}) == StatusChanged(
    assignee_id="u-1", old_status=None, new_status="completed"
  )
  assert event_from_row("due_reminder", None) == DueReminder(assignee_id=None)
  unknown = event_from_row("", {"assignee_id": "u-2"})
  assert isinstance(unknown, UnknownEvent)
  assert unknown.event_type == "unknown"
  assert unknown.assignee_id == "u-2"
