"""
Notification events carried by the task notification queue.

Each queue row stores an ``event_type`` tag and a small JSON payload. In code
the pair is represented by one of the frozen dataclasses below, so rendering
and enqueueing work against a closed set of variants. Rows with an event type
this module does not know (they can arrive through the enqueue endpoint)
become ``UnknownEvent`` instead of failing.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Union

ASSIGNMENT_CREATED = "assignment_created"
STATUS_CHANGED = "status_changed"
REVIEW_UPDATED = "review_updated"
DUE_REMINDER = "due_reminder"
OVERDUE_REMINDER = "overdue_reminder"


def _opt_str(value: Any) -> str | None:
  if value is None:
    return None
  s = str(value).strip()
  return s or None


@dataclass(frozen=True)
class AssignmentCreated:
  assignee_id: str | None

  @property
  def event_type(self) -> str:
    return ASSIGNMENT_CREATED

  def to_payload(self) -> dict[str, Any]:
    return {"assignee_id": self.assignee_id}


@dataclass(frozen=True)
class StatusChanged:
  assignee_id: str | None
  old_status: str | None
  new_status: str | None

  @property
  def event_type(self) -> str:
    return STATUS_CHANGED

  def to_payload(self) -> dict[str, Any]:
    return {"assignee_id": self.assignee_id, "old_status": self.old_status, "new_status": self.new_status}


@dataclass(frozen=True)
class ReviewUpdated:
  assignee_id: str | None
  old_review_status: str | None
  new_review_status: str | None

  @property
  def event_type(self) -> str:
    return REVIEW_UPDATED

  def to_payload(self) -> dict[str, Any]:
    return {
      "assignee_id": self.assignee_id,
      "old_review_status": self.old_review_status,
      "new_review_status": self.new_review_status,
    }


@dataclass(frozen=True)
class DueReminder:
  assignee_id: str | None

  @property
  def event_type(self) -> str:
    return DUE_REMINDER

  def to_payload(self) -> dict[str, Any]:
    return {"assignee_id": self.assignee_id}


@dataclass(frozen=True)
class OverdueReminder:
  assignee_id: str | None

  @property
  def event_type(self) -> str:
    return OVERDUE_REMINDER

  def to_payload(self) -> dict[str, Any]:
    return {"assignee_id": self.assignee_id}


@dataclass(frozen=True)
class UnknownEvent:
  type_name: str
  data: dict[str, Any] = field(default_factory=dict)

  @property
  def event_type(self) -> str:
    return self.type_name

  @property
  def assignee_id(self) -> str | None:
    return _opt_str(self.data.get("assignee_id"))

  def to_payload(self) -> dict[str, Any]:
    return dict(self.data)


NotificationEvent = Union[AssignmentCreated, StatusChanged, ReviewUpdated, DueReminder, OverdueReminder, UnknownEvent]


def event_from_row(event_type: str | None, payload: dict[str, Any] | None) -> NotificationEvent:
  et = str(event_type or "").strip()
  data = payload if isinstance(payload, dict) else {}
  assignee_id = _opt_str(data.get("assignee_id"))
  if et == ASSIGNMENT_CREATED:
    return AssignmentCreated(assignee_id=assignee_id)
  if et == STATUS_CHANGED:
    return StatusChanged(
      assignee_id=assignee_id,
      old_status=_opt_str(data.get("old_status")),
      new_status=_opt_str(data.get("new_status")),
    )
  if et == REVIEW_UPDATED:
    return ReviewUpdated(
      assignee_id=assignee_id,
      old_review_status=_opt_str(data.get("old_review_status")),
      new_review_status=_opt_str(data.get("new_review_status")),
    )
  if et == DUE_REMINDER:
    return DueReminder(assignee_id=assignee_id)
  if et == OVERDUE_REMINDER:
    return OverdueReminder(assignee_id=assignee_id)
  return UnknownEvent(type_name=et or "unknown", data=dict(data))
