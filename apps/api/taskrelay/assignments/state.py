"""
Assignment status and review transitions.

The functions here never touch the database. They take the current
assignment row, validate the requested move and return the column changes to
apply plus the notification event the move produces. Callers apply the
changes, commit, and only then emit the event.

Status graph::

  sent      -> received | archived
  received  -> completed | sent | archived
  completed -> received | sent | archived  (completed again only to resubmit
                                            after changes were requested)
  archived  -> received

Review moves from ``pending`` to ``accepted`` or ``changes_requested`` and only
while the assignment is ``completed``. Any move away from ``completed``
always resets the review to ``pending``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol

from taskrelay.notifications.events import NotificationEvent, ReviewUpdated, StatusChanged

SENT = "sent"
RECEIVED = "received"
COMPLETED = "completed"
ARCHIVED = "archived"
ASSIGNMENT_STATUSES = (SENT, RECEIVED, COMPLETED, ARCHIVED)

REVIEW_PENDING = "pending"
REVIEW_ACCEPTED = "accepted"
REVIEW_CHANGES_REQUESTED = "changes_requested"
REVIEW_STATUSES = (REVIEW_PENDING, REVIEW_ACCEPTED, REVIEW_CHANGES_REQUESTED)

_ALLOWED_STATUS_MOVES: dict[str, frozenset[str]] = {
  SENT: frozenset({RECEIVED, ARCHIVED}),
  RECEIVED: frozenset({COMPLETED, SENT, ARCHIVED}),
  COMPLETED: frozenset({RECEIVED, SENT, ARCHIVED}),
  ARCHIVED: frozenset({RECEIVED}),
}


class AssignmentTransitionError(Exception):
  """A requested status or review move is not allowed.

  ``code`` is one of ``invalid_transition``, ``not_submitted``,
  ``note_required``, ``already_reviewed`` or ``attachment_required``.
  """

  def __init__(self, code: str, message: str) -> None:
    super().__init__(message)
    self.code = code
    self.message = message


class AssignmentLike(Protocol):
  assignee_id: str
  status: str
  review_status: str
  completion_note: str | None


@dataclass(frozen=True)
class TransitionResult:
  changes: dict[str, Any] = field(default_factory=dict)
  event: NotificationEvent | None = None

  @property
  def changed(self) -> bool:
    return bool(self.changes)


def clean_note(note: str | None) -> str | None:
  s = (note or "").strip()
  return s or None


def plan_status_change(
  assignment: AssignmentLike,
  next_status: str,
  *,
  now: datetime,
  completion_note: str | None = None,
  update_note: bool = False,
  attachment_required: bool = False,
) -> TransitionResult:
  current = assignment.status
  target = str(next_status or "").strip().lower()
  if target not in ASSIGNMENT_STATUSES:
    raise AssignmentTransitionError("invalid_transition", f"Unknown assignment status: {next_status}")

  note = clean_note(completion_note) if update_note else assignment.completion_note
  note_changed = update_note and note != assignment.completion_note
  resubmission = current == COMPLETED and target == COMPLETED and assignment.review_status == REVIEW_CHANGES_REQUESTED

  if target == current and not resubmission:
    if note_changed:
      return TransitionResult(changes={"completion_note": note})
    return TransitionResult()

  if not resubmission and target not in _ALLOWED_STATUS_MOVES.get(current, frozenset()):
    raise AssignmentTransitionError("invalid_transition", f"Cannot move assignment from {current} to {target}")

  if target == COMPLETED and attachment_required:
    raise AssignmentTransitionError("attachment_required", "This task requires an attachment before it can be completed")

  changes: dict[str, Any] = {"status": target}
  if target == RECEIVED:
    changes["received_at"] = now
    changes["completed_at"] = None
  elif target == COMPLETED:
    changes["completed_at"] = now
  elif target == SENT:
    changes["received_at"] = None
    changes["completed_at"] = None
  elif target == ARCHIVED:
    changes["completed_at"] = None

  left_completed = current == COMPLETED and target != COMPLETED
  resubmitted = target == COMPLETED and assignment.review_status == REVIEW_CHANGES_REQUESTED
  if (left_completed or resubmitted) and assignment.review_status != REVIEW_PENDING:
    changes["review_status"] = REVIEW_PENDING
    changes["reviewed_at"] = None
    changes["reviewed_by"] = None

  if note_changed:
    changes["completion_note"] = note

  return TransitionResult(
    changes=changes,
    event=StatusChanged(assignee_id=assignment.assignee_id, old_status=current, new_status=target),
  )


def plan_review(
  assignment: AssignmentLike,
  decision: str,
  *,
  reviewer_id: str,
  now: datetime,
  note: str | None = None,
) -> TransitionResult:
  target = str(decision or "").strip().lower()
  if target not in (REVIEW_ACCEPTED, REVIEW_CHANGES_REQUESTED):
    raise AssignmentTransitionError("invalid_transition", f"Unknown review decision: {decision}")
  if assignment.status != COMPLETED:
    raise AssignmentTransitionError("not_submitted", "Assignment not yet submitted, cannot review")

  review_note = clean_note(note)
  if target == REVIEW_CHANGES_REQUESTED and not review_note:
    raise AssignmentTransitionError("note_required", "Please supply a note describing the requested changes")
  if assignment.review_status != REVIEW_PENDING:
    raise AssignmentTransitionError("already_reviewed", f"Assignment already reviewed ({assignment.review_status})")

  return TransitionResult(
    changes={
      "review_status": target,
      "review_note": review_note,
      "reviewed_at": now,
      "reviewed_by": reviewer_id,
    },
    event=ReviewUpdated(
      assignee_id=assignment.assignee_id,
      old_review_status=assignment.review_status,
      new_review_status=target,
    ),
  )


def apply_changes(assignment: Any, changes: dict[str, Any]) -> None:
  for key, value in changes.items():
    setattr(assignment, key, value)
