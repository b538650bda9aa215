"""Moderation workflow for submissions.

States::

    pending -> approved
    pending -> rejected

``approved`` and ``rejected`` are terminal. Only admins move an item out of
``pending``. Deleting is not a transition; see :func:`resolve_deletion`.
"""
from datetime import datetime, timezone

from sqlalchemy.orm import Session

from college_katta.models.submission import (
    STATUS_APPROVED,
    STATUS_PENDING,
    STATUS_REJECTED,
    SUBMISSION_STATUSES,
    Submission,
)
from college_katta.models.user import User

TRANSITIONS: dict[str, frozenset[str]] = {
    STATUS_PENDING: frozenset({STATUS_APPROVED, STATUS_REJECTED}),
    STATUS_APPROVED: frozenset(),
    STATUS_REJECTED: frozenset(),
}

DELETE_RECORD = "delete"
HIDE_FROM_OWNER = "hide"


class ModerationError(Exception):
    """Base exception for moderation errors."""


class InvalidStatusError(ModerationError):
    """Raised when the requested status is not a known status."""


class ModerationPermissionError(ModerationError):
    """Raised when the actor may not perform the action."""


class TransitionNotAllowedError(ModerationError):
    """Raised when the submission cannot move to the requested status."""


def initial_status(needs_approval: bool) -> str:
    return STATUS_PENDING if needs_approval else STATUS_APPROVED


def can_transition(current: str, target: str) -> bool:
    return target in TRANSITIONS.get(current, frozenset())


def is_publicly_visible(submission: Submission) -> bool:
    return submission.status == STATUS_APPROVED


def check_decision(submission: Submission, target: str, actor: User) -> None:
    if target not in SUBMISSION_STATUSES:
        raise InvalidStatusError("Invalid status value")
    if not actor.is_admin:
        raise ModerationPermissionError("Access denied. Admin privileges required.")
    if not can_transition(submission.status, target):
        raise TransitionNotAllowedError(
            f"Cannot change status from {submission.status} to {target}"
        )


def apply_decision(
    db: Session,
    submission: Submission,
    target: str,
    actor: User,
    now: datetime | None = None,
) -> Submission:
    """Move a pending submission to ``approved`` or ``rejected`` on behalf of an admin.

    The write only matches a row that is still ``pending``, so when two admins
    decide at once the later one gets :class:`TransitionNotAllowedError`.
    The caller commits.
    """
    check_decision(submission, target, actor)

    updated = db.query(Submission).filter(
        Submission.id == submission.id,
        Submission.status == STATUS_PENDING,
    ).update(
        {
            Submission.status: target,
            Submission.reviewed_by_id: actor.id,
            Submission.reviewed_at: now or datetime.now(timezone.utc),
        },
        synchronize_session=False,
    )
    if updated == 0:
        current = db.query(Submission.status).filter(Submission.id == submission.id).scalar()
        raise TransitionNotAllowedError(f"Cannot change status from {current} to {target}")

    db.refresh(submission)
    return submission


def resolve_deletion(submission: Submission, actor: User) -> str:
    """Decide what a delete request from ``actor`` does to ``submission``.

    Admins remove the record. Owners remove their own pending or rejected
    items; an owner's approved item stays public and is only dropped from
    the owner's uploads list.
    """
    if actor.is_admin:
        return DELETE_RECORD
    if submission.owner_id != actor.id:
        raise ModerationPermissionError("You are not authorized to delete this file")
    if submission.status == STATUS_APPROVED:
        return HIDE_FROM_OWNER
    return DELETE_RECORD
