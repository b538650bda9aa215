from datetime import datetime, timezone

import pytest

from college_katta.models import Submission, User
from college_katta.services import moderation


def _submission(status: str, owner_id: int = 1) -> Submission:
    return Submission(status=status, owner_id=owner_id)


def _user(user_id: int, role: str = 'user') -> User:
    return User(id=user_id, role=role)


def test_initial_status_depends_on_approval_requirement() -> None:
    assert moderation.initial_status(True) == 'pending'
    assert moderation.initial_status(False) == 'approved'


@pytest.mark.parametrize('target', ['approved', 'rejected'])
def test_apply_decision_records_reviewer_and_time(db, student, admin, make_submission, target: str) -> None:
    submission = make_submission(student, status='pending')
    decided_at = datetime(2026, 3, 2, 10, 30, tzinfo=timezone.utc)

    moderation.apply_decision(db, submission, target, admin, now=decided_at)
    db.commit()

    assert submission.status == target
    assert submission.reviewed_by_id == admin.id
    assert submission.reviewed_at.replace(tzinfo=None) == decided_at.replace(tzinfo=None)


@pytest.mark.parametrize('current', ['approved', 'rejected'])
@pytest.mark.parametrize('target', ['pending', 'approved', 'rejected'])
def test_decided_submissions_are_terminal(current: str, target: str) -> None:
    submission = _submission(current)

    with pytest.raises(moderation.TransitionNotAllowedError):
        moderation.check_decision(submission, target, _user(9, role='admin'))

    assert submission.status == current


def test_check_decision_rejects_unknown_status() -> None:
    with pytest.raises(moderation.InvalidStatusError):
        moderation.check_decision(_submission('pending'), 'archived', _user(9, role='admin'))


def test_check_decision_requires_admin() -> None:
    submission = _submission('pending')

    with pytest.raises(moderation.ModerationPermissionError):
        moderation.check_decision(submission, 'approved', _user(2))

    assert submission.status == 'pending'
    assert submission.reviewed_by_id is None


def test_stale_pending_copy_cannot_overwrite_a_decision(db, session_factory, student, admin, make_user, make_submission) -> None:
    second_admin = make_user('moderator', role='admin')
    submission = make_submission(student, status='pending')
    other_db = session_factory()
    try:
        stale = other_db.get(Submission, submission.id)
        assert stale.status == 'pending'

        moderation.apply_decision(db, submission, 'approved', admin)
        db.commit()

        with pytest.raises(moderation.TransitionNotAllowedError) as exception_info:
            moderation.apply_decision(other_db, stale, 'rejected', other_db.get(User, second_admin.id))
        other_db.rollback()
    finally:
        other_db.close()

    assert str(exception_info.value) == 'Cannot change status from approved to rejected'
    db.refresh(submission)
    assert submission.status == 'approved'
    assert submission.reviewed_by_id == admin.id


def test_only_approved_submissions_are_public() -> None:
    assert moderation.is_publicly_visible(_submission('approved'))
    assert not moderation.is_publicly_visible(_submission('pending'))
    assert not moderation.is_publicly_visible(_submission('rejected'))


@pytest.mark.parametrize(
    ('status', 'actor', 'expected'),
    [
        ('pending', _user(1), moderation.DELETE_RECORD),
        ('rejected', _user(1), moderation.DELETE_RECORD),
        ('approved', _user(1), moderation.HIDE_FROM_OWNER),
        ('approved', _user(5, role='admin'), moderation.DELETE_RECORD),
        ('pending', _user(5, role='admin'), moderation.DELETE_RECORD),
    ],
)
def test_resolve_deletion(status: str, actor: User, expected: str) -> None:
    assert moderation.resolve_deletion(_submission(status, owner_id=1), actor) == expected


def test_resolve_deletion_rejects_other_users() -> None:
    with pytest.raises(moderation.ModerationPermissionError) as exception_info:
        moderation.resolve_deletion(_submission('pending', owner_id=1), _user(2))

    assert str(exception_info.value) == 'You are not authorized to delete this file'
