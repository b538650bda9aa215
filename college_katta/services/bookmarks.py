"""Bookmark bookkeeping between users and submissions."""
from sqlalchemy.orm import Session

from college_katta.models.submission import Submission
from college_katta.models.user import User


def is_bookmarked(submission: Submission, user: User) -> bool:
    return any(member.id == user.id for member in submission.bookmarked_by)


def set_bookmark(db: Session, submission: Submission, user: User, bookmarked: bool) -> bool:
    """Make membership match ``bookmarked``. Repeating the call changes nothing."""
    currently = is_bookmarked(submission, user)
    if bookmarked and not currently:
        submission.bookmarked_by.append(user)
    elif not bookmarked and currently:
        submission.bookmarked_by = [member for member in submission.bookmarked_by if member.id != user.id]
    db.commit()
    return bookmarked


def toggle_bookmark(db: Session, submission: Submission, user: User) -> bool:
    """Flip membership and return the new state."""
    return set_bookmark(db, submission, user, not is_bookmarked(submission, user))
