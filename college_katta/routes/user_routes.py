import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, field_validator
from sqlalchemy import func, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from college_katta.auth.dependencies import get_current_user, require_admin
from college_katta.database import get_db
from college_katta.models.chat_message import MessageReaction
from college_katta.models.personal_file import PersonalFolder
from college_katta.models.submission import Submission, submission_bookmarks
from college_katta.models.user import BRANCHES, ROLES, USER_STATUSES, YEARS, ROLE_ADMIN, STATUS_SUSPENDED, User
from college_katta.routes.auth_routes import UserResponse
from college_katta.routes.common import MessageResponse, database_unavailable
from college_katta.services import personal_storage
from college_katta.services.uploads import format_year

logger = logging.getLogger(__name__)

router = APIRouter(tags=['users'])

MAX_BIO_LENGTH = 500


class UserListResponse(BaseModel):
    success: bool = True
    count: int
    users: list[UserResponse]


class UpdateProfileRequest(BaseModel):
    full_name: str | None = None
    bio: str | None = None
    branch: str | None = None
    year: str | None = None
    profile_picture: str | None = None

    @field_validator('full_name')
    @classmethod
    def validate_full_name(cls, value: str | None) -> str | None:
        if value is None:
            return value
        normalized = value.strip()
        if not normalized:
            raise ValueError('Full name cannot be empty')
        return normalized

    @field_validator('bio')
    @classmethod
    def validate_bio(cls, value: str | None) -> str | None:
        if value is not None and len(value) > MAX_BIO_LENGTH:
            raise ValueError(f'Bio must be at most {MAX_BIO_LENGTH} characters')
        return value

    @field_validator('branch')
    @classmethod
    def validate_branch(cls, value: str | None) -> str | None:
        if value is not None and value.strip() not in BRANCHES:
            raise ValueError('Invalid branch')
        return value.strip() if value is not None else value

    @field_validator('year')
    @classmethod
    def validate_year(cls, value: str | None) -> str | None:
        if value is None:
            return value
        normalized = format_year(value)
        if normalized not in YEARS:
            raise ValueError('Invalid year')
        return normalized


class UpdateRoleRequest(BaseModel):
    role: str

    @field_validator('role')
    @classmethod
    def validate_role(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in ROLES:
            raise ValueError('Invalid role. Must be "user" or "admin"')
        return normalized


class UpdateUserStatusRequest(BaseModel):
    status: str

    @field_validator('status')
    @classmethod
    def validate_status(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in USER_STATUSES:
            raise ValueError('Invalid status. Must be "active" or "suspended"')
        return normalized


class UserDetailResponse(BaseModel):
    success: bool = True
    message: str | None = None
    user: UserResponse


def get_user_or_404(user_id: int, db: Session) -> User:
    user = db.get(User, user_id)
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='User not found')
    return user


def ensure_self_or_admin(user_id: int, current_user: User) -> None:
    if current_user.id != user_id and not current_user.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail='Not authorized to access this user')


def ensure_not_self(user_id: int, current_user: User, detail: str) -> None:
    if current_user.id == user_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)


@router.get('', response_model=UserListResponse)
def list_users(
    search: str | None = Query(default=None),
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    try:
        query = db.query(User)
        if search and search.strip():
            pattern = f'%{search.strip().lower()}%'
            query = query.filter(
                or_(
                    func.lower(User.username).like(pattern),
                    func.lower(User.email).like(pattern),
                    func.lower(User.full_name).like(pattern),
                )
            )
        users = query.order_by(User.created_at.desc(), User.id.desc()).all()
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc

    return UserListResponse(count=len(users), users=[UserResponse.model_validate(user) for user in users])


@router.get('/{user_id}', response_model=UserDetailResponse)
def get_user(
    user_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_self_or_admin(user_id, current_user)
    try:
        user = get_user_or_404(user_id, db)
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc
    return UserDetailResponse(user=UserResponse.model_validate(user))


@router.put('/{user_id}', response_model=UserDetailResponse)
def update_user(
    user_id: int,
    data: UpdateProfileRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_self_or_admin(user_id, current_user)
    try:
        user = get_user_or_404(user_id, db)
        # Role, status and credentials have their own endpoints.
        for field_name, value in data.model_dump(exclude_unset=True).items():
            if value is not None or field_name == 'profile_picture':
                setattr(user, field_name, value)
        db.commit()
        db.refresh(user)
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc

    return UserDetailResponse(message='Profile updated successfully', user=UserResponse.model_validate(user))


@router.delete('/{user_id}', response_model=MessageResponse)
def delete_user(
    user_id: int,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    ensure_not_self(user_id, admin, 'You cannot delete your own account')
    try:
        user = get_user_or_404(user_id, db)

        db.execute(submission_bookmarks.delete().where(submission_bookmarks.c.user_id == user.id))
        db.query(MessageReaction).filter(MessageReaction.user_id == user.id).delete(synchronize_session=False)
        db.query(Submission).filter(Submission.reviewed_by_id == user.id).update(
            {Submission.reviewed_by_id: None},
            synchronize_session=False,
        )
        # Flatten the folder tree so rows can be removed in any order.
        db.query(PersonalFolder).filter(PersonalFolder.user_id == user.id).update(
            {PersonalFolder.parent_id: None},
            synchronize_session=False,
        )
        db.flush()
        db.expire(user)

        db.delete(user)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc

    personal_storage.remove_user_storage(user_id)
    logger.info('Admin %s deleted user %s', admin.id, user_id)
    return MessageResponse(message='User deleted successfully')


@router.patch('/{user_id}/role', response_model=UserDetailResponse)
def update_user_role(
    user_id: int,
    data: UpdateRoleRequest,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    ensure_not_self(user_id, admin, 'You cannot change your own role')
    try:
        user = get_user_or_404(user_id, db)
        user.role = data.role
        db.commit()
        db.refresh(user)
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc

    logger.info('Admin %s set role of user %s to %s', admin.id, user_id, data.role)
    return UserDetailResponse(message=f'User role updated to {data.role}', user=UserResponse.model_validate(user))


@router.patch('/{user_id}/status', response_model=UserDetailResponse)
def update_user_status(
    user_id: int,
    data: UpdateUserStatusRequest,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    ensure_not_self(user_id, admin, 'You cannot change your own status')
    try:
        user = get_user_or_404(user_id, db)
        if data.status == STATUS_SUSPENDED and user.role == ROLE_ADMIN:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='Cannot suspend an admin user')
        user.status = data.status
        db.commit()
        db.refresh(user)
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc

    logger.info('Admin %s set status of user %s to %s', admin.id, user_id, data.status)
    return UserDetailResponse(message=f'User status updated to {data.status}', user=UserResponse.model_validate(user))
