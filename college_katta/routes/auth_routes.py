import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, field_validator
from sqlalchemy import func, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from college_katta.auth import jwt_handler, passwords
from college_katta.auth.dependencies import get_current_user
from college_katta.database import get_db
from college_katta.models.user import BRANCHES, ROLE_USER, STATUS_ACTIVE, YEARS, User
from college_katta.routes.common import MessageResponse, database_unavailable
from college_katta.services.uploads import format_year

logger = logging.getLogger(__name__)

router = APIRouter(tags=['auth'])

MIN_USERNAME_LENGTH = 3
MIN_PASSWORD_LENGTH = 6


class RegisterRequest(BaseModel):
    username: str
    email: str
    password: str
    full_name: str
    branch: str
    year: str

    @field_validator('username')
    @classmethod
    def validate_username(cls, value: str) -> str:
        normalized = value.strip()
        if len(normalized) < MIN_USERNAME_LENGTH:
            raise ValueError(f'Username must be at least {MIN_USERNAME_LENGTH} characters long')
        return normalized

    @field_validator('email')
    @classmethod
    def validate_email(cls, value: str) -> str:
        normalized = value.strip().lower()
        if '@' not in normalized or normalized.startswith('@') or normalized.endswith('@'):
            raise ValueError('A valid email address is required')
        return normalized

    @field_validator('password')
    @classmethod
    def validate_password(cls, value: str) -> str:
        if len(value) < MIN_PASSWORD_LENGTH:
            raise ValueError(f'Password must be at least {MIN_PASSWORD_LENGTH} characters long')
        return value

    @field_validator('full_name')
    @classmethod
    def validate_full_name(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('Full name is required')
        return normalized

    @field_validator('branch')
    @classmethod
    def validate_branch(cls, value: str) -> str:
        normalized = value.strip()
        if normalized not in BRANCHES:
            raise ValueError('Invalid branch')
        return normalized

    @field_validator('year')
    @classmethod
    def validate_year(cls, value: str) -> str:
        normalized = format_year(value)
        if normalized not in YEARS:
            raise ValueError('Invalid year')
        return normalized


class LoginRequest(BaseModel):
    email: str  # email address or username
    password: str

    @field_validator('email')
    @classmethod
    def normalize_identifier(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('Email/username and password are required')
        return normalized


class ChangePasswordRequest(BaseModel):
    current_password: str
    new_password: str

    @field_validator('new_password')
    @classmethod
    def validate_new_password(cls, value: str) -> str:
        if len(value) < MIN_PASSWORD_LENGTH:
            raise ValueError(f'Password must be at least {MIN_PASSWORD_LENGTH} characters long')
        return value


class UserResponse(BaseModel):
    id: int
    username: str
    email: str
    full_name: str
    branch: str
    year: str
    bio: str = ''
    profile_picture: str | None = None
    role: str
    status: str
    last_login: datetime | None = None
    created_at: datetime

    class Config:
        from_attributes = True


class AuthResponse(BaseModel):
    success: bool = True
    message: str
    access_token: str
    token_type: str = 'bearer'
    user: UserResponse


class CurrentUserResponse(BaseModel):
    success: bool = True
    user: UserResponse


@router.post('/register', response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
def register(data: RegisterRequest, db: Session = Depends(get_db)):
    try:
        if db.query(User).filter(User.username == data.username).first():
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='Username already taken')
        if db.query(User).filter(func.lower(User.email) == data.email).first():
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='Email already in use')

        # Self-registration never grants admin.
        user = User(
            username=data.username,
            email=data.email,
            hashed_password=passwords.hash_password(data.password),
            full_name=data.full_name,
            branch=data.branch,
            year=data.year,
            role=ROLE_USER,
            status=STATUS_ACTIVE,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc

    logger.info('Registered user %s (%s)', user.id, user.username)
    return AuthResponse(
        message='User registered successfully',
        access_token=jwt_handler.create_user_token(user),
        user=UserResponse.model_validate(user),
    )


@router.post('/login', response_model=AuthResponse)
def login(data: LoginRequest, db: Session = Depends(get_db)):
    try:
        identifier = data.email
        user = db.query(User).filter(
            or_(func.lower(User.email) == identifier.lower(), User.username == identifier)
        ).first()

        if user is None or not passwords.verify_password(data.password, user.hashed_password):
            logger.info('Failed login attempt for %s', identifier)
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail='Invalid credentials')

        if user.is_suspended:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail='Your account has been suspended. Please contact an administrator.',
            )

        user.last_login = datetime.now(timezone.utc)
        db.commit()
        db.refresh(user)
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc

    return AuthResponse(
        message='Logged in successfully',
        access_token=jwt_handler.create_user_token(user),
        user=UserResponse.model_validate(user),
    )


@router.post('/logout', response_model=MessageResponse)
def logout():
    # Tokens are stateless; the client discards its copy.
    return MessageResponse(message='Logged out successfully')


@router.get('/me', response_model=CurrentUserResponse)
def me(current_user: User = Depends(get_current_user)):
    return CurrentUserResponse(user=UserResponse.model_validate(current_user))


@router.post('/change-password', response_model=MessageResponse)
def change_password(
    data: ChangePasswordRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    if not passwords.verify_password(data.current_password, current_user.hashed_password):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='Current password is incorrect')

    try:
        current_user.hashed_password = passwords.hash_password(data.new_password)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc

    return MessageResponse(message='Password updated successfully')
