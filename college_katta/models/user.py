"""User model definitions."""

from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Integer, String
from sqlalchemy.orm import relationship

from college_katta.database import Base


ROLE_USER = "user"
ROLE_ADMIN = "admin"
ROLES = (ROLE_USER, ROLE_ADMIN)

STATUS_ACTIVE = "active"
STATUS_SUSPENDED = "suspended"
USER_STATUSES = (STATUS_ACTIVE, STATUS_SUSPENDED)

BRANCHES = ("Computer Science", "Computer Engineering", "Information Technology", "AI & DS")
YEARS = ("First Year", "Second Year", "Third Year", "Fourth Year")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class User(Base):
    """Represents a registered student or administrator."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(64), unique=True, index=True, nullable=False)
    email = Column(String(255), unique=True, index=True, nullable=False)
    hashed_password = Column(String(255), nullable=False)
    full_name = Column(String(255), nullable=False)
    branch = Column(String(64), nullable=False)
    year = Column(String(32), nullable=False)
    bio = Column(String(500), nullable=False, default="")
    profile_picture = Column(String(500), nullable=True)
    role = Column(String(16), nullable=False, default=ROLE_USER)  # user/admin
    status = Column(String(16), nullable=False, default=STATUS_ACTIVE)  # active/suspended
    last_login = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    submissions = relationship(
        "Submission",
        back_populates="owner",
        foreign_keys="Submission.owner_id",
        cascade="all, delete-orphan",
    )
    personal_folders = relationship("PersonalFolder", back_populates="user", cascade="all, delete-orphan")
    personal_files = relationship("PersonalFile", back_populates="user", cascade="all, delete-orphan")
    chat_messages = relationship("ChatMessage", back_populates="sender", cascade="all, delete-orphan")

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    @property
    def is_suspended(self) -> bool:
        return self.status == STATUS_SUSPENDED
