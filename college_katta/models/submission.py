"""Submission model definitions.

A submission is a user-uploaded document that goes through moderation before
it becomes public. The ``kind`` column separates the two public collections
(``file`` and ``study_material``) that share the same workflow.
"""

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Table,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from college_katta.database import Base
from college_katta.models.user import utcnow


STATUS_PENDING = "pending"
STATUS_APPROVED = "approved"
STATUS_REJECTED = "rejected"
SUBMISSION_STATUSES = (STATUS_PENDING, STATUS_APPROVED, STATUS_REJECTED)

MATERIAL_TYPES = ("Notes", "Question Paper (PYQ)", "Lab Manual", "Project")
DEFAULT_MATERIAL_TYPE = "Notes"


submission_bookmarks = Table(
    "submission_bookmarks",
    Base.metadata,
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    Column("submission_id", Integer, ForeignKey("submissions.id", ondelete="CASCADE"), primary_key=True),
    Column("created_at", DateTime(timezone=True), default=utcnow, nullable=False),
    UniqueConstraint("user_id", "submission_id", name="uq_submission_bookmark"),
)


class Submission(Base):
    """Represents a moderated document in one of the public collections."""
    __tablename__ = "submissions"

    id = Column(Integer, primary_key=True, index=True)
    kind = Column(String(32), nullable=False, index=True)

    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=False, default="")
    branch = Column(String(64), nullable=False)
    year = Column(String(32), nullable=False)
    semester = Column(String(32), nullable=False, default="")
    subject = Column(String(255), nullable=False)
    course_code = Column(String(64), nullable=False, default="")
    tags = Column(JSON, nullable=True)
    material_type = Column(String(32), nullable=False, default=DEFAULT_MATERIAL_TYPE)

    file_name = Column(String(255), nullable=False)
    file_type = Column(String(32), nullable=False)
    file_size = Column(BigInteger, nullable=False, default=0)
    file_path = Column(String(500), nullable=False)
    file_content = Column(Text, nullable=False)

    owner_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    status = Column(String(16), nullable=False, default=STATUS_PENDING, index=True)
    reviewed_by_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    reviewed_at = Column(DateTime(timezone=True), nullable=True)
    owner_hidden = Column(Boolean, nullable=False, default=False)

    download_count = Column(Integer, nullable=False, default=0)
    view_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    owner = relationship("User", back_populates="submissions", foreign_keys=[owner_id])
    reviewed_by = relationship("User", foreign_keys=[reviewed_by_id])
    bookmarked_by = relationship("User", secondary=submission_bookmarks, lazy="selectin")
