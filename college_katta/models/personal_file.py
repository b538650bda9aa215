"""Personal folder and file model definitions."""

from sqlalchemy import BigInteger, Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship

from college_katta.database import Base
from college_katta.models.user import utcnow


PERSONAL_MATERIAL_TYPES = ("NOTES", "ASSIGNMENT", "QUESTION_PAPER", "SYLLABUS", "OTHER")


class PersonalFolder(Base):
    """A folder in a user's private file tree. ``parent_id`` of None is the root."""
    __tablename__ = "personal_folders"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    parent_id = Column(Integer, ForeignKey("personal_folders.id", ondelete="CASCADE"), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    user = relationship("User", back_populates="personal_folders")
    files = relationship("PersonalFile", back_populates="folder")


class PersonalFile(Base):
    """A private, unmoderated file stored on disk."""
    __tablename__ = "personal_files"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    title = Column(String(255), nullable=False, default="")
    subject = Column(String(255), nullable=False, default="")
    description = Column(Text, nullable=False, default="")
    material_type = Column(String(32), nullable=False, default="OTHER")
    file_type = Column(String(100), nullable=False)
    size = Column(BigInteger, nullable=False, default=0)
    stored_name = Column(String(400), nullable=False)
    file_path = Column(String(1000), nullable=False)
    downloads = Column(Integer, nullable=False, default=0)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    folder_id = Column(Integer, ForeignKey("personal_folders.id", ondelete="CASCADE"), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    user = relationship("User", back_populates="personal_files")
    folder = relationship("PersonalFolder", back_populates="files")
