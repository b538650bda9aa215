"""Database models.

All models are imported here so that string-based relationships resolve no
matter which model module is imported first.
"""
from college_katta.models.user import User
from college_katta.models.submission import Submission, submission_bookmarks
from college_katta.models.personal_file import PersonalFile, PersonalFolder
from college_katta.models.chat_message import ChatMessage, MessageReaction

__all__ = [
    "User",
    "Submission",
    "submission_bookmarks",
    "PersonalFile",
    "PersonalFolder",
    "ChatMessage",
    "MessageReaction",
]
