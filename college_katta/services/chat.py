"""Topic-addressed chat persistence shared by the REST routes and the socket hub.

Topics are ``general``, ``dm:<low id>:<high id>`` for direct messages and
``group:<name>`` for named groups.
"""
import logging
from datetime import datetime, timezone

from sqlalchemy.orm import Session

from college_katta.core import config
from college_katta.models.chat_message import GENERAL_TOPIC, ChatMessage, MessageReaction
from college_katta.models.user import User
from college_katta.services import uploads

logger = logging.getLogger(__name__)

DIRECT_PREFIX = "dm:"
GROUP_PREFIX = "group:"
MAX_GROUP_NAME_LENGTH = 100
MAX_EMOJI_LENGTH = 32


class ChatError(Exception):
    """Base exception for chat operations."""


class InvalidMessageError(ChatError):
    pass


class TopicAccessError(ChatError):
    pass


class MessageNotFoundError(ChatError):
    pass


def direct_topic(user_id: int, other_id: int) -> str:
    low, high = sorted((int(user_id), int(other_id)))
    return f"{DIRECT_PREFIX}{low}:{high}"


def group_topic(name: str) -> str:
    name = (name or "").strip()
    if not name:
        raise InvalidMessageError("Group is required for group messages")
    if len(name) > MAX_GROUP_NAME_LENGTH:
        raise InvalidMessageError(f"Group name must be at most {MAX_GROUP_NAME_LENGTH} characters")
    return f"{GROUP_PREFIX}{name}"


def direct_members(topic: str) -> tuple[int, int] | None:
    if not topic.startswith(DIRECT_PREFIX):
        return None
    try:
        low, high = topic[len(DIRECT_PREFIX):].split(":")
        return int(low), int(high)
    except ValueError:
        return None


def can_access_topic(user: User, topic: str) -> bool:
    if topic == GENERAL_TOPIC or topic.startswith(GROUP_PREFIX):
        return True
    members = direct_members(topic)
    return members is not None and user.id in members


def resolve_topic(user: User, receiver_id: int | None = None, group: str | None = None) -> str:
    """Pick the topic for a request addressed by receiver or group."""
    if group:
        return group_topic(group)
    if receiver_id is None:
        raise InvalidMessageError("Either receiver_id or group is required")
    return direct_topic(user.id, receiver_id)


def serialize_message(message: ChatMessage, client_id: str | None = None) -> dict:
    sender = message.sender
    payload = {
        "id": message.id,
        "topic": message.topic,
        "content": message.content,
        "sender": {
            "id": sender.id,
            "username": sender.username,
            "full_name": sender.full_name,
            "role": sender.role,
        } if sender is not None else None,
        "attachment": {
            "name": message.attachment_name,
            "type": message.attachment_type,
            "content": message.attachment_content,
        } if message.attachment_content else None,
        "reactions": [
            {"user_id": reaction.user_id, "emoji": reaction.emoji}
            for reaction in message.reactions
        ],
        "created_at": as_utc(message.created_at).isoformat(),
    }
    if client_id is not None:
        payload["client_id"] = client_id
    return payload


def as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes even for timezone-aware columns.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def validate_content(content: str | None, required: bool = True) -> str:
    content = (content or "").strip()
    if required and not content:
        raise InvalidMessageError("Message content is required")
    if len(content) > config.CHAT_MESSAGE_MAX_LENGTH:
        raise InvalidMessageError(f"Message must be at most {config.CHAT_MESSAGE_MAX_LENGTH} characters")
    return content


def post_message(
    db: Session,
    sender: User,
    topic: str,
    content: str | None,
    attachment_name: str | None = None,
    attachment_type: str | None = None,
    attachment_content: str | None = None,
) -> ChatMessage:
    if not can_access_topic(sender, topic):
        raise TopicAccessError("You cannot post to this conversation")

    has_attachment = bool(attachment_content)
    content = validate_content(content, required=not has_attachment)

    if has_attachment:
        try:
            uploads.validate_file_type(attachment_name or "", attachment_type)
            data = uploads.decode_base64_payload(attachment_content)
            uploads.validate_file_size(len(data), config.SUBMISSION_MAX_BYTES)
        except uploads.UploadValidationError as exc:
            raise InvalidMessageError(str(exc)) from exc
        attachment_content = uploads.encode_base64_payload(data)
        attachment_name = uploads.safe_file_name(attachment_name)

    message = ChatMessage(
        topic=topic,
        content=content,
        attachment_name=attachment_name if has_attachment else None,
        attachment_type=attachment_type if has_attachment else None,
        attachment_content=attachment_content if has_attachment else None,
        sender_id=sender.id,
    )
    db.add(message)
    db.commit()
    db.refresh(message)
    logger.debug("User %s posted message %s to %s", sender.id, message.id, topic)
    return message


def list_messages(db: Session, topic: str, offset: int = 0, limit: int | None = None) -> tuple[list[ChatMessage], int]:
    query = db.query(ChatMessage).filter(ChatMessage.topic == topic)
    total = query.count()
    ordered = query.order_by(ChatMessage.created_at.asc(), ChatMessage.id.asc()).offset(offset)
    if limit is not None:
        ordered = ordered.limit(limit)
    return ordered.all(), total


def latest_messages(db: Session, topic: str, limit: int) -> list[ChatMessage]:
    """Return the newest ``limit`` messages of a topic, oldest first."""
    newest = db.query(ChatMessage).filter(ChatMessage.topic == topic).order_by(
        ChatMessage.created_at.desc(),
        ChatMessage.id.desc(),
    ).limit(limit).all()
    return list(reversed(newest))


def count_unread(db: Session, topic: str, user: User, since: datetime | None) -> int:
    query = db.query(ChatMessage).filter(ChatMessage.topic == topic, ChatMessage.sender_id != user.id)
    if since is None:
        return query.count()
    since = as_utc(since)
    if db.get_bind().dialect.name == "sqlite":
        # SQLite stores timestamps as naive UTC text.
        since = since.replace(tzinfo=None)
    return query.filter(ChatMessage.created_at > since).count()


def get_message(db: Session, message_id: int, user: User) -> ChatMessage:
    message = db.get(ChatMessage, message_id)
    if message is None or not can_access_topic(user, message.topic):
        raise MessageNotFoundError("Message not found")
    return message


def set_reaction(db: Session, message_id: int, user: User, emoji: str) -> ChatMessage:
    emoji = (emoji or "").strip()
    if not emoji:
        raise InvalidMessageError("Reaction type is required")
    if len(emoji) > MAX_EMOJI_LENGTH:
        raise InvalidMessageError("Reaction is too long")

    message = get_message(db, message_id, user)
    reaction = db.query(MessageReaction).filter(
        MessageReaction.message_id == message.id,
        MessageReaction.user_id == user.id,
    ).first()
    if reaction is None:
        db.add(MessageReaction(message_id=message.id, user_id=user.id, emoji=emoji))
    else:
        reaction.emoji = emoji
    db.commit()
    db.refresh(message)
    return message


def remove_reaction(db: Session, message_id: int, user: User) -> ChatMessage:
    message = get_message(db, message_id, user)
    db.query(MessageReaction).filter(
        MessageReaction.message_id == message.id,
        MessageReaction.user_id == user.id,
    ).delete(synchronize_session=False)
    db.commit()
    db.refresh(message)
    return message
