import logging
from datetime import datetime

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, status
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from college_katta.auth.dependencies import get_current_user
from college_katta.chat.hub import hub
from college_katta.core import config
from college_katta.database import get_db
from college_katta.models.chat_message import GENERAL_TOPIC
from college_katta.models.user import User
from college_katta.routes.common import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE, database_unavailable, normalize_page, total_pages
from college_katta.services import chat

logger = logging.getLogger(__name__)

router = APIRouter(tags=['chat'])
messages_router = APIRouter(tags=['messages'])

RECEIVE_MESSAGE_EVENT = 'receive_message'
REACTION_UPDATED_EVENT = 'reaction_updated'


class MessageSender(BaseModel):
    id: int
    username: str
    full_name: str
    role: str


class MessageAttachment(BaseModel):
    name: str | None = None
    type: str | None = None
    content: str


class MessageReactionResponse(BaseModel):
    user_id: int
    emoji: str


class ChatMessageResponse(BaseModel):
    id: int
    topic: str
    content: str
    sender: MessageSender | None = None
    attachment: MessageAttachment | None = None
    reactions: list[MessageReactionResponse] = []
    created_at: datetime
    client_id: str | None = None


class ChatHistoryResponse(BaseModel):
    success: bool = True
    count: int
    messages: list[ChatMessageResponse]


class TopicMessagesResponse(ChatHistoryResponse):
    topic: str
    total: int
    total_pages: int
    current_page: int


class UnreadCountResponse(BaseModel):
    success: bool = True
    count: int


class PostChatRequest(BaseModel):
    message: str


class PostMessageRequest(BaseModel):
    content: str | None = None
    receiver_id: int | None = None
    group: str | None = None
    attachment_name: str | None = None
    attachment_type: str | None = None
    attachment_content: str | None = None


class ReactionRequest(BaseModel):
    emoji: str


class MessageEnvelope(BaseModel):
    success: bool = True
    message: ChatMessageResponse


def to_message_response(message) -> ChatMessageResponse:
    return ChatMessageResponse(**chat.serialize_message(message))


def chat_http_error(exc: chat.ChatError) -> HTTPException:
    if isinstance(exc, chat.MessageNotFoundError):
        status_code = status.HTTP_404_NOT_FOUND
    elif isinstance(exc, chat.TopicAccessError):
        status_code = status.HTTP_403_FORBIDDEN
    else:
        status_code = status.HTTP_400_BAD_REQUEST
    return HTTPException(status_code=status_code, detail=str(exc))


def fan_out(background_tasks: BackgroundTasks, topic: str, event: str, payload: dict) -> None:
    """Deliver to socket subscribers once the response has been sent."""
    background_tasks.add_task(hub.broadcast, topic, event, payload)


@router.get('', response_model=ChatHistoryResponse)
def get_general_chat(
    limit: int = Query(default=config.CHAT_HISTORY_LIMIT, ge=1, le=500),
    db: Session = Depends(get_db),
):
    try:
        messages = chat.latest_messages(db, GENERAL_TOPIC, limit)
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc
    return ChatHistoryResponse(count=len(messages), messages=[to_message_response(item) for item in messages])


@router.post('', response_model=ChatMessageResponse, status_code=status.HTTP_201_CREATED)
def post_general_chat(
    data: PostChatRequest,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        message = chat.post_message(db, current_user, GENERAL_TOPIC, data.message)
    except chat.ChatError as exc:
        raise chat_http_error(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc

    payload = chat.serialize_message(message)
    fan_out(background_tasks, GENERAL_TOPIC, RECEIVE_MESSAGE_EVENT, payload)
    return ChatMessageResponse(**payload)


@router.get('/unread-count', response_model=UnreadCountResponse)
def get_unread_count(
    since: datetime | None = Query(default=None),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        count = chat.count_unread(db, GENERAL_TOPIC, current_user, since)
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc
    return UnreadCountResponse(count=count)


@messages_router.get('', response_model=TopicMessagesResponse)
def get_topic_messages(
    receiver_id: int | None = Query(default=None),
    group: str | None = Query(default=None),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    page, limit, offset = normalize_page(page, limit)
    try:
        topic = chat.resolve_topic(current_user, receiver_id=receiver_id, group=group)
        messages, total = chat.list_messages(db, topic, offset=offset, limit=limit)
    except chat.ChatError as exc:
        raise chat_http_error(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc

    return TopicMessagesResponse(
        topic=topic,
        count=len(messages),
        total=total,
        total_pages=total_pages(total, limit),
        current_page=page,
        messages=[to_message_response(item) for item in messages],
    )


@messages_router.post('', response_model=MessageEnvelope, status_code=status.HTTP_201_CREATED)
def post_topic_message(
    data: PostMessageRequest,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    if not (data.content or '').strip() and not data.attachment_content:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='Message content or attachment is required')

    try:
        topic = chat.resolve_topic(current_user, receiver_id=data.receiver_id, group=data.group)
        if data.receiver_id is not None and not data.group and db.get(User, data.receiver_id) is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Receiver not found')
        message = chat.post_message(
            db,
            current_user,
            topic,
            data.content,
            attachment_name=data.attachment_name,
            attachment_type=data.attachment_type,
            attachment_content=data.attachment_content,
        )
    except chat.ChatError as exc:
        raise chat_http_error(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc

    payload = chat.serialize_message(message)
    fan_out(background_tasks, topic, RECEIVE_MESSAGE_EVENT, payload)
    return MessageEnvelope(message=ChatMessageResponse(**payload))


@messages_router.post('/{message_id}/reactions', response_model=MessageEnvelope)
def add_reaction(
    message_id: int,
    data: ReactionRequest,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        message = chat.set_reaction(db, message_id, current_user, data.emoji)
    except chat.ChatError as exc:
        raise chat_http_error(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc

    payload = chat.serialize_message(message)
    fan_out(background_tasks, message.topic, REACTION_UPDATED_EVENT, payload)
    return MessageEnvelope(message=ChatMessageResponse(**payload))


@messages_router.delete('/{message_id}/reactions', response_model=MessageEnvelope)
def delete_reaction(
    message_id: int,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        message = chat.remove_reaction(db, message_id, current_user)
    except chat.ChatError as exc:
        raise chat_http_error(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc

    payload = chat.serialize_message(message)
    fan_out(background_tasks, message.topic, REACTION_UPDATED_EVENT, payload)
    return MessageEnvelope(message=ChatMessageResponse(**payload))
