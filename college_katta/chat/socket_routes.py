import logging

from fastapi import APIRouter, HTTPException, Query, WebSocket, WebSocketDisconnect
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.exc import SQLAlchemyError

from college_katta import database
from college_katta.auth.dependencies import resolve_token_user
from college_katta.chat.hub import ChatHub, hub
from college_katta.models.chat_message import GENERAL_TOPIC
from college_katta.models.user import User
from college_katta.services import chat

logger = logging.getLogger(__name__)

router = APIRouter()

UNAUTHORIZED_CLOSE_CODE = 4401
TEXT_FIELDS = ("topic", "group", "content", "message", "attachment_name", "attachment_type", "attachment_content")


def authenticate(token: str | None) -> int | None:
    """Return the id of the active user named by the token, or None."""
    if not token:
        return None
    with database.SessionLocal() as db:
        try:
            return resolve_token_user(token, db).id
        except HTTPException as exc:
            logger.info("Rejected chat socket: %s", exc.detail)
            return None


def load_active_user(db, user_id: int) -> User:
    user = db.get(User, user_id)
    if user is None or user.is_suspended:
        raise chat.TopicAccessError("Authentication required")
    return user


def require_text_fields(data: dict) -> None:
    for name in TEXT_FIELDS:
        value = data.get(name)
        if value is not None and not isinstance(value, str):
            raise chat.InvalidMessageError(f"{name} must be a string")


def topic_from_frame(user: User, data: dict) -> str:
    require_text_fields(data)
    topic = data.get("topic")
    if topic:
        return topic
    if data.get("group") or data.get("receiver_id") is not None:
        try:
            return chat.resolve_topic(user, receiver_id=data.get("receiver_id"), group=data.get("group"))
        except (TypeError, ValueError) as exc:
            raise chat.InvalidMessageError("Invalid receiver") from exc
    return GENERAL_TOPIC


def authorize_topic(user_id: int, data: dict) -> str:
    with database.SessionLocal() as db:
        user = load_active_user(db, user_id)
        topic = topic_from_frame(user, data)
        if not chat.can_access_topic(user, topic):
            raise chat.TopicAccessError("You cannot join this conversation")
        return topic


def persist_message(user_id: int, data: dict) -> dict:
    with database.SessionLocal() as db:
        user = load_active_user(db, user_id)
        topic = topic_from_frame(user, data)
        message = chat.post_message(
            db,
            user,
            topic,
            data.get("content") or data.get("message"),
            attachment_name=data.get("attachment_name"),
            attachment_type=data.get("attachment_type"),
            attachment_content=data.get("attachment_content"),
        )
        return chat.serialize_message(message, client_id=data.get("client_id"))


async def handle_frame(websocket: WebSocket, user_id: int, frame: dict, chat_hub: ChatHub = hub) -> None:
    if not isinstance(frame, dict):
        frame = {}
    event = frame.get("event")
    data = frame.get("data")
    if not isinstance(data, dict):
        data = {}

    try:
        if event == "ping":
            await chat_hub.send(websocket, "pong", {})
        elif event == "join_room":
            topic = await run_in_threadpool(authorize_topic, user_id, data)
            chat_hub.join(websocket, topic)
            logger.debug("User %s joined %s (%s connected)", user_id, topic, chat_hub.room_size(topic))
            await chat_hub.send(websocket, "joined_room", {"topic": topic})
        elif event == "leave_room":
            topic = str(data.get("topic") or GENERAL_TOPIC)
            chat_hub.leave(websocket, topic)
            await chat_hub.send(websocket, "left_room", {"topic": topic})
        elif event == "send_message":
            payload = await run_in_threadpool(persist_message, user_id, data)
            chat_hub.join(websocket, payload["topic"])
            await chat_hub.broadcast(payload["topic"], "receive_message", payload)
        elif event in ("typing", "stop_typing"):
            topic = str(data.get("topic") or GENERAL_TOPIC)
            if chat_hub.is_member(websocket, topic):
                await chat_hub.broadcast(topic, event, {"topic": topic, "user_id": user_id}, exclude=websocket)
        else:
            await chat_hub.send(websocket, "error", {"message": f"Unknown event: {event}"})
    except chat.ChatError as exc:
        await chat_hub.send(websocket, "error", {"message": str(exc), "client_id": data.get("client_id")})
    except SQLAlchemyError:
        logger.exception("Database error while handling chat event %s", event)
        await chat_hub.send(websocket, "error", {"message": "Database unavailable", "client_id": data.get("client_id")})


@router.websocket("/ws/chat")
async def chat_socket(websocket: WebSocket, token: str | None = Query(default=None)):
    user_id = await run_in_threadpool(authenticate, token)
    if user_id is None:
        # Close codes only reach the client after the handshake completes.
        await websocket.accept()
        await websocket.close(code=UNAUTHORIZED_CLOSE_CODE)
        return

    await hub.connect(websocket, user_id)
    hub.join(websocket, GENERAL_TOPIC)
    try:
        while True:
            try:
                frame = await websocket.receive_json()
            except ValueError:
                await hub.send(websocket, "error", {"message": "Frames must be JSON objects"})
                continue
            await handle_frame(websocket, user_id, frame)
    except WebSocketDisconnect:
        pass
    finally:
        hub.disconnect(websocket)
