import logging

from fastapi import WebSocket, WebSocketDisconnect

logger = logging.getLogger(__name__)


class ChatHub:
    """Tracks connected sockets and the topic rooms they have joined.

    Every outbound frame is ``{"event": <name>, "data": <payload>}``.
    """

    def __init__(self):
        self.rooms: dict[str, set[WebSocket]] = {}
        self.memberships: dict[WebSocket, set[str]] = {}
        self.users: dict[WebSocket, int] = {}

    async def connect(self, websocket: WebSocket, user_id: int) -> None:
        await websocket.accept()
        self.users[websocket] = user_id
        self.memberships[websocket] = set()
        logger.info("User %s connected to chat", user_id)

    def disconnect(self, websocket: WebSocket) -> None:
        for topic in self.memberships.pop(websocket, set()):
            self._discard(topic, websocket)
        user_id = self.users.pop(websocket, None)
        if user_id is not None:
            logger.info("User %s disconnected from chat", user_id)

    def join(self, websocket: WebSocket, topic: str) -> None:
        self.rooms.setdefault(topic, set()).add(websocket)
        self.memberships.setdefault(websocket, set()).add(topic)

    def leave(self, websocket: WebSocket, topic: str) -> None:
        self._discard(topic, websocket)
        self.memberships.get(websocket, set()).discard(topic)

    def is_member(self, websocket: WebSocket, topic: str) -> bool:
        return websocket in self.rooms.get(topic, set())

    def room_size(self, topic: str) -> int:
        return len(self.rooms.get(topic, set()))

    def _discard(self, topic: str, websocket: WebSocket) -> None:
        members = self.rooms.get(topic)
        if members is None:
            return
        members.discard(websocket)
        if not members:
            del self.rooms[topic]

    async def send(self, websocket: WebSocket, event: str, data: dict) -> None:
        await websocket.send_json({"event": event, "data": data})

    async def broadcast(self, topic: str, event: str, data: dict, exclude: WebSocket | None = None) -> int:
        """Send an event to every socket in a room. Returns the number of deliveries."""
        delivered = 0
        stale = []
        for websocket in list(self.rooms.get(topic, set())):
            if websocket is exclude:
                continue
            try:
                await self.send(websocket, event, data)
                delivered += 1
            except (RuntimeError, ConnectionError, WebSocketDisconnect) as exc:
                logger.warning("Dropping chat socket after send failure: %s", exc)
                stale.append(websocket)
        for websocket in stale:
            self.disconnect(websocket)
        return delivered


hub = ChatHub()
