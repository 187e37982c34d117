"""
WebSocket gateway: moves JSON frames between sockets and SpaceMessageRouter.

Identity is resolved once per connection by the configured IdentityProvider.
Router calls run in Starlette's threadpool (they block on the DB and the
payment verifier); replies and broadcasts are scheduled back onto the event
loop, so worker threads and the rent scheduler can push frames safely.

Gateway-only frames:
  {"type": "join_room", "room": "<spaceId>"}  - caller is now inside that space
  {"type": "leave_room"}                      - caller left the space
"""
import asyncio
import json
import logging
import threading
import uuid
from typing import Any

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from starlette.concurrency import run_in_threadpool

from spacerent.services.identity import CallerIdentity

router = APIRouter()
logger = logging.getLogger(__name__)

JOIN_ROOM = "join_room"
LEAVE_ROOM = "leave_room"


class ConnectionHub:
    """Open sockets, their identities, and which room (space) each one is in."""

    def __init__(self) -> None:
        self._sockets: dict[str, WebSocket] = {}
        self._identities: dict[str, CallerIdentity] = {}
        self._rooms: dict[str, str] = {}
        self._lock = threading.Lock()
        self._loop: asyncio.AbstractEventLoop | None = None

    def bind_loop(self, loop: asyncio.AbstractEventLoop) -> None:
        self._loop = loop

    def register(self, websocket: WebSocket, identity: CallerIdentity) -> None:
        with self._lock:
            self._sockets[identity.connection_id] = websocket
            self._identities[identity.connection_id] = identity
        logger.info("[WS] %s connected (%s). Active: %s", identity.connection_id, identity.display_name, len(self._sockets))

    def unregister(self, connection_id: str) -> None:
        with self._lock:
            self._sockets.pop(connection_id, None)
            self._identities.pop(connection_id, None)
            self._rooms.pop(connection_id, None)
            active = len(self._sockets)
        logger.info("[WS] %s disconnected. Active: %s", connection_id, active)

    def set_room(self, connection_id: str, room: str | None) -> None:
        with self._lock:
            if room:
                self._rooms[connection_id] = room
            else:
                self._rooms.pop(connection_id, None)

    def players_in_room(self, room: str) -> list[CallerIdentity]:
        with self._lock:
            return [self._identities[cid] for cid, r in self._rooms.items() if r == room and cid in self._identities]

    def send_to_player(self, connection_id: str, payload: dict[str, Any]) -> None:
        """Thread-safe send. Never blocks the caller on socket I/O."""
        with self._lock:
            websocket = self._sockets.get(connection_id)
        if websocket is None or self._loop is None:
            return
        future = asyncio.run_coroutine_threadsafe(websocket.send_json(payload), self._loop)
        future.add_done_callback(lambda f: self._log_send_failure(f, connection_id, payload))

    def broadcast(self, payload: dict[str, Any]) -> None:
        with self._lock:
            connection_ids = list(self._sockets)
        for connection_id in connection_ids:
            self.send_to_player(connection_id, payload)

    def _log_send_failure(self, future, connection_id: str, payload: dict[str, Any]) -> None:
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            logger.warning("[WS] Send of %s to %s failed: %s", payload.get("type"), connection_id, exc)


def _parse_frame(text: str) -> dict[str, Any] | None:
    try:
        message = json.loads(text)
    except json.JSONDecodeError:
        return None
    return message if isinstance(message, dict) else None


@router.websocket("/ws")
async def space_socket(websocket: WebSocket) -> None:
    state = websocket.app.state
    hub: ConnectionHub = state.hub
    connection_id = uuid.uuid4().hex
    identity = state.identity_provider.resolve(websocket, connection_id)

    await websocket.accept()
    hub.register(websocket, identity)
    try:
        while True:
            message = _parse_frame(await websocket.receive_text())
            if message is None:
                continue
            msg_type = message.get("type")
            if msg_type == JOIN_ROOM:
                room = message.get("room")
                hub.set_room(connection_id, room if isinstance(room, str) else None)
                continue
            if msg_type == LEAVE_ROOM:
                hub.set_room(connection_id, None)
                continue
            handled = await run_in_threadpool(state.message_router.handle, identity, message)
            if not handled:
                logger.debug("[WS] Ignoring unknown message type %r from %s", msg_type, connection_id)
    except WebSocketDisconnect:
        pass
    finally:
        hub.unregister(connection_id)
        state.access_service.forget(connection_id)
