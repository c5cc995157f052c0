# Overview: Real-time push channel (python-socketio) with presence tracking for chat events.

from __future__ import annotations

import logging
import threading

import socketio
from flask import current_app

from ..extensions import db
from ..models import User
from ..validation import MarketplaceError

logger = logging.getLogger(__name__)

EXTENSION_KEY = "marketplace.notifier"

EVENT_NEW_MESSAGE = "new_message"
EVENT_TYPING = "typing"
EVENT_STOP_TYPING = "stop_typing"


def user_room(user_id) -> str:
    return f"user:{user_id}"


class PresenceRegistry:
    """
    Online users and their socket connections.

    A user may hold several connections (tabs); they count as online until
    the last one disconnects.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._connections: dict[str, set[str]] = {}
        self._owners: dict[str, str] = {}

    def register(self, user_id, conn_id: str) -> None:
        key = str(user_id)
        with self._lock:
            self._connections.setdefault(key, set()).add(conn_id)
            self._owners[conn_id] = key

    def unregister(self, conn_id: str) -> str | None:
        with self._lock:
            key = self._owners.pop(conn_id, None)
            if key is None:
                return None
            conns = self._connections.get(key)
            if conns is not None:
                conns.discard(conn_id)
                if not conns:
                    del self._connections[key]
            return key

    def is_online(self, user_id) -> bool:
        with self._lock:
            return bool(self._connections.get(str(user_id)))


class Notifier:
    """Push interface the messaging gateway depends on."""

    def is_online(self, user_id) -> bool:
        raise NotImplementedError

    def emit(self, user_id, event: str, payload: dict) -> None:
        raise NotImplementedError


class SocketIONotifier(Notifier):
    def __init__(self, sio: socketio.Server, presence: PresenceRegistry):
        self.sio = sio
        self.presence = presence

    def is_online(self, user_id) -> bool:
        return self.presence.is_online(user_id)

    def emit(self, user_id, event: str, payload: dict) -> None:
        self.sio.emit(event, payload, room=user_room(user_id))


def get_notifier() -> Notifier | None:
    return current_app.extensions.get(EXTENSION_KEY)


def notify_user(user_id, event: str, payload: dict) -> bool:
    """
    Best-effort push to an online user. Returns True if emitted.

    Delivery failures are logged and swallowed; the caller's write has
    already committed.
    """
    notifier = get_notifier()
    if notifier is None:
        return False
    try:
        if not notifier.is_online(user_id):
            return False
        notifier.emit(user_id, event, payload)
        return True
    except Exception:
        logger.exception("Failed to push %s to user %s", event, user_id)
        return False


def init_realtime(app) -> socketio.Server:
    """
    Create the Socket.IO server for app and install its notifier.

    Clients connect with {"token": <session token>} as auth data; each
    connection joins its user's room and is tracked in the presence registry.
    """
    from . import message_service, session_service

    sio = socketio.Server(
        async_mode="threading",
        cors_allowed_origins=app.config.get("CORS_ALLOWED_ORIGINS") or [],
        logger=False,
        engineio_logger=False,
    )
    presence = PresenceRegistry()
    app.extensions[EXTENSION_KEY] = SocketIONotifier(sio, presence)
    app.extensions["marketplace.socketio"] = sio

    @sio.event
    def connect(sid, environ, auth):
        token = (auth or {}).get("token") if isinstance(auth, dict) else None
        if not token:
            logger.warning("Socket connection rejected (no token): %s", sid)
            raise socketio.exceptions.ConnectionRefusedError("Authentication error: Token not provided")

        with app.app_context():
            context = session_service.validate_session(token)
            if not context:
                logger.warning("Socket connection rejected (invalid token): %s", sid)
                raise socketio.exceptions.ConnectionRefusedError("Authentication error: Invalid token")
            user_id = context.user.id
            role = context.user.role

        sio.save_session(sid, {"user_id": user_id, "role": role})
        sio.enter_room(sid, user_room(user_id))
        presence.register(user_id, sid)
        logger.info("Socket connected: user=%s sid=%s", user_id, sid)

    @sio.event
    def disconnect(sid, *args):
        user_id = presence.unregister(sid)
        logger.info("Socket disconnected: user=%s sid=%s", user_id, sid)

    def _relay(event: str, sid, data):
        session = sio.get_session(sid)
        recipient_id = (data or {}).get("recipientId")
        if recipient_id is None or not presence.is_online(recipient_id):
            return
        sio.emit(
            event,
            {"conversationId": (data or {}).get("conversationId"), "userId": session["user_id"]},
            room=user_room(recipient_id),
        )

    @sio.on(EVENT_TYPING)
    def typing(sid, data):
        _relay(EVENT_TYPING, sid, data)

    @sio.on(EVENT_STOP_TYPING)
    def stop_typing(sid, data):
        _relay(EVENT_STOP_TYPING, sid, data)

    @sio.on("send_message")
    def send_message(sid, data):
        session = sio.get_session(sid)
        data = data or {}
        with app.app_context():
            sender = db.session.get(User, session["user_id"])
            try:
                message = message_service.send_message(
                    data.get("conversationId"), sender, data.get("content"),
                )
            except MarketplaceError as e:
                sio.emit("error", e.to_dict(), to=sid)
                return
            sio.emit("message_sent", message.to_dict(), to=sid)

    return sio
