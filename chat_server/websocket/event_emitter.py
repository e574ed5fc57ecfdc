"""Broadcast groups and event names for real-time chat.

Rooms are the broadcast groups: one per user (``user:<id>``) and one per
conversation (``conversation:<id>``). Connections are referred to only by
their opaque session id.

Usage:
    from chat_server.websocket.event_emitter import BroadcastGroups, ChatEvents, user_room

    groups = BroadcastGroups(socketio, namespace='/chat')
    groups.join(user_room(user_id), sid)
    groups.emit(user_room(user_id), ChatEvents.RECEIVE_MESSAGE, payload)

When the SocketIO instance was built with a message queue, ``emit`` is
published on the broker and every server process delivers it to its own
members of the room.
"""
import logging
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class ChatEvents:
    """Socket event names."""

    # Client -> server
    SEND_MESSAGE = 'send_message'
    TYPING_START = 'typing_start'
    TYPING_STOP = 'typing_stop'
    MARK_READ = 'mark_read'
    JOIN_CONVERSATION = 'join_conversation'
    LEAVE_CONVERSATION = 'leave_conversation'
    GET_ONLINE_STATUS = 'get_online_status'
    PING = 'ping'

    # Server -> client
    RECEIVE_MESSAGE = 'receive_message'
    MESSAGE_ERROR = 'message_error'
    USER_TYPING = 'user_typing'
    MESSAGES_READ = 'messages_read'
    USER_ONLINE = 'user_online'
    USER_OFFLINE = 'user_offline'
    CONVERSATION_UPDATED = 'conversation_updated'
    UNREAD_COUNT = 'unread_count'
    MESSAGE_DELETED = 'message_deleted'
    ERROR = 'error'
    PONG = 'pong'


def user_room(user_id: str) -> str:
    return f'user:{user_id}'


def conversation_room(conversation_id: str) -> str:
    return f'conversation:{conversation_id}'


class BroadcastGroups:
    """join / leave / emit over Socket.IO rooms in one namespace."""

    def __init__(self, socketio, namespace: str = '/chat'):
        self.socketio = socketio
        self.namespace = namespace

    def join(self, group_id: str, sid: str) -> None:
        self.socketio.server.enter_room(sid, group_id, namespace=self.namespace)

    def leave(self, group_id: str, sid: str) -> None:
        self.socketio.server.leave_room(sid, group_id, namespace=self.namespace)

    def emit(self, group_id: str, event: str, payload: Dict[str, Any],
             skip_sid: Optional[str] = None) -> None:
        logger.debug("Emit %s to %s", event, group_id)
        self.socketio.emit(event, payload, to=group_id, namespace=self.namespace, skip_sid=skip_sid)

    def broadcast(self, event: str, payload: Dict[str, Any], skip_sid: Optional[str] = None) -> None:
        """Every connection in the namespace."""
        self.socketio.emit(event, payload, namespace=self.namespace, skip_sid=skip_sid)
