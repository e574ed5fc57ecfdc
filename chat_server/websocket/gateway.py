"""Socket.IO gateway for real-time chat.

Connection lifecycle (per socket):
    CONNECTING -> AUTHENTICATED -> ACTIVE -> DISCONNECTED

A connection authenticates with a bearer token taken from, in order, the
``Authorization`` header, the handshake ``auth`` payload, or the ``token``
query parameter. A socket that fails authentication is refused and never
reaches AUTHENTICATED; the client's ``connect_error`` carries
``{message: 'Authentication required' | 'Authentication failed'}``.

Presence is refreshed by the ``ping`` event and by every other inbound event
from an active socket. A client that stays silent for longer than the
presence TTL shows as offline until its next event.

Once active, a socket sits in its user's room (``user:<id>``) and may join
conversation rooms. Domain errors on inbound events are reported back on the
socket (``message_error`` / ``error``) and never close the connection.
"""
import logging
import threading
from typing import Any, Dict, Optional, Set

from flask import Flask, request
from flask_socketio import ConnectionRefusedError, SocketIO, emit

from chat_server.exception.ChatError import ChatError
from chat_server.messaging.models import ConnectionState
from chat_server.messaging.presence import PresenceRegistry, TypingRegistry
from chat_server.messaging.service import MessagingService
from chat_server.security.authentication import get_bearer_token
from chat_server.security.identity import IdentityService
from chat_server.utils.helpers import normalize_doc
from chat_server.utils.time_utils import utc_now
from chat_server.websocket.event_emitter import (
    BroadcastGroups, ChatEvents, conversation_room, user_room,
)

logger = logging.getLogger(__name__)


class ChatGateway:
    """Real-time chat gateway on one Socket.IO namespace."""

    def __init__(self, service: MessagingService, identity: IdentityService,
                 presence: PresenceRegistry, typing: TypingRegistry,
                 namespace: str = '/chat'):
        self.service = service
        self.identity = identity
        self.presence = presence
        self.typing = typing
        self.namespace = namespace
        self.socketio: Optional[SocketIO] = None
        self.groups: Optional[BroadcastGroups] = None
        # sid -> {'user_id', 'state'}
        self.connections: Dict[str, Dict[str, Any]] = {}
        # user_id -> sids held by this process
        self.user_sockets: Dict[str, Set[str]] = {}
        self._lock = threading.Lock()

    def init_app(self, app: Flask, socketio: SocketIO) -> 'ChatGateway':
        logger.debug("Chat gateway init: app=%s, mode=%s", app.name, getattr(socketio, 'async_mode', '?'))
        self.socketio = socketio
        self.groups = BroadcastGroups(socketio, self.namespace)
        self.service.attach_notifier(self)
        self._register_handlers()
        app.extensions['chat_gateway'] = self
        return self

    # =========================================================================
    # Operations used outside the real-time layer
    # =========================================================================

    def send_to_user(self, user_id: str, event: str, payload: Dict[str, Any]) -> None:
        """Emit to every connection of ``user_id``, on any server process."""
        self.groups.emit(user_room(user_id), event, normalize_doc(payload))

    def send_to_conversation_room(self, conversation_id: str, event: str, payload: Dict[str, Any]) -> None:
        self.groups.emit(conversation_room(conversation_id), event, normalize_doc(payload))

    # =========================================================================
    # Connection bookkeeping
    # =========================================================================

    def _set_state(self, sid: str, state: ConnectionState, user_id: Optional[str] = None) -> None:
        with self._lock:
            conn = self.connections.setdefault(sid, {'user_id': None})
            conn['state'] = state
            if user_id is not None:
                conn['user_id'] = user_id
                self.user_sockets.setdefault(user_id, set()).add(sid)

    def _drop(self, sid: str) -> Optional[Dict[str, Any]]:
        """Forget ``sid``. Returns its record plus the user's remaining sids."""
        with self._lock:
            conn = self.connections.pop(sid, None)
            if not conn:
                return None
            conn['state'] = ConnectionState.DISCONNECTED
            user_id = conn.get('user_id')
            remaining = self.user_sockets.get(user_id, set())
            remaining.discard(sid)
            if not remaining:
                self.user_sockets.pop(user_id, None)
            conn['remaining'] = set(remaining)
            return conn

    def _active_user(self) -> Optional[str]:
        """The caller's user id when the socket is ACTIVE; also refreshes its presence."""
        conn = self.connections.get(request.sid)
        if conn and conn['state'] == ConnectionState.ACTIVE:
            self.presence.refresh(conn['user_id'], request.sid)
            return conn['user_id']
        return None

    @staticmethod
    def _handshake_token(auth: Optional[Dict[str, Any]]) -> Optional[str]:
        token = get_bearer_token(request.headers)
        if not token and isinstance(auth, dict):
            token = auth.get('token')
        if not token:
            token = request.args.get('token')
        return token or None

    @staticmethod
    def _data(data: Any) -> Dict[str, Any]:
        return data if isinstance(data, dict) else {}

    def _reject(self, sid: str, message: str):
        """Refuse the handshake; ``message`` becomes the connect_error payload."""
        conn = self._drop(sid)
        if conn and conn.get('user_id') and not conn['remaining']:
            self.presence.set_offline(conn['user_id'])
        raise ConnectionRefusedError(message)

    def _emit_error(self, message: str) -> Dict[str, Any]:
        emit(ChatEvents.ERROR, {'message': message})
        return {'success': False, 'error': message}

    # =========================================================================
    # Handlers
    # =========================================================================

    def _register_handlers(self):
        socketio = self.socketio
        ns = self.namespace

        @socketio.on_error(ns)
        def handle_error(e):
            logger.exception("Unhandled error in chat event: %s", e)
            emit(ChatEvents.ERROR, {'message': 'Internal error'})

        # =====================================================================
        # Connection Events
        # =====================================================================

        @socketio.on('connect', namespace=ns)
        def handle_connect(auth=None):
            sid = request.sid
            self._set_state(sid, ConnectionState.CONNECTING)

            token = self._handshake_token(auth)
            if not token:
                logger.warning("Unauthenticated connection attempt: sid=%s", sid)
                self._reject(sid, 'Authentication required')
            try:
                claims = self.identity.authenticate(token)
            except ChatError as e:
                logger.warning("Socket auth failed: sid=%s, reason=%s", sid, e)
                self._reject(sid, 'Authentication failed')

            user_id = claims['user_id']
            self._set_state(sid, ConnectionState.AUTHENTICATED, user_id=user_id)
            try:
                self.groups.join(user_room(user_id), sid)
                self.presence.set_online(user_id, sid)
                self.service.mark_user_messages_delivered(user_id)
            except ChatError as e:
                logger.error("Connection setup failed for %s: %s", user_id, e)
                self._reject(sid, 'Connection failed')

            self._set_state(sid, ConnectionState.ACTIVE)
            self.groups.broadcast(ChatEvents.USER_ONLINE, {
                'userId': user_id,
                'isOnline': True,
                'lastSeen': None,
            }, skip_sid=sid)
            logger.info("User %s connected with socket %s", user_id, sid)
            return True

        @socketio.on('disconnect', namespace=ns)
        def handle_disconnect(reason=None):
            conn = self._drop(request.sid)
            if not conn or not conn.get('user_id'):
                return
            user_id = conn['user_id']
            if conn['remaining']:
                # Another socket of this user is still here; point presence at it
                self.presence.set_online(user_id, next(iter(conn['remaining'])))
                return
            last_seen = self.presence.set_offline(user_id)
            self.groups.broadcast(ChatEvents.USER_OFFLINE, {
                'userId': user_id,
                'isOnline': False,
                'lastSeen': last_seen,
            })
            logger.info("User %s disconnected (%s)", user_id, reason or 'client')

        # =====================================================================
        # Message Events
        # =====================================================================

        @socketio.on(ChatEvents.SEND_MESSAGE, namespace=ns)
        def handle_send_message(data=None):
            """Send a message.

            Data:
                receiverId: str - Required
                content: str - Message body (may be empty for image/file)
                conversationId: str - Optional; resolved from the pair when absent
                messageType: str - text | image | file | system
                metadata: dict - Attachment details
                tempId: str - Client-side id echoed back for optimistic updates

            Response Events:
                - receive_message (to caller and receiver)
                - conversation_updated (to both sides)
                - message_error (to caller, on failure)
            """
            data = self._data(data)
            temp_id = data.get('tempId')
            user_id = self._active_user()
            if not user_id:
                emit(ChatEvents.MESSAGE_ERROR, {'error': 'Not authenticated', 'tempId': temp_id})
                return {'success': False, 'error': 'Not authenticated'}

            try:
                message, conversation = self.service.send_message(
                    user_id,
                    data.get('receiverId'),
                    data.get('content'),
                    conversation_id=data.get('conversationId'),
                    message_type=data.get('messageType'),
                    metadata=data.get('metadata'),
                    temp_id=temp_id,
                )
            except ChatError as e:
                emit(ChatEvents.MESSAGE_ERROR, {'error': e.message, 'tempId': temp_id})
                return {'success': False, 'error': e.message}
            except Exception:
                logger.exception("send_message failed for %s", user_id)
                emit(ChatEvents.MESSAGE_ERROR, {'error': 'Failed to send message', 'tempId': temp_id})
                return {'success': False, 'error': 'Failed to send message'}

            payload = self.service.message_payload(message, temp_id=temp_id)
            emit(ChatEvents.RECEIVE_MESSAGE, payload)
            logger.info("Message %s from %s to %s", message.message_id, user_id, message.receiver_id)
            return {'success': True, 'message': payload}

        @socketio.on(ChatEvents.MARK_READ, namespace=ns)
        def handle_mark_read(data=None):
            data = self._data(data)
            user_id = self._active_user()
            if not user_id:
                return self._emit_error('Not authenticated')
            conversation_id = data.get('conversationId')
            if not conversation_id:
                return self._emit_error('conversationId is required')
            try:
                result = self.service.mark_conversation_read(conversation_id, user_id)
                if result['count'] > 0:
                    emit(ChatEvents.UNREAD_COUNT, {'conversationId': conversation_id, 'unreadCount': 0})
            except ChatError as e:
                return self._emit_error(e.message)
            return {'success': True, 'count': result['count']}

        # =====================================================================
        # Typing Events
        # =====================================================================

        def relay_typing(data, is_typing: bool):
            data = self._data(data)
            user_id = self._active_user()
            if not user_id:
                return self._emit_error('Not authenticated')
            conversation_id = data.get('conversationId')
            if not conversation_id:
                return self._emit_error('conversationId is required')
            try:
                other = self.service.get_other_participant(conversation_id, user_id)
            except ChatError as e:
                return self._emit_error(e.message)
            if not other:
                return self._emit_error('Not a participant of this conversation')
            self.typing.set_typing(conversation_id, user_id, is_typing)
            self.send_to_user(other, ChatEvents.USER_TYPING, {
                'conversationId': conversation_id,
                'userId': user_id,
                'isTyping': is_typing,
            })
            return {'success': True}

        @socketio.on(ChatEvents.TYPING_START, namespace=ns)
        def handle_typing_start(data=None):
            return relay_typing(data, True)

        @socketio.on(ChatEvents.TYPING_STOP, namespace=ns)
        def handle_typing_stop(data=None):
            return relay_typing(data, False)

        # =====================================================================
        # Room Events
        # =====================================================================

        def check_membership(data):
            data = self._data(data)
            user_id = self._active_user()
            if not user_id:
                return None, self._emit_error('Not authenticated')
            conversation_id = data.get('conversationId')
            if not conversation_id:
                return None, self._emit_error('conversationId is required')
            try:
                if self.service.get_other_participant(conversation_id, user_id) is None:
                    return None, self._emit_error('Not a participant of this conversation')
            except ChatError as e:
                return None, self._emit_error(e.message)
            return conversation_id, None

        @socketio.on(ChatEvents.JOIN_CONVERSATION, namespace=ns)
        def handle_join_conversation(data=None):
            conversation_id, failure = check_membership(data)
            if failure:
                return failure
            self.groups.join(conversation_room(conversation_id), request.sid)
            return {'success': True, 'conversationId': conversation_id}

        @socketio.on(ChatEvents.LEAVE_CONVERSATION, namespace=ns)
        def handle_leave_conversation(data=None):
            conversation_id, failure = check_membership(data)
            if failure:
                return failure
            self.groups.leave(conversation_room(conversation_id), request.sid)
            return {'success': True, 'conversationId': conversation_id}

        # =====================================================================
        # Presence Events
        # =====================================================================

        @socketio.on(ChatEvents.GET_ONLINE_STATUS, namespace=ns)
        def handle_get_online_status(data=None):
            data = self._data(data)
            if not self._active_user():
                return self._emit_error('Not authenticated')
            try:
                return self.service.get_online_statuses(data.get('userIds') or [])
            except ChatError as e:
                return self._emit_error(e.message)

        @socketio.on(ChatEvents.PING, namespace=ns)
        def handle_ping(data=None):
            # _active_user() refreshes the caller's presence TTL
            self._active_user()
            emit(ChatEvents.PONG, {'timestamp': utc_now().isoformat()})
