"""Messaging service layer for business logic.

MessagingService is the only writer of conversations and messages. The HTTP
routes and the Socket.IO gateway both call into it, so validation, state
transitions and fanout behave the same whichever way a client connects.
"""
import logging
import math
from typing import Any, Dict, Iterable, List, Optional, Tuple

from chat_server.exception.ChatError import (
    ForbiddenError, NotFoundError, ValidationError,
)
from chat_server.messaging.models import (
    Conversation, Message, MessageType, make_preview, user_summary,
)
from chat_server.messaging.presence import PresenceRegistry
from chat_server.repository.conversation_repository import ConversationRepository
from chat_server.repository.message_repository import MessageRepository
from chat_server.repository.user_repository import UserRepository
from chat_server.utils.time_utils import to_iso, utc_now
from chat_server.websocket.event_emitter import ChatEvents

logger = logging.getLogger(__name__)

ATTACHMENT_PREVIEWS = {
    MessageType.IMAGE: '📷 Image',
    MessageType.FILE: '📎 File',
}


class MessagingService:
    """High-level messaging service."""

    def __init__(
        self,
        conversations: ConversationRepository,
        messages: MessageRepository,
        users: UserRepository,
        presence: PresenceRegistry,
        preview_length: int = 100,
        max_content_length: int = 5000,
        max_page_size: int = 100,
    ):
        self.conversations = conversations
        self.messages = messages
        self.users = users
        self.presence = presence
        self.preview_length = preview_length
        self.max_content_length = max_content_length
        self.max_page_size = max_page_size
        self.notifier = None

    def attach_notifier(self, notifier) -> None:
        """Set the real-time sink; anything with ``send_to_user(user_id, event, payload)``."""
        self.notifier = notifier

    # =========================================================================
    # Helpers
    # =========================================================================

    def _check_paging(self, page: int, limit: int) -> int:
        """Validate page/limit and return the skip offset."""
        if not isinstance(page, int) or page < 1:
            raise ValidationError('page must be >= 1')
        if not isinstance(limit, int) or limit < 1 or limit > self.max_page_size:
            raise ValidationError(f'limit must be between 1 and {self.max_page_size}')
        return (page - 1) * limit

    def _require_participant(self, conversation_id: str, user_id: str) -> None:
        if not self.conversations.is_participant(conversation_id, user_id):
            raise ForbiddenError('You are not a participant of this conversation')

    def _load_conversation_for(self, conversation_id: str, user_id: str) -> Conversation:
        doc = self.conversations.find_by_id(conversation_id)
        if not doc:
            raise NotFoundError('Conversation not found')
        conversation = Conversation.from_doc(doc)
        if user_id not in conversation.participants:
            raise ForbiddenError('You are not a participant of this conversation')
        return conversation

    def _publish(self, user_id: str, event: str, payload: Dict[str, Any]) -> None:
        """Best-effort real-time emission; a broker failure never fails the caller."""
        if self.notifier is None:
            return
        try:
            self.notifier.send_to_user(user_id, event, payload)
        except Exception:
            logger.warning("Real-time emit of %s to %s failed", event, user_id, exc_info=True)

    def _annotate(self, conversation: Conversation, user_id: str,
                  users: Dict[str, Dict[str, Any]], online: Dict[str, bool]) -> Dict[str, Any]:
        other = conversation.other_participant(user_id)
        data = conversation.to_dict(users)
        data['unreadCount'] = conversation.unread_for(user_id)
        data['otherParticipant'] = user_summary(other, users.get(other)) if other else None
        data['isOnline'] = bool(online.get(other)) if other else False
        return data

    def message_payload(self, message: Message, temp_id: Optional[str] = None) -> Dict[str, Any]:
        """API shape of a message with sender/receiver details."""
        users = self.users.find_many([message.sender_id, message.receiver_id])
        return message.to_dict(users, temp_id=temp_id)

    # =========================================================================
    # Conversation Operations
    # =========================================================================

    def get_or_create_conversation(self, user_a: str, user_b: str) -> Conversation:
        """Find or create the conversation between two users.

        Fails with NotFound when ``user_b`` does not exist or is deleted.
        Concurrent calls for the same pair return the same conversation.
        """
        if not user_a or not user_b:
            raise ValidationError('Both participants are required')
        user_a, user_b = str(user_a), str(user_b)
        if user_a == user_b:
            raise ValidationError('Cannot start a conversation with yourself')
        counterpart = self.users.find_by_id(user_b)
        if not counterpart or counterpart.get('is_deleted'):
            raise NotFoundError('User not found')
        doc = self.conversations.find_or_create(user_a, user_b)
        return Conversation.from_doc(doc)

    def conversation_payload(self, conversation: Conversation, user_id: str) -> Dict[str, Any]:
        users = self.users.find_many(conversation.participants)
        other = conversation.other_participant(user_id)
        online = self.presence.get_multiple([other]) if other else {}
        return self._annotate(conversation, user_id, users, online)

    def get_conversation(self, conversation_id: str, user_id: str) -> Dict[str, Any]:
        """Single conversation with participant details and the caller's unread count."""
        conversation = self._load_conversation_for(conversation_id, user_id)
        return self.conversation_payload(conversation, user_id)

    def list_conversations(self, user_id: str, page: int = 1, limit: int = 20) -> Dict[str, Any]:
        """Caller's conversations, most recent activity first."""
        skip = self._check_paging(page, limit)
        docs, total = self.conversations.find_user_conversations(user_id, skip=skip, limit=limit)
        conversations = [Conversation.from_doc(d) for d in docs]

        participant_ids = {p for c in conversations for p in c.participants}
        users = self.users.find_many(participant_ids)
        others = [c.other_participant(user_id) for c in conversations]
        online = self.presence.get_multiple([o for o in others if o])

        return {
            'conversations': [self._annotate(c, user_id, users, online) for c in conversations],
            'total': total,
            'page': page,
            'limit': limit,
            'totalPages': math.ceil(total / limit) if total else 0,
            'hasMore': skip + len(conversations) < total,
            'totalUnread': self.conversations.total_unread(user_id),
        }

    def get_other_participant(self, conversation_id: str, user_id: str) -> Optional[str]:
        return self.conversations.get_other_participant(conversation_id, user_id)

    def get_total_unread(self, user_id: str) -> int:
        return self.conversations.total_unread(user_id)

    def delete_conversation(self, conversation_id: str, user_id: str) -> bool:
        self._load_conversation_for(conversation_id, user_id)
        deleted = self.conversations.soft_delete(conversation_id)
        logger.info("Conversation %s deleted by %s", conversation_id, user_id)
        return deleted

    # =========================================================================
    # Message Operations
    # =========================================================================

    def _validate_send(self, sender_id: str, receiver_id: str, content: Optional[str],
                       message_type: Any, metadata: Any) -> Tuple[str, MessageType, Dict[str, Any]]:
        if not receiver_id:
            raise ValidationError('receiverId is required')
        if str(receiver_id) == str(sender_id):
            raise ValidationError('Cannot send message to yourself')
        try:
            message_type = MessageType(message_type or MessageType.TEXT)
        except ValueError:
            allowed = ', '.join(t.value for t in MessageType)
            raise ValidationError(f'messageType must be one of: {allowed}')
        if content is None:
            content = ''
        if not isinstance(content, str):
            raise ValidationError('content must be a string')
        if len(content) > self.max_content_length:
            raise ValidationError(f'content must be at most {self.max_content_length} characters')
        if message_type == MessageType.TEXT:
            content = content.strip()
            if not content:
                raise ValidationError('content is required for text messages')
        if metadata is not None and not isinstance(metadata, dict):
            raise ValidationError('metadata must be an object')
        return content, message_type, metadata or {}

    def send_message(
        self,
        sender_id: str,
        receiver_id: str,
        content: Optional[str],
        conversation_id: Optional[str] = None,
        message_type: Any = MessageType.TEXT,
        metadata: Optional[Dict[str, Any]] = None,
        temp_id: Optional[str] = None,
    ) -> Tuple[Message, Conversation]:
        """Persist a message and update the conversation's derived state.

        The message is inserted first, then the unread counter and summary are
        updated in one atomic statement. A crash between the two is repaired
        by scripts/reconcile_unread_counts.py.

        Side effect: ``receive_message`` and ``conversation_updated`` go to the
        receiver, and ``conversation_updated`` (unread 0) to the sender.
        """
        sender_id = str(sender_id)
        receiver_id = str(receiver_id) if receiver_id else None
        content, message_type, metadata = self._validate_send(
            sender_id, receiver_id, content, message_type, metadata)

        if conversation_id:
            conversation = self._load_conversation_for(conversation_id, sender_id)
            if conversation.other_participant(sender_id) != receiver_id:
                raise ValidationError('receiverId is not the other participant of this conversation')
        else:
            conversation = self.get_or_create_conversation(sender_id, receiver_id)

        doc = self.messages.create(
            conversation.conversation_id, sender_id, receiver_id, content,
            message_type=message_type, metadata=metadata,
        )
        updated = self.conversations.record_message(
            conversation.conversation_id, sender_id, receiver_id,
            make_preview(content, self.preview_length), doc['created_at'],
        )
        if updated:
            conversation = Conversation.from_doc(updated)
        message = Message.from_doc(doc)
        logger.info("Message %s sent in %s", message.message_id, conversation.conversation_id)

        self._publish_new_message(message, conversation, temp_id)
        return message, conversation

    def conversation_update_payload(self, message: Message, conversation: Conversation,
                                    for_user: str) -> Dict[str, Any]:
        preview = ATTACHMENT_PREVIEWS.get(message.message_type) or make_preview(
            message.content, self.preview_length)
        return {
            'conversationId': conversation.conversation_id,
            'lastMessage': preview,
            'lastMessageSender': message.sender_id,
            'lastMessageAt': to_iso(message.created_at),
            'unreadCount': conversation.unread_for(for_user),
        }

    def _publish_new_message(self, message: Message, conversation: Conversation,
                             temp_id: Optional[str]) -> None:
        if self.notifier is None:
            return
        self._publish(message.receiver_id, ChatEvents.RECEIVE_MESSAGE,
                      self.message_payload(message, temp_id=temp_id))
        self._publish(message.receiver_id, ChatEvents.CONVERSATION_UPDATED,
                      self.conversation_update_payload(message, conversation, message.receiver_id))
        self._publish(message.sender_id, ChatEvents.CONVERSATION_UPDATED,
                      self.conversation_update_payload(message, conversation, message.sender_id))

    def list_messages(self, conversation_id: str, user_id: str,
                      page: int = 1, limit: int = 50) -> Dict[str, Any]:
        """Page of messages in chronological order; page 1 holds the newest."""
        skip = self._check_paging(page, limit)
        self._require_participant(conversation_id, user_id)
        docs, total = self.messages.find_page(conversation_id, skip=skip, limit=limit)
        messages = [Message.from_doc(d) for d in docs]
        users = self.users.find_many({u for m in messages for u in (m.sender_id, m.receiver_id)})
        return {
            'messages': [m.to_dict(users) for m in messages],
            'total': total,
            'page': page,
            'limit': limit,
            'hasMore': skip + len(messages) < total,
        }

    def mark_conversation_read(self, conversation_id: str, user_id: str) -> Dict[str, Any]:
        """Mark every non-read message addressed to ``user_id`` as read.

        Idempotent: already-read messages are neither touched nor counted.
        Returns {count, messageIds, readAt}.

        Side effect: when anything changed, ``messages_read`` goes to the
        other participant.
        """
        self._require_participant(conversation_id, user_id)
        read_at = utc_now()
        unread_ids = self.messages.find_unread_ids(conversation_id, user_id)
        count = self.messages.mark_read(unread_ids, user_id, read_at=read_at)
        self.conversations.reset_unread(conversation_id, user_id)
        result = {
            'count': count,
            'messageIds': [str(i) for i in unread_ids] if count else [],
            'readAt': read_at.isoformat(),
        }
        if count:
            logger.info("Marked %d messages read in %s by %s", count, conversation_id, user_id)
            other = self.conversations.get_other_participant(conversation_id, user_id)
            if other:
                self._publish(other, ChatEvents.MESSAGES_READ, {
                    'conversationId': conversation_id,
                    'readBy': user_id,
                    'readAt': result['readAt'],
                    'messageIds': result['messageIds'],
                })
        return result

    def mark_user_messages_delivered(self, user_id: str) -> int:
        """Mark every pending message for ``user_id`` delivered, across all conversations."""
        count = self.messages.mark_delivered_for_receiver(user_id)
        if count:
            logger.debug("Marked %d messages delivered for %s", count, user_id)
        return count

    def delete_message(self, message_id: str, user_id: str) -> Dict[str, Any]:
        """Soft-delete a message; only its sender may do this."""
        doc = self.messages.find_by_id(message_id)
        if not doc:
            raise NotFoundError('Message not found')
        message = Message.from_doc(doc)
        if message.sender_id != str(user_id):
            raise ForbiddenError('Only the sender can delete this message')
        self.messages.soft_delete(message_id)
        payload = {'conversationId': message.conversation_id, 'messageId': message.message_id}
        self._publish(message.receiver_id, ChatEvents.MESSAGE_DELETED, payload)
        return payload

    # =========================================================================
    # Presence
    # =========================================================================

    def is_user_online(self, user_id: str) -> bool:
        return self.presence.is_online(user_id)

    def get_online_statuses(self, user_ids: Iterable[str]) -> List[Dict[str, Any]]:
        if user_ids is None or isinstance(user_ids, (str, bytes)) or not hasattr(user_ids, '__iter__'):
            raise ValidationError('userIds must be a list')
        requested = [str(u) for u in user_ids if u]
        statuses = self.presence.get_multiple(requested)
        # one entry per requested id, in request order, repeats included
        return [{'userId': uid, 'isOnline': bool(statuses.get(uid))} for uid in requested]
