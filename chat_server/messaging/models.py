"""Messaging data models for two-party chat.

Collections:
- conversations: one document per participant pair
- messages: per-conversation ordered log with delivery state

Models convert between stored documents (snake_case) and the camelCase
shape returned to HTTP and socket clients.
"""
from typing import Optional, Dict, Any, List
from datetime import datetime
from enum import Enum

from chat_server.utils.time_utils import to_iso


class MessageType(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    FILE = "file"
    SYSTEM = "system"


class MessageStatus(str, Enum):
    SENT = "sent"            # Stored on the server
    DELIVERED = "delivered"  # Receiver has been online since
    READ = "read"            # Receiver marked the conversation read


class ConnectionState(str, Enum):
    """Lifecycle of one gateway connection."""
    CONNECTING = "connecting"
    AUTHENTICATED = "authenticated"
    ACTIVE = "active"
    DISCONNECTED = "disconnected"


def make_preview(content: Optional[str], length: int = 100) -> str:
    """Truncate message content for the conversation summary."""
    content = content or ''
    if len(content) > length:
        return content[:length] + '...'
    return content


def user_summary(user_id: str, user_doc: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Public fields of a user as embedded in messages and conversations."""
    if not user_doc:
        return {'_id': str(user_id)}
    first = user_doc.get('first_name') or ''
    last = user_doc.get('last_name') or ''
    return {
        '_id': str(user_doc.get('_id', user_id)),
        'firstName': first,
        'lastName': last,
        'fullName': user_doc.get('full_name') or f'{first} {last}'.strip(),
        'profileImage': user_doc.get('profile_image'),
    }


class Message:
    """Message document structure."""

    def __init__(
        self,
        message_id: str,
        conversation_id: str,
        sender_id: str,
        receiver_id: str,
        content: str,
        message_type: MessageType = MessageType.TEXT,
        status: MessageStatus = MessageStatus.SENT,
        metadata: Optional[Dict[str, Any]] = None,
        created_at: Optional[datetime] = None,
        delivered_at: Optional[datetime] = None,
        read_at: Optional[datetime] = None,
        is_deleted: bool = False,
    ):
        self.message_id = message_id
        self.conversation_id = conversation_id
        self.sender_id = sender_id
        self.receiver_id = receiver_id
        self.content = content
        self.message_type = MessageType(message_type)
        self.status = MessageStatus(status)
        self.metadata = metadata or {}
        self.created_at = created_at
        self.delivered_at = delivered_at
        self.read_at = read_at
        self.is_deleted = is_deleted

    @classmethod
    def from_doc(cls, doc: Dict[str, Any]) -> 'Message':
        return cls(
            message_id=str(doc['_id']),
            conversation_id=str(doc['conversation_id']),
            sender_id=doc['sender_id'],
            receiver_id=doc['receiver_id'],
            content=doc.get('content', ''),
            message_type=doc.get('message_type', MessageType.TEXT),
            status=doc.get('status', MessageStatus.SENT),
            metadata=doc.get('metadata') or {},
            created_at=doc.get('created_at'),
            delivered_at=doc.get('delivered_at'),
            read_at=doc.get('read_at'),
            is_deleted=bool(doc.get('is_deleted', False)),
        )

    def to_dict(self, users: Optional[Dict[str, Dict[str, Any]]] = None,
                temp_id: Optional[str] = None) -> Dict[str, Any]:
        """API representation; ``users`` maps ids to user docs for sender/receiver details."""
        users = users or {}
        data = {
            '_id': self.message_id,
            'conversationId': self.conversation_id,
            'sender': user_summary(self.sender_id, users.get(self.sender_id)),
            'receiver': user_summary(self.receiver_id, users.get(self.receiver_id)),
            'content': self.content,
            'messageType': self.message_type.value,
            'status': self.status.value,
            'metadata': self.metadata,
            'readAt': to_iso(self.read_at),
            'deliveredAt': to_iso(self.delivered_at),
            'createdAt': to_iso(self.created_at),
        }
        if temp_id:
            data['tempId'] = temp_id
        return data


class Conversation:
    """Conversation document structure."""

    def __init__(
        self,
        conversation_id: str,
        participants: List[str],
        last_message: Optional[str] = None,
        last_message_sender: Optional[str] = None,
        last_message_at: Optional[datetime] = None,
        unread_count: Optional[Dict[str, int]] = None,
        is_deleted: bool = False,
        created_at: Optional[datetime] = None,
        updated_at: Optional[datetime] = None,
    ):
        self.conversation_id = conversation_id
        self.participants = list(participants)
        self.last_message = last_message
        self.last_message_sender = last_message_sender
        self.last_message_at = last_message_at
        self.unread_count = {p: int((unread_count or {}).get(p, 0)) for p in self.participants}
        self.is_deleted = is_deleted
        self.created_at = created_at
        self.updated_at = updated_at

    @classmethod
    def from_doc(cls, doc: Dict[str, Any]) -> 'Conversation':
        return cls(
            conversation_id=str(doc['_id']),
            participants=doc.get('participants', []),
            last_message=doc.get('last_message'),
            last_message_sender=doc.get('last_message_sender'),
            last_message_at=doc.get('last_message_at'),
            unread_count=doc.get('unread_count') or {},
            is_deleted=bool(doc.get('is_deleted', False)),
            created_at=doc.get('created_at'),
            updated_at=doc.get('updated_at'),
        )

    def other_participant(self, user_id: str) -> Optional[str]:
        others = [p for p in self.participants if p != user_id]
        return others[0] if others else None

    def unread_for(self, user_id: str) -> int:
        return self.unread_count.get(user_id, 0)

    def to_dict(self, users: Optional[Dict[str, Dict[str, Any]]] = None) -> Dict[str, Any]:
        users = users or {}
        return {
            '_id': self.conversation_id,
            'participants': [user_summary(p, users.get(p)) for p in self.participants],
            'lastMessage': self.last_message,
            'lastMessageSender': self.last_message_sender,
            'lastMessageAt': to_iso(self.last_message_at),
            'unreadCount': dict(self.unread_count),
            'isDeleted': self.is_deleted,
            'createdAt': to_iso(self.created_at),
            'updatedAt': to_iso(self.updated_at),
        }
