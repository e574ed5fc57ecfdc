"""Message repository for the chat engine.

Messages form an append-mostly log per conversation ordered by the
server-assigned ``created_at``. Status moves forward only
(sent -> delivered -> read); every bulk transition filters on the current
status so it can never regress a message and is a no-op when nothing matches.
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

from bson import ObjectId
from pymongo import DESCENDING

from chat_server.messaging.models import MessageStatus, MessageType
from chat_server.repository.base_repository import BaseRepository
from chat_server.repository.mongo_helper import translate_store_errors
from chat_server.utils.time_utils import utc_now

logger = logging.getLogger(__name__)


class MessageRepository(BaseRepository):
    """Repository for chat messages."""
    collection_name = 'messages'

    @translate_store_errors
    def create(self, conversation_id, sender_id: str, receiver_id: str, content: str,
               message_type: MessageType = MessageType.TEXT,
               metadata: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Persist a new message with status=sent and return the stored document."""
        doc = {
            'conversation_id': self.to_object_id(conversation_id, 'conversationId'),
            'sender_id': str(sender_id),
            'receiver_id': str(receiver_id),
            'content': content,
            'message_type': MessageType(message_type).value,
            'status': MessageStatus.SENT.value,
            'read_at': None,
            'delivered_at': None,
            'metadata': metadata or {},
            'is_deleted': False,
            'created_at': utc_now(),
        }
        result = self.collection.insert_one(doc)
        doc['_id'] = result.inserted_id
        return doc

    @translate_store_errors
    def find_by_id(self, message_id, include_deleted: bool = False) -> Optional[Dict[str, Any]]:
        oid = self.to_object_id(message_id, 'messageId')
        return self.collection.find_one(self.deleted_filter({'_id': oid}, include_deleted))

    @translate_store_errors
    def find_page(self, conversation_id, skip: int = 0, limit: int = 50,
                  include_deleted: bool = False) -> Tuple[List[Dict[str, Any]], int]:
        """One page of the log, newest first in the store, returned oldest first.

        ``_id`` breaks ties between messages written in the same millisecond.
        """
        oid = self.to_object_id(conversation_id, 'conversationId')
        query = self.deleted_filter({'conversation_id': oid}, include_deleted)
        total = self.collection.count_documents(query)
        cursor = (self.collection.find(query)
                  .sort([('created_at', DESCENDING), ('_id', DESCENDING)])
                  .skip(skip)
                  .limit(limit))
        page = list(cursor)
        page.reverse()
        return page, total

    @translate_store_errors
    def find_unread_ids(self, conversation_id, receiver_id: str,
                        include_deleted: bool = False) -> List[ObjectId]:
        oid = self.to_object_id(conversation_id, 'conversationId')
        query = self.deleted_filter({
            'conversation_id': oid,
            'receiver_id': str(receiver_id),
            'status': {'$ne': MessageStatus.READ.value},
        }, include_deleted)
        return [doc['_id'] for doc in self.collection.find(query, {'_id': 1}).sort('created_at', 1)]

    # =========================================================================
    # Status transitions
    # =========================================================================

    @translate_store_errors
    def mark_read(self, message_ids: Sequence[ObjectId], receiver_id: str,
                  read_at: Optional[datetime] = None) -> int:
        """Move the given messages to read. Returns how many actually changed.

        Messages read straight from ``sent`` also get ``delivered_at`` so both
        timestamps are set exactly once.
        """
        if not message_ids:
            return 0
        read_at = read_at or utc_now()
        base = {'_id': {'$in': list(message_ids)}, 'receiver_id': str(receiver_id)}
        self.collection.update_many(
            {**base, 'status': MessageStatus.SENT.value, 'delivered_at': None},
            {'$set': {'delivered_at': read_at}},
        )
        result = self.collection.update_many(
            {**base, 'status': {'$ne': MessageStatus.READ.value}},
            {'$set': {'status': MessageStatus.READ.value, 'read_at': read_at}},
        )
        return result.modified_count

    @translate_store_errors
    def mark_delivered_for_receiver(self, receiver_id: str,
                                    delivered_at: Optional[datetime] = None,
                                    include_deleted: bool = False) -> int:
        """Every sent message addressed to ``receiver_id``, in any conversation, becomes delivered."""
        query = self.deleted_filter({
            'receiver_id': str(receiver_id),
            'status': MessageStatus.SENT.value,
        }, include_deleted)
        result = self.collection.update_many(
            query,
            {'$set': {
                'status': MessageStatus.DELIVERED.value,
                'delivered_at': delivered_at or utc_now(),
            }},
        )
        return result.modified_count

    @translate_store_errors
    def soft_delete(self, message_id) -> bool:
        oid = self.to_object_id(message_id, 'messageId')
        result = self.collection.update_one(
            {'_id': oid, 'is_deleted': {'$ne': True}},
            {'$set': {'is_deleted': True, 'deleted_at': utc_now()}},
        )
        return result.modified_count > 0

    # =========================================================================
    # Reconciliation
    # =========================================================================

    @translate_store_errors
    def count_unread_by_receiver(self, conversation_id, include_deleted: bool = False) -> Dict[str, int]:
        """{receiver_id: number of non-read messages} recomputed from the log."""
        oid = self.to_object_id(conversation_id, 'conversationId')
        match = self.deleted_filter({
            'conversation_id': oid,
            'status': {'$ne': MessageStatus.READ.value},
        }, include_deleted)
        pipeline = [
            {'$match': match},
            {'$group': {'_id': '$receiver_id', 'count': {'$sum': 1}}},
        ]
        return {row['_id']: int(row['count']) for row in self.collection.aggregate(pipeline)}
