"""Conversation repository for the chat engine.

A conversation always has exactly two participants. The sorted pair is stored
as ``pair_key`` under a unique index, which is what makes find-or-create safe
when several callers race to open the same thread.
"""
import logging
from datetime import datetime
from typing import Any, Dict, Iterator, List, Optional, Tuple

from pymongo import DESCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError

from chat_server.exception.ChatError import ConflictError
from chat_server.repository.base_repository import BaseRepository
from chat_server.repository.mongo_helper import translate_store_errors
from chat_server.utils.time_utils import utc_now

logger = logging.getLogger(__name__)

CREATE_ATTEMPTS = 3


class ConversationRepository(BaseRepository):
    """Repository for two-party conversations."""
    collection_name = 'conversations'

    @staticmethod
    def pair_key(user_a: str, user_b: str) -> str:
        first, second = sorted([str(user_a), str(user_b)])
        return f'{first}:{second}'

    # =========================================================================
    # Creation
    # =========================================================================

    @translate_store_errors
    def find_or_create(self, user_a: str, user_b: str) -> Dict[str, Any]:
        """Return the live conversation for the pair, creating it if needed.

        Concurrent callers converge on a single document: the upsert is keyed on
        the unique ``pair_key`` and a losing racer re-reads the winner's row.
        """
        participants = sorted([str(user_a), str(user_b)])
        key = self.pair_key(*participants)
        for attempt in range(CREATE_ATTEMPTS):
            now = utc_now()
            try:
                doc = self.collection.find_one_and_update(
                    {'pair_key': key},
                    {'$setOnInsert': {
                        'participants': participants,
                        'last_message': None,
                        'last_message_sender': None,
                        'last_message_at': now,
                        'unread_count': {p: 0 for p in participants},
                        'is_deleted': False,
                        'created_at': now,
                        'updated_at': now,
                    }},
                    upsert=True,
                    return_document=ReturnDocument.AFTER,
                )
            except DuplicateKeyError:
                logger.debug("Conversation create race on %s (attempt %d)", key, attempt + 1)
                doc = self.collection.find_one({'pair_key': key})
            if doc is not None:
                return doc
        raise ConflictError(f'Could not resolve conversation for pair {key}')

    # =========================================================================
    # Lookups
    # =========================================================================

    @translate_store_errors
    def find_by_id(self, conversation_id, include_deleted: bool = False) -> Optional[Dict[str, Any]]:
        oid = self.to_object_id(conversation_id, 'conversationId')
        return self.collection.find_one(self.deleted_filter({'_id': oid}, include_deleted))

    @translate_store_errors
    def is_participant(self, conversation_id, user_id: str, include_deleted: bool = False) -> bool:
        oid = self.to_object_id(conversation_id, 'conversationId')
        query = self.deleted_filter({'_id': oid, 'participants': str(user_id)}, include_deleted)
        return self.collection.count_documents(query, limit=1) > 0

    @translate_store_errors
    def get_other_participant(self, conversation_id, user_id: str,
                              include_deleted: bool = False) -> Optional[str]:
        """Counterpart of ``user_id``, or None when the caller is not a participant."""
        oid = self.to_object_id(conversation_id, 'conversationId')
        query = self.deleted_filter({'_id': oid, 'participants': str(user_id)}, include_deleted)
        doc = self.collection.find_one(query, {'participants': 1})
        if not doc:
            return None
        others = [p for p in doc.get('participants', []) if p != str(user_id)]
        return others[0] if others else None

    @translate_store_errors
    def find_user_conversations(self, user_id: str, skip: int = 0, limit: int = 20,
                                include_deleted: bool = False) -> Tuple[List[Dict[str, Any]], int]:
        """Conversations containing ``user_id``, newest activity first."""
        query = self.deleted_filter({'participants': str(user_id)}, include_deleted)
        total = self.collection.count_documents(query)
        cursor = (self.collection.find(query)
                  .sort([('last_message_at', DESCENDING), ('_id', DESCENDING)])
                  .skip(skip)
                  .limit(limit))
        return list(cursor), total

    @translate_store_errors
    def total_unread(self, user_id: str, include_deleted: bool = False) -> int:
        """Sum of ``unread_count[user_id]`` over the user's conversations."""
        match = self.deleted_filter({'participants': str(user_id)}, include_deleted)
        pipeline = [
            {'$match': match},
            {'$project': {'unread': {'$ifNull': [f'$unread_count.{user_id}', 0]}}},
            {'$group': {'_id': None, 'total': {'$sum': '$unread'}}},
        ]
        result = list(self.collection.aggregate(pipeline))
        return int(result[0]['total']) if result else 0

    @translate_store_errors
    def iter_all(self, include_deleted: bool = False) -> Iterator[Dict[str, Any]]:
        return self.collection.find(self.deleted_filter({}, include_deleted))

    # =========================================================================
    # Derived state updates (atomic at the store)
    # =========================================================================

    @translate_store_errors
    def record_message(self, conversation_id, sender_id: str, receiver_id: str,
                       preview: str, sent_at: datetime) -> Optional[Dict[str, Any]]:
        """Apply a new message to the summary and bump the receiver's unread counter.

        One update statement: ``$inc`` for the counter, ``$max`` so
        ``last_message_at`` never moves backwards under concurrent sends.
        """
        oid = self.to_object_id(conversation_id, 'conversationId')
        return self.collection.find_one_and_update(
            {'_id': oid},
            {
                '$set': {
                    'last_message': preview,
                    'last_message_sender': str(sender_id),
                    'updated_at': utc_now(),
                },
                '$max': {'last_message_at': sent_at},
                '$inc': {f'unread_count.{receiver_id}': 1},
            },
            return_document=ReturnDocument.AFTER,
        )

    @translate_store_errors
    def reset_unread(self, conversation_id, user_id: str) -> bool:
        oid = self.to_object_id(conversation_id, 'conversationId')
        result = self.collection.update_one(
            {'_id': oid, 'participants': str(user_id)},
            {'$set': {f'unread_count.{user_id}': 0}},
        )
        return result.matched_count > 0

    @translate_store_errors
    def set_unread_counts(self, conversation_id, counts: Dict[str, int],
                          expected: Optional[Dict[str, Any]] = None) -> bool:
        """Overwrite unread counters; used by the reconciliation job.

        With ``expected`` ({uid: value as read}) the write only applies while
        every counter still holds that value, so an increment from a send that
        lands after the read is never overwritten. Returns False when nothing
        matched.
        """
        oid = self.to_object_id(conversation_id, 'conversationId')
        query = {'_id': oid}
        for uid, value in (expected or {}).items():
            # None also matches a counter that was never written
            query[f'unread_count.{uid}'] = value
        result = self.collection.update_one(
            query,
            {'$set': {f'unread_count.{uid}': int(n) for uid, n in counts.items()}},
        )
        return result.matched_count > 0

    @translate_store_errors
    def soft_delete(self, conversation_id) -> bool:
        """Mark deleted and release the pair so a fresh conversation can be opened."""
        oid = self.to_object_id(conversation_id, 'conversationId')
        doc = self.collection.find_one({'_id': oid, 'is_deleted': {'$ne': True}}, {'pair_key': 1})
        if not doc:
            return False
        now = utc_now()
        result = self.collection.update_one(
            {'_id': oid, 'is_deleted': {'$ne': True}},
            {'$set': {
                'is_deleted': True,
                'deleted_at': now,
                'updated_at': now,
                'pair_key': f"{doc['pair_key']}:deleted:{oid}",
            }},
        )
        return result.modified_count > 0
