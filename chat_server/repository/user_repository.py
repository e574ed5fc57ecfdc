"""Read-only access to the users collection.

User records belong to the identity service; the chat engine only looks up
existence, active state and display fields.
"""
import logging
from typing import Dict, Iterable, List, Optional, Union

from bson import ObjectId

from chat_server.repository.base_repository import BaseRepository
from chat_server.repository.mongo_helper import translate_store_errors

logger = logging.getLogger(__name__)


class UserRepository(BaseRepository):
    collection_name = 'users'

    @staticmethod
    def _key(user_id: str) -> Union[ObjectId, str]:
        # Ids are opaque strings on the wire; stored _id is usually an ObjectId
        return ObjectId(user_id) if ObjectId.is_valid(user_id) else user_id

    @translate_store_errors
    def find_by_id(self, user_id: str, include_deleted: bool = True) -> Optional[Dict]:
        if not user_id:
            return None
        query = self.deleted_filter({'_id': self._key(str(user_id))}, include_deleted)
        return self.collection.find_one(query)

    @translate_store_errors
    def find_many(self, user_ids: Iterable[str]) -> Dict[str, Dict]:
        """Return {user_id: doc} for every id that exists (deleted included)."""
        keys: List[Union[ObjectId, str]] = [self._key(str(u)) for u in set(user_ids) if u]
        if not keys:
            return {}
        docs = self.collection.find({'_id': {'$in': keys}})
        return {str(doc['_id']): doc for doc in docs}
