"""Presence and typing registries.

Both are ephemeral and lossy: a missing key simply means offline / not
typing. Broker errors are logged and answered with that same default rather
than failing the caller.
"""
import logging
from typing import Any, Dict, Iterable, Optional

import redis

from chat_server.messaging.ttl_store import TTLStore
from chat_server.utils.time_utils import utc_now

logger = logging.getLogger(__name__)

PRESENCE_KEY = 'chat:user:{user_id}:online'
TYPING_KEY = 'chat:typing:{conversation_id}:{user_id}'


class PresenceRegistry:
    """userId -> {online, connectionHandle, lastSeen}, expiring after ``ttl_seconds``.

    One record per user; the most recent connection overwrites the previous one.
    """

    def __init__(self, store: TTLStore, ttl_seconds: int = 60):
        self.store = store
        self.ttl_seconds = ttl_seconds

    @staticmethod
    def key(user_id: str) -> str:
        return PRESENCE_KEY.format(user_id=user_id)

    def set_online(self, user_id: str, connection_handle: str) -> Dict[str, Any]:
        record = {
            'online': True,
            'connectionHandle': connection_handle,
            'lastSeen': utc_now().isoformat(),
        }
        try:
            self.store.set(self.key(user_id), record, self.ttl_seconds)
        except redis.RedisError as e:
            logger.warning("Presence set_online failed for %s: %s", user_id, e)
        return record

    def refresh(self, user_id: str, connection_handle: Optional[str] = None) -> bool:
        """Heartbeat: extend the TTL, re-creating the record if it already lapsed."""
        try:
            if self.store.expire(self.key(user_id), self.ttl_seconds):
                return True
        except redis.RedisError as e:
            logger.warning("Presence refresh failed for %s: %s", user_id, e)
            return False
        if connection_handle:
            self.set_online(user_id, connection_handle)
            return True
        return False

    def set_offline(self, user_id: str) -> str:
        """Drop the record now. Returns the lastSeen timestamp to broadcast."""
        last_seen = utc_now().isoformat()
        try:
            self.store.delete(self.key(user_id))
        except redis.RedisError as e:
            logger.warning("Presence set_offline failed for %s: %s", user_id, e)
        return last_seen

    def get_record(self, user_id: str) -> Optional[Dict[str, Any]]:
        try:
            return self.store.get(self.key(user_id))
        except redis.RedisError as e:
            logger.warning("Presence lookup failed for %s: %s", user_id, e)
            return None

    def is_online(self, user_id: str) -> bool:
        record = self.get_record(user_id)
        return bool(record and record.get('online'))

    def get_multiple(self, user_ids: Iterable[str]) -> Dict[str, bool]:
        user_ids = [str(u) for u in user_ids]
        try:
            found = self.store.get_many([self.key(u) for u in user_ids])
        except redis.RedisError as e:
            logger.warning("Presence bulk lookup failed: %s", e)
            found = {}
        return {u: bool(found.get(self.key(u), {}).get('online')) for u in user_ids}


class TypingRegistry:
    """(conversationId, userId) -> true, auto-expiring after a few seconds."""

    def __init__(self, store: TTLStore, ttl_seconds: int = 3):
        self.store = store
        self.ttl_seconds = ttl_seconds

    @staticmethod
    def key(conversation_id: str, user_id: str) -> str:
        return TYPING_KEY.format(conversation_id=conversation_id, user_id=user_id)

    def set_typing(self, conversation_id: str, user_id: str, is_typing: bool) -> None:
        key = self.key(conversation_id, user_id)
        try:
            if is_typing:
                self.store.set(key, True, self.ttl_seconds)
            else:
                self.store.delete(key)
        except redis.RedisError as e:
            logger.warning("Typing update failed for %s: %s", key, e)

    def is_typing(self, conversation_id: str, user_id: str) -> bool:
        try:
            return bool(self.store.get(self.key(conversation_id, user_id)))
        except redis.RedisError as e:
            logger.warning("Typing lookup failed: %s", e)
            return False
