"""Expiring key/value stores backing the presence and typing registries.

Two implementations share one narrow interface:
- RedisTTLStore: shared by every server process (production)
- MemoryTTLStore: in-process dict for single-process deployments and tests
"""
import json
import logging
import threading
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Iterable, Optional

import redis

logger = logging.getLogger(__name__)


class TTLStore(ABC):
    """Key/value store whose entries disappear after a TTL."""

    @abstractmethod
    def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        """Store ``value`` under ``key``, replacing any prior entry."""

    @abstractmethod
    def get(self, key: str) -> Optional[Any]:
        """Value for ``key`` or None when absent or expired."""

    @abstractmethod
    def delete(self, key: str) -> bool:
        """Remove ``key`` immediately. Returns whether it existed."""

    @abstractmethod
    def expire(self, key: str, ttl_seconds: int) -> bool:
        """Restart the TTL of an existing key. Returns False when it is gone."""

    def get_many(self, keys: Iterable[str]) -> Dict[str, Any]:
        """{key: value} for the keys that are present."""
        found = {}
        for key in keys:
            value = self.get(key)
            if value is not None:
                found[key] = value
        return found


class MemoryTTLStore(TTLStore):
    """Thread-safe in-process store. ``clock`` is injectable for tests."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._data: Dict[str, Any] = {}
        self._expires: Dict[str, float] = {}
        self._lock = threading.Lock()

    def _purge(self, key: str) -> None:
        # Caller holds the lock
        deadline = self._expires.get(key)
        if deadline is not None and deadline <= self._clock():
            self._data.pop(key, None)
            self._expires.pop(key, None)

    def set(self, key, value, ttl_seconds):
        with self._lock:
            self._data[key] = value
            self._expires[key] = self._clock() + ttl_seconds

    def get(self, key):
        with self._lock:
            self._purge(key)
            return self._data.get(key)

    def delete(self, key):
        with self._lock:
            self._purge(key)
            self._expires.pop(key, None)
            return self._data.pop(key, None) is not None

    def expire(self, key, ttl_seconds):
        with self._lock:
            self._purge(key)
            if key not in self._data:
                return False
            self._expires[key] = self._clock() + ttl_seconds
            return True


class RedisTTLStore(TTLStore):
    """Values are JSON-encoded and written with ``SET ... EX``."""

    def __init__(self, client: 'redis.Redis'):
        self.client = client

    @classmethod
    def from_url(cls, url: str, connect_timeout: float = 2.0) -> 'RedisTTLStore':
        client = redis.Redis.from_url(
            url,
            decode_responses=True,
            socket_connect_timeout=connect_timeout,
            socket_timeout=connect_timeout,
        )
        return cls(client)

    @staticmethod
    def _decode(raw: Optional[str]) -> Optional[Any]:
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning("Discarding undecodable registry value: %r", raw)
            return None

    def set(self, key, value, ttl_seconds):
        self.client.set(key, json.dumps(value), ex=int(ttl_seconds))

    def get(self, key):
        return self._decode(self.client.get(key))

    def delete(self, key):
        return bool(self.client.delete(key))

    def expire(self, key, ttl_seconds):
        return bool(self.client.expire(key, int(ttl_seconds)))

    def get_many(self, keys):
        keys = list(keys)
        if not keys:
            return {}
        values = self.client.mget(keys)
        found = {}
        for key, raw in zip(keys, values):
            value = self._decode(raw)
            if value is not None:
                found[key] = value
        return found
