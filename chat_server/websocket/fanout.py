"""Cross-process fanout for Socket.IO rooms.

Every server process attaches to the same Redis pub/sub channel through
python-socketio's RedisManager (Flask-SocketIO ``message_queue``). An emit to
``user:<id>`` on one process is published on the channel and re-emitted by
each process into its local room, so it reaches the user wherever their
connection lives.

If the broker cannot be reached at startup the adapter stays in degraded
mode: emits only reach connections held by this process. Persisted messages
are unaffected and clients catch up over HTTP.
"""
import logging
from typing import Any, Dict, Optional

import redis

logger = logging.getLogger(__name__)


class FanoutAdapter:
    """Decides whether Socket.IO runs with a Redis message queue."""

    def __init__(self, broker_url: Optional[str], channel: str = 'chat-fanout',
                 enabled: bool = True, connect_timeout: float = 2.0):
        self.broker_url = broker_url
        self.channel = channel
        self.enabled = enabled and bool(broker_url)
        self.connect_timeout = connect_timeout
        self.connected = False
        self.degraded = False

    def probe(self) -> bool:
        """PING the broker once. Returns whether cross-process fanout is available."""
        if not self.enabled:
            logger.info("Fanout disabled; real-time events stay in-process")
            self.connected = False
            self.degraded = False
            return False
        try:
            client = redis.Redis.from_url(self.broker_url, socket_connect_timeout=self.connect_timeout)
            try:
                client.ping()
            finally:
                client.close()
        except redis.RedisError as e:
            logger.warning("Fanout broker unreachable (%s); running in local-only degraded mode", e)
            self.connected = False
            self.degraded = True
            return False
        logger.info("Fanout attached to broker channel '%s'", self.channel)
        self.connected = True
        self.degraded = False
        return True

    def socketio_options(self) -> Dict[str, Any]:
        """Extra SocketIO() kwargs: the message queue when the broker answered."""
        if not self.connected:
            return {}
        return {'message_queue': self.broker_url, 'channel': self.channel}

    def status(self) -> Dict[str, Any]:
        if self.connected:
            mode = 'broker'
        elif self.degraded:
            mode = 'degraded'
        else:
            mode = 'local'
        return {'mode': mode, 'channel': self.channel}
