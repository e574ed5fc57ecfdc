"""Real-time layer.

- gateway: Socket.IO connection lifecycle and inbound chat events
- event_emitter: broadcast groups (rooms) and event names
- fanout: Redis message queue for multi-process deployments
"""
