"""Real-time two-party messaging engine.

Subpackages:
- repository: MongoDB-backed conversation, message and user stores
- messaging: domain models, presence/typing registries and MessagingService
- websocket: Socket.IO gateway, broadcast groups and cross-process fanout
- routes: HTTP surface under /chat
"""
