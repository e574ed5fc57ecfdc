"""Messaging domain.

- models: Message / Conversation documents and their API shape
- ttl_store: expiring key/value stores (Redis or in-memory)
- presence: presence and typing registries
- service: MessagingService, the single entry point for chat operations
"""
from .models import MessageType, MessageStatus, ConnectionState, Message, Conversation

__all__ = ['MessageType', 'MessageStatus', 'ConnectionState', 'Message', 'Conversation']
