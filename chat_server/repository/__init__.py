from .conversation_repository import ConversationRepository
from .message_repository import MessageRepository
from .user_repository import UserRepository
from .mongo_helper import MongoRepositorySingleton, ensure_indexes, translate_store_errors

__all__ = [
    'ConversationRepository', 'MessageRepository', 'UserRepository',
    'MongoRepositorySingleton', 'ensure_indexes', 'translate_store_errors',
]
