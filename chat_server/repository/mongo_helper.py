import functools
import logging

from pymongo import MongoClient, ASCENDING, DESCENDING
from pymongo.errors import (
    AutoReconnect, ConnectionFailure, ExecutionTimeout, NetworkTimeout,
    ServerSelectionTimeoutError,
)

from config import config
from chat_server.exception.ChatError import ServiceUnavailableError

logger = logging.getLogger(__name__)

TRANSIENT_ERRORS = (
    AutoReconnect, ConnectionFailure, ExecutionTimeout, NetworkTimeout,
    ServerSelectionTimeoutError,
)

# (collection, keys, options) for every query path the chat engine uses
CHAT_INDEXES = [
    ('conversations', [('pair_key', ASCENDING)], {'unique': True, 'name': 'conversations_pair_key'}),
    ('conversations', [('participants', ASCENDING), ('last_message_at', DESCENDING)],
     {'name': 'conversations_participants_last_message_at'}),
    ('messages', [('conversation_id', ASCENDING), ('created_at', DESCENDING)],
     {'name': 'messages_conversation_created_at'}),
    ('messages', [('receiver_id', ASCENDING), ('status', ASCENDING)],
     {'name': 'messages_receiver_status'}),
    ('messages', [('conversation_id', ASCENDING), ('receiver_id', ASCENDING), ('status', ASCENDING)],
     {'name': 'messages_conversation_receiver_status'}),
]


def translate_store_errors(func):
    """Surface transient MongoDB failures as ServiceUnavailableError.

    No retry happens here; retry policy belongs to the client.
    """
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except TRANSIENT_ERRORS as e:
            logger.warning("Store unavailable in %s: %s", func.__qualname__, e)
            raise ServiceUnavailableError('Chat storage is temporarily unavailable') from e
    return wrapper


def ensure_indexes(db):
    """Create the chat indexes (idempotent). Returns the index names ensured."""
    created = []
    for collection_name, keys, options in CHAT_INDEXES:
        db[collection_name].create_index(keys, **options)
        created.append(options['name'])
    logger.info('Ensured %d chat indexes', len(created))
    return created


class MongoRepositorySingleton:
    """Process-wide holder of the database handle and the chat repositories."""
    _instance = None
    _db_instance = None

    @classmethod
    def get_db(cls):
        """Singleton utility to get the MongoDB database object.

        Uses MONGO_URI / MONGO_DB from config. Datetimes come back tz-aware
        (UTC) so they serialize with an offset.
        """
        if cls._db_instance is not None:
            return cls._db_instance
        mongo_uri = config.MONGO_URI
        db_name = config.MONGO_DB
        logger.info("Connecting to MongoDB DB: %s", db_name)
        client = MongoClient(
            mongo_uri,
            tz_aware=True,
            serverSelectionTimeoutMS=config.MONGO_TIMEOUT_MS,
            socketTimeoutMS=config.MONGO_TIMEOUT_MS,
        )
        cls._db_instance = client[db_name]
        return cls._db_instance

    @classmethod
    def use_db(cls, db):
        """Point the singleton at an existing database handle (tests, scripts)."""
        cls._db_instance = db
        cls._instance = None

    @classmethod
    def reset(cls):
        cls._instance = None
        cls._db_instance = None

    @classmethod
    def get_instance(cls):
        return cls.__new__(cls)

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._init_repositories()
        return cls._instance

    def _init_repositories(self):
        from chat_server.repository.conversation_repository import ConversationRepository
        from chat_server.repository.message_repository import MessageRepository
        from chat_server.repository.user_repository import UserRepository

        db = self.get_db()
        self.db = db
        self.user = UserRepository(db)
        self.conversation = ConversationRepository(db)
        self.message = MessageRepository(db)
        try:
            ensure_indexes(db)
        except TRANSIENT_ERRORS as e:
            # Startup continues; operations will report Unavailable until the store returns
            logger.error('Failed to ensure DB indexes: %s', e)
