"""Migration script: create the chat indexes.

This script creates (idempotently):
1. Unique pair index on conversations (one live conversation per user pair)
2. Conversation listing index (participants, last_message_at desc)
3. Message history index (conversation_id, created_at desc)
4. Delivery/read indexes on messages (receiver_id, status) and
   (conversation_id, receiver_id, status)

Usage:
    python scripts/add_indexes.py

Ensure MONGO_URI and MONGO_DB environment variables are set.
"""
import logging
import sys
import os

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from pymongo.errors import OperationFailure

from chat_server.repository.mongo_helper import CHAT_INDEXES, MongoRepositorySingleton

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)


def create_index_safe(coll, index_spec, **kwargs):
    """Create an index, reporting a conflicting definition instead of aborting."""
    try:
        index_name = coll.create_index(index_spec, **kwargs)
        logger.info('  Ensured index: %s', index_name)
        return True
    except OperationFailure as e:
        logger.error('  Error creating index %s on %s: %s', index_spec, coll.name, e)
        return False


def main():
    logger.info('Starting chat index migration...')
    logger.info('=' * 50)

    db = MongoRepositorySingleton.get_db()
    failed = 0
    for collection_name, keys, options in CHAT_INDEXES:
        logger.info('%s: %s', collection_name, options['name'])
        if not create_index_safe(db[collection_name], keys, **options):
            failed += 1

    logger.info('=' * 50)
    if failed:
        logger.error('Index migration finished with %d failure(s).', failed)
        return 1
    logger.info('Index migration complete.')
    return 0


if __name__ == '__main__':
    sys.exit(main())
