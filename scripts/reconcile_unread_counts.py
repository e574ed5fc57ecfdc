"""Maintenance script: recompute conversation unread counters from messages.

Each conversation's ``unread_count`` is replaced by the number of non-read,
non-deleted messages addressed to each participant. Only drifted
conversations are written, and a conversation whose counters move during the
pass is skipped until the next run, so the server can stay up.

Usage:
    python scripts/reconcile_unread_counts.py [--dry-run]

Ensure MONGO_URI and MONGO_DB environment variables are set.
"""
import argparse
import logging
import sys
import os

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from chat_server.messaging.reconcile import reconcile_unread_counts
from chat_server.repository.mongo_helper import MongoRepositorySingleton

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)


def main():
    parser = argparse.ArgumentParser(description='Recompute unread counters from the message log')
    parser.add_argument('--dry-run', action='store_true', help='Report drift without writing')
    args = parser.parse_args()

    repos = MongoRepositorySingleton.get_instance()
    logger.info('Reconciling unread counters%s...', ' (dry run)' if args.dry_run else '')
    fixes = reconcile_unread_counts(repos.conversation, repos.message, dry_run=args.dry_run)
    logger.info('%d conversation(s) %s.', len(fixes), 'would change' if args.dry_run else 'fixed')


if __name__ == '__main__':
    main()
