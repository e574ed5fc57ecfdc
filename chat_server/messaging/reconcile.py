"""Recompute conversation unread counters from the message log.

Sending a message inserts it first and bumps the counter second. A crash in
between leaves the counter one short; this pass repairs that (and any other
drift) by counting non-read messages per receiver.

Each write is conditional on the counters read at the start of the pass. A
conversation that received a send while it was being counted is left alone
and picked up by the next run.
"""
import logging
from typing import Any, Dict, List

from chat_server.repository.conversation_repository import ConversationRepository
from chat_server.repository.message_repository import MessageRepository

logger = logging.getLogger(__name__)


def reconcile_unread_counts(conversations: ConversationRepository, messages: MessageRepository,
                            dry_run: bool = False) -> List[Dict[str, Any]]:
    """Fix every live conversation whose stored counters disagree with its messages.

    Returns one entry per drifted conversation:
        {'conversationId', 'stored': {uid: n}, 'actual': {uid: n}}
    Nothing is written when ``dry_run`` is set.
    """
    fixes = []
    for doc in conversations.iter_all():
        conversation_id = str(doc['_id'])
        participants = doc.get('participants', [])
        raw = doc.get('unread_count') or {}
        stored = {p: int(raw.get(p, 0)) for p in participants}
        counted = messages.count_unread_by_receiver(conversation_id)
        actual = {p: counted.get(p, 0) for p in participants}
        if stored == actual:
            continue
        fixes.append({'conversationId': conversation_id, 'stored': stored, 'actual': actual})
        if dry_run:
            logger.info("[dry-run] %s: stored=%s actual=%s", conversation_id, stored, actual)
            continue
        expected = {p: raw.get(p) for p in participants}
        if conversations.set_unread_counts(conversation_id, actual, expected=expected):
            logger.info("Fixed %s: stored=%s actual=%s", conversation_id, stored, actual)
        else:
            logger.info("Skipped %s: counters changed during the pass", conversation_id)
    return fixes
