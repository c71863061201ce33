"""
Celery tasks for chat app.

This module defines background tasks for:
- Applying unread increments for a stored message
- Recounting a participant's unread counter after a lost update
- Periodic drift repair across all participants

Related files:
    - unread.py: UnreadTracker
    - store.py: DjangoMessageStore
    - signals.py: Queues apply_message_unread after each message insert

Usage:
    from chat.tasks import recalculate_unread_count

    recalculate_unread_count.delay(chat_id, user_id)
"""

import logging

from asgiref.sync import async_to_sync
from celery import shared_task

from chat.constants import UNREAD_CONFIG

logger = logging.getLogger(__name__)


@shared_task(
    bind=True,
    autoretry_for=(Exception,),
    retry_backoff=True,
    retry_kwargs={"max_retries": 3},
)
def apply_message_unread(self, message_id: int) -> int:
    """
    Apply unread increments for a stored message.

    Runs for every message so counters stay right while the recipient is
    offline. Online observers may have claimed the message first, in which
    case this is a no-op.

    Args:
        message_id: ID of the stored message

    Returns:
        Number of counters incremented
    """
    from chat.models import Message
    from chat.store import DjangoMessageStore
    from chat.types import ChatMessage
    from chat.unread import UnreadTracker

    message = Message.objects.filter(pk=message_id).first()
    if message is None:
        logger.warning(f"Message {message_id} not found; skipping unread update")
        return 0

    tracker = UnreadTracker(DjangoMessageStore())
    incremented = async_to_sync(tracker.on_message_inserted)(ChatMessage.from_model(message))
    return len(incremented)


@shared_task(
    bind=True,
    autoretry_for=(Exception,),
    retry_backoff=True,
    retry_kwargs={"max_retries": 3},
)
def recalculate_unread_count(self, chat_id: int, user_id: int) -> int:
    """
    Recount one participant's unread counter from stored messages.

    Scheduled by UnreadTracker when an increment was lost.

    Args:
        chat_id: Chat ID
        user_id: Participant's user ID

    Returns:
        The recounted value
    """
    from chat.store import DjangoMessageStore
    from chat.unread import UnreadTracker

    tracker = UnreadTracker(DjangoMessageStore(), schedule_recount=False)
    return async_to_sync(tracker.recalculate)(chat_id, user_id)


@shared_task
def recalculate_all_unread_counts() -> dict:
    """
    Periodic task repairing drifted unread counters.

    Compares every participant's counter with a recount and fixes the
    ones that differ. Schedule via celery beat (e.g. hourly).

    Returns:
        Dict with counts of checked and repaired participants.
    """
    from chat.models import Participant
    from chat.store import DjangoMessageStore

    store = DjangoMessageStore()
    checked = 0
    repaired = 0

    # Collect first: the store's async calls recycle the DB connection
    drifted = []
    participants = Participant.objects.order_by("pk").iterator(
        chunk_size=UNREAD_CONFIG.RECOUNT_BATCH_SIZE
    )
    for participant in participants:
        checked += 1
        expected = participant.count_unread_messages()
        if expected != participant.unread_count:
            drifted.append(
                (participant.chat_id, participant.user_id, participant.unread_count, expected)
            )

    for chat_id, user_id, was, expected in drifted:
        try:
            async_to_sync(store.recount_unread)(chat_id, user_id)
            repaired += 1
            logger.info(
                "Repaired unread counter",
                extra={"chat_id": chat_id, "user_id": user_id, "was": was, "now": expected},
            )
        except Exception as e:
            logger.error(
                f"Failed to repair unread counter: {e}",
                extra={"chat_id": chat_id, "user_id": user_id},
            )

    logger.info(
        f"Checked {checked} unread counters, repaired {repaired}",
        extra={"checked": checked, "repaired": repaired},
    )
    return {"checked": checked, "repaired": repaired}
