"""
Django signals for the chat app.

Provides handlers for:
- Queueing unread increments after a message is committed
"""

from __future__ import annotations

import logging

from django.db import transaction
from django.db.models.signals import post_save

logger = logging.getLogger(__name__)


def connect_signals():
    """
    Connect all signal handlers.

    Called from ChatConfig.ready() to ensure signals are connected
    after all models are loaded.
    """
    from chat.models import Message

    post_save.connect(
        queue_unread_on_message_insert,
        sender=Message,
        dispatch_uid="chat_queue_unread_on_message_insert",
    )

    logger.debug("Chat signals connected")


def queue_unread_on_message_insert(
    sender,
    instance,
    created: bool,
    **kwargs,
) -> None:
    """
    Queue apply_message_unread once the message is committed.

    Args:
        sender: Message model class.
        instance: Message instance.
        created: True if new record created.
        **kwargs: Additional signal arguments.
    """
    if not created:
        return

    message_id = instance.pk

    def queue():
        from chat.tasks import apply_message_unread

        try:
            apply_message_unread.delay(message_id)
        except Exception as e:
            # Log but don't raise - the message is stored; online observers
            # and the periodic recount still cover the counter
            logger.error(f"Failed to queue unread update for message {message_id}: {e}")

    transaction.on_commit(queue)
