"""
Unread tracker: per-participant unread counters.

Counting rules:
    - Each stored message increments the counter of every participant
      except its sender, exactly once. The first observer to claim the
      message applies the increments; later observers (other sessions,
      inboxes, the background task) see the claim and do nothing.
    - mark_read resets the counter to zero and is idempotent.
    - A lost increment is logged, recorded and repaired by a recount job.
      Increments are never retried in place, because an ambiguous failure
      may already have been applied: under-counting is tolerated,
      over-counting is not.

Usage:
    tracker = UnreadTracker(store)
    await tracker.on_message_inserted(message)
    await tracker.mark_read(chat_id, user_id)
    badge = await tracker.total_unread(user_id)
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from asgiref.sync import sync_to_async

from core.services import BaseService

from chat.constants import REALTIME_CONFIG, UNREAD_CONFIG
from chat.exceptions import UnreadUpdateFailed
from chat.types import ChatMessage, RealtimeFilter

if TYPE_CHECKING:
    from typing import Any

    from chat.protocols import MessageStore, RealtimeFeed, Subscription


class UnreadTracker(BaseService):
    """
    Maintains unread counters through a MessageStore.

    Args:
        store: MessageStore implementation
        schedule_recount: Queue a Celery recount after a lost update

    Attributes:
        failures: UnreadUpdateFailed records for lost updates, oldest first
    """

    def __init__(self, store: MessageStore, schedule_recount: bool = True):
        self.store = store
        self.schedule_recount = schedule_recount
        self.failures: list[UnreadUpdateFailed] = []

    async def on_message_inserted(self, message: ChatMessage) -> list[int]:
        """
        Apply unread increments for a newly stored message.

        Args:
            message: Confirmed message (pending entries are ignored)

        Returns:
            Ids of the users whose counter was incremented; empty when the
            message was already claimed by another observer
        """
        if message.pending or message.is_temporary():
            return []

        try:
            participants = await self.store.list_participants(message.chat_id)
        except Exception as exc:
            # Unclaimed messages are picked up by the next observer
            self.get_logger().warning(
                f"Could not load recipients of message {message.id}: {exc}"
            )
            return []
        recipients = [p.user_id for p in participants if p.user_id != message.sender_id]
        if not recipients:
            return []

        try:
            incremented = await self.store.apply_unread_delivery(int(message.id))
        except Exception as exc:
            # Claim and increments commit together; if they rolled back the
            # message is still unclaimed for the next observer
            for user_id in recipients:
                await self._record_failure(message.chat_id, user_id, exc)
            return []

        if incremented is None:
            self.get_logger().debug(f"Message {message.id} already counted")
            return []

        self.get_logger().debug(
            f"Message {message.id} in chat {message.chat_id} counted for {incremented}"
        )
        return incremented

    async def mark_read(self, chat_id: int, user_id: int) -> bool:
        """
        Reset a participant's counter to zero.

        Idempotent: marking an already-read chat is a no-op that still
        succeeds. Returns False if the user is not a participant or the
        reset could not be stored.
        """
        last_error: Exception | None = None
        for _attempt in range(UNREAD_CONFIG.RESET_ATTEMPTS):
            try:
                return await self.store.reset_unread(chat_id, user_id)
            except Exception as exc:
                last_error = exc
                self.get_logger().warning(
                    f"Reset of unread count for user {user_id} in chat {chat_id} failed: {exc}"
                )

        failure = UnreadUpdateFailed(
            chat_id,
            user_id,
            f"Could not mark chat {chat_id} read for user {user_id}: {last_error}",
        )
        self.failures.append(failure)
        self.get_logger().error(str(failure))
        return False

    async def total_unread(self, user_id: int) -> int:
        """Sum of the user's counters across all chats (global badge)."""
        return await self.store.total_unread(user_id)

    async def recalculate(self, chat_id: int, user_id: int) -> int:
        """Recount a participant's counter from stored messages."""
        count = await self.store.recount_unread(chat_id, user_id)
        self.get_logger().info(
            f"Recounted unread for user {user_id} in chat {chat_id}: {count}"
        )
        return count

    async def watch(self, feed: RealtimeFeed) -> Subscription:
        """
        Count every message inserted on the feed.

        Returns the subscription; unsubscribe it to stop watching.
        """

        async def on_event(kind: str, row: dict[str, Any]) -> None:
            if kind == REALTIME_CONFIG.INSERT:
                await self.on_message_inserted(ChatMessage.from_row(row))

        return await feed.subscribe(RealtimeFilter(REALTIME_CONFIG.MESSAGES), on_event)

    async def _record_failure(self, chat_id: int, user_id: int, exc: Exception) -> None:
        failure = UnreadUpdateFailed(
            chat_id,
            user_id,
            f"Unread increment lost for user {user_id} in chat {chat_id}: {exc}",
        )
        self.failures.append(failure)
        self.get_logger().error(str(failure))

        if not self.schedule_recount:
            return

        from chat.tasks import recalculate_unread_count

        try:
            await sync_to_async(recalculate_unread_count.delay)(chat_id, user_id)
        except Exception:
            self.get_logger().exception(
                f"Could not schedule unread recount for user {user_id} in chat {chat_id}"
            )
