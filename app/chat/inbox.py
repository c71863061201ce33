"""
Inbox aggregator: a user's chat list with previews and unread counts.

Each entry joins three lookups: the other participant, the latest message
and the viewer's unread counter. Entries are sorted newest activity first,
where activity is the last message time or, for chats without messages,
the chat creation time; chat id breaks ties.

While started, the aggregator listens to message and participant events
addressed to the user. Every event marks the list dirty and a debounced
refresh recomputes it once per burst.

Usage:
    inbox = InboxAggregator(store, feed, identity)
    entries = await inbox.start()
    inbox.add_listener(render)
    ...
    await inbox.close()
"""

from __future__ import annotations

import asyncio
import contextlib
import dataclasses
import functools
import inspect
from typing import TYPE_CHECKING

from core.services import BaseService

from chat.constants import INBOX_CONFIG, REALTIME_CONFIG
from chat.exceptions import NotAuthenticated, SubscriptionLost
from chat.types import ChatMessage, InboxEntry, RealtimeFilter
from chat.unread import UnreadTracker

if TYPE_CHECKING:
    from collections.abc import Callable
    from typing import Any

    from chat.protocols import IdentityProvider, MessageStore, RealtimeFeed, Subscription


class InboxAggregator(BaseService):
    """
    Live inbox for one user.

    Args:
        store: MessageStore implementation
        feed: RealtimeFeed implementation
        identity: IdentityProvider used when start() gets no user id
        tracker: UnreadTracker applying counts for incoming messages
        debounce: Seconds to wait before recomputing after an event

    Attributes:
        user_id: Inbox owner (set by start())
        entries: Latest computed entries
        total_unread: Sum of the entries' unread counts (global badge)
        refresh_count: Number of completed recomputations
        last_error: Most recent unrecovered SubscriptionLost, if any
    """

    def __init__(
        self,
        store: MessageStore,
        feed: RealtimeFeed,
        identity: IdentityProvider | None = None,
        tracker: UnreadTracker | None = None,
        debounce: float = INBOX_CONFIG.REFRESH_DEBOUNCE_SECONDS,
    ):
        self.store = store
        self.feed = feed
        self.identity = identity
        self.tracker = tracker or UnreadTracker(store)
        self.debounce = debounce

        self.user_id: int | None = None
        self.entries: list[InboxEntry] = []
        self.total_unread = 0
        self.refresh_count = 0
        self.last_error: SubscriptionLost | None = None

        self._subscriptions: list[Subscription] = []
        self._listeners: list[Callable[[list[InboxEntry]], Any]] = []
        self._refresh_task: asyncio.Task | None = None
        self._dirty = False
        self._closed = False
        self._generation = 0

    async def list_chats(self, user_id: int) -> list[InboxEntry]:
        """Build the sorted inbox for a user from the store."""
        chats = await self.store.list_chats_for_user(user_id)
        other_ids = {chat.other_user_id(user_id) for chat in chats} - {None}
        users = await self.store.get_users(other_ids)
        latest = await self.store.latest_messages([chat.id for chat in chats])

        entries = []
        for chat in chats:
            own_row = chat.participant(user_id)
            entries.append(
                InboxEntry(
                    chat_id=chat.id,
                    viewer_id=user_id,
                    chat_created_at=chat.created_at,
                    other_user=users.get(chat.other_user_id(user_id)),
                    last_message=latest.get(chat.id),
                    unread_count=own_row.unread_count if own_row else 0,
                )
            )
        entries.sort(key=lambda entry: entry.sort_key, reverse=True)
        return entries

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self, user_id: int | None = None) -> list[InboxEntry]:
        """
        Subscribe to the user's events and compute the first snapshot.

        Raises:
            NotAuthenticated: No user id given and nobody signed in
        """
        if user_id is None:
            user_id = self.identity.current_user_id() if self.identity else None
        if user_id is None:
            raise NotAuthenticated("Sign in to load the inbox")

        self.user_id = user_id
        await self._subscribe()
        return await self.refresh()

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True

        task, self._refresh_task = self._refresh_task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        await self._unsubscribe_all()
        self.get_logger().info(f"Closed inbox for user {self.user_id}")

    # =========================================================================
    # Queries & Commands
    # =========================================================================

    async def refresh(self) -> list[InboxEntry]:
        """Recompute entries now and notify listeners."""
        entries = await self.list_chats(self.user_id)
        if self._closed:
            return self.entries

        self.entries = entries
        self.total_unread = sum(entry.unread_count for entry in entries)
        self.refresh_count += 1
        await self._notify()
        return entries

    def search(self, query: str) -> list[InboxEntry]:
        """Filter entries by the other user's name or the last message text."""
        needle = (query or "").strip().casefold()
        if not needle:
            return list(self.entries)

        results = []
        for entry in self.entries:
            username = entry.other_user.username if entry.other_user else ""
            content = entry.last_message.content if entry.last_message else ""
            if needle in username.casefold() or needle in content.casefold():
                results.append(entry)
        return results

    async def mark_read(self, chat_id: int) -> bool:
        """Mark a chat read for the inbox owner and update the badge."""
        marked = await self.tracker.mark_read(chat_id, self.user_id)
        if marked and not self._closed:
            # Listeners may still hold the previous entries
            self.entries = [
                dataclasses.replace(entry, unread_count=0) if entry.chat_id == chat_id else entry
                for entry in self.entries
            ]
            self.total_unread = sum(entry.unread_count for entry in self.entries)
            await self._notify()
        return marked

    def add_listener(self, callback: Callable[[list[InboxEntry]], Any]) -> None:
        """Register a callback (sync or async) receiving the entries."""
        self._listeners.append(callback)

    def remove_listener(self, callback: Callable[[list[InboxEntry]], Any]) -> None:
        if callback in self._listeners:
            self._listeners.remove(callback)

    def schedule_refresh(self) -> None:
        """Mark the inbox dirty; one debounced refresh covers a burst."""
        if self._closed:
            return
        self._dirty = True
        if self._refresh_task is None or self._refresh_task.done():
            self._refresh_task = asyncio.create_task(self._run_debounced_refresh())

    async def wait_until_idle(self) -> None:
        """Wait for a scheduled refresh to finish."""
        while self._refresh_task is not None and not self._refresh_task.done():
            await asyncio.shield(self._refresh_task)

    # =========================================================================
    # Realtime Handlers
    # =========================================================================

    async def _on_message_event(self, kind: str, row: dict[str, Any]) -> None:
        if self._closed:
            return
        if kind == REALTIME_CONFIG.INSERT:
            message = ChatMessage.from_row(row)
            if message.sender_id != self.user_id:
                await self.tracker.on_message_inserted(message)
        self.schedule_refresh()

    async def _on_participant_event(self, kind: str, row: dict[str, Any]) -> None:
        if self._closed:
            return
        self.schedule_refresh()

    async def _on_lost(self, generation: int, error: SubscriptionLost) -> None:
        # Both subscriptions report the same drop; only the current pair recovers
        if self._closed or generation != self._generation:
            return
        self.get_logger().warning(
            f"Inbox feed for user {self.user_id} lost ({error.message}); resubscribing"
        )
        await self._unsubscribe_all()
        try:
            await self._subscribe()
        except SubscriptionLost as again:
            self.last_error = again
            self.get_logger().error(
                f"Could not resubscribe inbox for user {self.user_id}: {again.message}"
            )
            return
        self.last_error = None
        await self.refresh()

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _subscribe(self) -> None:
        self._generation += 1
        on_lost = functools.partial(self._on_lost, self._generation)
        handlers = [
            (REALTIME_CONFIG.MESSAGES, self._on_message_event),
            (REALTIME_CONFIG.PARTICIPANTS, self._on_participant_event),
        ]
        for table, on_event in handlers:
            self._subscriptions.append(
                await self.feed.subscribe(
                    RealtimeFilter(table, user_id=self.user_id), on_event, on_lost
                )
            )

    async def _unsubscribe_all(self) -> None:
        subscriptions, self._subscriptions = self._subscriptions, []
        for subscription in subscriptions:
            await subscription.unsubscribe()

    async def _run_debounced_refresh(self) -> None:
        while self._dirty and not self._closed:
            await asyncio.sleep(self.debounce)
            self._dirty = False
            try:
                await self.refresh()
            except Exception:
                self.get_logger().exception(f"Inbox refresh failed for user {self.user_id}")

    async def _notify(self) -> None:
        snapshot = list(self.entries)
        for callback in list(self._listeners):
            try:
                result = callback(snapshot)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                self.get_logger().exception(f"Inbox listener failed for user {self.user_id}")
