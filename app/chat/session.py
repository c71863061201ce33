"""
Conversation session: one user's live view of one chat.

Lifecycle:
    LOADING -> READY -> (SENDING | RECEIVING)* -> CLOSED

    open() subscribes to the chat's message feed first and then loads the
    history, so nothing inserted in between is missed. Events that arrive
    while loading are buffered and merged once the history is in.

Message list:
    Confirmed messages are kept in (created_at, id) order regardless of
    arrival order; duplicates are dropped by id. Pending (optimistic)
    entries from send() always sit after the confirmed ones.

Send reconciliation:
    A send appends a pending entry, then awaits the store with a timeout.
    The realtime echo of our own message may arrive before or after the
    store acknowledges it:
    - echo first: the echo replaces the oldest pending entry with the same
      content and a created_at within tolerance; the ack is then a no-op
    - ack first: the pending entry becomes the stored message; the echo is
      then a duplicate id and dropped
    On error or timeout the pending entry is removed and SendFailed raised.
    Nothing is retried automatically.

Usage:
    session = ConversationSession(chat_id, store, feed, identity)
    messages = await session.open()
    await session.send("hello")
    await session.close()
"""

from __future__ import annotations

import asyncio
import bisect
import inspect
import uuid
from datetime import timedelta
from typing import TYPE_CHECKING

from django.utils import timezone

from core.services import BaseService

from chat.constants import MESSAGE_CONFIG, REALTIME_CONFIG
from chat.exceptions import (
    EmptyMessage,
    MessageTooLong,
    NotAuthenticated,
    NotParticipant,
    SendFailed,
    SessionClosed,
    SubscriptionLost,
)
from chat.types import ChatMessage, RealtimeFilter, SessionState
from chat.unread import UnreadTracker

if TYPE_CHECKING:
    from collections.abc import Callable
    from typing import Any

    from chat.protocols import IdentityProvider, MessageStore, RealtimeFeed, Subscription
    from chat.types import MessageCursor


class ConversationSession(BaseService):
    """
    Live, ordered message list for one chat.

    Args:
        chat_id: Chat to open
        store: MessageStore implementation
        feed: RealtimeFeed implementation
        identity: IdentityProvider resolving the viewing user
        tracker: UnreadTracker (defaults to one over the same store)
        send_timeout: Seconds to wait for the store on send
        page_size: History page size
        echo_tolerance: Max created_at distance for echo matching (seconds)
        mark_read_on_open: Reset the viewer's unread count after loading

    Attributes:
        self_id: Viewing user (set by open())
        last_error: Most recent unrecovered SubscriptionLost, if any
    """

    def __init__(
        self,
        chat_id: int,
        store: MessageStore,
        feed: RealtimeFeed,
        identity: IdentityProvider,
        tracker: UnreadTracker | None = None,
        send_timeout: float = MESSAGE_CONFIG.SEND_TIMEOUT_SECONDS,
        page_size: int = MESSAGE_CONFIG.PAGE_SIZE,
        echo_tolerance: float = MESSAGE_CONFIG.ECHO_MATCH_TOLERANCE_SECONDS,
        mark_read_on_open: bool = True,
    ):
        self.chat_id = chat_id
        self.store = store
        self.feed = feed
        self.identity = identity
        self.tracker = tracker or UnreadTracker(store)
        self.send_timeout = send_timeout
        self.page_size = page_size
        self.echo_tolerance = timedelta(seconds=echo_tolerance)
        self.mark_read_on_open = mark_read_on_open

        self.self_id: int | None = None
        self.last_error: SubscriptionLost | None = None

        self._confirmed: list[ChatMessage] = []
        self._known_ids: set[int] = set()
        self._pending: list[ChatMessage] = []
        # temp id -> stored message, for echoes that beat the store ack
        self._reconciled: dict[str, ChatMessage] = {}
        self._buffer: list[ChatMessage] | None = None
        self._subscription: Subscription | None = None
        self._listeners: list[Callable[[list[ChatMessage]], Any]] = []

        self._loaded = False
        self._closed = False
        self._sending = 0
        self._receiving = False

    def __repr__(self) -> str:
        return (
            f"ConversationSession(chat_id={self.chat_id}, state={self.state.value}, "
            f"messages={len(self._confirmed)}, pending={len(self._pending)})"
        )

    # =========================================================================
    # State
    # =========================================================================

    @property
    def state(self) -> SessionState:
        if self._closed:
            return SessionState.CLOSED
        if not self._loaded:
            return SessionState.LOADING
        if self._receiving:
            return SessionState.RECEIVING
        if self._sending:
            return SessionState.SENDING
        return SessionState.READY

    @property
    def messages(self) -> list[ChatMessage]:
        """Confirmed messages in order, followed by pending ones."""
        return [*self._confirmed, *self._pending]

    @property
    def pending(self) -> list[ChatMessage]:
        return list(self._pending)

    def add_listener(self, callback: Callable[[list[ChatMessage]], Any]) -> None:
        """Register a callback (sync or async) receiving the message list."""
        self._listeners.append(callback)

    def remove_listener(self, callback: Callable[[list[ChatMessage]], Any]) -> None:
        if callback in self._listeners:
            self._listeners.remove(callback)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def open(self) -> list[ChatMessage]:
        """
        Subscribe, load the history and become READY.

        Raises:
            NotAuthenticated: No current user
            NotParticipant: Current user is not a member of the chat
            SessionClosed: Session was closed
            SubscriptionLost: Realtime feed unavailable
        """
        if self._closed:
            raise SessionClosed("Session is closed", details={"chat_id": self.chat_id})

        self.self_id = self.identity.current_user_id()
        if self.self_id is None:
            raise NotAuthenticated("Sign in to open a chat")

        participants = await self.store.list_participants(self.chat_id)
        if self.self_id not in {p.user_id for p in participants}:
            raise NotParticipant(
                "Not a participant of this chat",
                details={"chat_id": self.chat_id, "user_id": self.self_id},
            )

        self._buffer = []
        await self._subscribe()
        try:
            history = await self._load_after(None)
        except Exception:
            self._buffer = None
            subscription, self._subscription = self._subscription, None
            if subscription is not None:
                await subscription.unsubscribe()
            raise
        if self._closed:
            return []

        for message in history:
            self._insert_confirmed(message)
        buffered, self._buffer = self._buffer, None
        for message in buffered:
            await self._apply_remote(message)

        self._loaded = True
        self.get_logger().info(
            f"Opened chat {self.chat_id} for user {self.self_id} "
            f"with {len(self._confirmed)} messages"
        )

        if self.mark_read_on_open:
            await self.tracker.mark_read(self.chat_id, self.self_id)

        await self._notify()
        return self.messages

    async def close(self) -> None:
        """Unsubscribe. Later events and acks no longer change the session."""
        if self._closed:
            return
        self._closed = True

        subscription, self._subscription = self._subscription, None
        if subscription is not None:
            await subscription.unsubscribe()
        self.get_logger().info(f"Closed chat {self.chat_id} for user {self.self_id}")

    async def mark_read(self) -> bool:
        """Reset the viewer's unread count for this chat."""
        if self.self_id is None:
            raise NotAuthenticated("Open the session before marking it read")
        return await self.tracker.mark_read(self.chat_id, self.self_id)

    # =========================================================================
    # Sending
    # =========================================================================

    async def send(self, content: str) -> ChatMessage:
        """
        Send a message with an optimistic pending entry.

        Args:
            content: Message text; surrounding whitespace is trimmed

        Returns:
            The stored message

        Raises:
            EmptyMessage: Blank content (no store call made)
            MessageTooLong: Content over the length limit (no store call made)
            SessionClosed: Session closed or not opened
            SendFailed: Store error or timeout; pending entry removed
        """
        if self._closed:
            raise SessionClosed("Session is closed", details={"chat_id": self.chat_id})

        text = (content or "").strip()
        if not text:
            raise EmptyMessage("Message content cannot be empty")
        if len(text) > MESSAGE_CONFIG.MAX_CONTENT_LENGTH:
            raise MessageTooLong(
                f"Message cannot exceed {MESSAGE_CONFIG.MAX_CONTENT_LENGTH} characters",
                details={"length": len(text)},
            )
        if not self._loaded:
            raise SessionClosed(
                "Open the session before sending",
                error_code="SESSION_NOT_OPEN",
                details={"chat_id": self.chat_id},
            )

        temp = ChatMessage(
            id=f"{MESSAGE_CONFIG.TEMP_ID_PREFIX}{uuid.uuid4().hex}",
            chat_id=self.chat_id,
            sender_id=self.self_id,
            content=text,
            created_at=timezone.now(),
            pending=True,
        )
        self._pending.append(temp)
        self._sending += 1
        await self._notify()

        try:
            stored = await asyncio.wait_for(
                self.store.insert_message(self.chat_id, self.self_id, text),
                timeout=self.send_timeout,
            )
        except asyncio.CancelledError:
            self._discard_pending(temp)
            self._sending -= 1
            raise
        except Exception as exc:
            self._sending -= 1
            reconciled = self._reconciled.pop(temp.id, None)
            if reconciled is not None:
                # The echo proved the message was stored
                return reconciled

            if not self._closed:
                self._discard_pending(temp)
            reason = "timed out" if isinstance(exc, asyncio.TimeoutError) else str(exc)
            self.get_logger().warning(
                f"Send to chat {self.chat_id} failed ({reason}); removed pending entry"
            )
            await self._notify()
            raise SendFailed(
                "Message could not be sent",
                details={"chat_id": self.chat_id, "content": text, "reason": reason},
            ) from exc

        self._sending -= 1
        self._reconciled.pop(temp.id, None)
        if self._closed:
            return stored

        self._discard_pending(temp)
        if stored.id not in self._known_ids:
            self._insert_confirmed(stored)
        self.get_logger().debug(f"Sent message {stored.id} to chat {self.chat_id}")
        await self._notify()
        return stored

    # =========================================================================
    # Receiving
    # =========================================================================

    async def on_remote_insert(self, message: ChatMessage) -> None:
        """
        Merge a message delivered by the realtime feed.

        Duplicate ids are ignored. Our own messages reconcile pending
        entries; other senders' messages go through the unread tracker.
        """
        if self._closed or message.chat_id != self.chat_id:
            return
        if self._buffer is not None:
            self._buffer.append(message)
            return

        self._receiving = True
        try:
            changed = await self._apply_remote(message)
        finally:
            self._receiving = False

        if changed:
            await self._notify()

    async def resync(self) -> list[ChatMessage]:
        """Fetch everything after the newest confirmed message and merge it."""
        cursor = self._confirmed[-1].cursor if self._confirmed else None
        missed = await self._load_after(cursor)
        merged = [message for message in missed if await self._apply_remote(message)]
        if merged:
            self.get_logger().info(
                f"Recovered {len(merged)} messages in chat {self.chat_id} after resync"
            )
            await self._notify()
        return merged

    async def _on_event(self, kind: str, row: dict[str, Any]) -> None:
        if self._closed or kind != REALTIME_CONFIG.INSERT:
            return
        await self.on_remote_insert(ChatMessage.from_row(row))

    async def _on_lost(self, error: SubscriptionLost) -> None:
        if self._closed:
            return
        self.get_logger().warning(
            f"Realtime feed for chat {self.chat_id} lost ({error.message}); resubscribing"
        )
        subscription, self._subscription = self._subscription, None
        if subscription is not None:
            await subscription.unsubscribe()
        try:
            await self._subscribe()
        except SubscriptionLost as again:
            self.last_error = again
            self.get_logger().error(
                f"Could not resubscribe to chat {self.chat_id}: {again.message}"
            )
            return
        self.last_error = None
        await self.resync()

    async def _apply_remote(self, message: ChatMessage) -> bool:
        if self._closed or message.id in self._known_ids:
            return False

        if message.sender_id == self.self_id:
            match = self._match_pending(message)
            if match is not None:
                self._pending.remove(match)
                self._reconciled[match.id] = message
            self._insert_confirmed(message)
            return True

        self._insert_confirmed(message)
        await self.tracker.on_message_inserted(message)
        return True

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _subscribe(self) -> None:
        self._subscription = await self.feed.subscribe(
            RealtimeFilter(REALTIME_CONFIG.MESSAGES, chat_id=self.chat_id),
            self._on_event,
            self._on_lost,
        )

    async def _load_after(self, cursor: MessageCursor | None) -> list[ChatMessage]:
        loaded: list[ChatMessage] = []
        while True:
            page = await self.store.list_messages(
                self.chat_id, after=cursor, limit=self.page_size
            )
            loaded.extend(page)
            if len(page) < self.page_size:
                return loaded
            cursor = page[-1].cursor

    def _insert_confirmed(self, message: ChatMessage) -> None:
        if message.id in self._known_ids:
            return
        bisect.insort(self._confirmed, message, key=lambda m: m.sort_key)
        self._known_ids.add(message.id)

    def _match_pending(self, message: ChatMessage) -> ChatMessage | None:
        for pending in self._pending:
            if (
                pending.content == message.content
                and abs(message.created_at - pending.created_at) <= self.echo_tolerance
            ):
                return pending
        return None

    def _discard_pending(self, temp: ChatMessage) -> None:
        if temp in self._pending:
            self._pending.remove(temp)

    async def _notify(self) -> None:
        if self._closed:
            return
        snapshot = self.messages
        for callback in list(self._listeners):
            try:
                result = callback(snapshot)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                self.get_logger().exception(
                    f"Message listener failed for chat {self.chat_id}"
                )
