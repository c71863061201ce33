"""
Protocol definitions for the chat core's collaborators.

The chat services depend on these interfaces rather than on Django or
Channels directly, which keeps them testable with in-memory fakes.

Available Protocols:
    IdentityProvider: Who is the current user
    MessageStore: Persistence of chats, participants and messages
    RealtimeFeed: Change notifications for the messages/participants tables
    Subscription: Handle returned by RealtimeFeed.subscribe

Production implementations:
    - chat.identity.StaticIdentityProvider / ScopeIdentityProvider
    - chat.store.DjangoMessageStore
    - chat.realtime.ChannelLayerFeed

Note:
    - Store and feed methods are coroutines; callers run on one event loop
    - @runtime_checkable allows isinstance() checks
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Iterable
    from typing import Any

    from chat.exceptions import SubscriptionLost
    from chat.types import (
        ChatMessage,
        ChatRecord,
        MessageCursor,
        PairKey,
        ParticipantRow,
        RealtimeFilter,
        UserSummary,
    )

    EventCallback = Callable[[str, dict[str, Any]], Awaitable[None]]
    LostCallback = Callable[[SubscriptionLost], Awaitable[None]]


@runtime_checkable
class IdentityProvider(Protocol):
    """Resolves the signed-in user."""

    def current_user_id(self) -> int | None:
        """Return the current user's id, or None when signed out."""
        ...


@runtime_checkable
class MessageStore(Protocol):
    """
    Persistence for the chat core.

    Guarantees required from implementations:
        - create_chat fails with DuplicateChat when the pair already has a chat
        - apply_unread_delivery claims and increments as one atomic step
          and applies a message at most once
        - recount_unread never observes a claim without its increments
        - list_messages returns ascending (created_at, id) order
    """

    async def get_chat(self, pair_key: PairKey) -> int | None:
        """Return the chat id for a user pair, or None."""
        ...

    async def create_chat(self, pair_key: PairKey) -> int:
        """
        Create a chat and its pair row.

        Stores that can also insert both participants in the same
        transaction should do so; add_participants is then a no-op.

        Raises:
            DuplicateChat: If another chat already holds the pair
        """
        ...

    async def delete_chat(self, chat_id: int) -> None:
        """Delete a chat with its pair, participants and messages."""
        ...

    async def add_participants(self, chat_id: int, user_ids: Iterable[int]) -> None:
        """Add participants with unread_count=0, skipping existing members."""
        ...

    async def list_participants(self, chat_id: int) -> list[ParticipantRow]:
        ...

    async def apply_unread_delivery(self, message_id: int) -> list[int] | None:
        """
        Claim a message and increment every recipient's unread_count.

        Recipients exclude the sender and anyone who read the chat after the
        message was created. Returns the incremented user ids, or None when
        the message was already claimed.
        """
        ...

    async def reset_unread(self, chat_id: int, user_id: int) -> bool:
        """Set unread_count to zero; return False if no such participant."""
        ...

    async def recount_unread(self, chat_id: int, user_id: int) -> int:
        """Recompute unread_count from messages and return the new value."""
        ...

    async def total_unread(self, user_id: int) -> int:
        ...

    async def insert_message(
        self, chat_id: int, sender_id: int, content: str
    ) -> ChatMessage:
        ...

    async def list_messages(
        self,
        chat_id: int,
        after: MessageCursor | None = None,
        limit: int | None = None,
    ) -> list[ChatMessage]:
        """Return messages strictly after the cursor, oldest first."""
        ...

    async def latest_messages(self, chat_ids: Iterable[int]) -> dict[int, ChatMessage]:
        """Return the newest message per chat (chats without messages omitted)."""
        ...

    async def list_chats_for_user(self, user_id: int) -> list[ChatRecord]:
        ...

    async def get_users(self, user_ids: Iterable[int]) -> dict[int, UserSummary]:
        ...

    async def list_users(self, exclude_id: int | None = None) -> list[UserSummary]:
        ...


@runtime_checkable
class Subscription(Protocol):
    """Handle for an active realtime subscription."""

    async def unsubscribe(self) -> None:
        """Stop delivery. Safe to call more than once."""
        ...


@runtime_checkable
class RealtimeFeed(Protocol):
    """
    Source of table change events.

    Callbacks receive (kind, row) where kind is "INSERT" or "UPDATE" and row
    is the serialized record. on_lost is awaited when the channel drops.
    """

    async def subscribe(
        self,
        filter: RealtimeFilter,
        on_event: EventCallback,
        on_lost: LostCallback | None = None,
    ) -> Subscription:
        ...
