"""
Data types for chat operations.

This module defines dataclasses used to move chat data between the store,
the realtime feed and the services. No ORM instance crosses the async
boundary; the store converts rows into these types inside the sync thread.

Types:
    PairKey: Canonical (lower, higher) user pair of a direct chat
    MessageCursor: (created_at, id) position in a chat's message history
    ChatMessage: A confirmed or pending (optimistic) message
    UserSummary: Public view of a user (id, username, avatar)
    ParticipantRow: A user's membership and unread counter in one chat
    ChatRecord: A chat with its participant rows
    InboxEntry: One row of a user's inbox
    RealtimeFilter: Subscription filter for the realtime feed
    SessionState: Conversation session lifecycle states

Usage:
    from chat.types import ChatMessage, PairKey

    key = PairKey.for_users(42, 7)
    key.lower, key.higher  # (7, 42)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

from django.utils.dateparse import parse_datetime

from chat.constants import INBOX_CONFIG, MESSAGE_CONFIG

if TYPE_CHECKING:
    from chat.models import Message


@dataclass(frozen=True)
class PairKey:
    """
    Unordered pair of users, stored in canonical order.

    Attributes:
        lower: Smaller user id
        higher: Larger user id

    Example:
        PairKey.for_users(9, 3) == PairKey.for_users(3, 9)  # True
    """

    lower: int
    higher: int

    @classmethod
    def for_users(cls, first_id: int, second_id: int) -> PairKey:
        """
        Build the canonical key for two distinct users.

        Raises:
            ValueError: If both ids are the same user
        """
        if first_id == second_id:
            raise ValueError("A pair needs two distinct users")
        return cls(lower=min(first_id, second_id), higher=max(first_id, second_id))

    @property
    def user_ids(self) -> tuple[int, int]:
        return (self.lower, self.higher)


@dataclass(frozen=True)
class MessageCursor:
    """Position in a chat's history; messages strictly after it are newer."""

    created_at: datetime
    id: int


@dataclass
class ChatMessage:
    """
    A message as seen by the services.

    Confirmed messages carry the store's integer id. Pending messages are
    optimistic entries created by a send in flight; they carry a temporary
    string id and pending=True until the store confirms them.

    Attributes:
        id: Store id, or "temp-..." while pending
        chat_id: Chat the message belongs to
        sender_id: Author
        content: Trimmed text
        created_at: Store timestamp (client timestamp while pending)
        pending: True for optimistic entries
    """

    id: int | str
    chat_id: int
    sender_id: int
    content: str
    created_at: datetime
    pending: bool = False

    @property
    def sort_key(self) -> tuple[datetime, int | str]:
        return (self.created_at, self.id)

    @property
    def cursor(self) -> MessageCursor:
        return MessageCursor(created_at=self.created_at, id=int(self.id))

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> ChatMessage:
        """
        Build a message from a realtime row.

        Rows come from MessageRowSerializer, so created_at is an ISO-8601
        string; datetimes are accepted as-is.
        """
        created_at = row["created_at"]
        if isinstance(created_at, str):
            created_at = parse_datetime(created_at)
        return cls(
            id=int(row["id"]),
            chat_id=int(row["chat_id"]),
            sender_id=int(row["sender_id"]),
            content=row["content"],
            created_at=created_at,
        )

    @classmethod
    def from_model(cls, message: Message) -> ChatMessage:
        return cls(
            id=message.pk,
            chat_id=message.chat_id,
            sender_id=message.sender_id,
            content=message.content,
            created_at=message.created_at,
        )

    def is_temporary(self) -> bool:
        return isinstance(self.id, str) and self.id.startswith(
            MESSAGE_CONFIG.TEMP_ID_PREFIX
        )


@dataclass(frozen=True)
class UserSummary:
    """Public view of a user shown in the inbox and the new-chat picker."""

    id: int
    username: str
    avatar_url: str = ""


@dataclass
class ParticipantRow:
    """A user's membership in one chat."""

    chat_id: int
    user_id: int
    unread_count: int = 0
    last_read_at: datetime | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> ParticipantRow:
        last_read_at = row.get("last_read_at")
        if isinstance(last_read_at, str):
            last_read_at = parse_datetime(last_read_at)
        return cls(
            chat_id=int(row["chat_id"]),
            user_id=int(row["user_id"]),
            unread_count=int(row.get("unread_count") or 0),
            last_read_at=last_read_at,
        )


@dataclass
class ChatRecord:
    """A chat together with its participant rows."""

    id: int
    created_at: datetime
    participants: list[ParticipantRow] = field(default_factory=list)

    def participant(self, user_id: int) -> ParticipantRow | None:
        for row in self.participants:
            if row.user_id == user_id:
                return row
        return None

    def other_user_id(self, user_id: int) -> int | None:
        """Return the id of the participant who is not user_id."""
        for row in self.participants:
            if row.user_id != user_id:
                return row.user_id
        return None


@dataclass
class InboxEntry:
    """
    One row of a user's inbox.

    Attributes:
        chat_id: The chat
        viewer_id: User whose inbox this entry belongs to
        chat_created_at: Chat creation time, the sort key without messages
        other_user: The other participant (None if the account is gone)
        last_message: Latest message, None for a new chat
        unread_count: The viewer's unread counter for this chat
    """

    chat_id: int
    viewer_id: int
    chat_created_at: datetime
    other_user: UserSummary | None = None
    last_message: ChatMessage | None = None
    unread_count: int = 0

    @property
    def activity_at(self) -> datetime:
        if self.last_message is not None:
            return self.last_message.created_at
        return self.chat_created_at

    @property
    def sort_key(self) -> tuple[datetime, int]:
        return (self.activity_at, self.chat_id)

    @property
    def preview(self) -> str:
        """
        Text shown under the chat name.

        New chats invite the user to start; the viewer's own last message
        is prefixed so it reads differently from an incoming one.
        """
        if self.last_message is None:
            return INBOX_CONFIG.EMPTY_PREVIEW
        if self.last_message.sender_id == self.viewer_id:
            return f"{INBOX_CONFIG.OWN_MESSAGE_PREFIX}{self.last_message.content}"
        return self.last_message.content


@dataclass(frozen=True)
class RealtimeFilter:
    """
    Subscription filter for the realtime feed.

    Attributes:
        table: "messages" or "participants"
        chat_id: Only rows of this chat
        user_id: Only rows of this user (participants table)
    """

    table: str
    chat_id: int | None = None
    user_id: int | None = None

    def matches(
        self,
        table: str,
        row: dict[str, Any],
        user_ids: list[int] | tuple[int, ...] = (),
    ) -> bool:
        """
        Check whether an event belongs to this subscription.

        Message rows have no user_id column; their audience (the chat's
        participants) is passed separately as user_ids.
        """
        if table != self.table:
            return False
        if self.chat_id is not None and int(row.get("chat_id", -1)) != self.chat_id:
            return False
        if self.user_id is not None:
            audience = set(user_ids)
            if "user_id" in row:
                audience.add(int(row["user_id"]))
            if self.user_id not in audience:
                return False
        return True


class SessionState(str, Enum):
    """Conversation session states."""

    LOADING = "loading"
    READY = "ready"
    SENDING = "sending"
    RECEIVING = "receiving"
    CLOSED = "closed"
