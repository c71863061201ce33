"""
Chat system models.

This module defines the data models for direct (1:1) messaging:

Models:
    Chat: Container for messages between exactly two users
    DirectChatPair: Helper enforcing at most one chat per unordered user pair
    Participant: User membership in a chat with an unread counter
    Message: Individual immutable message within a chat

Design Decisions:
    - Pair uniqueness is enforced by the database, not by client locks.
      Two concurrent creators race on the unique constraint; the loser
      re-reads the winner's chat.
    - unread_count is only ever mutated with atomic F() updates or a reset
      to zero, so concurrent deliveries cannot lose increments.
    - Message.unread_applied is a per-message claim: whichever observer
      flips it first applies the unread increments. Redelivery of the same
      message therefore never over-counts.
    - Messages are immutable once written and ordered by (created_at, id).
"""

from __future__ import annotations

from django.conf import settings
from django.db import models
from django.db.models import F, Q

from core.models import BaseModel


class Chat(BaseModel):
    """
    A direct conversation between two users.

    Lifecycle:
        Created together with its DirectChatPair and two Participant rows.
        If participant creation fails the chat is deleted again, which
        cascades to the pair row.

    Fields:
        created_at: Used as the inbox sort key while the chat has no messages

    Relationships:
        direct_pair: The canonical user pair (OneToOne)
        participants: Participant rows (exactly two)
        messages: Messages in this chat
    """

    class Meta:
        db_table = "chat_chat"
        ordering = ["-created_at", "-id"]

    def __str__(self) -> str:
        """Return human-readable representation."""
        return f"Chat({self.pk})"


class DirectChatPair(models.Model):
    """
    Enforces uniqueness of chats between two users.

    Pairs are stored in canonical order (lower user id first) so that
    regardless of who starts the chat there is a single row per pair.

    Fields:
        chat: The chat this pair represents (OneToOne, serves as PK)
        user_lower: User with lower ID
        user_higher: User with higher ID

    Constraints:
        - UniqueConstraint(user_lower, user_higher): One chat per pair
        - CheckConstraint(user_lower_id < user_higher_id): Canonical order
    """

    chat = models.OneToOneField(
        Chat,
        on_delete=models.CASCADE,
        primary_key=True,
        related_name="direct_pair",
        help_text="The chat this pair represents",
    )

    user_lower = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="+",
        help_text="User with lower ID in this pair",
    )

    user_higher = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="+",
        help_text="User with higher ID in this pair",
    )

    class Meta:
        db_table = "chat_direct_chat_pair"
        constraints = [
            models.UniqueConstraint(
                fields=["user_lower", "user_higher"],
                name="unique_direct_chat_pair",
            ),
            models.CheckConstraint(
                condition=Q(user_lower_id__lt=F("user_higher_id")),
                name="chat_pair_lower_less_than_higher",
            ),
        ]

    def __str__(self) -> str:
        """Return human-readable representation."""
        return f"DirectChatPair({self.user_lower_id}, {self.user_higher_id})"


class Participant(BaseModel):
    """
    Membership of a user in a chat.

    Fields:
        chat: Chat this membership belongs to
        user: Participating user
        unread_count: Messages from the other participant not yet read
        last_read_at: Last time the user marked the chat read (basis for
            recounting unread_count when an update was lost)

    Constraints:
        - UniqueConstraint(chat, user): One membership per user per chat
    """

    chat = models.ForeignKey(
        Chat,
        on_delete=models.CASCADE,
        related_name="participants",
        help_text="Chat this membership belongs to",
    )

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="chat_participations",
        help_text="User participating in the chat",
    )

    unread_count = models.PositiveIntegerField(
        default=0,
        help_text="Unread messages from other participants",
    )

    last_read_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="Last time user marked the chat as read (for recounts)",
    )

    class Meta:
        db_table = "chat_participant"
        ordering = ["chat_id", "user_id"]
        indexes = [
            # User's chats (inbox, badge total)
            models.Index(
                fields=["user", "chat"],
                name="chat_part_user_chat_idx",
            ),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["chat", "user"],
                name="unique_chat_participant",
            ),
        ]

    def __str__(self) -> str:
        """Return human-readable representation."""
        return f"Participant: {self.user_id} in {self.chat_id} [unread={self.unread_count}]"

    def count_unread_messages(self) -> int:
        """
        Count delivered messages from others created after last_read_at.

        This is the ground truth unread_count is healed towards. Messages
        whose delivery has not been claimed yet are left out; claiming them
        increments the counter.
        """
        queryset = Message.objects.filter(
            chat_id=self.chat_id, unread_applied=True
        ).exclude(sender_id=self.user_id)
        if self.last_read_at is not None:
            queryset = queryset.filter(created_at__gt=self.last_read_at)
        return queryset.count()


class Message(BaseModel):
    """
    A single message in a chat.

    Fields:
        chat: Chat containing the message
        sender: User who wrote the message
        content: Trimmed text content (1 to 1000 characters)
        unread_applied: Whether unread increments for this message were
            applied (claimed atomically by the first observer)

    Ordering:
        (created_at, id) ascending; id breaks ties between messages written
        in the same instant.
    """

    chat = models.ForeignKey(
        Chat,
        on_delete=models.CASCADE,
        related_name="messages",
        help_text="Chat containing this message",
    )

    sender = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="sent_chat_messages",
        help_text="User who sent this message",
    )

    content = models.TextField(
        help_text="Message text (trimmed, non-empty)",
    )

    unread_applied = models.BooleanField(
        default=False,
        help_text="Whether unread counters were incremented for this message",
    )

    class Meta:
        db_table = "chat_message"
        ordering = ["created_at", "id"]
        indexes = [
            # Messages in a chat (cursor pagination)
            models.Index(
                fields=["chat", "created_at", "id"],
                name="chat_msg_chat_cursor_idx",
            ),
        ]

    def __str__(self) -> str:
        """Return human-readable representation."""
        content_preview = (
            self.content[:50] + "..." if len(self.content) > 50 else self.content
        )
        return f"User {self.sender_id}: {content_preview}"
