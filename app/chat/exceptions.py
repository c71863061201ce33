"""
Chat-specific exceptions.

This module provides the exception hierarchy for chat operations,
inheriting from the core exception base class so every error carries an
error code and serializes the same way.

Exception Hierarchy:
    ChatError (base)
    ├── ChatCreationFailed - Participants could not be added; chat rolled back
    ├── DuplicateChat - Pair constraint hit by a concurrent creator
    ├── SendFailed - Message not stored; optimistic entry removed
    ├── EmptyMessage - Blank content rejected before any store call
    ├── MessageTooLong - Oversized content rejected before any store call
    ├── SubscriptionLost - Realtime subscription dropped
    ├── UnreadUpdateFailed - Counter update lost; healed by recount
    ├── SessionClosed - Operation on a closed conversation session
    └── NotAuthenticated - No current user

Error policy:
    - Recovered locally: SubscriptionLost (resubscribe and refetch)
    - Surfaced to the caller: ChatCreationFailed, SendFailed, validation errors
    - Logged only: UnreadUpdateFailed (a recount job repairs the counter)

Usage:
    from chat.exceptions import SendFailed

    try:
        await session.send(text)
    except SendFailed as e:
        show_retry_button(e.details["content"])
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from core.exceptions import (
    BaseApplicationError,
    ConflictError,
    ExternalServiceError,
    PermissionDeniedError,
    ValidationError,
)

if TYPE_CHECKING:
    from typing import Any


class ChatError(BaseApplicationError):
    """Base exception for all chat operations."""

    default_error_code: str = "CHAT_ERROR"


class ChatCreationFailed(ChatError, ExternalServiceError):
    """
    Raised when a new chat could not be completed.

    The half-created chat has already been deleted when this is raised, so
    the caller may retry find_or_create_direct_chat safely.
    """

    default_error_code: str = "CHAT_CREATION_FAILED"
    retryable: bool = True


class DuplicateChat(ChatError, ConflictError):
    """
    Raised by the store when a chat already exists for the pair.

    Attributes:
        pair_key: The pair that lost the creation race
    """

    default_error_code: str = "DUPLICATE_CHAT"

    def __init__(
        self,
        pair_key: Any,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.pair_key = pair_key
        super().__init__(
            f"A chat already exists for users {pair_key.lower} and {pair_key.higher}",
            error_code=error_code,
            details=details
            or {"user_lower": pair_key.lower, "user_higher": pair_key.higher},
        )


class SendFailed(ChatError, ExternalServiceError):
    """
    Raised when a message could not be stored (error or timeout).

    The optimistic entry is already removed. Content is never queued for
    automatic retry; details["content"] lets the UI offer a manual resend.
    """

    default_error_code: str = "SEND_FAILED"
    retryable: bool = True


class EmptyMessage(ChatError, ValidationError):
    """Raised when content is empty or whitespace-only."""

    default_error_code: str = "EMPTY_CONTENT"


class MessageTooLong(ChatError, ValidationError):
    """Raised when trimmed content exceeds the maximum length."""

    default_error_code: str = "CONTENT_TOO_LONG"


class SubscriptionLost(ChatError):
    """
    Raised (or passed to on_lost callbacks) when a realtime channel drops.

    Holders recover by subscribing again and refetching what they missed.
    """

    default_error_code: str = "SUBSCRIPTION_LOST"


class UnreadUpdateFailed(ChatError):
    """
    Records a lost unread counter update.

    Never surfaced to users: the tracker logs it, keeps it in its failure
    list and schedules a recount.

    Attributes:
        chat_id: Chat whose counter was not updated
        user_id: Participant whose counter was not updated
    """

    default_error_code: str = "UNREAD_UPDATE_FAILED"

    def __init__(
        self,
        chat_id: int,
        user_id: int,
        message: str = "",
        error_code: str | None = None,
    ):
        self.chat_id = chat_id
        self.user_id = user_id
        super().__init__(
            message or f"Unread update failed for user {user_id} in chat {chat_id}",
            error_code=error_code,
            details={"chat_id": chat_id, "user_id": user_id},
        )


class SessionClosed(ChatError):
    """Raised when sending through a session that has been closed."""

    default_error_code: str = "SESSION_CLOSED"


class NotAuthenticated(ChatError, PermissionDeniedError):
    """Raised when an operation needs a current user and there is none."""

    default_error_code: str = "NOT_AUTHENTICATED"


class NotParticipant(ChatError, PermissionDeniedError):
    """Raised when a user opens a chat they are not a member of."""

    default_error_code: str = "NOT_PARTICIPANT"
