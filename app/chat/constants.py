"""
Constants and configuration for chat module features.

This module centralizes configuration values for:
- Message operations (content limits, send timeout, echo matching)
- Direct chat lookup (waiting on a concurrently created chat)
- Realtime transport (channel-layer group naming, event kinds)
- Inbox rendering (preview text, refresh debounce)

Import example:
    from chat.constants import MESSAGE_CONFIG, INBOX_CONFIG
"""

from typing import Final


# =============================================================================
# Message Configuration
# =============================================================================


class MESSAGE_CONFIG:
    """Configuration for message operations."""

    # Content limits (after trimming whitespace)
    MAX_CONTENT_LENGTH: Final[int] = 1000  # Characters
    MIN_CONTENT_LENGTH: Final[int] = 1

    # Send settings
    SEND_TIMEOUT_SECONDS: Final[float] = 10.0
    TEMP_ID_PREFIX: Final[str] = "temp-"

    # Own-message echo is matched to a pending send when the store timestamp
    # is within this window of the optimistic one
    ECHO_MATCH_TOLERANCE_SECONDS: Final[float] = 30.0

    # History loading
    PAGE_SIZE: Final[int] = 100


# =============================================================================
# Directory Configuration
# =============================================================================


class DIRECTORY_CONFIG:
    """Configuration for finding or creating direct chats."""

    # How long a caller waits for another caller's new chat to get its
    # participants before reporting ChatCreationFailed
    PARTICIPANT_WAIT_SECONDS: Final[float] = 5.0
    PARTICIPANT_POLL_SECONDS: Final[float] = 0.02


# =============================================================================
# Unread Configuration
# =============================================================================


class UNREAD_CONFIG:
    """Configuration for unread counter maintenance."""

    # Resets are idempotent and may be retried; increments are never retried
    RESET_ATTEMPTS: Final[int] = 2

    # Periodic drift repair batch size
    RECOUNT_BATCH_SIZE: Final[int] = 500


# =============================================================================
# Realtime Configuration
# =============================================================================


class REALTIME_CONFIG:
    """Configuration for the channel-layer backed realtime feed."""

    GROUP_PREFIX: Final[str] = "realtime"
    EVENT_TYPE: Final[str] = "realtime.event"  # Dispatched as realtime_event

    # Event kinds
    INSERT: Final[str] = "INSERT"
    UPDATE: Final[str] = "UPDATE"

    # Tables exposed on the feed
    MESSAGES: Final[str] = "messages"
    PARTICIPANTS: Final[str] = "participants"


# =============================================================================
# Inbox Configuration
# =============================================================================


class INBOX_CONFIG:
    """Configuration for the inbox (chat list) aggregator."""

    REFRESH_DEBOUNCE_SECONDS: Final[float] = 0.25
    EMPTY_PREVIEW: Final[str] = "Start a conversation"
    OWN_MESSAGE_PREFIX: Final[str] = "You: "
