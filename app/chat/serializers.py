"""
Serializers for chat realtime payloads.

This module provides serializers for the rows carried by the realtime feed
and the frames pushed to inbox websocket clients:

Serializers:
    MessageRowSerializer: Message row (ORM Message or ChatMessage)
    SessionMessageSerializer: Confirmed or pending message in a session
    ParticipantRowSerializer: Participant row with unread counter
    UserSummarySerializer: Public user fields
    InboxEntrySerializer: One inbox line with preview and time label

Design Decisions:
    - Plain Serializers read attributes, so ORM instances and the
      dataclasses in chat.types serialize identically
    - Timestamps are ISO-8601 strings with microseconds, which keeps
      (created_at, id) ordering exact after a round trip through Redis
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from rest_framework import serializers

from chat.helpers import format_date_label, format_message_time

if TYPE_CHECKING:
    from chat.types import InboxEntry


# =============================================================================
# Realtime Row Serializers
# =============================================================================


class MessageRowSerializer(serializers.Serializer):
    """
    Message row as published on the "messages" table feed.

    Example output:
        {"id": 7, "chat_id": 3, "sender_id": 12, "content": "hello",
         "created_at": "2024-05-01T10:00:00.123456Z"}
    """

    id = serializers.IntegerField(read_only=True)
    chat_id = serializers.IntegerField(read_only=True)
    sender_id = serializers.IntegerField(read_only=True)
    content = serializers.CharField(read_only=True)
    created_at = serializers.DateTimeField(read_only=True)


class SessionMessageSerializer(MessageRowSerializer):
    """
    Message as shown in an open conversation.

    Pending entries carry a temporary "temp-..." id, so ids are strings here.
    """

    id = serializers.CharField(read_only=True)
    pending = serializers.BooleanField(read_only=True)
    date_label = serializers.SerializerMethodField()

    def get_date_label(self, obj) -> str:
        return format_date_label(obj.created_at)


class ParticipantRowSerializer(serializers.Serializer):
    """Participant row as published on the "participants" table feed."""

    chat_id = serializers.IntegerField(read_only=True)
    user_id = serializers.IntegerField(read_only=True)
    unread_count = serializers.IntegerField(read_only=True)
    last_read_at = serializers.DateTimeField(read_only=True, allow_null=True)


class UserSummarySerializer(serializers.Serializer):
    """Public user fields (new-chat picker, inbox header)."""

    id = serializers.IntegerField(read_only=True)
    username = serializers.CharField(read_only=True)
    avatar_url = serializers.CharField(read_only=True)


# =============================================================================
# Inbox Serializers
# =============================================================================


class InboxEntrySerializer(serializers.Serializer):
    """
    One inbox line for websocket clients.

    Computed fields:
        preview: Last message text, "You: " prefixed for own messages,
            "Start a conversation" for new chats
        time_label: Relative time of the last activity
    """

    chat_id = serializers.IntegerField(read_only=True)
    other_user = UserSummarySerializer(read_only=True, allow_null=True)
    last_message = MessageRowSerializer(read_only=True, allow_null=True)
    unread_count = serializers.IntegerField(read_only=True)
    preview = serializers.CharField(read_only=True)
    activity_at = serializers.DateTimeField(read_only=True)
    time_label = serializers.SerializerMethodField()

    def get_time_label(self, obj: InboxEntry) -> str:
        return format_message_time(obj.activity_at)
