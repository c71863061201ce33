"""
Tests for chat serializers.

Covers:
- Realtime message rows surviving a round trip through ChatMessage
- Session messages with temporary ids
- Inbox entries with preview and nested rows
"""

from django.utils import timezone

from chat.serializers import (
    InboxEntrySerializer,
    MessageRowSerializer,
    ParticipantRowSerializer,
    SessionMessageSerializer,
)
from chat.types import ChatMessage, InboxEntry, ParticipantRow, UserSummary


class TestMessageRowSerializer:
    def test_row_parses_back_to_the_same_message(self):
        """
        Microseconds are kept so (created_at, id) ordering is exact.

        Why it matters: sessions order realtime rows against loaded history.
        """
        message = ChatMessage(7, 3, 12, "hello", timezone.now())

        row = dict(MessageRowSerializer(message).data)
        parsed = ChatMessage.from_row(row)

        assert parsed.id == 7
        assert parsed.created_at == message.created_at
        assert parsed.content == "hello"


class TestSessionMessageSerializer:
    def test_pending_message_keeps_temporary_id(self):
        message = ChatMessage("temp-1", 3, 12, "hi", timezone.now(), pending=True)

        data = SessionMessageSerializer(message).data

        assert data["id"] == "temp-1"
        assert data["pending"] is True
        assert data["date_label"] == "Today"


class TestParticipantRowSerializer:
    def test_serializes_unread_counter(self):
        data = ParticipantRowSerializer(ParticipantRow(3, 12, unread_count=4)).data

        assert data == {"chat_id": 3, "user_id": 12, "unread_count": 4, "last_read_at": None}


class TestInboxEntrySerializer:
    def test_serializes_preview_and_nested_rows(self):
        entry = InboxEntry(
            chat_id=3,
            viewer_id=12,
            chat_created_at=timezone.now(),
            other_user=UserSummary(20, "bob"),
            last_message=ChatMessage(7, 3, 12, "on my way", timezone.now()),
            unread_count=0,
        )

        data = InboxEntrySerializer(entry).data

        assert data["preview"] == "You: on my way"
        assert data["other_user"]["username"] == "bob"
        assert data["last_message"]["id"] == 7
        assert data["time_label"]

    def test_new_chat_has_no_last_message(self):
        entry = InboxEntry(chat_id=3, viewer_id=12, chat_created_at=timezone.now())

        data = InboxEntrySerializer(entry).data

        assert data["last_message"] is None
        assert data["other_user"] is None
        assert data["preview"] == "Start a conversation"
