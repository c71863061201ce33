"""
Tests for chat Celery tasks.

This module tests the background tasks for:
- apply_message_unread: Counts a stored message for offline recipients
- recalculate_unread_count: Recounts one participant after a lost update
- recalculate_all_unread_counts: Periodic drift repair

Tasks are called in-process (task(...) runs the body synchronously); the
autouse mock_chat_tasks fixture only replaces .delay.
"""

from datetime import timedelta

import pytest
from django.utils import timezone

from chat.models import Participant
from chat.store import DjangoMessageStore
from chat.tasks import (
    apply_message_unread,
    recalculate_all_unread_counts,
    recalculate_unread_count,
)
from chat.tests.factories import MessageFactory

pytestmark = pytest.mark.django_db(transaction=True)


class TestTaskConfiguration:
    def test_tasks_are_registered(self):
        for task in (apply_message_unread, recalculate_unread_count, recalculate_all_unread_counts):
            assert hasattr(task, "delay")
            assert task.name.startswith("chat.tasks.")

    def test_recount_is_scheduled_by_beat(self, settings):
        schedule = settings.CELERY_BEAT_SCHEDULE["recalculate-all-unread-counts"]

        assert schedule["task"] == "chat.tasks.recalculate_all_unread_counts"


class TestApplyMessageUnread:
    def test_counts_message_for_recipient(self, direct_chat, alice, bob):
        message = MessageFactory(chat=direct_chat, sender=alice)

        assert apply_message_unread(message.id) == 1
        assert Participant.objects.get(chat=direct_chat, user=bob).unread_count == 1
        assert Participant.objects.get(chat=direct_chat, user=alice).unread_count == 0

    def test_already_claimed_message_is_a_no_op(self, direct_chat, alice, bob):
        message = MessageFactory(chat=direct_chat, sender=alice)
        apply_message_unread(message.id)

        assert apply_message_unread(message.id) == 0
        assert Participant.objects.get(chat=direct_chat, user=bob).unread_count == 1

    def test_missing_message_is_skipped(self):
        assert apply_message_unread(999_999) == 0


class TestRecalculateUnreadCount:
    def test_recounts_participant(self, direct_chat, alice, bob):
        MessageFactory(chat=direct_chat, sender=alice, unread_applied=True)
        Participant.objects.filter(chat=direct_chat, user=bob).update(unread_count=0)

        assert recalculate_unread_count(direct_chat.id, bob.id) == 1
        assert Participant.objects.get(chat=direct_chat, user=bob).unread_count == 1

    def test_unknown_participant_recounts_to_zero(self, direct_chat, carol):
        assert recalculate_unread_count(direct_chat.id, carol.id) == 0


class TestRecalculateAllUnreadCounts:
    def test_repairs_only_drifted_counters(self, direct_chat, alice, bob):
        MessageFactory(chat=direct_chat, sender=alice, unread_applied=True)
        MessageFactory(
            chat=direct_chat,
            sender=bob,
            unread_applied=True,
            created_at=timezone.now() - timedelta(minutes=1),
        )
        Participant.objects.filter(chat=direct_chat, user=bob).update(unread_count=5)
        Participant.objects.filter(chat=direct_chat, user=alice).update(unread_count=1)

        result = recalculate_all_unread_counts()

        assert result == {"checked": 2, "repaired": 1}
        assert Participant.objects.get(chat=direct_chat, user=bob).unread_count == 1
        assert Participant.objects.get(chat=direct_chat, user=alice).unread_count == 1

    def test_nothing_to_repair(self, direct_chat):
        assert recalculate_all_unread_counts() == {"checked": 2, "repaired": 0}

    def test_failed_repair_is_logged_and_skipped(self, direct_chat, bob, mocker):
        Participant.objects.filter(chat=direct_chat, user=bob).update(unread_count=3)
        mocker.patch.object(
            DjangoMessageStore, "recount_unread", side_effect=RuntimeError("db gone")
        )
        logger = mocker.patch("chat.tasks.logger")

        result = recalculate_all_unread_counts()

        assert result == {"checked": 2, "repaired": 0}
        logger.error.assert_called_once()
        assert Participant.objects.get(chat=direct_chat, user=bob).unread_count == 3
