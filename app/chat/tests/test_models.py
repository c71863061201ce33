"""
Tests for chat models.

Covers:
- DirectChatPair uniqueness and canonical ordering constraints
- Participant uniqueness and unread recount ground truth
- Message ordering and string representations
"""

from datetime import timedelta

import pytest
from django.db import IntegrityError, transaction
from django.utils import timezone

from chat.models import Chat, DirectChatPair, Message, Participant
from chat.tests.factories import (
    ChatFactory,
    DirectChatFactory,
    MessageFactory,
    ParticipantFactory,
)


class TestDirectChatPair:
    """Tests for the pair row enforcing one chat per user pair."""

    def test_direct_chat_factory_creates_pair_and_participants(self, direct_chat, alice, bob):
        pair = direct_chat.direct_pair

        assert {pair.user_lower_id, pair.user_higher_id} == {alice.id, bob.id}
        assert pair.user_lower_id < pair.user_higher_id
        assert set(direct_chat.participants.values_list("user_id", flat=True)) == {
            alice.id,
            bob.id,
        }

    def test_second_pair_for_same_users_is_rejected(self, direct_chat, alice, bob):
        """
        The unique constraint is what serialises concurrent creators.

        Why it matters: a second chat for the same pair would split the
        conversation in two.
        """
        lower, higher = sorted([alice, bob], key=lambda user: user.id)
        other_chat = ChatFactory()

        with pytest.raises(IntegrityError), transaction.atomic():
            DirectChatPair.objects.create(chat=other_chat, user_lower=lower, user_higher=higher)

    def test_non_canonical_order_is_rejected(self, db, alice, bob):
        lower, higher = sorted([alice, bob], key=lambda user: user.id)
        chat = ChatFactory()

        with pytest.raises(IntegrityError), transaction.atomic():
            DirectChatPair.objects.create(chat=chat, user_lower=higher, user_higher=lower)

    def test_deleting_chat_cascades_to_pair_and_participants(self, direct_chat):
        chat_id = direct_chat.id

        direct_chat.delete()

        assert not DirectChatPair.objects.filter(chat_id=chat_id).exists()
        assert not Participant.objects.filter(chat_id=chat_id).exists()


class TestParticipant:
    """Tests for Participant membership rows."""

    def test_duplicate_membership_is_rejected(self, direct_chat, alice):
        with pytest.raises(IntegrityError), transaction.atomic():
            ParticipantFactory(chat=direct_chat, user=alice)

    def test_new_participant_starts_with_zero_unread(self, direct_chat):
        assert list(direct_chat.participants.values_list("unread_count", flat=True)) == [0, 0]

    def test_count_unread_messages_counts_claimed_messages_from_others(
        self, direct_chat, alice, bob
    ):
        MessageFactory(chat=direct_chat, sender=alice, unread_applied=True)
        MessageFactory(chat=direct_chat, sender=alice, unread_applied=True)
        # Own messages and unclaimed deliveries are not counted
        MessageFactory(chat=direct_chat, sender=bob, unread_applied=True)
        MessageFactory(chat=direct_chat, sender=alice, unread_applied=False)

        participant = Participant.objects.get(chat=direct_chat, user=bob)

        assert participant.count_unread_messages() == 2

    def test_count_unread_messages_ignores_messages_before_last_read(
        self, direct_chat, alice, bob
    ):
        now = timezone.now()
        MessageFactory(
            chat=direct_chat,
            sender=alice,
            unread_applied=True,
            created_at=now - timedelta(minutes=10),
        )
        MessageFactory(chat=direct_chat, sender=alice, unread_applied=True, created_at=now)
        participant = Participant.objects.get(chat=direct_chat, user=bob)
        participant.last_read_at = now - timedelta(minutes=5)

        assert participant.count_unread_messages() == 1


class TestMessage:
    """Tests for Message ordering and display."""

    def test_default_ordering_is_created_at_then_id(self, direct_chat, alice):
        now = timezone.now()
        later = MessageFactory(chat=direct_chat, sender=alice, created_at=now)
        same_instant = MessageFactory(chat=direct_chat, sender=alice, created_at=now)
        earlier = MessageFactory(
            chat=direct_chat, sender=alice, created_at=now - timedelta(seconds=1)
        )

        ordered = list(Message.objects.filter(chat=direct_chat))

        assert ordered == [earlier, later, same_instant]

    def test_str_truncates_long_content(self, direct_chat, alice):
        message = MessageFactory(chat=direct_chat, sender=alice, content="x" * 80)

        assert str(message) == f"User {alice.id}: {'x' * 50}..."

    def test_chat_str(self, db):
        chat = ChatFactory()

        assert str(chat) == f"Chat({chat.pk})"

    def test_chats_order_newest_first(self, db):
        first = ChatFactory()
        second = ChatFactory()
        Chat.objects.filter(pk=first.pk).update(created_at=timezone.now() - timedelta(days=1))

        assert list(Chat.objects.all()) == [second, first]

    def test_factory_builds_pair_per_chat(self, db):
        DirectChatFactory()
        DirectChatFactory()

        assert DirectChatPair.objects.count() == 2
