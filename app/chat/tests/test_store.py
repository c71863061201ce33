"""
Tests for DjangoMessageStore.

Covers:
- Chat creation, the pair constraint and cascading deletes
- Atomic unread counters, the delivery claim and recounts
- Message insert (membership check, publishing) and cursor paging
- Latest-message lookup and user listings
"""

from datetime import timedelta

import pytest
from asgiref.sync import async_to_sync
from django.utils import timezone

from authentication.tests.factories import UserFactory
from chat.exceptions import DuplicateChat, NotParticipant
from chat.models import Chat, DirectChatPair, Message, Participant
from chat.store import DjangoMessageStore
from chat.tests.factories import DirectChatFactory, MessageFactory
from chat.types import MessageCursor, PairKey

pytestmark = pytest.mark.django_db(transaction=True)


@pytest.fixture
def mock_publish(mocker):
    return mocker.patch("chat.realtime.publish")


# =============================================================================
# Chats
# =============================================================================


class TestChats:
    def test_create_and_get_chat(self, django_store, alice, bob):
        pair_key = PairKey.for_users(bob.id, alice.id)

        chat_id = async_to_sync(django_store.create_chat)(pair_key)

        assert async_to_sync(django_store.get_chat)(pair_key) == chat_id
        assert DirectChatPair.objects.get(chat_id=chat_id).user_lower_id == min(alice.id, bob.id)

    def test_get_missing_chat_returns_none(self, django_store, alice, bob):
        assert async_to_sync(django_store.get_chat)(PairKey.for_users(alice.id, bob.id)) is None

    def test_second_create_for_pair_raises_duplicate(self, django_store, alice, bob):
        pair_key = PairKey.for_users(alice.id, bob.id)
        async_to_sync(django_store.create_chat)(pair_key)

        with pytest.raises(DuplicateChat) as exc_info:
            async_to_sync(django_store.create_chat)(pair_key)

        assert exc_info.value.pair_key == pair_key
        assert Chat.objects.count() == 1

    def test_delete_chat_cascades(self, django_store, direct_chat, alice):
        MessageFactory(chat=direct_chat, sender=alice)

        async_to_sync(django_store.delete_chat)(direct_chat.id)

        assert not Chat.objects.exists()
        assert not DirectChatPair.objects.exists()
        assert not Participant.objects.exists()
        assert not Message.objects.exists()

    def test_list_chats_for_user(self, django_store, direct_chat, alice, bob, carol):
        DirectChatFactory(user1=bob, user2=carol)

        records = async_to_sync(django_store.list_chats_for_user)(alice.id)

        assert [record.id for record in records] == [direct_chat.id]
        assert records[0].other_user_id(alice.id) == bob.id
        assert {row.user_id for row in records[0].participants} == {alice.id, bob.id}


# =============================================================================
# Participants & Unread Counters
# =============================================================================


class TestParticipants:
    def test_create_chat_adds_and_publishes_both_participants(
        self, django_store, mock_publish, alice, bob
    ):
        chat_id = async_to_sync(django_store.create_chat)(PairKey.for_users(alice.id, bob.id))

        rows = async_to_sync(django_store.list_participants)(chat_id)
        assert sorted((row.user_id, row.unread_count) for row in rows) == [
            (alice.id, 0),
            (bob.id, 0),
        ]
        assert mock_publish.await_count == 2
        table, kind, row = mock_publish.await_args.args
        assert (table, kind) == ("participants", "INSERT")
        assert row["chat_id"] == chat_id

    def test_participant_failure_leaves_no_pair_behind(self, django_store, alice, bob, mocker):
        """
        The chat, its pair row and the participants commit together.

        Why it matters: a visible pair without participants hands other
        callers a chat they cannot open.
        """
        mocker.patch.object(
            Participant.objects, "bulk_create", side_effect=RuntimeError("insert rejected")
        )
        pair_key = PairKey.for_users(alice.id, bob.id)

        with pytest.raises(RuntimeError):
            async_to_sync(django_store.create_chat)(pair_key)

        assert async_to_sync(django_store.get_chat)(pair_key) is None
        assert not Chat.objects.exists()

    def test_add_participants_skips_existing_members(
        self, django_store, mock_publish, direct_chat, alice, bob, carol
    ):
        Participant.objects.filter(chat=direct_chat, user=bob).update(unread_count=3)

        async_to_sync(django_store.add_participants)(direct_chat.id, [alice.id, bob.id, carol.id])

        assert Participant.objects.filter(chat=direct_chat).count() == 3
        assert Participant.objects.get(chat=direct_chat, user=bob).unread_count == 3
        assert mock_publish.await_count == 1
        assert mock_publish.await_args.args[2]["user_id"] == carol.id

    def test_silent_store_does_not_publish(self, mock_publish, direct_chat, alice):
        store = DjangoMessageStore(publish_events=False)
        message = MessageFactory(chat=direct_chat, sender=alice)

        async_to_sync(store.apply_unread_delivery)(message.id)
        async_to_sync(store.insert_message)(direct_chat.id, alice.id, "hi")

        mock_publish.assert_not_awaited()


class TestUnreadCounters:
    def test_delivery_increments_everyone_but_the_sender(
        self, django_store, mock_publish, direct_chat, alice, bob
    ):
        message = MessageFactory(chat=direct_chat, sender=alice)

        assert async_to_sync(django_store.apply_unread_delivery)(message.id) == [bob.id]

        assert Participant.objects.get(chat=direct_chat, user=bob).unread_count == 1
        assert Participant.objects.get(chat=direct_chat, user=alice).unread_count == 0
        table, kind, row = mock_publish.await_args.args
        assert (table, kind, row["user_id"], row["unread_count"]) == (
            "participants",
            "UPDATE",
            bob.id,
            1,
        )

    def test_delivery_applies_once(self, django_store, direct_chat, alice, bob):
        message = MessageFactory(chat=direct_chat, sender=alice)

        first = async_to_sync(django_store.apply_unread_delivery)(message.id)
        second = async_to_sync(django_store.apply_unread_delivery)(message.id)

        assert (first, second) == ([bob.id], None)
        message.refresh_from_db()
        assert message.unread_applied is True
        assert Participant.objects.get(chat=direct_chat, user=bob).unread_count == 1

    def test_delivery_of_missing_message_returns_none(self, django_store):
        assert async_to_sync(django_store.apply_unread_delivery)(987654) is None

    def test_delivery_skips_readers_who_read_after_the_message(
        self, django_store, direct_chat, alice, bob
    ):
        Participant.objects.filter(chat=direct_chat, user=bob).update(
            last_read_at=timezone.now()
        )
        older = MessageFactory(
            chat=direct_chat, sender=alice, created_at=timezone.now() - timedelta(minutes=5)
        )
        newer = MessageFactory(
            chat=direct_chat, sender=alice, created_at=timezone.now() + timedelta(minutes=5)
        )

        skipped = async_to_sync(django_store.apply_unread_delivery)(older.id)
        counted = async_to_sync(django_store.apply_unread_delivery)(newer.id)

        assert (skipped, counted) == ([], [bob.id])
        assert Participant.objects.get(chat=direct_chat, user=bob).unread_count == 1

    def test_failed_increment_rolls_back_the_claim(
        self, django_store, direct_chat, alice, bob, mocker
    ):
        """
        A recount between a claim and its increment must not see the claim.

        Why it matters: the recount would count the message and the late
        increment would count it again.
        """
        message = MessageFactory(chat=direct_chat, sender=alice)
        mocker.patch("chat.store.F", side_effect=RuntimeError("write failed"))

        with pytest.raises(RuntimeError):
            async_to_sync(django_store.apply_unread_delivery)(message.id)

        message.refresh_from_db()
        assert message.unread_applied is False
        assert async_to_sync(django_store.recount_unread)(direct_chat.id, bob.id) == 0

    def test_recount_between_deliveries_never_double_counts(
        self, django_store, direct_chat, alice, bob
    ):
        first = MessageFactory(chat=direct_chat, sender=alice)
        second = MessageFactory(chat=direct_chat, sender=alice)

        async_to_sync(django_store.apply_unread_delivery)(first.id)
        assert async_to_sync(django_store.recount_unread)(direct_chat.id, bob.id) == 1
        async_to_sync(django_store.apply_unread_delivery)(second.id)

        assert Participant.objects.get(chat=direct_chat, user=bob).unread_count == 2
        assert async_to_sync(django_store.recount_unread)(direct_chat.id, bob.id) == 2

    def test_reset_sets_last_read_at(self, django_store, direct_chat, bob):
        Participant.objects.filter(chat=direct_chat, user=bob).update(unread_count=4)

        assert async_to_sync(django_store.reset_unread)(direct_chat.id, bob.id) is True

        participant = Participant.objects.get(chat=direct_chat, user=bob)
        assert participant.unread_count == 0
        assert participant.last_read_at is not None

    def test_reset_for_non_participant_returns_false(self, django_store, direct_chat, carol):
        assert async_to_sync(django_store.reset_unread)(direct_chat.id, carol.id) is False

    def test_recount_counts_claimed_messages_after_last_read(
        self, django_store, direct_chat, alice, bob
    ):
        read_at = timezone.now() - timedelta(minutes=10)
        MessageFactory(
            chat=direct_chat, sender=alice, unread_applied=True,
            created_at=read_at - timedelta(minutes=1),
        )
        MessageFactory(chat=direct_chat, sender=alice, unread_applied=True)
        MessageFactory(chat=direct_chat, sender=alice, unread_applied=False)
        MessageFactory(chat=direct_chat, sender=bob, unread_applied=True)
        Participant.objects.filter(chat=direct_chat, user=bob).update(
            unread_count=7, last_read_at=read_at
        )

        assert async_to_sync(django_store.recount_unread)(direct_chat.id, bob.id) == 1
        assert Participant.objects.get(chat=direct_chat, user=bob).unread_count == 1

    def test_total_unread_sums_all_chats(self, django_store, direct_chat, alice, bob, carol):
        other = DirectChatFactory(user1=bob, user2=carol)
        Participant.objects.filter(chat=direct_chat, user=bob).update(unread_count=2)
        Participant.objects.filter(chat=other, user=bob).update(unread_count=3)

        assert async_to_sync(django_store.total_unread)(bob.id) == 5
        assert async_to_sync(django_store.total_unread)(alice.id) == 0

    def test_total_unread_without_chats_is_zero(self, django_store, carol):
        assert async_to_sync(django_store.total_unread)(carol.id) == 0


# =============================================================================
# Messages
# =============================================================================


class TestMessages:
    def test_insert_publishes_to_participants(
        self, django_store, mock_publish, direct_chat, alice, bob
    ):
        message = async_to_sync(django_store.insert_message)(direct_chat.id, alice.id, "hello")

        assert Message.objects.get(pk=message.id).content == "hello"
        mock_publish.assert_awaited_once()
        table, kind, row = mock_publish.await_args.args
        assert (table, kind) == ("messages", "INSERT")
        assert row["id"] == message.id
        assert sorted(mock_publish.await_args.kwargs["user_ids"]) == sorted([alice.id, bob.id])

    def test_insert_by_non_participant_is_rejected(
        self, django_store, mock_publish, direct_chat, carol
    ):
        with pytest.raises(NotParticipant):
            async_to_sync(django_store.insert_message)(direct_chat.id, carol.id, "hi")

        assert not Message.objects.exists()
        mock_publish.assert_not_awaited()

    def test_list_messages_orders_by_time_then_id(self, django_store, direct_chat, alice, bob):
        at = timezone.now() - timedelta(minutes=1)
        second = MessageFactory(chat=direct_chat, sender=bob, created_at=at)
        first = MessageFactory(
            chat=direct_chat, sender=alice, created_at=at - timedelta(seconds=30)
        )
        third = MessageFactory(chat=direct_chat, sender=alice, created_at=at)

        messages = async_to_sync(django_store.list_messages)(direct_chat.id)

        assert [m.id for m in messages] == [first.id, second.id, third.id]

    def test_list_messages_after_cursor_with_limit(self, django_store, direct_chat, alice):
        at = timezone.now() - timedelta(minutes=1)
        created = [MessageFactory(chat=direct_chat, sender=alice, created_at=at) for _ in range(4)]
        cursor = MessageCursor(created_at=at, id=created[0].id)

        page = async_to_sync(django_store.list_messages)(direct_chat.id, after=cursor, limit=2)

        assert [m.id for m in page] == [created[1].id, created[2].id]

    def test_latest_messages_per_chat(self, django_store, direct_chat, alice, bob, carol):
        quiet = DirectChatFactory(user1=alice, user2=carol)
        MessageFactory(
            chat=direct_chat, sender=alice, created_at=timezone.now() - timedelta(hours=1)
        )
        newest = MessageFactory(chat=direct_chat, sender=bob, content="latest")

        latest = async_to_sync(django_store.latest_messages)([direct_chat.id, quiet.id])

        assert list(latest) == [direct_chat.id]
        assert latest[direct_chat.id].id == newest.id
        assert latest[direct_chat.id].content == "latest"

    def test_latest_messages_for_no_chats(self, django_store):
        assert async_to_sync(django_store.latest_messages)([]) == {}


# =============================================================================
# Users
# =============================================================================


class TestUsers:
    def test_get_users_by_id(self, django_store, alice, bob):
        UserFactory(username="dave", avatar_url="https://cdn.example.com/d.png")

        users = async_to_sync(django_store.get_users)([alice.id, bob.id, 999_999])

        assert set(users) == {alice.id, bob.id}
        assert users[bob.id].username == "bob"

    def test_list_users_excludes_caller_and_inactive(self, django_store, alice, bob, carol):
        UserFactory(username="zed", is_active=False)

        users = async_to_sync(django_store.list_users)(exclude_id=bob.id)

        assert [user.username for user in users] == ["alice", "carol"]
