"""
Django ORM implementation of the MessageStore protocol.

Each public coroutine runs its ORM work through database_sync_to_async
(thread-sensitive, so all queries share one connection per thread) and
converts rows into chat.types dataclasses before returning to the event
loop. Writes that other clients must see are published to the realtime
feed after the database call returns.

Concurrency guarantees:
    - Pair uniqueness comes from the DirectChatPair unique constraint;
      create_chat turns the violation into DuplicateChat
    - create_chat commits the chat, its pair row and both participants
      together, so a visible pair always has its participants
    - Unread counters change only through F() expressions or resets
    - apply_unread_delivery claims a message and increments its
      recipients in one transaction; the claim succeeds for exactly one
      caller per message
    - recount_unread holds the participant row lock while counting, so a
      delivery is seen either whole or not at all

Usage:
    store = DjangoMessageStore()
    chat_id = await store.create_chat(PairKey.for_users(a, b))
    await store.add_participants(chat_id, [a, b])  # no-op, already added
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from channels.db import database_sync_to_async
from channels.layers import DEFAULT_CHANNEL_LAYER
from django.contrib.auth import get_user_model
from django.db import IntegrityError, transaction
from django.db.models import F, OuterRef, Q, Subquery, Sum
from django.db.models.functions import Coalesce
from django.utils import timezone

from chat import realtime
from chat.constants import REALTIME_CONFIG
from chat.exceptions import DuplicateChat, NotParticipant
from chat.models import Chat, DirectChatPair, Message, Participant
from chat.serializers import MessageRowSerializer, ParticipantRowSerializer
from chat.types import ChatMessage, ChatRecord, ParticipantRow, UserSummary

if TYPE_CHECKING:
    from collections.abc import Iterable

    from chat.types import MessageCursor, PairKey

logger = logging.getLogger(__name__)


def _participant_row(participant: Participant) -> ParticipantRow:
    return ParticipantRow(
        chat_id=participant.chat_id,
        user_id=participant.user_id,
        unread_count=participant.unread_count,
        last_read_at=participant.last_read_at,
    )


class DjangoMessageStore:
    """
    MessageStore backed by the chat models.

    Args:
        publish_events: Publish realtime events after writes
        channel_layer_alias: Channel layer used for publishing
    """

    def __init__(
        self,
        publish_events: bool = True,
        channel_layer_alias: str = DEFAULT_CHANNEL_LAYER,
    ):
        self.publish_events = publish_events
        self.channel_layer_alias = channel_layer_alias

    # =========================================================================
    # Chats
    # =========================================================================

    async def get_chat(self, pair_key: PairKey) -> int | None:
        return await self._get_chat(pair_key)

    @database_sync_to_async
    def _get_chat(self, pair_key: PairKey) -> int | None:
        return (
            DirectChatPair.objects.filter(
                user_lower_id=pair_key.lower,
                user_higher_id=pair_key.higher,
            )
            .values_list("chat_id", flat=True)
            .first()
        )

    async def create_chat(self, pair_key: PairKey) -> int:
        """
        Create a chat with its pair row and both participants.

        Raises:
            DuplicateChat: If another chat already holds the pair
        """
        chat_id, rows = await self._create_chat(pair_key)
        for row in rows:
            await self._publish_participant(REALTIME_CONFIG.INSERT, row)
        return chat_id

    @database_sync_to_async
    def _create_chat(self, pair_key: PairKey) -> tuple[int, list[ParticipantRow]]:
        try:
            with transaction.atomic():
                chat = Chat.objects.create()
                DirectChatPair.objects.create(
                    chat=chat,
                    user_lower_id=pair_key.lower,
                    user_higher_id=pair_key.higher,
                )
                participants = Participant.objects.bulk_create(
                    [
                        Participant(chat=chat, user_id=user_id, unread_count=0)
                        for user_id in pair_key.user_ids
                    ]
                )
        except IntegrityError as exc:
            pair_exists = DirectChatPair.objects.filter(
                user_lower_id=pair_key.lower,
                user_higher_id=pair_key.higher,
            ).exists()
            if pair_exists:
                raise DuplicateChat(pair_key) from exc
            raise
        return chat.pk, [_participant_row(p) for p in participants]

    async def delete_chat(self, chat_id: int) -> None:
        await self._delete_chat(chat_id)

    @database_sync_to_async
    def _delete_chat(self, chat_id: int) -> None:
        # Cascades to the pair row, participants and messages
        Chat.objects.filter(pk=chat_id).delete()

    async def list_chats_for_user(self, user_id: int) -> list[ChatRecord]:
        return await self._list_chats_for_user(user_id)

    @database_sync_to_async
    def _list_chats_for_user(self, user_id: int) -> list[ChatRecord]:
        chats = (
            Chat.objects.filter(participants__user_id=user_id)
            .prefetch_related("participants")
            .distinct()
        )
        return [
            ChatRecord(
                id=chat.pk,
                created_at=chat.created_at,
                participants=[_participant_row(p) for p in chat.participants.all()],
            )
            for chat in chats
        ]

    # =========================================================================
    # Participants & Unread Counters
    # =========================================================================

    async def add_participants(self, chat_id: int, user_ids: Iterable[int]) -> None:
        """Add participants with unread_count=0; existing members are left as they are."""
        rows = await self._add_participants(chat_id, list(user_ids))
        for row in rows:
            await self._publish_participant(REALTIME_CONFIG.INSERT, row)

    @database_sync_to_async
    def _add_participants(self, chat_id: int, user_ids: list[int]) -> list[ParticipantRow]:
        added = []
        with transaction.atomic():
            for user_id in user_ids:
                participant, created = Participant.objects.get_or_create(
                    chat_id=chat_id, user_id=user_id, defaults={"unread_count": 0}
                )
                if created:
                    added.append(participant)
        return [_participant_row(p) for p in added]

    async def list_participants(self, chat_id: int) -> list[ParticipantRow]:
        return await self._list_participants(chat_id)

    @database_sync_to_async
    def _list_participants(self, chat_id: int) -> list[ParticipantRow]:
        return [_participant_row(p) for p in Participant.objects.filter(chat_id=chat_id)]

    async def apply_unread_delivery(self, message_id: int) -> list[int] | None:
        """
        Claim a message and add one to each recipient's unread_count.

        Recipients are the participants other than the sender who have not
        marked the chat read after the message was created, so a late
        delivery cannot resurrect a count the user already cleared.

        Returns:
            Ids of the incremented users, or None when the message was
            already claimed (or no longer exists)
        """
        rows = await self._apply_unread_delivery(message_id)
        if rows is None:
            return None
        for row in rows:
            await self._publish_participant(REALTIME_CONFIG.UPDATE, row)
        return [row.user_id for row in rows]

    @database_sync_to_async
    def _apply_unread_delivery(self, message_id: int) -> list[ParticipantRow] | None:
        with transaction.atomic():
            claimed = Message.objects.filter(pk=message_id, unread_applied=False).update(
                unread_applied=True
            )
            if not claimed:
                return None
            message = Message.objects.only("chat_id", "sender_id", "created_at").get(
                pk=message_id
            )
            recipient_ids = list(
                Participant.objects.select_for_update()
                .filter(chat_id=message.chat_id)
                .exclude(user_id=message.sender_id)
                .filter(Q(last_read_at__isnull=True) | Q(last_read_at__lt=message.created_at))
                .values_list("pk", flat=True)
            )
            Participant.objects.filter(pk__in=recipient_ids).update(
                unread_count=F("unread_count") + 1
            )
            participants = Participant.objects.filter(pk__in=recipient_ids).order_by("user_id")
            return [_participant_row(p) for p in participants]

    async def reset_unread(self, chat_id: int, user_id: int) -> bool:
        row = await self._reset_unread(chat_id, user_id)
        if row is None:
            return False
        await self._publish_participant(REALTIME_CONFIG.UPDATE, row)
        return True

    @database_sync_to_async
    def _reset_unread(self, chat_id: int, user_id: int) -> ParticipantRow | None:
        updated = Participant.objects.filter(chat_id=chat_id, user_id=user_id).update(
            unread_count=0,
            last_read_at=timezone.now(),
        )
        if not updated:
            return None
        return _participant_row(Participant.objects.get(chat_id=chat_id, user_id=user_id))

    async def recount_unread(self, chat_id: int, user_id: int) -> int:
        row = await self._recount_unread(chat_id, user_id)
        if row is None:
            return 0
        await self._publish_participant(REALTIME_CONFIG.UPDATE, row)
        return row.unread_count

    @database_sync_to_async
    def _recount_unread(self, chat_id: int, user_id: int) -> ParticipantRow | None:
        with transaction.atomic():
            # A delivery locks this row before incrementing it, so the count
            # below sees its claim and increment together or neither
            participant = (
                Participant.objects.select_for_update()
                .filter(chat_id=chat_id, user_id=user_id)
                .first()
            )
            if participant is None:
                return None
            # Only claimed deliveries count; unclaimed ones are added when claimed
            count = participant.count_unread_messages()
            Participant.objects.filter(pk=participant.pk).update(unread_count=count)
            participant.unread_count = count
        return _participant_row(participant)

    async def total_unread(self, user_id: int) -> int:
        return await self._total_unread(user_id)

    @database_sync_to_async
    def _total_unread(self, user_id: int) -> int:
        return Participant.objects.filter(user_id=user_id).aggregate(
            total=Coalesce(Sum("unread_count"), 0)
        )["total"]

    # =========================================================================
    # Messages
    # =========================================================================

    async def insert_message(self, chat_id: int, sender_id: int, content: str) -> ChatMessage:
        """
        Store a message and publish it.

        Raises:
            NotParticipant: If the sender is not a member of the chat
        """
        message, audience = await self._insert_message(chat_id, sender_id, content)
        if self.publish_events:
            await realtime.publish(
                REALTIME_CONFIG.MESSAGES,
                REALTIME_CONFIG.INSERT,
                dict(MessageRowSerializer(message).data),
                user_ids=audience,
                alias=self.channel_layer_alias,
            )
        return message

    @database_sync_to_async
    def _insert_message(
        self, chat_id: int, sender_id: int, content: str
    ) -> tuple[ChatMessage, list[int]]:
        audience = list(
            Participant.objects.filter(chat_id=chat_id).values_list("user_id", flat=True)
        )
        if sender_id not in audience:
            raise NotParticipant(
                "Sender is not a participant of this chat",
                details={"chat_id": chat_id, "user_id": sender_id},
            )
        message = Message.objects.create(chat_id=chat_id, sender_id=sender_id, content=content)
        return ChatMessage.from_model(message), audience

    async def list_messages(
        self,
        chat_id: int,
        after: MessageCursor | None = None,
        limit: int | None = None,
    ) -> list[ChatMessage]:
        return await self._list_messages(chat_id, after, limit)

    @database_sync_to_async
    def _list_messages(
        self,
        chat_id: int,
        after: MessageCursor | None,
        limit: int | None,
    ) -> list[ChatMessage]:
        queryset = Message.objects.filter(chat_id=chat_id).order_by("created_at", "id")
        if after is not None:
            queryset = queryset.filter(
                Q(created_at__gt=after.created_at)
                | Q(created_at=after.created_at, id__gt=after.id)
            )
        if limit is not None:
            queryset = queryset[:limit]
        return [ChatMessage.from_model(message) for message in queryset]

    async def latest_messages(self, chat_ids: Iterable[int]) -> dict[int, ChatMessage]:
        return await self._latest_messages(list(chat_ids))

    @database_sync_to_async
    def _latest_messages(self, chat_ids: list[int]) -> dict[int, ChatMessage]:
        if not chat_ids:
            return {}
        newest = Message.objects.filter(chat_id=OuterRef("pk")).order_by(
            "-created_at", "-id"
        )
        latest_ids = (
            Chat.objects.filter(pk__in=chat_ids)
            .annotate(latest_id=Subquery(newest.values("id")[:1]))
            .exclude(latest_id__isnull=True)
            .values_list("latest_id", flat=True)
        )
        return {
            message.chat_id: ChatMessage.from_model(message)
            for message in Message.objects.filter(pk__in=list(latest_ids))
        }

    # =========================================================================
    # Users
    # =========================================================================

    async def get_users(self, user_ids: Iterable[int]) -> dict[int, UserSummary]:
        return await self._get_users(list(user_ids))

    @database_sync_to_async
    def _get_users(self, user_ids: list[int]) -> dict[int, UserSummary]:
        User = get_user_model()
        return {
            user.pk: UserSummary(id=user.pk, username=user.username, avatar_url=user.avatar_url)
            for user in User.objects.filter(pk__in=user_ids)
        }

    async def list_users(self, exclude_id: int | None = None) -> list[UserSummary]:
        return await self._list_users(exclude_id)

    @database_sync_to_async
    def _list_users(self, exclude_id: int | None) -> list[UserSummary]:
        User = get_user_model()
        queryset = User.objects.filter(is_active=True).order_by("username")
        if exclude_id is not None:
            queryset = queryset.exclude(pk=exclude_id)
        return [
            UserSummary(id=user.pk, username=user.username, avatar_url=user.avatar_url)
            for user in queryset
        ]

    # =========================================================================
    # Publishing
    # =========================================================================

    async def _publish_participant(self, kind: str, row: ParticipantRow) -> None:
        if not self.publish_events:
            return
        await realtime.publish(
            REALTIME_CONFIG.PARTICIPANTS,
            kind,
            dict(ParticipantRowSerializer(row).data),
            alias=self.channel_layer_alias,
        )
