"""
Realtime feed backed by the Channels channel layer.

Every store write that other clients must see is published as a
"realtime.event" to channel-layer groups. Subscribers own a private channel
added to the group matching their filter and consume events in a listener
task.

Group naming:
    realtime.<table>                 every row of the table
    realtime.<table>.chat.<chat_id>  rows of one chat
    realtime.<table>.user.<user_id>  rows addressed to one user

Event shape:
    {
        "type": "realtime.event",
        "table": "messages" | "participants",
        "kind": "INSERT" | "UPDATE",
        "row": {...serialized row...},
        "user_ids": [...audience...],
    }

Delivery is best effort and at-least-once from the subscriber's point of
view: consumers must tolerate duplicates and gaps (see ConversationSession).

Usage:
    feed = ChannelLayerFeed()
    subscription = await feed.subscribe(
        RealtimeFilter("messages", chat_id=chat_id), on_event, on_lost
    )
    ...
    await subscription.unsubscribe()
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import TYPE_CHECKING

from channels.layers import DEFAULT_CHANNEL_LAYER, get_channel_layer

from chat.constants import REALTIME_CONFIG
from chat.exceptions import SubscriptionLost

if TYPE_CHECKING:
    from collections.abc import Iterable
    from typing import Any

    from chat.protocols import EventCallback, LostCallback
    from chat.types import RealtimeFilter

logger = logging.getLogger(__name__)


# =============================================================================
# Group Naming
# =============================================================================


def group_name(table: str, chat_id: int | None = None, user_id: int | None = None) -> str:
    """
    Return the channel-layer group for a table, optionally narrowed.

    user_id takes precedence over chat_id: a filter on both subscribes to
    the user group and checks the chat on delivery.
    """
    base = f"{REALTIME_CONFIG.GROUP_PREFIX}.{table}"
    if user_id is not None:
        return f"{base}.user.{user_id}"
    if chat_id is not None:
        return f"{base}.chat.{chat_id}"
    return base


def groups_for_event(
    table: str, row: dict[str, Any], user_ids: Iterable[int] = ()
) -> list[str]:
    """Return every group an event must be sent to."""
    groups = [group_name(table)]
    if row.get("chat_id") is not None:
        groups.append(group_name(table, chat_id=row["chat_id"]))

    audience = list(user_ids)
    if row.get("user_id") is not None and row["user_id"] not in audience:
        audience.append(row["user_id"])
    groups.extend(group_name(table, user_id=user_id) for user_id in audience)
    return groups


# =============================================================================
# Publishing
# =============================================================================


async def publish(
    table: str,
    kind: str,
    row: dict[str, Any],
    user_ids: Iterable[int] = (),
    alias: str = DEFAULT_CHANNEL_LAYER,
) -> None:
    """
    Publish a change event to every matching group.

    Publishing never fails the write that triggered it: the row is already
    committed, so transport errors are logged and subscribers catch up on
    their next refetch.
    """
    channel_layer = get_channel_layer(alias)
    if channel_layer is None:
        logger.debug(f"No channel layer configured; dropping {table} {kind}")
        return

    audience = [int(user_id) for user_id in user_ids]
    event = {
        "type": REALTIME_CONFIG.EVENT_TYPE,
        "table": table,
        "kind": kind,
        "row": row,
        "user_ids": audience,
    }
    for group in groups_for_event(table, row, audience):
        try:
            await channel_layer.group_send(group, event)
        except Exception:
            logger.exception(f"Failed to publish {table} {kind} to {group}")


# =============================================================================
# Subscribing
# =============================================================================


class ChannelLayerSubscription:
    """
    Active subscription on a channel-layer group.

    The listener task receives events one at a time and awaits the callback
    before receiving the next, so a subscriber sees its events in order.

    Attributes:
        filter: What this subscription receives
        group: Channel-layer group joined
        channel_name: Private channel (set by start())
        closed: True once unsubscribed or lost
    """

    def __init__(
        self,
        channel_layer,
        filter: RealtimeFilter,
        on_event: EventCallback,
        on_lost: LostCallback | None = None,
    ):
        self.channel_layer = channel_layer
        self.filter = filter
        self.on_event = on_event
        self.on_lost = on_lost
        self.group = group_name(filter.table, filter.chat_id, filter.user_id)
        self.channel_name: str | None = None
        self.closed = False
        self._task: asyncio.Task | None = None

    def __repr__(self) -> str:
        return f"ChannelLayerSubscription(group={self.group!r}, closed={self.closed})"

    async def start(self) -> None:
        self.channel_name = await self.channel_layer.new_channel(prefix="realtime.")
        await self.channel_layer.group_add(self.group, self.channel_name)
        self._task = asyncio.create_task(self._listen())
        logger.debug(f"Subscribed {self.channel_name} to {self.group}")

    async def _listen(self) -> None:
        while not self.closed:
            try:
                message = await self.channel_layer.receive(self.channel_name)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                if self.closed:
                    return
                await self._lost(exc)
                return

            if self.closed:
                return
            if message.get("type") != REALTIME_CONFIG.EVENT_TYPE:
                continue

            table = message.get("table")
            row = message.get("row") or {}
            if not self.filter.matches(table, row, message.get("user_ids") or ()):
                continue

            try:
                await self.on_event(message.get("kind"), row)
            except Exception:
                logger.exception(
                    f"Realtime callback failed for {table} event on {self.group}"
                )

    async def _lost(self, exc: Exception) -> None:
        self.closed = True
        logger.warning(f"Realtime subscription to {self.group} lost: {exc}")
        if self.on_lost is not None:
            await self.on_lost(
                SubscriptionLost(
                    f"Subscription to {self.group} lost",
                    details={"group": self.group, "reason": str(exc)},
                )
            )

    async def unsubscribe(self) -> None:
        """Stop the listener and leave the group. Idempotent."""
        if self._task is None and self.closed:
            return
        self.closed = True

        task, self._task = self._task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

        if self.channel_name is not None:
            try:
                await self.channel_layer.group_discard(self.group, self.channel_name)
            except Exception:
                logger.warning(f"Could not leave {self.group}", exc_info=True)
        logger.debug(f"Unsubscribed {self.channel_name} from {self.group}")


class ChannelLayerFeed:
    """
    RealtimeFeed implementation over a Channels layer.

    Args:
        alias: Channel layer alias from CHANNEL_LAYERS
    """

    def __init__(self, alias: str = DEFAULT_CHANNEL_LAYER):
        self.alias = alias

    async def subscribe(
        self,
        filter: RealtimeFilter,
        on_event: EventCallback,
        on_lost: LostCallback | None = None,
    ) -> ChannelLayerSubscription:
        """
        Subscribe to events matching filter.

        Raises:
            SubscriptionLost: If no channel layer is configured or joining
                the group fails
        """
        channel_layer = get_channel_layer(self.alias)
        if channel_layer is None:
            raise SubscriptionLost(
                "No channel layer configured",
                details={"alias": self.alias},
            )

        subscription = ChannelLayerSubscription(channel_layer, filter, on_event, on_lost)
        try:
            await subscription.start()
        except Exception as exc:
            raise SubscriptionLost(
                f"Could not subscribe to {subscription.group}",
                details={"group": subscription.group, "reason": str(exc)},
            ) from exc
        return subscription
