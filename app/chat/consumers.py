"""
WebSocket consumers for the chat application.

This module exposes the chat services to mobile clients over websockets.
Each connection owns its service objects; realtime updates reach them
through the channel layer feed (chat.realtime), not through the
consumer's own channel.

Consumers:
    InboxConsumer: Live inbox for the connected user
    ConversationConsumer: Live message list for one chat

Authentication:
    AuthMiddlewareStack attaches the user to self.scope["user"].
    Anonymous connections are closed with code 4001.

Message Types (from client, inbox):
    - mark_read: {"type": "mark_read", "chat_id": 3}
    - start_chat: {"type": "start_chat", "user_id": 12}
    - candidates: {"type": "candidates"}
    - search: {"type": "search", "query": "ali"}
    - refresh: {"type": "refresh"}

Message Types (from client, conversation):
    - message: {"type": "message", "content": "Hello!"}
    - read: {"type": "read"}

Message Types (to client):
    - inbox: Inbox entries and the total unread badge
    - chat: Chat id resolved by start_chat
    - candidates: Users available for a new chat
    - messages: Current message list of the conversation
    - sent: Stored message acknowledging a send
    - error: {"type": "error", "message", "error_code", "details"?}
"""

from __future__ import annotations

import logging

from channels.generic.websocket import AsyncJsonWebsocketConsumer
from django.conf import settings

from core.exceptions import BaseApplicationError

from chat.directory import ChatDirectory
from chat.exceptions import NotParticipant
from chat.identity import ScopeIdentityProvider
from chat.inbox import InboxAggregator
from chat.realtime import ChannelLayerFeed
from chat.serializers import (
    InboxEntrySerializer,
    SessionMessageSerializer,
    UserSummarySerializer,
)
from chat.session import ConversationSession
from chat.store import DjangoMessageStore

logger = logging.getLogger(__name__)

CLOSE_UNAUTHENTICATED = 4001
CLOSE_FORBIDDEN = 4003
CLOSE_UNAVAILABLE = 4004


def _error_frame(error: BaseApplicationError) -> dict:
    return {"type": "error", **error.to_dict()}


def _invalid_payload(detail: str) -> dict:
    return {"type": "error", "message": detail, "error_code": "INVALID_PAYLOAD"}


class InboxConsumer(AsyncJsonWebsocketConsumer):
    """
    WebSocket consumer serving the connected user's inbox.

    Pushes a fresh "inbox" frame whenever the aggregator recomputes.

    Attributes:
        user_id: Connected user's ID
        inbox: InboxAggregator for the user (after connect)
        directory: ChatDirectory for start_chat and candidates
    """

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.user_id: int | None = None
        self.inbox: InboxAggregator | None = None
        self.directory: ChatDirectory | None = None

    async def connect(self):
        identity = ScopeIdentityProvider(self.scope)
        self.user_id = identity.current_user_id()

        if self.user_id is None:
            logger.warning("Rejected unauthenticated inbox connection")
            await self.close(code=CLOSE_UNAUTHENTICATED)
            return

        store = DjangoMessageStore()
        self.directory = ChatDirectory(store, identity)
        self.inbox = InboxAggregator(
            store,
            ChannelLayerFeed(),
            identity,
            debounce=settings.CHAT_INBOX_DEBOUNCE_SECONDS,
        )

        await self.accept()
        try:
            await self.inbox.start()
        except BaseApplicationError as e:
            logger.error(f"Could not start inbox for user {self.user_id}: {e.message}")
            await self.send_json(_error_frame(e))
            self.inbox = None
            await self.close(code=CLOSE_UNAVAILABLE)
            return

        await self._push_inbox(self.inbox.entries)
        self.inbox.add_listener(self._push_inbox)
        logger.info(f"User {self.user_id} connected to inbox")

    async def disconnect(self, close_code):
        if self.inbox is not None:
            await self.inbox.close()
            self.inbox = None
            logger.info(f"User {self.user_id} disconnected from inbox")

    async def receive_json(self, content, **kwargs):
        """
        Handle incoming inbox commands.

        Service errors are answered with an error frame; the connection
        stays open.
        """
        if self.inbox is None:
            return

        message_type = content.get("type")
        try:
            if message_type == "mark_read":
                await self.inbox.mark_read(int(content["chat_id"]))
            elif message_type == "start_chat":
                chat_id = await self.directory.start_chat_with(int(content["user_id"]))
                await self.send_json({"type": "chat", "chat_id": chat_id})
            elif message_type == "candidates":
                users = await self.directory.list_candidates()
                await self.send_json(
                    {
                        "type": "candidates",
                        "users": UserSummarySerializer(users, many=True).data,
                    }
                )
            elif message_type == "search":
                entries = self.inbox.search(content.get("query", ""))
                await self.send_json(self._inbox_frame(entries, query=content.get("query", "")))
            elif message_type == "refresh":
                await self.inbox.refresh()
            else:
                await self.send_json(_invalid_payload(f"Unknown message type: {message_type}"))
        except BaseApplicationError as e:
            await self.send_json(_error_frame(e))
        except (KeyError, TypeError, ValueError) as e:
            await self.send_json(_invalid_payload(f"Invalid {message_type} payload: {e}"))

    async def _push_inbox(self, entries):
        await self.send_json(self._inbox_frame(entries))

    def _inbox_frame(self, entries, query: str | None = None) -> dict:
        frame = {
            "type": "inbox",
            "entries": InboxEntrySerializer(entries, many=True).data,
            "total_unread": self.inbox.total_unread,
        }
        if query is not None:
            frame["query"] = query
        return frame


class ConversationConsumer(AsyncJsonWebsocketConsumer):
    """
    WebSocket consumer for one open chat.

    Validates:
        1. User is authenticated (4001)
        2. User is a participant of the chat (4003)
        3. Realtime feed and history are available (4004)

    Attributes:
        chat_id: ID of the connected chat
        session: ConversationSession (after connect)
    """

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.chat_id: int | None = None
        self.session: ConversationSession | None = None

    async def connect(self):
        self.chat_id = self.scope["url_route"]["kwargs"]["chat_id"]
        identity = ScopeIdentityProvider(self.scope)
        user_id = identity.current_user_id()

        if user_id is None:
            logger.warning(f"Rejected unauthenticated connection to chat {self.chat_id}")
            await self.close(code=CLOSE_UNAUTHENTICATED)
            return

        session = ConversationSession(
            self.chat_id,
            DjangoMessageStore(),
            ChannelLayerFeed(),
            identity,
            send_timeout=settings.CHAT_SEND_TIMEOUT_SECONDS,
        )
        try:
            await session.open()
        except NotParticipant:
            logger.warning(f"User {user_id} is not a participant in chat {self.chat_id}")
            await self.close(code=CLOSE_FORBIDDEN)
            return
        except BaseApplicationError as e:
            logger.error(f"Could not open chat {self.chat_id} for user {user_id}: {e.message}")
            await session.close()
            await self.close(code=CLOSE_UNAVAILABLE)
            return

        self.session = session
        await self.accept()
        await self._push_messages(session.messages)
        session.add_listener(self._push_messages)
        logger.info(f"User {user_id} connected to chat {self.chat_id}")

    async def disconnect(self, close_code):
        if self.session is not None:
            await self.session.close()
            self.session = None
            logger.info(f"Disconnected from chat {self.chat_id}")

    async def receive_json(self, content, **kwargs):
        """
        Handle incoming conversation commands.

        Expected message format:
            {"type": "message", "content": "Hello!"}
            {"type": "read"}
        """
        if self.session is None:
            return

        message_type = content.get("type")
        try:
            if message_type == "message":
                stored = await self.session.send(content.get("content", ""))
                await self.send_json(
                    {"type": "sent", "message": SessionMessageSerializer(stored).data}
                )
            elif message_type == "read":
                await self.session.mark_read()
            else:
                await self.send_json(_invalid_payload(f"Unknown message type: {message_type}"))
        except BaseApplicationError as e:
            await self.send_json(_error_frame(e))

    async def _push_messages(self, messages):
        await self.send_json(
            {
                "type": "messages",
                "chat_id": self.chat_id,
                "state": self.session.state.value if self.session else None,
                "messages": SessionMessageSerializer(messages, many=True).data,
            }
        )
