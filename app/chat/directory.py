"""
Chat directory: finds or creates the direct chat between two users.

At most one chat exists per unordered user pair. The store's unique pair
constraint is the single point of serialisation, so concurrent callers for
the same pair always end up with the same chat id.

A chat found by lookup or handed over after a lost race is only returned
once both participants exist. Stores that create the participants in the
same transaction as the pair pass this check on the first read; others
may expose the pair while its creator is still adding them.

Usage:
    directory = ChatDirectory(store, identity)
    chat_id = await directory.find_or_create_direct_chat(alice.id, bob.id)

    # For the signed-in user
    chat_id = await directory.start_chat_with(bob.id)
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from core.exceptions import ValidationError
from core.services import BaseService

from chat.constants import DIRECTORY_CONFIG
from chat.exceptions import ChatCreationFailed, DuplicateChat, NotAuthenticated
from chat.types import PairKey

if TYPE_CHECKING:
    from chat.protocols import IdentityProvider, MessageStore
    from chat.types import UserSummary


class ChatDirectory(BaseService):
    """
    Service resolving user pairs to chat ids.

    Args:
        store: MessageStore implementation
        identity: IdentityProvider for start_chat_with (optional)
        participant_wait: Seconds to wait for a concurrently created chat
            to get its participants
    """

    def __init__(
        self,
        store: MessageStore,
        identity: IdentityProvider | None = None,
        participant_wait: float = DIRECTORY_CONFIG.PARTICIPANT_WAIT_SECONDS,
    ):
        self.store = store
        self.identity = identity
        self.participant_wait = participant_wait

    async def find_or_create_direct_chat(self, self_id: int, other_id: int) -> int:
        """
        Return the chat between two users, creating it if needed.

        Implementation:
            1. Validate users are different
            2. Canonicalize order (lower user id first)
            3. Look up the existing chat for the pair
            4. If not found, create the chat and add both participants
            5. If adding participants fails, delete the chat again

        Args:
            self_id: Requesting user
            other_id: User to chat with

        Returns:
            Chat id (existing or new)

        Raises:
            ValidationError: SAME_USER when both ids are equal
            ChatCreationFailed: Participants could not be added, or another
                caller's chat was rolled back or never completed (retryable)

        Race handling:
            If another caller creates the pair between our lookup and our
            insert, the store raises DuplicateChat and we return the
            winner's chat once its participants exist.
        """
        if self_id == other_id:
            raise ValidationError(
                "Cannot create a chat with yourself",
                error_code="SAME_USER",
                details={"user_id": self_id},
            )

        pair_key = PairKey.for_users(self_id, other_id)

        existing_id = await self.store.get_chat(pair_key)
        if existing_id is not None:
            self.get_logger().debug(
                f"Found existing chat {existing_id} between users "
                f"{pair_key.lower} and {pair_key.higher}"
            )
            return await self._wait_for_participants(existing_id, pair_key)

        try:
            chat_id = await self.store.create_chat(pair_key)
        except DuplicateChat:
            winner_id = await self.store.get_chat(pair_key)
            if winner_id is None:
                raise ChatCreationFailed(
                    "Chat creation conflicted but no chat was found",
                    details={"user_lower": pair_key.lower, "user_higher": pair_key.higher},
                )
            self.get_logger().info(
                f"Lost creation race for users {pair_key.lower} and "
                f"{pair_key.higher}; using chat {winner_id}"
            )
            return await self._wait_for_participants(winner_id, pair_key)

        try:
            await self.store.add_participants(chat_id, pair_key.user_ids)
        except Exception as exc:
            self.get_logger().error(
                f"Adding participants to chat {chat_id} failed: {exc}; rolling back"
            )
            await self.store.delete_chat(chat_id)
            raise ChatCreationFailed(
                "Could not add participants to the new chat",
                details={"chat_id": chat_id, "reason": str(exc)},
            ) from exc

        self.get_logger().info(
            f"Created chat {chat_id} between users {pair_key.lower} and {pair_key.higher}"
        )
        return chat_id

    async def start_chat_with(self, other_id: int) -> int:
        """
        Find or create the chat between the current user and other_id.

        Raises:
            NotAuthenticated: If nobody is signed in
        """
        return await self.find_or_create_direct_chat(self._current_user_id(), other_id)

    async def list_candidates(self, self_id: int | None = None) -> list[UserSummary]:
        """Users a new chat can be started with (everyone but self)."""
        if self_id is None:
            self_id = self._current_user_id()
        return await self.store.list_users(exclude_id=self_id)

    async def _wait_for_participants(self, chat_id: int, pair_key: PairKey) -> int:
        """
        Return chat_id once both users of the pair are its participants.

        Raises:
            ChatCreationFailed: The chat was deleted by its creator's
                rollback, or its participants did not appear in time
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.participant_wait
        expected = set(pair_key.user_ids)

        while True:
            participants = await self.store.list_participants(chat_id)
            if expected <= {p.user_id for p in participants}:
                return chat_id

            current_id = await self.store.get_chat(pair_key)
            if current_id is None:
                raise ChatCreationFailed(
                    "The chat was rolled back by its creator",
                    details={"chat_id": chat_id},
                )
            if current_id != chat_id:
                chat_id = current_id
                continue

            if loop.time() >= deadline:
                raise ChatCreationFailed(
                    "The chat's participants were not added in time",
                    details={"chat_id": chat_id},
                )
            await asyncio.sleep(DIRECTORY_CONFIG.PARTICIPANT_POLL_SECONDS)

    def _current_user_id(self) -> int:
        user_id = self.identity.current_user_id() if self.identity else None
        if user_id is None:
            raise NotAuthenticated("Sign in to start a chat")
        return user_id
