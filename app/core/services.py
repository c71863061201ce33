"""
Base service layer patterns for business logic encapsulation.

Services encapsulate business logic separate from transport (websocket
consumers, Celery tasks) and persistence (models, store adapters).

Pattern:
    - Expected failures are raised as core.exceptions subclasses carrying
      an error code; the transport layer turns them into error frames.
    - Unexpected failures (database errors, bugs) propagate unchanged.

Usage:
    from core.services import BaseService

    class ChatDirectory(BaseService):
        async def find_or_create_direct_chat(self, self_id, other_id):
            ...
            self.get_logger().info(f"Created chat {chat_id}")
"""

from __future__ import annotations

import logging


class BaseService:
    """
    Base class for service layer classes.

    Provides common utilities for services:
    - Logging setup per service

    Design Notes:
        - Stateless services use @classmethod; stateful ones (sessions,
          aggregators) are instantiated per user or per chat
        - Raise core.exceptions subclasses for expected failures
    """

    @classmethod
    def get_logger(cls) -> logging.Logger:
        """
        Get logger for this service.

        Returns a logger named after the service class for
        easy filtering in logs.

        Example:
            class UnreadTracker(BaseService):
                async def mark_read(self, chat_id, user_id):
                    self.get_logger().debug(f"Marking chat {chat_id} read")
        """
        return logging.getLogger(f"{cls.__module__}.{cls.__name__}")
