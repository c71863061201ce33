"""
Chat application configuration.

This app provides direct messaging with:
- One chat per user pair
- Per-participant unread counters
- Realtime updates over the Channels layer
"""

from django.apps import AppConfig


class ChatConfig(AppConfig):
    """Configuration for the chat application."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "chat"
    verbose_name = "Chat"

    def ready(self):
        """Connect signal handlers once models are loaded."""
        from chat.signals import connect_signals

        connect_signals()
