"""
Display helpers for chat timestamps.

Functions:
    format_message_time: Compact label for the inbox list
    format_date_label: Day label for message bubbles in a chat

Usage:
    from chat.helpers import format_message_time

    format_message_time(entry.activity_at)  # "14:05", "Yesterday", "Mon", "Mar 5"
"""

from __future__ import annotations

from datetime import datetime, timedelta

from django.utils import timezone


def format_message_time(timestamp: datetime, now: datetime | None = None) -> str:
    """
    Format a timestamp relative to now for the inbox.

    Rules (by elapsed time):
        under 24 hours: "HH:MM"
        under 48 hours: "Yesterday"
        under 7 days: short weekday ("Mon")
        otherwise: short month and day ("Mar 5")

    Args:
        timestamp: Aware datetime of the last activity
        now: Reference time (defaults to timezone.now())
    """
    now = now or timezone.now()
    elapsed = now - timestamp
    local = timezone.localtime(timestamp)

    if elapsed < timedelta(hours=24):
        return local.strftime("%H:%M")
    if elapsed < timedelta(hours=48):
        return "Yesterday"
    if elapsed < timedelta(days=7):
        return local.strftime("%a")
    return f"{local.strftime('%b')} {local.day}"


def format_date_label(timestamp: datetime, now: datetime | None = None) -> str:
    """Return "Today", "Yesterday" or the ISO date of a message's day."""
    today = timezone.localdate(now or timezone.now())
    day = timezone.localdate(timestamp)

    if day == today:
        return "Today"
    if day == today - timedelta(days=1):
        return "Yesterday"
    return day.isoformat()
