"""
Tests for chat app.

This package contains test modules for:
- test_store.py: DjangoMessageStore against the database
- test_directory.py, test_unread.py: pair lookup and unread counters
- test_session.py, test_inbox.py: live session and inbox over fakes
- test_consumers.py: WebSocket journeys through the consumers

Usage:
    pytest app/chat/tests/
    pytest app/chat/tests/test_consumers.py
"""
