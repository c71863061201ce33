"""
Chat app for one-to-one messaging.

This app handles:
- Finding or creating the single chat for a pair of users
- Per-participant unread counters with exact increments
- Live conversation sessions with optimistic sends
- The inbox: chat previews, ordering and the global unread badge

Related apps:
    - authentication: User model for participants

Realtime:
    Store writes publish row events on the Channels layer (realtime.py).
    See consumers.py for WebSocket handlers.
    See routing.py for WebSocket URL patterns.

Usage:
    from chat.directory import ChatDirectory
    from chat.session import ConversationSession
    from chat.store import DjangoMessageStore

    store = DjangoMessageStore()
    chat_id = await ChatDirectory(store).find_or_create_direct_chat(me.id, other.id)

    session = ConversationSession(chat_id, store, feed, identity)
    await session.open()
    await session.send("Hello!")
"""
